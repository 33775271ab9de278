"""
Daily activity streak tracking.

Streaks count consecutive UTC calendar days with at least one answered
question. Updates are idempotent within a day and the longest streak
never decreases.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

import structlog

from .periods import utc_today
from explain_engage.storage.models import StreakRecord
from explain_engage.storage.repository import EngagementRepository

logger = structlog.get_logger(__name__)

# Exact streak lengths that trigger a celebration
STREAK_MILESTONES = (3, 7, 14, 30, 50, 100, 365)


@dataclass(frozen=True)
class StreakCalculation:
    """New streak counters for a day that differs from the last activity."""
    current_streak: int
    longest_streak: int
    is_new_record: bool


@dataclass(frozen=True)
class StreakUpdate:
    """Result of recording a day's activity."""
    current_streak: int
    longest_streak: int
    is_new_record: bool
    milestone_reached: bool
    milestone_value: Optional[int] = None
    changed: bool = False


def calculate_new_streak(
    last_activity_date: Optional[date],
    today: date,
    current_streak: int,
    longest_streak: int,
) -> StreakCalculation:
    """Compute streak counters from the gap since the last activity.

    - No previous activity: streak starts at 1 and is a new record
    - Same day: counters unchanged
    - Next day: streak grows by one; a new record if it passes the old longest
    - Any longer gap: streak restarts at 1, longest is kept
    """
    if last_activity_date is None:
        return StreakCalculation(current_streak=1, longest_streak=1, is_new_record=True)

    days_diff = (today - last_activity_date).days

    if days_diff == 1:
        new_streak = current_streak + 1
        return StreakCalculation(
            current_streak=new_streak,
            longest_streak=max(new_streak, longest_streak),
            is_new_record=new_streak > longest_streak,
        )

    if days_diff > 1:
        return StreakCalculation(
            current_streak=1,
            longest_streak=longest_streak,
            is_new_record=False,
        )

    return StreakCalculation(
        current_streak=current_streak,
        longest_streak=longest_streak,
        is_new_record=False,
    )


def update_streak(
    user_id: str,
    last_activity_date: Optional[date],
    current_streak: int,
    longest_streak: int,
    today: date,
) -> StreakUpdate:
    """
    Apply one day of activity to a user's streak.

    Activity dated on or before the last recorded day is a no-op, which
    makes repeated calls on the same day idempotent.

    Args:
        user_id: User whose streak is updated (for logging)
        last_activity_date: Last day with activity, None if never active
        current_streak: Stored current streak
        longest_streak: Stored longest streak
        today: UTC date of the new activity

    Returns:
        StreakUpdate; changed tells the caller whether to persist it
    """
    # Heal records where longest fell below current
    longest_streak = max(longest_streak, current_streak)

    if last_activity_date is not None and (today - last_activity_date).days <= 0:
        return StreakUpdate(
            current_streak=current_streak,
            longest_streak=longest_streak,
            is_new_record=False,
            milestone_reached=False,
        )

    calculation = calculate_new_streak(last_activity_date, today, current_streak, longest_streak)
    milestone_reached = calculation.current_streak in STREAK_MILESTONES

    if milestone_reached:
        logger.info(
            "streak_milestone_reached",
            user_id=user_id,
            milestone=calculation.current_streak,
        )

    return StreakUpdate(
        current_streak=calculation.current_streak,
        longest_streak=calculation.longest_streak,
        is_new_record=calculation.is_new_record,
        milestone_reached=milestone_reached,
        milestone_value=calculation.current_streak if milestone_reached else None,
        changed=True,
    )


class StreakTracker:
    """Store-backed streak updates, one transaction per call."""

    def __init__(self, repository: EngagementRepository):
        self.repository = repository

    def record_activity(self, user_id: str, today: Optional[date] = None) -> StreakUpdate:
        """Record that user_id was active today and return the new streak state.

        The read and the conditional write share one transaction, so two
        concurrent calls on the same day advance the streak only once.
        """
        today = today or utc_today()

        def _apply(existing: Optional[StreakRecord]) -> Tuple[Optional[StreakRecord], StreakUpdate]:
            if existing is None:
                result = update_streak(user_id, None, 0, 0, today)
            else:
                result = update_streak(
                    user_id,
                    existing.last_activity_date,
                    existing.current_streak,
                    existing.longest_streak,
                    today,
                )
            if not result.changed:
                return None, result
            record = StreakRecord(
                user_id=user_id,
                current_streak=result.current_streak,
                longest_streak=result.longest_streak,
                last_activity_date=today,
            )
            return record, result

        return self.repository.apply_streak_update(user_id, _apply)
