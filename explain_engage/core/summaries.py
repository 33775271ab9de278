"""
Read-only summaries for the API and UI layers.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from .periods import next_reset, period_key, utc_today
from .quota import QuotaLimits, gating_period
from explain_engage.storage.models import Achievement, PeriodKind, Tier
from explain_engage.storage.repository import EngagementRepository

CALENDAR_DAYS = 30
RECENT_UNLOCKS = 3


@dataclass(frozen=True)
class UsageSummary:
    """Usage for one quota period; limit None means unlimited or not gating."""
    period_kind: PeriodKind
    used: int
    limit: Optional[int]
    reset_at: str


@dataclass(frozen=True)
class CalendarDay:
    date: date
    active: bool


@dataclass(frozen=True)
class StreakSummary:
    current: int
    longest: int
    calendar: List[CalendarDay]


@dataclass(frozen=True)
class AchievementSummary:
    total: int
    unlocked: int
    recently_unlocked: List[Achievement]


def usage_summary(
    repository: EngagementRepository,
    user_id: str,
    tier: Tier,
    limits: Optional[QuotaLimits] = None,
    today: Optional[date] = None,
) -> List[UsageSummary]:
    """Day and month usage. Only the period that gates tier carries a limit."""
    limits = limits or QuotaLimits()
    today = today or utc_today()
    gating_kind, gating_limit = gating_period(tier, limits)

    summaries = []
    for kind in (PeriodKind.DAY, PeriodKind.MONTH):
        summaries.append(UsageSummary(
            period_kind=kind,
            used=repository.current_count(user_id, kind, period_key(kind, today)),
            limit=gating_limit if kind == gating_kind else None,
            reset_at=next_reset(kind, today).isoformat(),
        ))
    return summaries


def streak_summary(
    repository: EngagementRepository,
    user_id: str,
    today: Optional[date] = None,
) -> StreakSummary:
    """Stored streak plus an activity calendar of the last 30 days, oldest first."""
    today = today or utc_today()
    start = today - timedelta(days=CALENDAR_DAYS - 1)
    active_days = repository.get_activity_dates(user_id, start, today)
    record = repository.get_streak(user_id)

    calendar = []
    for offset in range(CALENDAR_DAYS):
        day = start + timedelta(days=offset)
        calendar.append(CalendarDay(date=day, active=day in active_days))

    return StreakSummary(
        current=record.current_streak if record else 0,
        longest=record.longest_streak if record else 0,
        calendar=calendar,
    )


def achievement_summary(repository: EngagementRepository, user_id: str) -> AchievementSummary:
    """Catalogue size, unlock count and the three most recent unlocks."""
    achievements = {a.id: a for a in repository.list_achievements()}
    unlocks = [u for u in repository.list_unlocks(user_id) if u.achievement_id in achievements]

    return AchievementSummary(
        total=len(achievements),
        unlocked=len(unlocks),
        recently_unlocked=[achievements[u.achievement_id] for u in unlocks[:RECENT_UNLOCKS]],
    )
