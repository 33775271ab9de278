"""
Achievement evaluation and unlocking.

Each category is checked the same way: evaluate every definition's
requirement against the user's current stats and try to insert an unlock
for those that pass. The store's uniqueness constraint decides what is
new; there is no "already unlocked?" read beforehand.
"""

from datetime import datetime, timezone
from typing import List, Optional

import structlog

from explain_engage.storage.models import (
    COUNT_REQUIREMENTS,
    FLAG_REQUIREMENTS,
    Achievement,
    AchievementCategory,
    CountRequirement,
    FlagRequirement,
    LearningStats,
    Requirement,
)
from explain_engage.storage.repository import EngagementRepository

logger = structlog.get_logger(__name__)


def requirement_met(requirement: Requirement, stats: LearningStats) -> bool:
    """Evaluate a requirement against stats.

    Raises:
        TypeError: If requirement is not a known requirement variant
    """
    if isinstance(requirement, CountRequirement):
        return getattr(stats, COUNT_REQUIREMENTS[requirement.type]) >= requirement.value
    if isinstance(requirement, FlagRequirement):
        return bool(getattr(stats, FLAG_REQUIREMENTS[requirement.type])) == requirement.value
    raise TypeError(f"Unsupported requirement: {requirement!r}")


class AchievementEngine:
    """Unlocks achievements whose requirements the user now meets."""

    def __init__(self, repository: EngagementRepository):
        self.repository = repository

    def check_category(
        self,
        user_id: str,
        category: AchievementCategory,
        stats: LearningStats,
        unlocked: Optional[List[Achievement]] = None,
    ) -> List[Achievement]:
        """Unlock qualifying achievements in one category.

        Each successful insert is appended to unlocked as soon as it
        happens; a store failure later in the loop leaves earlier appends
        in place.

        Returns:
            The unlocked list (a new one when not given); achievements
            unlocked before this call are never added
        """
        unlocked = [] if unlocked is None else unlocked
        for achievement in self.repository.list_achievements_by_category(category):
            if not requirement_met(achievement.requirement, stats):
                continue
            inserted = self.repository.insert_unlock_if_absent(
                user_id, achievement.id, datetime.now(timezone.utc)
            )
            if inserted:
                logger.info(
                    "achievement_unlocked",
                    user_id=user_id,
                    achievement=achievement.code,
                    category=category.value,
                )
                unlocked.append(achievement)
        return unlocked

    def check_all(
        self,
        user_id: str,
        stats: Optional[LearningStats] = None,
        unlocked: Optional[List[Achievement]] = None,
    ) -> List[Achievement]:
        """Check every category, reading lifetime stats from the store if not given."""
        if stats is None:
            stats = self.repository.get_learning_stats(user_id)

        unlocked = [] if unlocked is None else unlocked
        for category in AchievementCategory:
            self.check_category(user_id, category, stats, unlocked)
        return unlocked
