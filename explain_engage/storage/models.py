"""
Data models for storage layer.

Defines the engagement records, enums and reference data shared by the
core components and the store.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Dict, Optional, Union

from explain_engage.core.errors import InvalidState


class Tier(Enum):
    """Subscription tier, owned by the billing subsystem."""
    FREE = "free"
    STARTER = "starter"
    PREMIUM = "premium"


class PeriodKind(Enum):
    """Quota period granularity."""
    DAY = "day"
    MONTH = "month"


class SimplicityLevel(Enum):
    """Explanation complexity, ordered 5yo < normal < advanced.

    Member order is the complexity order. Both ends are absorbing.
    """
    FIVE_YEAR_OLD = "5yo"
    NORMAL = "normal"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return list(SimplicityLevel).index(self)

    def simpler(self) -> "SimplicityLevel":
        """One step down, floored at 5yo."""
        levels = list(SimplicityLevel)
        return levels[max(self.rank - 1, 0)]

    def more_advanced(self) -> "SimplicityLevel":
        """One step up, capped at advanced."""
        levels = list(SimplicityLevel)
        return levels[min(self.rank + 1, len(levels) - 1)]

    def __lt__(self, other):
        if not isinstance(other, SimplicityLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, SimplicityLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, SimplicityLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, SimplicityLevel):
            return NotImplemented
        return self.rank >= other.rank


class AchievementCategory(Enum):
    """Achievement groups, each checked by its own category pass."""
    STREAK = "streak"
    LEARNING = "learning"
    SOCIAL = "social"
    EXPLORATION = "exploration"


@dataclass(frozen=True)
class UsagePeriodCounter:
    """Question counter for one user and one period kind.

    A counter whose period_key is not the current one reads as zero.
    Limits are not stored with the counter: the tier decides them
    (see core.quota.gating_period) and UsageSummary reports them.
    """
    user_id: str
    period_kind: PeriodKind
    period_key: str
    count: int

    def __post_init__(self):
        if self.count < 0:
            raise InvalidState("count cannot be negative")


@dataclass(frozen=True)
class StreakRecord:
    """Daily activity streak for one user.

    longest_streak >= current_streak always holds.
    """
    user_id: str
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date] = None

    def __post_init__(self):
        if self.current_streak < 0:
            raise InvalidState("current_streak cannot be negative")
        if self.longest_streak < 0:
            raise InvalidState("longest_streak cannot be negative")
        if self.longest_streak < self.current_streak:
            raise InvalidState(
                f"longest_streak {self.longest_streak} is below "
                f"current_streak {self.current_streak}"
            )


# Requirement type -> LearningStats attribute
COUNT_REQUIREMENTS: Dict[str, str] = {
    "questions_total": "total_questions",
    "follow_ups": "follow_ups_used",
    "unique_topics": "unique_topics",
    "shares": "shares_count",
    "analogy_likes": "analogy_likes",
    "streak": "current_streak",
}

FLAG_REQUIREMENTS: Dict[str, str] = {
    "voice_used": "voice_used",
    "all_levels": "all_levels_used",
}


@dataclass(frozen=True)
class CountRequirement:
    """Met when the named stat reaches value."""
    type: str
    value: int

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {"type": self.type, "value": self.value}


@dataclass(frozen=True)
class FlagRequirement:
    """Met when the named boolean stat is set."""
    type: str
    value: bool = True

    def to_dict(self) -> Dict[str, Union[str, bool]]:
        return {"type": self.type, "value": self.value}


Requirement = Union[CountRequirement, FlagRequirement]


def parse_requirement(data: Dict) -> Requirement:
    """Parse a stored {type, value} requirement into its variant.

    Raises:
        ValueError: If the type is unknown or the value has the wrong shape
    """
    if not isinstance(data, dict) or "type" not in data:
        raise ValueError(f"Requirement must be a mapping with a 'type': {data!r}")

    req_type = data["type"]
    value = data.get("value", True)

    if req_type in COUNT_REQUIREMENTS:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"Requirement '{req_type}' needs a non-negative number, got {value!r}")
        return CountRequirement(type=req_type, value=int(value))
    if req_type in FLAG_REQUIREMENTS:
        if not isinstance(value, bool):
            raise ValueError(f"Requirement '{req_type}' needs a boolean, got {value!r}")
        return FlagRequirement(type=req_type, value=value)

    raise ValueError(f"Unknown requirement type: {req_type}")


@dataclass(frozen=True)
class Achievement:
    """Static achievement definition (reference data, not user owned)."""
    id: str
    code: str
    name: str
    description: str
    category: AchievementCategory
    requirement: Requirement


@dataclass(frozen=True)
class AchievementUnlock:
    """At most one per (user_id, achievement_id), enforced by the store."""
    user_id: str
    achievement_id: str
    unlocked_at: datetime


@dataclass(frozen=True)
class LearningStats:
    """Lifetime stats that achievement requirements are evaluated against."""
    total_questions: int = 0
    unique_topics: int = 0
    follow_ups_used: int = 0
    shares_count: int = 0
    analogy_likes: int = 0
    voice_used: bool = False
    all_levels_used: bool = False
    current_streak: int = 0
    longest_streak: int = 0
