"""
Default achievement catalogue.

Reference data loaded into the store by `explain-engage init`.
"""

from typing import List

from .models import (
    Achievement,
    AchievementCategory,
    CountRequirement,
    FlagRequirement,
)
from .repository import EngagementRepository

DEFAULT_ACHIEVEMENTS: List[Achievement] = [
    # Streak
    Achievement("streak-3", "streak_3", "Warming Up", "Learn 3 days in a row",
                AchievementCategory.STREAK, CountRequirement("streak", 3)),
    Achievement("streak-7", "streak_7", "Week Warrior", "Learn 7 days in a row",
                AchievementCategory.STREAK, CountRequirement("streak", 7)),
    Achievement("streak-30", "streak_30", "Monthly Master", "Learn 30 days in a row",
                AchievementCategory.STREAK, CountRequirement("streak", 30)),
    Achievement("streak-100", "streak_100", "Centurion", "Learn 100 days in a row",
                AchievementCategory.STREAK, CountRequirement("streak", 100)),
    # Learning
    Achievement("first-question", "first_question", "First Steps", "Ask your first question",
                AchievementCategory.LEARNING, CountRequirement("questions_total", 1)),
    Achievement("questions-10", "questions_10", "Curious Mind", "Ask 10 questions",
                AchievementCategory.LEARNING, CountRequirement("questions_total", 10)),
    Achievement("questions-100", "questions_100", "Knowledge Seeker", "Ask 100 questions",
                AchievementCategory.LEARNING, CountRequirement("questions_total", 100)),
    Achievement("topics-10", "topics_10", "Explorer", "Explore 10 different topics",
                AchievementCategory.LEARNING, CountRequirement("unique_topics", 10)),
    Achievement("follow-ups-10", "follow_ups_10", "Deep Diver", "Ask 10 follow-up questions",
                AchievementCategory.LEARNING, CountRequirement("follow_ups", 10)),
    # Social
    Achievement("first-share", "first_share", "Sharing is Caring", "Share your first explanation",
                AchievementCategory.SOCIAL, CountRequirement("shares", 1)),
    Achievement("shares-10", "shares_10", "Knowledge Sharer", "Share 10 explanations",
                AchievementCategory.SOCIAL, CountRequirement("shares", 10)),
    Achievement("analogy-likes-5", "analogy_likes_5", "Analogy Fan", "Like 5 analogies",
                AchievementCategory.SOCIAL, CountRequirement("analogy_likes", 5)),
    # Exploration
    Achievement("voice-used", "voice_used", "Voice Explorer", "Ask a question by voice",
                AchievementCategory.EXPLORATION, FlagRequirement("voice_used")),
    Achievement("all-levels", "all_levels", "Level Hopper", "Try every explanation level",
                AchievementCategory.EXPLORATION, FlagRequirement("all_levels")),
    Achievement("follow-ups-3", "follow_ups_3", "Question Chain", "Ask 3 follow-up questions",
                AchievementCategory.EXPLORATION, CountRequirement("follow_ups", 3)),
]


def seed_achievements(
    repository: EngagementRepository,
    achievements: List[Achievement] = DEFAULT_ACHIEVEMENTS,
) -> int:
    """Load achievement definitions into the store; safe to re-run.

    Returns:
        Number of definitions written
    """
    for achievement in achievements:
        repository.upsert_achievement(achievement)
    return len(achievements)
