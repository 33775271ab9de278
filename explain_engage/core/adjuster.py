"""
Simplicity level adjustment after a confused follow-up.

The caller only adjusts when the classifier is confident (> 0.7), a
stricter gate than the classifier's own 0.5 "confused" floor. The gap is
a hysteresis band: mildly confused messages are flagged but do not drop
the level.
"""

from dataclasses import dataclass

from .confusion import ConfusionSignal, SuggestedAction
from explain_engage.storage.models import SimplicityLevel

ADJUST_THRESHOLD = 0.7

SIMPLIFY_INSTRUCTIONS = (
    "The user is confused and needs a simpler explanation. "
    "Use a completely different analogy from everyday life. "
    "Break it into smaller steps. "
    'Start with: "Let me try explaining this differently..."'
)

DIFFERENT_ANALOGY_INSTRUCTIONS = (
    "The user wants a different analogy. "
    "Keep the same complexity level but use a completely different analogy "
    "from an unrelated domain. "
    "Start with: \"Here's another way to think about it...\""
)

RETRY_INSTRUCTIONS = (
    "The user didn't understand. "
    "Rephrase using a different analogy. "
    "Be warmer and more encouraging. "
    'Start with: "Let me put it another way..."'
)


@dataclass(frozen=True)
class LevelAdjustment:
    """Level and instructions for the next generation call only."""
    new_level: SimplicityLevel
    retry_instructions: str


def should_adjust(signal: ConfusionSignal) -> bool:
    """True when the signal is strong enough to change the next answer."""
    return signal.is_confused and signal.confidence > ADJUST_THRESHOLD


def next_level(current_level: SimplicityLevel, signal: ConfusionSignal) -> LevelAdjustment:
    """Pick the next level and retry instructions for a confused user.

    SIMPLIFY and RETRY both step one level down (5yo is the floor);
    DIFFERENT_ANALOGY keeps the level.
    """
    action = signal.suggested_action

    if action == SuggestedAction.SIMPLIFY:
        return LevelAdjustment(current_level.simpler(), SIMPLIFY_INSTRUCTIONS)

    if action == SuggestedAction.DIFFERENT_ANALOGY:
        return LevelAdjustment(current_level, DIFFERENT_ANALOGY_INSTRUCTIONS)

    return LevelAdjustment(current_level.simpler(), RETRY_INSTRUCTIONS)
