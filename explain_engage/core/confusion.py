"""
Confusion detection for follow-up messages.

Scores a user's message against an ordered table of phrase rules and a
repeated-question check to decide whether the previous answer missed.

Scoring:
- Every matching rule adds its weight (weights add, they are not maxed)
- The suggested action comes from the heaviest single matching rule,
  first in table order on ties
- A message that repeats the previous question (word-set Jaccard > 0.7)
  adds 0.8 and forces SIMPLIFY
- confidence = min(total weight, 1.0); confused at confidence >= 0.5
- Messages below the confused floor always suggest RETRY
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional

CONFUSED_THRESHOLD = 0.5
REPEAT_SIMILARITY_THRESHOLD = 0.7
REPEAT_WEIGHT = 0.8
REPEAT_MIN_LENGTH = 10  # characters; shorter messages skip the repeat check
REPEATED_QUESTION_SIGNAL = "repeated_question"


class SuggestedAction(Enum):
    """Corrective action for the next answer, mildest first."""
    RETRY = "retry"
    SIMPLIFY = "simplify"
    DIFFERENT_ANALOGY = "different_analogy"


@dataclass(frozen=True)
class ConfusionRule:
    """One phrase rule in the confusion table."""
    id: str
    pattern: re.Pattern
    weight: float
    action: SuggestedAction

    def __post_init__(self):
        if not 0 < self.weight <= 1:
            raise ValueError(f"weight for rule '{self.id}' must be in (0, 1]")

    def matches(self, message: str) -> bool:
        return self.pattern.search(message) is not None


def _rule(rule_id: str, pattern: str, weight: float, action: SuggestedAction) -> ConfusionRule:
    return ConfusionRule(rule_id, re.compile(pattern, re.IGNORECASE), weight, action)


CONFUSION_RULES: List[ConfusionRule] = [
    _rule("bare_confusion", r"^(huh|what|wut)\??$", 0.9, SuggestedAction.RETRY),
    _rule("dont_understand", r"i don'?t (get|understand)", 0.9, SuggestedAction.RETRY),
    _rule("makes_no_sense", r"makes no sense", 0.9, SuggestedAction.RETRY),
    _rule("still_confused", r"still confused", 0.9, SuggestedAction.RETRY),
    _rule("thats_confusing", r"that'?s confusing", 0.8, SuggestedAction.RETRY),
    _rule("simpler", r"simpler|easier|dumb(er)? (it )?down", 0.9, SuggestedAction.SIMPLIFY),
    _rule("explain_like_kid", r"like (i'?m|im) (\d+|five|a kid)", 0.8, SuggestedAction.SIMPLIFY),
    _rule("different_way", r"different (way|example|analogy)", 0.8, SuggestedAction.DIFFERENT_ANALOGY),
    _rule("another_way", r"another (way|example|analogy)", 0.8, SuggestedAction.DIFFERENT_ANALOGY),
    _rule("clarify_request", r"can you (explain|clarify|rephrase)", 0.7, SuggestedAction.RETRY),
    _rule("lost_me", r"lost me", 0.8, SuggestedAction.RETRY),
    _rule("too_complicated", r"too (complicated|complex|hard)", 0.8, SuggestedAction.SIMPLIFY),
]


@dataclass(frozen=True)
class ConfusionSignal:
    """Per-message confusion classification; never persisted."""
    is_confused: bool
    confidence: float
    matched_signals: FrozenSet[str] = field(default_factory=frozenset)
    suggested_action: SuggestedAction = SuggestedAction.RETRY


def word_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the lower-cased whitespace-separated word sets."""
    words1 = set(text1.lower().split())
    words2 = set(text2.lower().split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def analyze(
    message: str,
    previous_question: Optional[str] = None,
    rules: Optional[List[ConfusionRule]] = None,
) -> ConfusionSignal:
    """Classify whether message signals confusion about the last answer.

    Args:
        message: The user's new message
        previous_question: The question the last answer responded to
        rules: Rule table to score against (defaults to CONFUSION_RULES)

    Returns:
        ConfusionSignal with clamped confidence and the matched rule ids
    """
    text = (message or "").strip()
    rules = CONFUSION_RULES if rules is None else rules

    matched = []
    total_weight = 0.0
    strongest: Optional[ConfusionRule] = None

    for rule in rules:
        if rule.matches(text):
            matched.append(rule.id)
            total_weight += rule.weight
            if strongest is None or rule.weight > strongest.weight:
                strongest = rule

    action = strongest.action if strongest else SuggestedAction.RETRY

    if previous_question and len(text) > REPEAT_MIN_LENGTH:
        if word_similarity(text, previous_question) > REPEAT_SIMILARITY_THRESHOLD:
            matched.append(REPEATED_QUESTION_SIGNAL)
            total_weight += REPEAT_WEIGHT
            action = SuggestedAction.SIMPLIFY

    confidence = min(total_weight, 1.0)
    is_confused = confidence >= CONFUSED_THRESHOLD

    return ConfusionSignal(
        is_confused=is_confused,
        confidence=confidence,
        matched_signals=frozenset(matched),
        suggested_action=action if is_confused else SuggestedAction.RETRY,
    )
