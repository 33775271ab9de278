"""
Tests for simplicity level adjustment.
"""
import pytest

from explain_engage.core.adjuster import (
    DIFFERENT_ANALOGY_INSTRUCTIONS,
    RETRY_INSTRUCTIONS,
    SIMPLIFY_INSTRUCTIONS,
    next_level,
    should_adjust,
)
from explain_engage.core.confusion import ConfusionSignal, SuggestedAction, analyze
from explain_engage.storage.models import SimplicityLevel


def make_signal(action, confidence=0.9, confused=True):
    return ConfusionSignal(
        is_confused=confused,
        confidence=confidence,
        matched_signals=frozenset({"test"}),
        suggested_action=action,
    )


class TestNextLevel:
    """Test level transitions per suggested action."""

    @pytest.mark.parametrize("current,expected", [
        (SimplicityLevel.ADVANCED, SimplicityLevel.NORMAL),
        (SimplicityLevel.NORMAL, SimplicityLevel.FIVE_YEAR_OLD),
        (SimplicityLevel.FIVE_YEAR_OLD, SimplicityLevel.FIVE_YEAR_OLD),
    ])
    def test_simplify_steps_down_to_floor(self, current, expected):
        adjustment = next_level(current, make_signal(SuggestedAction.SIMPLIFY))

        assert adjustment.new_level == expected
        assert adjustment.retry_instructions == SIMPLIFY_INSTRUCTIONS
        assert "Let me try explaining this differently" in adjustment.retry_instructions

    @pytest.mark.parametrize("current", list(SimplicityLevel))
    def test_different_analogy_keeps_level(self, current):
        adjustment = next_level(current, make_signal(SuggestedAction.DIFFERENT_ANALOGY))

        assert adjustment.new_level == current
        assert adjustment.retry_instructions == DIFFERENT_ANALOGY_INSTRUCTIONS

    def test_different_analogy_at_ceiling(self):
        """Test advanced stays advanced for a different analogy."""
        adjustment = next_level(SimplicityLevel.ADVANCED, make_signal(SuggestedAction.DIFFERENT_ANALOGY))

        assert adjustment.new_level == SimplicityLevel.ADVANCED

    @pytest.mark.parametrize("current,expected", [
        (SimplicityLevel.ADVANCED, SimplicityLevel.NORMAL),
        (SimplicityLevel.NORMAL, SimplicityLevel.FIVE_YEAR_OLD),
        (SimplicityLevel.FIVE_YEAR_OLD, SimplicityLevel.FIVE_YEAR_OLD),
    ])
    def test_retry_steps_down_with_milder_instructions(self, current, expected):
        adjustment = next_level(current, make_signal(SuggestedAction.RETRY))

        assert adjustment.new_level == expected
        assert adjustment.retry_instructions == RETRY_INSTRUCTIONS
        assert "warmer" in adjustment.retry_instructions


class TestShouldAdjust:
    """Test the adjust gate sits above the confused floor."""

    def test_confident_signal_adjusts(self):
        assert should_adjust(make_signal(SuggestedAction.RETRY, confidence=0.9)) is True

    def test_gate_is_strictly_above_point_seven(self):
        assert should_adjust(make_signal(SuggestedAction.RETRY, confidence=0.7)) is False

    def test_confused_but_below_gate(self):
        """Test the 0.5-0.7 band is flagged confused but not adjusted."""
        signal = analyze("can you explain that")

        assert signal.is_confused is True
        assert signal.confidence == pytest.approx(0.7)
        assert should_adjust(signal) is False

    def test_not_confused_never_adjusts(self):
        assert should_adjust(make_signal(SuggestedAction.RETRY, confidence=0.0, confused=False)) is False


class TestSimplicityLevelOrder:
    """Test the total order on levels."""

    def test_ordering(self):
        assert SimplicityLevel.FIVE_YEAR_OLD < SimplicityLevel.NORMAL < SimplicityLevel.ADVANCED
        assert SimplicityLevel.ADVANCED >= SimplicityLevel.NORMAL

    def test_more_advanced_caps_at_ceiling(self):
        assert SimplicityLevel.NORMAL.more_advanced() == SimplicityLevel.ADVANCED
        assert SimplicityLevel.ADVANCED.more_advanced() == SimplicityLevel.ADVANCED

    def test_values(self):
        assert SimplicityLevel("5yo") == SimplicityLevel.FIVE_YEAR_OLD
