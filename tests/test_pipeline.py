"""
Unit tests for the per-question pipeline.

Tests fail-closed admission, level adjustment, generation failure and the
best-effort bookkeeping that follows a successful answer.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import date
from unittest.mock import MagicMock, Mock

import pytest

from explain_engage.config.loader import RetryConfig
from explain_engage.core.adjuster import SIMPLIFY_INSTRUCTIONS
from explain_engage.core.errors import InvalidState, StoreUnavailable
from explain_engage.core.pipeline import (
    GENERATION_FAILED_MESSAGE,
    TRY_AGAIN_MESSAGE,
    ExplanationPipeline,
    GenerationRequest,
    OutcomeStatus,
)
from explain_engage.core.quota import QuotaLimits
from explain_engage.storage.catalog import seed_achievements
from explain_engage.storage.models import PeriodKind, SimplicityLevel, StreakRecord, Tier
from explain_engage.storage.repository import EngagementRepository

TODAY = date(2025, 1, 11)


def unavailable(operation="test"):
    return StoreUnavailable(operation, sqlite3.OperationalError("database is locked"))


class TestPipelineWithStore:
    """Test the pipeline against a real SQLite store."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        self.repository = EngagementRepository(self.db_path)
        self.repository.initialize_schema()
        seed_achievements(self.repository)
        self.sleep = Mock()
        self.pipeline = ExplanationPipeline(
            self.repository,
            limits=QuotaLimits(free_daily_limit=5, starter_monthly_limit=100),
            sleep=self.sleep,
        )
        self.generate = Mock(return_value="Plants eat sunlight.")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _ask(self, user_id="u1", tier=Tier.FREE, message="How do plants grow?", **kwargs):
        kwargs.setdefault("current_level", SimplicityLevel.NORMAL)
        kwargs.setdefault("today", TODAY)
        return self.pipeline.ask(user_id, tier, message, generate=self.generate, **kwargs)

    def test_answered_question_updates_everything(self):
        outcome = self._ask(topic="Plants")

        assert outcome.status == OutcomeStatus.ANSWERED
        assert outcome.answer == "Plants eat sunlight."
        assert outcome.decision.questions_left == 5
        assert outcome.failed_steps == []
        assert self.repository.current_count("u1", PeriodKind.DAY, "2025-01-11") == 1
        assert self.repository.current_count("u1", PeriodKind.MONTH, "2025-01") == 1
        assert outcome.streak.current_streak == 1
        assert [a.id for a in outcome.new_achievements] == ["first-question"]
        assert self.repository.get_learning_stats("u1").unique_topics == 1

    def test_generator_receives_level(self):
        self._ask(current_level=SimplicityLevel.ADVANCED)

        request = self.generate.call_args[0][0]
        assert request == GenerationRequest("How do plants grow?", SimplicityLevel.ADVANCED, None)

    def test_free_user_denied_at_limit(self):
        for _ in range(5):
            self.repository.increment_counter("u1", PeriodKind.DAY, "2025-01-11")

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.DENIED
        assert outcome.decision.upgrade_required == Tier.STARTER
        assert "Daily limit" in outcome.message
        self.generate.assert_not_called()
        assert self.repository.current_count("u1", PeriodKind.DAY, "2025-01-11") == 5

    def test_yesterdays_usage_does_not_deny(self):
        for _ in range(5):
            self.repository.increment_counter("u1", PeriodKind.DAY, "2025-01-10")

        assert self._ask().status == OutcomeStatus.ANSWERED

    def test_starter_gated_monthly(self):
        for _ in range(100):
            self.repository.increment_counter("u1", PeriodKind.MONTH, "2025-01")

        outcome = self._ask(tier=Tier.STARTER)

        assert outcome.status == OutcomeStatus.DENIED
        assert outcome.decision.upgrade_required == Tier.PREMIUM

    def test_premium_counts_tracked_but_never_denied(self):
        for _ in range(3):
            outcome = self._ask(tier=Tier.PREMIUM)
            assert outcome.status == OutcomeStatus.ANSWERED

        assert self.repository.current_count("u1", PeriodKind.MONTH, "2025-01") == 3

    def test_generation_exception_skips_bookkeeping(self):
        self.generate.side_effect = RuntimeError("model down")

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.message == GENERATION_FAILED_MESSAGE
        assert self.repository.current_count("u1", PeriodKind.DAY, "2025-01-11") == 0
        assert self.repository.get_streak("u1") is None
        assert self.repository.list_unlocks("u1") == []

    @pytest.mark.parametrize("answer", [None, False])
    def test_empty_generation_is_failure(self, answer):
        self.generate.return_value = answer

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.FAILED
        assert self.repository.current_count("u1", PeriodKind.DAY, "2025-01-11") == 0

    def test_confused_follow_up_simplifies(self):
        outcome = self._ask(
            message="That's too complicated, make it simpler",
            current_level=SimplicityLevel.ADVANCED,
        )

        assert outcome.level == SimplicityLevel.NORMAL
        assert outcome.retry_instructions == SIMPLIFY_INSTRUCTIONS
        request = self.generate.call_args[0][0]
        assert request.level == SimplicityLevel.NORMAL
        assert request.retry_instructions == SIMPLIFY_INSTRUCTIONS

    def test_analogy_request_keeps_level(self):
        outcome = self._ask(
            message="that is too hard, give me a different example",
            current_level=SimplicityLevel.ADVANCED,
        )

        assert outcome.level == SimplicityLevel.ADVANCED
        assert outcome.signal.suggested_action.value == "different_analogy"

    def test_mild_confusion_keeps_level(self):
        """Test a 0.7 signal is confused but below the adjust gate."""
        outcome = self._ask(message="can you explain that", current_level=SimplicityLevel.ADVANCED)

        assert outcome.signal.is_confused is True
        assert outcome.level == SimplicityLevel.ADVANCED
        assert outcome.retry_instructions is None

    def test_repeated_question_simplifies(self):
        outcome = self._ask(
            message="how do plants grow in the dark",
            previous_question="how do plants grow in the dark?",
            current_level=SimplicityLevel.NORMAL,
        )

        assert outcome.level == SimplicityLevel.FIVE_YEAR_OLD

    def test_same_day_questions_keep_streak(self):
        self._ask()
        outcome = self._ask()

        assert outcome.streak.current_streak == 1
        assert outcome.streak.changed is False
        assert outcome.new_achievements == []

    def test_streak_continues_next_day(self):
        self.repository.upsert_streak(StreakRecord("u1", 6, 10, date(2025, 1, 10)))

        outcome = self._ask()

        assert outcome.streak.current_streak == 7
        assert outcome.streak.milestone_value == 7

    def test_soft_limit_race_admits_both(self):
        """Test two checks that both see the last free slot are both answered."""
        for _ in range(4):
            self.repository.increment_counter("u1", PeriodKind.DAY, "2025-01-11")
        first = self.pipeline._admit("u1", Tier.FREE, TODAY)
        second = self.pipeline._admit("u1", Tier.FREE, TODAY)

        assert first.can_ask and second.can_ask
        self.repository.increment_counter("u1", PeriodKind.DAY, "2025-01-11")
        self.repository.increment_counter("u1", PeriodKind.DAY, "2025-01-11")

        assert self.repository.current_count("u1", PeriodKind.DAY, "2025-01-11") == 6
        assert self._ask().status == OutcomeStatus.DENIED


class TestPipelineFailures:
    """Test store failures with a mocked repository."""

    def setup_method(self):
        self.repository = MagicMock()
        self.repository.current_count.return_value = 0
        self.sleep = Mock()
        self.pipeline = ExplanationPipeline(
            self.repository,
            retry=RetryConfig(max_attempts=3, initial_delay=0.1, backoff=2.0),
            sleep=self.sleep,
        )
        self.pipeline.streaks = Mock()
        self.pipeline.achievements = Mock()
        self.pipeline.achievements.check_all.return_value = []
        self.generate = Mock(return_value="answer")

    def _ask(self, tier=Tier.FREE):
        return self.pipeline.ask(
            "u1", tier, "Why is the sky blue?", SimplicityLevel.NORMAL, self.generate, today=TODAY
        )

    @pytest.mark.parametrize("tier", list(Tier))
    def test_unreadable_counters_fail_closed(self, tier):
        """Test an unreadable store denies every tier, premium included."""
        self.repository.current_count.side_effect = unavailable("get_counter")

        outcome = self._ask(tier)

        assert outcome.status == OutcomeStatus.UNAVAILABLE
        assert outcome.message == TRY_AGAIN_MESSAGE
        self.generate.assert_not_called()

    def test_transient_failure_is_retried(self):
        self.repository.increment_counter.side_effect = [unavailable(), unavailable(), 1, 1]

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.ANSWERED
        assert outcome.failed_steps == []
        assert self.repository.increment_counter.call_count == 4
        assert [c[0][0] for c in self.sleep.call_args_list] == [pytest.approx(0.1), pytest.approx(0.2)]

    def test_exhausted_retries_keep_answer(self):
        """Test a bookkeeping step that keeps failing is reported, not raised."""
        self.repository.record_question_activity.side_effect = unavailable()

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.ANSWERED
        assert outcome.answer == "answer"
        assert outcome.failed_steps == ["record_activity"]
        assert self.repository.record_question_activity.call_count == 3
        self.pipeline.streaks.record_activity.assert_called_once_with("u1", TODAY)

    def test_invalid_state_is_not_retried(self):
        self.pipeline.streaks.record_activity.side_effect = InvalidState("corrupt streak")

        outcome = self._ask()

        assert outcome.status == OutcomeStatus.ANSWERED
        assert outcome.streak is None
        assert outcome.failed_steps == ["update_streak"]
        assert self.pipeline.streaks.record_activity.call_count == 1
        self.sleep.assert_not_called()

    def test_failed_steps_are_independent(self):
        self.repository.increment_counter.side_effect = unavailable()
        self.pipeline.achievements.check_all.side_effect = unavailable()

        outcome = self._ask()

        assert outcome.failed_steps == ["increment_day", "increment_month", "check_achievements"]
        assert outcome.new_achievements == []


class FlakyUnlockRepository(EngagementRepository):
    """Store whose unlock insert number fail_on raises StoreUnavailable once."""

    def __init__(self, db_path, fail_on=2):
        super().__init__(db_path)
        self.fail_on = fail_on
        self.unlock_calls = 0

    def insert_unlock_if_absent(self, user_id, achievement_id, unlocked_at=None):
        self.unlock_calls += 1
        if self.unlock_calls == self.fail_on:
            raise unavailable("insert_unlock_if_absent")
        return super().insert_unlock_if_absent(user_id, achievement_id, unlocked_at)


class TestAchievementRetry:
    """Test unlocks survive a retried achievement check."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.repository = FlakyUnlockRepository(os.path.join(self.temp_dir, "test.db"))
        self.repository.initialize_schema()
        seed_achievements(self.repository)
        self.sleep = Mock()
        self.pipeline = ExplanationPipeline(self.repository, sleep=self.sleep)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_unlock_before_failure_is_reported(self):
        """Test an unlock inserted before a mid-check outage still reaches the outcome."""
        outcome = self.pipeline.ask(
            "u1", Tier.FREE, "Why is the sky blue?", SimplicityLevel.NORMAL,
            Mock(return_value="answer"), is_voice_input=True, today=TODAY,
        )

        stored = {u.achievement_id for u in self.repository.list_unlocks("u1")}
        assert stored == {"first-question", "voice-used"}
        assert [a.id for a in outcome.new_achievements] == ["first-question", "voice-used"]
        assert outcome.failed_steps == []
        self.sleep.assert_called_once()
