"""
Per-question control flow.

Ties the engagement components together for one inbound question:

1. Read usage counters - an unreadable store fails closed (UNAVAILABLE)
2. Quota gate - a denial short-circuits with the upgrade target (DENIED)
3. Confusion analysis and, above the adjust gate, level adjustment
4. Answer generation by the external generator (FAILED if it raises or
   returns nothing)
5. Only after a successful answer: usage increments, activity, streak and
   achievements, each retried a bounded number of times. Failures here
   are logged and reported but never take the answer away.
"""

import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog

from .achievements import AchievementEngine
from .adjuster import next_level, should_adjust
from .confusion import ConfusionSignal, analyze
from .errors import InvalidState, QuotaExceeded, StoreUnavailable
from .periods import period_key, utc_today
from .quota import QuotaDecision, QuotaLimits, check_quota, enforce_quota
from .streak import StreakTracker, StreakUpdate
from explain_engage.config.loader import RetryConfig
from explain_engage.storage.models import Achievement, PeriodKind, SimplicityLevel, Tier
from explain_engage.storage.repository import EngagementRepository

logger = structlog.get_logger(__name__)

TRY_AGAIN_MESSAGE = "We couldn't check your usage right now. Please try again in a moment."
GENERATION_FAILED_MESSAGE = "Something went wrong while explaining. Please try again."


class OutcomeStatus(Enum):
    ANSWERED = "answered"
    DENIED = "denied"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationRequest:
    """What the generator needs to produce the next answer."""
    question: str
    level: SimplicityLevel
    retry_instructions: Optional[str] = None


@dataclass
class QuestionOutcome:
    """Everything the API layer needs to respond to one question."""
    status: OutcomeStatus
    decision: Optional[QuotaDecision] = None
    signal: Optional[ConfusionSignal] = None
    level: Optional[SimplicityLevel] = None
    retry_instructions: Optional[str] = None
    answer: Any = None
    streak: Optional[StreakUpdate] = None
    new_achievements: List[Achievement] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    message: Optional[str] = None


Generator = Callable[[GenerationRequest], Any]


class ExplanationPipeline:
    """Runs quota, adaptation and engagement bookkeeping around one answer."""

    def __init__(
        self,
        repository: EngagementRepository,
        limits: Optional[QuotaLimits] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.repository = repository
        self.limits = limits or QuotaLimits()
        self.retry = retry or RetryConfig()
        self.streaks = StreakTracker(repository)
        self.achievements = AchievementEngine(repository)
        self._sleep = sleep

    def ask(
        self,
        user_id: str,
        tier: Tier,
        message: str,
        current_level: SimplicityLevel,
        generate: Generator,
        previous_question: Optional[str] = None,
        topic: Optional[str] = None,
        is_follow_up: bool = False,
        is_voice_input: bool = False,
        today: Optional[date] = None,
    ) -> QuestionOutcome:
        """Handle one question end to end.

        Args:
            user_id: Asking user
            tier: User's tier as reported by billing
            message: The new user message
            current_level: Level the conversation is currently at
            generate: Produces the answer; raising or returning None is a failure
            previous_question: Question the last answer responded to
            topic: Topic of the question, for learning stats
            is_follow_up: Whether this is a suggested follow-up question
            is_voice_input: Whether the question was dictated
            today: UTC date of the request (defaults to now)

        Returns:
            QuestionOutcome describing what happened
        """
        today = today or utc_today()

        try:
            decision = self._admit(user_id, tier, today)
        except StoreUnavailable as e:
            logger.warning("quota_check_unavailable", user_id=user_id, tier=tier.value, error=str(e))
            return QuestionOutcome(status=OutcomeStatus.UNAVAILABLE, message=TRY_AGAIN_MESSAGE)
        except QuotaExceeded as e:
            logger.info(
                "quota_denied",
                user_id=user_id,
                tier=tier.value,
                upgrade_required=e.decision.upgrade_required.value,
            )
            return QuestionOutcome(status=OutcomeStatus.DENIED, decision=e.decision, message=e.decision.reason)

        signal = analyze(message, previous_question)
        level = current_level
        retry_instructions = None
        if should_adjust(signal):
            adjustment = next_level(current_level, signal)
            level = adjustment.new_level
            retry_instructions = adjustment.retry_instructions
            logger.info(
                "level_adjusted",
                user_id=user_id,
                action=signal.suggested_action.value,
                confidence=signal.confidence,
                from_level=current_level.value,
                to_level=level.value,
            )

        outcome = QuestionOutcome(
            status=OutcomeStatus.FAILED,
            decision=decision,
            signal=signal,
            level=level,
            retry_instructions=retry_instructions,
        )

        request = GenerationRequest(question=message, level=level, retry_instructions=retry_instructions)
        try:
            answer = generate(request)
        except Exception as e:
            logger.error("generation_failed", user_id=user_id, error=str(e))
            outcome.message = GENERATION_FAILED_MESSAGE
            return outcome
        if answer is None or answer is False:
            logger.error("generation_failed", user_id=user_id, error="no answer returned")
            outcome.message = GENERATION_FAILED_MESSAGE
            return outcome

        outcome.status = OutcomeStatus.ANSWERED
        outcome.answer = answer
        self._record_success(outcome, user_id, today, topic, is_follow_up, is_voice_input)
        return outcome

    def _admit(self, user_id: str, tier: Tier, today: date) -> QuotaDecision:
        daily_count = self.repository.current_count(
            user_id, PeriodKind.DAY, period_key(PeriodKind.DAY, today)
        )
        monthly_count = self.repository.current_count(
            user_id, PeriodKind.MONTH, period_key(PeriodKind.MONTH, today)
        )
        return enforce_quota(check_quota(tier, daily_count, monthly_count, self.limits))

    def _record_success(
        self,
        outcome: QuestionOutcome,
        user_id: str,
        today: date,
        topic: Optional[str],
        is_follow_up: bool,
        is_voice_input: bool,
    ) -> None:
        for kind in (PeriodKind.DAY, PeriodKind.MONTH):
            self._best_effort(
                outcome,
                f"increment_{kind.value}",
                user_id,
                self.repository.increment_counter,
                user_id,
                kind,
                period_key(kind, today),
            )

        self._best_effort(
            outcome,
            "record_activity",
            user_id,
            self.repository.record_question_activity,
            user_id,
            today,
            topic=topic,
            level=outcome.level,
            is_follow_up=is_follow_up,
            is_voice_input=is_voice_input,
        )

        outcome.streak = self._best_effort(
            outcome, "update_streak", user_id, self.streaks.record_activity, user_id, today
        )

        # Retries re-run check_all; unlocks from a failed attempt stay on the outcome
        self._best_effort(
            outcome,
            "check_achievements",
            user_id,
            self.achievements.check_all,
            user_id,
            unlocked=outcome.new_achievements,
        )

    def _best_effort(self, outcome: QuestionOutcome, step: str, user_id: str, func, *args, **kwargs):
        """Run a bookkeeping step with bounded retries on store outages.

        Corrupt records are not retried.

        Returns the step's result, or None after the last attempt fails, in
        which case the step name is added to outcome.failed_steps.
        """
        delay = self.retry.initial_delay
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return func(*args, **kwargs)
            except InvalidState as e:
                logger.error("bookkeeping_invalid_state", step=step, user_id=user_id, error=str(e))
                outcome.failed_steps.append(step)
                return None
            except StoreUnavailable as e:
                if attempt == self.retry.max_attempts:
                    logger.error(
                        "bookkeeping_failed",
                        step=step,
                        user_id=user_id,
                        attempts=attempt,
                        error=str(e),
                    )
                    outcome.failed_steps.append(step)
                    return None
                logger.warning("bookkeeping_retry", step=step, user_id=user_id, attempt=attempt, error=str(e))
                self._sleep(delay)
                delay *= self.retry.backoff
        return None
