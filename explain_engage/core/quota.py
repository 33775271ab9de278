"""
Question quota gate.

Decides whether a user may ask another question given their tier and
current counters. The decision is read-only: counters are incremented by
the pipeline only after an answer has been generated, so denied or failed
requests never consume quota.

Policy:
1. premium - always admitted
2. starter - admitted while monthly count < starter monthly limit
3. free    - admitted while daily count < free daily limit
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import QuotaExceeded
from explain_engage.storage.models import PeriodKind, Tier

# Reported as questions_left for unlimited tiers
UNLIMITED_QUESTIONS = 999999


@dataclass(frozen=True)
class QuotaLimits:
    """Per-tier question limits."""
    free_daily_limit: int = 5
    starter_monthly_limit: int = 100

    def __post_init__(self):
        if self.free_daily_limit <= 0:
            raise ValueError("free_daily_limit must be > 0")
        if self.starter_monthly_limit <= 0:
            raise ValueError("starter_monthly_limit must be > 0")


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check."""
    can_ask: bool
    reason: Optional[str] = None
    questions_left: Optional[int] = None
    upgrade_required: Optional[Tier] = None


def gating_period(tier: Tier, limits: QuotaLimits) -> Tuple[Optional[PeriodKind], Optional[int]]:
    """The counter that gates the tier and its limit, or (None, None) if unlimited."""
    if tier == Tier.FREE:
        return PeriodKind.DAY, limits.free_daily_limit
    if tier == Tier.STARTER:
        return PeriodKind.MONTH, limits.starter_monthly_limit
    return None, None


def check_quota(
    tier: Tier,
    daily_count: int,
    monthly_count: int,
    limits: Optional[QuotaLimits] = None,
) -> QuotaDecision:
    """
    Decide whether a user on tier may ask another question.

    Args:
        tier: User's subscription tier
        daily_count: Questions already answered in the current UTC day
        monthly_count: Questions already answered in the current UTC month
        limits: Tier limits (defaults when omitted)

    Returns:
        QuotaDecision; a denial names the tier to upgrade to

    Raises:
        ValueError: If a count is negative
    """
    if daily_count < 0 or monthly_count < 0:
        raise ValueError("usage counts cannot be negative")
    limits = limits or QuotaLimits()

    if tier == Tier.PREMIUM:
        return QuotaDecision(can_ask=True, questions_left=UNLIMITED_QUESTIONS)

    if tier == Tier.STARTER:
        limit = limits.starter_monthly_limit
        if monthly_count < limit:
            return QuotaDecision(can_ask=True, questions_left=limit - monthly_count)
        return QuotaDecision(
            can_ask=False,
            reason=(
                f"Monthly limit of {limit} questions reached. "
                "Upgrade to Premium for unlimited questions."
            ),
            questions_left=0,
            upgrade_required=Tier.PREMIUM,
        )

    limit = limits.free_daily_limit
    if daily_count < limit:
        return QuotaDecision(can_ask=True, questions_left=limit - daily_count)
    return QuotaDecision(
        can_ask=False,
        reason=(
            f"Daily limit of {limit} free questions reached. "
            "Upgrade to Starter for more questions."
        ),
        questions_left=0,
        upgrade_required=Tier.STARTER,
    )


def enforce_quota(decision: QuotaDecision) -> QuotaDecision:
    """Pass an admitting decision through.

    Raises:
        QuotaExceeded: If the decision denies the question
    """
    if not decision.can_ask:
        raise QuotaExceeded(decision)
    return decision
