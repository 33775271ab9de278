"""
Error taxonomy for the engagement core.

Store outages, corrupted records and quota denials each have their own
exception so callers can tell "try again" apart from "upgrade required".
"""


class EngagementError(Exception):
    """Base class for all engagement core errors."""


class StoreUnavailable(EngagementError):
    """Raised when a store read or write fails for infrastructure reasons."""
    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"Store unavailable during {operation}: {cause}")
        self.operation = operation
        self.cause = cause


class InvalidState(EngagementError, ValueError):
    """Raised when a persisted record violates an invariant and cannot be healed."""


class QuotaExceeded(EngagementError):
    """Raised by the admission step when the quota gate denies a question.

    This is a normal outcome rather than a failure; the pipeline turns it
    into a paywall response.
    """
    def __init__(self, decision):
        super().__init__(decision.reason or "Question limit reached")
        self.decision = decision
