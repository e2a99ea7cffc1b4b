"""
Custom exception hierarchy for the GhostNote billing service.

All application-specific exceptions inherit from GhostNoteError, enabling
catch-all handling at the API layer while allowing fine-grained handling
in business logic. Every error carries a machine-readable ``code`` that
is returned to the caller alongside the human-readable message.
"""


class GhostNoteError(Exception):
    """Base exception for all GhostNote application errors."""

    code = "SERVER_ERROR"

    def __init__(self, message: str = "", details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ─── Request Errors ───────────────────────────────────────────


class InvalidRequestError(GhostNoteError):
    """Missing or malformed input. Rejected before any external call."""

    code = "INVALID_REQUEST"


class AuthenticationError(GhostNoteError):
    """Missing, invalid, or expired identity token."""

    code = "UNAUTHORIZED"


class ForbiddenError(GhostNoteError):
    """Verified actor is not the owner of the requested resource."""

    code = "FORBIDDEN"


class RateLimitedError(GhostNoteError):
    """Actor exceeded the request ceiling for the current window."""

    code = "RATE_LIMITED"

    def __init__(self, scope: str, limit: int, retry_after: int, **kwargs):
        self.scope = scope
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(
            message="Too many requests. Please try again later.",
            **kwargs,
        )


class AccountNotFoundError(GhostNoteError):
    """No account record exists for the requested id."""

    code = "USER_NOT_FOUND"


# ─── Lifecycle Conflicts ──────────────────────────────────────


class SubscriptionConflictError(GhostNoteError):
    """A requested transition is not valid from the current state.

    Domain-level refusal, not a system fault.
    """

    code = "CONFLICT"


class NoSubscriptionError(SubscriptionConflictError):
    """There is no live subscription to act on."""

    code = "NO_SUBSCRIPTION"


class AlreadyCancelingError(SubscriptionConflictError):
    """Cancellation is already scheduled for the end of the period."""

    code = "ALREADY_CANCELING"


class NotCancelingError(SubscriptionConflictError):
    """Resume requested but no cancellation is scheduled."""

    code = "NOT_CANCELING"


# ─── Processor Errors ─────────────────────────────────────────


class ProcessorError(GhostNoteError):
    """The payment processor rejected the call or could not be reached."""

    code = "PROCESSOR_ERROR"
    retryable = True


class ProcessorTimeoutError(ProcessorError):
    """The payment processor did not answer within the configured timeout."""

    code = "PROCESSOR_TIMEOUT"


class SubscriptionCancelFailedError(GhostNoteError):
    """
    Immediate cancellation failed during account deletion.

    The account has NOT been deleted. Raised whenever the processor side of
    a deletion cannot be confirmed, including timeouts.
    """

    code = "SUBSCRIPTION_CANCEL_FAILED"


# ─── Store Errors ─────────────────────────────────────────────


class InvariantViolationError(GhostNoteError):
    """A write would leave the account record in an impossible state."""

    code = "INVARIANT_VIOLATION"
