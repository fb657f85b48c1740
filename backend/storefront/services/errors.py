# Overview: Domain error taxonomy shared by services; routes map status_code to HTTP.

"""
Storefront domain errors.

WHY: Services raise one of these; routes return {"error": str(e)} with
e.status_code. Anything that is not a StorefrontError is an unexpected
failure and becomes a logged 500.

TAXONOMY:
- NotFoundError          404  referenced order/return/alert/cart absent
- ConflictError          409  duplicate return, duplicate alert, already-paid order
- InvalidRequestError    400  validation, wrong state for the operation
- InvalidTransitionError 400  status change not in the transition table
- PaymentVerificationError 400  signature/amount/gateway-id mismatch
- TooManyAttemptsError   429  throttled guest lookups and logins
- UpstreamError          502  payment gateway unreachable or rejected the call
"""


class StorefrontError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(StorefrontError):
    status_code = 404


class ConflictError(StorefrontError):
    status_code = 409


class InvalidRequestError(StorefrontError):
    status_code = 400


class InvalidTransitionError(InvalidRequestError):
    """Raised when a status change is not allowed from the current status."""


class PaymentVerificationError(InvalidRequestError):
    """
    Payment callback rejected.

    The message is deliberately vague for clients; the specific reason is
    carried separately and only logged.
    """

    CLIENT_MESSAGE = "Payment verification failed. Please contact support."

    def __init__(self, reason: str):
        super().__init__(self.CLIENT_MESSAGE)
        self.reason = reason


class TooManyAttemptsError(StorefrontError):
    status_code = 429

    def __init__(self, message: str, *, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(StorefrontError):
    status_code = 502
