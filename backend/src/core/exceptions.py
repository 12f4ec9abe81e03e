"""
Error taxonomy for the booking engine.

Every expected failure is raised as a subclass of ``BookingEngineError`` and
rendered by the global exception handler in ``main.py`` as
``{"error": <code>, "message": <text>, **details}`` with the error's status code.
"""

from typing import Any, Dict, Optional


class BookingEngineError(Exception):
    """
    Base class for all expected booking engine failures.

    Attributes:
        error: Machine-readable error code returned to clients
        status_code: HTTP status code used by the API layer
        message: Human-readable explanation
        details: Extra fields merged into the response payload
        stage: Pipeline stage that failed (for operators), if known
    """

    error = "internal"
    status_code = 500
    default_message = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details or {}
        self.stage = stage
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.stage:
            payload["stage"] = self.stage
        payload.update(self.details)
        return payload


class NotFoundError(BookingEngineError):
    error = "not_found"
    status_code = 404
    default_message = "Resource not found"


class InactiveError(BookingEngineError):
    error = "inactive"
    status_code = 404
    default_message = "Resource is not active"


class ValidationFailedError(BookingEngineError):
    error = "validation_failed"
    status_code = 400
    default_message = "Invalid request"


class PaymentRequiredError(BookingEngineError):
    """Raised when a paid appointment type is booked without a payment."""

    error = "payment_required"
    status_code = 402
    default_message = "Payment is required for this appointment type"


class PaymentsNotConfiguredError(BookingEngineError):
    error = "payments_not_configured"
    status_code = 400
    default_message = "This business has not configured payments"


class PaymentRejectedError(BookingEngineError):
    error = "payment_rejected"
    status_code = 402
    default_message = "Payment could not be verified"


class PaymentAlreadyUsedError(BookingEngineError):
    error = "payment_already_used"
    status_code = 409
    default_message = "This payment has already been used for another booking"


class SlotTakenError(BookingEngineError):
    """Authoritative commit-time conflict. Clients should refresh availability."""

    error = "slot_taken"
    status_code = 409
    default_message = "This time slot is no longer available. Please choose another time."


class RateLimitedError(BookingEngineError):
    error = "rate_limited"
    status_code = 429
    default_message = "Too many requests. Please try again later."


class UsageLimitExceededError(BookingEngineError):
    error = "usage_limit_exceeded"
    status_code = 429
    default_message = "This business has reached its monthly booking limit"


class UpstreamTimeoutError(BookingEngineError):
    """An external provider did not answer in time; retrying may be safe."""

    error = "upstream_timeout"
    status_code = 504
    default_message = "Upstream provider timed out"


class UpstreamRejectedError(BookingEngineError):
    """An external provider answered with an error."""

    error = "upstream_rejected"
    status_code = 502
    default_message = "Upstream provider rejected the request"


class InvalidSignatureError(BookingEngineError):
    error = "invalid_signature"
    status_code = 400
    default_message = "Invalid webhook signature"


class InternalError(BookingEngineError):
    error = "internal"
    status_code = 500
    default_message = "Internal error"
