"""
Domain exceptions for the booking engine.

Raised in the services layer and translated to JSON responses by the
handlers registered in app.main. Queue-side provider failures are recorded
on the task and never reach a request handler.
"""

from typing import Any, Optional


class BookingError(Exception):
    """Base exception for all booking engine errors."""

    status_code = 400
    code = "BOOKING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(BookingError):
    """Raised for malformed input, before any side effect."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidStatusTransition(ValidationError):
    """Raised when a reservation cannot move from its current status."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot transition reservation from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class PolicyViolation(BookingError):
    """Raised when a request breaks store temporal policy."""

    status_code = 422

    ADVANCE_BOOKING_EXCEEDED = "ADVANCE_BOOKING_EXCEEDED"
    LEAD_TIME_NOT_MET = "LEAD_TIME_NOT_MET"
    PAST_START_TIME = "PAST_START_TIME"
    CANCEL_DEADLINE_PASSED = "CANCEL_DEADLINE_PASSED"

    def __init__(self, reason: str, message: str, details: Optional[dict] = None):
        super().__init__(message, code=reason, details=details)
        self.reason = reason


class ConflictError(BookingError):
    """Raised when the staff member is already booked for the interval."""

    status_code = 409
    code = "SLOT_CONFLICT"


class NotFoundError(BookingError):
    """Raised for unknown staff, store, reservation or task."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        message = (
            f"{resource} {identifier} not found"
            if identifier is not None
            else f"{resource} not found"
        )
        super().__init__(
            message,
            details={
                "resource": resource,
                "id": str(identifier) if identifier is not None else None,
            },
        )


class ExternalProviderError(Exception):
    """Raised by calendar clients. Only ever handled inside the sync queue.

    Transport failures, 429 and 5xx responses are retryable by default; any
    other HTTP status means retrying the same request will not help.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        if retryable is None:
            retryable = status_code is None or status_code == 429 or status_code >= 500
        self.retryable = retryable
