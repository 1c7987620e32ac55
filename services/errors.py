"""
Errors raised by the booking core.

Every error is terminal and user-visible: the HTTP layer renders it into
the JSON envelope and nothing is retried.
"""

from typing import Any, Dict, Optional


class BookingError(Exception):
    """Base class for all booking-core errors."""

    status_code = 400

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "error": self.code,
            "details": self.details,
        }


class ValidationError(BookingError):
    """Malformed input."""
    status_code = 400


class NotFound(BookingError):
    status_code = 404


class Forbidden(BookingError):
    """Caller has no rights over the entity."""
    status_code = 403


class InvalidTransition(BookingError):
    status_code = 409

    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Cannot move booking from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class LeadTimeViolation(InvalidTransition):
    """A legal transition attempted outside its time window."""


class ScheduleConflict(BookingError):
    status_code = 409


class HelperUnavailable(BookingError):
    status_code = 404


class InsufficientCredits(BookingError):
    status_code = 402

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}",
            details={"required": required, "available": available},
        )


class ConcurrentUpdate(BookingError):
    """Another request changed the same row first."""
    status_code = 409
