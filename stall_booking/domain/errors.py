"""
Domain error taxonomy.

Every error carries a stable ``code`` so callers can tell a lost race
(pick another stall) from a quota hit (stop trying) from a permission
problem (do not retry). The HTTP layer maps ``status_code`` directly.
"""

from enum import Enum


class ErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ALREADY_BOOKED = "already_booked"
    QUOTA_EXCEEDED = "quota_exceeded"
    FORBIDDEN = "forbidden"
    VALIDATION_ERROR = "validation_error"
    NOTIFICATION_FAILURE = "notification_failure"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.CONFLICT
    status_code: int = 409

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(DomainError):
    """Lost allocation race, unavailable stall, or double cancel."""

    code = ErrorCode.CONFLICT
    status_code = 409


class AlreadyBookedError(ConflictError):
    code = ErrorCode.ALREADY_BOOKED

    def __init__(self, stall_id: str) -> None:
        super().__init__("You have already booked this stall")
        self.stall_id = stall_id


class QuotaExceededError(DomainError):
    code = ErrorCode.QUOTA_EXCEEDED
    status_code = 400

    def __init__(self, limit: int) -> None:
        super().__init__(f"You have reached the maximum limit of {limit} active reservations")
        self.limit = limit


class ForbiddenError(DomainError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class ValidationError(DomainError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class NotificationFailure(DomainError):
    """Confirmation delivery failed. Only surfaced on explicit resends."""

    code = ErrorCode.NOTIFICATION_FAILURE
    status_code = 502
