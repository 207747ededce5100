from stall_booking.domain.errors import (
    AlreadyBookedError,
    ConflictError,
    DomainError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    NotificationFailure,
    QuotaExceededError,
    ValidationError,
)
from stall_booking.domain.models import (
    ACTIVE_RESERVATION_STATUSES,
    IdentityContext,
    Reservation,
    ReservationStatistics,
    ReservationStatus,
    Role,
    Stall,
    StallSize,
    StallStatistics,
    StallStatus,
)

__all__ = [
    "ACTIVE_RESERVATION_STATUSES",
    "AlreadyBookedError",
    "ConflictError",
    "DomainError",
    "ErrorCode",
    "ForbiddenError",
    "IdentityContext",
    "NotFoundError",
    "NotificationFailure",
    "QuotaExceededError",
    "Reservation",
    "ReservationStatistics",
    "ReservationStatus",
    "Role",
    "Stall",
    "StallSize",
    "StallStatistics",
    "StallStatus",
    "ValidationError",
]
