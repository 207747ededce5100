"""
Domain values shared by every store implementation.

Stores return these frozen dataclasses rather than ORM rows, so the
allocation engine behaves the same over PostgreSQL and over the in-memory
arena used by the tests.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class StallSize(str, Enum):
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"


class StallStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    MAINTENANCE = "MAINTENANCE"


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"

    @property
    def is_active(self) -> bool:
        return self is not ReservationStatus.CANCELLED


ACTIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class IdentityContext:
    """Caller identity supplied by the auth collaborator. Trusted as-is."""

    user_id: str
    role: Role = Role.USER
    email: Optional[str] = None
    name: Optional[str] = None
    business_name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass(frozen=True)
class Genre:
    """Catalogue label an exhibitor attaches to a reservation (e.g. Fiction)."""

    id: str
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Stall:
    id: str
    code: str
    size: StallSize
    price: Decimal
    status: StallStatus = StallStatus.AVAILABLE
    location: Optional[str] = None
    dimensions: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Reservation:
    id: str
    user_id: str
    stall_id: str
    total_amount: Decimal
    status: ReservationStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Snapshot of the stall at the time the reservation was read or written
    stall: Optional[Stall] = field(default=None, compare=False)
    genres: tuple[Genre, ...] = field(default=(), compare=False)

    @property
    def is_active(self) -> bool:
        return self.status.is_active


@dataclass(frozen=True)
class ReservationStatistics:
    total: int
    pending: int
    confirmed: int
    cancelled: int
    total_revenue: Decimal


@dataclass(frozen=True)
class StallStatistics:
    total: int
    available: int
    reserved: int
    maintenance: int
    small: int
    medium: int
    large: int
