"""
Store interfaces for stalls, reservations and genres.

All reads and writes happen through a UnitOfWork obtained from a Repository.
A unit of work is one atomic transaction: it commits on clean exit and
rolls back when the block raises. Units opened with the same user_id or
stall_id are serialized against each other; nothing locks globally.

Implementations:
- SqlRepository: PostgreSQL via SQLAlchemy, row locks plus conditional UPDATE
- MemoryRepository: in-process arena with per-key asyncio locks
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from stall_booking.domain.models import (
    Genre,
    Reservation,
    ReservationStatistics,
    ReservationStatus,
    Stall,
    StallSize,
    StallStatus,
)


class StallStore(ABC):
    """Owns Stall records and their status."""

    @abstractmethod
    async def get(self, stall_id: str) -> Optional[Stall]:
        """Return a stall by ID, or None if not found."""
        ...

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Stall]:
        ...

    @abstractmethod
    async def list(
        self,
        status: Optional[StallStatus] = None,
        size: Optional[StallSize] = None,
    ) -> list[Stall]:
        """Return stalls ordered by code, optionally filtered."""
        ...

    @abstractmethod
    async def try_transition(
        self,
        stall_id: str,
        from_status: StallStatus,
        to_status: StallStatus,
    ) -> bool:
        """
        Compare-and-set the stall status.

        Returns:
            True if the stall was in from_status and is now to_status
            False if the stall is missing or in any other status (no write)
        """
        ...

    @abstractmethod
    async def set_maintenance(self, stall_id: str, on: bool) -> Stall:
        """Unconditionally move the stall to MAINTENANCE (on) or AVAILABLE (off)."""
        ...

    @abstractmethod
    async def add(
        self,
        code: str,
        size: StallSize,
        price: Decimal,
        location: Optional[str] = None,
        dimensions: Optional[str] = None,
    ) -> Stall:
        ...

    @abstractmethod
    async def update(self, stall_id: str, **fields) -> Stall:
        """Edit metadata fields (code, size, price, location, dimensions)."""
        ...

    @abstractmethod
    async def delete(self, stall_id: str) -> None:
        ...


class ReservationStore(ABC):
    """Owns Reservation records."""

    @abstractmethod
    async def insert_active(
        self,
        user_id: str,
        stall_id: str,
        amount: Decimal,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        genre_ids: tuple[str, ...] = (),
    ) -> Reservation:
        """
        Create a reservation in an active status (CONFIRMED unless told otherwise)
        and link it to the given genres. Genre IDs must already exist.
        """
        ...

    @abstractmethod
    async def count_active(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def has_active(self, user_id: str, stall_id: str) -> bool:
        ...

    @abstractmethod
    async def get(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def cancel(self, reservation_id: str) -> Reservation:
        """
        Move the reservation to CANCELLED.

        Raises:
            NotFoundError: reservation does not exist
            ConflictError: reservation is already CANCELLED
        """
        ...

    @abstractmethod
    async def list_active_for_stall(self, stall_id: str) -> list[Reservation]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Reservation]:
        """Return the user's reservations, newest first."""
        ...

    @abstractmethod
    async def list_all(self) -> list[Reservation]:
        ...

    @abstractmethod
    async def statistics(self) -> ReservationStatistics:
        """Counts by status and revenue summed over CONFIRMED reservations."""
        ...


class GenreStore(ABC):
    """Owns the genre catalogue. Names are unique."""

    @abstractmethod
    async def get(self, genre_id: str) -> Optional[Genre]:
        ...

    @abstractmethod
    async def get_by_name(self, name: str) -> Optional[Genre]:
        ...

    @abstractmethod
    async def get_many(self, genre_ids: tuple[str, ...]) -> list[Genre]:
        """Return the genres that exist among genre_ids, in the given order."""
        ...

    @abstractmethod
    async def list(self) -> list[Genre]:
        """Return every genre ordered by name."""
        ...

    @abstractmethod
    async def add(self, name: str, description: Optional[str] = None) -> Genre:
        ...

    @abstractmethod
    async def update(self, genre_id: str, **fields) -> Genre:
        """Edit name and/or description."""
        ...

    @abstractmethod
    async def delete(self, genre_id: str) -> None:
        """Remove the genre and unlink it from every reservation."""
        ...


class UnitOfWork(ABC):
    stalls: StallStore
    reservations: ReservationStore
    genres: GenreStore

    @abstractmethod
    async def __aenter__(self) -> "UnitOfWork":
        ...

    @abstractmethod
    async def __aexit__(self, exc_type, exc, tb) -> None:
        ...


class Repository(ABC):
    @abstractmethod
    def unit_of_work(
        self,
        user_id: Optional[str] = None,
        stall_id: Optional[str] = None,
    ) -> UnitOfWork:
        """
        Open an atomic unit of work.

        Args:
            user_id: serialize against other units for the same user
            stall_id: serialize against other units for the same stall
        """
        ...

    async def close(self) -> None:
        """Release pooled resources."""
