"""
In-memory arena implementation of the store interfaces.

Used by the test-suite and by single-process deployments
(STORE_BACKEND=memory). All state lives in one MemoryArena instance that is
injected, never module-global, so every test gets a fresh arena.

CONCURRENCY STRATEGY: per-key locks plus staged writes
=======================================================

- A unit of work acquires the user lock, then the stall lock, and holds
  them until it commits or rolls back. The fixed order rules out deadlock.
- A key's lock exists only while some unit holds or waits for it, so the
  registries stay bounded by the number of in-flight units, not by the
  number of IDs ever requested.
- Writes are staged on the unit and applied to the arena only on a clean
  exit, so a failed unit leaves no partial reservation or stale stall status
  and readers never see uncommitted state.
- Each store call yields to the event loop once, the way a database round
  trip would, so concurrent requests genuinely interleave.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from stall_booking.domain.errors import ConflictError, NotFoundError, ValidationError
from stall_booking.domain.models import (
    Genre,
    Reservation,
    ReservationStatistics,
    ReservationStatus,
    Stall,
    StallSize,
    StallStatus,
)
from stall_booking.services.interfaces.stores import (
    GenreStore,
    Repository,
    ReservationStore,
    StallStore,
    UnitOfWork,
)

_STALL_FIELDS = {"code", "size", "price", "location", "dimensions"}
_GENRE_FIELDS = {"name", "description"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    async def acquire(self, key: str) -> None:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(key)
            raise

    def release(self, key: str) -> None:
        self._locks[key].release()
        self._forget(key)

    def _forget(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]


class MemoryArena:
    """Committed state plus the lock registries."""

    def __init__(self) -> None:
        self.stalls: dict[str, Stall] = {}
        # Insertion order doubles as creation order
        self.reservations: dict[str, Reservation] = {}
        self.genres: dict[str, Genre] = {}
        self.reservation_genres: dict[str, tuple[str, ...]] = {}
        self._stall_locks = KeyedLocks()
        self._user_locks = KeyedLocks()


class MemoryUnitOfWork(UnitOfWork):
    def __init__(
        self,
        arena: MemoryArena,
        user_id: Optional[str] = None,
        stall_id: Optional[str] = None,
    ) -> None:
        self._arena = arena
        self._user_id = user_id
        self._stall_id = stall_id
        self._held: list[tuple[KeyedLocks, str]] = []
        # None marks a staged delete
        self._stall_writes: dict[str, Optional[Stall]] = {}
        self._reservation_writes: dict[str, Optional[Reservation]] = {}
        self._genre_writes: dict[str, Optional[Genre]] = {}
        self._link_writes: dict[str, Optional[tuple[str, ...]]] = {}
        self.stalls = MemoryStallStore(self)
        self.reservations = MemoryReservationStore(self)
        self.genres = MemoryGenreStore(self)

    async def __aenter__(self) -> MemoryUnitOfWork:
        wanted = []
        if self._user_id is not None:
            wanted.append((self._arena._user_locks, self._user_id))
        if self._stall_id is not None:
            wanted.append((self._arena._stall_locks, self._stall_id))

        try:
            for registry, key in wanted:
                await registry.acquire(key)
                self._held.append((registry, key))
        except BaseException:
            self._release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self._commit()
        finally:
            self._stall_writes.clear()
            self._reservation_writes.clear()
            self._genre_writes.clear()
            self._link_writes.clear()
            self._release()

    def _commit(self) -> None:
        _apply(self._arena.stalls, self._stall_writes)
        _apply(self._arena.genres, self._genre_writes)
        _apply(self._arena.reservation_genres, self._link_writes)
        for reservation_id, reservation in self._reservation_writes.items():
            if reservation is None:
                self._arena.reservations.pop(reservation_id, None)
            else:
                self._arena.reservations[reservation_id] = replace(
                    reservation, stall=None, genres=()
                )

    def _release(self) -> None:
        while self._held:
            registry, key = self._held.pop()
            registry.release(key)

    # Merged views: staged writes shadow committed state

    def read_stall(self, stall_id: str) -> Optional[Stall]:
        if stall_id in self._stall_writes:
            return self._stall_writes[stall_id]
        return self._arena.stalls.get(stall_id)

    def all_stalls(self) -> list[Stall]:
        return _merged(self._arena.stalls, self._stall_writes)

    def stage_stall(self, stall: Stall) -> None:
        self._stall_writes[stall.id] = stall

    def stage_stall_delete(self, stall_id: str) -> None:
        self._stall_writes[stall_id] = None

    def read_reservation(self, reservation_id: str) -> Optional[Reservation]:
        if reservation_id in self._reservation_writes:
            return self._reservation_writes[reservation_id]
        return self._arena.reservations.get(reservation_id)

    def all_reservations(self) -> list[Reservation]:
        return _merged(self._arena.reservations, self._reservation_writes)

    def stage_reservation(self, reservation: Reservation) -> None:
        self._reservation_writes[reservation.id] = reservation

    def stage_reservation_delete(self, reservation_id: str) -> None:
        self._reservation_writes[reservation_id] = None
        self._link_writes[reservation_id] = None

    def read_genre(self, genre_id: str) -> Optional[Genre]:
        if genre_id in self._genre_writes:
            return self._genre_writes[genre_id]
        return self._arena.genres.get(genre_id)

    def all_genres(self) -> list[Genre]:
        return _merged(self._arena.genres, self._genre_writes)

    def stage_genre(self, genre: Genre) -> None:
        self._genre_writes[genre.id] = genre

    def stage_genre_delete(self, genre_id: str) -> None:
        self._genre_writes[genre_id] = None

    def read_links(self, reservation_id: str) -> tuple[str, ...]:
        if reservation_id in self._link_writes:
            return self._link_writes[reservation_id] or ()
        return self._arena.reservation_genres.get(reservation_id, ())

    def stage_links(self, reservation_id: str, genre_ids: tuple[str, ...]) -> None:
        self._link_writes[reservation_id] = genre_ids

    def hydrate(self, reservation: Reservation) -> Reservation:
        """Attach the current stall and the still-existing linked genres, by name."""
        genres = [self.read_genre(genre_id) for genre_id in self.read_links(reservation.id)]
        return replace(
            reservation,
            stall=self.read_stall(reservation.stall_id),
            genres=tuple(sorted((g for g in genres if g is not None), key=lambda g: g.name)),
        )


def _apply(committed: dict, writes: dict) -> None:
    for key, value in writes.items():
        if value is None:
            committed.pop(key, None)
        else:
            committed[key] = value


def _merged(committed: dict, writes: dict) -> list:
    merged = dict(committed)
    merged.update(writes)
    return [value for value in merged.values() if value is not None]


class MemoryStallStore(StallStore):
    def __init__(self, uow: MemoryUnitOfWork) -> None:
        self._uow = uow

    async def get(self, stall_id: str) -> Optional[Stall]:
        await asyncio.sleep(0)
        return self._uow.read_stall(stall_id)

    async def get_by_code(self, code: str) -> Optional[Stall]:
        await asyncio.sleep(0)
        for stall in self._uow.all_stalls():
            if stall.code == code:
                return stall
        return None

    async def list(
        self,
        status: Optional[StallStatus] = None,
        size: Optional[StallSize] = None,
    ) -> list[Stall]:
        await asyncio.sleep(0)
        stalls = [
            stall
            for stall in self._uow.all_stalls()
            if (status is None or stall.status == status) and (size is None or stall.size == size)
        ]
        return sorted(stalls, key=lambda s: s.code)

    async def try_transition(
        self,
        stall_id: str,
        from_status: StallStatus,
        to_status: StallStatus,
    ) -> bool:
        await asyncio.sleep(0)
        # Check and stage without yielding in between
        current = self._uow.read_stall(stall_id)
        if current is None or current.status != from_status:
            return False
        self._uow.stage_stall(replace(current, status=to_status, updated_at=_now()))
        return True

    async def set_maintenance(self, stall_id: str, on: bool) -> Stall:
        await asyncio.sleep(0)
        current = self._uow.read_stall(stall_id)
        if current is None:
            raise NotFoundError("Stall", stall_id)
        status = StallStatus.MAINTENANCE if on else StallStatus.AVAILABLE
        updated = replace(current, status=status, updated_at=_now())
        self._uow.stage_stall(updated)
        return updated

    async def add(
        self,
        code: str,
        size: StallSize,
        price: Decimal,
        location: Optional[str] = None,
        dimensions: Optional[str] = None,
    ) -> Stall:
        await asyncio.sleep(0)
        if any(stall.code == code for stall in self._uow.all_stalls()):
            raise ConflictError(f"Stall with code '{code}' already exists")
        now = _now()
        stall = Stall(
            id=str(uuid.uuid4()),
            code=code,
            size=StallSize(size),
            price=Decimal(price),
            status=StallStatus.AVAILABLE,
            location=location,
            dimensions=dimensions,
            created_at=now,
            updated_at=now,
        )
        self._uow.stage_stall(stall)
        return stall

    async def update(self, stall_id: str, **fields) -> Stall:
        await asyncio.sleep(0)
        unknown = set(fields) - _STALL_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update stall fields: {', '.join(sorted(unknown))}")

        current = self._uow.read_stall(stall_id)
        if current is None:
            raise NotFoundError("Stall", stall_id)

        code = fields.get("code")
        if code is not None and code != current.code:
            if any(s.code == code for s in self._uow.all_stalls() if s.id != stall_id):
                raise ConflictError(f"Stall with code '{code}' already exists")

        updated = replace(current, **fields, updated_at=_now())
        self._uow.stage_stall(updated)
        return updated

    async def delete(self, stall_id: str) -> None:
        await asyncio.sleep(0)
        if self._uow.read_stall(stall_id) is None:
            raise NotFoundError("Stall", stall_id)
        # Reservation history goes with the stall
        for reservation in self._uow.all_reservations():
            if reservation.stall_id == stall_id:
                self._uow.stage_reservation_delete(reservation.id)
        self._uow.stage_stall_delete(stall_id)


class MemoryReservationStore(ReservationStore):
    def __init__(self, uow: MemoryUnitOfWork) -> None:
        self._uow = uow

    async def insert_active(
        self,
        user_id: str,
        stall_id: str,
        amount: Decimal,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        genre_ids: tuple[str, ...] = (),
    ) -> Reservation:
        await asyncio.sleep(0)
        if not ReservationStatus(status).is_active:
            raise ValidationError("New reservations must start in an active status")
        missing = [genre_id for genre_id in genre_ids if self._uow.read_genre(genre_id) is None]
        if missing:
            raise NotFoundError("Genre", missing[0])

        now = _now()
        reservation = Reservation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            stall_id=stall_id,
            total_amount=Decimal(amount),
            status=ReservationStatus(status),
            created_at=now,
            updated_at=now,
        )
        self._uow.stage_reservation(reservation)
        if genre_ids:
            self._uow.stage_links(reservation.id, tuple(genre_ids))
        return self._uow.hydrate(reservation)

    async def count_active(self, user_id: str) -> int:
        await asyncio.sleep(0)
        return sum(
            1 for r in self._uow.all_reservations() if r.user_id == user_id and r.is_active
        )

    async def has_active(self, user_id: str, stall_id: str) -> bool:
        await asyncio.sleep(0)
        return any(
            r.user_id == user_id and r.stall_id == stall_id and r.is_active
            for r in self._uow.all_reservations()
        )

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        await asyncio.sleep(0)
        reservation = self._uow.read_reservation(reservation_id)
        if reservation is None:
            return None
        return self._uow.hydrate(reservation)

    async def cancel(self, reservation_id: str) -> Reservation:
        await asyncio.sleep(0)
        current = self._uow.read_reservation(reservation_id)
        if current is None:
            raise NotFoundError("Reservation", reservation_id)
        if current.status == ReservationStatus.CANCELLED:
            raise ConflictError("Reservation is already cancelled")
        cancelled = replace(current, status=ReservationStatus.CANCELLED, updated_at=_now())
        self._uow.stage_reservation(cancelled)
        return self._uow.hydrate(cancelled)

    async def list_active_for_stall(self, stall_id: str) -> list[Reservation]:
        await asyncio.sleep(0)
        return [
            self._uow.hydrate(r)
            for r in self._uow.all_reservations()
            if r.stall_id == stall_id and r.is_active
        ]

    async def list_for_user(self, user_id: str) -> list[Reservation]:
        await asyncio.sleep(0)
        return [
            self._uow.hydrate(r)
            for r in reversed(self._uow.all_reservations())
            if r.user_id == user_id
        ]

    async def list_all(self) -> list[Reservation]:
        await asyncio.sleep(0)
        return [self._uow.hydrate(r) for r in reversed(self._uow.all_reservations())]

    async def statistics(self) -> ReservationStatistics:
        await asyncio.sleep(0)
        reservations = self._uow.all_reservations()
        counts = {status: 0 for status in ReservationStatus}
        revenue = Decimal("0")
        for r in reservations:
            counts[r.status] += 1
            if r.status == ReservationStatus.CONFIRMED:
                revenue += r.total_amount
        return ReservationStatistics(
            total=len(reservations),
            pending=counts[ReservationStatus.PENDING],
            confirmed=counts[ReservationStatus.CONFIRMED],
            cancelled=counts[ReservationStatus.CANCELLED],
            total_revenue=revenue,
        )


class MemoryGenreStore(GenreStore):
    def __init__(self, uow: MemoryUnitOfWork) -> None:
        self._uow = uow

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        return any(g.name == name and g.id != exclude_id for g in self._uow.all_genres())

    async def get(self, genre_id: str) -> Optional[Genre]:
        await asyncio.sleep(0)
        return self._uow.read_genre(genre_id)

    async def get_by_name(self, name: str) -> Optional[Genre]:
        await asyncio.sleep(0)
        for genre in self._uow.all_genres():
            if genre.name == name:
                return genre
        return None

    async def get_many(self, genre_ids: tuple[str, ...]) -> list[Genre]:
        await asyncio.sleep(0)
        genres = [self._uow.read_genre(genre_id) for genre_id in genre_ids]
        return [g for g in genres if g is not None]

    async def list(self) -> list[Genre]:
        await asyncio.sleep(0)
        return sorted(self._uow.all_genres(), key=lambda g: g.name)

    async def add(self, name: str, description: Optional[str] = None) -> Genre:
        await asyncio.sleep(0)
        if self._name_taken(name):
            raise ConflictError(f"Genre '{name}' already exists")
        now = _now()
        genre = Genre(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            created_at=now,
            updated_at=now,
        )
        self._uow.stage_genre(genre)
        return genre

    async def update(self, genre_id: str, **fields) -> Genre:
        await asyncio.sleep(0)
        unknown = set(fields) - _GENRE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update genre fields: {', '.join(sorted(unknown))}")

        current = self._uow.read_genre(genre_id)
        if current is None:
            raise NotFoundError("Genre", genre_id)
        name = fields.get("name")
        if name is not None and self._name_taken(name, exclude_id=genre_id):
            raise ConflictError(f"Genre '{name}' already exists")

        updated = replace(current, **fields, updated_at=_now())
        self._uow.stage_genre(updated)
        return updated

    async def delete(self, genre_id: str) -> None:
        await asyncio.sleep(0)
        if self._uow.read_genre(genre_id) is None:
            raise NotFoundError("Genre", genre_id)
        for reservation in self._uow.all_reservations():
            links = self._uow.read_links(reservation.id)
            if genre_id in links:
                self._uow.stage_links(
                    reservation.id, tuple(g for g in links if g != genre_id)
                )
        self._uow.stage_genre_delete(genre_id)


class MemoryRepository(Repository):
    def __init__(self, arena: Optional[MemoryArena] = None) -> None:
        self.arena = arena or MemoryArena()

    def unit_of_work(
        self,
        user_id: Optional[str] = None,
        stall_id: Optional[str] = None,
    ) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self.arena, user_id=user_id, stall_id=stall_id)
