"""
SQLAlchemy implementation of the store interfaces.

CONCURRENCY STRATEGY: row locks + conditional UPDATE
====================================================

Problem:
  Two exhibitors try to reserve stall A1 at the same moment.
  Both read status=AVAILABLE, both insert a reservation, both succeed.
  Result: one stall, two owners.

Solution:
  1. The unit of work opens a transaction and takes row locks
     (SELECT ... FOR UPDATE) on the caller's user row and the target stall
     row. The user lock serializes one exhibitor's quota checks; the stall
     lock serializes everyone competing for that stall.
  2. The status change itself is a compare-and-set:
       UPDATE stalls SET status = :to WHERE id = :id AND status = :from
     If rows_affected == 0 the stall was not in :from and the caller lost.
  3. The reservation insert happens in the same transaction, so both writes
     commit together or not at all.

  Units for different stalls and different users never block each other.
  SQLite ignores FOR UPDATE; the test-suite only uses it for single-caller
  store behaviour.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stall_booking.core.logging import get_logger
from stall_booking.domain.errors import ConflictError, NotFoundError, ValidationError
from stall_booking.domain.models import (
    ACTIVE_RESERVATION_STATUSES,
    Genre,
    Reservation,
    ReservationStatistics,
    ReservationStatus,
    Stall,
    StallSize,
    StallStatus,
)
from stall_booking.models.genre import Genre as GenreRow, ReservationGenre as ReservationGenreRow
from stall_booking.models.reservation import Reservation as ReservationRow
from stall_booking.models.stall import Stall as StallRow
from stall_booking.models.user import User as UserRow
from stall_booking.services.interfaces.stores import (
    GenreStore,
    Repository,
    ReservationStore,
    StallStore,
    UnitOfWork,
)

logger = get_logger(__name__)

_STALL_FIELDS = {"code", "size", "price", "location", "dimensions"}
_GENRE_FIELDS = {"name", "description"}
_ACTIVE_VALUES = [status.value for status in ACTIVE_RESERVATION_STATUSES]


def _to_stall(row: StallRow) -> Stall:
    return Stall(
        id=row.id,
        code=row.code,
        size=StallSize(row.size),
        price=Decimal(row.price),
        status=StallStatus(row.status),
        location=row.location,
        dimensions=row.dimensions,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_genre(row: GenreRow) -> Genre:
    return Genre(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_reservation(
    row: ReservationRow,
    stall_row: Optional[StallRow] = None,
    genres: tuple[Genre, ...] = (),
) -> Reservation:
    return Reservation(
        id=row.id,
        user_id=row.user_id,
        stall_id=row.stall_id,
        total_amount=Decimal(row.total_amount),
        status=ReservationStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        stall=_to_stall(stall_row) if stall_row is not None else None,
        genres=genres,
    )


class SqlStallStore(StallStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _load(self, stall_id: str) -> Optional[StallRow]:
        result = await self._session.execute(
            select(StallRow)
            .where(StallRow.id == stall_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, stall_id: str) -> Optional[Stall]:
        row = await self._load(stall_id)
        return _to_stall(row) if row else None

    async def get_by_code(self, code: str) -> Optional[Stall]:
        result = await self._session.execute(
            select(StallRow)
            .where(StallRow.code == code)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return _to_stall(row) if row else None

    async def list(
        self,
        status: Optional[StallStatus] = None,
        size: Optional[StallSize] = None,
    ) -> list[Stall]:
        query = select(StallRow)
        if status is not None:
            query = query.where(StallRow.status == StallStatus(status).value)
        if size is not None:
            query = query.where(StallRow.size == StallSize(size).value)
        result = await self._session.execute(
            query.order_by(StallRow.code.asc()).execution_options(populate_existing=True)
        )
        return [_to_stall(row) for row in result.scalars().all()]

    async def try_transition(
        self,
        stall_id: str,
        from_status: StallStatus,
        to_status: StallStatus,
    ) -> bool:
        result = await self._session.execute(
            update(StallRow)
            .where(
                StallRow.id == stall_id,
                StallRow.status == StallStatus(from_status).value,
            )
            .values(status=StallStatus(to_status).value)
        )
        return result.rowcount == 1

    async def set_maintenance(self, stall_id: str, on: bool) -> Stall:
        row = await self._load(stall_id)
        if row is None:
            raise NotFoundError("Stall", stall_id)
        row.status = (StallStatus.MAINTENANCE if on else StallStatus.AVAILABLE).value
        await self._session.flush()
        await self._session.refresh(row)
        return _to_stall(row)

    async def add(
        self,
        code: str,
        size: StallSize,
        price: Decimal,
        location: Optional[str] = None,
        dimensions: Optional[str] = None,
    ) -> Stall:
        row = StallRow(
            id=str(uuid.uuid4()),
            code=code,
            size=StallSize(size).value,
            price=price,
            location=location,
            dimensions=dimensions,
            status=StallStatus.AVAILABLE.value,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Stall with code '{code}' already exists") from exc
        await self._session.refresh(row)
        return _to_stall(row)

    async def update(self, stall_id: str, **fields) -> Stall:
        unknown = set(fields) - _STALL_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update stall fields: {', '.join(sorted(unknown))}")

        row = await self._load(stall_id)
        if row is None:
            raise NotFoundError("Stall", stall_id)

        for name, value in fields.items():
            if name == "size":
                value = StallSize(value).value
            setattr(row, name, value)

        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Stall with code '{fields.get('code')}' already exists") from exc
        await self._session.refresh(row)
        return _to_stall(row)

    async def delete(self, stall_id: str) -> None:
        row = await self._load(stall_id)
        if row is None:
            raise NotFoundError("Stall", stall_id)
        # Reservation history goes with the stall
        await self._session.execute(
            delete(ReservationGenreRow)
            .where(
                ReservationGenreRow.reservation_id.in_(
                    select(ReservationRow.id).where(ReservationRow.stall_id == stall_id)
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(
            delete(ReservationRow)
            .where(ReservationRow.stall_id == stall_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.delete(row)
        await self._session.flush()


class SqlReservationStore(ReservationStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _joined(self):
        return (
            select(ReservationRow, StallRow)
            .join(StallRow, ReservationRow.stall_id == StallRow.id)
            .execution_options(populate_existing=True)
        )

    async def _hydrate(self, pairs) -> list[Reservation]:
        """Build reservations from (reservation, stall) rows with their genres."""
        pairs = list(pairs)
        linked: dict[str, list[Genre]] = {}
        if pairs:
            result = await self._session.execute(
                select(ReservationGenreRow.reservation_id, GenreRow)
                .join(GenreRow, ReservationGenreRow.genre_id == GenreRow.id)
                .where(ReservationGenreRow.reservation_id.in_([r.id for r, _ in pairs]))
                .order_by(GenreRow.name.asc())
            )
            for reservation_id, genre_row in result.all():
                linked.setdefault(reservation_id, []).append(_to_genre(genre_row))
        return [_to_reservation(r, s, tuple(linked.get(r.id, ()))) for r, s in pairs]

    async def insert_active(
        self,
        user_id: str,
        stall_id: str,
        amount: Decimal,
        status: ReservationStatus = ReservationStatus.CONFIRMED,
        genre_ids: tuple[str, ...] = (),
    ) -> Reservation:
        if not ReservationStatus(status).is_active:
            raise ValidationError("New reservations must start in an active status")
        if genre_ids:
            found = await self._session.execute(
                select(GenreRow.id).where(GenreRow.id.in_(genre_ids))
            )
            known = set(found.scalars().all())
            missing = [genre_id for genre_id in genre_ids if genre_id not in known]
            if missing:
                raise NotFoundError("Genre", missing[0])

        row = ReservationRow(
            id=str(uuid.uuid4()),
            user_id=user_id,
            stall_id=stall_id,
            total_amount=amount,
            status=ReservationStatus(status).value,
        )
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError("Stall already has an active reservation") from exc

        if genre_ids:
            self._session.add_all(
                [
                    ReservationGenreRow(reservation_id=row.id, genre_id=genre_id)
                    for genre_id in genre_ids
                ]
            )
            await self._session.flush()

        return await self.get(row.id)

    async def count_active(self, user_id: str) -> int:
        result = await self._session.execute(
            select(func.count(ReservationRow.id)).where(
                ReservationRow.user_id == user_id,
                ReservationRow.status.in_(_ACTIVE_VALUES),
            )
        )
        return result.scalar_one()

    async def has_active(self, user_id: str, stall_id: str) -> bool:
        result = await self._session.execute(
            select(ReservationRow.id)
            .where(
                ReservationRow.user_id == user_id,
                ReservationRow.stall_id == stall_id,
                ReservationRow.status.in_(_ACTIVE_VALUES),
            )
            .limit(1)
        )
        return result.first() is not None

    async def get(self, reservation_id: str) -> Optional[Reservation]:
        result = await self._session.execute(
            self._joined().where(ReservationRow.id == reservation_id)
        )
        pair = result.first()
        if pair is None:
            return None
        return (await self._hydrate([pair]))[0]

    async def cancel(self, reservation_id: str) -> Reservation:
        result = await self._session.execute(
            update(ReservationRow)
            .where(
                ReservationRow.id == reservation_id,
                ReservationRow.status != ReservationStatus.CANCELLED.value,
            )
            .values(status=ReservationStatus.CANCELLED.value)
        )
        if result.rowcount == 0:
            if await self.get(reservation_id) is None:
                raise NotFoundError("Reservation", reservation_id)
            raise ConflictError("Reservation is already cancelled")

        cancelled = await self.get(reservation_id)
        return cancelled

    async def list_active_for_stall(self, stall_id: str) -> list[Reservation]:
        result = await self._session.execute(
            self._joined().where(
                ReservationRow.stall_id == stall_id,
                ReservationRow.status.in_(_ACTIVE_VALUES),
            )
        )
        return await self._hydrate(result.all())

    async def list_for_user(self, user_id: str) -> list[Reservation]:
        result = await self._session.execute(
            self._joined()
            .where(ReservationRow.user_id == user_id)
            .order_by(ReservationRow.created_at.desc())
        )
        return await self._hydrate(result.all())

    async def list_all(self) -> list[Reservation]:
        result = await self._session.execute(
            self._joined().order_by(ReservationRow.created_at.desc())
        )
        return await self._hydrate(result.all())

    async def statistics(self) -> ReservationStatistics:
        result = await self._session.execute(
            select(
                ReservationRow.status,
                func.count(ReservationRow.id),
                func.coalesce(func.sum(ReservationRow.total_amount), 0),
            ).group_by(ReservationRow.status)
        )
        counts = {status: 0 for status in ReservationStatus}
        revenue = Decimal("0")
        for status, count, amount in result.all():
            counts[ReservationStatus(status)] = count
            if status == ReservationStatus.CONFIRMED.value:
                revenue = Decimal(str(amount))
        return ReservationStatistics(
            total=sum(counts.values()),
            pending=counts[ReservationStatus.PENDING],
            confirmed=counts[ReservationStatus.CONFIRMED],
            cancelled=counts[ReservationStatus.CANCELLED],
            total_revenue=revenue,
        )


class SqlGenreStore(GenreStore):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _load(self, genre_id: str) -> Optional[GenreRow]:
        result = await self._session.execute(
            select(GenreRow)
            .where(GenreRow.id == genre_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, genre_id: str) -> Optional[Genre]:
        row = await self._load(genre_id)
        return _to_genre(row) if row else None

    async def get_by_name(self, name: str) -> Optional[Genre]:
        result = await self._session.execute(select(GenreRow).where(GenreRow.name == name))
        row = result.scalar_one_or_none()
        return _to_genre(row) if row else None

    async def get_many(self, genre_ids: tuple[str, ...]) -> list[Genre]:
        if not genre_ids:
            return []
        result = await self._session.execute(select(GenreRow).where(GenreRow.id.in_(genre_ids)))
        by_id = {row.id: _to_genre(row) for row in result.scalars().all()}
        return [by_id[genre_id] for genre_id in genre_ids if genre_id in by_id]

    async def list(self) -> list[Genre]:
        result = await self._session.execute(select(GenreRow).order_by(GenreRow.name.asc()))
        return [_to_genre(row) for row in result.scalars().all()]

    async def add(self, name: str, description: Optional[str] = None) -> Genre:
        row = GenreRow(id=str(uuid.uuid4()), name=name, description=description)
        self._session.add(row)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Genre '{name}' already exists") from exc
        await self._session.refresh(row)
        return _to_genre(row)

    async def update(self, genre_id: str, **fields) -> Genre:
        unknown = set(fields) - _GENRE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update genre fields: {', '.join(sorted(unknown))}")

        row = await self._load(genre_id)
        if row is None:
            raise NotFoundError("Genre", genre_id)
        for name, value in fields.items():
            setattr(row, name, value)

        try:
            await self._session.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Genre '{fields.get('name')}' already exists") from exc
        await self._session.refresh(row)
        return _to_genre(row)

    async def delete(self, genre_id: str) -> None:
        row = await self._load(genre_id)
        if row is None:
            raise NotFoundError("Genre", genre_id)
        await self._session.execute(
            delete(ReservationGenreRow)
            .where(ReservationGenreRow.genre_id == genre_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.delete(row)
        await self._session.flush()


class SqlUnitOfWork(UnitOfWork):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_id: Optional[str] = None,
        stall_id: Optional[str] = None,
    ) -> None:
        self._session_factory = session_factory
        self._user_id = user_id
        self._stall_id = stall_id
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> SqlUnitOfWork:
        self.session = self._session_factory()
        try:
            # Lock order: user row, then stall row
            if self._user_id is not None:
                locked = await self.session.execute(
                    select(UserRow.id).where(UserRow.id == self._user_id).with_for_update()
                )
                # Users are mirrored from the identity service; no row means nothing to lock
                if locked.first() is None:
                    raise NotFoundError("User", self._user_id)
            if self._stall_id is not None:
                await self.session.execute(
                    select(StallRow.id).where(StallRow.id == self._stall_id).with_for_update()
                )
        except BaseException:
            await self.session.rollback()
            await self.session.close()
            raise

        self.stalls = SqlStallStore(self.session)
        self.reservations = SqlReservationStore(self.session)
        self.genres = SqlGenreStore(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
        finally:
            await self.session.close()


class SqlRepository(Repository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def unit_of_work(
        self,
        user_id: Optional[str] = None,
        stall_id: Optional[str] = None,
    ) -> SqlUnitOfWork:
        return SqlUnitOfWork(self._session_factory, user_id=user_id, stall_id=stall_id)

    async def close(self) -> None:
        engine = self._session_factory.kw.get("bind")
        if engine is not None:
            await engine.dispose()
            logger.info("database_engine_disposed")
