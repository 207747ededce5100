"""
Reservation allocation engine with concurrency-safe stall booking.

Invariants held at every commit:
  - a stall is RESERVED iff exactly one active reservation references it
  - at most one active (PENDING or CONFIRMED) reservation per stall
  - at most RESERVATION_QUOTA active reservations per user

Every check-then-write runs inside one unit of work opened on
(user_id, stall_id). The unit serializes competing calls for the same stall
and for the same user; the stall status change is additionally a
compare-and-set, so a caller that loses the race gets ConflictError and
leaves nothing behind. There is no silent retry: the caller re-queries
and may pick a different stall.

The confirmation notification is scheduled after the unit has committed
and released its locks.
"""

import math
import time
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from stall_booking.core.logging import get_logger
from stall_booking.core.metrics import (
    reservation_latency,
    record_cancellation,
    record_reservation_attempt,
    record_transition_conflict,
)
from stall_booking.domain.errors import (
    AlreadyBookedError,
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from stall_booking.domain.models import (
    IdentityContext,
    Reservation,
    ReservationStatistics,
    ReservationStatus,
    StallStatus,
)
from stall_booking.services.interfaces.stores import Repository
from stall_booking.services.notification_service import NotificationDispatcher, build_confirmation

logger = get_logger(__name__)

DEFAULT_RESERVATION_QUOTA = 3
_CENT = Decimal("0.01")


def normalize_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
    """Validate a booking amount: finite, non-negative, at most two decimals."""
    if isinstance(amount, bool):
        raise ValidationError("Total amount must be a number")
    if isinstance(amount, float) and not math.isfinite(amount):
        raise ValidationError("Total amount must be a finite number")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Total amount must be a number") from exc

    if not value.is_finite():
        raise ValidationError("Total amount must be a finite number")
    if value < 0:
        raise ValidationError("Total amount cannot be negative")
    if value != value.quantize(_CENT):
        raise ValidationError("Total amount cannot have more than two decimal places")
    return value


class AllocationEngine:
    def __init__(
        self,
        repository: Repository,
        dispatcher: NotificationDispatcher,
        quota: int = DEFAULT_RESERVATION_QUOTA,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.quota = quota

    async def reserve(
        self,
        identity: IdentityContext,
        stall_id: str,
        amount: Union[Decimal, int, float, str],
        genre_ids: Optional[Iterable[str]] = None,
    ) -> Reservation:
        """
        Reserve a stall for the caller, optionally tagged with catalogue genres.

        Raises:
            ValidationError: malformed amount
            NotFoundError: stall or one of the genres does not exist
            ConflictError: stall not AVAILABLE, or the race was lost
            QuotaExceededError: caller already holds the maximum active reservations
            AlreadyBookedError: caller already holds this stall
        """
        start = time.perf_counter()
        try:
            reservation = await self._reserve(identity, stall_id, amount, genre_ids)
        except DomainError as exc:
            record_reservation_attempt(exc.code.value)
            raise
        finally:
            reservation_latency.observe(time.perf_counter() - start)

        record_reservation_attempt("success")
        self.dispatcher.dispatch_confirmation(reservation, identity)
        return reservation

    async def _reserve(
        self,
        identity: IdentityContext,
        stall_id: str,
        amount: Union[Decimal, int, float, str],
        genre_ids: Optional[Iterable[str]] = None,
    ) -> Reservation:
        total_amount = normalize_amount(amount)
        # Duplicates collapse; first occurrence keeps its place
        wanted_genres = tuple(dict.fromkeys(genre_ids or ()))
        user_id = identity.user_id

        async with self.repository.unit_of_work(user_id=user_id, stall_id=stall_id) as uow:
            # Step 1: stall exists
            stall = await uow.stalls.get(stall_id)
            if stall is None:
                raise NotFoundError("Stall", stall_id)

            # Step 2: stall is free
            if stall.status != StallStatus.AVAILABLE:
                logger.info(
                    "reservation_rejected_unavailable",
                    stall_id=stall_id,
                    stall_status=stall.status.value,
                )
                raise ConflictError(
                    f"Stall is not available. Current status: {stall.status.value}"
                )

            # Step 3: quota
            active = await uow.reservations.count_active(user_id)
            if active >= self.quota:
                logger.info("reservation_rejected_quota", user_id=user_id, active=active)
                raise QuotaExceededError(self.quota)

            # Step 4: duplicate submission
            if await uow.reservations.has_active(user_id, stall_id):
                raise AlreadyBookedError(stall_id)

            # Step 5: every requested genre exists
            if wanted_genres:
                found = {g.id for g in await uow.genres.get_many(wanted_genres)}
                missing = [genre_id for genre_id in wanted_genres if genre_id not in found]
                if missing:
                    raise NotFoundError("Genre", missing[0])

            # Commit protocol: compare-and-set the stall, then insert
            if not await uow.stalls.try_transition(
                stall_id, StallStatus.AVAILABLE, StallStatus.RESERVED
            ):
                record_transition_conflict(StallStatus.AVAILABLE.value, StallStatus.RESERVED.value)
                logger.info("reservation_race_lost", stall_id=stall_id, user_id=user_id)
                raise ConflictError("Stall was reserved by another request")

            reservation = await uow.reservations.insert_active(
                user_id, stall_id, total_amount, genre_ids=wanted_genres
            )
            reservation = replace(reservation, stall=await uow.stalls.get(stall_id))

        logger.info(
            "reservation_created",
            reservation_id=reservation.id,
            user_id=user_id,
            stall_id=stall_id,
            total_amount=str(total_amount),
            genre_ids=list(wanted_genres),
        )
        return reservation

    async def cancel(self, identity: IdentityContext, reservation_id: str) -> Reservation:
        """
        Cancel a reservation and release its stall.

        Raises:
            NotFoundError: reservation does not exist
            ForbiddenError: caller is neither the owner nor an admin
            ConflictError: reservation already cancelled
        """
        # user_id and stall_id never change, so they can be read before locking
        async with self.repository.unit_of_work() as uow:
            existing = await uow.reservations.get(reservation_id)
        if existing is None:
            raise NotFoundError("Reservation", reservation_id)
        self._check_owner(identity, existing, "cancel")

        async with self.repository.unit_of_work(
            user_id=existing.user_id, stall_id=existing.stall_id
        ) as uow:
            current = await uow.reservations.get(reservation_id)
            if current is None:
                raise NotFoundError("Reservation", reservation_id)
            if current.status == ReservationStatus.CANCELLED:
                raise ConflictError("Reservation is already cancelled")

            cancelled = await uow.reservations.cancel(reservation_id)
            released = await uow.stalls.try_transition(
                current.stall_id, StallStatus.RESERVED, StallStatus.AVAILABLE
            )
            if not released:
                # Stall is not RESERVED (e.g. under maintenance): leave it as is
                stall = await uow.stalls.get(current.stall_id)
                logger.warning(
                    "stall_release_skipped",
                    reservation_id=reservation_id,
                    stall_id=current.stall_id,
                    stall_status=stall.status.value if stall else None,
                )
            cancelled = replace(cancelled, stall=await uow.stalls.get(current.stall_id))

        record_cancellation(released)
        logger.info(
            "reservation_cancelled",
            reservation_id=reservation_id,
            user_id=cancelled.user_id,
            cancelled_by=identity.user_id,
            stall_id=cancelled.stall_id,
            stall_released=released,
        )
        return cancelled

    async def get_statistics(self, identity: IdentityContext) -> ReservationStatistics:
        """Admin-only aggregate over committed reservations."""
        self._require_admin(identity)
        async with self.repository.unit_of_work() as uow:
            return await uow.reservations.statistics()

    async def get_reservation(self, identity: IdentityContext, reservation_id: str) -> Reservation:
        async with self.repository.unit_of_work() as uow:
            reservation = await uow.reservations.get(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        self._check_owner(identity, reservation, "view")
        return reservation

    async def list_my_reservations(self, identity: IdentityContext) -> list[Reservation]:
        async with self.repository.unit_of_work() as uow:
            return await uow.reservations.list_for_user(identity.user_id)

    async def list_all_reservations(self, identity: IdentityContext) -> list[Reservation]:
        self._require_admin(identity)
        async with self.repository.unit_of_work() as uow:
            return await uow.reservations.list_all()

    async def resend_confirmation(self, identity: IdentityContext, reservation_id: str) -> Reservation:
        """
        Send the confirmation again and wait for delivery.

        Unlike reserve(), a delivery failure here is reported to the caller.

        Raises:
            NotificationFailure: every delivery attempt failed
        """
        reservation = await self.get_reservation(identity, reservation_id)
        if not reservation.is_active:
            raise ConflictError("Cannot send a confirmation for a cancelled reservation")

        await self.dispatcher.deliver(build_confirmation(reservation, identity))
        logger.info("confirmation_resent", reservation_id=reservation_id)
        return reservation

    @staticmethod
    def _require_admin(identity: IdentityContext) -> None:
        if not identity.is_admin:
            raise ForbiddenError("Admin access required")

    @staticmethod
    def _check_owner(identity: IdentityContext, reservation: Reservation, action: str) -> None:
        if reservation.user_id != identity.user_id and not identity.is_admin:
            raise ForbiddenError(f"You are not authorized to {action} this reservation")
