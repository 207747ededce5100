"""
Stall catalogue and administrative operations.

Maintenance never overrides a booking: a stall with an active reservation
cannot be put under maintenance until that reservation is cancelled, so
"RESERVED iff one active reservation" holds at all times.
"""

from decimal import Decimal
from typing import Optional

from stall_booking.core.logging import get_logger
from stall_booking.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from stall_booking.domain.models import (
    IdentityContext,
    Stall,
    StallSize,
    StallStatistics,
    StallStatus,
)
from stall_booking.services.interfaces.stores import Repository

logger = get_logger(__name__)


def _require_admin(identity: IdentityContext) -> None:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")


class StallService:
    def __init__(self, repository: Repository) -> None:
        self.repository = repository

    async def get_stall(self, stall_id: str) -> Stall:
        async with self.repository.unit_of_work() as uow:
            stall = await uow.stalls.get(stall_id)
        if stall is None:
            raise NotFoundError("Stall", stall_id)
        return stall

    async def list_stalls(
        self,
        status: Optional[StallStatus] = None,
        size: Optional[StallSize] = None,
    ) -> list[Stall]:
        async with self.repository.unit_of_work() as uow:
            return await uow.stalls.list(status=status, size=size)

    async def list_available(self) -> list[Stall]:
        return await self.list_stalls(status=StallStatus.AVAILABLE)

    async def create_stall(
        self,
        identity: IdentityContext,
        code: str,
        size: StallSize,
        price: Decimal,
        location: Optional[str] = None,
        dimensions: Optional[str] = None,
    ) -> Stall:
        _require_admin(identity)
        if price < 0:
            raise ValidationError("Stall price cannot be negative")

        async with self.repository.unit_of_work() as uow:
            if await uow.stalls.get_by_code(code) is not None:
                raise ConflictError(f"Stall with code '{code}' already exists")
            stall = await uow.stalls.add(
                code=code, size=size, price=price, location=location, dimensions=dimensions
            )

        logger.info("stall_created", stall_id=stall.id, code=stall.code, size=stall.size.value)
        return stall

    async def update_stall(
        self,
        identity: IdentityContext,
        stall_id: str,
        status: Optional[StallStatus] = None,
        **fields,
    ) -> Stall:
        """
        Edit stall metadata and optionally toggle maintenance.

        status may be AVAILABLE or MAINTENANCE; RESERVED is only ever set by
        the allocation engine.
        """
        _require_admin(identity)
        if status == StallStatus.RESERVED:
            raise ValidationError("Stall status RESERVED can only be set by a reservation")
        if fields.get("price") is not None and fields["price"] < 0:
            raise ValidationError("Stall price cannot be negative")
        fields = {name: value for name, value in fields.items() if value is not None}

        async with self.repository.unit_of_work(stall_id=stall_id) as uow:
            stall = await uow.stalls.get(stall_id)
            if stall is None:
                raise NotFoundError("Stall", stall_id)

            code = fields.get("code")
            if code is not None and code != stall.code:
                if await uow.stalls.get_by_code(code) is not None:
                    raise ConflictError(f"Stall with code '{code}' already exists")

            if fields:
                stall = await uow.stalls.update(stall_id, **fields)
            if status is not None and status != stall.status:
                stall = await self._toggle_maintenance(uow, stall, status == StallStatus.MAINTENANCE)

        logger.info("stall_updated", stall_id=stall_id, fields=sorted(fields), status=stall.status.value)
        return stall

    async def set_maintenance(self, identity: IdentityContext, stall_id: str, on: bool) -> Stall:
        _require_admin(identity)
        async with self.repository.unit_of_work(stall_id=stall_id) as uow:
            stall = await uow.stalls.get(stall_id)
            if stall is None:
                raise NotFoundError("Stall", stall_id)
            return await self._toggle_maintenance(uow, stall, on)

    @staticmethod
    async def _toggle_maintenance(uow, stall: Stall, on: bool) -> Stall:
        if on:
            if stall.status == StallStatus.MAINTENANCE:
                return stall
            active = await uow.reservations.list_active_for_stall(stall.id)
            if active or stall.status == StallStatus.RESERVED:
                raise ConflictError(
                    "Stall has an active reservation; cancel it before scheduling maintenance"
                )
        elif stall.status != StallStatus.MAINTENANCE:
            return stall

        updated = await uow.stalls.set_maintenance(stall.id, on)
        logger.info("stall_maintenance_toggled", stall_id=stall.id, maintenance=on)
        return updated

    async def delete_stall(self, identity: IdentityContext, stall_id: str) -> None:
        _require_admin(identity)
        async with self.repository.unit_of_work(stall_id=stall_id) as uow:
            stall = await uow.stalls.get(stall_id)
            if stall is None:
                raise NotFoundError("Stall", stall_id)
            if await uow.reservations.list_active_for_stall(stall_id):
                raise ConflictError(
                    "Cannot delete stall with active reservations. Cancel reservations first."
                )
            await uow.stalls.delete(stall_id)

        logger.info("stall_deleted", stall_id=stall_id, code=stall.code)

    async def get_statistics(self, identity: IdentityContext) -> StallStatistics:
        _require_admin(identity)
        stalls = await self.list_stalls()
        return StallStatistics(
            total=len(stalls),
            available=sum(1 for s in stalls if s.status == StallStatus.AVAILABLE),
            reserved=sum(1 for s in stalls if s.status == StallStatus.RESERVED),
            maintenance=sum(1 for s in stalls if s.status == StallStatus.MAINTENANCE),
            small=sum(1 for s in stalls if s.size == StallSize.SMALL),
            medium=sum(1 for s in stalls if s.size == StallSize.MEDIUM),
            large=sum(1 for s in stalls if s.size == StallSize.LARGE),
        )
