"""
Tests for reserve/cancel semantics of the allocation engine.
"""

from decimal import Decimal

import pytest

from stall_booking.domain.errors import (
    AlreadyBookedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from stall_booking.domain.models import ReservationStatus, StallSize, StallStatus


async def _stall_status(repository, stall_id):
    async with repository.unit_of_work() as uow:
        return (await uow.stalls.get(stall_id)).status


@pytest.mark.asyncio
async def test_reserve_available_stall(engine, repository, dispatcher, notifier, vendor, stall_a1):
    """Reserving marks the stall RESERVED and queues a confirmation."""
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.user_id == vendor.user_id
    assert reservation.total_amount == Decimal("10000")
    assert reservation.stall.code == "A1"
    assert reservation.stall.status == StallStatus.RESERVED
    assert await _stall_status(repository, stall_a1.id) == StallStatus.RESERVED

    await dispatcher.drain()
    assert [m.reservation_id for m in notifier.sent] == [reservation.id]
    assert notifier.sent[0].recipient_email == vendor.email
    assert notifier.sent[0].stall_code == "A1"


@pytest.mark.asyncio
async def test_reserve_unknown_stall(engine, vendor):
    with pytest.raises(NotFoundError):
        await engine.reserve(vendor, "missing", Decimal("100"))


@pytest.mark.asyncio
async def test_reserve_taken_stall(engine, repository, vendor, other_vendor, stall_a1):
    """Second vendor gets a conflict and nothing is written for them."""
    await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    with pytest.raises(ConflictError) as exc_info:
        await engine.reserve(other_vendor, stall_a1.id, Decimal("10000"))
    assert exc_info.value.code.value == "conflict"

    async with repository.unit_of_work() as uow:
        assert await uow.reservations.count_active(other_vendor.user_id) == 0


@pytest.mark.asyncio
async def test_reserve_stall_under_maintenance(engine, stall_service, admin, vendor, stall_a1):
    await stall_service.set_maintenance(admin, stall_a1.id, True)

    with pytest.raises(ConflictError, match="MAINTENANCE"):
        await engine.reserve(vendor, stall_a1.id, Decimal("10000"))


@pytest.mark.asyncio
async def test_quota_blocks_fourth_reservation(engine, make_stall, vendor):
    stalls = [await make_stall(code) for code in ("B1", "B2", "B3", "B4")]
    for stall in stalls[:3]:
        await engine.reserve(vendor, stall.id, Decimal("20000"))

    with pytest.raises(QuotaExceededError) as exc_info:
        await engine.reserve(vendor, stalls[3].id, Decimal("20000"))
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_cancelled_reservations_free_quota(engine, make_stall, vendor):
    stalls = [await make_stall(code) for code in ("B1", "B2", "B3", "B4")]
    first = await engine.reserve(vendor, stalls[0].id, Decimal("1"))
    for stall in stalls[1:3]:
        await engine.reserve(vendor, stall.id, Decimal("1"))

    await engine.cancel(vendor, first.id)
    reservation = await engine.reserve(vendor, stalls[3].id, Decimal("1"))
    assert reservation.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_duplicate_active_reservation_detected(engine, repository, vendor, stall_a1):
    """An active row for the same user and stall wins over a lagging stall status."""
    async with repository.unit_of_work() as uow:
        await uow.reservations.insert_active(vendor.user_id, stall_a1.id, Decimal("10000"))

    with pytest.raises(AlreadyBookedError):
        await engine.reserve(vendor, stall_a1.id, Decimal("10000"))


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [Decimal("-1"), "12.345", "abc", float("nan"), float("inf")])
async def test_reserve_rejects_bad_amount(engine, repository, vendor, stall_a1, amount):
    with pytest.raises(ValidationError):
        await engine.reserve(vendor, stall_a1.id, amount)
    assert await _stall_status(repository, stall_a1.id) == StallStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_releases_stall(engine, repository, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    cancelled = await engine.cancel(vendor, reservation.id)

    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.stall.status == StallStatus.AVAILABLE
    assert await _stall_status(repository, stall_a1.id) == StallStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_twice_conflicts(engine, repository, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await engine.cancel(vendor, reservation.id)

    with pytest.raises(ConflictError, match="already cancelled"):
        await engine.cancel(vendor, reservation.id)
    assert await _stall_status(repository, stall_a1.id) == StallStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_by_stranger_forbidden(engine, vendor, other_vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    with pytest.raises(ForbiddenError):
        await engine.cancel(other_vendor, reservation.id)


@pytest.mark.asyncio
async def test_admin_can_cancel_any_reservation(engine, repository, vendor, admin, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    cancelled = await engine.cancel(admin, reservation.id)

    assert cancelled.user_id == vendor.user_id
    assert await _stall_status(repository, stall_a1.id) == StallStatus.AVAILABLE


@pytest.mark.asyncio
async def test_cancel_unknown_reservation(engine, vendor):
    with pytest.raises(NotFoundError):
        await engine.cancel(vendor, "missing")


@pytest.mark.asyncio
async def test_stall_can_be_rebooked_after_cancel(engine, admin, vendor, other_vendor, stall_a1):
    """The second booking carries its own amount; the cancelled one keeps its own."""
    first = await engine.reserve(vendor, stall_a1.id, Decimal("15000"))
    await engine.cancel(vendor, first.id)

    second = await engine.reserve(other_vendor, stall_a1.id, Decimal("12000"))

    assert second.user_id == other_vendor.user_id
    assert second.total_amount == Decimal("12000")
    assert second.stall.status == StallStatus.RESERVED

    cancelled = await engine.get_reservation(admin, first.id)
    assert cancelled.status == ReservationStatus.CANCELLED
    assert cancelled.total_amount == Decimal("15000")


@pytest.mark.asyncio
async def test_amount_is_a_snapshot(engine, stall_service, admin, vendor, stall_a1):
    """Repricing the stall later leaves the booked amount unchanged."""
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    await stall_service.update_stall(admin, stall_a1.id, price=Decimal("15000"))

    stored = await engine.get_reservation(vendor, reservation.id)
    assert stored.total_amount == Decimal("10000")
    assert stored.stall.price == Decimal("15000")


@pytest.mark.asyncio
async def test_statistics_count_revenue_from_confirmed_only(
    engine, repository, make_stall, vendor, other_vendor, admin
):
    small = await make_stall("S1", StallSize.SMALL, "10000")
    medium = await make_stall("M1", StallSize.MEDIUM, "20000")
    large = await make_stall("L1", StallSize.LARGE, "35000")
    pending_stall = await make_stall("P1", StallSize.SMALL, "5000")

    await engine.reserve(vendor, small.id, Decimal("10000"))
    await engine.reserve(other_vendor, medium.id, Decimal("20000"))
    cancelled = await engine.reserve(vendor, large.id, Decimal("35000"))
    await engine.cancel(vendor, cancelled.id)

    async with repository.unit_of_work(user_id=other_vendor.user_id, stall_id=pending_stall.id) as uow:
        assert await uow.stalls.try_transition(
            pending_stall.id, StallStatus.AVAILABLE, StallStatus.RESERVED
        )
        await uow.reservations.insert_active(
            other_vendor.user_id, pending_stall.id, Decimal("5000"), ReservationStatus.PENDING
        )

    stats = await engine.get_statistics(admin)

    assert stats.total == 4
    assert stats.pending == 1
    assert stats.confirmed == 2
    assert stats.cancelled == 1
    assert stats.total_revenue == Decimal("30000")


@pytest.mark.asyncio
async def test_pending_reservation_counts_toward_quota(engine, repository, make_stall, vendor):
    stalls = [await make_stall(code) for code in ("C1", "C2", "C3", "C4")]
    async with repository.unit_of_work(user_id=vendor.user_id) as uow:
        await uow.reservations.insert_active(
            vendor.user_id, stalls[0].id, Decimal("1"), ReservationStatus.PENDING
        )
    for stall in stalls[1:3]:
        await engine.reserve(vendor, stall.id, Decimal("1"))

    with pytest.raises(QuotaExceededError):
        await engine.reserve(vendor, stalls[3].id, Decimal("1"))


@pytest.mark.asyncio
async def test_statistics_admin_only(engine, vendor):
    with pytest.raises(ForbiddenError):
        await engine.get_statistics(vendor)


@pytest.mark.asyncio
async def test_get_reservation_visibility(engine, vendor, other_vendor, admin, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    assert (await engine.get_reservation(vendor, reservation.id)).id == reservation.id
    assert (await engine.get_reservation(admin, reservation.id)).id == reservation.id
    with pytest.raises(ForbiddenError):
        await engine.get_reservation(other_vendor, reservation.id)
    with pytest.raises(NotFoundError):
        await engine.get_reservation(vendor, "missing")


@pytest.mark.asyncio
async def test_list_my_reservations_newest_first(engine, make_stall, vendor, other_vendor):
    first = await engine.reserve(vendor, (await make_stall("D1")).id, Decimal("1"))
    await engine.reserve(other_vendor, (await make_stall("D2")).id, Decimal("1"))
    second = await engine.reserve(vendor, (await make_stall("D3")).id, Decimal("1"))

    mine = await engine.list_my_reservations(vendor)

    assert [r.id for r in mine] == [second.id, first.id]
    assert all(r.stall is not None for r in mine)


@pytest.mark.asyncio
async def test_list_all_reservations_admin_only(engine, make_stall, vendor, other_vendor, admin):
    await engine.reserve(vendor, (await make_stall("E1")).id, Decimal("1"))
    await engine.reserve(other_vendor, (await make_stall("E2")).id, Decimal("1"))

    assert len(await engine.list_all_reservations(admin)) == 2
    with pytest.raises(ForbiddenError):
        await engine.list_all_reservations(vendor)
