"""
Tests for stall administration: catalogue edits, maintenance, deletion.
"""

from decimal import Decimal

import pytest

from stall_booking.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from stall_booking.domain.models import StallSize, StallStatus


@pytest.mark.asyncio
async def test_create_stall(stall_service, admin):
    stall = await stall_service.create_stall(
        admin, code="A1", size=StallSize.SMALL, price=Decimal("10000"), dimensions="3x3m"
    )

    assert stall.status == StallStatus.AVAILABLE
    assert stall.price == Decimal("10000")
    assert (await stall_service.get_stall(stall.id)).code == "A1"


@pytest.mark.asyncio
async def test_create_stall_requires_admin(stall_service, vendor):
    with pytest.raises(ForbiddenError):
        await stall_service.create_stall(vendor, code="A1", size=StallSize.SMALL, price=Decimal("1"))


@pytest.mark.asyncio
async def test_duplicate_code_conflicts(stall_service, admin, stall_a1):
    with pytest.raises(ConflictError):
        await stall_service.create_stall(admin, code="A1", size=StallSize.LARGE, price=Decimal("1"))


@pytest.mark.asyncio
async def test_get_unknown_stall(stall_service):
    with pytest.raises(NotFoundError):
        await stall_service.get_stall("missing")


@pytest.mark.asyncio
async def test_list_filters_and_orders_by_code(stall_service, make_stall):
    await make_stall("C1", StallSize.LARGE)
    await make_stall("A2", StallSize.SMALL)
    await make_stall("B1", StallSize.SMALL)

    assert [s.code for s in await stall_service.list_stalls()] == ["A2", "B1", "C1"]
    small = await stall_service.list_stalls(size=StallSize.SMALL)
    assert [s.code for s in small] == ["A2", "B1"]


@pytest.mark.asyncio
async def test_list_available_hides_reserved(stall_service, engine, vendor, make_stall):
    taken = await make_stall("A1")
    await make_stall("A2")
    await engine.reserve(vendor, taken.id, Decimal("20000"))

    assert [s.code for s in await stall_service.list_available()] == ["A2"]


@pytest.mark.asyncio
async def test_update_metadata(stall_service, admin, stall_a1):
    updated = await stall_service.update_stall(
        admin, stall_a1.id, location="Hall 2", price=Decimal("12000")
    )

    assert updated.location == "Hall 2"
    assert updated.price == Decimal("12000")
    assert updated.code == "A1"


@pytest.mark.asyncio
async def test_update_to_taken_code_conflicts(stall_service, admin, make_stall):
    await make_stall("A1")
    second = await make_stall("A2")

    with pytest.raises(ConflictError):
        await stall_service.update_stall(admin, second.id, code="A1")


@pytest.mark.asyncio
async def test_update_cannot_set_reserved(stall_service, admin, stall_a1):
    with pytest.raises(ValidationError):
        await stall_service.update_stall(admin, stall_a1.id, status=StallStatus.RESERVED)


@pytest.mark.asyncio
async def test_maintenance_toggle(stall_service, admin, stall_a1):
    stall = await stall_service.update_stall(admin, stall_a1.id, status=StallStatus.MAINTENANCE)
    assert stall.status == StallStatus.MAINTENANCE

    stall = await stall_service.set_maintenance(admin, stall_a1.id, False)
    assert stall.status == StallStatus.AVAILABLE


@pytest.mark.asyncio
async def test_maintenance_refused_while_reserved(stall_service, engine, admin, vendor, stall_a1):
    await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    with pytest.raises(ConflictError):
        await stall_service.set_maintenance(admin, stall_a1.id, True)
    assert (await stall_service.get_stall(stall_a1.id)).status == StallStatus.RESERVED


@pytest.mark.asyncio
async def test_delete_refused_with_active_reservation(stall_service, engine, admin, vendor, stall_a1):
    await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    with pytest.raises(ConflictError):
        await stall_service.delete_stall(admin, stall_a1.id)


@pytest.mark.asyncio
async def test_delete_removes_history(stall_service, engine, repository, admin, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await engine.cancel(vendor, reservation.id)

    await stall_service.delete_stall(admin, stall_a1.id)

    with pytest.raises(NotFoundError):
        await stall_service.get_stall(stall_a1.id)
    assert await engine.list_my_reservations(vendor) == []


@pytest.mark.asyncio
async def test_statistics(stall_service, engine, admin, vendor, make_stall):
    a = await make_stall("A1", StallSize.SMALL)
    b = await make_stall("B1", StallSize.MEDIUM)
    await make_stall("C1", StallSize.LARGE)
    await engine.reserve(vendor, a.id, Decimal("1"))
    await stall_service.set_maintenance(admin, b.id, True)

    stats = await stall_service.get_statistics(admin)

    assert stats.total == 3
    assert (stats.available, stats.reserved, stats.maintenance) == (1, 1, 1)
    assert (stats.small, stats.medium, stats.large) == (1, 1, 1)

    with pytest.raises(ForbiddenError):
        await stall_service.get_statistics(vendor)
