"""
Tests for reservation endpoints including concurrency scenarios.
"""

import asyncio

import pytest
from httpx import AsyncClient


async def _reserve(client: AsyncClient, headers: dict, stall_id: str, amount=10000):
    return await client.post(
        "/api/v1/reservations/",
        json={"stall_id": stall_id, "total_amount": amount},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_reserve_stall(client: AsyncClient, auth_headers, stall_a1):
    """Successful reservation returns the stall snapshot and caller projection."""
    response = await _reserve(client, auth_headers, stall_a1.id)
    assert response.status_code == 201
    data = response.json()
    assert data["stall_id"] == stall_a1.id
    assert data["status"] == "CONFIRMED"
    assert data["total_amount"] == 10000.0
    assert data["stall"]["status"] == "RESERVED"
    assert data["user"] == {
        "id": "vendor-1",
        "role": "user",
        "email": "vendor1@example.com",
        "name": "Vendor One",
        "business_name": "Vendor One Books",
    }

    stall_response = await client.get(f"/api/v1/stalls/{stall_a1.id}")
    assert stall_response.json()["status"] == "RESERVED"


@pytest.mark.asyncio
async def test_reserve_unauthenticated(client: AsyncClient, stall_a1):
    response = await client.post(
        "/api/v1/reservations/", json={"stall_id": stall_a1.id, "total_amount": 10000}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_reserve_with_bad_token(client: AsyncClient, stall_a1):
    response = await _reserve(client, {"Authorization": "Bearer not-a-jwt"}, stall_a1.id)
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_reserve_taken_stall(client: AsyncClient, auth_headers, other_headers, stall_a1):
    await _reserve(client, auth_headers, stall_a1.id)

    response = await _reserve(client, other_headers, stall_a1.id)
    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_reserve_unknown_stall(client: AsyncClient, auth_headers):
    response = await _reserve(client, auth_headers, "no-such-stall")
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [-1, "10.001", "lots"])
async def test_reserve_invalid_amount(client: AsyncClient, auth_headers, stall_a1, amount):
    response = await _reserve(client, auth_headers, stall_a1.id, amount)
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_reserve_quota(client: AsyncClient, auth_headers, make_stall):
    stalls = [await make_stall(code) for code in ("B1", "B2", "B3", "B4")]
    for stall in stalls[:3]:
        assert (await _reserve(client, auth_headers, stall.id)).status_code == 201

    response = await _reserve(client, auth_headers, stalls[3].id)
    assert response.status_code == 400
    assert response.json()["code"] == "quota_exceeded"


@pytest.mark.asyncio
async def test_stall_lifecycle(client: AsyncClient, auth_headers, other_headers, stall_a1):
    """Reserve, lose the race, cancel, and let someone else book."""
    first = (await _reserve(client, auth_headers, stall_a1.id)).json()
    assert (await _reserve(client, other_headers, stall_a1.id)).status_code == 409

    response = await client.put(
        f"/api/v1/reservations/{first['id']}/cancel", headers=auth_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["reservation"]["status"] == "CANCELLED"
    assert data["reservation"]["stall"]["status"] == "AVAILABLE"

    response = await _reserve(client, other_headers, stall_a1.id)
    assert response.status_code == 201
    assert response.json()["user"]["id"] == "vendor-2"


@pytest.mark.asyncio
async def test_cancel_twice(client: AsyncClient, auth_headers, stall_a1):
    reservation = (await _reserve(client, auth_headers, stall_a1.id)).json()
    url = f"/api/v1/reservations/{reservation['id']}/cancel"

    assert (await client.put(url, headers=auth_headers)).status_code == 200
    response = await client.put(url, headers=auth_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cancel_other_users_reservation(
    client: AsyncClient, auth_headers, other_headers, admin_headers, stall_a1
):
    reservation = (await _reserve(client, auth_headers, stall_a1.id)).json()
    url = f"/api/v1/reservations/{reservation['id']}/cancel"

    assert (await client.put(url, headers=other_headers)).status_code == 403
    assert (await client.put(url, headers=admin_headers)).status_code == 200


@pytest.mark.asyncio
async def test_my_reservations(client: AsyncClient, auth_headers, other_headers, make_stall):
    a = await make_stall("A1")
    b = await make_stall("B1")
    await _reserve(client, auth_headers, a.id)
    await _reserve(client, other_headers, b.id)

    response = await client.get("/api/v1/reservations/my-reservations", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 1
    assert data["reservations"][0]["stall"]["code"] == "A1"


@pytest.mark.asyncio
async def test_get_reservation_visibility(
    client: AsyncClient, auth_headers, other_headers, admin_headers, stall_a1
):
    reservation = (await _reserve(client, auth_headers, stall_a1.id)).json()
    url = f"/api/v1/reservations/{reservation['id']}"

    assert (await client.get(url, headers=auth_headers)).status_code == 200
    assert (await client.get(url, headers=admin_headers)).status_code == 200
    assert (await client.get(url, headers=other_headers)).status_code == 403
    assert (await client.get("/api/v1/reservations/nope", headers=auth_headers)).status_code == 404


@pytest.mark.asyncio
async def test_admin_listing_and_statistics(
    client: AsyncClient, auth_headers, other_headers, admin_headers, make_stall
):
    a = await make_stall("A1", price="10000")
    b = await make_stall("B1", price="20000")
    await _reserve(client, auth_headers, a.id, 10000)
    await _reserve(client, other_headers, b.id, 20000)

    response = await client.get("/api/v1/reservations/", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["count"] == 2

    response = await client.get("/api/v1/reservations/statistics", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["by_status"] == {"pending": 0, "confirmed": 2, "cancelled": 0}
    assert data["total_revenue"] == 30000.0

    assert (await client.get("/api/v1/reservations/", headers=auth_headers)).status_code == 403
    response = await client.get("/api/v1/reservations/statistics", headers=auth_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_send_confirmation(client: AsyncClient, auth_headers, dispatcher, notifier, stall_a1):
    reservation = (await _reserve(client, auth_headers, stall_a1.id)).json()
    await dispatcher.drain()

    response = await client.post(
        f"/api/v1/reservations/{reservation['id']}/send-confirmation", headers=auth_headers
    )
    assert response.status_code == 200
    assert "vendor1@example.com" in response.json()["message"]
    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_send_confirmation_failure(
    client: AsyncClient, auth_headers, dispatcher, notifier, stall_a1
):
    reservation = (await _reserve(client, auth_headers, stall_a1.id)).json()
    await dispatcher.drain()
    notifier.fail_times = -1

    response = await client.post(
        f"/api/v1/reservations/{reservation['id']}/send-confirmation", headers=auth_headers
    )
    assert response.status_code == 502
    assert response.json()["code"] == "notification_failure"


@pytest.mark.asyncio
async def test_concurrent_reservations_one_winner(client: AsyncClient, headers_for, stall_a1):
    """
    Ten vendors submit at once; exactly one gets the stall.
    """
    responses = await asyncio.gather(
        *(_reserve(client, headers_for(f"racer-{i}"), stall_a1.id) for i in range(10))
    )

    status_codes = sorted(r.status_code for r in responses)
    assert status_codes == [201] + [409] * 9

    stall_response = await client.get(f"/api/v1/stalls/{stall_a1.id}")
    assert stall_response.json()["status"] == "RESERVED"
