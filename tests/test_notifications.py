"""
Tests for confirmation delivery: retry, failure isolation, explicit resend.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from stall_booking.core.config import Settings
from stall_booking.domain.errors import ConflictError, NotificationFailure
from stall_booking.domain.models import ReservationStatus
from stall_booking.services.interfaces.notifier import ConfirmationMessage
from stall_booking.services.notification_service import (
    LogNotifier,
    NotificationDispatcher,
    SmtpNotifier,
    build_notifier,
)


def _message(email="vendor1@example.com") -> ConfirmationMessage:
    return ConfirmationMessage(
        reservation_id="res-1",
        recipient_email=email,
        recipient_name="Vendor One",
        stall_code="A1",
        total_amount=Decimal("10000"),
        booked_at=datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
    )


@pytest.mark.asyncio
async def test_deliver_retries_until_success(notifier):
    notifier.fail_times = 2
    dispatcher = NotificationDispatcher(notifier, max_attempts=3, retry_base_delay=0)

    await dispatcher.deliver(_message())

    assert notifier.attempts == 3
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_deliver_gives_up_after_max_attempts(notifier):
    notifier.fail_times = -1
    dispatcher = NotificationDispatcher(notifier, max_attempts=3, retry_base_delay=0)

    with pytest.raises(NotificationFailure) as exc_info:
        await dispatcher.deliver(_message())

    assert notifier.attempts == 3
    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_failed_delivery_does_not_fail_reservation(
    engine, repository, dispatcher, notifier, vendor, stall_a1
):
    notifier.fail_times = -1

    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await dispatcher.drain()

    assert notifier.attempts == 3
    assert notifier.sent == []
    async with repository.unit_of_work() as uow:
        stored = await uow.reservations.get(reservation.id)
    assert stored.status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_dispatch_returns_before_delivery(engine, dispatcher, notifier, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))

    assert dispatcher.pending == 1
    assert notifier.sent == []

    await dispatcher.drain()
    assert dispatcher.pending == 0
    assert notifier.sent[0].reservation_id == reservation.id


@pytest.mark.asyncio
async def test_resend_confirmation(engine, dispatcher, notifier, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await dispatcher.drain()

    await engine.resend_confirmation(vendor, reservation.id)

    assert [m.reservation_id for m in notifier.sent] == [reservation.id, reservation.id]


@pytest.mark.asyncio
async def test_resend_reports_failure(engine, dispatcher, notifier, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await dispatcher.drain()
    notifier.fail_times = -1

    with pytest.raises(NotificationFailure):
        await engine.resend_confirmation(vendor, reservation.id)


@pytest.mark.asyncio
async def test_resend_for_cancelled_reservation_conflicts(engine, vendor, stall_a1):
    reservation = await engine.reserve(vendor, stall_a1.id, Decimal("10000"))
    await engine.cancel(vendor, reservation.id)

    with pytest.raises(ConflictError):
        await engine.resend_confirmation(vendor, reservation.id)


@pytest.mark.asyncio
async def test_smtp_notifier_requires_recipient():
    notifier = SmtpNotifier(Settings())

    with pytest.raises(NotificationFailure):
        await notifier.send_confirmation(_message(email=None))


def test_smtp_email_carries_pass_token():
    settings = Settings(SMTP_SENDER="expo@example.com")
    email = SmtpNotifier(settings).build_email(_message())

    assert email["To"] == "vendor1@example.com"
    assert email["From"] == "expo@example.com"
    assert "A1" in email["Subject"]
    body = email.get_content()
    assert "Reservation ID: res-1" in body
    assert "Dear Vendor One," in body


def test_build_notifier_selects_backend():
    assert isinstance(build_notifier(Settings(NOTIFICATION_BACKEND="smtp")), SmtpNotifier)
    assert isinstance(build_notifier(Settings(NOTIFICATION_BACKEND="log")), LogNotifier)
