"""
Reservation confirmation delivery.

DELIVERY STRATEGY: fire-and-forget task with bounded retry
==========================================================

The booking has already committed by the time a confirmation is sent, so
delivery must never slow down or fail the reservation request:

  1. The allocation engine calls dispatch_confirmation() after commit.
  2. The dispatcher schedules an asyncio task and returns immediately.
  3. The task calls the notifier up to NOTIFICATION_MAX_ATTEMPTS times,
     doubling the wait between attempts.
  4. A final failure is logged and counted; nothing is raised to the caller.

The task holds no store lock. Outstanding tasks are tracked so shutdown
(and the tests) can wait for them with drain().
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

from stall_booking.core.config import Settings, get_settings
from stall_booking.core.logging import get_logger
from stall_booking.core.metrics import notifications_in_flight, record_notification
from stall_booking.domain.errors import NotificationFailure
from stall_booking.domain.models import IdentityContext, Reservation
from stall_booking.services.interfaces.notifier import ConfirmationMessage, Notifier

logger = get_logger(__name__)


class LogNotifier(Notifier):
    """Writes confirmations to the log. Default outside production."""

    async def send_confirmation(self, message: ConfirmationMessage) -> None:
        logger.info(
            "confirmation_logged",
            reservation_id=message.reservation_id,
            recipient=message.recipient_email,
            stall_code=message.stall_code,
            total_amount=str(message.total_amount),
        )


class SmtpNotifier(Notifier):
    """Sends the confirmation email through an SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def build_email(self, message: ConfirmationMessage) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = f"Stall Reservation Confirmed - {message.stall_code}"
        email["From"] = self._settings.SMTP_SENDER
        email["To"] = message.recipient_email

        booked = message.booked_at.strftime("%Y-%m-%d %H:%M UTC") if message.booked_at else "-"
        greeting = f"Dear {message.recipient_name}," if message.recipient_name else "Hello,"
        email.set_content(
            f"{greeting}\n\n"
            f"Your reservation for stall {message.stall_code} is confirmed.\n\n"
            f"Reservation ID: {message.reservation_id}\n"
            f"Total amount: {message.total_amount}\n"
            f"Booked at: {booked}\n\n"
            "Present the reservation ID at the entrance to collect your pass.\n"
        )
        return email

    def _send(self, email: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            smtp.send_message(email)

    async def send_confirmation(self, message: ConfirmationMessage) -> None:
        if not message.recipient_email:
            raise NotificationFailure(
                f"No recipient address for reservation {message.reservation_id}"
            )
        email = self.build_email(message)
        try:
            await asyncio.to_thread(self._send, email)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailure(f"SMTP delivery failed: {exc}") from exc


def build_confirmation(reservation: Reservation, recipient: IdentityContext) -> ConfirmationMessage:
    return ConfirmationMessage(
        reservation_id=reservation.id,
        recipient_email=recipient.email,
        recipient_name=recipient.name,
        stall_code=reservation.stall.code if reservation.stall else reservation.stall_id,
        total_amount=reservation.total_amount,
        booked_at=reservation.created_at,
    )


class NotificationDispatcher:
    def __init__(
        self,
        notifier: Notifier,
        max_attempts: int = 3,
        retry_base_delay: float = 0.5,
    ) -> None:
        self.notifier = notifier
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = retry_base_delay
        self._tasks: set[asyncio.Task] = set()

    async def deliver(self, message: ConfirmationMessage) -> None:
        """
        Send with retries and wait for the outcome.

        Raises:
            NotificationFailure: every attempt failed
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.notifier.send_confirmation(message)
            except Exception as exc:
                if attempt == self.max_attempts:
                    record_notification("failed")
                    raise NotificationFailure(
                        f"Confirmation for reservation {message.reservation_id} "
                        f"failed after {attempt} attempts"
                    ) from exc

                record_notification("retry")
                logger.info(
                    "notification_retry",
                    reservation_id=message.reservation_id,
                    attempt=attempt,
                    error=str(exc),
                )
                await asyncio.sleep(self.retry_base_delay * (2 ** (attempt - 1)))
                continue

            record_notification("sent")
            logger.info(
                "notification_sent",
                reservation_id=message.reservation_id,
                attempt=attempt,
            )
            return

    async def _deliver_in_background(self, message: ConfirmationMessage) -> None:
        try:
            await self.deliver(message)
        except NotificationFailure as exc:
            logger.error(
                "notification_failed",
                reservation_id=message.reservation_id,
                error=exc.message,
                cause=str(exc.__cause__) if exc.__cause__ else None,
            )

    def dispatch_confirmation(
        self,
        reservation: Reservation,
        recipient: IdentityContext,
    ) -> Optional[asyncio.Task]:
        """Schedule delivery and return without waiting for it."""
        message = build_confirmation(reservation, recipient)
        try:
            task = asyncio.get_running_loop().create_task(self._deliver_in_background(message))
        except RuntimeError:
            logger.error("notification_not_scheduled", reservation_id=reservation.id)
            return None

        self._tasks.add(task)
        notifications_in_flight.inc()
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        notifications_in_flight.dec()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_notifier(settings: Settings) -> Notifier:
    if settings.NOTIFICATION_BACKEND == "smtp":
        return SmtpNotifier(settings)
    return LogNotifier()


def build_dispatcher(settings: Optional[Settings] = None) -> NotificationDispatcher:
    settings = settings or get_settings()
    return NotificationDispatcher(
        build_notifier(settings),
        max_attempts=settings.NOTIFICATION_MAX_ATTEMPTS,
        retry_base_delay=settings.NOTIFICATION_RETRY_BASE_DELAY,
    )
