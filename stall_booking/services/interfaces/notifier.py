"""
Notification channel interface.
Lets the dispatcher deliver confirmations without knowing the transport.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class ConfirmationMessage:
    reservation_id: str
    recipient_email: Optional[str]
    recipient_name: Optional[str]
    stall_code: str
    total_amount: Decimal
    booked_at: Optional[datetime]


class Notifier(ABC):
    """
    Interface for confirmation delivery.

    Implementations:
    - LogNotifier: writes the confirmation to the structured log
    - SmtpNotifier: sends an email through an SMTP relay
    """

    @abstractmethod
    async def send_confirmation(self, message: ConfirmationMessage) -> None:
        """
        Deliver one confirmation.

        Raises:
            NotificationFailure (or any exception) when delivery fails;
            the dispatcher decides whether to retry
        """
        pass
