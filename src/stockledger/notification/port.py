"""Notification port (abstract interface).

The engine hands events to this collaborator and moves on: delivery and
retries are the adapter's business, and a failed delivery never undoes a
committed ledger entry.
"""

from abc import ABC, abstractmethod
from enum import Enum


class NotificationType(Enum):
    LOW_STOCK = "LowStock"
    INTEGRITY_ALARM = "IntegrityAlarm"
    TRANSFER_COMPLETED = "TransferCompleted"
    TRANSFER_CANCELLED = "TransferCancelled"


class NotificationPort(ABC):
    """Abstract interface for notification adapters."""

    @abstractmethod
    def send(
        self,
        notification_type: str,
        recipient_id: str,
        message: str,
        payload: dict,
    ) -> dict:
        """Hand a notification over for delivery.

        Returns:
            dict with keys: notification_id, status ("accepted" or "failed"), error (optional)
        """
        ...
