"""Notifier registry.

Provides get_notifier() / set_notifier() to swap implementations:
- FakeNotifier for development and testing (default)
- LoggingNotifier when STOCKLEDGER_NOTIFIER=log
"""

import os

import structlog

from stockledger.notification.fake_adapter import FakeNotifier
from stockledger.notification.logging_adapter import LoggingNotifier
from stockledger.notification.port import NotificationPort

logger = structlog.get_logger(__name__)

_current_notifier: NotificationPort | None = None


def get_notifier() -> NotificationPort:
    """Return the current notifier. Defaults to FakeNotifier."""
    global _current_notifier
    if _current_notifier is None:
        if os.getenv("STOCKLEDGER_NOTIFIER", "fake").lower() == "log":
            _current_notifier = LoggingNotifier()
        else:
            _current_notifier = FakeNotifier()
    return _current_notifier


def set_notifier(notifier: NotificationPort) -> None:
    """Override the active notifier (useful for tests)."""
    global _current_notifier
    _current_notifier = notifier


def reset_notifier() -> None:
    """Reset to default notifier."""
    global _current_notifier
    _current_notifier = None


def notify(notification_type: str, recipient_id: str, message: str, payload: dict) -> dict | None:
    """Send through the active notifier, logging rather than raising on failure."""
    try:
        result = get_notifier().send(notification_type, recipient_id, message, payload)
    except Exception as e:
        logger.error(
            "Notification dispatch failed",
            notification_type=notification_type,
            recipient_id=recipient_id,
            error=str(e),
        )
        return None

    if result.get("status") != "accepted":
        logger.warning(
            "Notification not accepted",
            notification_type=notification_type,
            recipient_id=recipient_id,
            error=result.get("error"),
        )
    return result
