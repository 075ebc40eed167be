"""Notifier that writes every notification to the structured log.

Useful where no delivery service is wired in yet: operators can still pick
alarms up from the error log.
"""

from uuid import uuid4

import structlog

from stockledger.notification.port import NotificationPort, NotificationType

logger = structlog.get_logger(__name__)


class LoggingNotifier(NotificationPort):
    def send(
        self,
        notification_type: str,
        recipient_id: str,
        message: str,
        payload: dict,
    ) -> dict:
        notification_id = f"log-{uuid4().hex[:12]}"
        log = logger.error if notification_type == NotificationType.INTEGRITY_ALARM.value else logger.info
        log(
            message,
            notification_id=notification_id,
            notification_type=notification_type,
            recipient_id=recipient_id,
            payload=payload,
        )
        return {"notification_id": notification_id, "status": "accepted"}
