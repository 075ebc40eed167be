"""Fake notification adapter — records notifications for testing."""

from uuid import uuid4

from stockledger.notification.port import NotificationPort


class FakeNotifier(NotificationPort):
    """Notifier that records notifications in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Notification rejected"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification rejected"):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(
        self,
        notification_type: str,
        recipient_id: str,
        message: str,
        payload: dict,
    ) -> dict:
        if not self.should_succeed:
            return {
                "notification_id": None,
                "status": "failed",
                "error": self.failure_reason,
            }

        notification_id = f"ntf-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "notification_id": notification_id,
                "notification_type": notification_type,
                "recipient_id": recipient_id,
                "message": message,
                "payload": payload,
            }
        )
        return {"notification_id": notification_id, "status": "accepted"}

    def of_type(self, notification_type: str) -> list[dict]:
        return [n for n in self.sent if n["notification_type"] == notification_type]

    def reset(self):
        """Clear recorded notifications (useful between tests)."""
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Notification rejected"
