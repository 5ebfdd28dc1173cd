from uuid import uuid4

from carenotify.domain.enums.notification import NotificationType
from carenotify.domain.notification import DomainNotificationCreate


class RecordingNotifier:
    """Stands in for the orchestrator on the alerting side; keeps every request."""

    def __init__(self, fail: bool = False) -> None:
        self.requests: list[DomainNotificationCreate] = []
        self.fail = fail

    async def create_notification(self, request: DomainNotificationCreate) -> str:
        if self.fail:
            raise RuntimeError("notification store unavailable")
        self.requests.append(request)
        return str(uuid4())

    def of_type(self, notification_type: NotificationType) -> list[DomainNotificationCreate]:
        return [r for r in self.requests if r.type == notification_type]
