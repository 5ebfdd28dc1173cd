import logging

from carenotify.core.clock import Clock
from carenotify.db.repositories import NotificationRepository
from carenotify.services.notification_orchestrator import NotificationOrchestrator


class NotificationScheduler:
    """Stateless scheduler service that dispatches due scheduled notifications.

    APScheduler manages the timer (interval trigger) in the runtime.
    This class contains only the business logic for finding and dispatching
    due notifications: no loops, no lifecycle, no state.
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        orchestrator: NotificationOrchestrator,
        clock: Clock,
        logger: logging.Logger,
    ) -> None:
        self.repository = notification_repository
        self.orchestrator = orchestrator
        self.clock = clock
        self.logger = logger

    async def process_due_notifications(self, batch_size: int = 100) -> int:
        """Dispatch all notifications whose scheduled_for <= now.

        Each notification is claimed by clearing its ``scheduled_for`` first,
        so concurrent sweepers never dispatch the same one twice.

        Returns the number of notifications dispatched.
        """
        now = self.clock.now()
        due = await self.repository.find_due_scheduled(now, limit=batch_size)
        if not due:
            return 0

        self.logger.info(f"Found {len(due)} due scheduled notifications")

        dispatched = 0
        for notification in due:
            if not await self.repository.clear_scheduled_for(notification.notification_id, now):
                continue
            notification.scheduled_for = None
            try:
                await self.orchestrator.dispatch(notification)
                dispatched += 1
            except Exception as e:
                self.logger.error(
                    f"Failed to dispatch scheduled notification {notification.notification_id}: {e}",
                    exc_info=True,
                )

        self.logger.info(f"Dispatched {dispatched}/{len(due)} scheduled notifications")
        return dispatched
