import asyncio
import logging

from carenotify.core.clock import Clock
from carenotify.db.repositories import NotificationRepository
from carenotify.domain.delivery import QueueItem
from carenotify.domain.enums.notification import DeliveryErrorKind, DeliveryStatus
from carenotify.services.channel_manager import ChannelManager
from carenotify.services.delivery_queue import DeliveryQueue


class DeliveryWorker:
    """Stateless poller: lease a batch from the queue and deliver it.

    APScheduler drives ``process_batch`` on a short interval; a run never
    overlaps with itself (``max_instances=1``).
    """

    def __init__(
        self,
        queue: DeliveryQueue,
        notification_repository: NotificationRepository,
        channel_manager: ChannelManager,
        clock: Clock,
        logger: logging.Logger,
        batch_size: int = 50,
    ) -> None:
        self.queue = queue
        self.repository = notification_repository
        self.channels = channel_manager
        self.clock = clock
        self.logger = logger
        self.batch_size = batch_size

    async def process_batch(self) -> int:
        items = await self.queue.dequeue_batch(self.batch_size)
        if not items:
            return 0
        results = await asyncio.gather(*(self.process_item(item) for item in items), return_exceptions=True)
        for item, result in zip(items, results, strict=True):
            if isinstance(result, BaseException):
                self.logger.error(
                    f"Unhandled error processing queue item: {result}",
                    exc_info=result,
                    extra={"item_id": item.item_id, "notification_id": item.notification_id},
                )
                await self._fail_crashed(item, result)
        return len(items)

    async def _fail_crashed(self, item: QueueItem, error: BaseException) -> None:
        """Count a crashed attempt against the item's retries and release its claimed pairs."""
        reason = f"processing error: {error}"
        try:
            now = self.clock.now()
            for channel in item.channels:
                await self.repository.transition_delivery(
                    item.notification_id, item.recipient_id, channel, DeliveryStatus.FAILED, now,
                    allowed_from=[DeliveryStatus.SENDING],
                    last_error=reason,
                    error_kind=str(DeliveryErrorKind.TRANSIENT),
                )
            await self.queue.mark_failed(item.item_id, reason)
        except Exception as e:
            # The lease expires and the item is picked up again
            self.logger.error(
                f"Could not record failure of queue item: {e}",
                extra={"item_id": item.item_id, "notification_id": item.notification_id},
            )

    async def process_item(self, item: QueueItem) -> None:
        notification = await self.repository.get_notification(item.notification_id)
        if notification is None:
            self.logger.warning(
                "Dropping queue item of a deleted notification",
                extra={"item_id": item.item_id, "notification_id": item.notification_id},
            )
            await self.queue.mark_processed(item.item_id)
            return
        if notification.expires_at <= self.clock.now():
            await self.queue.mark_failed(item.item_id, "notification expired", retriable=False)
            return

        outcome = await self.channels.deliver(notification, item)

        if outcome.any_delivered or not outcome.results:
            await self.queue.mark_processed(item.item_id)
            return

        errors = "; ".join(f"{c}: {r.error}" for c, r in outcome.results.items() if r.error)
        retriable = outcome.retriable_channels
        if retriable:
            await self.queue.mark_failed(item.item_id, errors, permanent_channels=outcome.permanent_channels)
        else:
            await self.queue.mark_failed(item.item_id, errors, retriable=False)
