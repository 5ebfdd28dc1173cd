import logging
import random
from dataclasses import dataclass
from datetime import timedelta

from carenotify.core.clock import Clock
from carenotify.core.metrics import DeliveryMetrics
from carenotify.db.repositories import DeliveryQueueRepository, NotificationRepository
from carenotify.domain.delivery import QueueItem
from carenotify.domain.enums.notification import DeliveryChannel, DeliveryStatus
from carenotify.settings import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with symmetric jitter, capped at ``max_seconds``."""

    base_seconds: float = 1.0
    max_seconds: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.2

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        raw = self.base_seconds * self.multiplier ** max(attempt - 1, 0)
        if self.jitter:
            spread = raw * self.jitter
            raw += (rng or random).uniform(-spread, spread)
        return min(max(raw, 0.0), self.max_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.QUEUE_BACKOFF_BASE_SECONDS,
            max_seconds=settings.QUEUE_BACKOFF_MAX_SECONDS,
            multiplier=settings.QUEUE_BACKOFF_MULTIPLIER,
            jitter=settings.QUEUE_BACKOFF_JITTER,
        )


@dataclass
class FailureOutcome:
    item_id: str
    attempt_count: int
    exhausted: bool
    retry_in_seconds: float | None = None


class DeliveryQueue:
    """Durable, lease-based delivery queue with bounded retries.

    Items become visible when ``available_at <= now``. A dequeue leases the
    item for ``QUEUE_LEASE_SECONDS``; an item whose worker never reports back
    reappears once the lease runs out. ``mark_failed`` either reschedules with
    backoff or, after ``QUEUE_MAX_RETRIES`` attempts, marks the underlying
    recipient/channel pairs permanently failed and drops the item.
    """

    def __init__(
        self,
        queue_repository: DeliveryQueueRepository,
        notification_repository: NotificationRepository,
        settings: Settings,
        clock: Clock,
        delivery_metrics: DeliveryMetrics,
        logger: logging.Logger,
        rng: random.Random | None = None,
    ) -> None:
        self.repository = queue_repository
        self.notifications = notification_repository
        self.clock = clock
        self.metrics = delivery_metrics
        self.logger = logger
        self.max_retries = settings.QUEUE_MAX_RETRIES
        self.lease = timedelta(seconds=settings.QUEUE_LEASE_SECONDS)
        self.backoff = BackoffPolicy.from_settings(settings)
        self._rng = rng or random.Random()

    async def enqueue(self, item: QueueItem) -> bool:
        """Add ``item`` unless a queued item already covers any of its (recipient, channel) pairs."""
        now = self.clock.now()
        if item.available_at is None:
            item.available_at = max(item.scheduled_for, now)
        inserted = await self.repository.insert_if_absent(item)
        if inserted:
            self.metrics.record_enqueued()
            self.logger.debug(
                "Enqueued delivery item",
                extra={"item_id": item.item_id, "notification_id": item.notification_id,
                       "recipient_id": item.recipient_id},
            )
        else:
            self.logger.debug(
                "Delivery item overlaps a queued item",
                extra={"notification_id": item.notification_id, "recipient_id": item.recipient_id,
                       "channels": [str(c) for c in item.channels]},
            )
        return inserted

    async def dequeue_batch(self, limit: int) -> list[QueueItem]:
        """Lease up to ``limit`` ready items, highest priority first, FIFO within a priority."""
        now = self.clock.now()
        lease_until = now + self.lease
        items: list[QueueItem] = []
        while len(items) < limit:
            item = await self.repository.lease_next(now, lease_until)
            if item is None:
                break
            items.append(item)
        if items:
            self.metrics.record_dequeued(len(items))
        return items

    async def mark_processed(self, item_id: str) -> bool:
        return await self.repository.delete(item_id)

    async def mark_failed(
        self,
        item_id: str,
        reason: str,
        *,
        retriable: bool = True,
        permanent_channels: list[DeliveryChannel] | None = None,
    ) -> FailureOutcome | None:
        """Record a failed attempt of the item.

        ``permanent_channels`` are terminated right away while the rest of the
        item keeps retrying. A non-retriable failure, or the last allowed
        attempt, terminates every channel of the item and removes it.
        """
        item = await self.repository.get(item_id)
        if item is None:
            self.logger.warning(f"Cannot mark unknown queue item {item_id} as failed")
            return None

        now = self.clock.now()
        attempt_count = item.attempt_count + 1

        if permanent_channels:
            await self._terminate(item, permanent_channels, reason)

        if not retriable or attempt_count >= self.max_retries:
            await self._terminate(item, item.channels, reason)
            await self.repository.delete(item_id)
            self.logger.warning(
                f"Delivery item gave up after {attempt_count} attempt(s): {reason}",
                extra={"item_id": item_id, "notification_id": item.notification_id,
                       "recipient_id": item.recipient_id, "attempt": attempt_count},
            )
            return FailureOutcome(item_id=item_id, attempt_count=attempt_count, exhausted=True)

        delay = self.backoff.delay(attempt_count, self._rng)
        await self.repository.reschedule(item_id, attempt_count, now + timedelta(seconds=delay), reason)
        for channel in item.channels:
            await self.notifications.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.PENDING, now,
                allowed_from=[DeliveryStatus.FAILED],
            )
        self.metrics.record_retry(attempt_count)
        self.logger.info(
            f"Delivery item rescheduled in {delay:.2f}s: {reason}",
            extra={"item_id": item_id, "notification_id": item.notification_id, "attempt": attempt_count},
        )
        return FailureOutcome(
            item_id=item_id, attempt_count=attempt_count, exhausted=False, retry_in_seconds=delay
        )

    async def _terminate(self, item: QueueItem, channels: list[DeliveryChannel], reason: str) -> None:
        now = self.clock.now()
        for channel in channels:
            moved = await self.notifications.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.PERMANENTLY_FAILED, now,
                allowed_from=[DeliveryStatus.PENDING, DeliveryStatus.SENDING, DeliveryStatus.FAILED],
                last_error=reason,
            )
            if moved:
                self.metrics.record_permanent_failure(str(channel))

    async def get_queue_status(self) -> dict[str, int]:
        now = self.clock.now()
        return {
            "queue_depth": await self.repository.count(),
            "ready": await self.repository.count_ready(now),
        }
