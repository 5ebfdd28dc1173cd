import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from jinja2 import TemplateError

from carenotify.core.clock import Clock
from carenotify.core.metrics import DeliveryMetrics
from carenotify.db.repositories import NotificationRepository, UserDirectoryRepository
from carenotify.domain.delivery import (
    ChannelDeliveryResult,
    QueueItem,
    RecipientDeliveryOutcome,
    SendResult,
)
from carenotify.domain.enums.notification import DeliveryChannel, DeliveryStatus, NotificationPriority
from carenotify.domain.notification import DomainNotification
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.channels import ChannelAdapterRegistry, RenderedContent
from carenotify.services.rendering import TemplateRenderer
from carenotify.settings import Settings

UNAVAILABLE_AFTER_FAILURES = 10
DEGRADED_AFTER_FAILURES = 5
DEGRADED_WINDOW = timedelta(minutes=5)


@dataclass
class ChannelHealth:
    available: bool = True
    failure_count: int = 0
    last_failure: datetime | None = None
    last_error: str | None = None

    def degraded(self, now: datetime) -> bool:
        if not self.available:
            return True
        return (
            self.failure_count > DEGRADED_AFTER_FAILURES
            and self.last_failure is not None
            and now - self.last_failure < DEGRADED_WINDOW
        )


class _KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, ...], asyncio.Lock] = {}
        self._users: dict[tuple[str, ...], int] = {}

    @asynccontextmanager
    async def hold(self, key: tuple[str, ...]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ChannelManager:
    """Sends one queue item over its channels and records per-pair state.

    Guaranteed-delivery priorities walk the channels in fallback order and
    stop at the first success; every other priority has one channel per item.
    Sends are bounded per channel by a semaphore, and at most one send per
    (notification, recipient, channel) is ever in flight.
    """

    def __init__(
        self,
        adapters: ChannelAdapterRegistry,
        notification_repository: NotificationRepository,
        user_directory: UserDirectoryRepository,
        renderer: TemplateRenderer,
        analytics: DeliveryAnalytics,
        settings: Settings,
        clock: Clock,
        delivery_metrics: DeliveryMetrics,
        logger: logging.Logger,
    ) -> None:
        self.adapters = adapters
        self.repository = notification_repository
        self.directory = user_directory
        self.renderer = renderer
        self.analytics = analytics
        self.clock = clock
        self.metrics = delivery_metrics
        self.logger = logger
        self.send_timeout = settings.CHANNEL_SEND_TIMEOUT_SECONDS
        self.fallback_order = settings.CHANNEL_FALLBACK_ORDER
        self._concurrency = {channel: settings.CHANNEL_CONCURRENCY.get(channel, 10) for channel in DeliveryChannel}
        self._semaphores = {channel: asyncio.Semaphore(limit) for channel, limit in self._concurrency.items()}
        self._in_flight = _KeyedLocks()
        self._health: dict[DeliveryChannel, ChannelHealth] = {channel: ChannelHealth() for channel in DeliveryChannel}

    def effective_channels(
        self, priority: NotificationPriority, requested: list[DeliveryChannel]
    ) -> list[DeliveryChannel]:
        """Channels to create delivery state for, in the order they should be tried."""
        requested = list(dict.fromkeys(requested)) or [DeliveryChannel.WEBSOCKET]
        if not priority.requires_guaranteed_delivery:
            return requested
        order = self.fallback_order.get(priority, [])
        ordered = [channel for channel in order if channel in requested]
        return ordered + [channel for channel in requested if channel not in ordered]

    async def deliver(self, notification: DomainNotification, item: QueueItem) -> RecipientDeliveryOutcome:
        if notification.priority.requires_guaranteed_delivery and len(item.channels) > 1:
            return await self._deliver_with_fallback(notification, item)

        outcome = RecipientDeliveryOutcome()
        results = await asyncio.gather(*(self._attempt(notification, item, channel) for channel in item.channels))
        for channel, result in zip(item.channels, results, strict=True):
            if result is None:
                outcome.not_attempted.append(channel)
            else:
                outcome.results[channel] = result
        return outcome

    async def _deliver_with_fallback(
        self, notification: DomainNotification, item: QueueItem
    ) -> RecipientDeliveryOutcome:
        outcome = RecipientDeliveryOutcome()
        for channel in item.channels:
            delivery = await self.repository.get_delivery(item.notification_id, item.recipient_id, channel)
            if delivery is not None and delivery.status == DeliveryStatus.DELIVERED:
                outcome.not_attempted = list(item.channels)
                return outcome

        now = self.clock.now()
        for index, channel in enumerate(item.channels):
            is_last = index == len(item.channels) - 1
            if not is_last and self._health[channel].degraded(now):
                self.logger.info(
                    f"Skipping degraded channel {channel} in fallback",
                    extra={"notification_id": item.notification_id, "channel": str(channel)},
                )
                outcome.not_attempted.append(channel)
                continue
            result = await self._attempt(notification, item, channel)
            if result is None:
                outcome.not_attempted.append(channel)
                continue
            outcome.results[channel] = result
            if result.success:
                # Also closes channels that failed earlier in this walk
                await self._skip_remaining(item, [c for c in item.channels if c != channel], channel)
                break
            self.logger.warning(
                f"Channel {channel} failed for guaranteed delivery, falling back: {result.error}",
                extra={"notification_id": item.notification_id, "recipient_id": item.recipient_id,
                       "channel": str(channel)},
            )
        return outcome

    async def _skip_remaining(
        self, item: QueueItem, channels: list[DeliveryChannel], delivered_on: DeliveryChannel
    ) -> None:
        for channel in channels:
            skipped = await self.repository.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.SKIPPED, self.clock.now(),
                allowed_from=[DeliveryStatus.PENDING, DeliveryStatus.FAILED],
                skip_reason=f"delivered_via_{delivered_on}",
            )
            if skipped:
                self.analytics.record(channel, item.recipient_role, skipped=1)

    async def _attempt(
        self, notification: DomainNotification, item: QueueItem, channel: DeliveryChannel
    ) -> ChannelDeliveryResult | None:
        key = (item.notification_id, item.recipient_id, str(channel))
        async with self._in_flight.hold(key):
            claimed = await self.repository.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.SENDING, self.clock.now(),
                allowed_from=[DeliveryStatus.PENDING, DeliveryStatus.FAILED, DeliveryStatus.SENDING],
                sent_at=self.clock.now(),
            )
            if not claimed:
                return None
            result = await self._send(notification, item, channel)
            await self._record(notification, item, result)
            return result

    async def _send(
        self, notification: DomainNotification, item: QueueItem, channel: DeliveryChannel
    ) -> ChannelDeliveryResult:
        started = time.monotonic()
        send_result = await self._resolve_and_send(notification, item, channel)
        latency_ms = (time.monotonic() - started) * 1000
        return ChannelDeliveryResult(
            channel=channel,
            success=send_result.success,
            latency_ms=latency_ms,
            error=send_result.error,
            error_kind=send_result.error_kind,
            provider_message_id=send_result.provider_message_id,
        )

    async def _resolve_and_send(
        self, notification: DomainNotification, item: QueueItem, channel: DeliveryChannel
    ) -> SendResult:
        address = await self._resolve_address(item.recipient_id, channel)
        if address is None:
            return SendResult.permanent(f"recipient has no {channel} address")
        try:
            content = self.renderer.render(notification, channel, item.recipient_role)
        except TemplateError as e:
            self.logger.error(f"Rendering {notification.type} for {channel} failed: {e}")
            return SendResult.permanent(f"template error: {e}")

        metadata: dict[str, Any] = {
            "notification_id": notification.notification_id,
            "recipient_id": item.recipient_id,
            "priority": str(notification.priority),
            "attempt": item.attempt_count + 1,
        }
        async with self._semaphores[channel]:
            return await self._send_with_timeout(channel, address, content, metadata)

    async def _send_with_timeout(
        self, channel: DeliveryChannel, address: str, content: RenderedContent, metadata: dict[str, Any]
    ) -> SendResult:
        try:
            return await asyncio.wait_for(
                self.adapters.send(channel, address, content, metadata), timeout=self.send_timeout
            )
        except asyncio.TimeoutError:
            return SendResult.transient(f"{channel} send timed out after {self.send_timeout}s")
        except Exception as e:
            self.logger.error(f"Unexpected error from {channel} adapter: {e}", exc_info=True)
            return SendResult.transient(f"{channel} adapter error: {e}")

    async def _resolve_address(self, recipient_id: str, channel: DeliveryChannel) -> str | None:
        if channel == DeliveryChannel.WEBSOCKET:
            return recipient_id
        contact = await self.directory.get_contact(recipient_id)
        if contact is None:
            return None
        return contact.email if channel == DeliveryChannel.EMAIL else contact.phone

    async def _record(
        self, notification: DomainNotification, item: QueueItem, result: ChannelDeliveryResult
    ) -> None:
        now = self.clock.now()
        channel = result.channel
        if result.success:
            await self.repository.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.DELIVERED, now,
                delivered_at=now,
                latency_ms=result.latency_ms,
                provider_message_id=result.provider_message_id,
                last_error=None,
                error_kind=None,
            )
            await self.repository.increment_analytics(item.notification_id, "delivered")
            self.analytics.record(
                channel, item.recipient_role,
                sent=1, delivered=1, latency_total_ms=result.latency_ms, latency_samples=1,
            )
            self._mark_healthy(channel)
            self.logger.info(
                f"Delivered via {channel} in {result.latency_ms:.0f}ms",
                extra={"notification_id": item.notification_id, "recipient_id": item.recipient_id,
                       "channel": str(channel)},
            )
        else:
            await self.repository.transition_delivery(
                item.notification_id, item.recipient_id, channel, DeliveryStatus.FAILED, now,
                last_error=result.error,
                error_kind=str(result.error_kind) if result.error_kind else None,
            )
            self.analytics.record(channel, item.recipient_role, sent=1, failed=1)
            self._mark_failure(channel, now, result.error)
            self.logger.warning(
                f"Delivery via {channel} failed ({result.error_kind}): {result.error}",
                extra={"notification_id": item.notification_id, "recipient_id": item.recipient_id,
                       "channel": str(channel), "error": result.error},
            )
        self.metrics.record_attempt(str(channel), result.success, result.latency_ms)

    def _mark_healthy(self, channel: DeliveryChannel) -> None:
        health = self._health[channel]
        if not health.available:
            self.logger.info(f"Channel {channel} recovered")
        health.available = True
        health.failure_count = max(health.failure_count - 1, 0)

    def _mark_failure(self, channel: DeliveryChannel, now: datetime, error: str | None) -> None:
        health = self._health[channel]
        health.failure_count += 1
        health.last_failure = now
        health.last_error = error
        if health.available and health.failure_count > UNAVAILABLE_AFTER_FAILURES:
            health.available = False
            self.logger.error(f"Channel {channel} marked unavailable after {health.failure_count} failures")

    def get_channel_health(self, channel: DeliveryChannel) -> ChannelHealth:
        return self._health[channel]

    def reset_channel_health(self, channel: DeliveryChannel | None = None) -> None:
        for target in [channel] if channel else list(DeliveryChannel):
            self._health[target] = ChannelHealth()
        self.logger.info(f"Reset health of {channel or 'all channels'}")

    def get_stats(self) -> dict[str, Any]:
        now = self.clock.now()
        channels: dict[str, Any] = {}
        for channel, health in self._health.items():
            channels[str(channel)] = {
                "configured": channel in self.adapters.channels,
                "available": health.available,
                "degraded": health.degraded(now),
                "failure_count": health.failure_count,
                "last_failure": health.last_failure.isoformat() if health.last_failure else None,
                "last_error": health.last_error,
                "concurrency": self._concurrency[channel],
            }
        return {"channels": channels, "in_flight": len(self._in_flight)}
