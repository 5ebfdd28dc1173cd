import logging
from datetime import datetime, timedelta

from carenotify.core.clock import Clock
from carenotify.core.metrics import DeliveryMetrics
from carenotify.db.repositories import NotificationRepository, UserDirectoryRepository
from carenotify.domain.delivery import QueueItem, RecipientDelivery
from carenotify.domain.enums.notification import DeliveryChannel, DeliveryStatus, ProviderEvent
from carenotify.domain.notification import (
    DeliveryNotFoundError,
    DomainNotification,
    DomainNotificationCreate,
    NotificationAnalytics,
    NotificationNotFoundError,
    NotificationRecipient,
    NotificationValidationError,
)
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.channel_manager import ChannelManager
from carenotify.services.delivery_queue import DeliveryQueue
from carenotify.services.preferences import PreferenceFilter, PreferenceStore
from carenotify.settings import Settings


class NotificationOrchestrator:
    """Entry point for domain collaborators that want users notified.

    Persists the notification with a pending state per recipient and channel,
    filters recipients through their preferences and hands the rest to the
    delivery queue. Scheduled notifications are persisted now and dispatched
    by :class:`NotificationScheduler` once due.
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        user_directory: UserDirectoryRepository,
        preference_store: PreferenceStore,
        queue: DeliveryQueue,
        channel_manager: ChannelManager,
        analytics: DeliveryAnalytics,
        settings: Settings,
        clock: Clock,
        delivery_metrics: DeliveryMetrics,
        logger: logging.Logger,
    ) -> None:
        self.repository = notification_repository
        self.directory = user_directory
        self.preferences = preference_store
        self.queue = queue
        self.channels = channel_manager
        self.analytics = analytics
        self.clock = clock
        self.metrics = delivery_metrics
        self.logger = logger
        self.default_ttl = timedelta(days=settings.NOTIFICATION_DEFAULT_TTL_DAYS)
        self.filter = PreferenceFilter()

    async def create_notification(self, request: DomainNotificationCreate) -> str:
        now = self.clock.now()
        self._validate(request, now)

        recipients = await self._resolve_recipients(request)
        if not recipients:
            raise NotificationValidationError("notification resolves to no recipients")

        scheduled_for = request.scheduled_for if request.scheduled_for and request.scheduled_for > now else None
        notification = DomainNotification(
            type=request.type,
            category=request.category,
            priority=request.priority,
            content=request.content,
            recipients=recipients,
            created_at=now,
            expires_at=request.expires_at or now + self.default_ttl,
            scheduled_for=scheduled_for,
            context_data=request.context_data,
            language=request.language,
            analytics=NotificationAnalytics(total_recipients=len(recipients)),
        )
        await self.repository.create_notification(notification)
        await self.repository.create_deliveries([
            self._pending_delivery(notification, recipient, channel)
            for recipient in recipients
            for channel in recipient.channels
        ])
        self.metrics.record_created(str(notification.type), str(notification.priority))
        self.logger.info(
            f"Created {notification.priority} notification {notification.type} for {len(recipients)} recipient(s)",
            extra={"notification_id": notification.notification_id, "scheduled": scheduled_for is not None},
        )

        if scheduled_for is None:
            await self.dispatch(notification)
        return notification.notification_id

    def _validate(self, request: DomainNotificationCreate, now: datetime) -> None:
        if not request.content.title.strip() or not request.content.message.strip():
            raise NotificationValidationError("title and message are required")
        if not request.recipients and not request.target_roles:
            raise NotificationValidationError("at least one recipient or target role is required")
        if request.expires_at is not None and request.expires_at <= now:
            raise NotificationValidationError("expires_at must be in the future")
        if request.expires_at and request.scheduled_for and request.scheduled_for >= request.expires_at:
            raise NotificationValidationError("scheduled_for must be before expires_at")

    async def _resolve_recipients(self, request: DomainNotificationCreate) -> list[NotificationRecipient]:
        """Explicit recipients plus everyone holding a target role, first occurrence wins."""
        resolved: dict[str, NotificationRecipient] = {}
        for recipient in request.recipients:
            resolved.setdefault(recipient.user_id, recipient)
        for role in request.target_roles:
            for user_id in await self.directory.users_with_role(role):
                resolved.setdefault(
                    user_id,
                    NotificationRecipient(user_id=user_id, user_role=role, channels=list(request.target_channels)),
                )
        return [
            NotificationRecipient(
                user_id=r.user_id,
                user_role=r.user_role,
                channels=self.channels.effective_channels(request.priority, r.channels),
            )
            for r in resolved.values()
        ]

    def _pending_delivery(
        self,
        notification: DomainNotification,
        recipient: NotificationRecipient,
        channel: DeliveryChannel,
        dispatched_at: datetime | None = None,
    ) -> RecipientDelivery:
        return RecipientDelivery(
            notification_id=notification.notification_id,
            recipient_id=recipient.user_id,
            recipient_role=recipient.user_role,
            channel=channel,
            priority=notification.priority,
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
            dispatched_at=dispatched_at,
        )

    async def dispatch(self, notification: DomainNotification) -> int:
        """Apply preferences and enqueue delivery work; returns the number of queue items added."""
        now = self.clock.now()
        await self.repository.mark_dispatched(notification.notification_id, now)
        enqueued = 0
        for recipient in notification.recipients:
            preferences = await self.preferences.get_user_preferences(recipient.user_id)
            reason = self.filter.recipient_skip_reason(preferences, notification, now)
            if reason:
                await self._skip(notification, recipient, recipient.channels, reason)
                continue

            channels: list[DeliveryChannel] = []
            for channel in recipient.channels:
                channel_reason = self.filter.channel_skip_reason(preferences, notification.priority, channel)
                if channel_reason:
                    await self._skip(notification, recipient, [channel], channel_reason)
                else:
                    channels.append(channel)
            if not channels and DeliveryChannel.WEBSOCKET not in recipient.channels:
                # Every requested channel is opted out; in-app delivery is the floor
                await self.repository.create_deliveries(
                    [self._pending_delivery(notification, recipient, DeliveryChannel.WEBSOCKET, dispatched_at=now)]
                )
                channels = [DeliveryChannel.WEBSOCKET]

            enqueued += await self._enqueue(notification, recipient, channels)
        return enqueued

    async def _enqueue(
        self, notification: DomainNotification, recipient: NotificationRecipient, channels: list[DeliveryChannel]
    ) -> int:
        now = self.clock.now()
        if notification.priority.requires_guaranteed_delivery:
            groups = [channels] if channels else []
        else:
            groups = [[channel] for channel in channels]
        added = 0
        for group in groups:
            item = QueueItem(
                notification_id=notification.notification_id,
                recipient_id=recipient.user_id,
                recipient_role=recipient.user_role,
                channels=group,
                priority=notification.priority,
                scheduled_for=now,
                enqueued_at=now,
            )
            if await self.queue.enqueue(item):
                added += 1
        return added

    async def _skip(
        self,
        notification: DomainNotification,
        recipient: NotificationRecipient,
        channels: list[DeliveryChannel],
        reason: str,
    ) -> None:
        now = self.clock.now()
        for channel in channels:
            skipped = await self.repository.transition_delivery(
                notification.notification_id, recipient.user_id, channel, DeliveryStatus.SKIPPED, now,
                allowed_from=[DeliveryStatus.PENDING],
                skip_reason=reason,
            )
            if skipped:
                self.analytics.record(channel, recipient.user_role, skipped=1)
                self.metrics.record_skipped(reason)
        self.logger.info(
            f"Skipped {len(channels)} channel(s): {reason}",
            extra={"notification_id": notification.notification_id, "recipient_id": recipient.user_id},
        )

    async def requeue_pending(self, notification_id: str) -> int:
        """Re-enqueue every still-pending pair of a notification; duplicates are absorbed by the queue."""
        notification = await self.repository.get_notification(notification_id)
        if notification is None or notification.scheduled_for is not None:
            return 0
        pending: dict[str, list[DeliveryChannel]] = {}
        for delivery in await self.repository.list_deliveries(notification_id):
            if delivery.status == DeliveryStatus.PENDING:
                pending.setdefault(delivery.recipient_id, []).append(delivery.channel)
        added = 0
        for recipient in notification.recipients:
            waiting = pending.get(recipient.user_id, [])
            channels = [c for c in recipient.channels if c in waiting]
            channels += [c for c in waiting if c not in channels]
            added += await self._enqueue(notification, recipient, channels)
        return added

    async def get_notification(self, notification_id: str) -> DomainNotification:
        notification = await self.repository.get_notification(notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        return notification

    async def get_deliveries(self, notification_id: str) -> list[RecipientDelivery]:
        await self.get_notification(notification_id)
        return await self.repository.list_deliveries(notification_id)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        return await self._mark_interaction(notification_id, user_id, "read_at", "read")

    async def mark_clicked(self, notification_id: str, user_id: str) -> bool:
        return await self._mark_interaction(notification_id, user_id, "clicked_at", "actioned")

    async def _mark_interaction(self, notification_id: str, user_id: str, field: str, counter: str) -> bool:
        notification = await self.get_notification(notification_id)
        recipient = next((r for r in notification.recipients if r.user_id == user_id), None)
        if recipient is None:
            raise DeliveryNotFoundError(f"{notification_id}:{user_id}")

        modified = await self.repository.mark_interaction(notification_id, user_id, field, self.clock.now())
        if not modified:
            return False
        await self.repository.increment_analytics(notification_id, counter)
        analytics_field = "read" if counter == "read" else "clicked"
        self.analytics.record(recipient.channels[0], recipient.user_role, **{analytics_field: 1})
        return True

    async def handle_provider_event(
        self,
        channel: DeliveryChannel,
        provider_message_id: str,
        event: ProviderEvent,
        reason: str | None = None,
    ) -> bool:
        """Apply an asynchronous provider callback; returns False when it changes nothing."""
        delivery = await self.repository.find_delivery_by_provider_id(channel, provider_message_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"{channel}:{provider_message_id}")
        self.metrics.record_provider_callback(str(channel), str(event))

        now = self.clock.now()
        if event == ProviderEvent.DELIVERED:
            return await self.repository.transition_delivery(
                delivery.notification_id, delivery.recipient_id, channel, DeliveryStatus.DELIVERED, now,
                delivered_at=now,
            )

        bounced = event in (ProviderEvent.BOUNCED, ProviderEvent.COMPLAINED)
        changed = await self.repository.transition_delivery(
            delivery.notification_id, delivery.recipient_id, channel, DeliveryStatus.PERMANENTLY_FAILED, now,
            last_error=reason or f"provider reported {event}",
            bounced=bounced,
        )
        if changed and bounced:
            await self.repository.increment_analytics(delivery.notification_id, "bounced")
            self.analytics.record(channel, delivery.recipient_role, bounced=1)
        if changed:
            self.logger.warning(
                f"Provider reported {event} for {channel} delivery",
                extra={"notification_id": delivery.notification_id, "recipient_id": delivery.recipient_id,
                       "channel": str(channel)},
            )
        return changed

    async def purge_expired(self) -> int:
        expired = await self.repository.delete_expired(self.clock.now())
        if expired:
            self.logger.info(f"Purged {len(expired)} expired notification(s)")
        return len(expired)
