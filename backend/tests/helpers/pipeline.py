import logging
import random
from dataclasses import dataclass

from carenotify.core.metrics import AlertMetrics, DeliveryMetrics
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.services.alerts.escalation_engine import AlertEscalationEngine
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.channel_manager import ChannelManager
from carenotify.services.channels import ChannelAdapterRegistry
from carenotify.services.delivery_monitor import DeliveryMonitor
from carenotify.services.delivery_queue import DeliveryQueue
from carenotify.services.delivery_worker import DeliveryWorker
from carenotify.services.notification_orchestrator import NotificationOrchestrator
from carenotify.services.notification_scheduler import NotificationScheduler
from carenotify.services.preferences import CachedPreferenceStore
from carenotify.services.rendering import TemplateRenderer
from carenotify.settings import Settings

from tests.helpers.fakes import (
    InMemoryAnalyticsRepository,
    InMemoryNotificationRepository,
    InMemoryPreferenceRepository,
    InMemoryQueueRepository,
    InMemoryUserDirectory,
    ManualClock,
    ScriptedAdapter,
)

_test_logger = logging.getLogger("test.unit")


@dataclass
class NotificationPipeline:
    """The delivery services wired over in-memory storage and scripted adapters."""

    settings: Settings
    clock: ManualClock
    notifications: InMemoryNotificationRepository
    queue_repository: InMemoryQueueRepository
    analytics_repository: InMemoryAnalyticsRepository
    preferences: InMemoryPreferenceRepository
    directory: InMemoryUserDirectory
    adapters: dict[DeliveryChannel, ScriptedAdapter]
    analytics: DeliveryAnalytics
    queue: DeliveryQueue
    channel_manager: ChannelManager
    orchestrator: NotificationOrchestrator
    scheduler: NotificationScheduler
    worker: DeliveryWorker
    engine: AlertEscalationEngine
    monitor: DeliveryMonitor

    async def drain(self, max_rounds: int = 20) -> int:
        """Run worker batches until nothing is ready right now."""
        processed = 0
        for _ in range(max_rounds):
            handled = await self.worker.process_batch()
            if not handled:
                break
            processed += handled
        return processed


def build_pipeline(
    settings: Settings,
    clock: ManualClock | None = None,
    adapters: list[ScriptedAdapter] | None = None,
) -> NotificationPipeline:
    clock = clock or ManualClock()
    scripted = {a.channel: a for a in adapters or [ScriptedAdapter(c) for c in DeliveryChannel]}
    notifications = InMemoryNotificationRepository()
    queue_repository = InMemoryQueueRepository()
    analytics_repository = InMemoryAnalyticsRepository()
    preferences = InMemoryPreferenceRepository()
    directory = InMemoryUserDirectory()
    delivery_metrics = DeliveryMetrics(settings)

    analytics = DeliveryAnalytics(analytics_repository, clock, _test_logger)
    queue = DeliveryQueue(
        queue_repository, notifications, settings, clock, delivery_metrics, _test_logger, rng=random.Random(7)
    )
    channel_manager = ChannelManager(
        adapters=ChannelAdapterRegistry(scripted.values()),
        notification_repository=notifications,
        user_directory=directory,
        renderer=TemplateRenderer(),
        analytics=analytics,
        settings=settings,
        clock=clock,
        delivery_metrics=delivery_metrics,
        logger=_test_logger,
    )
    orchestrator = NotificationOrchestrator(
        notification_repository=notifications,
        user_directory=directory,
        preference_store=CachedPreferenceStore(preferences, clock, _test_logger),
        queue=queue,
        channel_manager=channel_manager,
        analytics=analytics,
        settings=settings,
        clock=clock,
        delivery_metrics=delivery_metrics,
        logger=_test_logger,
    )
    engine = AlertEscalationEngine(
        notifier=orchestrator,
        user_directory=directory,
        settings=settings,
        clock=clock,
        alert_metrics=AlertMetrics(settings),
        logger=_test_logger,
    )
    return NotificationPipeline(
        settings=settings,
        clock=clock,
        notifications=notifications,
        queue_repository=queue_repository,
        analytics_repository=analytics_repository,
        preferences=preferences,
        directory=directory,
        adapters=scripted,
        analytics=analytics,
        queue=queue,
        channel_manager=channel_manager,
        orchestrator=orchestrator,
        scheduler=NotificationScheduler(notifications, orchestrator, clock, _test_logger),
        worker=DeliveryWorker(queue, notifications, channel_manager, clock, _test_logger, batch_size=10),
        engine=engine,
        monitor=DeliveryMonitor(
            notification_repository=notifications,
            orchestrator=orchestrator,
            analytics=analytics,
            alert_sink=engine,
            settings=settings,
            clock=clock,
            logger=_test_logger,
        ),
    )
