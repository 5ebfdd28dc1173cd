import httpx
from dependency_injector import containers, providers

from carenotify.core.clock import SystemClock
from carenotify.core.database_context import AsyncDatabaseConnection, Database, DatabaseConfig
from carenotify.core.logging import setup_logger
from carenotify.core.metrics import AlertMetrics, DeliveryMetrics
from carenotify.db.repositories import (
    AnalyticsRepository,
    DeliveryQueueRepository,
    NotificationRepository,
    PreferenceRepository,
    UserDirectoryRepository,
)
from carenotify.services.alerts.escalation_engine import AlertEscalationEngine
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.channel_manager import ChannelManager
from carenotify.services.channels import (
    ChannelAdapterRegistry,
    ConnectionRegistry,
    EmailChannelAdapter,
    SmsChannelAdapter,
    WebSocketChannelAdapter,
)
from carenotify.services.delivery_monitor import DeliveryMonitor
from carenotify.services.delivery_queue import DeliveryQueue
from carenotify.services.delivery_worker import DeliveryWorker
from carenotify.services.notification_orchestrator import NotificationOrchestrator
from carenotify.services.notification_scheduler import NotificationScheduler
from carenotify.services.preferences import CachedPreferenceStore
from carenotify.services.rendering import TemplateRenderer
from carenotify.services.runtime import NotificationRuntime
from carenotify.settings import Settings


def _database(connection: AsyncDatabaseConnection) -> Database:
    return connection.database


class Container(containers.DeclarativeContainer):
    """Application DI container.

    Repositories resolve the database from the connection, so
    ``db_connection().connect()`` must be awaited before anything that
    touches a repository is resolved.
    """

    wiring_config = containers.WiringConfiguration(
        modules=[
            "carenotify.api.routes.alerts",
            "carenotify.api.routes.health",
            "carenotify.api.routes.monitoring",
            "carenotify.api.routes.notifications",
            "carenotify.api.routes.providers",
            "carenotify.api.routes.websocket",
        ]
    )

    settings = providers.Dependency(instance_of=Settings)

    # Core
    logger = providers.Singleton(setup_logger, log_level=settings.provided.LOG_LEVEL)
    clock = providers.Singleton(SystemClock)
    delivery_metrics = providers.Singleton(DeliveryMetrics, settings=settings)
    alert_metrics = providers.Singleton(AlertMetrics, settings=settings)

    db_config = providers.Singleton(DatabaseConfig.from_settings, settings=settings)
    db_connection = providers.Singleton(AsyncDatabaseConnection, config=db_config, logger=logger)
    database = providers.Singleton(_database, connection=db_connection)
    http_client = providers.Singleton(httpx.AsyncClient, timeout=settings.provided.CHANNEL_SEND_TIMEOUT_SECONDS)

    # Repositories
    notification_repository = providers.Singleton(NotificationRepository, database=database)
    queue_repository = providers.Singleton(DeliveryQueueRepository, database=database)
    analytics_repository = providers.Singleton(AnalyticsRepository, database=database)
    preference_repository = providers.Singleton(PreferenceRepository, database=database)
    user_directory = providers.Singleton(UserDirectoryRepository, database=database)

    # Channels
    connection_registry = providers.Singleton(ConnectionRegistry)
    websocket_adapter = providers.Singleton(WebSocketChannelAdapter, registry=connection_registry, logger=logger)
    email_adapter = providers.Singleton(
        EmailChannelAdapter,
        http_client=http_client,
        api_url=settings.provided.EMAIL_API_URL,
        api_key=settings.provided.EMAIL_API_KEY,
        sender=settings.provided.EMAIL_FROM,
        logger=logger,
    )
    sms_adapter = providers.Singleton(
        SmsChannelAdapter,
        http_client=http_client,
        api_url=settings.provided.SMS_API_URL,
        api_key=settings.provided.SMS_API_KEY,
        sender_id=settings.provided.SMS_SENDER_ID,
        logger=logger,
    )
    adapter_registry = providers.Singleton(
        ChannelAdapterRegistry,
        adapters=providers.List(websocket_adapter, email_adapter, sms_adapter),
    )
    renderer = providers.Singleton(TemplateRenderer)

    # Delivery pipeline
    analytics = providers.Singleton(DeliveryAnalytics, repository=analytics_repository, clock=clock, logger=logger)
    preference_store = providers.Singleton(
        CachedPreferenceStore,
        store=preference_repository,
        clock=clock,
        logger=logger,
        max_size=settings.provided.PREFERENCE_CACHE_SIZE,
        ttl_seconds=settings.provided.PREFERENCE_CACHE_TTL_SECONDS,
    )
    delivery_queue = providers.Singleton(
        DeliveryQueue,
        queue_repository=queue_repository,
        notification_repository=notification_repository,
        settings=settings,
        clock=clock,
        delivery_metrics=delivery_metrics,
        logger=logger,
    )
    channel_manager = providers.Singleton(
        ChannelManager,
        adapters=adapter_registry,
        notification_repository=notification_repository,
        user_directory=user_directory,
        renderer=renderer,
        analytics=analytics,
        settings=settings,
        clock=clock,
        delivery_metrics=delivery_metrics,
        logger=logger,
    )
    orchestrator = providers.Singleton(
        NotificationOrchestrator,
        notification_repository=notification_repository,
        user_directory=user_directory,
        preference_store=preference_store,
        queue=delivery_queue,
        channel_manager=channel_manager,
        analytics=analytics,
        settings=settings,
        clock=clock,
        delivery_metrics=delivery_metrics,
        logger=logger,
    )
    notification_scheduler = providers.Singleton(
        NotificationScheduler,
        notification_repository=notification_repository,
        orchestrator=orchestrator,
        clock=clock,
        logger=logger,
    )
    delivery_worker = providers.Singleton(
        DeliveryWorker,
        queue=delivery_queue,
        notification_repository=notification_repository,
        channel_manager=channel_manager,
        clock=clock,
        logger=logger,
        batch_size=settings.provided.QUEUE_BATCH_SIZE,
    )

    # Alerting
    escalation_engine = providers.Singleton(
        AlertEscalationEngine,
        notifier=orchestrator,
        user_directory=user_directory,
        settings=settings,
        clock=clock,
        alert_metrics=alert_metrics,
        logger=logger,
    )
    delivery_monitor = providers.Singleton(
        DeliveryMonitor,
        notification_repository=notification_repository,
        orchestrator=orchestrator,
        analytics=analytics,
        alert_sink=escalation_engine,
        settings=settings,
        clock=clock,
        logger=logger,
    )

    runtime = providers.Singleton(
        NotificationRuntime,
        settings=settings,
        db_connection=db_connection,
        http_client=http_client,
        notification_repository=notification_repository,
        queue_repository=queue_repository,
        analytics_repository=analytics_repository,
        preference_repository=preference_repository,
        delivery_worker=delivery_worker,
        notification_scheduler=notification_scheduler,
        orchestrator=orchestrator,
        delivery_monitor=delivery_monitor,
        analytics=analytics,
        escalation_engine=escalation_engine,
        logger=logger,
    )


def create_app_container(settings: Settings) -> Container:
    return Container(settings=settings)
