import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from carenotify.core.database_context import AsyncDatabaseConnection
from carenotify.core.lifecycle import LifecycleEnabled
from carenotify.db.repositories import (
    AnalyticsRepository,
    DeliveryQueueRepository,
    NotificationRepository,
    PreferenceRepository,
)
from carenotify.services.alerts.escalation_engine import AlertEscalationEngine
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.delivery_monitor import DeliveryMonitor
from carenotify.services.delivery_worker import DeliveryWorker
from carenotify.services.notification_orchestrator import NotificationOrchestrator
from carenotify.services.notification_scheduler import NotificationScheduler
from carenotify.settings import Settings


class NotificationRuntime(LifecycleEnabled):
    """Owns the periodic jobs of the notification pipeline.

    Every loop is an APScheduler interval job over a stateless method of a
    service; ``max_instances=1`` keeps a slow run from overlapping the next.
    Stopping pauses the scheduler and waits for running jobs, so a delivery
    batch finishes its sends before the HTTP client and Mongo connection
    close. Buffered analytics are flushed and pending escalation
    timers cancelled.
    """

    def __init__(
        self,
        settings: Settings,
        db_connection: AsyncDatabaseConnection,
        http_client: httpx.AsyncClient,
        notification_repository: NotificationRepository,
        queue_repository: DeliveryQueueRepository,
        analytics_repository: AnalyticsRepository,
        preference_repository: PreferenceRepository,
        delivery_worker: DeliveryWorker,
        notification_scheduler: NotificationScheduler,
        orchestrator: NotificationOrchestrator,
        delivery_monitor: DeliveryMonitor,
        analytics: DeliveryAnalytics,
        escalation_engine: AlertEscalationEngine,
        logger: logging.Logger,
    ) -> None:
        self.settings = settings
        self.db_connection = db_connection
        self.http_client = http_client
        self.repositories = [notification_repository, queue_repository, analytics_repository, preference_repository]
        self.delivery_worker = delivery_worker
        self.notification_scheduler = notification_scheduler
        self.orchestrator = orchestrator
        self.delivery_monitor = delivery_monitor
        self.analytics = analytics
        self.escalation_engine = escalation_engine
        self.logger = logger
        self.scheduler = AsyncIOScheduler()
        self._job_tasks: set[asyncio.Task[Any]] = set()

    async def _on_start(self) -> None:
        for repository in self.repositories:
            await repository.create_indexes()
        self.logger.info("Database indexes ensured")

        s = self.settings
        self._add_job("delivery_poll", self.delivery_worker.process_batch, s.QUEUE_POLL_INTERVAL_SECONDS)
        self._add_job(
            "scheduled_sweep",
            self.notification_scheduler.process_due_notifications,
            s.SCHEDULED_SWEEP_INTERVAL_SECONDS,
            kwargs={"batch_size": s.SCHEDULED_SWEEP_BATCH_SIZE},
        )
        self._add_job("expiry_sweep", self.orchestrator.purge_expired, s.EXPIRY_SWEEP_INTERVAL_SECONDS)
        self._add_job("delivery_monitor", self.delivery_monitor.check, s.MONITOR_INTERVAL_SECONDS)
        self._add_job("analytics_flush", self.analytics.flush, s.ANALYTICS_FLUSH_INTERVAL_SECONDS)
        self._add_job("escalation_tick", self.escalation_engine.process_due_escalations, s.ESCALATION_TICK_SECONDS)
        self._add_job("alert_cleanup", self.escalation_engine.cleanup_history, s.ALERT_CLEANUP_INTERVAL_SECONDS)
        self._add_job("alert_stale_check", self.escalation_engine.check_stale_alerts, s.ALERT_STALE_CHECK_INTERVAL_SECONDS)
        self.scheduler.start()
        self.logger.info(f"Notification runtime started with {len(self.scheduler.get_jobs())} jobs")

    def _add_job(
        self,
        job_id: str,
        func: Callable[..., Awaitable[Any]],
        seconds: float,
        kwargs: dict[str, Any] | None = None,
    ) -> None:
        self.scheduler.add_job(
            self._tracked(func),
            trigger="interval",
            seconds=seconds,
            id=job_id,
            name=job_id,
            kwargs=kwargs or {},
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

    async def _on_stop(self) -> None:
        # The asyncio executor cancels unfinished jobs on shutdown, so drain them first
        self.scheduler.pause()
        await self._wait_for_running_jobs()
        self.scheduler.shutdown(wait=False)
        flushed = await self.analytics.flush()
        self.logger.info(f"Flushed {flushed} analytics bucket(s) on shutdown")
        await self.escalation_engine.shutdown()
        await self.http_client.aclose()
        await self.db_connection.disconnect()
        self.logger.info("Notification runtime stopped")

    def _tracked(self, func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        async def run(**kwargs: Any) -> Any:
            task = asyncio.current_task()
            if task is None:
                return await func(**kwargs)
            self._job_tasks.add(task)
            try:
                return await func(**kwargs)
            finally:
                self._job_tasks.discard(task)

        return run

    async def _wait_for_running_jobs(self) -> None:
        if not self._job_tasks:
            return
        timeout = self.settings.RUNTIME_SHUTDOWN_TIMEOUT_SECONDS
        self.logger.info(f"Waiting up to {timeout}s for {len(self._job_tasks)} running job(s)")
        _, pending = await asyncio.wait(set(self._job_tasks), timeout=timeout)
        if pending:
            self.logger.warning(f"{len(pending)} job(s) still running at shutdown; their leases will expire")
