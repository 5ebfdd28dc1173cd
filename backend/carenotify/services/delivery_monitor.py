import logging
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta
from typing import Any, Protocol

from carenotify.core.clock import Clock
from carenotify.db.repositories import NotificationRepository
from carenotify.domain.alert import Alert, AlertPayload
from carenotify.domain.delivery import DeliveryStats
from carenotify.domain.enums.alert import AlertSeverity, AlertType
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.domain.enums.user import UserRole
from carenotify.domain.exceptions import ValidationError
from carenotify.services.analytics import DeliveryAnalytics
from carenotify.services.notification_orchestrator import NotificationOrchestrator
from carenotify.settings import Settings

_PERCENT_FIELDS = frozenset({
    "critical_failure_rate", "warning_failure_rate", "min_delivery_rate", "channel_failure_rate",
})


class AlertSink(Protocol):
    async def process_alert(self, payload: AlertPayload) -> Alert | None:
        ...


@dataclass(frozen=True)
class MonitorThresholds:
    critical_failure_rate: float = 25.0
    warning_failure_rate: float = 15.0
    min_delivery_rate: float = 80.0
    max_delivery_time_ms: float = 60000.0
    consecutive_failures: int = 5
    channel_failure_rate: float = 50.0

    def __post_init__(self) -> None:
        for name in _PERCENT_FIELDS:
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValidationError(f"{name} must be between 0 and 100, got {value}")
        if self.warning_failure_rate > self.critical_failure_rate:
            raise ValidationError("warning_failure_rate must not exceed critical_failure_rate")
        if self.max_delivery_time_ms <= 0:
            raise ValidationError("max_delivery_time_ms must be positive")
        if self.consecutive_failures < 1:
            raise ValidationError("consecutive_failures must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "MonitorThresholds":
        return cls(
            critical_failure_rate=settings.MONITOR_CRITICAL_FAILURE_RATE,
            warning_failure_rate=settings.MONITOR_WARNING_FAILURE_RATE,
            min_delivery_rate=settings.MONITOR_MIN_DELIVERY_RATE,
            max_delivery_time_ms=settings.MONITOR_MAX_DELIVERY_TIME_MS,
            consecutive_failures=settings.MONITOR_CONSECUTIVE_FAILURES,
            channel_failure_rate=settings.MONITOR_CHANNEL_FAILURE_RATE,
        )


@dataclass
class MonitoringStatus:
    is_healthy: bool = True
    last_check: datetime | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)


class DeliveryMonitor:
    """Periodic delivery health check.

    Each :meth:`check` computes delivery statistics over the trailing window,
    raises alerts for the thresholds that are crossed and re-enqueues
    notifications stuck in pending. ``sent`` counts delivered, failed and
    permanently failed pairs; a window with nothing sent raises no rate alerts.
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        orchestrator: NotificationOrchestrator,
        analytics: DeliveryAnalytics,
        alert_sink: AlertSink,
        settings: Settings,
        clock: Clock,
        logger: logging.Logger,
    ) -> None:
        self.repository = notification_repository
        self.orchestrator = orchestrator
        self.analytics = analytics
        self.alerts = alert_sink
        self.clock = clock
        self.logger = logger
        self.window = timedelta(minutes=settings.MONITOR_WINDOW_MINUTES)
        self.stuck_threshold = timedelta(minutes=settings.STUCK_THRESHOLD_MINUTES)
        self.stuck_batch_limit = settings.STUCK_BATCH_LIMIT
        self.thresholds = MonitorThresholds.from_settings(settings)
        self._consecutive_failures: dict[DeliveryChannel, int] = {}
        self._status = MonitoringStatus()

    async def check(self) -> MonitoringStatus:
        now = self.clock.now()
        start = now - self.window
        overall = (await self.repository.delivery_stats(start, now)).get("all", DeliveryStats())
        per_channel = await self.repository.delivery_stats(start, now, group_by="channel")
        channels = {DeliveryChannel(key): stats for key, stats in per_channel.items()}

        payloads = self.evaluate(overall, channels)
        stuck = await self.recover_stuck(now)
        if stuck:
            payloads.append(AlertPayload(
                type=AlertType.STUCK_NOTIFICATIONS,
                severity=AlertSeverity.WARNING,
                message=f"Found {len(stuck)} notifications stuck in pending state",
                data={"scope": "pending"},
                details={"count": len(stuck), "notification_ids": stuck[:10]},
            ))

        for payload in payloads:
            try:
                await self.alerts.process_alert(payload)
            except Exception as e:
                self.logger.error(
                    f"Failed to raise monitoring alert: {e}",
                    exc_info=True,
                    extra={"alert_type": str(payload.type)},
                )

        self._status = MonitoringStatus(
            is_healthy=not any(p.severity == AlertSeverity.CRITICAL for p in payloads),
            last_check=now,
            metrics={
                **overall.to_dict(),
                "channels": {str(c): s.to_dict() for c, s in channels.items()},
                "stuck_notifications": len(stuck),
            },
            issues=[p.message for p in payloads],
        )
        if payloads:
            self.logger.warning(f"Delivery check found {len(payloads)} issue(s)")
        return self._status

    def evaluate(self, overall: DeliveryStats, channels: dict[DeliveryChannel, DeliveryStats]) -> list[AlertPayload]:
        """Turn window statistics into alert payloads; updates the per-channel failure streaks."""
        t = self.thresholds
        payloads: list[AlertPayload] = []

        if overall.sent:
            delivery_rate = overall.delivery_rate()
            failure_rate = overall.failure_rate()
            summary = {
                "sent": overall.sent,
                "delivered": overall.delivered,
                "failed": overall.total_failed,
                "delivery_rate": round(delivery_rate, 1),
                "failure_rate": round(failure_rate, 1),
            }
            if delivery_rate < t.min_delivery_rate:
                payloads.append(AlertPayload(
                    type=AlertType.LOW_DELIVERY_RATE,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Overall delivery rate is critically low: {delivery_rate:.1f}%",
                    data={"scope": "overall"},
                    details={**summary, "threshold": t.min_delivery_rate},
                ))
            if failure_rate > t.critical_failure_rate:
                payloads.append(AlertPayload(
                    type=AlertType.CRITICAL_FAILURE_RATE,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Notification failure rate is critically high: {failure_rate:.1f}%",
                    data={"scope": "overall"},
                    details={**summary, "threshold": t.critical_failure_rate},
                ))
            elif failure_rate > t.warning_failure_rate:
                payloads.append(AlertPayload(
                    type=AlertType.ELEVATED_FAILURE_RATE,
                    severity=AlertSeverity.WARNING,
                    message=f"Notification failure rate is elevated: {failure_rate:.1f}%",
                    data={"scope": "overall"},
                    details={**summary, "threshold": t.warning_failure_rate},
                ))
            if overall.latency_samples and overall.average_latency_ms > t.max_delivery_time_ms:
                payloads.append(AlertPayload(
                    type=AlertType.SLOW_DELIVERY_TIME,
                    severity=AlertSeverity.WARNING,
                    message=f"Average delivery time is slow: {overall.average_latency_ms / 1000:.1f}s",
                    data={"scope": "overall"},
                    details={"average_latency_ms": round(overall.average_latency_ms), "threshold": t.max_delivery_time_ms},
                ))

        for channel, stats in channels.items():
            payloads.extend(self._evaluate_channel(channel, stats))
        return payloads

    def _evaluate_channel(self, channel: DeliveryChannel, stats: DeliveryStats) -> list[AlertPayload]:
        t = self.thresholds
        if not stats.sent:
            # No traffic says nothing about health; the streak is left as is
            return []
        payloads: list[AlertPayload] = []
        failure_rate = stats.failure_rate()
        delivery_rate = stats.delivery_rate()

        if failure_rate > t.channel_failure_rate:
            streak = self._consecutive_failures.get(channel, 0) + 1
            self._consecutive_failures[channel] = streak
            if streak >= t.consecutive_failures:
                payloads.append(AlertPayload(
                    type=AlertType.CHANNEL_CONSECUTIVE_FAILURES,
                    severity=AlertSeverity.CRITICAL,
                    message=f"Channel {channel} has {streak} consecutive failure periods",
                    data={"channel": str(channel)},
                    details={"consecutive_failures": streak, "failure_rate": round(failure_rate, 1), **stats.to_dict()},
                ))
        else:
            self._consecutive_failures[channel] = 0

        if delivery_rate < t.min_delivery_rate:
            payloads.append(AlertPayload(
                type=AlertType.CHANNEL_LOW_DELIVERY_RATE,
                severity=AlertSeverity.WARNING,
                message=f"{channel} channel delivery rate is low: {delivery_rate:.1f}%",
                data={"channel": str(channel)},
                details={"delivery_rate": round(delivery_rate, 1), **stats.to_dict()},
            ))
        return payloads

    def consecutive_failures(self, channel: DeliveryChannel) -> int:
        return self._consecutive_failures.get(channel, 0)

    async def recover_stuck(self, now: datetime) -> list[str]:
        """Re-enqueue notifications whose every pair is still pending past the stuck threshold."""
        candidates = await self.repository.find_stuck_notifications(
            now - self.stuck_threshold, self.stuck_batch_limit
        )
        stuck: list[str] = []
        for notification_id in candidates:
            notification = await self.repository.get_notification(notification_id)
            if notification is None or notification.scheduled_for is not None:
                continue
            stuck.append(notification_id)
            try:
                requeued = await self.orchestrator.requeue_pending(notification_id)
            except Exception as e:
                self.logger.error(f"Failed to re-enqueue stuck notification: {e}",
                                  extra={"notification_id": notification_id})
                continue
            self.logger.info(f"Re-enqueued {requeued} item(s) of stuck notification",
                             extra={"notification_id": notification_id})
        return stuck

    def get_current_status(self) -> MonitoringStatus:
        return self._status

    def get_thresholds(self) -> MonitorThresholds:
        return self.thresholds

    def update_thresholds(self, changes: dict[str, Any]) -> MonitorThresholds:
        known = {f.name for f in fields(MonitorThresholds)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown threshold(s): {', '.join(sorted(unknown))}")
        self.thresholds = replace(self.thresholds, **changes)
        self.logger.info(f"Monitoring thresholds updated: {asdict(self.thresholds)}")
        return self.thresholds

    async def get_delivery_report(
        self, start: datetime, end: datetime, granularity: str = "daily"
    ) -> dict[str, Any]:
        if end <= start:
            raise ValidationError("end must be after start")
        if granularity not in ("daily", "hourly"):
            raise ValidationError("granularity must be 'daily' or 'hourly'")

        overall = (await self.repository.delivery_stats(start, end)).get("all", DeliveryStats())
        by_channel = await self.repository.delivery_stats(start, end, group_by="channel")
        by_role = await self.repository.delivery_stats(start, end, group_by="recipient_role")
        return {
            "overall": overall.to_dict(),
            "channels": {str(c): by_channel.get(str(c), DeliveryStats()).to_dict() for c in DeliveryChannel},
            "roles": {str(r): by_role.get(str(r), DeliveryStats()).to_dict() for r in UserRole},
            "trends": await self.get_delivery_trends(start, end, granularity),
            "generated_at": self.clock.now(),
            "time_range": {"start": start, "end": end},
        }

    async def get_delivery_trends(self, start: datetime, end: datetime, granularity: str = "daily") -> list[dict]:
        buckets = await self.analytics.get_buckets(start, end)
        periods: dict[datetime, DeliveryStats] = {}
        for bucket in buckets:
            period = bucket.bucket_start
            if granularity == "daily":
                period = period.replace(hour=0)
            stats = periods.setdefault(period, DeliveryStats())
            stats.add(DeliveryStats(
                delivered=bucket.delivered,
                failed=bucket.failed,
                skipped=bucket.skipped,
                read=bucket.read,
                clicked=bucket.clicked,
                latency_total_ms=bucket.latency_total_ms,
                latency_samples=bucket.latency_samples,
            ))
        return [
            {"period": period, **stats.to_dict()}
            for period, stats in sorted(periods.items())
        ]
