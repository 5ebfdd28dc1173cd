import asyncio
import logging
from datetime import datetime, timedelta
from typing import Protocol

from carenotify.core.clock import Clock
from carenotify.core.metrics import AlertMetrics
from carenotify.db.repositories import UserDirectoryRepository
from carenotify.domain.alert import (
    Alert,
    AlertAcknowledgement,
    AlertAlreadyAcknowledgedError,
    AlertAlreadyResolvedError,
    AlertNotFoundError,
    AlertPayload,
    AlertResolution,
    AlertStatistics,
    EscalationLevel,
    EscalationRule,
    EscalationRuleNotFoundError,
    default_escalation_rules,
)
from carenotify.domain.enums.alert import AlertSeverity, AlertType, EscalationRole
from carenotify.domain.enums.notification import (
    DeliveryChannel,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)
from carenotify.domain.enums.user import UserRole
from carenotify.domain.notification import DomainNotificationCreate, NotificationContent, NotificationRecipient
from carenotify.services.alerts.timers import EscalationTimerQueue
from carenotify.settings import Settings

# Every escalation role currently pages admin accounts
ROLE_MAPPING: dict[EscalationRole, UserRole] = {
    EscalationRole.ADMIN: UserRole.ADMIN,
    EscalationRole.SENIOR_ADMIN: UserRole.ADMIN,
    EscalationRole.SYSTEM_ADMIN: UserRole.ADMIN,
    EscalationRole.EMERGENCY_CONTACT: UserRole.ADMIN,
}

_STATUS_CHANNELS = [DeliveryChannel.WEBSOCKET, DeliveryChannel.EMAIL]


class AlertNotifier(Protocol):
    async def create_notification(self, request: DomainNotificationCreate) -> str:
        ...


class AlertEscalationEngine:
    """Deduplicates operational alerts and escalates the unacknowledged ones.

    Alerts are keyed by a fingerprint of type, severity and identifying data,
    so re-raising the same condition merges into the active alert. Each new
    alert schedules one timer per escalation level of its rule; acknowledging
    or resolving the alert cancels the timers that have not fired yet.
    Resolving starts a per-type cooldown during which new alerts of that type
    are suppressed.

    Timers are driven by :meth:`process_due_escalations`, which the runtime
    calls on a short interval.
    """

    def __init__(
        self,
        notifier: AlertNotifier,
        user_directory: UserDirectoryRepository,
        settings: Settings,
        clock: Clock,
        alert_metrics: AlertMetrics,
        logger: logging.Logger,
        rules: dict[AlertType, EscalationRule] | None = None,
    ) -> None:
        self.notifier = notifier
        self.directory = user_directory
        self.clock = clock
        self.metrics = alert_metrics
        self.logger = logger
        self.rules = rules if rules is not None else default_escalation_rules()
        self.dashboard_url = settings.ADMIN_DASHBOARD_URL.rstrip("/")
        self.history_retention = timedelta(days=settings.ALERT_HISTORY_RETENTION_DAYS)
        self.stale_threshold = timedelta(minutes=settings.ALERT_STALE_THRESHOLD_MINUTES)

        self._active: dict[str, Alert] = {}
        self._history: dict[str, Alert] = {}
        self._cooldowns: dict[AlertType, datetime] = {}
        self._timers = EscalationTimerQueue()
        self._lock = asyncio.Lock()

    async def process_alert(self, payload: AlertPayload) -> Alert | None:
        """Raise an alert; returns the active alert, or None when suppressed by cooldown.

        A repeat of an active alert merges into it before cooldown is consulted,
        so cooldown only gates raising a new alert after resolution.
        """
        now = self.clock.now()
        alert_id = payload.fingerprint()
        async with self._lock:
            existing = self._active.get(alert_id)
            if existing is not None:
                existing.message = payload.message
                existing.details.update(payload.details)
                existing.updated_at = now
                existing.occurrences += 1
                self.metrics.record_deduplicated(str(payload.type))
                self.logger.debug(f"Merged repeated alert {alert_id}", extra={"alert_id": alert_id})
                return existing

            cooldown_until = self._cooldowns.get(payload.type)
            if cooldown_until is not None and now < cooldown_until:
                self.metrics.record_suppressed(str(payload.type))
                self.logger.info(
                    f"Alert suppressed by cooldown until {cooldown_until.isoformat()}",
                    extra={"alert_type": str(payload.type)},
                )
                return None

            alert = Alert(
                alert_id=alert_id,
                type=payload.type,
                severity=payload.severity,
                message=payload.message,
                created_at=now,
                data=dict(payload.data),
                details=dict(payload.details),
                updated_at=now,
            )
            self._active[alert_id] = alert
            rule = self.rules.get(payload.type)
            if rule is None:
                self.logger.warning(
                    "No escalation rule for alert type, alert will not escalate",
                    extra={"alert_type": str(payload.type)},
                )
            else:
                for index, level in enumerate(rule.levels):
                    self._timers.schedule(alert_id, index, alert.created_at + level.delay)

        self.metrics.record_raised(str(alert.type), str(alert.severity))
        self.logger.warning(
            f"Alert raised: {alert.message}",
            extra={"alert_id": alert_id, "alert_type": str(alert.type), "escalation_level": 0},
        )
        # Levels with no delay fire right away
        await self.process_due_escalations()
        return alert

    async def process_due_escalations(self) -> int:
        """Fire every escalation timer that is due; returns the number of levels fired."""
        now = self.clock.now()
        async with self._lock:
            due = self._timers.pop_due(now)
        fired = 0
        for timer in due:
            alert = self._active.get(timer.alert_id)
            if alert is None or alert.acknowledged or alert.resolved:
                continue
            rule = self.rules.get(alert.type)
            if rule is None or timer.level >= len(rule.levels):
                continue
            alert.escalation_level = max(alert.escalation_level, timer.level)
            alert.updated_at = now
            fired += 1
            success = await self._send_escalation(alert, timer.level, rule.levels[timer.level])
            self.metrics.record_escalation(str(alert.type), timer.level, success)
        return fired

    async def _send_escalation(self, alert: Alert, index: int, level: EscalationLevel) -> bool:
        level_no = index + 1
        recipients = await self._recipients(level.recipient_roles)
        if not recipients:
            self.logger.warning(
                f"No recipients for escalation level {level_no}",
                extra={"alert_id": alert.alert_id, "escalation_level": level_no},
            )
            return False

        request = DomainNotificationCreate(
            type=NotificationType.SYSTEM_ALERT_ESCALATION,
            category=NotificationCategory.SYSTEM,
            priority=(
                NotificationPriority.EMERGENCY if alert.severity == AlertSeverity.CRITICAL
                else NotificationPriority.CRITICAL
            ),
            content=NotificationContent(
                title=f"ESCALATED ALERT - Level {level_no}",
                message=(
                    f"{alert.message}\n\nThis alert has been escalated to level {level_no} "
                    "due to lack of acknowledgment."
                ),
                action_url=f"{self.dashboard_url}/{alert.alert_id}",
                action_text="View Alert Details",
                metadata={"alert_id": alert.alert_id, "alert_type": str(alert.type), "escalation_level": index},
            ),
            recipients=[
                NotificationRecipient(user_id=user_id, user_role=UserRole.ADMIN, channels=list(level.channels))
                for user_id in recipients
            ],
            context_data={"alert_id": alert.alert_id, "escalation_level": index, "original_alert": alert.data},
        )
        try:
            await self.notifier.create_notification(request)
        except Exception as e:
            self.logger.error(
                f"Escalation notification failed: {e}",
                exc_info=True,
                extra={"alert_id": alert.alert_id, "escalation_level": level_no},
            )
            return False
        self.logger.warning(
            f"Alert escalated to level {level_no}",
            extra={"alert_id": alert.alert_id, "alert_type": str(alert.type), "escalation_level": level_no},
        )
        return True

    async def _recipients(self, roles: tuple[EscalationRole, ...] | list[EscalationRole]) -> list[str]:
        user_ids: list[str] = []
        for role in dict.fromkeys(ROLE_MAPPING[r] for r in roles):
            user_ids.extend(await self.directory.users_with_role(role))
        return list(dict.fromkeys(user_ids))

    async def acknowledge_alert(self, alert_id: str, acknowledged_by: str, notes: str | None = None) -> Alert:
        async with self._lock:
            alert = self._active.get(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if alert.acknowledged:
                raise AlertAlreadyAcknowledgedError(alert_id)
            self._timers.cancel_alert(alert_id)
            now = self.clock.now()
            alert.acknowledgement = AlertAcknowledgement(by=acknowledged_by, at=now, notes=notes)
            alert.updated_at = now

        self.metrics.record_acknowledged(str(alert.type))
        self.logger.info(f"Alert acknowledged by {acknowledged_by}", extra={"alert_id": alert_id})
        await self._notify_status(
            alert,
            NotificationType.ALERT_ACKNOWLEDGED,
            NotificationPriority.MEDIUM,
            title="Alert Acknowledged",
            message=f'Alert "{alert.message}" has been acknowledged.',
            exclude=acknowledged_by,
        )
        return alert

    async def resolve_alert(self, alert_id: str, resolved_by: str, resolution: str | None = None) -> Alert:
        async with self._lock:
            alert = self._active.get(alert_id)
            if alert is None:
                if alert_id in self._history:
                    raise AlertAlreadyResolvedError(alert_id)
                raise AlertNotFoundError(alert_id)
            self._timers.cancel_alert(alert_id)
            now = self.clock.now()
            alert.resolution = AlertResolution(by=resolved_by, at=now, resolution=resolution)
            alert.updated_at = now
            del self._active[alert_id]
            self._history[alert_id] = alert
            rule = self.rules.get(alert.type)
            if rule is not None and rule.cooldown:
                self._cooldowns[alert.type] = now + rule.cooldown

        self.metrics.record_resolved(str(alert.type))
        self.logger.info(f"Alert resolved by {resolved_by}", extra={"alert_id": alert_id})
        await self._notify_status(
            alert,
            NotificationType.ALERT_RESOLVED,
            NotificationPriority.LOW,
            title="Alert Resolved",
            message=f'Alert "{alert.message}" has been resolved.',
        )
        return alert

    async def _notify_status(
        self,
        alert: Alert,
        notification_type: NotificationType,
        priority: NotificationPriority,
        title: str,
        message: str,
        exclude: str | None = None,
    ) -> None:
        recipients = [u for u in await self._recipients([EscalationRole.ADMIN]) if u != exclude]
        if not recipients:
            return
        request = DomainNotificationCreate(
            type=notification_type,
            category=NotificationCategory.SYSTEM,
            priority=priority,
            content=NotificationContent(
                title=title,
                message=message,
                action_url=f"{self.dashboard_url}/{alert.alert_id}",
                metadata={"alert_id": alert.alert_id, "alert_type": str(alert.type)},
            ),
            recipients=[
                NotificationRecipient(user_id=user_id, user_role=UserRole.ADMIN, channels=list(_STATUS_CHANNELS))
                for user_id in recipients
            ],
        )
        try:
            await self.notifier.create_notification(request)
        except Exception as e:
            self.logger.error(f"Failed to send {notification_type} notification: {e}", extra={"alert_id": alert.alert_id})

    def get_alert(self, alert_id: str) -> Alert:
        alert = self._active.get(alert_id) or self._history.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def get_active_alerts(self) -> list[Alert]:
        return sorted(self._active.values(), key=lambda a: a.created_at, reverse=True)

    def get_alert_history(self, limit: int = 50) -> list[Alert]:
        resolved = sorted(
            self._history.values(),
            key=lambda a: a.resolution.at if a.resolution else a.created_at,
            reverse=True,
        )
        return resolved[:limit]

    def pending_escalations(self, alert_id: str) -> list[int]:
        return self._timers.pending_levels(alert_id)

    def get_alert_statistics(self) -> AlertStatistics:
        now = self.clock.now()
        active = list(self._active.values())
        by_type: dict[str, int] = {}
        for alert in active:
            by_type[str(alert.type)] = by_type.get(str(alert.type), 0) + 1
        day_ago = now - timedelta(hours=24)
        return AlertStatistics(
            active_total=len(active),
            active_critical=sum(1 for a in active if a.severity == AlertSeverity.CRITICAL),
            active_acknowledged=sum(1 for a in active if a.acknowledged),
            active_unacknowledged=sum(1 for a in active if not a.acknowledged),
            resolved_total=len(self._history),
            resolved_last_24h=sum(
                1 for a in self._history.values() if a.resolution is not None and a.resolution.at >= day_ago
            ),
            by_type=by_type,
        )

    def get_escalation_rules(self) -> dict[AlertType, EscalationRule]:
        return dict(self.rules)

    def get_escalation_rule(self, alert_type: AlertType) -> EscalationRule:
        rule = self.rules.get(alert_type)
        if rule is None:
            raise EscalationRuleNotFoundError(str(alert_type))
        return rule

    def update_escalation_rule(self, alert_type: AlertType, rule: EscalationRule) -> None:
        """Replace the rule for ``alert_type``; alerts already raised keep their scheduled timers."""
        self.rules[alert_type] = rule
        self.logger.info(f"Escalation rule updated for {alert_type}", extra={"alert_type": str(alert_type)})

    async def cleanup_history(self) -> int:
        cutoff = self.clock.now() - self.history_retention
        async with self._lock:
            expired = [
                alert_id for alert_id, alert in self._history.items()
                if alert.resolution is not None and alert.resolution.at < cutoff
            ]
            for alert_id in expired:
                del self._history[alert_id]
            for alert_type, until in list(self._cooldowns.items()):
                if until <= self.clock.now():
                    del self._cooldowns[alert_type]
        if expired:
            self.logger.info(f"Removed {len(expired)} resolved alert(s) from history")
        return len(expired)

    async def check_stale_alerts(self) -> list[Alert]:
        """Flag unacknowledged alerts older than the stale threshold, once per alert."""
        cutoff = self.clock.now() - self.stale_threshold
        stale: list[Alert] = []
        for alert in list(self._active.values()):
            if alert.acknowledged or alert.stale_signalled or alert.created_at > cutoff:
                continue
            alert.stale_signalled = True
            stale.append(alert)
            self.metrics.record_stale(str(alert.type))
            self.logger.warning(
                f"Alert unacknowledged for over {self.stale_threshold}",
                extra={"alert_id": alert.alert_id, "alert_type": str(alert.type), "escalation_level": alert.escalation_level},
            )
        return stale

    async def shutdown(self) -> None:
        async with self._lock:
            pending = len(self._timers)
            self._timers.clear()
        self.logger.info(f"Escalation engine stopped, {pending} pending timer(s) cancelled")
