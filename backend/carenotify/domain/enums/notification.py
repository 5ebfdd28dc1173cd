from carenotify.core.utils import StringEnum


class DeliveryChannel(StringEnum):
    WEBSOCKET = "websocket"
    EMAIL = "email"
    SMS = "sms"


class NotificationPriority(StringEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]

    @property
    def requires_guaranteed_delivery(self) -> bool:
        return self in (NotificationPriority.CRITICAL, NotificationPriority.EMERGENCY)


PRIORITY_RANK: dict[NotificationPriority, int] = {
    NotificationPriority.LOW: 1,
    NotificationPriority.MEDIUM: 2,
    NotificationPriority.HIGH: 3,
    NotificationPriority.CRITICAL: 4,
    NotificationPriority.EMERGENCY: 5,
}


class NotificationCategory(StringEnum):
    MEDICAL = "medical"
    ADMINISTRATIVE = "administrative"
    SYSTEM = "system"
    MARKETING = "marketing"


class NotificationType(StringEnum):
    PRESCRIPTION_CREATED = "prescription_created"
    PRESCRIPTION_READY = "prescription_ready"
    ORDER_STATUS_CHANGED = "order_status_changed"
    APPOINTMENT_REMINDER = "appointment_reminder"
    PAYMENT_PROCESSED = "payment_processed"
    INVENTORY_ALERTS = "inventory_alerts"
    SYSTEM_MAINTENANCE = "system_maintenance"
    SECURITY_ALERTS = "security_alerts"
    SYSTEM_ALERT = "system_alert"
    SYSTEM_ALERT_ESCALATION = "system_alert_escalation"
    ALERT_ACKNOWLEDGED = "alert_acknowledged"
    ALERT_RESOLVED = "alert_resolved"


class DeliveryStatus(StringEnum):
    """State of one (recipient, channel) pair."""

    PENDING = "pending"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"
    PERMANENTLY_FAILED = "permanently_failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.PERMANENTLY_FAILED,
    DeliveryStatus.SKIPPED,
})


class DeliveryErrorKind(StringEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class ProviderEvent(StringEnum):
    """Status events reported back by email/SMS provider webhooks."""

    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"
    COMPLAINED = "complained"
