from carenotify.core.utils import StringEnum


class AlertType(StringEnum):
    CRITICAL_FAILURE_RATE = "critical_failure_rate"
    LOW_DELIVERY_RATE = "low_delivery_rate"
    ELEVATED_FAILURE_RATE = "elevated_failure_rate"
    CHANNEL_CONSECUTIVE_FAILURES = "channel_consecutive_failures"
    CHANNEL_LOW_DELIVERY_RATE = "channel_low_delivery_rate"
    SLOW_DELIVERY_TIME = "slow_delivery_time"
    STUCK_NOTIFICATIONS = "stuck_notifications"
    SYSTEM_HEALTH_CRITICAL = "system_health_critical"
    EXTERNAL_SERVICE_FAILURE = "external_service_failure"


class AlertSeverity(StringEnum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(StringEnum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class EscalationRole(StringEnum):
    """Roles an escalation level may page; all resolve to admin accounts."""

    ADMIN = "admin"
    SENIOR_ADMIN = "senior_admin"
    SYSTEM_ADMIN = "system_admin"
    EMERGENCY_CONTACT = "emergency_contact"
