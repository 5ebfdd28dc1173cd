from carenotify.domain.enums.alert import AlertSeverity, AlertStatus, AlertType, EscalationRole
from carenotify.domain.enums.notification import (
    PRIORITY_RANK,
    TERMINAL_STATUSES,
    DeliveryChannel,
    DeliveryErrorKind,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
    ProviderEvent,
)
from carenotify.domain.enums.user import UserRole

__all__ = [
    "PRIORITY_RANK",
    "TERMINAL_STATUSES",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "DeliveryChannel",
    "DeliveryErrorKind",
    "DeliveryStatus",
    "EscalationRole",
    "NotificationCategory",
    "NotificationPriority",
    "NotificationType",
    "ProviderEvent",
    "UserRole",
]
