from carenotify.domain.notification.exceptions import (
    DeliveryNotFoundError,
    InvalidTransitionError,
    NotificationNotFoundError,
    NotificationValidationError,
)
from carenotify.domain.notification.models import (
    DomainNotification,
    DomainNotificationCreate,
    NotificationAnalytics,
    NotificationContent,
    NotificationRecipient,
)

__all__ = [
    "DeliveryNotFoundError",
    "DomainNotification",
    "DomainNotificationCreate",
    "InvalidTransitionError",
    "NotificationAnalytics",
    "NotificationContent",
    "NotificationNotFoundError",
    "NotificationRecipient",
    "NotificationValidationError",
]
