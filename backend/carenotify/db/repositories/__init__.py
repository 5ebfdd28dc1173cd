from carenotify.db.repositories.analytics_repository import AnalyticsRepository
from carenotify.db.repositories.delivery_queue_repository import DeliveryQueueRepository
from carenotify.db.repositories.notification_repository import NotificationRepository
from carenotify.db.repositories.preference_repository import PreferenceRepository
from carenotify.db.repositories.user_directory_repository import UserDirectoryRepository

__all__ = [
    "AnalyticsRepository",
    "DeliveryQueueRepository",
    "NotificationRepository",
    "PreferenceRepository",
    "UserDirectoryRepository",
]
