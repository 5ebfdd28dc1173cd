from carenotify.core.utils import StringEnum


class CollectionNames(StringEnum):
    NOTIFICATIONS = "notifications"
    NOTIFICATION_DELIVERIES = "notification_deliveries"
    DELIVERY_QUEUE = "delivery_queue"
    DELIVERY_ANALYTICS = "delivery_analytics"
    NOTIFICATION_PREFERENCES = "notification_preferences"
    USERS = "users"
