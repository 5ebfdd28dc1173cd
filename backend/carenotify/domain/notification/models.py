from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from carenotify.domain.enums.notification import (
    DeliveryChannel,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)
from carenotify.domain.enums.user import UserRole


@dataclass
class NotificationContent:
    title: str
    message: str
    action_url: str | None = None
    action_text: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationRecipient:
    user_id: str
    user_role: UserRole
    channels: list[DeliveryChannel] = field(default_factory=lambda: [DeliveryChannel.WEBSOCKET])


@dataclass
class NotificationAnalytics:
    """Counters derived from recipient states; only ever incremented."""

    total_recipients: int = 0
    delivered: int = 0
    read: int = 0
    actioned: int = 0
    bounced: int = 0


@dataclass
class DomainNotification:
    type: NotificationType
    category: NotificationCategory
    priority: NotificationPriority
    content: NotificationContent
    recipients: list[NotificationRecipient]
    created_at: datetime
    expires_at: datetime
    notification_id: str = field(default_factory=lambda: str(uuid4()))
    scheduled_for: datetime | None = None
    context_data: dict[str, Any] = field(default_factory=dict)
    language: str = "en"
    analytics: NotificationAnalytics = field(default_factory=NotificationAnalytics)


@dataclass
class DomainNotificationCreate:
    """Request from a domain collaborator to notify one or more users."""

    type: NotificationType
    content: NotificationContent
    recipients: list[NotificationRecipient] = field(default_factory=list)
    target_roles: list[UserRole] = field(default_factory=list)
    target_channels: list[DeliveryChannel] = field(default_factory=lambda: [DeliveryChannel.WEBSOCKET])
    context_data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    category: NotificationCategory = NotificationCategory.SYSTEM
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    language: str = "en"
