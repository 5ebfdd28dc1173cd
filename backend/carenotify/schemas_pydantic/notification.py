from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from carenotify.domain.enums.notification import (
    DeliveryChannel,
    DeliveryErrorKind,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
    ProviderEvent,
)
from carenotify.domain.enums.user import UserRole


class NotificationContentSchema(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=5000)
    action_url: str | None = None
    action_text: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class NotificationRecipientSchema(BaseModel):
    user_id: str
    user_role: UserRole
    channels: list[DeliveryChannel] = Field(default_factory=lambda: [DeliveryChannel.WEBSOCKET])

    model_config = ConfigDict(from_attributes=True)


class NotificationCreateRequest(BaseModel):
    """Request body for creating a notification"""
    type: NotificationType
    content: NotificationContentSchema
    recipients: list[NotificationRecipientSchema] = Field(default_factory=list)
    target_roles: list[UserRole] = Field(default_factory=list)
    target_channels: list[DeliveryChannel] = Field(default_factory=lambda: [DeliveryChannel.WEBSOCKET])
    context_data: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    category: NotificationCategory = NotificationCategory.SYSTEM
    scheduled_for: datetime | None = None
    expires_at: datetime | None = None
    language: str = "en"


class NotificationCreateResponse(BaseModel):
    notification_id: str


class NotificationAnalyticsSchema(BaseModel):
    total_recipients: int
    delivered: int
    read: int
    actioned: int
    bounced: int

    model_config = ConfigDict(from_attributes=True)


class NotificationResponse(BaseModel):
    notification_id: str
    type: NotificationType
    category: NotificationCategory
    priority: NotificationPriority
    content: NotificationContentSchema
    recipients: list[NotificationRecipientSchema]
    created_at: datetime
    expires_at: datetime
    scheduled_for: datetime | None = None
    language: str
    analytics: NotificationAnalyticsSchema

    model_config = ConfigDict(from_attributes=True)


class RecipientDeliveryResponse(BaseModel):
    recipient_id: str
    recipient_role: UserRole
    channel: DeliveryChannel
    status: DeliveryStatus
    attempts: int
    last_error: str | None = None
    error_kind: DeliveryErrorKind | None = None
    skip_reason: str | None = None
    provider_message_id: str | None = None
    latency_ms: float | None = None
    dispatched_at: datetime | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    bounced: bool = False
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryListResponse(BaseModel):
    notification_id: str
    deliveries: list[RecipientDeliveryResponse]


class InteractionRequest(BaseModel):
    user_id: str


class ProviderWebhookEvent(BaseModel):
    """Status callback posted by an email or SMS provider"""
    message_id: str
    event: ProviderEvent
    reason: str | None = None
    timestamp: datetime | None = None


class ProviderWebhookResponse(BaseModel):
    accepted: bool
