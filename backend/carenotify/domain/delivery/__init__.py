from carenotify.domain.delivery.models import (
    AnalyticsBucket,
    ChannelDeliveryResult,
    DeliveryStats,
    QueueItem,
    RecipientDelivery,
    RecipientDeliveryOutcome,
    SendResult,
    queue_dedup_key,
)
from carenotify.domain.delivery.state import ALLOWED_TRANSITIONS, can_transition, sources_for

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AnalyticsBucket",
    "ChannelDeliveryResult",
    "DeliveryStats",
    "QueueItem",
    "RecipientDelivery",
    "RecipientDeliveryOutcome",
    "SendResult",
    "can_transition",
    "queue_dedup_key",
    "sources_for",
]
