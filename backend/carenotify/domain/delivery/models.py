from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from carenotify.domain.enums.notification import (
    DeliveryChannel,
    DeliveryErrorKind,
    DeliveryStatus,
    NotificationPriority,
)
from carenotify.domain.enums.user import UserRole


@dataclass
class SendResult:
    """What a channel adapter reports for a single send."""

    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    error_kind: DeliveryErrorKind | None = None

    @classmethod
    def ok(cls, provider_message_id: str | None = None) -> "SendResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def transient(cls, error: str) -> "SendResult":
        return cls(success=False, error=error, error_kind=DeliveryErrorKind.TRANSIENT)

    @classmethod
    def permanent(cls, error: str) -> "SendResult":
        return cls(success=False, error=error, error_kind=DeliveryErrorKind.PERMANENT)


@dataclass
class ChannelDeliveryResult:
    channel: DeliveryChannel
    success: bool
    latency_ms: float
    error: str | None = None
    error_kind: DeliveryErrorKind | None = None
    provider_message_id: str | None = None

    @property
    def retriable(self) -> bool:
        return not self.success and self.error_kind != DeliveryErrorKind.PERMANENT


@dataclass
class RecipientDeliveryOutcome:
    """Per-channel results of processing one queue item."""

    results: dict[DeliveryChannel, ChannelDeliveryResult] = field(default_factory=dict)
    # Channels not attempted because the item was already terminal or another send was in flight
    not_attempted: list[DeliveryChannel] = field(default_factory=list)

    @property
    def any_delivered(self) -> bool:
        return any(r.success for r in self.results.values())

    @property
    def retriable_channels(self) -> list[DeliveryChannel]:
        return [c for c, r in self.results.items() if r.retriable]

    @property
    def permanent_channels(self) -> list[DeliveryChannel]:
        return [c for c, r in self.results.items() if not r.success and not r.retriable]


@dataclass
class QueueItem:
    notification_id: str
    recipient_id: str
    recipient_role: UserRole
    channels: list[DeliveryChannel]
    priority: NotificationPriority
    scheduled_for: datetime
    enqueued_at: datetime
    item_id: str = field(default_factory=lambda: str(uuid4()))
    attempt_count: int = 0
    # Visibility: an item is ready when available_at <= now; leasing and backoff both push it forward
    available_at: datetime | None = None
    leased_until: datetime | None = None
    last_error: str | None = None

    @property
    def dedup_keys(self) -> list[str]:
        """One key per channel; an item is rejected if any of them is already queued."""
        return [queue_dedup_key(self.notification_id, self.recipient_id, channel) for channel in self.channels]


def queue_dedup_key(notification_id: str, recipient_id: str, channel: DeliveryChannel) -> str:
    return f"{notification_id}:{recipient_id}:{channel}"


@dataclass
class RecipientDelivery:
    """Current delivery state of one (notification, recipient, channel) pair."""

    notification_id: str
    recipient_id: str
    recipient_role: UserRole
    channel: DeliveryChannel
    priority: NotificationPriority
    created_at: datetime
    updated_at: datetime
    status: DeliveryStatus = DeliveryStatus.PENDING
    # Stamped when the notification is handed to the queue; scheduled pairs wait without it
    dispatched_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None
    error_kind: DeliveryErrorKind | None = None
    skip_reason: str | None = None
    provider_message_id: str | None = None
    latency_ms: float | None = None
    sent_at: datetime | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None
    clicked_at: datetime | None = None
    bounced: bool = False


@dataclass
class DeliveryStats:
    """Counts over a set of recipient/channel states.

    ``sent`` counts pairs that reached an attempted outcome (delivered, failed
    or permanently failed); skipped and pending pairs are not part of it.
    """

    delivered: int = 0
    failed: int = 0
    permanently_failed: int = 0
    skipped: int = 0
    pending: int = 0
    read: int = 0
    clicked: int = 0
    latency_total_ms: float = 0.0
    latency_samples: int = 0

    @property
    def sent(self) -> int:
        return self.delivered + self.failed + self.permanently_failed

    @property
    def total_failed(self) -> int:
        return self.failed + self.permanently_failed

    @property
    def average_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return self.latency_total_ms / self.latency_samples

    def delivery_rate(self) -> float:
        return self.delivered / self.sent * 100 if self.sent else 0.0

    def failure_rate(self) -> float:
        return self.total_failed / self.sent * 100 if self.sent else 0.0

    def add(self, other: "DeliveryStats") -> None:
        self.delivered += other.delivered
        self.failed += other.failed
        self.permanently_failed += other.permanently_failed
        self.skipped += other.skipped
        self.pending += other.pending
        self.read += other.read
        self.clicked += other.clicked
        self.latency_total_ms += other.latency_total_ms
        self.latency_samples += other.latency_samples

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "delivered": self.delivered,
            "failed": self.total_failed,
            "permanently_failed": self.permanently_failed,
            "skipped": self.skipped,
            "pending": self.pending,
            "read": self.read,
            "clicked": self.clicked,
            "delivery_rate": round(self.delivery_rate(), 2),
            "failure_rate": round(self.failure_rate(), 2),
            "average_latency_ms": round(self.average_latency_ms, 2),
        }


@dataclass
class AnalyticsBucket:
    """Hourly delivery counters for one (channel, recipient role)."""

    bucket_start: datetime
    channel: DeliveryChannel
    recipient_role: UserRole
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    read: int = 0
    clicked: int = 0
    bounced: int = 0
    latency_total_ms: float = 0.0
    latency_samples: int = 0
