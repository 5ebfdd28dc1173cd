import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from carenotify.domain.enums.alert import AlertSeverity, AlertStatus, AlertType, EscalationRole
from carenotify.domain.enums.notification import DeliveryChannel


@dataclass(frozen=True)
class EscalationLevel:
    delay: timedelta
    recipient_roles: tuple[EscalationRole, ...]
    channels: tuple[DeliveryChannel, ...]


@dataclass(frozen=True)
class EscalationRule:
    levels: tuple[EscalationLevel, ...]
    cooldown: timedelta

    def __post_init__(self) -> None:
        delays = [level.delay for level in self.levels]
        if delays != sorted(delays):
            raise ValueError("Escalation levels must be ordered by delay")


@dataclass
class AlertAcknowledgement:
    by: str
    at: datetime
    notes: str | None = None


@dataclass
class AlertResolution:
    by: str
    at: datetime
    resolution: str | None = None


@dataclass
class Alert:
    alert_id: str
    type: AlertType
    severity: AlertSeverity
    message: str
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None
    occurrences: int = 1
    escalation_level: int = 0
    acknowledgement: AlertAcknowledgement | None = None
    resolution: AlertResolution | None = None
    stale_signalled: bool = False

    @property
    def acknowledged(self) -> bool:
        return self.acknowledgement is not None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None

    @property
    def status(self) -> AlertStatus:
        if self.resolved:
            return AlertStatus.RESOLVED
        if self.acknowledged:
            return AlertStatus.ACKNOWLEDGED
        return AlertStatus.ACTIVE


@dataclass
class AlertPayload:
    """Alert event as raised by a detector, before deduplication."""

    type: AlertType
    severity: AlertSeverity
    message: str
    # Identifies the condition (channel, scope); hashed into the alert id
    data: dict[str, Any] = field(default_factory=dict)
    # Measurements that change tick to tick; merged into an existing alert
    details: dict[str, Any] = field(default_factory=dict)

    def fingerprint(self) -> str:
        """Deterministic id: same type, severity and identifying data collapse to one alert."""
        canonical = json.dumps(self.data, sort_keys=True, default=str, separators=(",", ":"))
        digest = hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8]
        return f"{self.type}_{self.severity}_{digest}"


@dataclass
class AlertStatistics:
    active_total: int
    active_critical: int
    active_acknowledged: int
    active_unacknowledged: int
    resolved_total: int
    resolved_last_24h: int
    by_type: dict[str, int]
