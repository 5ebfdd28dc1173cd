from dataclasses import dataclass, field
from datetime import datetime, time
from zoneinfo import ZoneInfo

from carenotify.core.utils import StringEnum
from carenotify.domain.enums.notification import DeliveryChannel, NotificationCategory, NotificationType


class PriorityFloor(StringEnum):
    """Lowest priority a category still lets through."""

    ALL = "all"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class QuietHours:
    enabled: bool = False
    start: time = time(22, 0)
    end: time = time(8, 0)
    timezone: str = "UTC"

    def contains(self, moment: datetime) -> bool:
        """Whether ``moment`` falls inside the window; windows may cross midnight."""
        if not self.enabled or self.start == self.end:
            return False
        local = moment.astimezone(ZoneInfo(self.timezone)).time().replace(tzinfo=None)
        if self.start < self.end:
            return self.start <= local < self.end
        return local >= self.start or local < self.end


@dataclass
class CategoryPreference:
    enabled: bool = True
    priority_floor: PriorityFloor = PriorityFloor.ALL


@dataclass
class UserPreferences:
    user_id: str
    enabled: bool = True
    channels: dict[DeliveryChannel, bool] = field(default_factory=dict)
    categories: dict[NotificationCategory, CategoryPreference] = field(default_factory=dict)
    disabled_types: set[NotificationType] = field(default_factory=set)
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    language: str = "en"

    def channel_enabled(self, channel: DeliveryChannel) -> bool:
        return self.channels.get(channel, True)


@dataclass
class RecipientContact:
    user_id: str
    email: str | None = None
    phone: str | None = None
