import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from carenotify.core.clock import Clock
from carenotify.domain.enums.notification import DeliveryChannel, NotificationPriority
from carenotify.domain.notification import DomainNotification
from carenotify.domain.preferences import PriorityFloor, UserPreferences

_FLOOR_RANK: dict[PriorityFloor, int] = {
    PriorityFloor.ALL: NotificationPriority.LOW.rank,
    PriorityFloor.HIGH: NotificationPriority.HIGH.rank,
    PriorityFloor.CRITICAL: NotificationPriority.CRITICAL.rank,
}


class PreferenceStore(Protocol):
    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        ...


@dataclass
class _CachedPreferences:
    value: UserPreferences | None
    expires_at: datetime


class CachedPreferenceStore:
    """Bounded LRU with a TTL in front of the preference repository.

    Misses are cached too, so users without a preference document do not hit
    the database on every notification.
    """

    def __init__(
        self,
        store: PreferenceStore,
        clock: Clock,
        logger: logging.Logger,
        max_size: int = 1000,
        ttl_seconds: int = 300,
    ) -> None:
        self.store = store
        self.clock = clock
        self.logger = logger
        self.max_size = max_size
        self.ttl = timedelta(seconds=ttl_seconds)
        self._entries: OrderedDict[str, _CachedPreferences] = OrderedDict()
        self.hits = 0
        self.misses = 0

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        now = self.clock.now()
        entry = self._entries.get(user_id)
        if entry is not None and entry.expires_at > now:
            self._entries.move_to_end(user_id)
            self.hits += 1
            return entry.value

        self.misses += 1
        value = await self.store.get_user_preferences(user_id)
        self._entries[user_id] = _CachedPreferences(value=value, expires_at=now + self.ttl)
        self._entries.move_to_end(user_id)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug(f"Evicted preferences of {evicted} from cache")
        return value

    def invalidate(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._entries.clear()
        else:
            self._entries.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._entries)


class PreferenceFilter:
    """Decides whether a recipient should be skipped under their preferences.

    Only critical and emergency notifications pass through quiet hours; every
    other rule applies to all priorities.
    """

    def recipient_skip_reason(
        self, preferences: UserPreferences | None, notification: DomainNotification, now: datetime
    ) -> str | None:
        if preferences is None:
            return None
        if not preferences.enabled:
            return "notifications_disabled"
        if notification.type in preferences.disabled_types:
            return "type_disabled"

        category = preferences.categories.get(notification.category)
        if category is not None:
            if not category.enabled:
                return "category_disabled"
            if notification.priority.rank < _FLOOR_RANK[category.priority_floor]:
                return "below_priority_floor"

        if not notification.priority.requires_guaranteed_delivery and preferences.quiet_hours.contains(now):
            return "quiet_hours"
        return None

    def channel_skip_reason(
        self,
        preferences: UserPreferences | None,
        priority: NotificationPriority,
        channel: DeliveryChannel,
    ) -> str | None:
        # Guaranteed-delivery priorities use the configured fallback ladder regardless of channel opt-outs
        if preferences is None or priority.requires_guaranteed_delivery:
            return None
        if not preferences.channel_enabled(channel):
            return "channel_disabled"
        return None
