from datetime import time
from typing import Any

from pymongo import ASCENDING, IndexModel

from carenotify.core.database_context import Collection, Database
from carenotify.db.collections import CollectionNames
from carenotify.domain.enums.notification import DeliveryChannel, NotificationCategory, NotificationType
from carenotify.domain.preferences import (
    CategoryPreference,
    PriorityFloor,
    QuietHours,
    UserPreferences,
)


def _parse_time(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


class PreferenceRepository:
    """Notification preferences as stored by the user-facing settings service."""

    def __init__(self, database: Database):
        self.db: Database = database
        self.preferences_collection: Collection = self.db.get_collection(CollectionNames.NOTIFICATION_PREFERENCES)

    async def create_indexes(self) -> None:
        indexes = await self.preferences_collection.list_indexes().to_list(None)
        if len(indexes) <= 1:
            await self.preferences_collection.create_indexes([
                IndexModel([("user_id", ASCENDING)], unique=True),
            ])

    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        doc = await self.preferences_collection.find_one({"user_id": user_id})
        if not doc:
            return None
        return self._from_doc(doc)

    async def upsert_preferences(self, preferences: UserPreferences) -> None:
        await self.preferences_collection.replace_one(
            {"user_id": preferences.user_id}, self._to_doc(preferences), upsert=True
        )

    @staticmethod
    def _to_doc(preferences: UserPreferences) -> dict[str, Any]:
        quiet = preferences.quiet_hours
        return {
            "user_id": preferences.user_id,
            "enabled": preferences.enabled,
            "channels": {str(c): {"enabled": enabled} for c, enabled in preferences.channels.items()},
            "categories": {
                str(cat): {"enabled": pref.enabled, "priority": str(pref.priority_floor)}
                for cat, pref in preferences.categories.items()
            },
            "disabled_types": sorted(str(t) for t in preferences.disabled_types),
            "quiet_hours": {
                "enabled": quiet.enabled,
                "start_time": quiet.start.strftime("%H:%M"),
                "end_time": quiet.end.strftime("%H:%M"),
                "timezone": quiet.timezone,
            },
            "language": preferences.language,
        }

    @staticmethod
    def _from_doc(doc: dict[str, Any]) -> UserPreferences:
        quiet = doc.get("quiet_hours") or {}
        return UserPreferences(
            user_id=doc["user_id"],
            enabled=doc.get("enabled", True),
            channels={
                DeliveryChannel(name): bool(value.get("enabled", True))
                for name, value in (doc.get("channels") or {}).items()
            },
            categories={
                NotificationCategory(name): CategoryPreference(
                    enabled=value.get("enabled", True),
                    priority_floor=PriorityFloor(value.get("priority", PriorityFloor.ALL)),
                )
                for name, value in (doc.get("categories") or {}).items()
            },
            disabled_types={NotificationType(t) for t in doc.get("disabled_types", [])},
            quiet_hours=QuietHours(
                enabled=quiet.get("enabled", False),
                start=_parse_time(quiet.get("start_time", "22:00")),
                end=_parse_time(quiet.get("end_time", "08:00")),
                timezone=quiet.get("timezone", "UTC"),
            ),
            language=doc.get("language", "en"),
        )
