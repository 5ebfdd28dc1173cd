from dataclasses import asdict
from datetime import datetime
from typing import Any

from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError

from carenotify.core.database_context import Collection, Database
from carenotify.db.collections import CollectionNames
from carenotify.domain.delivery import DeliveryStats, RecipientDelivery, sources_for
from carenotify.domain.enums.notification import (
    DeliveryChannel,
    DeliveryErrorKind,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)
from carenotify.domain.enums.user import UserRole
from carenotify.domain.notification import (
    DomainNotification,
    NotificationAnalytics,
    NotificationContent,
    NotificationRecipient,
)

ANALYTICS_FIELDS = frozenset({"total_recipients", "delivered", "read", "actioned", "bounced"})


class NotificationRepository:
    """Notifications plus one delivery-state document per (notification, recipient, channel)."""

    def __init__(self, database: Database):
        self.db: Database = database
        self.notifications_collection: Collection = self.db.get_collection(CollectionNames.NOTIFICATIONS)
        self.deliveries_collection: Collection = self.db.get_collection(CollectionNames.NOTIFICATION_DELIVERIES)

    async def create_indexes(self) -> None:
        # Create indexes if only _id exists
        notif_indexes = await self.notifications_collection.list_indexes().to_list(None)
        if len(notif_indexes) <= 1:
            await self.notifications_collection.create_indexes([
                IndexModel([("notification_id", ASCENDING)], unique=True),
                IndexModel([("scheduled_for", ASCENDING)], sparse=True),
                IndexModel([("expires_at", ASCENDING)]),
                IndexModel([("created_at", DESCENDING)]),
            ])

        delivery_indexes = await self.deliveries_collection.list_indexes().to_list(None)
        if len(delivery_indexes) <= 1:
            await self.deliveries_collection.create_indexes([
                IndexModel(
                    [("notification_id", ASCENDING), ("recipient_id", ASCENDING), ("channel", ASCENDING)],
                    unique=True,
                ),
                IndexModel([("dispatched_at", ASCENDING), ("status", ASCENDING)]),
                IndexModel([("channel", ASCENDING), ("provider_message_id", ASCENDING)], sparse=True),
            ])

    # Notifications
    async def create_notification(self, notification: DomainNotification) -> str:
        await self.notifications_collection.insert_one(self._notification_to_doc(notification))
        return notification.notification_id

    async def get_notification(self, notification_id: str) -> DomainNotification | None:
        doc = await self.notifications_collection.find_one({"notification_id": notification_id})
        if not doc:
            return None
        return self._notification_from_doc(doc)

    async def find_due_scheduled(self, now: datetime, limit: int) -> list[DomainNotification]:
        cursor = (
            self.notifications_collection.find({"scheduled_for": {"$ne": None, "$lte": now}})
            .sort("scheduled_for", ASCENDING)
            .limit(limit)
        )
        items: list[DomainNotification] = []
        async for doc in cursor:
            items.append(self._notification_from_doc(doc))
        return items

    async def clear_scheduled_for(self, notification_id: str, due_before: datetime) -> bool:
        """Claim a due scheduled notification; only one sweeper wins."""
        result = await self.notifications_collection.update_one(
            {"notification_id": notification_id, "scheduled_for": {"$ne": None, "$lte": due_before}},
            {"$set": {"scheduled_for": None}},
        )
        return result.modified_count > 0

    async def increment_analytics(self, notification_id: str, field: str, amount: int = 1) -> None:
        if field not in ANALYTICS_FIELDS:
            raise ValueError(f"Unknown analytics counter: {field}")
        await self.notifications_collection.update_one(
            {"notification_id": notification_id}, {"$inc": {f"analytics.{field}": amount}}
        )

    async def delete_expired(self, now: datetime, limit: int = 500) -> list[str]:
        cursor = self.notifications_collection.find(
            {"expires_at": {"$lte": now}}, {"notification_id": 1}
        ).limit(limit)
        expired = [doc["notification_id"] async for doc in cursor]
        if expired:
            await self.deliveries_collection.delete_many({"notification_id": {"$in": expired}})
            await self.notifications_collection.delete_many({"notification_id": {"$in": expired}})
        return expired

    # Deliveries
    async def create_deliveries(self, deliveries: list[RecipientDelivery]) -> int:
        """Insert missing delivery states; an existing pair keeps its current state."""
        created = 0
        for delivery in deliveries:
            try:
                result = await self.deliveries_collection.update_one(
                    self._delivery_key(delivery.notification_id, delivery.recipient_id, delivery.channel),
                    {"$setOnInsert": self._delivery_to_doc(delivery)},
                    upsert=True,
                )
            except DuplicateKeyError:
                continue
            if result.upserted_id is not None:
                created += 1
        return created

    async def mark_dispatched(self, notification_id: str, now: datetime) -> int:
        """Stamp ``dispatched_at`` on the notification's pairs that were never dispatched."""
        result = await self.deliveries_collection.update_many(
            {"notification_id": notification_id, "dispatched_at": None},
            {"$set": {"dispatched_at": now}},
        )
        return result.modified_count

    async def get_delivery(
            self, notification_id: str, recipient_id: str, channel: DeliveryChannel
    ) -> RecipientDelivery | None:
        doc = await self.deliveries_collection.find_one(self._delivery_key(notification_id, recipient_id, channel))
        if not doc:
            return None
        return self._delivery_from_doc(doc)

    async def list_deliveries(self, notification_id: str) -> list[RecipientDelivery]:
        cursor = self.deliveries_collection.find({"notification_id": notification_id})
        return [self._delivery_from_doc(doc) async for doc in cursor]

    async def find_delivery_by_provider_id(
            self, channel: DeliveryChannel, provider_message_id: str
    ) -> RecipientDelivery | None:
        doc = await self.deliveries_collection.find_one(
            {"channel": channel, "provider_message_id": provider_message_id}
        )
        if not doc:
            return None
        return self._delivery_from_doc(doc)

    async def transition_delivery(
            self,
            notification_id: str,
            recipient_id: str,
            channel: DeliveryChannel,
            target: DeliveryStatus,
            now: datetime,
            allowed_from: list[DeliveryStatus] | None = None,
            **fields: Any,
    ) -> bool:
        """Conditionally move a pair to ``target``; False if its current state forbids it.

        ``allowed_from`` narrows the legal source states for this particular move.
        """
        sources = sources_for(target)
        if allowed_from is not None:
            sources = [s for s in sources if s in allowed_from]
        query = self._delivery_key(notification_id, recipient_id, channel)
        query["status"] = {"$in": [str(s) for s in sources]}
        update: dict[str, Any] = {"$set": {"status": target, "updated_at": now, **fields}}
        if target == DeliveryStatus.SENDING:
            update["$inc"] = {"attempts": 1}
        result = await self.deliveries_collection.update_one(query, update)
        return result.modified_count > 0

    async def mark_interaction(
            self, notification_id: str, recipient_id: str, field: str, now: datetime
    ) -> int:
        """Stamp read_at/clicked_at on delivered pairs that do not have it yet."""
        result = await self.deliveries_collection.update_many(
            {
                "notification_id": notification_id,
                "recipient_id": recipient_id,
                "status": DeliveryStatus.DELIVERED,
                field: None,
            },
            {"$set": {field: now, "updated_at": now}},
        )
        return result.modified_count

    async def delivery_stats(
            self, start: datetime, end: datetime, group_by: str | None = None
    ) -> dict[str, DeliveryStats]:
        """Count states of pairs dispatched in [start, end), optionally grouped by channel or role."""
        group_key: Any = f"${group_by}" if group_by else "all"
        pipeline: list[dict[str, Any]] = [
            {"$match": {"dispatched_at": {"$gte": start, "$lt": end}}},
            {"$group": {
                "_id": {"key": group_key, "status": "$status"},
                "count": {"$sum": 1},
                "read": {"$sum": {"$cond": [{"$ifNull": ["$read_at", False]}, 1, 0]}},
                "clicked": {"$sum": {"$cond": [{"$ifNull": ["$clicked_at", False]}, 1, 0]}},
                "latency_total": {"$sum": {"$ifNull": ["$latency_ms", 0]}},
                "latency_samples": {"$sum": {"$cond": [{"$ifNull": ["$latency_ms", False]}, 1, 0]}},
            }},
        ]
        stats: dict[str, DeliveryStats] = {}
        cursor = await self.deliveries_collection.aggregate(pipeline)
        async for row in cursor:
            key = str(row["_id"]["key"])
            bucket = stats.setdefault(key, DeliveryStats())
            status = DeliveryStatus(row["_id"]["status"])
            count = row["count"]
            if status == DeliveryStatus.DELIVERED:
                bucket.delivered += count
                bucket.latency_total_ms += row["latency_total"]
                bucket.latency_samples += row["latency_samples"]
            elif status == DeliveryStatus.FAILED:
                bucket.failed += count
            elif status == DeliveryStatus.PERMANENTLY_FAILED:
                bucket.permanently_failed += count
            elif status == DeliveryStatus.SKIPPED:
                bucket.skipped += count
            else:
                bucket.pending += count
            bucket.read += row["read"]
            bucket.clicked += row["clicked"]
        return stats

    async def find_stuck_notifications(self, dispatched_before: datetime, limit: int) -> list[str]:
        """Dispatched notifications whose every recipient/channel pair is still pending."""
        pipeline: list[dict[str, Any]] = [
            {"$match": {"dispatched_at": {"$lt": dispatched_before}}},
            {"$group": {
                "_id": "$notification_id",
                "total": {"$sum": 1},
                "pending": {"$sum": {"$cond": [{"$eq": ["$status", DeliveryStatus.PENDING.value]}, 1, 0]}},
                "oldest": {"$min": "$dispatched_at"},
            }},
            {"$match": {"$expr": {"$eq": ["$total", "$pending"]}}},
            {"$sort": {"oldest": 1}},
            {"$limit": limit},
        ]
        cursor = await self.deliveries_collection.aggregate(pipeline)
        return [row["_id"] async for row in cursor]

    # Mapping
    @staticmethod
    def _delivery_key(notification_id: str, recipient_id: str, channel: DeliveryChannel) -> dict[str, Any]:
        return {"notification_id": notification_id, "recipient_id": recipient_id, "channel": str(channel)}

    @staticmethod
    def _notification_to_doc(notification: DomainNotification) -> dict[str, Any]:
        return asdict(notification)

    @staticmethod
    def _notification_from_doc(doc: dict[str, Any]) -> DomainNotification:
        return DomainNotification(
            notification_id=doc["notification_id"],
            type=NotificationType(doc["type"]),
            category=NotificationCategory(doc["category"]),
            priority=NotificationPriority(doc["priority"]),
            content=NotificationContent(**doc["content"]),
            recipients=[
                NotificationRecipient(
                    user_id=r["user_id"],
                    user_role=UserRole(r["user_role"]),
                    channels=[DeliveryChannel(c) for c in r["channels"]],
                )
                for r in doc.get("recipients", [])
            ],
            created_at=doc["created_at"],
            expires_at=doc["expires_at"],
            scheduled_for=doc.get("scheduled_for"),
            context_data=doc.get("context_data") or {},
            language=doc.get("language", "en"),
            analytics=NotificationAnalytics(**(doc.get("analytics") or {})),
        )

    @staticmethod
    def _delivery_to_doc(delivery: RecipientDelivery) -> dict[str, Any]:
        return asdict(delivery)

    @staticmethod
    def _delivery_from_doc(doc: dict[str, Any]) -> RecipientDelivery:
        error_kind = doc.get("error_kind")
        return RecipientDelivery(
            notification_id=doc["notification_id"],
            recipient_id=doc["recipient_id"],
            recipient_role=UserRole(doc["recipient_role"]),
            channel=DeliveryChannel(doc["channel"]),
            priority=NotificationPriority(doc["priority"]),
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
            status=DeliveryStatus(doc["status"]),
            dispatched_at=doc.get("dispatched_at"),
            attempts=doc.get("attempts", 0),
            last_error=doc.get("last_error"),
            error_kind=DeliveryErrorKind(error_kind) if error_kind else None,
            skip_reason=doc.get("skip_reason"),
            provider_message_id=doc.get("provider_message_id"),
            latency_ms=doc.get("latency_ms"),
            sent_at=doc.get("sent_at"),
            delivered_at=doc.get("delivered_at"),
            read_at=doc.get("read_at"),
            clicked_at=doc.get("clicked_at"),
            bounced=doc.get("bounced", False),
        )
