from datetime import datetime
from typing import Any

from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.errors import DuplicateKeyError

from carenotify.core.database_context import Collection, Database
from carenotify.db.collections import CollectionNames
from carenotify.domain.delivery import QueueItem
from carenotify.domain.enums.notification import PRIORITY_RANK, DeliveryChannel, NotificationPriority
from carenotify.domain.enums.user import UserRole


class DeliveryQueueRepository:
    """Durable work queue; visibility is driven by ``available_at``.

    Leasing pushes ``available_at`` to the lease expiry, so an item whose
    worker died becomes ready again without a separate reaper.
    """

    def __init__(self, database: Database):
        self.db: Database = database
        self.queue_collection: Collection = self.db.get_collection(CollectionNames.DELIVERY_QUEUE)

    async def create_indexes(self) -> None:
        indexes = await self.queue_collection.list_indexes().to_list(None)
        if len(indexes) <= 1:
            await self.queue_collection.create_indexes([
                # Multikey: unique across items for every (notification, recipient, channel)
                IndexModel([("dedup_keys", ASCENDING)], unique=True),
                IndexModel([("item_id", ASCENDING)], unique=True),
                IndexModel([
                    ("available_at", ASCENDING),
                    ("priority_rank", DESCENDING),
                    ("enqueued_at", ASCENDING),
                ]),
            ])

    async def insert_if_absent(self, item: QueueItem) -> bool:
        """Insert unless a queued item already covers one of its channels; True when inserted."""
        try:
            await self.queue_collection.insert_one(self._to_doc(item))
        except DuplicateKeyError:
            return False
        return True

    async def lease_next(self, now: datetime, lease_until: datetime) -> QueueItem | None:
        doc = await self.queue_collection.find_one_and_update(
            {"available_at": {"$lte": now}},
            {"$set": {"available_at": lease_until, "leased_until": lease_until}},
            sort=[("priority_rank", DESCENDING), ("enqueued_at", ASCENDING)],
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return self._from_doc(doc)

    async def get(self, item_id: str) -> QueueItem | None:
        doc = await self.queue_collection.find_one({"item_id": item_id})
        if not doc:
            return None
        return self._from_doc(doc)

    async def delete(self, item_id: str) -> bool:
        result = await self.queue_collection.delete_one({"item_id": item_id})
        return result.deleted_count > 0

    async def reschedule(
            self, item_id: str, attempt_count: int, available_at: datetime, last_error: str | None
    ) -> bool:
        result = await self.queue_collection.update_one(
            {"item_id": item_id},
            {"$set": {
                "attempt_count": attempt_count,
                "available_at": available_at,
                "leased_until": None,
                "last_error": last_error,
            }},
        )
        return result.modified_count > 0

    async def count(self) -> int:
        return await self.queue_collection.count_documents({})

    async def count_ready(self, now: datetime) -> int:
        return await self.queue_collection.count_documents({"available_at": {"$lte": now}})

    @staticmethod
    def _to_doc(item: QueueItem) -> dict[str, Any]:
        return {
            "item_id": item.item_id,
            "dedup_keys": item.dedup_keys,
            "notification_id": item.notification_id,
            "recipient_id": item.recipient_id,
            "recipient_role": str(item.recipient_role),
            "channels": [str(c) for c in item.channels],
            "priority": str(item.priority),
            "priority_rank": PRIORITY_RANK[item.priority],
            "scheduled_for": item.scheduled_for,
            "enqueued_at": item.enqueued_at,
            "attempt_count": item.attempt_count,
            "available_at": item.available_at or item.scheduled_for,
            "leased_until": item.leased_until,
            "last_error": item.last_error,
        }

    @staticmethod
    def _from_doc(doc: dict[str, Any]) -> QueueItem:
        return QueueItem(
            item_id=doc["item_id"],
            notification_id=doc["notification_id"],
            recipient_id=doc["recipient_id"],
            recipient_role=UserRole(doc["recipient_role"]),
            channels=[DeliveryChannel(c) for c in doc["channels"]],
            priority=NotificationPriority(doc["priority"]),
            scheduled_for=doc["scheduled_for"],
            enqueued_at=doc["enqueued_at"],
            attempt_count=doc.get("attempt_count", 0),
            available_at=doc.get("available_at"),
            leased_until=doc.get("leased_until"),
            last_error=doc.get("last_error"),
        )
