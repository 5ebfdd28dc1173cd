from datetime import datetime
from typing import Any

from pymongo import ASCENDING, IndexModel

from carenotify.core.database_context import Collection, Database
from carenotify.db.collections import CollectionNames
from carenotify.domain.delivery import AnalyticsBucket
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.domain.enums.user import UserRole

COUNTER_FIELDS = (
    "sent",
    "delivered",
    "failed",
    "skipped",
    "read",
    "clicked",
    "bounced",
    "latency_total_ms",
    "latency_samples",
)


class AnalyticsRepository:
    def __init__(self, database: Database):
        self.db: Database = database
        self.analytics_collection: Collection = self.db.get_collection(CollectionNames.DELIVERY_ANALYTICS)

    async def create_indexes(self) -> None:
        indexes = await self.analytics_collection.list_indexes().to_list(None)
        if len(indexes) <= 1:
            await self.analytics_collection.create_indexes([
                IndexModel(
                    [("bucket_start", ASCENDING), ("channel", ASCENDING), ("recipient_role", ASCENDING)],
                    unique=True,
                ),
            ])

    async def increment(
            self,
            bucket_start: datetime,
            channel: DeliveryChannel,
            recipient_role: UserRole,
            counters: dict[str, float],
    ) -> None:
        increments = {k: v for k, v in counters.items() if k in COUNTER_FIELDS and v}
        if not increments:
            return
        await self.analytics_collection.update_one(
            {"bucket_start": bucket_start, "channel": str(channel), "recipient_role": str(recipient_role)},
            {"$inc": increments},
            upsert=True,
        )

    async def find_buckets(self, start: datetime, end: datetime) -> list[AnalyticsBucket]:
        cursor = self.analytics_collection.find(
            {"bucket_start": {"$gte": start, "$lt": end}}
        ).sort("bucket_start", ASCENDING)
        return [self._from_doc(doc) async for doc in cursor]

    @staticmethod
    def _from_doc(doc: dict[str, Any]) -> AnalyticsBucket:
        return AnalyticsBucket(
            bucket_start=doc["bucket_start"],
            channel=DeliveryChannel(doc["channel"]),
            recipient_role=UserRole(doc["recipient_role"]),
            **{k: doc.get(k, 0) for k in COUNTER_FIELDS},
        )
