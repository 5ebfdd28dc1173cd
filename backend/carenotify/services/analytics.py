import logging
from collections import Counter
from datetime import datetime

from carenotify.core.clock import Clock
from carenotify.db.repositories import AnalyticsRepository
from carenotify.domain.delivery import AnalyticsBucket
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.domain.enums.user import UserRole

_BucketKey = tuple[datetime, DeliveryChannel, UserRole]


def hour_bucket(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


class DeliveryAnalytics:
    """Buffers per-hour delivery counters in memory and flushes them as $inc upserts.

    Counters are additive, so a flush that fails halfway is merged back into
    the buffer and retried on the next flush without double counting.
    """

    def __init__(self, repository: AnalyticsRepository, clock: Clock, logger: logging.Logger) -> None:
        self.repository = repository
        self.clock = clock
        self.logger = logger
        self._buffer: dict[_BucketKey, Counter[str]] = {}

    def record(self, channel: DeliveryChannel, recipient_role: UserRole, **counters: float) -> None:
        key = (hour_bucket(self.clock.now()), channel, recipient_role)
        self._buffer.setdefault(key, Counter()).update(counters)

    @property
    def pending_buckets(self) -> int:
        return len(self._buffer)

    async def flush(self) -> int:
        """Write buffered counters; returns the number of buckets written."""
        if not self._buffer:
            return 0
        pending, self._buffer = self._buffer, {}
        written = 0
        try:
            for key, counters in list(pending.items()):
                bucket_start, channel, role = key
                await self.repository.increment(bucket_start, channel, role, dict(counters))
                del pending[key]
                written += 1
        except Exception as e:
            self.logger.error(f"Analytics flush failed, {len(pending)} bucket(s) kept for retry: {e}")
            for key, counters in pending.items():
                self._buffer.setdefault(key, Counter()).update(counters)
        return written

    async def get_buckets(self, start: datetime, end: datetime) -> list[AnalyticsBucket]:
        return await self.repository.find_buckets(start, end)
