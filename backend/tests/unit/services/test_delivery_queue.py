import random
from datetime import timedelta

import pytest

from carenotify.domain.delivery import QueueItem
from carenotify.domain.enums.notification import DeliveryChannel, DeliveryStatus, NotificationPriority
from carenotify.domain.enums.user import UserRole
from carenotify.services.delivery_queue import BackoffPolicy

from tests.helpers import make_notification_request
from tests.helpers.pipeline import NotificationPipeline

pytestmark = pytest.mark.unit

EMAIL = DeliveryChannel.EMAIL
SMS = DeliveryChannel.SMS
WEBSOCKET = DeliveryChannel.WEBSOCKET


def _item(
    p: NotificationPipeline,
    notification_id: str = "n-1",
    recipient_id: str = "patient-1",
    priority: NotificationPriority = NotificationPriority.MEDIUM,
    channels: list[DeliveryChannel] | None = None,
    delay: timedelta = timedelta(0),
) -> QueueItem:
    now = p.clock.now()
    return QueueItem(
        notification_id=notification_id,
        recipient_id=recipient_id,
        recipient_role=UserRole.PATIENT,
        channels=channels or [WEBSOCKET],
        priority=priority,
        scheduled_for=now + delay,
        enqueued_at=now,
    )


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_same_pair_is_queued_once(self, pipeline: NotificationPipeline) -> None:
        assert await pipeline.queue.enqueue(_item(pipeline, channels=[EMAIL, SMS])) is True
        assert await pipeline.queue.enqueue(_item(pipeline, channels=[SMS, EMAIL])) is False
        assert await pipeline.queue_repository.count() == 1

    @pytest.mark.asyncio
    async def test_other_channel_is_a_separate_item(self, pipeline: NotificationPipeline) -> None:
        await pipeline.queue.enqueue(_item(pipeline, channels=[EMAIL]))
        await pipeline.queue.enqueue(_item(pipeline, channels=[SMS]))
        assert await pipeline.queue_repository.count() == 2

    @pytest.mark.asyncio
    async def test_overlapping_channel_set_is_rejected(self, pipeline: NotificationPipeline) -> None:
        assert await pipeline.queue.enqueue(_item(pipeline, channels=[EMAIL])) is True
        assert await pipeline.queue.enqueue(_item(pipeline, channels=[SMS, EMAIL])) is False
        assert await pipeline.queue.enqueue(_item(pipeline, channels=[SMS])) is True
        assert await pipeline.queue_repository.count() == 2

    @pytest.mark.asyncio
    async def test_pair_can_be_queued_again_once_processed(self, pipeline: NotificationPipeline) -> None:
        await pipeline.queue.enqueue(_item(pipeline, channels=[WEBSOCKET, SMS]))
        [leased] = await pipeline.queue.dequeue_batch(10)
        await pipeline.queue.mark_processed(leased.item_id)

        assert await pipeline.queue.enqueue(_item(pipeline, channels=[SMS])) is True

    def test_dedup_keys_are_per_channel(self, pipeline: NotificationPipeline) -> None:
        item = _item(pipeline, channels=[SMS, EMAIL])
        assert item.dedup_keys == ["n-1:patient-1:sms", "n-1:patient-1:email"]

    @pytest.mark.asyncio
    async def test_future_item_is_invisible_until_due(self, pipeline: NotificationPipeline) -> None:
        await pipeline.queue.enqueue(_item(pipeline, delay=timedelta(minutes=5)))

        assert await pipeline.queue.dequeue_batch(10) == []
        pipeline.clock.advance(minutes=5)
        assert len(await pipeline.queue.dequeue_batch(10)) == 1


class TestDequeue:
    @pytest.mark.asyncio
    async def test_highest_priority_first_then_fifo(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.queue.enqueue(_item(p, "low", priority=NotificationPriority.LOW))
        p.clock.advance(seconds=1)
        await p.queue.enqueue(_item(p, "medium-1"))
        p.clock.advance(seconds=1)
        await p.queue.enqueue(_item(p, "emergency", priority=NotificationPriority.EMERGENCY))
        p.clock.advance(seconds=1)
        await p.queue.enqueue(_item(p, "medium-2"))

        items = await p.queue.dequeue_batch(10)

        assert [i.notification_id for i in items] == ["emergency", "medium-1", "medium-2", "low"]

    @pytest.mark.asyncio
    async def test_batch_respects_limit(self, pipeline: NotificationPipeline) -> None:
        for n in range(5):
            await pipeline.queue.enqueue(_item(pipeline, f"n-{n}"))
        assert len(await pipeline.queue.dequeue_batch(3)) == 3
        assert len(await pipeline.queue.dequeue_batch(3)) == 2

    @pytest.mark.asyncio
    async def test_expired_lease_makes_item_visible_again(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.queue.enqueue(_item(p))
        first = await p.queue.dequeue_batch(1)
        assert await p.queue.dequeue_batch(1) == []

        p.clock.advance(seconds=p.settings.QUEUE_LEASE_SECONDS)

        again = await p.queue.dequeue_batch(1)
        assert [i.item_id for i in again] == [first[0].item_id]

    @pytest.mark.asyncio
    async def test_processed_item_is_removed(self, pipeline: NotificationPipeline) -> None:
        await pipeline.queue.enqueue(_item(pipeline))
        [item] = await pipeline.queue.dequeue_batch(1)

        assert await pipeline.queue.mark_processed(item.item_id) is True
        assert await pipeline.queue_repository.count() == 0


class TestMarkFailed:
    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff_until_exhausted(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.queue.enqueue(_item(p))

        delays = []
        for _ in range(p.settings.QUEUE_MAX_RETRIES - 1):
            [item] = await p.queue.dequeue_batch(1)
            outcome = await p.queue.mark_failed(item.item_id, "timeout")
            assert outcome is not None and not outcome.exhausted
            delays.append(outcome.retry_in_seconds)
            assert await p.queue.dequeue_batch(1) == []
            p.clock.advance(seconds=outcome.retry_in_seconds)

        [item] = await p.queue.dequeue_batch(1)
        outcome = await p.queue.mark_failed(item.item_id, "timeout")

        assert delays == [1.0, 2.0]
        assert outcome is not None and outcome.exhausted
        assert outcome.attempt_count == p.settings.QUEUE_MAX_RETRIES
        assert await p.queue_repository.count() == 0

    @pytest.mark.asyncio
    async def test_non_retriable_failure_terminates_every_channel(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(make_notification_request("patient-1", channels=[EMAIL]))
        [item] = await p.queue.dequeue_batch(1)

        outcome = await p.queue.mark_failed(item.item_id, "mailbox does not exist", retriable=False)

        assert outcome is not None and outcome.exhausted
        delivery = p.notifications.delivery(nid, "patient-1", EMAIL)
        assert delivery.status == DeliveryStatus.PERMANENTLY_FAILED
        assert delivery.last_error == "mailbox does not exist"
        assert await p.queue_repository.count() == 0

    @pytest.mark.asyncio
    async def test_permanent_channels_end_while_the_rest_retries(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(make_notification_request(
            "patient-1", channels=[EMAIL, SMS], priority=NotificationPriority.CRITICAL,
        ))
        [item] = await p.queue.dequeue_batch(1)
        assert item.channels == [SMS, EMAIL]

        outcome = await p.queue.mark_failed(item.item_id, "invalid number", permanent_channels=[SMS])

        assert outcome is not None and not outcome.exhausted
        assert p.notifications.status_of(nid, "patient-1", SMS) == DeliveryStatus.PERMANENTLY_FAILED
        assert p.notifications.status_of(nid, "patient-1", EMAIL) == DeliveryStatus.PENDING
        assert p.queue_repository.items[item.item_id].attempt_count == 1

    @pytest.mark.asyncio
    async def test_unknown_item_is_ignored(self, pipeline: NotificationPipeline) -> None:
        assert await pipeline.queue.mark_failed("missing", "boom") is None


@pytest.mark.asyncio
async def test_queue_status_counts_depth_and_ready(pipeline: NotificationPipeline) -> None:
    await pipeline.queue.enqueue(_item(pipeline, "now"))
    await pipeline.queue.enqueue(_item(pipeline, "later", delay=timedelta(hours=1)))

    assert await pipeline.queue.get_queue_status() == {"queue_depth": 2, "ready": 1}


class TestBackoffPolicy:
    def test_doubles_per_attempt_and_caps(self) -> None:
        policy = BackoffPolicy(base_seconds=1.0, max_seconds=30.0, multiplier=2.0, jitter=0.0)
        assert [policy.delay(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
        assert policy.delay(10) == 30.0

    def test_jitter_stays_within_bounds(self) -> None:
        policy = BackoffPolicy(base_seconds=10.0, max_seconds=100.0, jitter=0.2)
        rng = random.Random(3)
        for _ in range(50):
            assert 8.0 <= policy.delay(1, rng) <= 12.0
