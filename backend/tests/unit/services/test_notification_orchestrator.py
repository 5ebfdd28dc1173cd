from datetime import timedelta

import pytest

from carenotify.domain.enums.notification import (
    DeliveryChannel,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
    ProviderEvent,
)
from carenotify.domain.enums.user import UserRole
from carenotify.domain.notification import (
    DeliveryNotFoundError,
    DomainNotificationCreate,
    NotificationContent,
    NotificationNotFoundError,
    NotificationRecipient,
    NotificationValidationError,
)
from carenotify.domain.preferences import CategoryPreference, PriorityFloor, UserPreferences

from tests.helpers import make_notification_request
from tests.helpers.pipeline import NotificationPipeline

pytestmark = pytest.mark.unit

EMAIL = DeliveryChannel.EMAIL
SMS = DeliveryChannel.SMS
WEBSOCKET = DeliveryChannel.WEBSOCKET


class TestCreateNotification:
    @pytest.mark.asyncio
    async def test_persists_pending_pairs_and_one_item_per_channel(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", "patient-2", channels=[WEBSOCKET, EMAIL])
        )

        deliveries = await p.orchestrator.get_deliveries(nid)
        assert len(deliveries) == 4
        assert {d.status for d in deliveries} == {DeliveryStatus.PENDING}
        assert await p.queue_repository.count() == 4
        notification = await p.orchestrator.get_notification(nid)
        assert notification.analytics.total_recipients == 2
        assert notification.expires_at == p.clock.now() + timedelta(days=p.settings.NOTIFICATION_DEFAULT_TTL_DAYS)

    @pytest.mark.asyncio
    async def test_target_roles_expand_through_directory(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        request = DomainNotificationCreate(
            type=NotificationType.SYSTEM_MAINTENANCE,
            content=NotificationContent(title="Maintenance", message="Downtime tonight at 02:00."),
            recipients=[NotificationRecipient("admin-1", UserRole.ADMIN, [EMAIL])],
            target_roles=[UserRole.ADMIN, UserRole.DOCTOR],
            target_channels=[WEBSOCKET],
        )

        nid = await p.orchestrator.create_notification(request)

        notification = await p.orchestrator.get_notification(nid)
        by_user = {r.user_id: r for r in notification.recipients}
        assert set(by_user) == {"admin-1", "admin-2", "doctor-1"}
        # Explicit recipient entry wins over the role expansion
        assert by_user["admin-1"].channels == [EMAIL]
        assert by_user["doctor-1"].user_role == UserRole.DOCTOR

    @pytest.mark.parametrize(
        "changes, message",
        [
            ({"content": NotificationContent(title=" ", message="body")}, "title and message"),
            ({"recipients": []}, "at least one recipient"),
        ],
    )
    @pytest.mark.asyncio
    async def test_rejects_invalid_requests(
        self, pipeline: NotificationPipeline, changes: dict, message: str
    ) -> None:
        request = make_notification_request("patient-1")
        for name, value in changes.items():
            setattr(request, name, value)

        with pytest.raises(NotificationValidationError, match=message):
            await pipeline.orchestrator.create_notification(request)
        assert pipeline.notifications.notifications == {}

    @pytest.mark.asyncio
    async def test_rejects_past_expiry(self, pipeline: NotificationPipeline) -> None:
        request = make_notification_request("patient-1", expires_at=pipeline.clock.now() - timedelta(minutes=1))
        with pytest.raises(NotificationValidationError, match="expires_at"):
            await pipeline.orchestrator.create_notification(request)

    @pytest.mark.asyncio
    async def test_rejects_schedule_after_expiry(self, pipeline: NotificationPipeline) -> None:
        now = pipeline.clock.now()
        request = make_notification_request(
            "patient-1", scheduled_for=now + timedelta(days=2), expires_at=now + timedelta(days=1)
        )
        with pytest.raises(NotificationValidationError, match="scheduled_for"):
            await pipeline.orchestrator.create_notification(request)

    @pytest.mark.asyncio
    async def test_role_without_members_resolves_to_no_recipients(self, pipeline: NotificationPipeline) -> None:
        request = make_notification_request("patient-1")
        request.recipients = []
        request.target_roles = [UserRole.PHARMACY]

        with pytest.raises(NotificationValidationError, match="no recipients"):
            await pipeline.orchestrator.create_notification(request)


class TestScheduling:
    @pytest.mark.asyncio
    async def test_future_notification_waits_for_the_sweep(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", scheduled_for=p.clock.now() + timedelta(minutes=10))
        )
        assert await p.queue_repository.count() == 0
        assert await p.scheduler.process_due_notifications() == 0

        p.clock.advance(minutes=10)
        assert await p.scheduler.process_due_notifications() == 1
        assert await p.scheduler.process_due_notifications() == 0

        await p.drain()
        assert p.notifications.status_of(nid, "patient-1", WEBSOCKET) == DeliveryStatus.DELIVERED
        assert (await p.orchestrator.get_notification(nid)).scheduled_for is None

    @pytest.mark.asyncio
    async def test_past_schedule_dispatches_immediately(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.orchestrator.create_notification(
            make_notification_request("patient-1", scheduled_for=p.clock.now() - timedelta(minutes=1))
        )
        assert await p.queue_repository.count() == 1


class TestPreferences:
    @pytest.mark.asyncio
    async def test_disabled_category_is_skipped_not_failed(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.preferences.upsert_preferences(UserPreferences(
            user_id="patient-1",
            categories={NotificationCategory.MARKETING: CategoryPreference(enabled=False)},
        ))

        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", category=NotificationCategory.MARKETING)
        )

        delivery = p.notifications.delivery(nid, "patient-1", WEBSOCKET)
        assert delivery.status == DeliveryStatus.SKIPPED
        assert delivery.skip_reason == "category_disabled"
        assert await p.queue_repository.count() == 0

    @pytest.mark.asyncio
    async def test_priority_floor_lets_high_through(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.preferences.upsert_preferences(UserPreferences(
            user_id="patient-1",
            categories={NotificationCategory.MEDICAL: CategoryPreference(priority_floor=PriorityFloor.HIGH)},
        ))

        low = await p.orchestrator.create_notification(
            make_notification_request("patient-1", priority=NotificationPriority.LOW)
        )
        high = await p.orchestrator.create_notification(
            make_notification_request("patient-1", priority=NotificationPriority.HIGH)
        )

        assert p.notifications.delivery(low, "patient-1", WEBSOCKET).skip_reason == "below_priority_floor"
        assert p.notifications.status_of(high, "patient-1", WEBSOCKET) == DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_opted_out_channel_falls_back_to_in_app(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.preferences.upsert_preferences(UserPreferences(user_id="patient-1", channels={EMAIL: False}))

        nid = await p.orchestrator.create_notification(make_notification_request("patient-1", channels=[EMAIL]))
        await p.drain()

        assert p.notifications.delivery(nid, "patient-1", EMAIL).skip_reason == "channel_disabled"
        assert p.notifications.status_of(nid, "patient-1", WEBSOCKET) == DeliveryStatus.DELIVERED
        assert p.adapters[EMAIL].calls == 0

    @pytest.mark.asyncio
    async def test_guaranteed_priority_ignores_channel_opt_out(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.preferences.upsert_preferences(UserPreferences(user_id="patient-1", channels={SMS: False}))

        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", channels=[SMS], priority=NotificationPriority.CRITICAL)
        )
        await p.drain()

        assert p.notifications.status_of(nid, "patient-1", SMS) == DeliveryStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_disabled_user_skips_even_emergency(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        await p.preferences.upsert_preferences(UserPreferences(user_id="patient-1", enabled=False))

        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", priority=NotificationPriority.EMERGENCY)
        )

        assert p.notifications.delivery(nid, "patient-1", WEBSOCKET).skip_reason == "notifications_disabled"


class TestDeliveryFailures:
    @pytest.mark.asyncio
    async def test_missing_address_fails_permanently_without_retry(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        p.directory.add_user("walk-in", UserRole.PATIENT)

        nid = await p.orchestrator.create_notification(make_notification_request("walk-in", channels=[SMS]))
        await p.drain()

        delivery = p.notifications.delivery(nid, "walk-in", SMS)
        assert delivery.status == DeliveryStatus.PERMANENTLY_FAILED
        assert "no sms address" in (delivery.last_error or "")
        assert await p.queue_repository.count() == 0

    @pytest.mark.asyncio
    async def test_expired_notification_is_not_sent(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(
            make_notification_request("patient-1", expires_at=p.clock.now() + timedelta(seconds=30))
        )
        p.clock.advance(minutes=1)

        await p.drain()

        delivery = p.notifications.delivery(nid, "patient-1", WEBSOCKET)
        assert delivery.status == DeliveryStatus.PERMANENTLY_FAILED
        assert delivery.last_error == "notification expired"
        assert p.adapters[WEBSOCKET].calls == 0


class TestInteractions:
    @pytest.mark.asyncio
    async def test_read_and_click_count_once(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(make_notification_request("patient-1"))
        await p.drain()

        assert await p.orchestrator.mark_read(nid, "patient-1") is True
        assert await p.orchestrator.mark_read(nid, "patient-1") is False
        assert await p.orchestrator.mark_clicked(nid, "patient-1") is True

        notification = await p.orchestrator.get_notification(nid)
        assert notification.analytics.read == 1
        assert notification.analytics.actioned == 1
        assert p.notifications.delivery(nid, "patient-1", WEBSOCKET).read_at == p.clock.now()

    @pytest.mark.asyncio
    async def test_undelivered_notification_cannot_be_read(self, pipeline: NotificationPipeline) -> None:
        nid = await pipeline.orchestrator.create_notification(make_notification_request("patient-1"))
        assert await pipeline.orchestrator.mark_read(nid, "patient-1") is False

    @pytest.mark.asyncio
    async def test_non_recipient_is_rejected(self, pipeline: NotificationPipeline) -> None:
        nid = await pipeline.orchestrator.create_notification(make_notification_request("patient-1"))
        with pytest.raises(DeliveryNotFoundError):
            await pipeline.orchestrator.mark_read(nid, "patient-2")

    @pytest.mark.asyncio
    async def test_unknown_notification(self, pipeline: NotificationPipeline) -> None:
        with pytest.raises(NotificationNotFoundError):
            await pipeline.orchestrator.get_notification("missing")
        with pytest.raises(NotificationNotFoundError):
            await pipeline.orchestrator.get_deliveries("missing")


class TestProviderEvents:
    @pytest.mark.asyncio
    async def test_bounce_after_delivery_fails_permanently(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(make_notification_request("patient-1", channels=[EMAIL]))
        await p.drain()
        message_id = p.notifications.delivery(nid, "patient-1", EMAIL).provider_message_id
        assert message_id is not None

        changed = await p.orchestrator.handle_provider_event(EMAIL, message_id, ProviderEvent.BOUNCED, "mailbox full")

        delivery = p.notifications.delivery(nid, "patient-1", EMAIL)
        assert changed is True
        assert delivery.status == DeliveryStatus.PERMANENTLY_FAILED
        assert delivery.bounced is True
        assert delivery.last_error == "mailbox full"
        assert (await p.orchestrator.get_notification(nid)).analytics.bounced == 1

    @pytest.mark.asyncio
    async def test_repeated_event_changes_nothing(self, pipeline: NotificationPipeline) -> None:
        p = pipeline
        nid = await p.orchestrator.create_notification(make_notification_request("patient-1", channels=[SMS]))
        await p.drain()
        message_id = p.notifications.delivery(nid, "patient-1", SMS).provider_message_id

        assert await p.orchestrator.handle_provider_event(SMS, message_id, ProviderEvent.DELIVERED) is False
        assert await p.orchestrator.handle_provider_event(SMS, message_id, ProviderEvent.FAILED) is True
        assert await p.orchestrator.handle_provider_event(SMS, message_id, ProviderEvent.FAILED) is False
        assert p.notifications.delivery(nid, "patient-1", SMS).bounced is False

    @pytest.mark.asyncio
    async def test_unknown_message_id(self, pipeline: NotificationPipeline) -> None:
        with pytest.raises(DeliveryNotFoundError):
            await pipeline.orchestrator.handle_provider_event(EMAIL, "nope", ProviderEvent.DELIVERED)


@pytest.mark.asyncio
async def test_purge_expired_removes_notification_and_its_pairs(pipeline: NotificationPipeline) -> None:
    p = pipeline
    short = await p.orchestrator.create_notification(
        make_notification_request("patient-1", expires_at=p.clock.now() + timedelta(hours=1))
    )
    kept = await p.orchestrator.create_notification(make_notification_request("patient-2"))

    p.clock.advance(hours=2)
    assert await p.orchestrator.purge_expired() == 1

    assert short not in p.notifications.notifications
    assert kept in p.notifications.notifications
    assert all(key[0] != short for key in p.notifications.deliveries)


@pytest.mark.asyncio
async def test_requeue_pending_is_absorbed_by_dedup(pipeline: NotificationPipeline) -> None:
    p = pipeline
    nid = await p.orchestrator.create_notification(make_notification_request("patient-1", channels=[WEBSOCKET, EMAIL]))

    assert await p.orchestrator.requeue_pending(nid) == 0

    p.queue_repository.items.clear()
    assert await p.orchestrator.requeue_pending(nid) == 2
