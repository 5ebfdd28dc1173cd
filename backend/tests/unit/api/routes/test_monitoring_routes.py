from datetime import timedelta

import httpx
import pytest

from carenotify.domain.delivery import SendResult
from carenotify.domain.enums.notification import DeliveryChannel, DeliveryStatus

from tests.helpers import make_notification_request
from tests.helpers.pipeline import NotificationPipeline
from tests.helpers.seeding import seed_deliveries

pytestmark = pytest.mark.unit


class TestStatusAndThresholds:
    @pytest.mark.asyncio
    async def test_status_after_check(self, client: httpx.AsyncClient, pipeline: NotificationPipeline) -> None:
        seed_deliveries(
            pipeline.notifications,
            pipeline.clock.now() - timedelta(minutes=5),
            {DeliveryStatus.DELIVERED: 9, DeliveryStatus.FAILED: 1},
        )
        await pipeline.monitor.check()

        body = (await client.get("/monitoring/status")).json()

        assert body["is_healthy"] is True
        assert body["metrics"]["sent"] == 10
        assert body["issues"] == []

    @pytest.mark.asyncio
    async def test_thresholds_roundtrip(self, client: httpx.AsyncClient) -> None:
        before = (await client.get("/monitoring/thresholds")).json()
        updated = await client.put("/monitoring/thresholds", json={"min_delivery_rate": 90.0})

        assert before["min_delivery_rate"] == 80.0
        assert updated.status_code == 200
        assert updated.json()["min_delivery_rate"] == 90.0
        assert updated.json()["critical_failure_rate"] == before["critical_failure_rate"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"critical_failure_rate": 150.0},
            {"warning_failure_rate": 40.0},
            {"consecutive_failures": 0},
            {"bogus": 1},
        ],
    )
    async def test_invalid_thresholds_are_rejected(self, client: httpx.AsyncClient, body: dict) -> None:
        response = await client.put("/monitoring/thresholds", json=body)
        assert response.status_code == 422


class TestReport:
    @pytest.mark.asyncio
    async def test_default_window_is_last_day(self, client: httpx.AsyncClient, pipeline: NotificationPipeline) -> None:
        seed_deliveries(
            pipeline.notifications,
            pipeline.clock.now() - timedelta(hours=2),
            {DeliveryStatus.DELIVERED: 3, DeliveryStatus.FAILED: 1},
            channel=DeliveryChannel.SMS,
        )
        seed_deliveries(
            pipeline.notifications,
            pipeline.clock.now() - timedelta(days=2),
            {DeliveryStatus.DELIVERED: 5},
        )

        report = (await client.get("/monitoring/report")).json()

        assert report["overall"]["sent"] == 4
        assert report["overall"]["delivery_rate"] == 75.0
        assert report["channels"]["sms"]["delivered"] == 3
        assert report["channels"]["email"]["sent"] == 0
        assert set(report["roles"]) >= {"patient", "admin"}

    @pytest.mark.asyncio
    async def test_bad_granularity(self, client: httpx.AsyncClient) -> None:
        assert (await client.get("/monitoring/report", params={"granularity": "weekly"})).status_code == 422

    @pytest.mark.asyncio
    async def test_end_before_start(self, client: httpx.AsyncClient) -> None:
        params = {"start": "2026-03-02T12:00:00+00:00", "end": "2026-03-01T12:00:00+00:00"}
        assert (await client.get("/monitoring/report", params=params)).status_code == 422


class TestChannels:
    @pytest.mark.asyncio
    async def test_stats_include_queue(self, client: httpx.AsyncClient, pipeline: NotificationPipeline) -> None:
        await pipeline.orchestrator.create_notification(
            make_notification_request("patient-1", channels=[DeliveryChannel.EMAIL])
        )

        body = (await client.get("/monitoring/channels")).json()

        assert body["queue"] == {"queue_depth": 1, "ready": 1}
        assert body["in_flight"] == 0
        assert body["channels"]["email"]["available"] is True
        assert body["channels"]["email"]["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_reset_clears_failures(self, client: httpx.AsyncClient, pipeline: NotificationPipeline) -> None:
        pipeline.adapters[DeliveryChannel.SMS].respond_with(lambda: SendResult.transient("provider down"))
        await pipeline.orchestrator.create_notification(
            make_notification_request("patient-1", channels=[DeliveryChannel.SMS])
        )
        await pipeline.drain()
        assert (await client.get("/monitoring/channels")).json()["channels"]["sms"]["failure_count"] == 1

        response = await client.post("/monitoring/channels/reset", params={"channel": "sms"})

        assert response.status_code == 204
        assert (await client.get("/monitoring/channels")).json()["channels"]["sms"]["failure_count"] == 0
