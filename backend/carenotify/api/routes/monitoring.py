from datetime import datetime, timedelta

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query

from carenotify.core.clock import Clock
from carenotify.core.container import Container
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.schemas_pydantic.monitoring import (
    ChannelStatsResponse,
    DeliveryReportResponse,
    MonitoringStatusResponse,
    MonitorThresholdsSchema,
    MonitorThresholdsUpdate,
)
from carenotify.services.channel_manager import ChannelManager
from carenotify.services.delivery_monitor import DeliveryMonitor
from carenotify.services.delivery_queue import DeliveryQueue

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get("/status", response_model=MonitoringStatusResponse)
@inject
async def get_monitoring_status(
    monitor: DeliveryMonitor = Depends(Provide[Container.delivery_monitor]),
) -> MonitoringStatusResponse:
    return MonitoringStatusResponse.model_validate(monitor.get_current_status())


@router.get("/thresholds", response_model=MonitorThresholdsSchema)
@inject
async def get_thresholds(
    monitor: DeliveryMonitor = Depends(Provide[Container.delivery_monitor]),
) -> MonitorThresholdsSchema:
    return MonitorThresholdsSchema.model_validate(monitor.get_thresholds())


@router.put("/thresholds", response_model=MonitorThresholdsSchema)
@inject
async def update_thresholds(
    update: MonitorThresholdsUpdate,
    monitor: DeliveryMonitor = Depends(Provide[Container.delivery_monitor]),
) -> MonitorThresholdsSchema:
    thresholds = monitor.update_thresholds(update.model_dump(exclude_none=True))
    return MonitorThresholdsSchema.model_validate(thresholds)


@router.get("/report", response_model=DeliveryReportResponse)
@inject
async def get_delivery_report(
    start: datetime | None = Query(None, description="Defaults to 24 hours before end"),
    end: datetime | None = Query(None, description="Defaults to now"),
    granularity: str = Query("daily", pattern="^(daily|hourly)$"),
    monitor: DeliveryMonitor = Depends(Provide[Container.delivery_monitor]),
    clock: Clock = Depends(Provide[Container.clock]),
) -> DeliveryReportResponse:
    end = end or clock.now()
    start = start or end - timedelta(days=1)
    report = await monitor.get_delivery_report(start, end, granularity)
    return DeliveryReportResponse.model_validate(report)


@router.get("/channels", response_model=ChannelStatsResponse)
@inject
async def get_channel_stats(
    channel_manager: ChannelManager = Depends(Provide[Container.channel_manager]),
    queue: DeliveryQueue = Depends(Provide[Container.delivery_queue]),
) -> ChannelStatsResponse:
    stats = channel_manager.get_stats()
    return ChannelStatsResponse(**stats, queue=await queue.get_queue_status())


@router.post("/channels/reset", status_code=204)
@inject
async def reset_channel_health(
    channel: DeliveryChannel | None = Query(None, description="Reset every channel when omitted"),
    channel_manager: ChannelManager = Depends(Provide[Container.channel_manager]),
) -> None:
    channel_manager.reset_channel_health(channel)
