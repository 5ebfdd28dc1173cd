from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MonitoringStatusResponse(BaseModel):
    is_healthy: bool
    last_check: datetime | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    issues: list[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class MonitorThresholdsSchema(BaseModel):
    critical_failure_rate: float
    warning_failure_rate: float
    min_delivery_rate: float
    max_delivery_time_ms: float
    consecutive_failures: int
    channel_failure_rate: float

    model_config = ConfigDict(from_attributes=True)


class MonitorThresholdsUpdate(BaseModel):
    """Partial threshold update; omitted fields keep their current value"""
    critical_failure_rate: float | None = None
    warning_failure_rate: float | None = None
    min_delivery_rate: float | None = None
    max_delivery_time_ms: float | None = None
    consecutive_failures: int | None = None
    channel_failure_rate: float | None = None

    model_config = ConfigDict(extra="forbid")


class DeliveryRates(BaseModel):
    sent: int
    delivered: int
    failed: int
    permanently_failed: int
    skipped: int
    pending: int
    read: int
    clicked: int
    delivery_rate: float
    failure_rate: float
    average_latency_ms: float


class TrendPoint(DeliveryRates):
    period: datetime


class TimeRange(BaseModel):
    start: datetime
    end: datetime


class DeliveryReportResponse(BaseModel):
    overall: DeliveryRates
    channels: dict[str, DeliveryRates]
    roles: dict[str, DeliveryRates]
    trends: list[TrendPoint]
    generated_at: datetime
    time_range: TimeRange


class ChannelHealthSchema(BaseModel):
    configured: bool
    available: bool
    degraded: bool
    failure_count: int
    last_failure: str | None = None
    last_error: str | None = None
    concurrency: int


class ChannelStatsResponse(BaseModel):
    channels: dict[str, ChannelHealthSchema]
    in_flight: int
    queue: dict[str, int]
