import time
from datetime import datetime, timezone

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from carenotify.core.container import Container
from carenotify.core.database_context import AsyncDatabaseConnection
from carenotify.services.runtime import NotificationRuntime

router = APIRouter(prefix="/health", tags=["Health"])

_START_TIME = time.time()


class LivenessResponse(BaseModel):
    """Response model for the liveness check."""

    status: str = Field(description="Health status")
    uptime_seconds: int = Field(description="Server uptime in seconds")
    timestamp: str = Field(description="ISO timestamp of health check")


class ReadinessResponse(BaseModel):
    """Response model for the readiness check."""

    status: str = Field(description="Readiness status")
    database_connected: bool
    runtime_running: bool


@router.get("/live", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Basic liveness check. Does not touch external deps."""
    return LivenessResponse(
        status="ok",
        uptime_seconds=int(time.time() - _START_TIME),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get("/ready", response_model=ReadinessResponse)
@inject
async def readiness(
    db_connection: AsyncDatabaseConnection = Depends(Provide[Container.db_connection]),
    runtime: NotificationRuntime = Depends(Provide[Container.runtime]),
) -> JSONResponse:
    """Ready once the database is connected and the delivery loops are scheduled."""
    response = ReadinessResponse(
        status="ok",
        database_connected=await db_connection.ping(),
        runtime_running=runtime.is_running,
    )
    if not (response.database_connected and response.runtime_running):
        response.status = "unavailable"
        return JSONResponse(status_code=503, content=response.model_dump())
    return JSONResponse(content=response.model_dump())
