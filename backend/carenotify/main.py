from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from pymongo.errors import ServerSelectionTimeoutError

from carenotify.api.routes import alerts, health, monitoring, notifications, providers, websocket
from carenotify.core.container import Container, create_app_container
from carenotify.core.correlation import CorrelationMiddleware
from carenotify.core.exceptions import configure_exception_handlers
from carenotify.settings import Settings, get_settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    container: Container = app.state.container
    settings: Settings = container.settings()
    logger = container.logger()
    logger.info(
        "Starting application",
        extra={
            "project_name": settings.PROJECT_NAME,
            "environment": "test" if settings.TESTING else "production",
        },
    )

    try:
        await container.db_connection().connect()
    except ServerSelectionTimeoutError as e:
        logger.critical(f"Failed to connect to database: {e}", extra={"error": str(e)})
        raise RuntimeError("Application startup failed: Could not connect to database.") from e

    runtime = container.runtime()
    await runtime.start()

    yield

    try:
        await runtime.stop()
    except Exception as e:
        logger.error(f"Error during application shutdown: {e}", exc_info=True)
    container.unwire()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    container = create_app_container(settings)
    logger = container.logger()

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)
    app.state.container = container

    app.add_middleware(CorrelationMiddleware)

    app.include_router(health.router, prefix=settings.API_V1_STR)
    app.include_router(notifications.router, prefix=settings.API_V1_STR)
    app.include_router(alerts.router, prefix=settings.API_V1_STR)
    app.include_router(monitoring.router, prefix=settings.API_V1_STR)
    app.include_router(providers.router, prefix=settings.API_V1_STR)
    app.include_router(websocket.router, prefix=settings.API_V1_STR)
    logger.info("All routers configured")

    configure_exception_handlers(app)
    logger.info("Exception handlers configured")

    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
