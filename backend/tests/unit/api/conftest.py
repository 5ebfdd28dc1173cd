from collections.abc import AsyncIterator, Iterator

import httpx
import pytest
from dependency_injector import providers
from fastapi import FastAPI

from carenotify.core.container import Container
from carenotify.main import create_app
from carenotify.settings import Settings

from tests.helpers.pipeline import NotificationPipeline


@pytest.fixture
def app(test_settings: Settings, pipeline: NotificationPipeline) -> Iterator[FastAPI]:
    """Application whose services run over the in-memory pipeline; no lifespan, no Mongo."""
    application = create_app(test_settings)
    container: Container = application.state.container
    container.clock.override(providers.Object(pipeline.clock))
    container.orchestrator.override(providers.Object(pipeline.orchestrator))
    container.escalation_engine.override(providers.Object(pipeline.engine))
    container.delivery_monitor.override(providers.Object(pipeline.monitor))
    container.channel_manager.override(providers.Object(pipeline.channel_manager))
    container.delivery_queue.override(providers.Object(pipeline.queue))
    yield application
    container.reset_override()
    container.unwire()


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test/api/v1") as c:
        yield c
