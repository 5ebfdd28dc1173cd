import uuid
from datetime import UTC, datetime

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from carenotify.core.logging import correlation_id_context, request_metadata_context

CORRELATION_HEADER = "X-Correlation-ID"
_INCOMING_HEADERS = ("x-correlation-id", "x-request-id")


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4()}_{int(datetime.now(UTC).timestamp())}"


def correlation_id_from(headers: Headers) -> str:
    for name in _INCOMING_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return generate_correlation_id()


class CorrelationMiddleware:
    """Binds a correlation id to every API request and realtime connection.

    HTTP responses echo the id back in ``X-Correlation-ID``; for websocket
    connections the id tags the log lines of the connection's lifetime.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        correlation_id = correlation_id_from(Headers(scope=scope))
        correlation_id_context.set(correlation_id)
        request_metadata_context.set({"method": scope.get("method", "WEBSOCKET"), "path": scope["path"]})

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[CORRELATION_HEADER] = correlation_id
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            correlation_id_context.set(None)
            request_metadata_context.set(None)
