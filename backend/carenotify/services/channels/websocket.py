import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol
from uuid import uuid4

from carenotify.domain.delivery import SendResult
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.services.channels.base import ChannelAdapter, RenderedContent


class PushConnection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class ConnectionRegistry:
    """Live real-time connections per user, owned by this process."""

    def __init__(self) -> None:
        self._connections: dict[str, set[PushConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, connection: PushConnection) -> None:
        async with self._lock:
            self._connections[user_id].add(connection)

    async def unregister(self, user_id: str, connection: PushConnection) -> None:
        async with self._lock:
            connections = self._connections.get(user_id)
            if connections is None:
                return
            connections.discard(connection)
            if not connections:
                del self._connections[user_id]

    async def connections_for(self, user_id: str) -> list[PushConnection]:
        async with self._lock:
            return list(self._connections.get(user_id, ()))

    def connected_users(self) -> int:
        return len(self._connections)


class WebSocketChannelAdapter(ChannelAdapter):
    """In-app push to every live connection of the recipient."""

    channel = DeliveryChannel.WEBSOCKET

    def __init__(self, registry: ConnectionRegistry, logger: logging.Logger) -> None:
        self.registry = registry
        self.logger = logger

    async def send(self, recipient_address: str, content: RenderedContent, metadata: dict[str, Any]) -> SendResult:
        connections = await self.registry.connections_for(recipient_address)
        if not connections:
            return SendResult.transient("recipient has no live connection")

        message = {
            "type": "notification",
            "title": content.subject,
            "message": content.body,
            "data": content.data,
            "metadata": metadata,
        }
        delivered = 0
        for connection in connections:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                self.logger.warning(f"Dropping broken connection for {recipient_address}: {e}")
                await self.registry.unregister(recipient_address, connection)

        if not delivered:
            return SendResult.transient("all live connections failed")
        return SendResult.ok(f"ws-{uuid4().hex}")
