from typing import Any, Iterable

from carenotify.domain.delivery import SendResult
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.services.channels.base import ChannelAdapter, RenderedContent


class ChannelAdapterRegistry:
    """Dispatches ``send(channel, ...)`` to the adapter registered for that channel."""

    def __init__(self, adapters: Iterable[ChannelAdapter]) -> None:
        self._adapters: dict[DeliveryChannel, ChannelAdapter] = {a.channel: a for a in adapters}

    @property
    def channels(self) -> list[DeliveryChannel]:
        return list(self._adapters)

    async def send(
        self,
        channel: DeliveryChannel,
        recipient_address: str,
        content: RenderedContent,
        metadata: dict[str, Any],
    ) -> SendResult:
        adapter = self._adapters.get(channel)
        if adapter is None:
            return SendResult.permanent(f"no adapter configured for channel {channel}")
        return await adapter.send(recipient_address, content, metadata)
