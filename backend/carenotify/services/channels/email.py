import logging
from typing import Any

import httpx

from carenotify.domain.delivery import SendResult
from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.services.channels.base import (
    ChannelAdapter,
    RenderedContent,
    classify_http_failure,
    provider_message_id,
)


class EmailChannelAdapter(ChannelAdapter):
    """Transactional email over the provider's JSON HTTP API."""

    channel = DeliveryChannel.EMAIL

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        api_key: str | None,
        sender: str,
        logger: logging.Logger,
    ) -> None:
        self.http_client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.logger = logger

    async def send(self, recipient_address: str, content: RenderedContent, metadata: dict[str, Any]) -> SendResult:
        if not recipient_address or "@" not in recipient_address:
            return SendResult.permanent("invalid email address")

        payload = {
            "from": self.sender,
            "to": recipient_address,
            "subject": content.subject,
            "text": content.body,
            "html": content.html or content.body,
            "metadata": metadata,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = await self.http_client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            result = classify_http_failure(e)
            self.logger.warning(
                f"Email send failed: {result.error}",
                extra={"channel": self.channel, "error": result.error_kind},
            )
            return result

        return SendResult.ok(provider_message_id(response))
