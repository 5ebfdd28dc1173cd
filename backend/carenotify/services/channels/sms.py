import logging
import re
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

SMS_MAX_LENGTH = 160
_E164 = re.compile(r"^\+?[1-9]\d{6,14}$")


def truncate_sms(text: str, limit: int = SMS_MAX_LENGTH) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


class SmsChannelAdapter(ChannelAdapter):
    channel = DeliveryChannel.SMS

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str,
        api_key: str | None,
        sender_id: str,
        logger: logging.Logger,
    ) -> None:
        self.http_client = http_client
        self.api_url = api_url
        self.api_key = api_key
        self.sender_id = sender_id
        self.logger = logger

    async def send(self, recipient_address: str, content: RenderedContent, metadata: dict[str, Any]) -> SendResult:
        phone = (recipient_address or "").replace(" ", "").replace("-", "")
        if not _E164.match(phone):
            return SendResult.permanent("invalid phone number")

        payload = {
            "from": self.sender_id,
            "to": phone,
            "body": truncate_sms(content.body),
            "reference": metadata.get("notification_id"),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = await self.http_client.post(self.api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            result = classify_http_failure(e)
            self.logger.warning(
                f"SMS send failed: {result.error}",
                extra={"channel": self.channel, "error": result.error_kind},
            )
            return result

        return SendResult.ok(provider_message_id(response))
