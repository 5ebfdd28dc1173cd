from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from carenotify.domain.delivery import SendResult
from carenotify.domain.enums.notification import DeliveryChannel


@dataclass
class RenderedContent:
    """Channel-ready content produced by the template renderer."""

    subject: str
    body: str
    html: str | None = None
    data: dict[str, Any] = field(default_factory=dict)


class ChannelAdapter(ABC):
    """Uniform send contract over one transport.

    Implementations must be safe to call concurrently and must return
    expected provider errors as a failed ``SendResult`` instead of raising.
    """

    channel: DeliveryChannel

    @abstractmethod
    async def send(self, recipient_address: str, content: RenderedContent, metadata: dict[str, Any]) -> SendResult:
        ...


def classify_http_failure(exc: httpx.HTTPError) -> SendResult:
    """Map an httpx failure onto transient (retry) or permanent (give up)."""
    if isinstance(exc, httpx.TimeoutException):
        return SendResult.transient(f"timeout: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        detail = exc.response.text[:200]
        if status == 429:
            return SendResult.transient(f"rate limited (429): {detail}")
        if status >= 500:
            return SendResult.transient(f"provider unavailable ({status}): {detail}")
        return SendResult.permanent(f"rejected ({status}): {detail}")
    return SendResult.transient(f"connection error: {exc}")


def provider_message_id(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get("message_id") or payload.get("id") or payload.get("sid")
    return str(value) if value is not None else None
