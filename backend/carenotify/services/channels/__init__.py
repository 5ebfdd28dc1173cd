from carenotify.services.channels.base import ChannelAdapter, RenderedContent, classify_http_failure
from carenotify.services.channels.email import EmailChannelAdapter
from carenotify.services.channels.registry import ChannelAdapterRegistry
from carenotify.services.channels.sms import SmsChannelAdapter, truncate_sms
from carenotify.services.channels.websocket import ConnectionRegistry, PushConnection, WebSocketChannelAdapter

__all__ = [
    "ChannelAdapter",
    "ChannelAdapterRegistry",
    "ConnectionRegistry",
    "EmailChannelAdapter",
    "PushConnection",
    "RenderedContent",
    "SmsChannelAdapter",
    "WebSocketChannelAdapter",
    "classify_http_failure",
    "truncate_sms",
]
