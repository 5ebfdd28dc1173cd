from pathlib import Path

from jinja2 import FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.sandbox import SandboxedEnvironment

from carenotify.domain.enums.notification import DeliveryChannel
from carenotify.domain.enums.user import UserRole
from carenotify.domain.notification import DomainNotification
from carenotify.services.channels.base import RenderedContent

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_SUFFIX = {
    DeliveryChannel.EMAIL: "html.j2",
    DeliveryChannel.SMS: "txt.j2",
    DeliveryChannel.WEBSOCKET: "txt.j2",
}


class TemplateRenderer:
    """Renders a notification into channel-ready content with Jinja2.

    Templates are looked up most specific first::

        {type}/{channel}.{role}.{language}.{suffix}
        {type}/{channel}.{language}.{suffix}
        {type}/{channel}.{suffix}
        default/{channel}.{suffix}

    Compiled templates are kept in the environment's bounded LRU cache.
    """

    def __init__(self, template_dir: Path | None = None, cache_size: int = 400) -> None:
        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(template_dir or DEFAULT_TEMPLATE_DIR)),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default_for_string=False),
            undefined=StrictUndefined,
            cache_size=cache_size,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def candidates(
        self, notification: DomainNotification, channel: DeliveryChannel, role: UserRole, language: str
    ) -> list[str]:
        suffix = _SUFFIX[channel]
        return [
            f"{notification.type}/{channel}.{role}.{language}.{suffix}",
            f"{notification.type}/{channel}.{language}.{suffix}",
            f"{notification.type}/{channel}.{suffix}",
            f"default/{channel}.{suffix}",
        ]

    def render(
        self,
        notification: DomainNotification,
        channel: DeliveryChannel,
        role: UserRole,
        language: str | None = None,
    ) -> RenderedContent:
        language = language or notification.language
        template = self.env.select_template(self.candidates(notification, channel, role, language))
        rendered = template.render(
            content=notification.content,
            context=notification.context_data,
            priority=notification.priority,
            role=role,
            created_at=notification.created_at.isoformat(),
        )
        data = {
            "notification_id": notification.notification_id,
            "type": str(notification.type),
            "priority": str(notification.priority),
            "category": str(notification.category),
            "action_url": notification.content.action_url,
        }
        if channel == DeliveryChannel.EMAIL:
            return RenderedContent(
                subject=notification.content.title,
                body=notification.content.message,
                html=rendered,
                data=data,
            )
        return RenderedContent(subject=notification.content.title, body=rendered.strip(), data=data)
