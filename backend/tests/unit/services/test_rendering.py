from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from carenotify.domain.enums.notification import (
    DeliveryChannel,
    NotificationCategory,
    NotificationPriority,
    NotificationType,
)
from carenotify.domain.enums.user import UserRole
from carenotify.domain.notification import DomainNotification, NotificationContent, NotificationRecipient
from carenotify.services.rendering import TemplateRenderer

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _notification(
    notification_type: NotificationType = NotificationType.PRESCRIPTION_READY,
    message: str = "Your prescription is ready for pickup.",
    language: str = "en",
) -> DomainNotification:
    return DomainNotification(
        type=notification_type,
        category=NotificationCategory.MEDICAL,
        priority=NotificationPriority.HIGH,
        content=NotificationContent(title="Prescription ready", message=message, action_url="/rx/1"),
        recipients=[NotificationRecipient("patient-1", UserRole.PATIENT)],
        created_at=NOW,
        expires_at=NOW + timedelta(days=1),
        notification_id="n-1",
        language=language,
    )


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


def test_candidates_go_from_specific_to_default(renderer: TemplateRenderer) -> None:
    names = renderer.candidates(_notification(), DeliveryChannel.SMS, UserRole.PATIENT, "es")

    assert names == [
        "prescription_ready/sms.patient.es.txt.j2",
        "prescription_ready/sms.es.txt.j2",
        "prescription_ready/sms.txt.j2",
        "default/sms.txt.j2",
    ]


def test_type_template_wins_over_default(renderer: TemplateRenderer) -> None:
    rendered = renderer.render(_notification(), DeliveryChannel.SMS, UserRole.PATIENT)

    assert rendered.body == (
        "Pharmacy update - Prescription ready: Your prescription is ready for pickup. Details: /rx/1"
    )
    assert rendered.subject == "Prescription ready"
    assert rendered.data["notification_id"] == "n-1"
    assert rendered.data["priority"] == "high"


def test_language_specific_template(renderer: TemplateRenderer) -> None:
    rendered = renderer.render(_notification(language="es"), DeliveryChannel.SMS, UserRole.PATIENT)
    assert rendered.body.startswith("Farmacia - Prescription ready")


def test_unknown_language_falls_back(renderer: TemplateRenderer) -> None:
    rendered = renderer.render(_notification(), DeliveryChannel.SMS, UserRole.PATIENT, language="fr")
    assert rendered.body.startswith("Pharmacy update")


def test_default_template_for_type_without_its_own(renderer: TemplateRenderer) -> None:
    notification = _notification(NotificationType.APPOINTMENT_REMINDER, message="Tomorrow 9:00")

    rendered = renderer.render(notification, DeliveryChannel.WEBSOCKET, UserRole.PATIENT)

    assert rendered.body == "Tomorrow 9:00"


def test_email_html_is_escaped_and_keeps_plain_body(renderer: TemplateRenderer) -> None:
    notification = _notification(message="<script>alert(1)</script>")

    rendered = renderer.render(notification, DeliveryChannel.EMAIL, UserRole.PATIENT)

    assert "<script>" not in rendered.html
    assert "&lt;script&gt;" in rendered.html
    assert 'href="/rx/1"' in rendered.html
    assert rendered.body == "<script>alert(1)</script>"


def test_role_specific_template(tmp_path: Path) -> None:
    (tmp_path / "prescription_ready").mkdir()
    (tmp_path / "default").mkdir()
    (tmp_path / "prescription_ready" / "websocket.doctor.en.txt.j2").write_text("Dr: {{ content.title }}")
    (tmp_path / "default" / "websocket.txt.j2").write_text("{{ content.message }}")
    renderer = TemplateRenderer(template_dir=tmp_path)

    doctor = renderer.render(_notification(), DeliveryChannel.WEBSOCKET, UserRole.DOCTOR)
    patient = renderer.render(_notification(), DeliveryChannel.WEBSOCKET, UserRole.PATIENT)

    assert doctor.body == "Dr: Prescription ready"
    assert patient.body == "Your prescription is ready for pickup."
