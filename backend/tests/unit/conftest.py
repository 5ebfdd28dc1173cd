import logging

import pytest

from carenotify.domain.enums.user import UserRole
from carenotify.settings import Settings

from tests.helpers.fakes import ManualClock, RecordingNotifier
from tests.helpers.pipeline import NotificationPipeline, build_pipeline


@pytest.fixture
def test_logger() -> logging.Logger:
    return logging.getLogger("test.unit")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def pipeline(test_settings: Settings, clock: ManualClock) -> NotificationPipeline:
    p = build_pipeline(test_settings, clock)
    p.directory.add_user("patient-1", UserRole.PATIENT, email="patient1@example.org", phone="+15550000001")
    p.directory.add_user("patient-2", UserRole.PATIENT, email="patient2@example.org", phone="+15550000002")
    p.directory.add_user("doctor-1", UserRole.DOCTOR, email="doctor1@example.org", phone="+15550000003")
    p.directory.add_user("admin-1", UserRole.ADMIN, email="admin1@example.org", phone="+15550000004")
    p.directory.add_user("admin-2", UserRole.ADMIN, email="admin2@example.org", phone="+15550000005")
    return p


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
