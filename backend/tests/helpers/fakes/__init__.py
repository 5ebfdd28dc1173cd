"""In-memory fakes for the storage and provider boundaries used in unit tests."""

from .adapters import ScriptedAdapter, SlowAdapter
from .clock import ManualClock
from .notifier import RecordingNotifier
from .repositories import (
    InMemoryAnalyticsRepository,
    InMemoryNotificationRepository,
    InMemoryPreferenceRepository,
    InMemoryQueueRepository,
    InMemoryUserDirectory,
)

__all__ = [
    "InMemoryAnalyticsRepository",
    "InMemoryNotificationRepository",
    "InMemoryPreferenceRepository",
    "InMemoryQueueRepository",
    "InMemoryUserDirectory",
    "ManualClock",
    "RecordingNotifier",
    "ScriptedAdapter",
    "SlowAdapter",
]
