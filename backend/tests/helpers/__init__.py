"""Helper utilities for tests (async polling, in-memory fakes, notification factories)."""

from .eventually import eventually
from .factories import make_notification_request

__all__ = ["eventually", "make_notification_request"]
