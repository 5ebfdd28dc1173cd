from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Source of the current time for services with periodic or delayed work."""

    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)
