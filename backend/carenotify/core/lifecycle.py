from __future__ import annotations

from types import TracebackType
from typing import Optional, Self, Type


class LifecycleEnabled:
    """Idempotent async start/stop with context manager support.

    Subclasses implement ``_on_start`` and ``_on_stop``; calling ``start``
    twice or ``stop`` on a stopped component is a no-op.
    """

    _running: bool = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        await self._on_start()
        self._running = True

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self._on_stop()

    async def _on_start(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def _on_stop(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.stop()
