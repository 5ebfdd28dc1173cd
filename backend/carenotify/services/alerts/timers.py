import heapq
from dataclasses import dataclass
from datetime import datetime


@dataclass(order=True, frozen=True)
class EscalationTimer:
    fire_at: datetime
    alert_id: str
    level: int


class EscalationTimerQueue:
    """Min-heap of pending escalation timers keyed by fire time.

    Cancelling an alert removes its timers from the heap right away, so an
    alert raised again under the same id never inherits the old schedule.
    """

    def __init__(self) -> None:
        self._heap: list[EscalationTimer] = []
        self._live: set[tuple[str, int]] = set()

    def schedule(self, alert_id: str, level: int, fire_at: datetime) -> None:
        key = (alert_id, level)
        if key in self._live:
            return
        self._live.add(key)
        heapq.heappush(self._heap, EscalationTimer(fire_at=fire_at, alert_id=alert_id, level=level))

    def cancel_alert(self, alert_id: str) -> int:
        cancelled = {key for key in self._live if key[0] == alert_id}
        if not cancelled:
            return 0
        self._live -= cancelled
        self._heap = [timer for timer in self._heap if timer.alert_id != alert_id]
        heapq.heapify(self._heap)
        return len(cancelled)

    def pending_levels(self, alert_id: str) -> list[int]:
        return sorted(level for key_alert, level in self._live if key_alert == alert_id)

    def next_fire_at(self) -> datetime | None:
        return self._heap[0].fire_at if self._heap else None

    def pop_due(self, now: datetime) -> list[EscalationTimer]:
        due: list[EscalationTimer] = []
        while self._heap and self._heap[0].fire_at <= now:
            timer = heapq.heappop(self._heap)
            self._live.discard((timer.alert_id, timer.level))
            due.append(timer)
        return due

    def clear(self) -> None:
        self._heap.clear()
        self._live.clear()

    def __len__(self) -> int:
        return len(self._live)
