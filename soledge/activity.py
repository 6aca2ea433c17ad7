from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

ACTIVITY_CAPACITY = 10

USER = "user"
CONTROL = "control"
CONTROL_ERROR = "control_error"
WRITE_ERROR = "write_error"
CONFIG = "config"


@dataclass(frozen=True)
class ControlEvent:
    timestamp: datetime
    kind: str
    message: str


class ActivityLog:
    """Newest-first ring buffer of recent control and user actions."""

    def __init__(self, capacity: int = ACTIVITY_CAPACITY) -> None:
        self._entries: deque[ControlEvent] = deque(maxlen=capacity)
        self._listeners: list[Callable[[ControlEvent], None]] = []

    def append(self, kind: str, message: str) -> ControlEvent:
        event = ControlEvent(timestamp=datetime.now(), kind=kind, message=message)
        # appendleft on a bounded deque drops from the right, i.e. the oldest
        self._entries.appendleft(event)
        for listener in list(self._listeners):
            listener(event)
        return event

    def add_listener(self, listener: Callable[[ControlEvent], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def entries(self) -> list[ControlEvent]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
