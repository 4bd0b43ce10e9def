from __future__ import annotations
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class Event:
    ts: float
    level: str
    message: str
    process: Optional[str]
    ctx: Dict[str, Any]


class EventLogger:
    """Bounded in-memory log of state changes and operator actions.

    Events tagged with a process name can be followed per process; the API
    polls with ``since`` to fetch only what it has not seen yet.
    """

    def __init__(self, capacity: int = 5000) -> None:
        self.capacity = capacity
        self._lock = threading.Lock()
        self._events: Deque[Event] = deque(maxlen=capacity)

    def emit(self, level: str, message: str, process: Optional[str] = None, **ctx: Any) -> Event:
        level = level.upper()
        if level not in LEVELS:
            level = "INFO"
        e = Event(ts=time.time(), level=level, message=message, process=process, ctx=ctx)
        with self._lock:
            self._events.append(e)
        return e

    def list(
        self,
        limit: int = 200,
        process: Optional[str] = None,
        since: Optional[float] = None,
        min_level: str = "DEBUG",
    ) -> List[Event]:
        floor = LEVELS.index(min_level.upper()) if min_level.upper() in LEVELS else 0
        with self._lock:
            events = list(self._events)
        events = [
            e for e in events
            if (process is None or e.process == process)
            and (since is None or e.ts > since)
            and LEVELS.index(e.level) >= floor
        ]
        return events[-limit:] if limit > 0 else []
