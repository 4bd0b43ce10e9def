from __future__ import annotations
import threading
import time
from collections import deque
from typing import Deque, List

from .utils import HORI_CONSOLE, strip_ansi


class ConsoleBuffer:
    """Fixed-capacity line log of a child's stdout/stderr.

    Appending past either ceiling evicts the oldest lines. A separate parse
    cursor hands the watchdog only the lines that arrived since it last looked.
    """

    def __init__(self, max_lines: int = 50_000, max_chars: int = 4_000_000) -> None:
        self.max_lines = max(1, max_lines)
        self.max_chars = max(1, max_chars)
        self._lock = threading.Lock()
        self._lines: Deque[str] = deque()
        self._chars = 0
        self._fresh: Deque[str] = deque()
        self.evicted = 0

    def append(self, line: str) -> None:
        line = strip_ansi(line.rstrip("\r\n"))
        with self._lock:
            self._lines.append(line)
            self._chars += len(line) + 1
            self._fresh.append(line)
            self._evict()

    def extend(self, lines: List[str]) -> None:
        for line in lines:
            self.append(line)

    def write_block(self, text: str) -> None:
        for line in text.split("\n"):
            self.append(line)

    def _evict(self) -> None:
        while self._lines and (len(self._lines) > self.max_lines or self._chars > self.max_chars):
            old = self._lines.popleft()
            self._chars -= len(old) + 1
            self.evicted += 1
        # unparsed lines are bounded by the same ceiling
        while len(self._fresh) > self.max_lines:
            self._fresh.popleft()

    def compact(self) -> bool:
        """Apply the eviction policy; True if anything was dropped."""
        with self._lock:
            before = self.evicted
            self._evict()
            return self.evicted != before

    def drain_new(self) -> List[str]:
        with self._lock:
            fresh = list(self._fresh)
            self._fresh.clear()
        return fresh

    def text(self) -> str:
        with self._lock:
            return "\n".join(self._lines)

    def tail(self, n: int) -> List[str]:
        with self._lock:
            if n <= 0:
                return []
            return list(self._lines)[-n:]

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
            self._fresh.clear()
            self._chars = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    @property
    def chars(self) -> int:
        with self._lock:
            return self._chars


def console_line(label: str, message: str) -> str:
    return f"[{time.strftime('%Y-%m-%d %H:%M:%S')}] {label} | {message}"


def trailer(label: str, what: str, uptime: str, exit_status: str) -> str:
    return (
        f"{HORI_CONSOLE}\n"
        f"{label} {what} | Uptime: [{uptime}] | Exit status: [{exit_status}]\n"
        f"{HORI_CONSOLE}"
    )
