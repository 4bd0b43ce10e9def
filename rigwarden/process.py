from __future__ import annotations
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, FrozenSet, List, Optional, Tuple

from .console import ConsoleBuffer, console_line
from .errors import InvalidTransition
from .events import EventLogger
from .logging_setup import get_logger
from .models import ProcessName, ProcessSignal, ProcessState, ProcessView

S = ProcessState

# Every legal state change. Setting the current state again is always a no-op.
TRANSITIONS: Dict[ProcessState, FrozenSet[ProcessState]] = {
    S.DEAD: frozenset({S.MIDDLE}),
    S.FAILED: frozenset({S.MIDDLE}),
    S.MIDDLE: frozenset({S.SYNCING, S.DEAD, S.WAITING, S.FAILED}),
    S.SYNCING: frozenset({S.ALIVE, S.MIDDLE, S.FAILED, S.DEAD, S.OFFLINE_POOLS_ALL}),
    S.ALIVE: frozenset({S.NOT_MINING, S.MIDDLE, S.FAILED, S.DEAD, S.OFFLINE_POOLS_ALL}),
    S.NOT_MINING: frozenset({S.ALIVE, S.MIDDLE, S.FAILED, S.DEAD, S.OFFLINE_POOLS_ALL}),
    S.WAITING: frozenset({S.SYNCING, S.ALIVE, S.MIDDLE, S.FAILED}),
    S.OFFLINE_POOLS_ALL: frozenset({S.SYNCING, S.MIDDLE, S.FAILED}),
}

RUNNING_STATES = frozenset({S.SYNCING, S.ALIVE, S.NOT_MINING, S.OFFLINE_POOLS_ALL})


def can_transition(current: ProcessState, target: ProcessState) -> bool:
    return current == target or target in TRANSITIONS[current]


class ProcessRecord:
    """Canonical state of one supervised program.

    Written by its own watchdog and by signal senders; everyone else reads
    through :meth:`view` or the locked properties.
    """

    def __init__(
        self,
        name: ProcessName,
        console_max_lines: int = 50_000,
        console_max_chars: int = 4_000_000,
        events: Optional[EventLogger] = None,
    ) -> None:
        self.name = name
        self._lock = threading.RLock()
        self._state = ProcessState.DEAD
        self._signal = ProcessSignal.NONE
        self._signal_payload: Any = None
        self._start = time.monotonic()
        self._input: Deque[str] = deque()
        self.console = ConsoleBuffer(console_max_lines, console_max_chars)
        self.pid: Optional[int] = None
        self.events = events or EventLogger()
        self.logger = get_logger(f"{__name__}.{name.value}")

    # ---- state -------------------------------------------------------------

    @property
    def state(self) -> ProcessState:
        with self._lock:
            return self._state

    @property
    def signal(self) -> ProcessSignal:
        with self._lock:
            return self._signal

    @property
    def signal_payload(self) -> Any:
        with self._lock:
            return self._signal_payload

    def is_alive(self) -> bool:
        return self.state == ProcessState.ALIVE

    def is_running(self) -> bool:
        return self.state in RUNNING_STATES

    def set_state(self, target: ProcessState, reason: str = "") -> bool:
        with self._lock:
            current = self._state
            if current == target:
                return False
            if target not in TRANSITIONS[current]:
                raise InvalidTransition(self.name.value, current.value, target.value)
            self._state = target
        self.logger.info(f"{self.name.label} | {current.value} -> {target.value} {reason}".rstrip())
        self.events.emit(
            "INFO", "state changed", process=self.name.value, old=current.value, new=target.value, reason=reason
        )
        return True

    def try_set_state(self, target: ProcessState, reason: str = "") -> bool:
        """Like :meth:`set_state` but returns False on an illegal edge."""
        try:
            return self.set_state(target, reason)
        except InvalidTransition as e:
            self.logger.debug(str(e))
            return False

    # ---- signals -----------------------------------------------------------

    def request_start(self) -> bool:
        with self._lock:
            if self._state not in (S.DEAD, S.FAILED, S.WAITING):
                return False
            self._signal = ProcessSignal.START
            self._signal_payload = None
            if self._state != S.WAITING:
                self.set_state(S.MIDDLE, "start requested")
            return True

    def request_stop(self) -> bool:
        with self._lock:
            if self._state not in RUNNING_STATES and self._state != S.MIDDLE:
                return False
            self._signal = ProcessSignal.STOP
            self._signal_payload = None
            self.set_state(S.MIDDLE, "stop requested")
            return True

    def request_restart(self) -> bool:
        with self._lock:
            if self._state not in RUNNING_STATES and self._state != S.MIDDLE:
                return False
            self._signal = ProcessSignal.RESTART
            self._signal_payload = None
            self.set_state(S.MIDDLE, "restart requested")
            return True

    def request_update_nodes(self, pool: Any) -> None:
        with self._lock:
            # stop and restart outrank a pool refresh
            if self._signal in (ProcessSignal.STOP, ProcessSignal.RESTART):
                return
            self._signal = ProcessSignal.UPDATE_NODES
            self._signal_payload = pool

    def clear_signal(self) -> None:
        with self._lock:
            self._signal = ProcessSignal.NONE
            self._signal_payload = None

    def take_signal(self) -> Tuple[ProcessSignal, Any]:
        """Consume the pending signal and its payload."""
        with self._lock:
            taken = (self._signal, self._signal_payload)
            self._signal = ProcessSignal.NONE
            self._signal_payload = None
            return taken

    def take_update_nodes(self) -> Optional[Any]:
        """Pop a pending update_nodes signal, returning its pool."""
        with self._lock:
            if self._signal != ProcessSignal.UPDATE_NODES:
                return None
            return self.take_signal()[1]

    # ---- lifetime ----------------------------------------------------------

    def mark_started(self, pid: Optional[int] = None) -> None:
        with self._lock:
            self._start = time.monotonic()
            self._signal = ProcessSignal.NONE
            self._signal_payload = None
            self.pid = pid

    def uptime(self) -> float:
        with self._lock:
            if self._state in (S.DEAD, S.FAILED, S.WAITING):
                return 0.0
            return max(0.0, time.monotonic() - self._start)

    @property
    def started_at(self) -> float:
        with self._lock:
            return self._start

    # ---- console -----------------------------------------------------------

    def push_input(self, line: str) -> None:
        with self._lock:
            self._input.append(line)

    def drain_input(self) -> List[str]:
        with self._lock:
            lines = list(self._input)
            self._input.clear()
        return lines

    def append_output(self, line: str) -> None:
        self.console.append(line)

    def drain_new_output(self) -> List[str]:
        return self.console.drain_new()

    def output(self, message: str) -> None:
        """Write a timestamped supervisor message into the console."""
        self.console.write_block(console_line(self.name.label, message))

    def view(self, console_lines: int = 500) -> ProcessView:
        with self._lock:
            state, signal, pid = self._state, self._signal, self.pid
        return ProcessView(
            name=self.name,
            state=state,
            signal=signal,
            uptime_sec=self.uptime(),
            pid=pid,
            console="\n".join(self.console.tail(console_lines)),
        )
