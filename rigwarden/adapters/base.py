from __future__ import annotations
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import requests
from pydantic import BaseModel

from ..config import ProcessConfig
from ..console import trailer
from ..errors import SpawnError, TelemetryError
from ..logging_setup import get_logger
from ..models import ProcessName, ProcessSignal, ProcessState, StartMode
from ..spawn import ChildProcess
from ..state import SharedState
from ..telemetry import new_session
from ..utils import human_time, now_seconds, sleep_end_loop

S = ProcessState


def custom_args(arguments: str) -> List[str]:
    return ["127.0.0.1" if a == "localhost" else a for a in arguments.split()]


class Watchdog(ABC):
    """Supervises one child program from spawn to exit.

    The loop runs on its own thread at a fixed cadence: react to a crash or a
    stop/restart signal, feed queued console input, trim the console, parse
    new output and poll the program's status API.
    """

    name: ProcessName
    stop_grace_sec: float = 3.0

    def __init__(
        self,
        shared: SharedState,
        session: Optional[requests.Session] = None,
        period: float = 1.0,
        wait: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.shared = shared
        self.record = shared.record(self.name)
        self.session = session or new_session()
        self.period = period
        self._wake = threading.Event()
        self._start_lock = threading.Lock()
        self._wait = wait or self._wake.wait
        self.child: Optional[ChildProcess] = None
        self.thread: Optional[threading.Thread] = None
        self.sudo_password: Optional[str] = None
        self.logger = get_logger(f"rigwarden.watchdog.{self.name.value}")

    @property
    @abstractmethod
    def cfg(self) -> ProcessConfig:
        ...

    @abstractmethod
    def build_args(self, mode: StartMode) -> List[str]:
        """Command line arguments, without the executable."""

    @abstractmethod
    def parse_output(self, lines: List[str]) -> None:
        ...

    @abstractmethod
    def poll_api(self) -> Optional[BaseModel]:
        ...

    def on_start(self) -> None:
        pass

    def on_tick(self) -> None:
        pass

    def on_snapshot(self, snap: BaseModel) -> None:
        pass

    @property
    def label(self) -> str:
        return self.name.label

    @property
    def http_timeout(self) -> float:
        return self.shared.config.telemetry.http_timeout_sec

    def command(self) -> List[str]:
        return [self.cfg.path] + self.build_args(self.cfg.mode)

    def is_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def wake(self) -> None:
        self._wake.set()

    # ---- lifecycle ---------------------------------------------------------

    def start(self) -> bool:
        """Spawn the child and hand it to a fresh watchdog thread.

        Returns False when the process is already past the point of starting.
        Any failure leaves the record ``dead`` (or ``failed`` after a restart)
        and is raised as :class:`SpawnError`.
        """
        with self._start_lock:
            rec = self.record
            if rec.state not in (S.DEAD, S.FAILED, S.WAITING):
                return False
            rec.request_start()
            child: Optional[ChildProcess] = None
            try:
                self.on_start()
                cmd = self.command()
                rec.output(f"Launch arguments: {' '.join(cmd[1:])}")
                child = ChildProcess(
                    cmd,
                    on_line=rec.append_output,
                    env=self.cfg.env,
                    use_pty=self.cfg.use_pty,
                    sudo_password=self.sudo_password,
                )
                child.start()
                self.sudo_password = None
                self.child = child
                rec.mark_started(child.pid)
                self.shared.reset_snapshot(self.name)
                rec.set_state(S.SYNCING, "spawned")
            except Exception as e:
                self._abort_start(child, e)
                if isinstance(e, SpawnError):
                    raise
                raise SpawnError(f"{self.label}: {e}") from e
            self._wake.clear()
            self.thread = threading.Thread(target=self._run, name=f"watchdog-{self.name.value}", daemon=True)
            self.thread.start()
            return True

    def _abort_start(self, child: Optional[ChildProcess], error: Exception) -> None:
        rec = self.record
        if child is not None and child.pid is not None:
            child.terminate(self.stop_grace_sec, sudo_password=self.sudo_password)
        self.logger.error(f"{self.label} | failed to start: {error}")
        rec.output(f"Failed to start: {error}")
        rec.events.emit("ERROR", "start failed", process=self.name.value, error=str(error))
        rec.pid = None
        rec.try_set_state(S.DEAD if rec.state == S.MIDDLE else S.FAILED, "spawn failed")
        rec.clear_signal()

    def _run(self) -> None:
        self.logger.info(f"{self.label} | entering watchdog mode")
        while self._iterate():
            pass
        self.logger.info(f"{self.label} | watchdog thread exiting")

    def _iterate(self) -> bool:
        started = now_seconds()
        rec = self.record
        signal = rec.signal
        code = self.child.poll()
        if code is not None and signal not in (ProcessSignal.STOP, ProcessSignal.RESTART):
            self._on_exit(code)
            return False
        if signal in (ProcessSignal.STOP, ProcessSignal.RESTART):
            self._on_signal_end(signal)
            return False

        self._feed_input()
        rec.console.compact()
        try:
            lines = rec.drain_new_output()
            if lines:
                self.parse_output(lines)
            self._poll_status()
            self.on_tick()
        except Exception as e:
            self.logger.error(f"{self.label} | watchdog iteration error: {e}")
        sleep_end_loop(started, self.period, self._wait)
        self._wake.clear()
        return True

    def _feed_input(self) -> None:
        for line in self.record.drain_input():
            try:
                self.child.write_line(line)
            except OSError as e:
                self.logger.error(f"{self.label} | stdin write failed: {e}")
                return

    def _poll_status(self) -> None:
        try:
            snap = self.poll_api()
        except (requests.RequestException, TelemetryError, OSError, ValueError) as e:
            uptime = self.record.uptime()
            if uptime > self.shared.config.telemetry.startup_grace_sec:
                self.logger.warning(f"{self.label} | status request failed: {e}")
            else:
                self.logger.debug(f"{self.label} | status not ready after {uptime:.0f}s: {e}")
            return
        if snap is not None:
            self.shared.set_snapshot(self.name, snap)
            self.on_snapshot(snap)

    def _on_exit(self, code: int) -> None:
        rec = self.record
        uptime = human_time(rec.uptime())
        status = "Successful" if code == 0 else f"Failed ({code})"
        self.child.close()
        rec.console.write_block(trailer(self.label, "exited", uptime, status))
        self.logger.info(f"{self.label} | exited unexpectedly, uptime [{uptime}], exit status [{status}]")
        rec.try_set_state(S.DEAD if code == 0 else S.FAILED, f"exit code {code}")
        rec.events.emit("INFO" if code == 0 else "WARNING", "process exited", process=self.name.value, code=code)
        rec.pid = None

    def _on_signal_end(self, signal: ProcessSignal) -> None:
        rec = self.record
        uptime = human_time(rec.uptime())
        code = self.child.terminate(self.stop_grace_sec, sudo_password=self.sudo_password)
        if signal == ProcessSignal.STOP:
            self.sudo_password = None
        status = "Successful" if code in (0, -15, -9) else f"Failed ({code})"
        what = "stopped" if signal == ProcessSignal.STOP else "restarted"
        rec.console.write_block(trailer(self.label, what, uptime, status))
        self.logger.info(f"{self.label} | {what}, uptime [{uptime}], exit status [{status}]")
        self.shared.reset_snapshot(self.name)
        rec.pid = None
        if signal == ProcessSignal.STOP:
            rec.set_state(S.DEAD, "stopped")
            rec.take_signal()
        else:
            rec.set_state(S.WAITING, "restarting")

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)
