from __future__ import annotations
import threading
import time
from typing import Callable, Dict, List, Optional, Set, Union

import requests

from .adapters import HashClientWatchdog, HashProxyWatchdog, NodeWatchdog, PoolDaemonWatchdog, Watchdog
from .config import AppConfig
from .crawler import Crawler, Probe
from .donation import DonationService
from .errors import SpawnError
from .events import EventLogger
from .latency import Ping, port_ping, race_donation_pools
from .logging_setup import get_logger
from .models import (
    DiscoveryStatus,
    DonationMode,
    DonationTier,
    PingStatus,
    ProcessName,
    ProcessSignal,
    ProcessState,
    ProcessView,
)
from .node_ping import NodeAddress, NodePinger, select_remote_node
from .state import SharedState

Supervisor = Union[Watchdog, DonationService]

# donation goes down first so it can point the miner back at the local pool
SHUTDOWN_ORDER = (
    ProcessName.DONATION,
    ProcessName.HASH_CLIENT,
    ProcessName.HASH_PROXY,
    ProcessName.POOL_DAEMON,
    ProcessName.NODE,
)


class Manager:
    """Front door to the supervised processes, used by the control API."""

    def __init__(
        self,
        config: AppConfig,
        events: Optional[EventLogger] = None,
        session: Optional[requests.Session] = None,
        race: Callable = race_donation_pools,
        probe: Optional[Probe] = None,
        period: float = 1.0,
        ping: Ping = port_ping,
    ) -> None:
        self.shared = SharedState(config, events)
        self.events = self.shared.events
        self.logger = get_logger(__name__)
        self._lock = threading.RLock()
        self._restarting: Set[ProcessName] = set()
        hash_client = HashClientWatchdog(self.shared, session, period)
        hash_proxy = HashProxyWatchdog(self.shared, session, period)
        self.supervisors: Dict[ProcessName, Supervisor] = {
            ProcessName.NODE: NodeWatchdog(self.shared, session, period),
            ProcessName.POOL_DAEMON: PoolDaemonWatchdog(self.shared, session, period),
            ProcessName.HASH_CLIENT: hash_client,
            ProcessName.HASH_PROXY: hash_proxy,
            ProcessName.DONATION: DonationService(self.shared, hash_client, hash_proxy, period, race),
        }
        self.crawler = Crawler(config.crawler, probe)
        self.pinger = NodePinger(config.remote_nodes, ping=ping)
        self.supervisors[ProcessName.POOL_DAEMON].pick_remote = self.pick_remote_node

    @property
    def config(self) -> AppConfig:
        return self.shared.config

    def apply_config(self, config: AppConfig) -> None:
        """Swap in a reloaded config; running processes pick it up on their next start."""
        with self._lock:
            self.shared.config = config
            self.crawler.cfg = config.crawler
            self.pinger.nodes = list(config.remote_nodes)

    # ---- process control -----------------------------------------------------

    def start(self, name: ProcessName, sudo_password: Optional[str] = None) -> bool:
        with self._lock:
            rec = self.shared.record(name)
            if rec.state not in (ProcessState.DEAD, ProcessState.FAILED):
                return False
            sup = self.supervisors[name]
            if name == ProcessName.HASH_CLIENT and self.config.hash_client.sudo:
                if sudo_password is None:
                    raise ValueError("hash_client runs elevated, a sudo password is required")
                sup.sudo_password = sudo_password
            self.logger.info(f"{name.label} | attempting to start")
            if not sup.start():
                return False
            self.events.emit("INFO", "process started", process=name.value, pid=rec.pid)
            return True

    def stop(self, name: ProcessName, sudo_password: Optional[str] = None) -> bool:
        with self._lock:
            rec = self.shared.record(name)
            sup = self.supervisors[name]
            if not rec.request_stop():
                return False
            if sudo_password is not None and isinstance(sup, Watchdog):
                sup.sudo_password = sudo_password
            self.logger.info(f"{name.label} | attempting to stop")
            sup.wake()
            self.events.emit("INFO", "process stop requested", process=name.value)
            return True

    def restart(self, name: ProcessName, sudo_password: Optional[str] = None) -> bool:
        with self._lock:
            rec = self.shared.record(name)
            if rec.state in (ProcessState.DEAD, ProcessState.FAILED):
                return self.start(name, sudo_password)
            sup = self.supervisors[name]
            # one waiter per process, a second request while one is pending is refused
            if name in self._restarting:
                return False
            if rec.state == ProcessState.WAITING:
                # left over from an abandoned restart
                return sup.start()
            if rec.signal == ProcessSignal.RESTART:
                return False
            if not rec.request_restart():
                return False
            if sudo_password is not None and isinstance(sup, Watchdog):
                sup.sudo_password = sudo_password
            self._restarting.add(name)
            self.logger.info(f"{name.label} | attempting to restart")
            sup.wake()
            self.events.emit("INFO", "process restart requested", process=name.value)
        threading.Thread(target=self._restart_waiter, args=(name,), name=f"restart-{name.value}", daemon=True).start()
        return True

    def _restart_waiter(self, name: ProcessName, timeout: float = 60.0) -> None:
        try:
            rec = self.shared.record(name)
            deadline = time.monotonic() + timeout
            while rec.state != ProcessState.WAITING:
                if rec.state in (ProcessState.DEAD, ProcessState.FAILED) or time.monotonic() > deadline:
                    self.logger.warning(f"{name.label} | restart abandoned in state {rec.state.value}")
                    return
                time.sleep(0.1)
            self.logger.info(f"{name.label} | old process is gone, starting a new one")
            try:
                self.supervisors[name].start()
            except SpawnError as e:
                self.logger.error(f"{name.label} | restart failed: {e}")
        finally:
            with self._lock:
                self._restarting.discard(name)

    def submit_input(self, name: ProcessName, line: str) -> None:
        if name.virtual:
            raise ValueError(f"{name.value} has no console input")
        self.shared.record(name).push_input(line)

    # ---- reads ------------------------------------------------------------------

    def records(self, console_lines: int = 200) -> List[ProcessView]:
        return [self.shared.record(name).view(console_lines) for name in ProcessName]

    def view(self, name: ProcessName, console_lines: int = 500) -> ProcessView:
        return self.shared.record(name).view(console_lines)

    def snapshot(self, name: ProcessName):
        return self.shared.snapshot(name)

    # ---- donation -------------------------------------------------------------------

    def set_donation_config(
        self,
        mode: Optional[DonationMode] = None,
        manual_amount: Optional[float] = None,
        manual_tier: Optional[DonationTier] = None,
    ) -> None:
        self.shared.donation.update(mode, manual_amount, manual_tier)
        self.events.emit(
            "INFO",
            "donation config updated",
            process=ProcessName.DONATION.value,
            mode=mode.value if mode else None,
            manual_amount=manual_amount,
            manual_tier=manual_tier.value if manual_tier else None,
        )

    # ---- discovery -------------------------------------------------------------------

    def begin_discovery(self) -> bool:
        started = self.crawler.start()
        if started:
            self.events.emit("INFO", "discovery started")
        return started

    def cancel_discovery(self) -> None:
        self.crawler.cancel()

    def discovery_status(self) -> DiscoveryStatus:
        return self.crawler.status()

    # ---- remote nodes ----------------------------------------------------------------

    def begin_ping(self) -> bool:
        started = self.pinger.start()
        if started:
            self.events.emit("INFO", "remote node ping started")
        return started

    def ping_status(self) -> PingStatus:
        return self.pinger.status()

    def pick_remote_node(self) -> Optional[NodeAddress]:
        """Remote node for the pool daemon's simple mode, pinging the list first if needed."""
        wanted = self.config.pool_daemon.remote_node
        discovered = self.crawler.status().nodes
        pinged = self.pinger.pinged()
        if not pinged and not wanted and not discovered:
            pinged = self.pinger.run()
        return select_remote_node(wanted, self.config.remote_nodes, pinged, discovered)

    # ---- teardown --------------------------------------------------------------------

    def stop_all(self) -> List[ProcessName]:
        return [name for name in SHUTDOWN_ORDER if self.stop(name)]

    def shutdown(self, timeout: float = 15.0) -> None:
        self.crawler.cancel()
        for name in SHUTDOWN_ORDER:
            if self.stop(name):
                self.supervisors[name].join(timeout)
        self.logger.info("all processes stopped")
