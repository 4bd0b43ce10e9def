from __future__ import annotations
import threading
from typing import Dict, Optional

from pydantic import BaseModel

from .algorithm import DonationRuntimeConfig
from .config import AppConfig
from .events import EventLogger
from .models import (
    DonationMode,
    DonationSnapshot,
    DonationTier,
    HashClientSnapshot,
    HashProxySnapshot,
    NodeSnapshot,
    PoolDaemonSnapshot,
    ProcessName,
    ProcessState,
)
from .process import ProcessRecord

SNAPSHOT_TYPES = {
    ProcessName.NODE: NodeSnapshot,
    ProcessName.POOL_DAEMON: PoolDaemonSnapshot,
    ProcessName.HASH_CLIENT: HashClientSnapshot,
    ProcessName.HASH_PROXY: HashProxySnapshot,
    ProcessName.DONATION: DonationSnapshot,
}


class SharedState:
    """Records, latest telemetry and donation settings shared by all watchdogs.

    Snapshots are replaced wholesale and handed out as copies, so a reader
    never sees a half-updated one.
    """

    def __init__(self, config: AppConfig, events: Optional[EventLogger] = None) -> None:
        self.config = config
        self.events = events or EventLogger()
        self.records: Dict[ProcessName, ProcessRecord] = {
            name: ProcessRecord(
                name,
                config.logging.console_max_lines,
                config.logging.console_max_chars,
                self.events,
            )
            for name in ProcessName
        }
        self._lock = threading.Lock()
        self._snapshots: Dict[ProcessName, BaseModel] = {name: cls() for name, cls in SNAPSHOT_TYPES.items()}
        self.donation = DonationRuntimeConfig(
            mode=DonationMode(config.donation.mode),
            manual_amount=config.donation.manual_amount,
            manual_tier=DonationTier(config.donation.manual_tier),
        )

    def record(self, name: ProcessName) -> ProcessRecord:
        return self.records[name]

    def state(self, name: ProcessName) -> ProcessState:
        return self.records[name].state

    def is_alive(self, name: ProcessName) -> bool:
        return self.records[name].is_alive()

    def snapshot(self, name: ProcessName):
        with self._lock:
            return self._snapshots[name].model_copy(deep=True)

    def set_snapshot(self, name: ProcessName, snap: BaseModel) -> None:
        if not isinstance(snap, SNAPSHOT_TYPES[name]):
            raise TypeError(f"{name.value} snapshot must be {SNAPSHOT_TYPES[name].__name__}")
        with self._lock:
            self._snapshots[name] = snap

    def update_snapshot(self, name: ProcessName, **fields) -> None:
        with self._lock:
            self._snapshots[name] = self._snapshots[name].model_copy(update=fields)

    def reset_snapshot(self, name: ProcessName) -> None:
        with self._lock:
            self._snapshots[name] = SNAPSHOT_TYPES[name]()
