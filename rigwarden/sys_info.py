from __future__ import annotations
import os
import threading
from typing import Dict, Optional

import psutil

from .logging_setup import get_logger
from .models import SystemMetrics

logger = get_logger(__name__)


def _temperatures() -> Dict[str, float]:
    temps: Dict[str, float] = {}
    if not hasattr(psutil, "sensors_temperatures"):
        return temps
    for name, entries in (psutil.sensors_temperatures() or {}).items():
        if entries and entries[0].current is not None:
            temps[name] = float(entries[0].current)
    return temps


class SystemMetricsCollector:
    """Samples host and supervisor resource usage on a background thread."""

    def __init__(self, interval_sec: int = 10) -> None:
        self.interval_sec = interval_sec
        self.latest: Optional[SystemMetrics] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._self = psutil.Process(os.getpid())

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="sys-metrics", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    def sample(self) -> SystemMetrics:
        load1, load5, load15 = os.getloadavg() if hasattr(os, "getloadavg") else (0.0, 0.0, 0.0)
        vm = psutil.virtual_memory()
        with self._self.oneshot():
            self_cpu = self._self.cpu_percent(interval=None)
            self_rss = self._self.memory_info().rss
        return SystemMetrics(
            cpu_percent=float(psutil.cpu_percent(interval=None)),
            cpu_count=int(psutil.cpu_count(logical=True) or 0),
            load_1=float(load1),
            load_5=float(load5),
            load_15=float(load15),
            mem_total_mb=float(vm.total) / (1024 * 1024),
            mem_used_mb=float(vm.used) / (1024 * 1024),
            mem_percent=float(vm.percent),
            self_cpu_percent=float(self_cpu),
            self_mem_mb=float(self_rss) / (1024 * 1024),
            temps_c=_temperatures(),
        )

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.latest = self.sample()
            except (psutil.Error, OSError) as e:
                logger.debug(f"system metrics sample failed: {e}")
            self._stop.wait(self.interval_sec)
