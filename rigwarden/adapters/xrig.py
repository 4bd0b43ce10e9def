from __future__ import annotations
import re
from typing import List, Optional

from ..models import UNKNOWN, ProcessName, ProcessState, StartMode
from ..pools import Pool, PoolKind, pool_from_endpoint
from ..telemetry import fetch_xrig_summary, update_pool_config
from ..utils import localhost
from .base import Watchdog

NEW_JOB = "new job from"
NO_ACTIVE_POOLS = "no active pools, stop mining"
USE_POOL_RE = re.compile(r"use pool\s+(\S+:\d+)")
POOL_ERRORS = ("connect error", "read error", "DNS error")


def contains_pool_error(line: str) -> bool:
    return any(err in line for err in POOL_ERRORS)


class XrigWatchdog(Watchdog):
    """Shared behaviour of the hashing client and the proxy.

    Both speak the same console dialect and expose the same bearer-token
    REST API, so pool detection and config rewriting live here.
    """

    default_api_port: int

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.current_pool: Optional[Pool] = None

    @property
    def api_url(self) -> str:
        if self.cfg.mode == StartMode.SIMPLE:
            return f"http://127.0.0.1:{self.default_api_port}"
        return f"http://{localhost(self.cfg.api_ip)}:{self.cfg.api_port}"

    @property
    def token(self) -> str:
        return self.cfg.token

    def on_start(self) -> None:
        self.current_pool = None

    def watches_donation_pool(self) -> bool:
        return self.shared.is_alive(ProcessName.DONATION)

    def _local_port(self) -> int:
        pd = self.shared.config.pool_daemon
        return 3333 if pd.mode == StartMode.SIMPLE else pd.stratum_port

    def _proxy_port(self) -> int:
        hp = self.shared.config.hash_proxy
        return 3355 if hp.mode == StartMode.SIMPLE else hp.bind_port

    def parse_output(self, lines: List[str]) -> None:
        rec = self.record
        for line in lines:
            if NEW_JOB in line:
                rec.try_set_state(ProcessState.ALIVE, "new job")
            elif NO_ACTIVE_POOLS in line:
                rec.try_set_state(ProcessState.NOT_MINING, "no active pools")

            m = USE_POOL_RE.search(line)
            if m:
                self.current_pool = pool_from_endpoint(m.group(1), self._local_port(), self._proxy_port())
                self.logger.info(f"{self.label} | new pool detected: {self.current_pool.endpoint()}")
                self.shared.update_snapshot(self.name, pool=self.current_pool.endpoint())
            elif contains_pool_error(line) and self.watches_donation_pool():
                self._report_dead_pool()

    def _report_dead_pool(self) -> None:
        pool = self.current_pool
        if pool is None:
            return
        # forget the pool so one outage raises one signal
        self.current_pool = None
        if pool.kind == PoolKind.LOCAL:
            return
        self.logger.warning(f"{self.label} | pool {pool.endpoint()} is offline, asking for new nodes")
        self.shared.record(ProcessName.DONATION).request_update_nodes(pool)

    def switch_pool(self, pool: Pool, address: str, rig: str) -> None:
        update_pool_config(self.session, self.api_url, self.token, pool, address, rig, self.http_timeout)

    def _summary(self) -> dict:
        return fetch_xrig_summary(self.session, self.api_url, self.token, self.http_timeout)

    def _pool_label(self) -> str:
        return self.current_pool.endpoint() if self.current_pool else UNKNOWN
