from __future__ import annotations
import os
import re
from typing import Callable, List, Optional

from ..config import PoolDaemonConfig
from ..models import PoolDaemonSnapshot, ProcessName, ProcessState, StartMode
from ..node_ping import NodeAddress
from ..telemetry import pool_daemon_snapshot, read_pool_daemon_api
from ..utils import localhost, now_seconds
from .base import Watchdog, custom_args

SHARES_RE = re.compile(r"Your shares\s*=\s*(\d+)\s*blocks")
SYNCHRONIZED = "SideChain SYNCHRONIZED"
# a fresh sidechain started at height 1 reports SYNCHRONIZED before the real one
FRESH_CHAIN = "new chain tip: next height = 1"

CHAIN_FLAGS = {"main": [], "mini": ["--mini"], "nano": ["--nano"]}
LOCAL_NODE: NodeAddress = ("127.0.0.1", 18081, 18083)


def local_pool_port(cfg: PoolDaemonConfig) -> int:
    return 3333 if cfg.mode == StartMode.SIMPLE else cfg.stratum_port


class PoolDaemonWatchdog(Watchdog):
    name = ProcessName.POOL_DAEMON

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.shares: Optional[int] = None
        self._fresh_chain_seen = False
        self._last_status = 0.0
        # set by the manager to resolve a remote node for simple mode
        self.pick_remote: Callable[[], Optional[NodeAddress]] = lambda: None

    @property
    def cfg(self) -> PoolDaemonConfig:
        return self.shared.config.pool_daemon

    @property
    def data_dir(self) -> str:
        return os.path.abspath(self.cfg.data_api)

    def simple_node(self) -> NodeAddress:
        """Node used in simple mode: the local one, or a pinged or discovered remote one."""
        if self.cfg.local_node:
            return LOCAL_NODE
        picked = self.pick_remote()
        if picked is None:
            self.record.output("No remote node available, falling back to the local node")
            return LOCAL_NODE
        self.record.output(f"Using remote node {picked[0]} (RPC {picked[1]}, ZMQ {picked[2]})")
        return picked

    def build_args(self, mode: StartMode) -> List[str]:
        c = self.cfg
        if mode == StartMode.SIMPLE:
            host, rpc, zmq = self.simple_node()
            return [
                "--wallet", c.address,
                "--host", host,
                "--rpc-port", str(rpc),
                "--zmq-port", str(zmq),
                "--data-api", self.data_dir,
                "--local-api",
                "--no-color",
                *CHAIN_FLAGS[c.chain],
            ]
        if mode == StartMode.ADVANCED:
            return [
                "--wallet", c.address,
                "--host", localhost(c.node_ip),
                "--rpc-port", str(c.rpc_port),
                "--zmq-port", str(c.zmq_port),
                "--local-api",
                "--no-color",
                *CHAIN_FLAGS[c.chain],
                "--stratum", f"0.0.0.0:{c.stratum_port}",
                "--loglevel", str(c.log_level),
                "--out-peers", str(c.out_peers),
                "--in-peers", str(c.in_peers),
                "--data-api", self.data_dir,
            ]
        return custom_args(c.arguments)

    def on_start(self) -> None:
        os.makedirs(self.data_dir, exist_ok=True)
        self.shares = None
        self._fresh_chain_seen = False
        self._last_status = now_seconds()

    def parse_output(self, lines: List[str]) -> None:
        rec = self.record
        for line in lines:
            m = SHARES_RE.search(line)
            if m:
                self.shares = int(m.group(1))
                self.shared.update_snapshot(self.name, shares=self.shares)
                continue
            if FRESH_CHAIN in line:
                self._fresh_chain_seen = True
            elif SYNCHRONIZED in line and rec.state == ProcessState.SYNCING:
                if self._fresh_chain_seen:
                    self._fresh_chain_seen = False
                else:
                    rec.try_set_state(ProcessState.ALIVE, "sidechain synchronized")
                    self.shared.update_snapshot(self.name, synchronized=True)

    def on_tick(self) -> None:
        if now_seconds() - self._last_status < self.cfg.status_interval_sec:
            return
        self._last_status = now_seconds()
        if self.record.state in (ProcessState.SYNCING, ProcessState.ALIVE):
            # the answer lands in the console and is picked up by parse_output
            self.child.write_line("status")

    def poll_api(self) -> Optional[PoolDaemonSnapshot]:
        data = read_pool_daemon_api(self.data_dir)
        return pool_daemon_snapshot(
            data,
            uptime=self.record.uptime(),
            shares=self.shares,
            synchronized=self.record.state == ProcessState.ALIVE,
        )
