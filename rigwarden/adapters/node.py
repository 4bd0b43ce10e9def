from __future__ import annotations
from typing import List, Optional

from ..config import NodeConfig
from ..models import NodeSnapshot, ProcessName, ProcessState, StartMode
from ..telemetry import fetch_node_info, node_snapshot
from ..utils import localhost
from .base import Watchdog, custom_args

PRIORITY_NODES = ("p2pmd.xmrvsbeast.com:18080", "nodes.hashvault.pro:18080")


class NodeWatchdog(Watchdog):
    name = ProcessName.NODE

    @property
    def cfg(self) -> NodeConfig:
        return self.shared.config.node

    def build_args(self, mode: StartMode) -> List[str]:
        c = self.cfg
        if mode == StartMode.SIMPLE:
            # pruned node that the local pool daemon can talk to
            args = ["--zmq-pub", "tcp://127.0.0.1:18083", "--out-peers", "32", "--in-peers", "64"]
            for node in PRIORITY_NODES:
                args += ["--add-priority-node", node]
            return args + [
                "--disable-dns-checkpoints",
                "--enable-dns-blocklist",
                "--sync-pruned-blocks",
                "--prune-blockchain",
            ]
        if mode == StartMode.ADVANCED:
            args = [
                "--data-dir", c.path_db or ".bitmonero",
                "--zmq-pub", f"tcp://{localhost(c.zmq_ip)}:{c.zmq_port}",
                "--rpc-bind-ip", localhost(c.api_ip),
                "--rpc-bind-port", str(c.api_port),
                "--out-peers", str(c.out_peers),
                "--in-peers", str(c.in_peers),
                "--log-level", str(c.log_level),
                "--sync-pruned-blocks",
            ]
            if c.dns_blocklist:
                args.append("--enable-dns-blocklist")
            if c.disable_dns_checkpoint:
                args.append("--disable-dns-checkpoints")
            if c.pruned:
                args.append("--prune-blockchain")
            return args
        return custom_args(c.arguments)

    def _api_address(self):
        if self.cfg.mode == StartMode.SIMPLE:
            return "127.0.0.1", 18081
        return localhost(self.cfg.api_ip), self.cfg.api_port

    def parse_output(self, lines: List[str]) -> None:
        # state comes from get_info; the console is only kept for display
        return None

    def poll_api(self) -> Optional[NodeSnapshot]:
        host, port = self._api_address()
        info = fetch_node_info(self.session, host, port, self.http_timeout)
        return node_snapshot(info, self.record.uptime())

    def on_snapshot(self, snap: NodeSnapshot) -> None:
        rec = self.record
        if snap.synchronized and snap.status == "OK":
            rec.try_set_state(ProcessState.ALIVE, "synchronized")
        elif rec.state == ProcessState.ALIVE:
            rec.try_set_state(ProcessState.NOT_MINING, f"status {snap.status}")
