"""Latency check of the configured remote nodes.

Every node in the list is pinged concurrently, the results are sorted from
fastest to slowest and coloured green, yellow or red. The pool daemon's
simple mode uses them, or the crawler's discoveries, to pick a remote node.
"""
from __future__ import annotations
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from .config import RemoteNodeConfig
from .latency import Ping, best_latency, port_ping
from .logging_setup import get_logger
from .models import PingColor, PingedNode, PingStatus, RemoteNode

logger = get_logger(__name__)

GREEN_NODE_PING = 100
# yellow is anything between green and red
RED_NODE_PING = 300
TIMEOUT_NODE_PING = 1000

MSG_IDLE = "No ping in progress"

NodeAddress = Tuple[str, int, int]


def classify(ms: int) -> PingColor:
    if ms < GREEN_NODE_PING:
        return PingColor.GREEN
    if ms < RED_NODE_PING:
        return PingColor.YELLOW
    return PingColor.RED


def ping_nodes(
    nodes: Sequence[RemoteNodeConfig],
    rounds: int = 3,
    timeout_ms: int = TIMEOUT_NODE_PING,
    ping: Ping = port_ping,
) -> List[PingedNode]:
    """Ping every node at once; unreachable ones are reported at the timeout."""
    if not nodes:
        return []
    timeout = timeout_ms / 1000
    with ThreadPoolExecutor(max_workers=len(nodes), thread_name_prefix="node-ping") as pool:
        futures = [pool.submit(best_latency, n.host, n.rpc_port, rounds, timeout, ping) for n in nodes]
        latencies = [f.result() for f in futures]
    results = []
    for node, ms in zip(nodes, latencies):
        ms = timeout_ms if ms is None else min(ms, timeout_ms)
        logger.info(f"ping | {ms}ms ... {node.host}")
        results.append(PingedNode(
            host=node.host,
            location=node.location,
            rpc_port=node.rpc_port,
            zmq_port=node.zmq_port,
            ms=ms,
            color=classify(ms),
        ))
    results.sort(key=lambda n: n.ms)
    return results


def next_from_ping(current: str, pinged: Sequence[PingedNode]) -> str:
    """The node after ``current`` in latency order, ``current`` when it is last or unknown."""
    hosts = [n.host for n in pinged]
    if current in hosts:
        i = hosts.index(current)
        if i + 1 < len(hosts):
            return hosts[i + 1]
    return current


def last_from_ping(current: str, pinged: Sequence[PingedNode]) -> str:
    """The node before ``current`` in latency order."""
    hosts = [n.host for n in pinged]
    if current in hosts:
        i = hosts.index(current)
        if i > 0:
            return hosts[i - 1]
    return current


def select_remote_node(
    wanted: str,
    nodes: Sequence[RemoteNodeConfig],
    pinged: Sequence[PingedNode],
    discovered: Sequence[RemoteNode] = (),
) -> Optional[NodeAddress]:
    """Resolve the remote node the pool daemon should use.

    A named node is looked up in the configured list, then in the discovered
    nodes. Without a name the fastest reachable pinged node wins, then the
    fastest discovered one, then a random node from the list.
    """
    if wanted:
        for n in nodes:
            if n.host == wanted:
                return n.host, n.rpc_port, n.zmq_port
        for d in discovered:
            if d.host == wanted:
                return d.host, d.rpc_port, d.zmq_port
        logger.warning(f"remote node {wanted} is unknown, picking one instead")
    reachable = [p for p in pinged if p.ms < TIMEOUT_NODE_PING]
    if reachable:
        best = min(reachable, key=lambda p: p.ms)
        return best.host, best.rpc_port, best.zmq_port
    if discovered:
        best_d = min(discovered, key=lambda d: d.ms)
        return best_d.host, best_d.rpc_port, best_d.zmq_port
    if nodes:
        n = random.choice(list(nodes))
        return n.host, n.rpc_port, n.zmq_port
    return None


class NodePinger:
    """Runs :func:`ping_nodes` on a background thread and keeps the last result."""

    def __init__(
        self,
        nodes: Sequence[RemoteNodeConfig],
        rounds: int = 3,
        timeout_ms: int = TIMEOUT_NODE_PING,
        ping: Ping = port_ping,
    ) -> None:
        self.nodes = list(nodes)
        self.rounds = rounds
        self.timeout_ms = timeout_ms
        self.ping = ping
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.pinging = False
        self.msg = MSG_IDLE
        self.progress = 0.0
        self.results: List[PingedNode] = []

    def start(self) -> bool:
        """Ping in the background; False while a ping is already running."""
        with self._lock:
            if self.pinging:
                return False
            self.pinging = True
            self.progress = 0.0
            self.msg = "Pinging remote nodes"
        self._thread = threading.Thread(target=self._ping, name="node-pinger", daemon=True)
        self._thread.start()
        return True

    def run(self) -> List[PingedNode]:
        """Ping in the calling thread, unless a background ping is already running."""
        if not self.start():
            self.join()
            return self.pinged()
        self.join()
        return self.pinged()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def pinged(self) -> List[PingedNode]:
        with self._lock:
            return [n.model_copy() for n in self.results]

    def status(self) -> PingStatus:
        with self._lock:
            return PingStatus(
                pinging=self.pinging,
                msg=self.msg,
                progress=self.progress,
                fastest=self.results[0].host if self.results else None,
                nodes=[n.model_copy() for n in self.results],
            )

    def _ping(self) -> None:
        started = time.monotonic()
        try:
            results = ping_nodes(self.nodes, self.rounds, self.timeout_ms, self.ping)
        except Exception as e:
            logger.exception(f"ping failed: {e}")
            with self._lock:
                self.msg = f"Ping failed: {e}"
                self.pinging = False
            return
        with self._lock:
            self.results = results
            if results:
                self.msg = f"Fastest node: {results[0].ms}ms ... {results[0].host}"
            else:
                self.msg = "No remote node configured"
            self.progress = 100.0
            self.pinging = False
        logger.info(f"ping took {time.monotonic() - started:.1f}s: {self.msg}")
