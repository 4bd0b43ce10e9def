"""Discovery of public remote nodes usable by the pool daemon.

Candidates start from the configured seed hosts and grow with the public
peer list of every node that answers. A node qualifies when its RPC reports
a synchronized mainnet and one of its ZMQ ports accepts a connection.
"""
from __future__ import annotations
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import requests

from .config import CrawlerConfig
from .latency import port_ping
from .logging_setup import get_logger
from .models import DiscoveryStatus, NodeClass, RemoteNode
from .telemetry import fetch_node_info, new_session

logger = get_logger(__name__)

MSG_INACTIVE = "Inactive"
MSG_FAST_QUOTA = "Discovered enough fast latency nodes"
MSG_CANCELLED = "Stopped manually"
MSG_TIMEOUT = "Stopped after reaching the timeout"
MSG_EXHAUSTED = "No more nodes to crawl"
MSG_REPLACED = "Replaced the slowest node with a faster one"


@dataclass
class ProbeResult:
    host: str
    rpc_port: int
    zmq_port: int
    ms: int
    neighbours: List[str] = field(default_factory=list)


Probe = Callable[[str], Optional[ProbeResult]]


def _plural(n: int) -> str:
    return "s" if n > 1 else ""


def public_nodes(session: requests.Session, host: str, port: int, timeout: float) -> List[str]:
    resp = session.get(f"http://{host}:{port}/get_public_nodes", timeout=timeout)
    resp.raise_for_status()
    body = resp.json()
    hosts = []
    for entry in (body.get("white") or []) + (body.get("gray") or []):
        h = entry.get("host")
        if h:
            hosts.append(h)
    return hosts


class NodeProber:
    """Default probe: RPC get_info, then a handshake on the ZMQ ports."""

    def __init__(self, cfg: CrawlerConfig, session: Optional[requests.Session] = None) -> None:
        self.cfg = cfg
        self.session = session or new_session()
        self.timeout = min(cfg.timeout_sec, 3.0)

    def __call__(self, host: str) -> Optional[ProbeResult]:
        for rpc in self.cfg.rpc_ports:
            try:
                info = fetch_node_info(self.session, host, rpc, self.timeout)
            except (requests.RequestException, ValueError) as e:
                logger.debug(f"crawl | {host}:{rpc} no RPC: {e}")
                continue
            if info.get("nettype") != "mainnet" or not info.get("synchronized"):
                return None
            ms = port_ping(host, rpc, self.timeout)
            if ms is None:
                return None
            for zmq in self.cfg.zmq_ports:
                if port_ping(host, zmq, self.timeout) is not None:
                    try:
                        neighbours = public_nodes(self.session, host, rpc, self.timeout)
                    except (requests.RequestException, ValueError):
                        neighbours = []
                    return ProbeResult(host, rpc, zmq, ms, neighbours)
            return None
        return None


class Crawler:
    def __init__(self, cfg: CrawlerConfig, probe: Optional[Probe] = None) -> None:
        self.cfg = cfg
        self.probe = probe or NodeProber(cfg)
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.crawling = False
        self.msg = MSG_INACTIVE
        self.progress = 0.0
        self.nodes: List[RemoteNode] = []
        self._nb_fast = 0
        self._nb_medium = 0

    def start(self) -> bool:
        """Begin a crawl; False when one is already running."""
        with self._lock:
            if self.crawling:
                return False
            self.crawling = True
            self.progress = 0.0
            self.nodes = []
            self._nb_fast = 0
            self._nb_medium = 0
            self.msg = "Crawling..."
            self._cancel.clear()
        self._thread = threading.Thread(target=self._crawl, name="crawler", daemon=True)
        self._thread.start()
        return True

    def cancel(self) -> None:
        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> DiscoveryStatus:
        with self._lock:
            return DiscoveryStatus(
                crawling=self.crawling,
                msg=self.msg,
                progress=self.progress,
                nodes=[n.model_copy() for n in self.nodes],
            )

    # ---- internals -----------------------------------------------------------

    def _raise_progress(self, value: float) -> None:
        self.progress = min(100.0, max(self.progress, value))

    def consider(self, found: ProbeResult) -> bool:
        """Classify one probed node. True once the fast quota is met."""
        cfg = self.cfg
        with self._lock:
            if found.ms < cfg.max_ping_fast:
                self._nb_fast += 1
                self.nodes.append(RemoteNode(host=found.host, rpc_port=found.rpc_port,
                                             zmq_port=found.zmq_port, ms=found.ms, klass=NodeClass.FAST))
                self._raise_progress(self.progress + 100.0 / max(1, cfg.nb_nodes_fast))
                self.msg = f"Discovered {self._nb_fast} node{_plural(self._nb_fast)} with fast latency"
            elif found.ms < cfg.max_ping and cfg.nb_nodes_medium > 0:
                node = RemoteNode(host=found.host, rpc_port=found.rpc_port,
                                  zmq_port=found.zmq_port, ms=found.ms, klass=NodeClass.MEDIUM)
                if self._nb_medium < cfg.nb_nodes_medium:
                    self._nb_medium += 1
                    self.nodes.append(node)
                    self.msg = f"Discovered {self._nb_medium} node{_plural(self._nb_medium)} with medium latency"
                else:
                    mediums = [n for n in self.nodes if n.klass == NodeClass.MEDIUM]
                    slowest = max(mediums, key=lambda n: n.ms)
                    if found.ms < slowest.ms:
                        self.nodes.remove(slowest)
                        self.nodes.append(node)
                        self.msg = MSG_REPLACED
            self.nodes.sort(key=lambda n: n.ms)
            if self._nb_fast >= cfg.nb_nodes_fast:
                self.msg = MSG_FAST_QUOTA
                return True
            return False

    def _crawl(self) -> None:
        started = time.monotonic()
        deadline = started + self.cfg.timeout_sec
        seen: Set[str] = set()
        frontier: List[str] = []
        for host in self.cfg.seeds:
            if host not in seen:
                seen.add(host)
                frontier.append(host)
        pending: Dict[Future, str] = {}
        executor = ThreadPoolExecutor(max_workers=max(1, self.cfg.workers), thread_name_prefix="crawl")
        reason = MSG_EXHAUSTED
        try:
            while True:
                if self._cancel.is_set():
                    reason = MSG_CANCELLED
                    break
                now = time.monotonic()
                if now >= deadline:
                    reason = MSG_TIMEOUT
                    break
                tenths = int((now - started) / self.cfg.timeout_sec * 10) if self.cfg.timeout_sec > 0 else 10
                with self._lock:
                    self._raise_progress(tenths * 10.0)
                while frontier and len(pending) < self.cfg.workers * 2:
                    host = frontier.pop(0)
                    pending[executor.submit(self.probe, host)] = host
                if not pending:
                    break
                done, _ = wait(list(pending), timeout=min(0.1, max(0.0, deadline - now)), return_when=FIRST_COMPLETED)
                quota = False
                for fut in done:
                    host = pending.pop(fut)
                    try:
                        found = fut.result()
                    except Exception as e:
                        logger.debug(f"crawl | probe of {host} failed: {e}")
                        continue
                    if found is None:
                        continue
                    logger.info(f"crawl | found a compatible node {found.host} ({found.ms} ms)")
                    for n in found.neighbours:
                        if n not in seen:
                            seen.add(n)
                            frontier.append(n)
                    if self.consider(found):
                        quota = True
                        break
                if quota:
                    reason = None
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            with self._lock:
                if reason is not None:
                    self.msg = reason
                if reason in (MSG_TIMEOUT, MSG_EXHAUSTED) or self.msg == MSG_FAST_QUOTA:
                    self.progress = 100.0
                self.crawling = False
            logger.info(f"crawl finished after {time.monotonic() - started:.1f}s: {self.msg}")
