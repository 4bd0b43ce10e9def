from __future__ import annotations
import os
import threading
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml

from .algorithm import PPLNS_WINDOW
from .models import DonationMode, DonationTier, StartMode


CONFIG_PATH_DEFAULT = os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "config.yaml")
CONFIG_PATH_DEFAULT = os.path.abspath(os.environ.get("RIGWARDEN_CONFIG", CONFIG_PATH_DEFAULT))


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 8765
    api_key: str = "change-me-32chars-min"
    rate_capacity: int = 120
    rate_refill_per_sec: float = 2.0


@dataclass
class TelemetryConfig:
    enable_system_metrics: bool = True
    metrics_interval_sec: int = 10
    http_timeout_sec: float = 5.0
    # no API warnings are logged for this long after a start
    startup_grace_sec: float = 10.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    rotate_mb: int = 50
    keep: int = 10
    console_max_lines: int = 50_000
    console_max_chars: int = 4_000_000


@dataclass
class ProcessConfig:
    path: str = ""
    # simple wins over custom arguments, custom wins over advanced settings
    simple: bool = True
    arguments: str = ""
    use_pty: bool = True
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def mode(self) -> StartMode:
        if self.simple:
            return StartMode.SIMPLE
        if self.arguments.strip():
            return StartMode.CUSTOM
        return StartMode.ADVANCED


@dataclass
class NodeConfig(ProcessConfig):
    api_ip: str = "127.0.0.1"
    api_port: int = 18081
    zmq_ip: str = "127.0.0.1"
    zmq_port: int = 18083
    out_peers: int = 32
    in_peers: int = 64
    log_level: int = 0
    path_db: str = ""
    pruned: bool = True
    dns_blocklist: bool = True
    disable_dns_checkpoint: bool = True


@dataclass
class PoolDaemonConfig(ProcessConfig):
    address: str = ""
    chain: str = "mini"
    # simple mode only: mine through the local node, otherwise through a remote one
    local_node: bool = True
    # empty picks the fastest pinged or discovered node
    remote_node: str = ""
    node_ip: str = "127.0.0.1"
    rpc_port: int = 18081
    zmq_port: int = 18083
    stratum_port: int = 3333
    out_peers: int = 10
    in_peers: int = 10
    log_level: int = 3
    data_api: str = "p2pool-api"
    status_interval_sec: int = 60
    # percentage added on top of the bare hashrate needed to hold a share
    buffer: int = 25


@dataclass
class HashClientConfig(ProcessConfig):
    address: str = ""
    rig: str = "rigwarden"
    threads: int = 1
    pause: int = 0
    ip: str = "127.0.0.1"
    port: int = 3333
    api_ip: str = "127.0.0.1"
    api_port: int = 18088
    token: str = ""
    tls: bool = False
    keepalive: bool = False
    sudo: bool = False


@dataclass
class HashProxyConfig(ProcessConfig):
    address: str = ""
    rig: str = "rigwarden"
    ip: str = "127.0.0.1"
    port: int = 3333
    bind_port: int = 3355
    api_ip: str = "127.0.0.1"
    api_port: int = 18089
    token: str = ""
    tls: bool = False
    keepalive: bool = False


@dataclass
class DonationConfig:
    mode: str = "auto"
    manual_amount: float = 0.0
    manual_tier: str = "donor"
    manual_pool_enabled: bool = False
    manual_pool_eu: bool = True
    cycle_sec: int = 600
    min_time_send: int = 6
    ping_rounds: int = 3
    ping_timeout_ms: int = 1000


@dataclass
class CrawlerConfig:
    seeds: List[str] = field(default_factory=lambda: [
        "monero.10z.com.ar",
        "node.monerodevs.org",
        "p2pmd.xmrvsbeast.com",
        "node2.monerodevs.org",
        "p2pool.uk",
        "xmr.support",
    ])
    rpc_ports: List[int] = field(default_factory=lambda: [18081, 18089])
    zmq_ports: List[int] = field(default_factory=lambda: [18083, 18084])
    timeout_sec: float = 10.0
    nb_nodes_fast: int = 1
    nb_nodes_medium: int = 3
    max_ping: int = 300
    max_ping_fast: int = 35
    workers: int = 32


@dataclass
class RemoteNodeConfig:
    host: str
    location: str = ""
    rpc_port: int = 18081
    zmq_port: int = 18083


# public nodes with ZMQ enabled
DEFAULT_REMOTE_NODES = [
    ("monero.10z.com.ar", "Argentina", 18089, 18084),
    ("node.monerodevs.org", "Canada", 18089, 18084),
    ("p2pmd.xmrvsbeast.com", "Germany", 18081, 18083),
    ("node2.monerodevs.org", "France", 18089, 18084),
    ("p2pool.uk", "United Kingdom", 18089, 18084),
    ("xmr.support", "United States", 18081, 18083),
    ("xmrbandwagon.hopto.org", "United States", 18081, 18084),
    ("xmr.spotlightsound.com", "United States", 18081, 18084),
    ("node.richfowler.net", "United States", 18089, 18084),
]


def default_remote_nodes() -> List[RemoteNodeConfig]:
    return [RemoteNodeConfig(host, location, rpc, zmq) for host, location, rpc, zmq in DEFAULT_REMOTE_NODES]


@dataclass
class AppConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    node: NodeConfig = field(default_factory=NodeConfig)
    pool_daemon: PoolDaemonConfig = field(default_factory=PoolDaemonConfig)
    hash_client: HashClientConfig = field(default_factory=HashClientConfig)
    hash_proxy: HashProxyConfig = field(default_factory=HashProxyConfig)
    donation: DonationConfig = field(default_factory=DonationConfig)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    remote_nodes: List[RemoteNodeConfig] = field(default_factory=default_remote_nodes)


def _build(cls, data: Optional[Dict[str, Any]]):
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"unknown keys for {cls.__name__}: {sorted(unknown)}")
    return cls(**data)


def _build_nodes(data: Optional[List[Dict[str, Any]]]) -> List[RemoteNodeConfig]:
    if data is None:
        return default_remote_nodes()
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("host"):
            raise ValueError(f"remote node entry needs a host: {entry!r}")
    return [_build(RemoteNodeConfig, entry) for entry in data]


class ConfigLoader:
    def __init__(self, path: Optional[str] = None) -> None:
        self.path = os.path.abspath(path or CONFIG_PATH_DEFAULT)
        self._lock = threading.RLock()
        self._mtime = 0.0
        self.config = AppConfig()
        self.reload()

    def _source(self) -> str:
        if os.path.exists(self.path):
            return self.path
        return self.path.replace("config.yaml", "config.example.yaml")

    def reload(self) -> None:
        with self._lock:
            src = self._source()
            if not os.path.exists(src):
                raise FileNotFoundError(f"Config file not found: {self.path}")
            with open(src, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self.config = self._parse(data)
            self._mtime = os.path.getmtime(src)

    def maybe_reload(self) -> bool:
        with self._lock:
            try:
                mtime = os.path.getmtime(self._source())
            except FileNotFoundError:
                return False
            if mtime > self._mtime:
                self.reload()
                return True
            return False

    def _parse(self, data: dict) -> AppConfig:
        cfg = AppConfig(
            api=_build(ApiConfig, data.get("api")),
            telemetry=_build(TelemetryConfig, data.get("telemetry")),
            logging=_build(LoggingConfig, data.get("logging")),
            node=_build(NodeConfig, data.get("node")),
            pool_daemon=_build(PoolDaemonConfig, data.get("pool_daemon")),
            hash_client=_build(HashClientConfig, data.get("hash_client")),
            hash_proxy=_build(HashProxyConfig, data.get("hash_proxy")),
            donation=_build(DonationConfig, data.get("donation")),
            crawler=_build(CrawlerConfig, data.get("crawler")),
            remote_nodes=_build_nodes(data.get("remote_nodes")),
        )
        _validate(cfg)
        return cfg


def _validate(cfg: AppConfig) -> None:
    if cfg.pool_daemon.chain not in PPLNS_WINDOW:
        raise ValueError(f"pool_daemon.chain must be one of {sorted(PPLNS_WINDOW)}, got {cfg.pool_daemon.chain!r}")
    # raise ValueError on unknown names
    DonationMode(cfg.donation.mode)
    DonationTier(cfg.donation.manual_tier)
    if cfg.donation.manual_amount < 0:
        raise ValueError("donation.manual_amount must be >= 0")
