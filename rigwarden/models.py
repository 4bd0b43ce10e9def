from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

UNKNOWN = "???"


class ProcessName(str, Enum):
    NODE = "node"
    POOL_DAEMON = "pool_daemon"
    HASH_CLIENT = "hash_client"
    HASH_PROXY = "hash_proxy"
    DONATION = "donation"

    @property
    def virtual(self) -> bool:
        return self is ProcessName.DONATION

    @property
    def label(self) -> str:
        return {
            ProcessName.NODE: "Node",
            ProcessName.POOL_DAEMON: "P2Pool",
            ProcessName.HASH_CLIENT: "XMRig",
            ProcessName.HASH_PROXY: "XMRig-Proxy",
            ProcessName.DONATION: "XvB",
        }[self]


class ProcessState(str, Enum):
    DEAD = "dead"
    MIDDLE = "middle"
    SYNCING = "syncing"
    ALIVE = "alive"
    NOT_MINING = "not_mining"
    WAITING = "waiting"
    FAILED = "failed"
    OFFLINE_POOLS_ALL = "offline_pools_all"


class ProcessSignal(str, Enum):
    NONE = "none"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    UPDATE_NODES = "update_nodes"


class StartMode(str, Enum):
    SIMPLE = "simple"
    ADVANCED = "advanced"
    CUSTOM = "custom"


class DonationMode(str, Enum):
    AUTO = "auto"
    HERO = "hero"
    MANUAL_DONATE_ABSOLUTE = "manual_donate_absolute"
    MANUAL_KEEP_ABSOLUTE = "manual_keep_absolute"
    MANUAL_DONATION_LEVEL = "manual_donation_level"


class DonationTier(str, Enum):
    DONOR = "donor"
    DONOR_VIP = "donor_vip"
    DONOR_WHALE = "donor_whale"
    DONOR_MEGA = "donor_mega"


class DonationRound(str, Enum):
    VIP = "vip"
    MVP = "mvp"
    DONOR = "donor"
    DONOR_VIP = "donor_vip"
    DONOR_WHALE = "donor_whale"
    DONOR_MEGA = "donor_mega"


class NodeClass(str, Enum):
    FAST = "fast"
    MEDIUM = "medium"


# ---- telemetry snapshots -------------------------------------------------

class NodeSnapshot(BaseModel):
    uptime_sec: float = 0
    height: Optional[int] = None
    difficulty: Optional[int] = None
    database_size: Optional[int] = None
    free_space: Optional[int] = None
    nettype: str = UNKNOWN
    outgoing_connections: int = 0
    incoming_connections: int = 0
    status: str = "Offline"
    synchronized: bool = False


class PoolDaemonSnapshot(BaseModel):
    uptime_sec: float = 0
    hashrate_15m: Optional[float] = None
    hashrate_1h: Optional[float] = None
    hashrate_24h: Optional[float] = None
    shares_found: Optional[int] = None
    average_effort: Optional[float] = None
    current_effort: Optional[float] = None
    connections: Optional[int] = None
    monero_difficulty: Optional[int] = None
    monero_height: Optional[int] = None
    sidechain_difficulty: Optional[int] = None
    sidechain_height: Optional[int] = None
    sidechain_hashrate: Optional[float] = None
    miners: Optional[int] = None
    # shares currently in the PPLNS window, from the console `status` command
    shares: Optional[int] = None
    synchronized: bool = False


class HashClientSnapshot(BaseModel):
    uptime_sec: float = 0
    worker_id: str = UNKNOWN
    hashrate_10s: Optional[float] = None
    hashrate_1m: Optional[float] = None
    hashrate_15m: Optional[float] = None
    diff: Optional[int] = None
    accepted: Optional[int] = None
    rejected: Optional[int] = None
    load_average: List[Optional[float]] = Field(default_factory=lambda: [None, None, None])
    pool: str = UNKNOWN


class HashProxySnapshot(BaseModel):
    uptime_sec: float = 0
    hashrate_1m: Optional[float] = None
    hashrate_10m: Optional[float] = None
    hashrate_1h: Optional[float] = None
    hashrate_12h: Optional[float] = None
    hashrate_24h: Optional[float] = None
    accepted: Optional[int] = None
    rejected: Optional[int] = None
    miners: Optional[int] = None
    pool: str = UNKNOWN


class CycleReport(BaseModel):
    hashrate_controllable: float = 0
    share_held: bool = False
    pool_total_hashrate: float = 0
    external_hashrate: float = 0
    share_minimum_hashrate: float = 0
    spareable_hashrate: float = 0
    target_donation_hashrate: float = 0
    needed_time: int = 0
    decision: str = UNKNOWN


class DonationSnapshot(BaseModel):
    uptime_sec: float = 0
    selected_pool: str = UNKNOWN
    current_pool: Optional[str] = None
    round: Optional[DonationRound] = None
    time_donated: int = 0
    donor_1h_avg: float = 0
    donor_24h_avg: float = 0
    last_cycle: Optional[CycleReport] = None


# ---- discovery ------------------------------------------------------------

class RemoteNode(BaseModel):
    host: str
    rpc_port: int
    zmq_port: int
    ms: int
    klass: NodeClass = NodeClass.FAST


class DiscoveryStatus(BaseModel):
    crawling: bool
    msg: str
    progress: float
    nodes: List[RemoteNode] = Field(default_factory=list)


class PingColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class PingedNode(BaseModel):
    host: str
    location: str = ""
    rpc_port: int
    zmq_port: int
    ms: int
    color: PingColor


class PingStatus(BaseModel):
    pinging: bool
    msg: str
    progress: float
    fastest: Optional[str] = None
    nodes: List[PingedNode] = Field(default_factory=list)


# ---- control API ------------------------------------------------------------

class ProcessView(BaseModel):
    name: ProcessName
    state: ProcessState
    signal: ProcessSignal
    uptime_sec: float = 0
    pid: Optional[int] = None
    console: str = ""


class InputLine(BaseModel):
    line: str


class DonationConfigUpdate(BaseModel):
    mode: Optional[DonationMode] = None
    manual_amount: Optional[float] = None
    manual_tier: Optional[DonationTier] = None


class SystemMetrics(BaseModel):
    cpu_percent: float
    cpu_count: int
    load_1: float
    load_5: float
    load_15: float
    mem_total_mb: float
    mem_used_mb: float
    mem_percent: float
    self_cpu_percent: float = 0
    self_mem_mb: float = 0
    temps_c: Dict[str, float] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str
    version: str


class ProcessAction(BaseModel):
    sudo_password: Optional[str] = None
