"""HTTP and file based status sources of the supervised programs."""
from __future__ import annotations
import json
import os
from typing import Any, Dict, List, Optional

import requests

from .errors import ConfigUpdateError, TelemetryError
from .logging_setup import get_logger
from .models import (
    UNKNOWN,
    HashClientSnapshot,
    HashProxySnapshot,
    NodeSnapshot,
    PoolDaemonSnapshot,
)
from .pools import Pool

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 5.0
SUMMARY_ENDPOINT = "/1/summary"
CONFIG_ENDPOINT = "/1/config"
PROXY_HASHRATE_FACTOR = 1000.0  # the proxy reports kH/s

POOL_DAEMON_FILES = {
    "local": os.path.join("local", "stratum"),
    "network": os.path.join("network", "stats"),
    "pool": os.path.join("pool", "stats"),
}


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": "rigwarden"})
    return session


def _bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _json(resp: requests.Response) -> Any:
    resp.raise_for_status()
    try:
        return resp.json()
    except ValueError as e:
        raise TelemetryError(f"{resp.url}: invalid JSON: {e}") from e


# ---- node ---------------------------------------------------------------------

def fetch_node_info(session: requests.Session, host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
    payload = {"jsonrpc": "2.0", "id": "0", "method": "get_info"}
    resp = session.post(f"http://{host}:{port}/json_rpc", json=payload, timeout=timeout)
    body = _json(resp)
    result = body.get("result") if isinstance(body, dict) else None
    if not isinstance(result, dict):
        raise TelemetryError(f"get_info on {host}:{port} returned no result")
    return result


def node_snapshot(info: Dict[str, Any], uptime: float = 0) -> NodeSnapshot:
    return NodeSnapshot(
        uptime_sec=uptime,
        height=info.get("height"),
        difficulty=info.get("difficulty"),
        database_size=info.get("database_size"),
        free_space=info.get("free_space"),
        nettype=info.get("nettype") or UNKNOWN,
        outgoing_connections=info.get("outgoing_connections_count") or 0,
        incoming_connections=info.get("incoming_connections_count") or 0,
        status=info.get("status") or UNKNOWN,
        synchronized=bool(info.get("synchronized", False)),
    )


# ---- hashing client / proxy ---------------------------------------------------

def fetch_xrig_summary(session: requests.Session, url: str, token: str, timeout: float = DEFAULT_TIMEOUT) -> Dict[str, Any]:
    resp = session.get(url.rstrip("/") + SUMMARY_ENDPOINT, headers=_bearer(token), timeout=timeout)
    body = _json(resp)
    if not isinstance(body, dict):
        raise TelemetryError(f"{url}: summary is not an object")
    return body


def _at(values: List[Any], index: int) -> Optional[float]:
    if index < len(values) and values[index] is not None:
        return float(values[index])
    return None


def hash_client_snapshot(summary: Dict[str, Any], uptime: float = 0, pool: str = UNKNOWN) -> HashClientSnapshot:
    # totals are [10s, 1m, 15m]; each may be null until enough samples exist
    totals = (summary.get("hashrate") or {}).get("total") or []
    conn = summary.get("connection") or {}
    load = list((summary.get("resources") or {}).get("load_average") or [])
    load = (load + [None, None, None])[:3]
    return HashClientSnapshot(
        uptime_sec=uptime,
        worker_id=summary.get("worker_id") or UNKNOWN,
        hashrate_10s=_at(totals, 0),
        hashrate_1m=_at(totals, 1),
        hashrate_15m=_at(totals, 2),
        diff=conn.get("diff"),
        accepted=conn.get("accepted"),
        rejected=conn.get("rejected"),
        load_average=load,
        pool=pool,
    )


def hash_proxy_snapshot(summary: Dict[str, Any], uptime: float = 0, pool: str = UNKNOWN) -> HashProxySnapshot:
    # totals are [1m, 10m, 1h, 12h, 24h, all-time] in kH/s
    totals = [
        None if v is None else float(v) * PROXY_HASHRATE_FACTOR
        for v in (summary.get("hashrate") or {}).get("total") or []
    ]
    results = summary.get("results") or {}
    return HashProxySnapshot(
        uptime_sec=uptime,
        hashrate_1m=_at(totals, 0),
        hashrate_10m=_at(totals, 1),
        hashrate_1h=_at(totals, 2),
        hashrate_12h=_at(totals, 3),
        hashrate_24h=_at(totals, 4),
        accepted=results.get("accepted"),
        rejected=results.get("rejected"),
        miners=(summary.get("miners") or {}).get("now"),
        pool=pool,
    )


def update_pool_config(
    session: requests.Session,
    url: str,
    token: str,
    pool: Pool,
    address: str,
    rig: str,
    timeout: float = DEFAULT_TIMEOUT,
) -> None:
    """Point the first pool of a running client at ``pool``."""
    endpoint = url.rstrip("/") + CONFIG_ENDPOINT
    config = _json(session.get(endpoint, headers=_bearer(token), timeout=timeout))
    try:
        first = config["pools"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise ConfigUpdateError(f"pools/0 does not exist in config of {url}") from e
    for key in ("url", "user", "rig-id", "tls", "keepalive"):
        if key not in first:
            raise ConfigUpdateError(f"pools/0/{key} does not exist in config of {url}")
    first["url"] = pool.endpoint()
    first["user"] = pool.user(address, rig)
    first["rig-id"] = rig
    first["tls"] = pool.tls()
    first["keepalive"] = pool.keepalive()
    logger.info(f"replace pool of {url} with {pool.endpoint()}")
    resp = session.put(endpoint, headers=_bearer(token), json=config, timeout=timeout)
    resp.raise_for_status()


# ---- pool daemon ---------------------------------------------------------------

def read_pool_daemon_api(data_dir: str) -> Dict[str, Dict[str, Any]]:
    """Read the data-api files. Missing files give empty sections."""
    merged: Dict[str, Dict[str, Any]] = {}
    for section, rel in POOL_DAEMON_FILES.items():
        path = os.path.join(data_dir, rel)
        try:
            with open(path, "r", encoding="utf-8") as f:
                merged[section] = json.load(f)
        except FileNotFoundError:
            merged[section] = {}
        except ValueError as e:
            # the daemon rewrites these files in place, a torn read is retried next tick
            raise TelemetryError(f"{path}: {e}") from e
    return merged


def pool_daemon_snapshot(
    data: Dict[str, Dict[str, Any]],
    uptime: float = 0,
    shares: Optional[int] = None,
    synchronized: bool = False,
) -> PoolDaemonSnapshot:
    local = data.get("local") or {}
    network = data.get("network") or {}
    pool_stats = (data.get("pool") or {}).get("pool_statistics") or {}
    return PoolDaemonSnapshot(
        uptime_sec=uptime,
        hashrate_15m=local.get("hashrate_15m"),
        hashrate_1h=local.get("hashrate_1h"),
        hashrate_24h=local.get("hashrate_24h"),
        shares_found=local.get("shares_found"),
        average_effort=local.get("average_effort"),
        current_effort=local.get("current_effort"),
        connections=local.get("connections"),
        monero_difficulty=network.get("difficulty"),
        monero_height=network.get("height"),
        sidechain_difficulty=pool_stats.get("sidechainDifficulty"),
        sidechain_height=pool_stats.get("sidechainHeight"),
        sidechain_hashrate=pool_stats.get("hashRate"),
        miners=pool_stats.get("miners"),
        shares=shares,
        synchronized=synchronized,
    )
