from __future__ import annotations
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .logging_setup import get_logger
from .pools import Pool

logger = get_logger(__name__)

Ping = Callable[[str, int, float], Optional[int]]


def port_ping(host: str, port: int, timeout: float = 1.0) -> Optional[int]:
    """Milliseconds to complete a TCP handshake, None if it did not."""
    started = time.monotonic()
    try:
        with socket.create_connection((host, port), timeout=timeout):
            pass
    except OSError as e:
        logger.debug(f"ping {host}:{port} failed: {e}")
        return None
    return int((time.monotonic() - started) * 1000)


def best_latency(host: str, port: int, rounds: int = 3, timeout: float = 1.0, ping: Ping = port_ping) -> Optional[int]:
    results = [ms for ms in (ping(host, port, timeout) for _ in range(max(1, rounds))) if ms is not None]
    return min(results) if results else None


def race_donation_pools(rounds: int = 3, timeout_ms: int = 1000, ping: Ping = port_ping) -> Optional[Pool]:
    """Pick the donation endpoint with the lowest latency, None if both are down."""
    candidates = [Pool.donation_eu(), Pool.donation_na()]
    timeout = timeout_ms / 1000
    with ThreadPoolExecutor(max_workers=len(candidates), thread_name_prefix="ping") as pool:
        futures = [pool.submit(best_latency, p.url(), int(p.port()), rounds, timeout, ping) for p in candidates]
        latencies = [f.result() for f in futures]
    for p, ms in zip(candidates, latencies):
        logger.info(f"{p} latency: {ms if ms is not None else 'unreachable'} ms")
    alive = [(ms, i) for i, ms in enumerate(latencies) if ms is not None]
    if not alive:
        return None
    # ties go to Europe, the default endpoint
    _, index = min(alive)
    return candidates[index]
