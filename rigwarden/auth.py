from __future__ import annotations
import hmac
import threading
import time
from typing import Callable, Dict, Tuple
from fastapi import Header, HTTPException, Request

from .logging_setup import get_logger

logger = get_logger(__name__)

# the placeholder shipped in config.example.yaml never opens the API
PLACEHOLDER_KEY = "change-me-32chars-min"
MIN_KEY_LENGTH = 16
# buckets untouched this long are dropped
IDLE_BUCKET_SEC = 600.0


class RateLimiter:
    """Token bucket per client IP; the supervisor API is meant for a handful of dashboards."""

    def __init__(self, capacity: int = 60, refill_per_sec: float = 1.0):
        self.capacity = capacity
        self.refill_per_sec = refill_per_sec
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def allow(self, ip: str) -> bool:
        now = time.monotonic()
        with self._lock:
            tokens, last = self._buckets.get(ip, (float(self.capacity), now))
            tokens = min(self.capacity, tokens + (now - last) * self.refill_per_sec)
            allowed = tokens >= 1.0
            self._buckets[ip] = (tokens - 1.0 if allowed else tokens, now)
            if len(self._buckets) > 1024:
                self._evict(now)
        return allowed

    def _evict(self, now: float) -> None:
        for ip in [ip for ip, (_, last) in self._buckets.items() if now - last > IDLE_BUCKET_SEC]:
            del self._buckets[ip]


def usable_key(key: str) -> bool:
    return bool(key) and key != PLACEHOLDER_KEY and len(key) >= MIN_KEY_LENGTH


def verify_api_key(get_api_key: Callable[[], str], limiter: RateLimiter):
    warned = threading.Event()

    async def _dependency(request: Request, x_api_key: str | None = Header(default=None)) -> None:
        client_ip = request.client.host if request.client else "unknown"
        if not limiter.allow(client_ip):
            raise HTTPException(status_code=429, detail="Too Many Requests")
        expected = get_api_key()
        if not usable_key(expected):
            if not warned.is_set():
                warned.set()
                logger.error("api.api_key is unset or still the placeholder, every request is refused")
            raise HTTPException(status_code=401, detail="Unauthorized")
        if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
            raise HTTPException(status_code=401, detail="Unauthorized")
    return _dependency
