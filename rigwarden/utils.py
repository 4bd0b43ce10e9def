from __future__ import annotations
import re
import time
from typing import Callable, Optional

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07|\x1b[@-Z\\-_]")

HORI_CONSOLE = "-" * 80


def now_seconds() -> float:
    return time.monotonic()


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def localhost(ip: str) -> str:
    # the supervised programs do not resolve [localhost] themselves
    if not ip or ip == "localhost":
        return "127.0.0.1"
    return ip


def human_time(seconds: float) -> str:
    """Format an uptime as "1 day, 2 hours, 3 minutes, 4 seconds"."""
    secs = int(max(0, seconds))
    if secs == 0:
        return "0 seconds"
    years, rest = divmod(secs, 31_557_600)  # 365.25d
    months, rest = divmod(rest, 2_630_016)  # 30.44d
    days, rest = divmod(rest, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds_ = divmod(rest, 60)
    parts = []
    for value, name in (
        (years, "year"),
        (months, "month"),
        (days, "day"),
        (hours, "hour"),
        (minutes, "minute"),
        (seconds_, "second"),
    ):
        if value:
            parts.append(f"{value} {name}{'s' if value > 1 else ''}")
    return ", ".join(parts)


def sleep_end_loop(started: float, period: float = 1.0, wait: Optional[Callable[[float], object]] = None) -> None:
    """Sleep out whatever is left of a fixed-cadence loop iteration."""
    remaining = period - (now_seconds() - started)
    if remaining > 0:
        (wait or time.sleep)(remaining)
