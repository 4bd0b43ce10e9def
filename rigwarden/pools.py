from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import UNKNOWN

DONATION_HOST_EU = "eu.xmrvsbeast.com"
DONATION_HOST_NA = "na.xmrvsbeast.com"
DONATION_PORT = 4247
DEFAULT_RIG = "rigwarden"


class PoolKind(str, Enum):
    DONATION_EU = "donation_eu"
    DONATION_NA = "donation_na"
    LOCAL = "local"
    PROXY = "proxy"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


_LABELS = {
    PoolKind.DONATION_EU: "XvB European Pool",
    PoolKind.DONATION_NA: "XvB North America Pool",
    PoolKind.LOCAL: "Local P2pool",
    PoolKind.PROXY: "Xmrig Proxy",
    PoolKind.CUSTOM: "Custom Pool",
    PoolKind.UNKNOWN: "Not connected to any pool",
}


@dataclass(frozen=True)
class Pool:
    """A mining endpoint the hashing client can be pointed at."""

    kind: PoolKind
    host: Optional[str] = None
    port_: Optional[int] = None

    @classmethod
    def donation_eu(cls) -> "Pool":
        return cls(PoolKind.DONATION_EU)

    @classmethod
    def donation_na(cls) -> "Pool":
        return cls(PoolKind.DONATION_NA)

    @classmethod
    def local(cls, port: int) -> "Pool":
        return cls(PoolKind.LOCAL, port_=port)

    @classmethod
    def proxy(cls, port: int) -> "Pool":
        return cls(PoolKind.PROXY, port_=port)

    @classmethod
    def custom(cls, host: str, port: int) -> "Pool":
        return cls(PoolKind.CUSTOM, host=host, port_=port)

    @classmethod
    def unknown(cls) -> "Pool":
        return cls(PoolKind.UNKNOWN)

    @property
    def is_donation(self) -> bool:
        return self.kind in (PoolKind.DONATION_EU, PoolKind.DONATION_NA)

    def url(self) -> str:
        if self.kind == PoolKind.DONATION_EU:
            return DONATION_HOST_EU
        if self.kind == PoolKind.DONATION_NA:
            return DONATION_HOST_NA
        if self.kind in (PoolKind.LOCAL, PoolKind.PROXY):
            return "127.0.0.1"
        if self.kind == PoolKind.CUSTOM:
            return self.host or UNKNOWN
        return UNKNOWN

    def port(self) -> str:
        if self.is_donation:
            return str(DONATION_PORT)
        if self.port_ is not None:
            return str(self.port_)
        return UNKNOWN

    def endpoint(self) -> str:
        return f"{self.url()}:{self.port()}"

    def user(self, address: str, rig: str = DEFAULT_RIG) -> str:
        if self.is_donation:
            # the donation service identifies donors by an address prefix
            return address[:8]
        return rig

    def tls(self) -> bool:
        return self.is_donation

    def keepalive(self) -> bool:
        return self.is_donation

    def __str__(self) -> str:
        return _LABELS[self.kind]


def pool_from_endpoint(endpoint: str, local_port: int = 3333, proxy_port: int = 3355) -> Pool:
    """Map a ``host:port`` seen in client output back to a :class:`Pool`."""
    host, _, port = endpoint.strip().rpartition(":")
    if not host:
        return Pool.unknown()
    try:
        port_num = int(port)
    except ValueError:
        return Pool.unknown()
    if host == DONATION_HOST_EU:
        return Pool.donation_eu()
    if host == DONATION_HOST_NA:
        return Pool.donation_na()
    if host in ("127.0.0.1", "localhost", "0.0.0.0"):
        if port_num == proxy_port:
            return Pool.proxy(port_num)
        if port_num == local_port:
            return Pool.local(port_num)
    return Pool.custom(host, port_num)
