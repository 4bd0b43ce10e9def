from .base import Watchdog
from .node import NodeWatchdog
from .pool_daemon import PoolDaemonWatchdog
from .hash_client import HashClientWatchdog
from .hash_proxy import HashProxyWatchdog

__all__ = ["Watchdog", "NodeWatchdog", "PoolDaemonWatchdog", "HashClientWatchdog", "HashProxyWatchdog"]
