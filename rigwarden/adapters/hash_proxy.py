from __future__ import annotations
from typing import List, Optional

from ..config import HashProxyConfig
from ..models import HashProxySnapshot, ProcessName, StartMode
from ..pools import DEFAULT_RIG
from ..telemetry import hash_proxy_snapshot
from ..utils import localhost
from .base import custom_args
from .xrig import XrigWatchdog


class HashProxyWatchdog(XrigWatchdog):
    name = ProcessName.HASH_PROXY
    default_api_port = 18089

    @property
    def cfg(self) -> HashProxyConfig:
        return self.shared.config.hash_proxy

    def build_args(self, mode: StartMode) -> List[str]:
        c = self.cfg
        if mode == StartMode.SIMPLE:
            args = [
                "-o", "127.0.0.1:3333",
                "-b", "0.0.0.0:3355",
                "--user", c.rig or DEFAULT_RIG,
                "--no-color",
                "--http-host", "127.0.0.1",
                "--http-port", str(self.default_api_port),
            ]
        elif mode == StartMode.ADVANCED:
            args = [
                "--user", c.address,
                "--rig-id", c.rig,
                "-o", f"{localhost(c.ip)}:{c.port}",
                "-b", f"0.0.0.0:{c.bind_port}",
                "--http-host", localhost(c.api_ip),
                "--http-port", str(c.api_port),
                "--no-color",
            ]
            if c.tls:
                args.append("--tls")
            if c.keepalive:
                args.append("--keepalive")
        else:
            args = custom_args(c.arguments)
        # the API must stay reachable for pool switching whatever the mode
        return args + [f"--http-access-token={c.token}", "--http-no-restricted"]

    def poll_api(self) -> Optional[HashProxySnapshot]:
        return hash_proxy_snapshot(self._summary(), self.record.uptime(), self._pool_label())
