from __future__ import annotations
from typing import List, Optional

from ..config import HashClientConfig
from ..errors import RigwardenError
from ..models import HashClientSnapshot, ProcessName, StartMode
from ..pools import DEFAULT_RIG, Pool, PoolKind
from ..telemetry import hash_client_snapshot
from ..utils import localhost
from .base import custom_args
from .xrig import XrigWatchdog


class HashClientWatchdog(XrigWatchdog):
    name = ProcessName.HASH_CLIENT
    default_api_port = 18088

    @property
    def cfg(self) -> HashClientConfig:
        return self.shared.config.hash_client

    def build_args(self, mode: StartMode) -> List[str]:
        c = self.cfg
        if mode == StartMode.CUSTOM:
            return custom_args(c.arguments)
        args = [
            "--no-color",
            f"--http-access-token={c.token}",
            "--http-no-restricted",
            "--threads", str(c.threads),
        ]
        if c.pause:
            args += ["--pause-on-active", str(c.pause)]
        if mode == StartMode.SIMPLE:
            return args + [
                "--url", "127.0.0.1:3333",
                "--user", c.rig or DEFAULT_RIG,
                "--http-host", "127.0.0.1",
                "--http-port", str(self.default_api_port),
            ]
        args += [
            "--user", c.address,
            "--rig-id", c.rig,
            "--url", f"{localhost(c.ip)}:{c.port}",
            "--http-host", localhost(c.api_ip),
            "--http-port", str(c.api_port),
        ]
        if c.tls:
            args.append("--tls")
        if c.keepalive:
            args.append("--keepalive")
        return args

    def watches_donation_pool(self) -> bool:
        # with a live proxy the proxy itself reports dead donation pools
        return super().watches_donation_pool() and not self.shared.is_alive(ProcessName.HASH_PROXY)

    def poll_api(self) -> Optional[HashClientSnapshot]:
        return hash_client_snapshot(self._summary(), self.record.uptime(), self._pool_label())

    def on_tick(self) -> None:
        # the proxy went away under us: fall back to the local pool daemon
        if (
            self.current_pool is not None
            and self.current_pool.kind == PoolKind.PROXY
            and not self.shared.is_alive(ProcessName.HASH_PROXY)
            and self.shared.is_alive(ProcessName.POOL_DAEMON)
        ):
            self.logger.info(f"{self.label} | proxy is gone, redirecting to the local pool")
            local = Pool.local(self._local_port())
            try:
                self.switch_pool(local, "", DEFAULT_RIG)
            except (RigwardenError, OSError) as e:
                self.record.output(f"Failure to update the config with HTTP API.\nError: {e}")
                return
            self.current_pool = local
