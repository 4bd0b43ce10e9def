from __future__ import annotations
import time

import pytest

from rigwarden.config import AppConfig
from rigwarden.models import ProcessState
from rigwarden.state import SharedState

ADDRESS = "4" + "A" * 94


@pytest.fixture
def config(tmp_path):
    cfg = AppConfig()
    cfg.logging.directory = str(tmp_path / "logs")
    cfg.pool_daemon.data_api = str(tmp_path / "p2pool-api")
    cfg.pool_daemon.address = ADDRESS
    cfg.telemetry.http_timeout_sec = 0.5
    return cfg


@pytest.fixture
def shared(config):
    return SharedState(config)


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait


@pytest.fixture
def bring_alive():
    """Walk a record through the normal start path up to Alive."""
    def _alive(record):
        record.request_start()
        record.set_state(ProcessState.SYNCING)
        record.set_state(ProcessState.ALIVE)
        return record
    return _alive
