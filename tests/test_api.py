import inspect
from unittest.mock import MagicMock

import pytest
import yaml
from fastapi.testclient import TestClient

from rigwarden.auth import RateLimiter
from rigwarden.config import ConfigLoader
from rigwarden.main import create_app
from rigwarden.manager import Manager

KEY = "test-key-0123456789abcdef0123456789"
AUTH = {"X-API-Key": KEY}


@pytest.fixture
def loader(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "api": {"api_key": KEY},
                "logging": {"directory": str(tmp_path / "logs")},
                "hash_client": {"sudo": True},
                "crawler": {"seeds": []},
                "remote_nodes": [{"host": "node.example", "rpc_port": 18089, "zmq_port": 18084}],
            }
        )
    )
    return ConfigLoader(str(path))


@pytest.fixture
def client(loader):
    manager = Manager(
        loader.config, session=MagicMock(), race=MagicMock(return_value=None), probe=lambda h: None,
        ping=lambda host, port, timeout: 42,
    )
    app = create_app(loader, manager, background=False)
    return TestClient(app)


def test_health_needs_no_key(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_key_required(client):
    assert client.get("/api/processes").status_code == 401
    assert client.get("/api/processes", headers={"X-API-Key": "wrong"}).status_code == 401


def test_placeholder_key_never_authenticates(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"logging": {"directory": str(tmp_path / "logs")}}))
    loader = ConfigLoader(str(path))
    app = create_app(loader, Manager(loader.config, session=MagicMock()), background=False)
    resp = TestClient(app).get("/api/processes", headers={"X-API-Key": loader.config.api.api_key})
    assert resp.status_code == 401


def test_list_processes(client):
    resp = client.get("/api/processes", headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert [p["name"] for p in body] == ["node", "pool_daemon", "hash_client", "hash_proxy", "donation"]
    assert all(p["state"] == "dead" for p in body)


def test_request_id_is_echoed(client):
    resp = client.get("/api/health", headers={"X-Request-ID": "abc"})
    assert resp.headers["X-Request-ID"] == "abc"


def test_unknown_process(client):
    assert client.get("/api/processes/miner9", headers=AUTH).status_code == 404
    assert client.post("/api/processes/miner9/start", headers=AUTH).status_code == 404


def test_stop_dead_process_conflicts(client):
    assert client.post("/api/processes/node/stop", headers=AUTH).status_code == 409


def test_start_elevated_client_without_password(client):
    resp = client.post("/api/processes/hash_client/start", headers=AUTH, json={})
    assert resp.status_code == 400


def test_start_missing_binary(client):
    resp = client.post("/api/processes/pool_daemon/start", headers=AUTH)
    assert resp.status_code == 500


def test_input_rejected_for_donation(client):
    resp = client.post("/api/processes/donation/input", headers=AUTH, json={"line": "status"})
    assert resp.status_code == 400
    resp = client.post("/api/processes/node/input", headers=AUTH, json={"line": "status"})
    assert resp.status_code == 200


def test_snapshot(client):
    resp = client.get("/api/snapshots/hash_proxy", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json()["pool"] == "???"


def test_donation_config_roundtrip(client):
    assert client.get("/api/donation/config", headers=AUTH).json()["mode"] == "auto"
    resp = client.put("/api/donation/config", headers=AUTH, json={"mode": "hero"})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "hero"
    resp = client.put("/api/donation/config", headers=AUTH, json={"manual_amount": -1})
    assert resp.status_code == 400
    resp = client.put("/api/donation/config", headers=AUTH, json={"mode": "greedy"})
    assert resp.status_code == 422


def test_discovery_endpoints(client):
    assert client.post("/api/discovery/start", headers=AUTH).status_code == 200
    status = client.get("/api/discovery", headers=AUTH).json()
    assert set(status) == {"crawling", "msg", "progress", "nodes"}
    assert client.post("/api/discovery/cancel", headers=AUTH).status_code == 200


def test_events(client):
    client.put("/api/donation/config", headers=AUTH, json={"mode": "hero"})
    events = client.get("/api/events", headers=AUTH, params={"process": "donation"}).json()
    assert events[-1]["message"] == "donation config updated"


def test_config_reload(client, loader):
    assert client.post("/api/config/reload", headers=AUTH).status_code == 200


def test_remote_node_ping(client):
    resp = client.post("/api/remote-nodes/ping", headers=AUTH)
    assert resp.status_code == 200
    client.app.state.manager.pinger.join(5)
    status = client.get("/api/remote-nodes", headers=AUTH).json()
    assert status["fastest"] == "node.example"
    assert status["nodes"][0]["color"] == "green"
    assert status["nodes"][0]["ms"] == 42


def test_config_reload_rejects_unknown_chain(client, loader):
    with open(loader.path, "w", encoding="utf-8") as f:
        yaml.safe_dump({"api": {"api_key": KEY}, "pool_daemon": {"chain": "Nano"}}, f)
    resp = client.post("/api/config/reload", headers=AUTH)
    assert resp.status_code == 400
    assert "pool_daemon.chain" in resp.json()["detail"]


def test_rate_limiter():
    limiter = RateLimiter(capacity=2, refill_per_sec=0.0)
    assert limiter.allow("1.2.3.4")
    assert limiter.allow("1.2.3.4")
    assert not limiter.allow("1.2.3.4")
    assert limiter.allow("5.6.7.8")


def test_handlers_taking_the_manager_lock_run_in_the_threadpool(client):
    endpoints = {route.name: route.endpoint for route in client.app.routes if hasattr(route, "endpoint")}
    for name in ("stop_all", "start_process", "stop_process", "restart_process", "reload_config"):
        assert not inspect.iscoroutinefunction(endpoints[name])
