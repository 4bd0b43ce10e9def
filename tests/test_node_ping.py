import pytest

from rigwarden.config import RemoteNodeConfig, default_remote_nodes
from rigwarden.models import NodeClass, PingColor, RemoteNode
from rigwarden.node_ping import (
    TIMEOUT_NODE_PING,
    NodePinger,
    classify,
    last_from_ping,
    next_from_ping,
    ping_nodes,
    select_remote_node,
)

NODES = [
    RemoteNodeConfig("a.example", "Germany", 18081, 18083),
    RemoteNodeConfig("b.example", "Canada", 18089, 18084),
    RemoteNodeConfig("c.example", "France", 18089, 18084),
]


def fake_ping(latencies):
    def _ping(host, port, timeout):
        return latencies.get(host)
    return _ping


@pytest.mark.parametrize(
    "ms,color",
    [(0, PingColor.GREEN), (99, PingColor.GREEN), (100, PingColor.YELLOW), (299, PingColor.YELLOW),
     (300, PingColor.RED), (TIMEOUT_NODE_PING, PingColor.RED)],
)
def test_classify(ms, color):
    assert classify(ms) == color


def test_ping_sorts_and_reports_unreachable_at_timeout():
    results = ping_nodes(NODES, rounds=1, ping=fake_ping({"a.example": 250, "b.example": 40}))
    assert [(r.host, r.ms, r.color) for r in results] == [
        ("b.example", 40, PingColor.GREEN),
        ("a.example", 250, PingColor.YELLOW),
        ("c.example", TIMEOUT_NODE_PING, PingColor.RED),
    ]
    assert results[0].zmq_port == 18084
    assert results[0].location == "Canada"


def test_ping_keeps_best_round():
    seen = []

    def ping(host, port, timeout):
        seen.append(port)
        return 80 if len(seen) % 2 else 30

    results = ping_nodes(NODES[:1], rounds=4, ping=ping)
    assert results[0].ms == 30
    assert seen == [18081] * 4


def test_next_and_last_follow_latency_order():
    pinged = ping_nodes(NODES, rounds=1, ping=fake_ping({"a.example": 10, "b.example": 20, "c.example": 30}))
    assert next_from_ping("a.example", pinged) == "b.example"
    assert next_from_ping("c.example", pinged) == "c.example"
    assert last_from_ping("b.example", pinged) == "a.example"
    assert last_from_ping("a.example", pinged) == "a.example"
    assert next_from_ping("unknown", pinged) == "unknown"


def test_select_prefers_named_node():
    assert select_remote_node("c.example", NODES, []) == ("c.example", 18089, 18084)
    discovered = [RemoteNode(host="d.example", rpc_port=18081, zmq_port=18083, ms=5, klass=NodeClass.FAST)]
    assert select_remote_node("d.example", NODES, [], discovered) == ("d.example", 18081, 18083)


def test_select_fastest_reachable_then_discovered():
    pinged = ping_nodes(NODES, rounds=1, ping=fake_ping({"c.example": 70}))
    assert select_remote_node("", NODES, pinged) == ("c.example", 18089, 18084)

    unreachable = ping_nodes(NODES, rounds=1, ping=fake_ping({}))
    discovered = [
        RemoteNode(host="slow.example", rpc_port=18089, zmq_port=18084, ms=200, klass=NodeClass.MEDIUM),
        RemoteNode(host="quick.example", rpc_port=18081, zmq_port=18083, ms=20),
    ]
    assert select_remote_node("", NODES, unreachable, discovered) == ("quick.example", 18081, 18083)


def test_select_random_when_nothing_answered():
    host, _, _ = select_remote_node("", NODES, [])
    assert host in {n.host for n in NODES}
    assert select_remote_node("", [], []) is None


def test_pinger_status_and_single_run():
    pinger = NodePinger(NODES, rounds=1, ping=fake_ping({"a.example": 150, "b.example": 60}))
    assert pinger.status().fastest is None
    results = pinger.run()
    status = pinger.status()
    assert not status.pinging
    assert status.progress == 100
    assert status.fastest == "b.example"
    assert status.msg == "Fastest node: 60ms ... b.example"
    assert [n.host for n in results] == ["b.example", "a.example", "c.example"]


def test_default_list_has_zmq_ports():
    nodes = default_remote_nodes()
    assert len(nodes) == 9
    assert all(n.zmq_port in (18083, 18084) for n in nodes)
