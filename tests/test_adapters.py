import os
from unittest.mock import MagicMock

import requests

from rigwarden.adapters import HashClientWatchdog, HashProxyWatchdog, NodeWatchdog, PoolDaemonWatchdog
from rigwarden.adapters.pool_daemon import FRESH_CHAIN, SYNCHRONIZED, local_pool_port
from rigwarden.models import NodeSnapshot, ProcessName, ProcessState as S, StartMode
from rigwarden.pools import Pool, PoolKind


def syncing(record):
    record.request_start()
    record.set_state(S.SYNCING)
    return record


def xmrig_session():
    session = MagicMock()
    session.get.return_value.json.return_value = {
        "pools": [{"url": "127.0.0.1:3355", "user": "x", "rig-id": "x", "tls": False, "keepalive": False}]
    }
    return session


# ---- node ---------------------------------------------------------------------

def test_node_simple_args(shared):
    args = NodeWatchdog(shared).build_args(StartMode.SIMPLE)
    assert args[:2] == ["--zmq-pub", "tcp://127.0.0.1:18083"]
    assert args.count("--add-priority-node") == 2
    assert "--prune-blockchain" in args


def test_node_advanced_args(shared):
    c = shared.config.node
    c.simple = False
    c.api_ip = "localhost"
    c.api_port = 28081
    c.pruned = False
    args = NodeWatchdog(shared).build_args(c.mode)
    assert c.mode == StartMode.ADVANCED
    assert args[args.index("--rpc-bind-ip") + 1] == "127.0.0.1"
    assert args[args.index("--rpc-bind-port") + 1] == "28081"
    assert "--prune-blockchain" not in args


def test_node_custom_args_win_over_advanced(shared):
    c = shared.config.node
    c.simple = False
    c.arguments = "--rpc-bind-ip localhost"
    assert NodeWatchdog(shared).command()[1:] == ["--rpc-bind-ip", "127.0.0.1"]


def test_node_goes_alive_when_synchronized(shared):
    wd = NodeWatchdog(shared)
    syncing(wd.record)
    wd.on_snapshot(NodeSnapshot(synchronized=True, status="OK"))
    assert wd.record.state == S.ALIVE
    wd.on_snapshot(NodeSnapshot(synchronized=False, status="BUSY"))
    assert wd.record.state == S.NOT_MINING


def test_node_api_failure_is_swallowed(shared):
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("refused")
    wd = NodeWatchdog(shared, session)
    syncing(wd.record)
    wd._poll_status()
    assert wd.record.state == S.SYNCING
    assert shared.snapshot(ProcessName.NODE).status == "Offline"


# ---- pool daemon --------------------------------------------------------------

def test_pool_daemon_simple_args(shared):
    wd = PoolDaemonWatchdog(shared)
    args = wd.build_args(StartMode.SIMPLE)
    assert args[args.index("--wallet") + 1] == shared.config.pool_daemon.address
    assert os.path.isabs(args[args.index("--data-api") + 1])
    assert "--mini" in args
    shared.config.pool_daemon.chain = "nano"
    assert "--nano" in wd.build_args(StartMode.SIMPLE)
    shared.config.pool_daemon.chain = "main"
    args = wd.build_args(StartMode.SIMPLE)
    assert "--mini" not in args and "--nano" not in args


def test_pool_daemon_advanced_args(shared):
    c = shared.config.pool_daemon
    c.simple = False
    c.stratum_port = 3334
    args = PoolDaemonWatchdog(shared).build_args(c.mode)
    assert args[args.index("--stratum") + 1] == "0.0.0.0:3334"
    assert local_pool_port(c) == 3334


def test_pool_daemon_synchronized(shared):
    wd = PoolDaemonWatchdog(shared)
    syncing(wd.record)
    wd.parse_output([f"2024-01-01 12:00:00 {SYNCHRONIZED}"])
    assert wd.record.state == S.ALIVE
    assert shared.snapshot(ProcessName.POOL_DAEMON).synchronized


def test_pool_daemon_ignores_fresh_chain_sync(shared):
    wd = PoolDaemonWatchdog(shared)
    syncing(wd.record)
    wd.parse_output([f"SideChain {FRESH_CHAIN}", f"NOTICE {SYNCHRONIZED}"])
    assert wd.record.state == S.SYNCING
    wd.parse_output([SYNCHRONIZED])
    assert wd.record.state == S.ALIVE


def test_pool_daemon_reads_shares(shared):
    wd = PoolDaemonWatchdog(shared)
    wd.parse_output(["Your shares               = 3 blocks (+0 uncles, 0 orphans)"])
    assert wd.shares == 3
    assert shared.snapshot(ProcessName.POOL_DAEMON).shares == 3


def test_pool_daemon_status_command(shared):
    wd = PoolDaemonWatchdog(shared)
    wd.child = MagicMock()
    syncing(wd.record)
    shared.config.pool_daemon.status_interval_sec = 0
    wd.on_tick()
    wd.child.write_line.assert_called_once_with("status")


# ---- hashing client / proxy ---------------------------------------------------

def test_hash_client_simple_args(shared):
    c = shared.config.hash_client
    c.token = "secret"
    c.pause = 30
    args = HashClientWatchdog(shared).build_args(StartMode.SIMPLE)
    assert "--http-access-token=secret" in args
    assert args[args.index("--url") + 1] == "127.0.0.1:3333"
    assert args[args.index("--http-port") + 1] == "18088"
    assert args[args.index("--pause-on-active") + 1] == "30"


def test_hash_client_advanced_args(shared):
    c = shared.config.hash_client
    c.simple = False
    c.tls = True
    c.port = 3355
    args = HashClientWatchdog(shared).build_args(c.mode)
    assert args[args.index("--url") + 1] == "127.0.0.1:3355"
    assert "--tls" in args
    assert "--keepalive" not in args


def test_hash_proxy_always_exposes_api(shared):
    c = shared.config.hash_proxy
    c.simple = False
    c.arguments = "-o localhost:3333"
    c.token = "t"
    args = HashProxyWatchdog(shared).build_args(c.mode)
    assert args == ["-o", "localhost:3333", "--http-access-token=t", "--http-no-restricted"]
    simple = HashProxyWatchdog(shared).build_args(StartMode.SIMPLE)
    assert simple[simple.index("-b") + 1] == "0.0.0.0:3355"


def test_xrig_output_states(shared):
    wd = HashClientWatchdog(shared)
    syncing(wd.record)
    wd.parse_output(["[2024] net      new job from 127.0.0.1:3333 diff 100"])
    assert wd.record.state == S.ALIVE
    wd.parse_output(["[2024] net      no active pools, stop mining"])
    assert wd.record.state == S.NOT_MINING


def test_xrig_detects_pool(shared):
    wd = HashClientWatchdog(shared)
    wd.parse_output(["[2024] net      use pool eu.xmrvsbeast.com:4247  TLSv1.3"])
    assert wd.current_pool == Pool.donation_eu()
    assert shared.snapshot(ProcessName.HASH_CLIENT).pool == "eu.xmrvsbeast.com:4247"


def test_dead_donation_pool_asks_for_new_nodes(shared, bring_alive):
    donation = bring_alive(shared.record(ProcessName.DONATION))
    wd = HashClientWatchdog(shared)
    wd.current_pool = Pool.donation_na()
    wd.parse_output(["[2024] net      na.xmrvsbeast.com:4247 connect error: \"connection refused\""])
    assert wd.current_pool is None
    assert donation.take_update_nodes() == Pool.donation_na()
    # one outage, one signal
    wd.parse_output(["[2024] net      na.xmrvsbeast.com:4247 read error: \"end of file\""])
    assert donation.take_update_nodes() is None


def test_dead_local_pool_is_not_reported(shared, bring_alive):
    donation = bring_alive(shared.record(ProcessName.DONATION))
    wd = HashClientWatchdog(shared)
    wd.current_pool = Pool.local(3333)
    wd.parse_output(["[2024] net      127.0.0.1:3333 connect error"])
    assert donation.take_update_nodes() is None


def test_proxy_handles_dead_pools_when_alive(shared, bring_alive):
    donation = bring_alive(shared.record(ProcessName.DONATION))
    bring_alive(shared.record(ProcessName.HASH_PROXY))
    wd = HashClientWatchdog(shared)
    wd.current_pool = Pool.donation_eu()
    wd.parse_output(["eu.xmrvsbeast.com:4247 DNS error"])
    assert donation.take_update_nodes() is None


def test_client_falls_back_when_proxy_dies(shared, bring_alive):
    bring_alive(shared.record(ProcessName.POOL_DAEMON))
    session = xmrig_session()
    wd = HashClientWatchdog(shared, session)
    wd.current_pool = Pool.proxy(3355)
    wd.on_tick()
    assert wd.current_pool == Pool.local(3333)
    sent = session.put.call_args[1]["json"]["pools"][0]
    assert sent["url"] == "127.0.0.1:3333"


def test_client_keeps_proxy_while_it_lives(shared, bring_alive):
    bring_alive(shared.record(ProcessName.POOL_DAEMON))
    bring_alive(shared.record(ProcessName.HASH_PROXY))
    session = xmrig_session()
    wd = HashClientWatchdog(shared, session)
    wd.current_pool = Pool.proxy(3355)
    wd.on_tick()
    assert wd.current_pool.kind == PoolKind.PROXY
    session.put.assert_not_called()


def test_hash_client_snapshot_from_api(shared):
    session = MagicMock()
    session.get.return_value.json.return_value = {"hashrate": {"total": [100.0, 200.0, 300.0]}}
    wd = HashClientWatchdog(shared, session)
    snap = wd.poll_api()
    assert snap.hashrate_15m == 300.0
    url = session.get.call_args[0][0]
    assert url == "http://127.0.0.1:18088/1/summary"
