import pytest

from rigwarden.errors import InvalidTransition
from rigwarden.events import EventLogger
from rigwarden.models import ProcessName, ProcessSignal, ProcessState as S
from rigwarden.pools import Pool
from rigwarden.process import ProcessRecord, can_transition


@pytest.fixture
def record():
    return ProcessRecord(ProcessName.NODE, events=EventLogger())


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (S.DEAD, S.MIDDLE, True),
        (S.DEAD, S.ALIVE, False),
        (S.MIDDLE, S.SYNCING, True),
        (S.SYNCING, S.ALIVE, True),
        (S.ALIVE, S.NOT_MINING, True),
        (S.NOT_MINING, S.ALIVE, True),
        (S.ALIVE, S.WAITING, False),
        (S.WAITING, S.SYNCING, True),
        (S.OFFLINE_POOLS_ALL, S.SYNCING, True),
        (S.FAILED, S.ALIVE, False),
        (S.ALIVE, S.ALIVE, True),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_new_record_is_dead_without_uptime(record):
    assert record.state == S.DEAD
    assert record.signal == ProcessSignal.NONE
    assert record.uptime() == 0.0


def test_start_request_moves_to_middle(record):
    assert record.request_start()
    assert record.state == S.MIDDLE
    assert record.signal == ProcessSignal.START


def test_same_state_is_a_noop(record):
    record.request_start()
    record.set_state(S.SYNCING)
    assert record.set_state(S.SYNCING) is False
    assert record.state == S.SYNCING


def test_illegal_edge_raises(record, bring_alive):
    bring_alive(record)
    with pytest.raises(InvalidTransition):
        record.set_state(S.WAITING)
    assert record.state == S.ALIVE


def test_try_set_state_ignores_illegal_edge(record):
    assert record.try_set_state(S.ALIVE) is False
    assert record.state == S.DEAD


def test_stop_only_when_running(record, bring_alive):
    assert record.request_stop() is False
    bring_alive(record)
    assert record.request_stop()
    assert record.state == S.MIDDLE
    assert record.signal == ProcessSignal.STOP


def test_restart_request(record, bring_alive):
    bring_alive(record)
    assert record.request_restart()
    assert record.signal == ProcessSignal.RESTART


def test_update_nodes_does_not_override_stop(record, bring_alive):
    bring_alive(record)
    record.request_stop()
    record.request_update_nodes(Pool.donation_eu())
    assert record.signal == ProcessSignal.STOP
    assert record.take_update_nodes() is None


def test_take_update_nodes_pops_pool(record, bring_alive):
    bring_alive(record)
    record.request_update_nodes(Pool.donation_na())
    assert record.take_update_nodes() == Pool.donation_na()
    assert record.signal == ProcessSignal.NONE
    assert record.take_update_nodes() is None


def test_state_changes_are_logged_as_events():
    events = EventLogger()
    rec = ProcessRecord(ProcessName.POOL_DAEMON, events=events)
    rec.request_start()
    rec.set_state(S.SYNCING, "spawned")
    changes = [e.ctx for e in events.list(process="pool_daemon") if e.message == "state changed"]
    assert changes[-1]["old"] == "middle"
    assert changes[-1]["new"] == "syncing"
    assert changes[-1]["reason"] == "spawned"


def test_input_queue_is_drained_once(record):
    record.push_input("status")
    record.push_input("help")
    assert record.drain_input() == ["status", "help"]
    assert record.drain_input() == []


def test_view_carries_console_tail(record):
    record.output("hello there")
    view = record.view(console_lines=10)
    assert view.name == ProcessName.NODE
    assert "Node | hello there" in view.console
    assert view.state == S.DEAD


def test_take_signal_consumes_it(record, bring_alive):
    bring_alive(record)
    record.request_stop()
    assert record.take_signal() == (ProcessSignal.STOP, None)
    assert record.signal == ProcessSignal.NONE


def test_output_cursor(record):
    record.append_output("\x1b[1mline one\x1b[0m")
    assert record.drain_new_output() == ["line one"]
    assert record.drain_new_output() == []
