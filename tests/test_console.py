from rigwarden.console import ConsoleBuffer, trailer


def test_evicts_oldest_lines_past_line_cap():
    buf = ConsoleBuffer(max_lines=3)
    for i in range(5):
        buf.append(f"line {i}")
    assert len(buf) == 3
    assert buf.tail(10) == ["line 2", "line 3", "line 4"]
    assert buf.evicted == 2


def test_evicts_past_char_cap():
    buf = ConsoleBuffer(max_lines=100, max_chars=10)
    for _ in range(3):
        buf.append("abcd")
    assert len(buf) == 2
    assert buf.chars == 10


def test_drain_new_returns_each_line_once():
    buf = ConsoleBuffer()
    buf.extend(["a", "b"])
    assert buf.drain_new() == ["a", "b"]
    buf.append("c")
    assert buf.drain_new() == ["c"]
    assert buf.drain_new() == []
    assert buf.text() == "a\nb\nc"


def test_strips_ansi_and_line_endings():
    buf = ConsoleBuffer()
    buf.append("\x1b[32mSideChain SYNCHRONIZED\x1b[0m\r\n")
    assert buf.tail(1) == ["SideChain SYNCHRONIZED"]


def test_write_block_splits_lines():
    buf = ConsoleBuffer()
    buf.write_block("one\ntwo")
    assert buf.tail(5) == ["one", "two"]


def test_clear_resets_everything():
    buf = ConsoleBuffer()
    buf.append("x")
    buf.clear()
    assert len(buf) == 0
    assert buf.chars == 0
    assert buf.drain_new() == []


def test_trailer_format():
    text = trailer("P2Pool", "stopped", "5 seconds", "Successful")
    lines = text.split("\n")
    assert len(lines) == 3
    assert lines[1] == "P2Pool stopped | Uptime: [5 seconds] | Exit status: [Successful]"
    assert set(lines[0]) == {"-"}
