import pytest

from trendrelay.relay.command_log import CommandLog
from trendrelay.relay.models import CommandRecord, CommandType


def _rec(i: int) -> CommandRecord:
    return CommandRecord(CommandType.STATUS_UPDATE, {"seq": i})


@pytest.fixture
def cmd_log(clock):
    return CommandLog(clock, max_entries=50)


def test_append_stamps_timestamp(cmd_log, clock):
    rec = cmd_log.append(_rec(0))
    assert rec.timestamp_ms == clock.now_ms()


def test_append_keeps_explicit_timestamp(cmd_log, clock):
    rec = cmd_log.append(CommandRecord(CommandType.FORCE_CLOSE, {}, timestamp_ms=clock.now_ms() + 5))
    assert rec.timestamp_ms == clock.now_ms() + 5


def test_log_never_exceeds_max_entries(cmd_log, clock):
    for i in range(60):
        clock.advance(0.001)
        cmd_log.append(_rec(i))

    assert len(cmd_log) == 50
    seqs = [r.payload["seq"] for r in cmd_log.since()]
    assert seqs == list(range(10, 60))


def test_since_is_strictly_after_cursor_and_ordered(cmd_log, clock):
    stamps = []
    for i in range(5):
        clock.advance(1)
        stamps.append(cmd_log.append(_rec(i)).timestamp_ms)

    out = cmd_log.since(stamps[1])
    assert [r.payload["seq"] for r in out] == [2, 3, 4]
    assert cmd_log.since(stamps[-1]) == []
    assert len(cmd_log.since()) == 5


def test_since_includes_same_millisecond_records_after_earlier_cursor(cmd_log, clock):
    cursor = clock.now_ms() - 1
    cmd_log.append(_rec(0))
    cmd_log.append(_rec(1))
    assert len(cmd_log.since(cursor)) == 2


def test_sweep_removes_at_or_before_cutoff(cmd_log, clock):
    first = cmd_log.append(_rec(0)).timestamp_ms
    clock.advance(1)
    cmd_log.append(_rec(1))

    assert cmd_log.sweep(first) == 1
    assert [r.payload["seq"] for r in cmd_log.since()] == [1]


def test_backwards_clock_is_clamped(cmd_log, clock):
    a = cmd_log.append(_rec(0))
    clock.advance(-2)
    b = cmd_log.append(_rec(1))
    assert b.timestamp_ms == a.timestamp_ms


def test_records_are_immutable(cmd_log):
    payload = {"seq": 1}
    rec = cmd_log.append(CommandRecord(CommandType.STATUS_UPDATE, payload))
    payload["seq"] = 2

    assert rec.payload["seq"] == 1
    with pytest.raises(TypeError):
        rec.payload["seq"] = 3


def test_tail_and_counts(cmd_log):
    cmd_log.append(CommandRecord(CommandType.TREND_CHANGE, {}))
    cmd_log.append(CommandRecord(CommandType.TREND_CHANGE, {}))
    cmd_log.append(CommandRecord(CommandType.BOT_CONFIRMATION, {}))

    assert cmd_log.counts_by_type() == {"trend_change": 2, "bot_confirmation": 1}
    assert [r.command_type for r in cmd_log.tail(1)] == [CommandType.BOT_CONFIRMATION]
    assert cmd_log.tail(0) == []


def test_wire_format(cmd_log):
    rec = cmd_log.append(
        CommandRecord(CommandType.BOT_CONFIRMATION, {"originalCommand": "remote_trade"})
    )
    d = rec.to_dict()
    assert d["commandType"] == "bot_confirmation"
    assert d["action"] == "bot_confirm"
    assert d["originalCommand"] == "remote_trade"
    assert d["timestampMs"] == rec.timestamp_ms
    assert d["timestamp"].startswith("2023-")
