import re

import pytest

from trendrelay.core.errors import InvalidArgument
from trendrelay.relay.models import TradeType
from trendrelay.relay.trade_signals import TradeSignalRegistry


@pytest.fixture
def registry(clock, scheduler):
    return TradeSignalRegistry(clock, scheduler, ttl_seconds=5)


def test_submit_sets_window_and_id(registry, clock):
    sig = registry.submit("BUY")
    assert sig.type == TradeType.BUY
    assert sig.created_at_ms == clock.now_ms()
    assert sig.expires_at_ms == clock.now_ms() + 5000
    assert sig.executed is False
    assert re.fullmatch(r"\d+_[0-9a-z]{9}", sig.id)
    assert sig.id.startswith(str(clock.now_ms()))


@pytest.mark.parametrize("bad", [None, "", "HOLD", "BOTH", "buy", " SELL ", 1])
def test_submit_rejects_bad_type(registry, bad):
    with pytest.raises(InvalidArgument):
        registry.submit(bad)
    assert len(registry) == 0


def test_pending_until_expiry_then_removed(registry, scheduler):
    sig = registry.submit("SELL")

    scheduler.advance(4.999)
    assert [s.id for s in registry.list_pending()] == [sig.id]

    scheduler.advance(0.001)
    assert registry.list_pending() == []
    assert sig.id not in registry


def test_sweep_removes_expired_unexecuted(registry, clock):
    sig = registry.submit("BUY")
    assert registry.sweep(clock.now_ms() + 4999) == 0
    assert registry.sweep(sig.expires_at_ms) == 1
    assert len(registry) == 0


def test_sweep_removes_executed_regardless_of_expiry(registry, clock):
    sig = registry.submit("BUY")
    registry.confirm(sig.id)
    assert registry.sweep(clock.now_ms()) == 1


def test_executed_signal_survives_expiry_timer(registry, scheduler):
    sig = registry.submit("BUY")
    assert registry.confirm(sig.id) is True

    scheduler.advance(5)
    assert sig.id in registry
    assert registry.list_pending() == []


def test_confirm_is_tolerant(registry, scheduler):
    sig = registry.submit("BUY")
    assert registry.confirm(sig.id) is True
    assert registry.confirm(sig.id) is False
    assert registry.confirm("does-not-exist") is False
    assert registry.confirm(None) is False


def test_confirm_never_readds_removed_signal(registry, scheduler):
    sig = registry.submit("SELL")
    scheduler.advance(5)
    assert registry.confirm(sig.id) is False
    assert len(registry) == 0


def test_duplicate_generated_id_is_not_overwritten(registry, monkeypatch):
    ids = iter(["1_aaaaaaaaa", "1_aaaaaaaaa", "1_bbbbbbbbb"])
    monkeypatch.setattr(registry, "_new_id", lambda now_ms: next(ids))

    first = registry.submit("BUY")
    second = registry.submit("SELL")

    assert first.id == "1_aaaaaaaaa"
    assert second.id == "1_bbbbbbbbb"
    assert len(registry) == 2


def test_list_pending_returns_copies(registry):
    registry.submit("BUY")
    registry.list_pending()[0].executed = True
    assert len(registry.list_pending()) == 1
