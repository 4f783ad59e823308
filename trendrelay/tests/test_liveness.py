from trendrelay.relay.liveness import BotLivenessRegistry


def test_touch_is_idempotent_per_identity(clock):
    reg = BotLivenessRegistry(clock)
    a = reg.touch("10.0.0.1", "MetaTrader 5")
    clock.advance(1)
    b = reg.touch("10.0.0.1", "MetaTrader 5")

    assert a == b == "10.0.0.1_MetaTrader 5"
    assert reg.active_count() == 1
    assert reg.list()[0].last_access_ms == clock.now_ms()


def test_identity_combines_address_and_agent(clock):
    reg = BotLivenessRegistry(clock)
    reg.touch("10.0.0.1", "MetaTrader 5")
    reg.touch("10.0.0.1", None)
    reg.touch("10.0.0.2", "MetaTrader 5")

    ids = sorted(e.identity for e in reg.list())
    assert ids == ["10.0.0.1_MetaTrader 5", "10.0.0.1_unknown", "10.0.0.2_MetaTrader 5"]


def test_evict_idle(clock):
    reg = BotLivenessRegistry(clock)
    reg.touch("10.0.0.1", "old")
    clock.advance(200)
    reg.touch("10.0.0.2", "fresh")
    clock.advance(101)

    removed = reg.evict_idle(clock.now_ms(), idle_ms=300_000)
    assert removed == 1
    assert [e.agent_label for e in reg.list()] == ["fresh"]


def test_entry_exactly_at_cutoff_is_kept(clock):
    reg = BotLivenessRegistry(clock)
    reg.touch("10.0.0.1", "edge")
    clock.advance(300)
    assert reg.evict_idle(clock.now_ms(), idle_ms=300_000) == 0
