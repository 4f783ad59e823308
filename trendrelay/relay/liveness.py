from __future__ import annotations

from typing import Dict, List, Optional

from trendrelay.core.clock import Clock
from trendrelay.relay.models import BotLivenessEntry, bot_identity


class BotLivenessRegistry:
    """Last-seen time per bot identity (client address + agent label)."""

    def __init__(self, clock: Clock):
        self.clock = clock
        self._entries: Dict[str, BotLivenessEntry] = {}

    def touch(self, address: Optional[str], agent_label: Optional[str]) -> str:
        identity = bot_identity(address, agent_label)
        self._entries[identity] = BotLivenessEntry(
            identity=identity,
            address=address or "unknown",
            agent_label=agent_label or "unknown",
            last_access_ms=self.clock.now_ms(),
        )
        return identity

    def active_count(self) -> int:
        return len(self._entries)

    def list(self) -> List[BotLivenessEntry]:
        return list(self._entries.values())

    def evict_idle(self, now_ms: int, idle_ms: int = 5 * 60 * 1000) -> int:
        cutoff = now_ms - idle_ms
        stale = [k for k, e in self._entries.items() if e.last_access_ms < cutoff]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
