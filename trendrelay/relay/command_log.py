from __future__ import annotations

from collections import Counter
from dataclasses import replace
from typing import Dict, List, Optional

from trendrelay.core.clock import Clock
from trendrelay.relay.models import CommandRecord


class CommandLog:
    """
    Append-only log of the most recent commands.

    Bounded two ways: at most max_entries records (oldest dropped first), and
    sweep() drops anything at or before a cutoff. Timestamps never go
    backwards in append order, so since() is a plain ordered filter.
    """

    def __init__(self, clock: Clock, max_entries: int = 50):
        self.clock = clock
        self.max_entries = int(max_entries)
        self._records: List[CommandRecord] = []

    def append(self, record: CommandRecord) -> CommandRecord:
        ts = record.timestamp_ms
        if ts is None:
            ts = self.clock.now_ms()

        # clamp a backwards wall-clock step
        if self._records and ts < self._records[-1].timestamp_ms:
            ts = self._records[-1].timestamp_ms

        if ts != record.timestamp_ms:
            record = replace(record, timestamp_ms=ts)

        self._records.append(record)
        if len(self._records) > self.max_entries:
            del self._records[: len(self._records) - self.max_entries]
        return record

    def since(self, cursor_ms: Optional[int] = None) -> List[CommandRecord]:
        if cursor_ms is None:
            return list(self._records)
        return [r for r in self._records if r.timestamp_ms > cursor_ms]

    def sweep(self, cutoff_ms: int) -> int:
        before = len(self._records)
        self._records = [r for r in self._records if r.timestamp_ms > cutoff_ms]
        return before - len(self._records)

    def tail(self, n: int) -> List[CommandRecord]:
        if n <= 0:
            return []
        return list(self._records[-n:])

    def counts_by_type(self) -> Dict[str, int]:
        return dict(Counter(r.command_type.value for r in self._records))

    def clear(self) -> None:
        self._records = []

    def __len__(self) -> int:
        return len(self._records)
