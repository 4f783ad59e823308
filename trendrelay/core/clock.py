from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional, Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...


class SystemClock:
    """Wall clock in epoch milliseconds (the unit bots use for sync cursors)."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


def ms_to_iso(ms: Optional[int]) -> Optional[str]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def seconds_to_ms(seconds: float) -> int:
    return int(round(float(seconds) * 1000))
