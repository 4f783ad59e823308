# trendrelay/relay/trade_signals.py
from __future__ import annotations

import logging
import random
import string
from collections import OrderedDict
from dataclasses import replace
from typing import Any, List

from trendrelay.core.clock import Clock, seconds_to_ms
from trendrelay.core.errors import InvalidArgument
from trendrelay.core.scheduler import Scheduler
from trendrelay.relay.models import RemoteTradeSignal, parse_trade_type

log = logging.getLogger("trendrelay.signals")

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LEN = 9
_MAX_ID_ATTEMPTS = 8


class TradeSignalRegistry:
    """
    One-shot remote trade signals.

    A signal lives until a bot confirms it or its TTL runs out. Expiry is
    enforced twice: a deferred check scheduled on submit, and sweep(). Both
    are idempotent, so whichever runs first wins.
    """

    def __init__(self, clock: Clock, scheduler: Scheduler, ttl_seconds: float = 5.0):
        self.clock = clock
        self.scheduler = scheduler
        self.ttl_seconds = float(ttl_seconds)
        self._signals: "OrderedDict[str, RemoteTradeSignal]" = OrderedDict()
        self._rng = random.SystemRandom()

    def _new_id(self, now_ms: int) -> str:
        suffix = "".join(self._rng.choice(_ID_ALPHABET) for _ in range(_ID_SUFFIX_LEN))
        return f"{now_ms}_{suffix}"

    def submit(self, trade_type: Any) -> RemoteTradeSignal:
        tt = parse_trade_type(trade_type)
        if tt is None:
            raise InvalidArgument("Invalid trade type (BUY/SELL required)")

        now_ms = self.clock.now_ms()

        signal_id = self._new_id(now_ms)
        attempts = 1
        while signal_id in self._signals:
            if attempts >= _MAX_ID_ATTEMPTS:
                raise RuntimeError("could not generate a unique trade signal id")
            signal_id = self._new_id(now_ms)
            attempts += 1

        sig = RemoteTradeSignal(
            id=signal_id,
            type=tt,
            created_at_ms=now_ms,
            expires_at_ms=now_ms + seconds_to_ms(self.ttl_seconds),
        )
        self._signals[signal_id] = sig
        log.info("remote trade %s id=%s (expires in %ss)", tt.value, signal_id, self.ttl_seconds)

        self.scheduler.call_later(self.ttl_seconds, lambda: self._expire(signal_id))
        return sig

    def _expire(self, signal_id: str) -> None:
        sig = self._signals.get(signal_id)
        if sig is not None and not sig.executed:
            del self._signals[signal_id]
            log.info("remote trade expired: %s", signal_id)

    def confirm(self, signal_id: Any) -> bool:
        """
        Marks a signal executed. Unknown or already executed ids are a no-op.
        """
        if not signal_id:
            return False
        sig = self._signals.get(str(signal_id))
        if sig is None:
            log.debug("confirm for unknown trade id %s ignored", signal_id)
            return False
        if sig.executed:
            return False
        sig.executed = True
        log.info("remote trade executed: %s", signal_id)
        return True

    def list_pending(self) -> List[RemoteTradeSignal]:
        return [replace(s) for s in self._signals.values() if not s.executed]

    def all(self) -> List[RemoteTradeSignal]:
        return [replace(s) for s in self._signals.values()]

    def sweep(self, now_ms: int) -> int:
        before = len(self._signals)
        for signal_id in [
            sid
            for sid, s in self._signals.items()
            if s.executed or s.is_expired(now_ms)
        ]:
            del self._signals[signal_id]
        return before - len(self._signals)

    def clear(self) -> None:
        self._signals.clear()

    def __len__(self) -> int:
        return len(self._signals)

    def __contains__(self, signal_id: object) -> bool:
        return signal_id in self._signals
