# trendrelay/relay/state_store.py

from __future__ import annotations

import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, Optional

from trendrelay.core.clock import Clock
from trendrelay.core.errors import InvalidArgument
from trendrelay.core.scheduler import Scheduler
from trendrelay.relay.models import (
    BreakEvenCommand,
    RelaySnapshot,
    Scalar,
    TrendDirection,
    TrendState,
    parse_direction,
)

log = logging.getLogger("trendrelay.state")

_SCALAR_TYPES = (str, int, float, bool, type(None))


class StateStore:
    """
    Holds the single TrendState, the BreakEvenCommand and the last account
    snapshot reported by the controller.

    All state is volatile. Mutations go through the apply_* methods; readers
    get frozen copies from snapshot().
    """

    def __init__(
        self,
        clock: Clock,
        scheduler: Scheduler,
        *,
        force_close_reset_seconds: float = 5.0,
        breakeven_timeout_seconds: float = 10.0,
    ):
        self.clock = clock
        self.scheduler = scheduler
        self.force_close_reset_seconds = float(force_close_reset_seconds)
        self.breakeven_timeout_seconds = float(breakeven_timeout_seconds)

        self._trend = TrendState()
        self._break_even = BreakEvenCommand()
        self._account: Dict[str, Scalar] = {}
        self._account_updated_ms: Optional[int] = None

    # ---------- TREND ----------
    def apply_trend_change(self, new_direction: Any) -> TrendDirection:
        direction = parse_direction(new_direction)
        if direction is None:
            raise InvalidArgument("Invalid trend direction")

        old = self._trend.direction
        self._trend = replace(
            self._trend, direction=direction, last_update_ms=self.clock.now_ms()
        )
        log.info("trend changed: %s -> %s", old.value, direction.value)
        return old

    def apply_start_stop(self, active: bool) -> bool:
        old = self._trend.is_active
        self._trend = replace(
            self._trend, is_active=bool(active), last_update_ms=self.clock.now_ms()
        )
        log.info("trading %s", "started" if active else "stopped")
        return old

    def apply_force_close(self, close: bool) -> bool:
        old = self._trend.force_close
        self._trend = replace(
            self._trend, force_close=bool(close), last_update_ms=self.clock.now_ms()
        )
        log.info("force close %s", "activated" if close else "deactivated")

        if close:
            # last write wins: this timer fires even if force close was re-armed since
            self.scheduler.call_later(
                self.force_close_reset_seconds, self._auto_reset_force_close
            )
        return old

    def _auto_reset_force_close(self) -> None:
        self._trend = replace(self._trend, force_close=False)
        log.info("force close auto-reset")

    def apply_status_update(
        self,
        direction: Any = None,
        active: Optional[bool] = None,
        force_close: Optional[bool] = None,
    ) -> TrendState:
        """
        Applies whichever fields are present. An unknown direction is ignored
        rather than rejected.
        """
        changes: Dict[str, Any] = {"last_update_ms": self.clock.now_ms()}

        parsed = parse_direction(direction)
        if parsed is not None:
            changes["direction"] = parsed
        elif direction is not None:
            log.debug("status update: ignoring unknown direction %r", direction)

        if active is not None:
            changes["is_active"] = bool(active)
        if force_close is not None:
            changes["force_close"] = bool(force_close)

        self._trend = replace(self._trend, **changes)
        log.info(
            "status updated: trend=%s active=%s force_close=%s",
            self._trend.direction.value,
            self._trend.is_active,
            self._trend.force_close,
        )
        return self._trend

    # ---------- BREAK EVEN ----------
    def activate_break_even(self) -> None:
        self._break_even = BreakEvenCommand(active=True, issued_at_ms=self.clock.now_ms())
        log.info("break-even close activated")
        self.scheduler.call_later(
            self.breakeven_timeout_seconds, self._auto_reset_break_even
        )

    def _auto_reset_break_even(self) -> None:
        if self._break_even.active:
            self._break_even = replace(self._break_even, active=False)
            log.info("break-even close auto-reset (not confirmed in time)")

    def confirm_break_even(self) -> bool:
        was_active = self._break_even.active
        self._break_even = replace(self._break_even, active=False)
        return was_active

    # ---------- ACCOUNT ----------
    def update_account_info(self, payload: Any) -> bool:
        """
        Replaces the controller account snapshot wholesale. Nested values are
        dropped; a payload that is not a mapping is ignored.
        """
        if not isinstance(payload, dict):
            return False

        account: Dict[str, Scalar] = {}
        for k, v in payload.items():
            if isinstance(v, _SCALAR_TYPES):
                account[str(k)] = v
            else:
                log.debug("account info: dropping non-scalar field %r", k)

        self._account = account
        self._account_updated_ms = self.clock.now_ms()
        log.info(
            "controller account updated: balance=%s equity=%s",
            account.get("balance"),
            account.get("equity"),
        )
        return True

    # ---------- READ / RESET ----------
    @property
    def trend(self) -> TrendState:
        return self._trend

    @property
    def break_even(self) -> BreakEvenCommand:
        return self._break_even

    def snapshot(self) -> RelaySnapshot:
        return RelaySnapshot(
            trend=self._trend,
            break_even=self._break_even,
            account=MappingProxyType(dict(self._account)),
            account_updated_ms=self._account_updated_ms,
        )

    def reset(self) -> None:
        self._trend = TrendState()
        self._break_even = BreakEvenCommand()
        self._account = {}
        self._account_updated_ms = None
