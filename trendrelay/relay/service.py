# trendrelay/relay/service.py
from __future__ import annotations

import hmac
import logging
import math
import re
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from trendrelay.core.clock import Clock, SystemClock, ms_to_iso, seconds_to_ms
from trendrelay.core.config import Settings
from trendrelay.core.errors import InvalidArgument, Unauthorized
from trendrelay.core.scheduler import Scheduler
from trendrelay.relay.command_log import CommandLog
from trendrelay.relay.liveness import BotLivenessRegistry
from trendrelay.relay.models import CommandRecord, CommandType, parse_flag
from trendrelay.relay.state_store import StateStore
from trendrelay.relay.trade_signals import TradeSignalRegistry

log = logging.getLogger("trendrelay.relay")

STATS_TAIL = 10
STATS_ID_PREFIX = 20


class _LockedScheduler:
    """Runs every timer callback inside the relay's critical section."""

    def __init__(self, inner: Scheduler, lock: threading.RLock):
        self.inner = inner
        self.lock = lock

    def _wrap(self, callback: Callable[[], None]) -> Callable[[], None]:
        def _run() -> None:
            with self.lock:
                callback()

        return _run

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self.inner.call_later(delay_seconds, self._wrap(callback))

    def call_every(self, interval_seconds: float, callback: Callable[[], None]) -> None:
        self.inner.call_every(interval_seconds, self._wrap(callback))

    def cancel_all(self) -> None:
        self.inner.cancel_all()


def _key_matches(presented: Any, expected: str) -> bool:
    if not expected or not isinstance(presented, str):
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


_CURSOR_PREFIX = re.compile(r"\s*([+-]?\d+)")


def parse_cursor(since: Any) -> Optional[int]:
    """
    Sync cursor in epoch ms. None/"" means no cursor. A leading integer is
    enough ("1700000000000.5" reads as 1700000000000); text without one is
    rejected.
    """
    if since is None:
        return None
    if isinstance(since, bool):
        raise InvalidArgument("since must be epoch milliseconds")
    if isinstance(since, int):
        return since
    if isinstance(since, float):
        if not math.isfinite(since):
            raise InvalidArgument("since must be epoch milliseconds")
        return int(since)
    s = str(since)
    if not s.strip():
        return None
    m = _CURSOR_PREFIX.match(s)
    if m is None:
        raise InvalidArgument("since must be epoch milliseconds")
    return int(m.group(1))


class RelayCore:
    """
    Protocol façade over the four in-memory stores.

    One instance per process. Every public operation (and every timer
    callback) runs under a single re-entrant lock, so each operation is atomic
    with respect to the others.
    """

    def __init__(
        self,
        settings: Settings,
        scheduler: Scheduler,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self._lock = threading.RLock()
        self.scheduler = _LockedScheduler(scheduler, self._lock)

        self.state = StateStore(
            self.clock,
            self.scheduler,
            force_close_reset_seconds=settings.FORCE_CLOSE_RESET_SECONDS,
            breakeven_timeout_seconds=settings.BREAKEVEN_TIMEOUT_SECONDS,
        )
        self.commands = CommandLog(self.clock, max_entries=settings.COMMAND_LOG_MAX_ENTRIES)
        self.signals = TradeSignalRegistry(
            self.clock, self.scheduler, ttl_seconds=settings.TRADE_SIGNAL_TTL_SECONDS
        )
        self.bots = BotLivenessRegistry(self.clock)

        self.started_at_ms = self.clock.now_ms()

        self._dispatch: Dict[str, Callable[[Mapping[str, Any]], None]] = {
            CommandType.TREND_CHANGE.value: self._on_trend_change,
            CommandType.START_STOP.value: self._on_start_stop,
            CommandType.FORCE_CLOSE.value: self._on_force_close,
            CommandType.REMOTE_TRADE.value: self._on_remote_trade,
            CommandType.BREAKEVEN_CLOSE.value: self._on_breakeven_close,
            CommandType.STATUS_UPDATE.value: self._on_status_update,
        }

    # ------------------------------------------------------------------
    # auth
    # ------------------------------------------------------------------
    def _require_controller(self, credential: Any) -> None:
        if not _key_matches(credential, self.settings.CONTROLLER_KEY):
            log.warning("rejected controller request: bad controller key")
            raise Unauthorized("Valid controller key required")

    def _require_bot(self, credential: Any) -> None:
        if not _key_matches(credential, self.settings.BOT_KEY):
            log.warning("rejected bot request: bad bot key")
            raise Unauthorized("Valid bot key required")

    # ------------------------------------------------------------------
    # controller: submit command
    # ------------------------------------------------------------------
    def submit_command(
        self, credential: Any, action: Any, payload: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        payload = payload or {}
        with self._lock:
            self._require_controller(credential)

            handler = self._dispatch.get(str(action)) if action is not None else None
            if handler is None:
                self._on_unknown(action)
            else:
                handler(payload)

            return self.current_state()

    def _on_unknown(self, action: Any) -> None:
        # accepted on purpose: newer controllers may send actions we don't know yet
        log.warning("unknown action %r ignored", action)

    def _update_account(self, payload: Mapping[str, Any]) -> None:
        account = payload.get("account")
        if account is not None:
            self.state.update_account_info(account)

    def _on_trend_change(self, payload: Mapping[str, Any]) -> None:
        old = self.state.apply_trend_change(payload.get("trend"))
        self.commands.append(
            CommandRecord(
                CommandType.TREND_CHANGE,
                {"oldTrend": old.value, "newTrend": self.state.trend.direction.value},
            )
        )
        self._update_account(payload)

    def _on_start_stop(self, payload: Mapping[str, Any]) -> None:
        is_start = parse_flag(payload.get("active"))
        old = self.state.apply_start_stop(is_start)
        self.commands.append(
            CommandRecord(
                CommandType.START_STOP,
                {
                    "oldStatus": old,
                    "newStatus": is_start,
                    "command": "START" if is_start else "STOP",
                },
            )
        )
        self._update_account(payload)

    def _on_force_close(self, payload: Mapping[str, Any]) -> None:
        should_close = parse_flag(payload.get("forceclose"))
        self.state.apply_force_close(should_close)
        self.commands.append(
            CommandRecord(CommandType.FORCE_CLOSE, {"forceClose": should_close})
        )
        self._update_account(payload)

    def _on_remote_trade(self, payload: Mapping[str, Any]) -> None:
        sig = self.signals.submit(payload.get("tradeType"))
        self.commands.append(
            CommandRecord(
                CommandType.REMOTE_TRADE,
                {"tradeId": sig.id, "tradeType": sig.type.value},
            )
        )

    def _on_breakeven_close(self, payload: Mapping[str, Any]) -> None:
        self.state.activate_break_even()
        self.commands.append(CommandRecord(CommandType.BREAKEVEN_CLOSE))

    def _on_status_update(self, payload: Mapping[str, Any]) -> None:
        st = self.state.apply_status_update(
            direction=payload.get("trend"),
            active=parse_flag(payload["active"]) if "active" in payload else None,
            force_close=(
                parse_flag(payload["forceclose"]) if "forceclose" in payload else None
            ),
        )
        self.commands.append(
            CommandRecord(
                CommandType.STATUS_UPDATE,
                {
                    "trend": st.direction.value,
                    "active": st.is_active,
                    "forceClose": st.force_close,
                },
            )
        )
        self._update_account(payload)

    def current_state(self) -> Dict[str, Any]:
        with self._lock:
            trend = self.state.trend
            return {
                "trend": trend.direction.value,
                "active": trend.is_active,
                "forceClose": trend.force_close,
                "breakEvenActive": self.state.break_even.active,
                "pendingTrades": len(self.signals.list_pending()),
                "lastUpdate": ms_to_iso(trend.last_update_ms),
            }

    # ------------------------------------------------------------------
    # bot: sync / confirm / status
    # ------------------------------------------------------------------
    def fetch_sync(
        self,
        credential: Any,
        address: Optional[str] = None,
        agent_label: Optional[str] = None,
        since: Any = None,
    ) -> Dict[str, Any]:
        with self._lock:
            self._require_bot(credential)
            cursor = parse_cursor(since)
            self.bots.touch(address, agent_label)

            snap = self.state.snapshot()
            pending = self.signals.list_pending()
            out = {
                "currentTrend": snap.trend.to_dict(),
                "recentCommands": [r.to_dict() for r in self.commands.since(cursor)],
                "remoteTrades": [s.to_dict() for s in pending],
                "breakEvenCommand": snap.break_even.to_dict(),
                "controllerAccount": snap.account_dict(),
                "serverTime": self.clock.now_ms(),
            }
            log.debug(
                "sync sent: trend=%s remote_trades=%d break_even=%s",
                snap.trend.direction.value,
                len(pending),
                snap.break_even.active,
            )
            return out

    def confirm_execution(
        self,
        credential: Any,
        address: Optional[str] = None,
        agent_label: Optional[str] = None,
        *,
        command_type: Any = None,
        status: Any = None,
        message: Any = None,
        trade_id: Any = None,
    ) -> Dict[str, Any]:
        with self._lock:
            self._require_bot(credential)
            self.bots.touch(address, agent_label)

            if command_type == CommandType.REMOTE_TRADE.value and trade_id:
                self.signals.confirm(trade_id)
            elif command_type == CommandType.BREAKEVEN_CLOSE.value:
                if self.state.confirm_break_even():
                    log.info("break-even close executed")

            self.commands.append(
                CommandRecord(
                    CommandType.BOT_CONFIRMATION,
                    {
                        "originalCommand": command_type,
                        "confirmationStatus": status,
                        "message": message,
                        "tradeId": trade_id,
                    },
                )
            )
            log.info(
                "bot confirmation: %s -> %s (%s)", command_type, status, message or "no message"
            )
            return {"status": "confirmed"}

    def verify_bot(self, credential: Any) -> Dict[str, Any]:
        with self._lock:
            self._require_bot(credential)
            return {
                "status": "authorized",
                "message": "Bot key valid",
                "serverTime": self.clock.now_ms(),
                "currentTrend": self.state.trend.to_dict(),
            }

    def trend_status(
        self,
        credential: Any,
        address: Optional[str] = None,
        agent_label: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            self._require_bot(credential)
            self.bots.touch(address, agent_label)
            out = self.current_state()
            out["serverTime"] = self.clock.now_ms()
            return out

    # ------------------------------------------------------------------
    # controller: reset
    # ------------------------------------------------------------------
    def reset(self, credential: Any) -> Dict[str, Any]:
        with self._lock:
            self._require_controller(credential)
            self.state.reset()
            self.signals.clear()
            self.commands.clear()
            self.bots.clear()
            log.info("complete reset: all relay state cleared")
            return {"status": "success", "message": "Complete reset performed"}

    # ------------------------------------------------------------------
    # read-only views (public)
    # ------------------------------------------------------------------
    def health(self) -> Dict[str, Any]:
        with self._lock:
            snap = self.state.snapshot()
            return {
                "status": "online",
                "time": ms_to_iso(self.clock.now_ms()),
                "currentTrend": snap.trend.direction.value,
                "isActive": snap.trend.is_active,
                "forceClose": snap.trend.force_close,
                "connectedBots": self.bots.active_count(),
                "recentCommands": len(self.commands),
                "remoteTrades": len(self.signals),
                "breakEvenActive": snap.break_even.active,
                "controllerAccount": snap.account.get("number") or "N/A",
            }

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now_ms = self.clock.now_ms()
            self.bots.evict_idle(now_ms, seconds_to_ms(self.settings.BOT_IDLE_SECONDS))

            snap = self.state.snapshot()
            return {
                "summary": {
                    "currentTrend": snap.trend.direction.value,
                    "isActive": snap.trend.is_active,
                    "forceClose": snap.trend.force_close,
                    "breakEvenActive": snap.break_even.active,
                    "pendingRemoteTrades": len(self.signals.list_pending()),
                    "lastUpdate": ms_to_iso(snap.trend.last_update_ms),
                    "connectedBots": self.bots.active_count(),
                    "recentCommands": len(self.commands),
                },
                "commandStats": self.commands.counts_by_type(),
                "recentCommands": [r.to_dict() for r in self.commands.tail(STATS_TAIL)],
                "remoteTrades": [s.to_dict() for s in self.signals.all()],
                "controllerAccount": snap.account_dict(),
                "connectedBots": [
                    {
                        "id": e.identity[:STATS_ID_PREFIX] + "...",
                        "lastAccess": ms_to_iso(e.last_access_ms),
                        "ip": e.address,
                    }
                    for e in self.bots.list()
                ],
                "serverUptime": (now_ms - self.started_at_ms) / 1000.0,
            }

    def debug(self) -> Dict[str, Any]:
        with self._lock:
            snap = self.state.snapshot()
            return {
                "currentTrend": snap.trend.to_dict(),
                "remoteTrades": [s.to_dict() for s in self.signals.all()],
                "breakEvenCommand": snap.break_even.to_dict(),
                "recentCommands": [r.to_dict() for r in self.commands.since()],
                "controllerAccount": snap.account_dict(),
                "connectedBots": {e.identity: e.to_dict() for e in self.bots.list()},
            }

    # ------------------------------------------------------------------
    # background sweeps
    # ------------------------------------------------------------------
    def sweep_signals(self) -> int:
        with self._lock:
            before = len(self.signals)
            removed = self.signals.sweep(self.clock.now_ms())
            if removed:
                log.info("cleanup remote trades: %d -> %d", before, before - removed)
            return removed

    def sweep_maintenance(self) -> Dict[str, int]:
        with self._lock:
            now_ms = self.clock.now_ms()
            cutoff = now_ms - seconds_to_ms(self.settings.COMMAND_LOG_RETENTION_SECONDS)
            commands_removed = self.commands.sweep(cutoff)
            if commands_removed:
                log.info("cleanup old commands: removed %d", commands_removed)

            bots_removed = self.bots.evict_idle(
                now_ms, seconds_to_ms(self.settings.BOT_IDLE_SECONDS)
            )
            if bots_removed:
                log.info("cleanup idle bots: removed %d", bots_removed)

            return {"commands": commands_removed, "bots": bots_removed}

    def start_background_sweeps(self) -> None:
        self.scheduler.call_every(
            self.settings.SIGNAL_SWEEP_INTERVAL_SECONDS, self.sweep_signals
        )
        self.scheduler.call_every(
            self.settings.MAINTENANCE_SWEEP_INTERVAL_SECONDS, self.sweep_maintenance
        )

    def stop_background_tasks(self) -> None:
        self.scheduler.cancel_all()
