# trendrelay/relay/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

from trendrelay.core.clock import ms_to_iso

Scalar = Union[str, int, float, bool, None]


class TrendDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    BOTH = "BOTH"
    NONE = "NONE"


class TradeType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class CommandType(str, Enum):
    TREND_CHANGE = "trend_change"
    START_STOP = "start_stop"
    FORCE_CLOSE = "force_close"
    REMOTE_TRADE = "remote_trade"
    BREAKEVEN_CLOSE = "breakeven_close"
    STATUS_UPDATE = "status_update"
    BOT_CONFIRMATION = "bot_confirmation"


# older controllers send the Italian spelling for BOTH
_DIRECTION_ALIASES = {"ENTRAMBI": TrendDirection.BOTH}


def parse_direction(v: Any) -> Optional[TrendDirection]:
    """Returns None when v is not a known trend direction. Matching is exact."""
    if isinstance(v, TrendDirection):
        return v
    if not isinstance(v, str):
        return None
    if v in _DIRECTION_ALIASES:
        return _DIRECTION_ALIASES[v]
    try:
        return TrendDirection(v)
    except ValueError:
        return None


def parse_trade_type(v: Any) -> Optional[TradeType]:
    if isinstance(v, TradeType):
        return v
    if not isinstance(v, str):
        return None
    try:
        return TradeType(v)
    except ValueError:
        return None


def parse_flag(v: Any) -> bool:
    """True for True or the exact string "true"; everything else is False."""
    if isinstance(v, bool):
        return v
    return v == "true"


@dataclass(frozen=True)
class TrendState:
    direction: TrendDirection = TrendDirection.NONE
    is_active: bool = False
    force_close: bool = False
    last_update_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "isActive": self.is_active,
            "forceClose": self.force_close,
            "lastUpdate": ms_to_iso(self.last_update_ms),
        }


@dataclass(frozen=True)
class BreakEvenCommand:
    active: bool = False
    issued_at_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"active": self.active, "timestamp": ms_to_iso(self.issued_at_ms)}


@dataclass
class RemoteTradeSignal:
    id: str
    type: TradeType
    created_at_ms: int
    expires_at_ms: int
    executed: bool = False

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_ms <= now_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": ms_to_iso(self.created_at_ms),
            "expires": ms_to_iso(self.expires_at_ms),
            "createdAtMs": self.created_at_ms,
            "expiresAtMs": self.expires_at_ms,
            "executed": self.executed,
        }


@dataclass(frozen=True)
class CommandRecord:
    command_type: CommandType
    payload: Mapping[str, Any] = field(default_factory=dict)
    timestamp_ms: Optional[int] = None

    def __post_init__(self) -> None:
        # freeze the payload so a record can't change after it is logged
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @property
    def action(self) -> str:
        if self.command_type == CommandType.BOT_CONFIRMATION:
            return "bot_confirm"
        return self.command_type.value

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "commandType": self.command_type.value,
            "action": self.action,
        }
        out.update(self.payload)
        out["timestamp"] = ms_to_iso(self.timestamp_ms)
        out["timestampMs"] = self.timestamp_ms
        return out


@dataclass(frozen=True)
class BotLivenessEntry:
    identity: str
    address: str
    agent_label: str
    last_access_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastAccess": ms_to_iso(self.last_access_ms),
            "ip": self.address,
            "userAgent": self.agent_label,
        }


def bot_identity(address: Optional[str], agent_label: Optional[str]) -> str:
    return f"{address or 'unknown'}_{agent_label or 'unknown'}"


@dataclass(frozen=True)
class RelaySnapshot:
    trend: TrendState
    break_even: BreakEvenCommand
    account: Mapping[str, Scalar]
    account_updated_ms: Optional[int] = None

    def account_dict(self) -> Dict[str, Any]:
        if self.account_updated_ms is None:
            return {}
        out: Dict[str, Any] = dict(self.account)
        out["lastUpdated"] = ms_to_iso(self.account_updated_ms)
        return out
