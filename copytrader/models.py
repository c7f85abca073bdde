"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


Side = Literal["A", "B"]  # A = ask (sell), B = bid (buy)
OrderType = Literal["Market", "Limit"]
FillDirection = Literal["Open Long", "Open Short", "Close Long", "Close Short"]

OPEN_DIRECTIONS = frozenset({"Open Long", "Open Short"})
CLOSE_DIRECTIONS = frozenset({"Close Long", "Close Short"})


class TradeAction(str, Enum):
    OPEN = "open"
    REDUCE = "reduce"
    CLOSE = "close"


@dataclass(frozen=True)
class FillEvent:
    """One execution reported on the observed account's fill feed."""

    coin: str
    px: float
    sz: float
    side: Side
    time: int
    start_position: float
    dir: str
    closed_pnl: float
    hash: str
    oid: int
    crossed: bool
    fee: float


@dataclass(frozen=True)
class Position:
    coin: str
    size: float  # signed, positive = long
    entry_price: float
    leverage: int
    liquidation_price: float
    margin_used: float
    return_on_equity: float
    unrealized_pnl: float

    @property
    def is_long(self) -> bool:
        return self.size > 0


@dataclass(frozen=True)
class AccountEquity:
    account_value: float
    total_margin_used: float
    total_ntl_pos: float
    total_raw_usd: float
    cross_maintenance_margin_used: float
    cross_margin_summary: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CopyTradeParams:
    """Order intent for the controlled account."""

    coin: str
    side: Side
    size: str  # decimal string, trailing zeros stripped
    reduce_only: bool
    leverage: int
    order_type: OrderType = "Market"

    def to_log(self) -> dict[str, Any]:
        return {
            "coin": self.coin,
            "side": self.side,
            "size": self.size,
            "reduce_only": self.reduce_only,
            "leverage": self.leverage,
            "order_type": self.order_type,
        }


@dataclass(frozen=True)
class TradeResult:
    success: bool
    params: CopyTradeParams
    order_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PositionDrift:
    our_size: float
    target_size: float
    expected_size: float
    difference: float


@dataclass(frozen=True)
class HealthCheckResult:
    timestamp: int  # ms since epoch
    our_positions: list[Position]
    target_positions: list[Position]
    our_equity: float
    target_equity: float
    drift: dict[str, PositionDrift]
