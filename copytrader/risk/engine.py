"""Deterministic risk checks for mirrored trades."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from copytrader.config.settings import CopyTradingConfig
from copytrader.models import CopyTradeParams
from copytrader.risk.sizing import PositionSizer


@dataclass(frozen=True)
class RiskCheckResult:
    approved: bool
    reasons: list[str] = field(default_factory=list)
    notional: float = 0.0
    max_notional: float = 0.0

    @property
    def summary(self) -> str:
        return ", ".join(self.reasons) if self.reasons else "OK"


class RiskEngine:
    """Size and validate trades against configured limits. No I/O."""

    def __init__(self, config: CopyTradingConfig) -> None:
        self.config = config
        self.blocked_assets = frozenset(asset.upper() for asset in config.blocked_assets)
        self.sizer = PositionSizer(config.size_multiplier, config.max_position_size_percent)

    def size(self, target_size: float, our_equity: float, target_equity: float) -> float | None:
        """Mirrored size, or None when the inputs cannot produce a tradable size."""
        size = self.sizer.calculate_size(target_size, our_equity, target_equity)
        if not math.isfinite(size) or size <= 0:
            return None
        return size

    def cap_leverage(self, leverage: int) -> int:
        return min(leverage, self.config.max_leverage)

    def is_blocked(self, coin: str) -> bool:
        return coin.upper() in self.blocked_assets

    def meets_min_notional(self, size: float, price: float) -> bool:
        return size * price >= self.config.min_notional

    def evaluate(self, params: CopyTradeParams, price: float, our_equity: float) -> RiskCheckResult:
        reasons: list[str] = []
        size = float(params.size)
        notional = size * price
        max_notional = our_equity * self.config.max_position_size_percent / 100

        if self.is_blocked(params.coin):
            reasons.append("ASSET_BLOCKED")

        if not self.meets_min_notional(size, price):
            reasons.append("BELOW_MIN_NOTIONAL")

        # Leverage is capped when read, this guards values that slipped through
        if params.leverage > self.config.max_leverage:
            reasons.append("LEVERAGE_EXCEEDS_LIMIT")

        if notional > max_notional:
            reasons.append("POSITION_VALUE_EXCEEDS_LIMIT")

        return RiskCheckResult(
            approved=len(reasons) == 0,
            reasons=reasons,
            notional=notional,
            max_notional=max_notional,
        )
