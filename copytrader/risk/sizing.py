"""Equity-relative position sizing."""

from __future__ import annotations

import structlog

_log = structlog.get_logger(__name__)

SIZE_DECIMALS = 8


def format_size(value: float) -> str:
    """Fixed-point string with trailing zeros stripped (``1.50000000`` -> ``1.5``)."""
    text = f"{value:.{SIZE_DECIMALS}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class PositionSizer:
    """Scale observed fill sizes by the ratio of account equities."""

    def __init__(self, size_multiplier: float, max_position_pct: float) -> None:
        self.size_multiplier = size_multiplier
        self.max_position_pct = max_position_pct

    def max_size(self, our_equity: float) -> float:
        return our_equity * self.max_position_pct / 100

    def calculate_size(self, target_size: float, our_equity: float, target_equity: float) -> float:
        if target_equity == 0:
            _log.warning("target_equity_zero", target_size=target_size)
            size = target_size * self.size_multiplier
        else:
            ratio = our_equity / target_equity
            size = ratio * target_size * self.size_multiplier
        return min(size, self.max_size(our_equity))
