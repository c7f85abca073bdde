"""Map observed fills to the action the mirror should take."""

from __future__ import annotations

from copytrader.models import CLOSE_DIRECTIONS, OPEN_DIRECTIONS, FillEvent, TradeAction


def classify_fill(fill: FillEvent) -> TradeAction:
    """Opens are never partial; a close only counts as full when it unwinds the position."""
    if fill.dir in OPEN_DIRECTIONS:
        return TradeAction.OPEN
    if fill.dir in CLOSE_DIRECTIONS and abs(fill.start_position) <= fill.sz:
        return TradeAction.CLOSE
    return TradeAction.REDUCE
