"""Process-lifetime mirror state owned by the orchestrator.

Both sets are mutated only from the single fill-handling path, so they carry
no locks. The exchange remains the source of truth for positions.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from copytrader.models import FillEvent, TradeAction


class ActiveTrades:
    """Coins believed to hold an open mirrored position (concurrency cap only)."""

    def __init__(self) -> None:
        self._coins: set[str] = set()

    def add(self, coin: str) -> None:
        self._coins.add(coin)

    def discard(self, coin: str) -> None:
        self._coins.discard(coin)

    def snapshot(self) -> list[str]:
        return sorted(self._coins)

    def __contains__(self, coin: object) -> bool:
        return coin in self._coins

    def __len__(self) -> int:
        return len(self._coins)


class IgnoredCoins:
    """Coins the observed account already held when mirroring started."""

    def __init__(self, coins: Iterable[str] = ()) -> None:
        self._coins: set[str] = set(coins)
        self.log = structlog.get_logger(__name__)

    def replace(self, coins: Iterable[str]) -> None:
        self._coins = set(coins)

    def should_skip(self, fill: FillEvent, action: TradeAction) -> bool:
        """True when ``fill`` belongs to a pre-existing position.

        A full close drains the coin, so later opens on it are mirrored.
        """
        if fill.coin not in self._coins:
            return False
        if action is TradeAction.CLOSE:
            self._coins.discard(fill.coin)
            self.log.info("ignored_coin_released", coin=fill.coin)
        else:
            self.log.debug("ignored_coin_fill_skipped", coin=fill.coin, action=action.value)
        return True

    def snapshot(self) -> list[str]:
        return sorted(self._coins)

    def __contains__(self, coin: object) -> bool:
        return coin in self._coins

    def __len__(self) -> int:
        return len(self._coins)
