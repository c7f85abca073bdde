"""Async Arena agent API client (perp execution and feed posts)."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Literal

import httpx
import structlog

from copytrader.config.settings import Settings
from copytrader.errors import CopyTradingError, ErrorKind, http_error
from copytrader.utils.http import preview_json, truncate

Direction = Literal["long", "short"]

PROVIDER = "HYPERLIQUID"
MARKET_SLIPPAGE_PCT = 0.05
PRICE_SIGNIFICANT_FIGURES = 5


@dataclass(frozen=True)
class TradingPair:
    symbol: str
    base_asset_id: int
    size_precision: int  # decimals
    price_precision: int  # decimals
    max_leverage: int
    only_isolated: bool = False

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> TradingPair:
        return cls(
            symbol=str(raw["symbol"]),
            base_asset_id=int(raw["baseAssetId"]),
            size_precision=int(raw.get("sizePrecision") or 0),
            price_precision=int(raw.get("pricePrecision") or 0),
            max_leverage=int(raw.get("maxLeverage") or 1),
            only_isolated=bool(raw.get("isOnlyIsolated", False)),
        )


def apply_slippage(price: float, direction: Direction, slippage_pct: float = MARKET_SLIPPAGE_PCT) -> float:
    """Worst acceptable fill price for a market order."""
    factor = 1 + slippage_pct if direction == "long" else 1 - slippage_pct
    return price * factor


def _round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


def round_size(size: float, decimals: int) -> float:
    """Truncate toward zero at ``decimals`` places; never rounds a size up."""
    factor = 10**decimals
    return math.floor(size * factor) / factor


def round_price(price: float, decimals: int, significant: int = PRICE_SIGNIFICANT_FIGURES) -> float:
    """Round to ``significant`` figures, then snap to the ``10**-decimals`` tick."""
    if price == 0:
        return 0.0
    magnitude = math.floor(math.log10(abs(price)))
    factor = 10 ** (significant - 1 - magnitude)
    rounded = _round_half_up(price * factor) / factor
    tick = 10**-decimals
    return round(_round_half_up(rounded / tick) * tick, decimals)


class ArenaRestClient:
    """Arena REST client. Calls are single-shot; callers own retries."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.base_url = settings.arena_base_url.rstrip("/")
        self.http = http or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=10.0,
            headers={"Content-Type": "application/json", "x-api-key": settings.arena_api_key},
        )
        self.pairs_cache_sec = settings.market_data.pairs_cache_sec
        self._pairs: dict[str, TradingPair] = {}
        self._pairs_fetched_at: float | None = None
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def get_trading_pairs(self, force_refresh: bool = False) -> dict[str, TradingPair]:
        """Tradable pairs by symbol, cached for ``pairs_cache_sec``."""
        now = time.monotonic()
        if (
            not force_refresh
            and self._pairs_fetched_at is not None
            and now - self._pairs_fetched_at < self.pairs_cache_sec
        ):
            return self._pairs
        response = await self._request("GET", "/agents/perp/trading-pairs")
        raw_pairs = (response or {}).get("pairs") or []
        self._pairs = {pair.symbol: pair for pair in map(TradingPair.from_api, raw_pairs)}
        self._pairs_fetched_at = now
        self.log.info("trading_pairs_loaded", count=len(self._pairs))
        return self._pairs

    async def get_pair(self, symbol: str) -> TradingPair:
        pairs = await self.get_trading_pairs()
        pair = pairs.get(symbol)
        if pair is None:
            raise CopyTradingError(
                f"Trading pair not found: {symbol}",
                ErrorKind.VALIDATION,
                context={"symbol": symbol},
            )
        return pair

    async def place_order(
        self,
        symbol: str,
        direction: Direction,
        size: float,
        margin_amount: float,
        leverage: int,
        price: float,
        leverage_type: str = "cross",
    ) -> Any:
        pair = await self.get_pair(symbol)
        rounded_size = round_size(size, pair.size_precision)
        if rounded_size <= 0:
            raise CopyTradingError(
                f"Order size {size} rounds to zero at {pair.size_precision} decimals",
                ErrorKind.VALIDATION,
                context={"symbol": symbol, "size": size},
            )
        order = {
            "provider": PROVIDER,
            "symbol": symbol,
            "direction": direction,
            "orderType": "market",
            "leverageType": leverage_type,
            "size": rounded_size,
            "marginAmount": margin_amount,
            "assetId": str(pair.base_asset_id),
            "initialMarginAssetId": "USDC",
            "leverage": leverage,
            "price": round_price(apply_slippage(price, direction), pair.price_precision),
        }
        return await self._request(
            "POST", "/agents/perp/orders/place", {"provider": PROVIDER, "orders": [order]}
        )

    async def close_position(
        self,
        symbol: str,
        position_side: Direction,
        size: float,
        current_price: float,
        close_percent: float = 100,
    ) -> Any:
        body = {
            "provider": PROVIDER,
            "symbol": symbol,
            "positionSide": position_side,
            "size": size,
            "currentPrice": current_price,
            "closePercent": close_percent,
        }
        return await self._request("POST", "/agents/perp/orders/close-position", body)

    async def set_leverage(self, symbol: str, leverage: int, leverage_type: str = "cross") -> Any:
        body = {
            "provider": PROVIDER,
            "symbol": symbol,
            "leverage": leverage,
            "leverageType": leverage_type,
        }
        return await self._request("POST", "/agents/perp/leverage/update", body)

    async def create_post(self, content: str) -> Any:
        """Publish a thread on the agent's public feed."""
        body = {
            "content": content.replace("\n", "<br>"),
            "files": [],
            "privacyType": 0,
        }
        return await self._request("POST", "/agents/threads", body)

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        log_http = self.settings.monitoring.log_http
        max_body_chars = self.settings.monitoring.log_http_max_body_chars
        start = time.perf_counter()
        if log_http:
            self.log.info("rest_request", method=method, path=path)
        try:
            response = await self.http.request(method, path, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self.log.warning(
                "rest_http_error",
                method=method,
                path=path,
                status_code=exc.response.status_code,
                error=truncate(exc.response.text, max_body_chars),
            )
            raise http_error(exc, ErrorKind.TRADING, path=path) from exc
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        if response.status_code == 204 or not response.text.strip():
            data = None
        else:
            data = response.json()
        if log_http:
            self.log.info(
                "rest_response",
                method=method,
                path=path,
                status_code=response.status_code,
                latency_ms=latency_ms,
                response_preview=preview_json(data, max_body_chars),
            )
        return data

