"""Async Hyperliquid info API client (account state and market data)."""

from __future__ import annotations

import time
from typing import Any

import httpx
import structlog

from copytrader.config.settings import Settings
from copytrader.errors import CopyTradingError, ErrorKind, http_error
from copytrader.utils.http import preview_json, truncate


class HyperliquidInfoClient:
    """Read-only Hyperliquid ``/info`` client."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.info_url = settings.hyperliquid_info_url
        self.http = http or httpx.AsyncClient(timeout=settings.market_data.request_timeout_sec)
        self.price_cache_sec = settings.market_data.price_cache_sec
        self._mids: dict[str, str] = {}
        self._mids_fetched_at: float | None = None
        self.log = structlog.get_logger(__name__)

    async def close(self) -> None:
        await self.http.aclose()

    async def get_clearinghouse_state(self, address: str) -> dict[str, Any]:
        """Margin summary and asset positions for ``address``."""
        return await self._post({"type": "clearinghouseState", "user": address})

    async def get_open_orders(self, address: str) -> list[dict[str, Any]]:
        return await self._post({"type": "openOrders", "user": address})

    async def get_all_mids(self) -> dict[str, str]:
        now = time.monotonic()
        if (
            self._mids_fetched_at is not None
            and now - self._mids_fetched_at < self.price_cache_sec
        ):
            return self._mids
        mids = await self._post({"type": "allMids"})
        self._mids = mids or {}
        self._mids_fetched_at = now
        return self._mids

    async def get_market_price(self, symbol: str) -> float:
        mids = await self.get_all_mids()
        raw = mids.get(symbol)
        if raw is None:
            raise CopyTradingError(
                f"No market price for {symbol}",
                ErrorKind.VALIDATION,
                context={"symbol": symbol},
            )
        return float(raw)

    async def _post(self, body: dict[str, Any]) -> Any:
        log_http = self.settings.monitoring.log_http
        max_body_chars = self.settings.monitoring.log_http_max_body_chars
        start = time.perf_counter()
        if log_http:
            self.log.info("rest_request", url=self.info_url, request_type=body.get("type"))
        try:
            response = await self.http.post(self.info_url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self.log.warning(
                "rest_http_error",
                request_type=body.get("type"),
                status_code=exc.response.status_code,
                error=truncate(exc.response.text, max_body_chars),
            )
            raise http_error(exc, ErrorKind.ACCOUNT, request_type=body.get("type")) from exc
        data = response.json()
        if log_http:
            self.log.info(
                "rest_response",
                request_type=body.get("type"),
                status_code=response.status_code,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                response_preview=preview_json(data, max_body_chars),
            )
        return data

