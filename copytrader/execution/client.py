"""Execution client: account queries and order routing for the mirror."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, TypeVar, TYPE_CHECKING

import structlog

from copytrader.config.settings import Settings
from copytrader.connectors.arena import ArenaRestClient, Direction
from copytrader.connectors.hyperliquid import HyperliquidInfoClient
from copytrader.errors import CopyTradingError, ErrorKind, format_error, wrap_error
from copytrader.models import AccountEquity, CopyTradeParams, Position, TradeResult
from copytrader.utils.retry import RetryPolicy, retry_with_backoff

if TYPE_CHECKING:
    from copytrader.monitoring.metrics import Metrics

T = TypeVar("T")

DRY_RUN_ORDER_ID = "dry-run-order-id"
CLOSE_FALLBACK_ORDER_ID = "close-ok"


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_account_equity(state: dict[str, Any]) -> AccountEquity:
    summary = state.get("marginSummary") or {}
    cross_summary = state.get("crossMarginSummary") or summary.get("crossMarginSummary") or {}
    maintenance = state.get("crossMaintenanceMarginUsed", summary.get("crossMaintenanceMarginUsed"))
    return AccountEquity(
        account_value=_as_float(summary.get("accountValue")),
        total_margin_used=_as_float(summary.get("totalMarginUsed")),
        total_ntl_pos=_as_float(summary.get("totalNtlPos")),
        total_raw_usd=_as_float(summary.get("totalRawUsd")),
        cross_maintenance_margin_used=_as_float(maintenance),
        cross_margin_summary=dict(cross_summary),
    )


def parse_positions(state: dict[str, Any]) -> list[Position]:
    """Open positions from a clearinghouse state; flat entries are dropped."""
    positions: list[Position] = []
    for entry in state.get("assetPositions") or []:
        raw = entry.get("position") if isinstance(entry, dict) else None
        if not raw:
            continue
        size = _as_float(raw.get("szi"))
        if size == 0:
            continue
        leverage = raw.get("leverage") or {}
        leverage_value = leverage.get("value") if isinstance(leverage, dict) else leverage
        positions.append(
            Position(
                coin=str(raw.get("coin") or ""),
                size=size,
                entry_price=_as_float(raw.get("entryPx")),
                leverage=int(_as_float(leverage_value, 1.0)) or 1,
                liquidation_price=_as_float(raw.get("liquidationPx")),
                margin_used=_as_float(raw.get("marginUsed")),
                return_on_equity=_as_float(raw.get("returnOnEquity")),
                unrealized_pnl=_as_float(raw.get("unrealizedPnl")),
            )
        )
    return positions


def _oid_from_status(status: Any) -> str | None:
    if not isinstance(status, dict):
        return None
    for key in ("filled", "resting"):
        nested = status.get(key)
        if isinstance(nested, dict) and nested.get("oid") is not None:
            return str(nested["oid"])
    for key in ("oid", "orderId", "id"):
        if status.get(key) is not None:
            return str(status[key])
    return None


def extract_order_id(response: Any) -> str | None:
    """Find the order id in any of the response shapes the backend returns.

    Handles ``{"response": {"data": {"statuses": [...]}}}`` envelopes,
    ``{"data": ...}`` envelopes, a direct status object and a list of
    per-order status objects (each optionally wrapping ``filled``/``resting``).
    """
    if response is None:
        return None
    if isinstance(response, list):
        for status in response:
            oid = extract_order_id(status)
            if oid is not None:
                return oid
        return None
    if not isinstance(response, dict):
        return None
    statuses = response.get("statuses")
    if isinstance(statuses, list):
        return extract_order_id(statuses)
    oid = _oid_from_status(response)
    if oid is not None:
        return oid
    for envelope in ("response", "data"):
        if envelope in response:
            oid = extract_order_id(response[envelope])
            if oid is not None:
                return oid
    return None


class ExecutionClient:
    """Account queries against Hyperliquid and order routing through Arena.

    Reads are retried with the configured policy. ``place_order`` is a single
    attempt; ``execute`` retries it and always returns a ``TradeResult``.
    """

    def __init__(
        self,
        settings: Settings,
        info: HyperliquidInfoClient,
        arena: ArenaRestClient,
        retry_policy: RetryPolicy | None = None,
        metrics: "Metrics" | None = None,
    ) -> None:
        self.settings = settings
        self.info = info
        self.arena = arena
        self.retry_policy = retry_policy or RetryPolicy.from_config(settings.retry)
        self.dry_run = settings.copy_trading.dry_run
        self._metrics = metrics
        self.log = structlog.get_logger(__name__)

    async def get_account_equity(self, address: str) -> AccountEquity:
        state = await self._retry(
            "account_equity",
            lambda: self.info.get_clearinghouse_state(address),
            address=address,
        )
        return parse_account_equity(state)

    async def get_positions(self, address: str) -> list[Position]:
        state = await self._retry(
            "positions",
            lambda: self.info.get_clearinghouse_state(address),
            address=address,
        )
        return parse_positions(state)

    async def get_open_orders(self, address: str) -> list[dict[str, Any]]:
        return await self._retry(
            "open_orders",
            lambda: self.info.get_open_orders(address),
            address=address,
        )

    async def get_market_price(self, symbol: str) -> float:
        return await self._retry(
            "market_price",
            lambda: self.info.get_market_price(symbol),
            symbol=symbol,
        )

    async def place_order(self, params: CopyTradeParams) -> str:
        """Submit one market order and return its order id."""
        if self.dry_run:
            self.log.warning("dry_run_order_skipped", **params.to_log())
            return DRY_RUN_ORDER_ID

        symbol = params.coin
        size = float(params.size)
        direction: Direction = "long" if params.side == "B" else "short"
        price = await self.info.get_market_price(symbol)

        if params.leverage > 1:
            try:
                await self.arena.set_leverage(symbol, params.leverage)
            except Exception as exc:
                self.log.warning(
                    "set_leverage_failed",
                    symbol=symbol,
                    leverage=params.leverage,
                    **format_error(exc),
                )

        start = time.perf_counter()
        self.log.info("order_placing", price=price, **params.to_log())

        if params.reduce_only:
            # A sell closes a long, a buy closes a short
            position_side: Direction = "short" if direction == "long" else "long"
            response = await self.arena.close_position(
                symbol,
                position_side,
                size,
                current_price=price,
                close_percent=100,
            )
            order_id = extract_order_id(response) or CLOSE_FALLBACK_ORDER_ID
        else:
            notional = size * price
            margin_amount = notional / max(params.leverage, 1)
            response = await self.arena.place_order(
                symbol,
                direction,
                size,
                margin_amount=margin_amount,
                leverage=params.leverage,
                price=price,
            )
            order_id = extract_order_id(response)
            if order_id is None:
                raise CopyTradingError(
                    "Order placed but no order ID returned",
                    ErrorKind.TRADING,
                    context={"params": params.to_log()},
                )

        latency = time.perf_counter() - start
        if self._metrics is not None:
            self._metrics.order_latency_sec.observe(latency)
        self.log.info(
            "order_placed",
            order_id=order_id,
            latency_ms=round(latency * 1000, 2),
            **params.to_log(),
        )
        return order_id

    async def execute(self, params: CopyTradeParams) -> TradeResult:
        try:
            order_id = await self._retry("place_order", lambda: self.place_order(params), coin=params.coin)
        except Exception as exc:
            error = wrap_error(exc, "Failed to place order", ErrorKind.TRADING, params=params.to_log())
            self.log.error("order_failed", **params.to_log(), **format_error(error))
            return TradeResult(success=False, params=params, error=error.message)
        return TradeResult(success=True, params=params, order_id=order_id)

    async def _retry(
        self,
        operation: str,
        call: Callable[[], Awaitable[T]],
        **context: Any,
    ) -> T:
        def on_retry(exc: BaseException, attempt: int) -> None:
            if self._metrics is not None:
                self._metrics.retries_total.labels(operation=operation).inc()
            self.log.warning(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                max_attempts=self.retry_policy.max_attempts,
                **context,
                **format_error(exc),
            )

        return await retry_with_backoff(call, self.retry_policy, on_retry)
