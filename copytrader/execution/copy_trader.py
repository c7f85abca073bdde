"""Copy-trading orchestrator.

One fill is processed at a time, in arrival order, through
classify -> fetch equity/positions -> size -> validate -> execute -> notify.
Every failure is caught at ``handle_fill`` and reported; the stream keeps running.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import TYPE_CHECKING

import structlog

from copytrader.config.settings import Settings
from copytrader.errors import CopyTradingError, ErrorKind, wrap_error
from copytrader.execution.client import ExecutionClient
from copytrader.execution.fill_stream import FillStream, FillSubscription
from copytrader.execution.state import ActiveTrades, IgnoredCoins
from copytrader.models import (
    CopyTradeParams,
    FillEvent,
    HealthCheckResult,
    Position,
    PositionDrift,
    TradeAction,
    TradeResult,
)
from copytrader.monitoring.alert_webhooks import ErrorReporter
from copytrader.monitoring.notifications import TradeNotifier
from copytrader.risk.classifier import classify_fill
from copytrader.risk.engine import RiskEngine
from copytrader.risk.sizing import format_size

if TYPE_CHECKING:
    from copytrader.monitoring.metrics import Metrics


class CopyTrader:
    """Mirror the observed account's fills onto our account."""

    def __init__(
        self,
        settings: Settings,
        client: ExecutionClient,
        stream: FillStream,
        risk: RiskEngine | None = None,
        notifier: TradeNotifier | None = None,
        reporter: ErrorReporter | None = None,
        metrics: "Metrics" | None = None,
    ) -> None:
        self.settings = settings
        self.config = settings.copy_trading
        self.target_wallet = settings.target_wallet
        self.our_address = settings.our_address
        self.client = client
        self.stream = stream
        self.risk = risk or RiskEngine(self.config)
        self.notifier = notifier or TradeNotifier(None, enabled=False, dry_run=self.config.dry_run)
        self.reporter = reporter or ErrorReporter()
        self._metrics = metrics
        self.active_trades = ActiveTrades()
        self.ignored_coins = IgnoredCoins()
        self._subscription: FillSubscription | None = None
        self.last_health_check: HealthCheckResult | None = None
        self.log = structlog.get_logger(__name__)

    @property
    def active_trades_count(self) -> int:
        return len(self.active_trades)

    @property
    def subscription(self) -> FillSubscription | None:
        return self._subscription

    async def initialize(self) -> None:
        """Ignore coins the observed account already holds."""
        positions = await self.client.get_positions(self.target_wallet)
        self.ignored_coins.replace(position.coin for position in positions)
        self.log.info("ignored_preexisting_coins", coins=self.ignored_coins.snapshot())

    async def check_account(self) -> float:
        """Confirm our account is reachable; failure is fatal at startup."""
        try:
            equity = await self.client.get_account_equity(self.our_address)
        except Exception as exc:
            raise wrap_error(
                exc,
                "Cannot connect to account",
                ErrorKind.FATAL,
                address=self.our_address,
            ) from exc
        self.log.info("account_connected", account_value=equity.account_value)
        if self._metrics is not None:
            self._metrics.our_equity.set(equity.account_value)
        return equity.account_value

    async def start(self) -> FillSubscription:
        self.log.info(
            "copy_trader_starting",
            our_address=self.our_address,
            target_wallet=self.target_wallet,
            dry_run=self.config.dry_run,
        )
        self._subscription = await self.stream.subscribe(
            self.target_wallet,
            self.handle_fill,
            self.ignored_coins,
        )
        return self._subscription

    async def stop(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
        self.log.info("copy_trader_stopped", active_trades=self.active_trades.snapshot())

    async def handle_fill(self, fill: FillEvent) -> TradeResult | None:
        """Process one live fill. Never raises."""
        action = classify_fill(fill)
        self.log.info(
            "fill_received",
            coin=fill.coin,
            side=fill.side,
            size=fill.sz,
            price=fill.px,
            direction=fill.dir,
            action=action.value,
            hash=fill.hash,
        )
        if self._metrics is not None:
            self._metrics.fills_received_total.labels(action=action.value).inc()
        try:
            return await self._mirror(fill, action)
        except Exception as exc:
            await self.reporter.report(
                "fill_handling_failed",
                wrap_error(exc, "Error handling fill", ErrorKind.TRADING),
                coin=fill.coin,
                hash=fill.hash,
                action=action.value,
            )
            return None

    async def _mirror(self, fill: FillEvent, action: TradeAction) -> TradeResult | None:
        try:
            our, target = await asyncio.gather(
                self.client.get_account_equity(self.our_address),
                self.client.get_account_equity(self.target_wallet),
            )
        except Exception as exc:
            await self.reporter.report(
                "equity_fetch_failed",
                wrap_error(exc, "Failed to fetch account equity", ErrorKind.ACCOUNT),
                coin=fill.coin,
                hash=fill.hash,
            )
            return None

        our_equity = our.account_value
        target_equity = target.account_value
        if math.isnan(our_equity) or math.isnan(target_equity):
            raise CopyTradingError(
                "Invalid equity values",
                ErrorKind.VALIDATION,
                context={"our_equity": our_equity, "target_equity": target_equity},
            )
        self.log.info("account_equities", our_equity=our_equity, target_equity=target_equity)

        try:
            _, target_positions = await asyncio.gather(
                self.client.get_positions(self.our_address),
                self.client.get_positions(self.target_wallet),
            )
        except Exception as exc:
            await self.reporter.report(
                "positions_fetch_failed",
                wrap_error(exc, "Failed to fetch positions", ErrorKind.ACCOUNT),
                coin=fill.coin,
                hash=fill.hash,
            )
            return None

        target_position = next((p for p in target_positions if p.coin == fill.coin), None)
        params = self.calculate_trade_params(fill, action, our_equity, target_equity, target_position)
        if params is None:
            return None

        check = self.risk.evaluate(params, fill.px, our_equity)
        if not check.approved:
            if self._metrics is not None:
                for reason in check.reasons:
                    self._metrics.risk_rejections_total.labels(reason=reason).inc()
            error = CopyTradingError(
                f"Trade validation failed: {check.summary}",
                ErrorKind.VALIDATION,
                context={
                    "reasons": check.reasons,
                    "notional": check.notional,
                    "max_notional": check.max_notional,
                },
            )
            await self.reporter.report(
                "trade_validation_failed",
                error,
                alert=False,
                hash=fill.hash,
                **params.to_log(),
            )
            return TradeResult(success=False, params=params, error=error.message)

        result = await self.client.execute(params)
        if not result.success:
            if self._metrics is not None:
                self._metrics.trades_failed_total.labels(action=action.value).inc()
            await self.reporter.report(
                "trade_execution_failed",
                CopyTradingError(result.error or "Trade execution failed", ErrorKind.TRADING),
                coin=fill.coin,
                hash=fill.hash,
                action=action.value,
            )
            return result

        self.log.info(
            "trade_executed",
            order_id=result.order_id,
            hash=fill.hash,
            action=action.value,
            **params.to_log(),
        )
        if action is TradeAction.OPEN:
            self.active_trades.add(fill.coin)
        elif action is TradeAction.CLOSE:
            self.active_trades.discard(fill.coin)
        if self._metrics is not None:
            self._metrics.trades_executed_total.labels(action=action.value).inc()
            self._metrics.active_trades.set(len(self.active_trades))
        self.notifier.notify_trade(fill, action, params)
        return result

    def calculate_trade_params(
        self,
        fill: FillEvent,
        action: TradeAction,
        our_equity: float,
        target_equity: float,
        target_position: Position | None,
    ) -> CopyTradeParams | None:
        """Order intent for ``fill``, or None when the fill should not be mirrored."""
        if action is TradeAction.OPEN:
            side = "B" if fill.dir == "Open Long" else "A"
            reduce_only = False
        else:
            if target_position is not None:
                side = "A" if target_position.is_long else "B"
            else:
                side = fill.side
            reduce_only = True

        leverage = 1
        if target_position is not None:
            leverage = self.risk.cap_leverage(target_position.leverage)

        if action is TradeAction.OPEN and len(self.active_trades) >= self.config.max_concurrent_trades:
            self.log.warning(
                "max_concurrent_trades_reached",
                active_trades=len(self.active_trades),
                max=self.config.max_concurrent_trades,
                coin=fill.coin,
            )
            if self._metrics is not None:
                self._metrics.trades_skipped_total.labels(reason="max_concurrent_trades").inc()
            return None

        size = self.risk.size(fill.sz, our_equity, target_equity)
        if size is None:
            self.log.error(
                "invalid_position_size",
                target_size=fill.sz,
                our_equity=our_equity,
                target_equity=target_equity,
                coin=fill.coin,
            )
            if self._metrics is not None:
                self._metrics.trades_skipped_total.labels(reason="invalid_size").inc()
            return None

        return CopyTradeParams(
            coin=fill.coin,
            side=side,
            size=format_size(size),
            reduce_only=reduce_only,
            leverage=leverage,
        )

    async def health_check(self) -> HealthCheckResult:
        """Compare both accounts and report per-coin drift from the scaled target."""
        our, target, our_positions, target_positions = await asyncio.gather(
            self.client.get_account_equity(self.our_address),
            self.client.get_account_equity(self.target_wallet),
            self.client.get_positions(self.our_address),
            self.client.get_positions(self.target_wallet),
        )
        if target.account_value > 0:
            ratio = our.account_value / target.account_value
        else:
            ratio = 1.0
        ratio *= self.config.size_multiplier

        ours_by_coin = {p.coin: p.size for p in our_positions}
        targets_by_coin = {p.coin: p.size for p in target_positions}
        drift: dict[str, PositionDrift] = {}
        for coin in sorted(set(ours_by_coin) | set(targets_by_coin)):
            our_size = ours_by_coin.get(coin, 0.0)
            target_size = targets_by_coin.get(coin, 0.0)
            expected = target_size * ratio
            drift[coin] = PositionDrift(
                our_size=our_size,
                target_size=target_size,
                expected_size=expected,
                difference=our_size - expected,
            )

        result = HealthCheckResult(
            timestamp=int(time.time() * 1000),
            our_positions=our_positions,
            target_positions=target_positions,
            our_equity=our.account_value,
            target_equity=target.account_value,
            drift=drift,
        )
        self.last_health_check = result
        if self._metrics is not None:
            self._metrics.our_equity.set(result.our_equity)
            self._metrics.target_equity.set(result.target_equity)
            for coin, entry in drift.items():
                self._metrics.position_drift.labels(coin=coin).set(entry.difference)
        self.log.info(
            "health_check",
            our_equity=result.our_equity,
            target_equity=result.target_equity,
            our_positions=len(our_positions),
            target_positions=len(target_positions),
            drifting_coins=[coin for coin, entry in drift.items() if abs(entry.difference) > 1e-9],
        )
        return result
