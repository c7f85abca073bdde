import math

import httpx
import pytest

from copytrader.errors import CopyTradingError, ErrorKind
from copytrader.execution.copy_trader import CopyTrader
from copytrader.execution.fill_stream import normalize_fill
from copytrader.models import AccountEquity, CopyTradeParams, Position, TradeAction, TradeResult

from conftest import OURS, TARGET
from fakes import FakeReporter


def _equity(value: float) -> AccountEquity:
    return AccountEquity(
        account_value=value,
        total_margin_used=0.0,
        total_ntl_pos=0.0,
        total_raw_usd=value,
        cross_maintenance_margin_used=0.0,
    )


def _position(coin: str, size: float, leverage: int = 3) -> Position:
    return Position(
        coin=coin,
        size=size,
        entry_price=100.0,
        leverage=leverage,
        liquidation_price=0.0,
        margin_used=0.0,
        return_on_equity=0.0,
        unrealized_pnl=0.0,
    )


def _fill(coin: str = "XYZ", direction: str = "Open Long", sz: str = "10", **overrides):
    raw = {
        "coin": coin,
        "px": "100",
        "sz": sz,
        "side": "B" if direction in ("Open Long", "Close Short") else "A",
        "startPosition": "0",
        "dir": direction,
        "hash": f"0x{coin}",
    }
    raw.update(overrides)
    return normalize_fill(raw)


class FakeClient:
    def __init__(self, our_equity: float = 1000.0, target_equity: float = 10000.0) -> None:
        self.equities = {OURS: our_equity, TARGET: target_equity}
        self.positions: dict[str, list[Position]] = {OURS: [], TARGET: []}
        self.executed: list[CopyTradeParams] = []
        self.equity_error: Exception | None = None
        self.execute_error: str | None = None

    async def get_account_equity(self, address: str) -> AccountEquity:
        if self.equity_error is not None:
            raise self.equity_error
        return _equity(self.equities[address])

    async def get_positions(self, address: str) -> list[Position]:
        return self.positions[address]

    async def execute(self, params: CopyTradeParams) -> TradeResult:
        self.executed.append(params)
        if self.execute_error:
            return TradeResult(success=False, params=params, error=self.execute_error)
        return TradeResult(success=True, params=params, order_id="oid-1")


class FakeNotifier:
    pending = 0

    def __init__(self) -> None:
        self.sent: list[tuple] = []

    def notify_trade(self, fill, action, params) -> None:
        self.sent.append((fill.coin, action, params))

    async def close(self) -> None:
        return None


def _trader(make_settings, client=None, copy=None):
    client = client or FakeClient()
    reporter = FakeReporter()
    notifier = FakeNotifier()
    trader = CopyTrader(
        make_settings(copy=copy),
        client,
        stream=None,
        notifier=notifier,
        reporter=reporter,
    )
    return trader, client, reporter, notifier


@pytest.mark.asyncio
async def test_open_fill_is_mirrored_with_equity_ratio(make_settings) -> None:
    trader, client, reporter, notifier = _trader(
        make_settings, copy={"size_multiplier": 1.0, "max_position_size_percent": 50}
    )

    result = await trader.handle_fill(_fill("XYZ", "Open Long", sz="10"))

    assert result is not None and result.success
    assert client.executed == [
        CopyTradeParams(coin="XYZ", side="B", size="1", reduce_only=False, leverage=1)
    ]
    assert "XYZ" in trader.active_trades
    assert notifier.sent[0][:2] == ("XYZ", TradeAction.OPEN)
    assert reporter.reports == []


@pytest.mark.asyncio
async def test_blocked_asset_is_rejected_without_execution(make_settings) -> None:
    trader, client, reporter, notifier = _trader(make_settings, copy={"blocked_assets": ["xyz"]})

    result = await trader.handle_fill(_fill("XYZ", "Open Long", sz="10"))

    assert result is not None and not result.success
    assert "ASSET_BLOCKED" in result.error
    assert client.executed == []
    assert notifier.sent == []
    assert reporter.titles() == ["trade_validation_failed"]
    assert reporter.reports[0]["exc"].kind is ErrorKind.VALIDATION
    assert trader.active_trades_count == 0


@pytest.mark.asyncio
async def test_open_skipped_when_concurrency_cap_reached(make_settings) -> None:
    trader, client, reporter, _ = _trader(make_settings, copy={"max_concurrent_trades": 1})
    trader.active_trades.add("BTC")

    assert await trader.handle_fill(_fill("XYZ", "Open Short")) is None
    assert client.executed == []
    assert reporter.reports == []

    client.positions[TARGET] = [_position("BTC", 5.0)]
    result = await trader.handle_fill(_fill("BTC", "Close Long", sz="2", startPosition="6"))
    assert result is not None and result.success


@pytest.mark.asyncio
async def test_reduce_uses_observed_position_side_and_capped_leverage(make_settings) -> None:
    trader, client, _, _ = _trader(make_settings, copy={"max_leverage": 20})
    client.positions[TARGET] = [_position("ETH", 4.0, leverage=50)]
    trader.active_trades.add("ETH")

    await trader.handle_fill(_fill("ETH", "Close Long", sz="20", startPosition="24"))

    params = client.executed[0]
    assert params.side == "A"
    assert params.reduce_only
    assert params.leverage == 20
    assert params.size == "2"
    assert "ETH" in trader.active_trades


@pytest.mark.asyncio
async def test_close_falls_back_to_fill_side_and_clears_active_trade(make_settings) -> None:
    trader, client, _, notifier = _trader(make_settings)
    trader.active_trades.add("ETH")

    await trader.handle_fill(_fill("ETH", "Close Short", sz="10", startPosition="-10"))

    params = client.executed[0]
    assert params.side == "B"
    assert params.reduce_only
    assert params.leverage == 1
    assert "ETH" not in trader.active_trades
    assert notifier.sent[0][1] is TradeAction.CLOSE


@pytest.mark.asyncio
async def test_equity_fetch_failure_is_reported(make_settings) -> None:
    client = FakeClient()
    client.equity_error = httpx.ConnectError("refused")
    trader, _, reporter, _ = _trader(make_settings, client=client)

    assert await trader.handle_fill(_fill()) is None
    assert client.executed == []
    assert reporter.titles() == ["equity_fetch_failed"]
    assert reporter.reports[0]["hash"] == "0xXYZ"


@pytest.mark.asyncio
async def test_invalid_equity_is_caught_at_boundary(make_settings) -> None:
    trader, client, reporter, _ = _trader(make_settings, client=FakeClient(our_equity=math.nan))

    assert await trader.handle_fill(_fill()) is None
    assert client.executed == []
    assert reporter.titles() == ["fill_handling_failed"]
    assert reporter.reports[0]["exc"].kind is ErrorKind.VALIDATION


@pytest.mark.asyncio
async def test_execution_failure_is_reported_and_state_unchanged(make_settings) -> None:
    client = FakeClient()
    client.execute_error = "HTTP 400: Insufficient margin"
    trader, _, reporter, notifier = _trader(make_settings, client=client)

    result = await trader.handle_fill(_fill())

    assert result is not None and not result.success
    assert trader.active_trades_count == 0
    assert notifier.sent == []
    assert reporter.titles() == ["trade_execution_failed"]


@pytest.mark.asyncio
async def test_failure_on_one_fill_does_not_affect_next(make_settings) -> None:
    client = FakeClient()
    client.equity_error = httpx.ConnectError("refused")
    trader, _, _, _ = _trader(make_settings, client=client)

    await trader.handle_fill(_fill("AAA"))
    client.equity_error = None
    result = await trader.handle_fill(_fill("BBB"))

    assert result is not None and result.success
    assert [params.coin for params in client.executed] == ["BBB"]


@pytest.mark.asyncio
async def test_initialize_ignores_preexisting_positions(make_settings) -> None:
    trader, client, _, _ = _trader(make_settings)
    client.positions[TARGET] = [_position("SOL", 2.0), _position("ETH", -1.0)]

    await trader.initialize()

    assert trader.ignored_coins.snapshot() == ["ETH", "SOL"]


@pytest.mark.asyncio
async def test_check_account_failure_is_fatal(make_settings) -> None:
    client = FakeClient()
    client.equity_error = httpx.ConnectError("refused")
    trader, _, _, _ = _trader(make_settings, client=client)

    with pytest.raises(CopyTradingError) as exc_info:
        await trader.check_account()
    assert exc_info.value.kind is ErrorKind.FATAL


@pytest.mark.asyncio
async def test_health_check_reports_drift(make_settings) -> None:
    trader, client, _, _ = _trader(make_settings)
    client.positions[OURS] = [_position("ETH", 0.5), _position("DOGE", 10.0)]
    client.positions[TARGET] = [_position("ETH", 10.0), _position("BTC", -2.0)]

    result = await trader.health_check()

    assert result.our_equity == 1000.0
    assert result.target_equity == 10000.0
    assert set(result.drift) == {"BTC", "DOGE", "ETH"}
    eth = result.drift["ETH"]
    assert eth.expected_size == pytest.approx(1.0)
    assert eth.difference == pytest.approx(-0.5)
    assert result.drift["BTC"].expected_size == pytest.approx(-0.2)
    assert result.drift["DOGE"].difference == pytest.approx(10.0)
    assert trader.last_health_check is result
