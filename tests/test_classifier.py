import pytest

from copytrader.execution.fill_stream import normalize_fill
from copytrader.models import TradeAction
from copytrader.risk.classifier import classify_fill


def _fill(direction: str, sz: float, start_position: float):
    return normalize_fill(
        {"coin": "ETH", "px": "2000", "sz": str(sz), "startPosition": str(start_position), "dir": direction}
    )


@pytest.mark.parametrize("direction", ["Open Long", "Open Short"])
@pytest.mark.parametrize("start_position", [0.0, 5.0, -5.0, 100.0])
def test_open_fills_are_always_open(direction: str, start_position: float) -> None:
    assert classify_fill(_fill(direction, 1.0, start_position)) is TradeAction.OPEN


@pytest.mark.parametrize("direction", ["Close Long", "Close Short"])
def test_close_that_unwinds_position_is_close(direction: str) -> None:
    assert classify_fill(_fill(direction, 2.0, 2.0)) is TradeAction.CLOSE
    assert classify_fill(_fill(direction, 2.0, -2.0)) is TradeAction.CLOSE
    assert classify_fill(_fill(direction, 3.0, -2.0)) is TradeAction.CLOSE


@pytest.mark.parametrize("direction", ["Close Long", "Close Short"])
def test_partial_close_is_reduce(direction: str) -> None:
    assert classify_fill(_fill(direction, 1.0, 2.5)) is TradeAction.REDUCE
    assert classify_fill(_fill(direction, 1.0, -2.5)) is TradeAction.REDUCE


def test_unknown_direction_is_reduce() -> None:
    assert classify_fill(_fill("Liquidation", 1.0, 1.0)) is TradeAction.REDUCE
    assert classify_fill(normalize_fill({"coin": "ETH", "sz": "1"})) is TradeAction.REDUCE
