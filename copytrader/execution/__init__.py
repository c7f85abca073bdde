"""Trade execution and mirroring."""

from copytrader.execution.client import ExecutionClient, extract_order_id
from copytrader.execution.copy_trader import CopyTrader
from copytrader.execution.fill_stream import FillStream, FillSubscription, normalize_fill
from copytrader.execution.state import ActiveTrades, IgnoredCoins

__all__ = [
    "ExecutionClient",
    "extract_order_id",
    "CopyTrader",
    "FillStream",
    "FillSubscription",
    "normalize_fill",
    "ActiveTrades",
    "IgnoredCoins",
]
