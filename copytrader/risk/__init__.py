"""Risk management module."""

from copytrader.risk.classifier import classify_fill
from copytrader.risk.engine import RiskCheckResult, RiskEngine
from copytrader.risk.sizing import PositionSizer, format_size

__all__ = ["RiskEngine", "RiskCheckResult", "PositionSizer", "classify_fill", "format_size"]
