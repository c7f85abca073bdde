"""Monitoring utilities."""

from copytrader.monitoring.alert_webhooks import ErrorReporter
from copytrader.monitoring.logging import configure_logging
from copytrader.monitoring.metrics import Metrics
from copytrader.monitoring.notifications import NotificationQueue, TradeNotifier, format_trade_message

__all__ = [
    "configure_logging",
    "Metrics",
    "ErrorReporter",
    "NotificationQueue",
    "TradeNotifier",
    "format_trade_message",
]
