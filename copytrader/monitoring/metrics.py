"""Prometheus metrics definitions."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class Metrics:
    """Expose copy-trading metrics for monitoring.

    Each instance owns its registry so tests can build several side by side.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        r = self.registry

        self.ws_connected = Gauge("ws_connected", "WebSocket connection status", registry=r)
        self.ws_last_message_age_sec = Gauge(
            "ws_last_message_age_sec", "Age of last WS msg", registry=r
        )
        self.ws_reconnects_total = Counter(
            "ws_reconnects_total", "Scheduled WebSocket reconnects", registry=r
        )

        self.fills_received_total = Counter(
            "fills_received_total",
            "Live fills received from the observed account",
            ["action"],
            registry=r,
        )
        self.fills_dropped_total = Counter(
            "fills_dropped_total", "Live fills dropped because the fill queue was full", registry=r
        )
        self.fill_queue_depth = Gauge("fill_queue_depth", "Live fills waiting for the handler", registry=r)
        self.trades_executed_total = Counter(
            "trades_executed_total", "Mirrored trades executed", ["action"], registry=r
        )
        self.trades_failed_total = Counter(
            "trades_failed_total", "Mirrored trades that failed", ["action"], registry=r
        )
        self.trades_skipped_total = Counter(
            "trades_skipped_total", "Fills skipped without execution", ["reason"], registry=r
        )
        self.risk_rejections_total = Counter(
            "risk_rejections_total", "Risk check rejections by reason", ["reason"], registry=r
        )
        self.active_trades = Gauge("active_trades", "Coins with an open mirrored trade", registry=r)

        self.order_latency_sec = Histogram(
            "order_latency_sec",
            "Order placement latency (s)",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=r,
        )
        self.retries_total = Counter(
            "retries_total", "Retried outbound calls by operation", ["operation"], registry=r
        )

        self.notification_queue_depth = Gauge(
            "notification_queue_depth", "Pending feed notifications", registry=r
        )
        self.notifications_dropped_total = Counter(
            "notifications_dropped_total", "Notifications dropped on a full queue", registry=r
        )
        self.notifications_posted_total = Counter(
            "notifications_posted_total", "Notifications posted to the feed", registry=r
        )
        self.notifications_failed_total = Counter(
            "notifications_failed_total", "Notification posts that failed", registry=r
        )

        self.our_equity = Gauge("our_equity", "Controlled account value (USD)", registry=r)
        self.target_equity = Gauge("target_equity", "Observed account value (USD)", registry=r)
        self.position_drift = Gauge(
            "position_drift", "Our size minus expected size", ["coin"], registry=r
        )

    def start(self, port: int) -> None:
        start_http_server(port, registry=self.registry)
