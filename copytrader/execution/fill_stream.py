"""Observed-account fill subscription.

The WebSocket reader only decodes and enqueues; a separate consumer task
dispatches fills one at a time, so keep-alive and reconnect never wait on
order execution.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TYPE_CHECKING

import structlog

from copytrader.config.settings import Settings
from copytrader.connectors.ws_client import ConnectionState, HyperliquidWebSocketClient
from copytrader.errors import format_error
from copytrader.execution.state import IgnoredCoins
from copytrader.models import FillEvent
from copytrader.risk.classifier import classify_fill

if TYPE_CHECKING:
    from copytrader.monitoring.metrics import Metrics


FillHandler = Callable[[FillEvent], Awaitable[None]]


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def normalize_fill(raw: dict[str, Any]) -> FillEvent:
    """Build a FillEvent, substituting zero/empty values for missing fields."""
    return FillEvent(
        coin=str(raw.get("coin") or ""),
        px=_as_float(raw.get("px")),
        sz=_as_float(raw.get("sz")),
        side="B" if raw.get("side") == "B" else "A",
        time=_as_int(raw.get("time")),
        start_position=_as_float(raw.get("startPosition")),
        dir=str(raw.get("dir") or ""),
        closed_pnl=_as_float(raw.get("closedPnl")),
        hash=str(raw.get("hash") or ""),
        oid=_as_int(raw.get("oid")),
        crossed=bool(raw.get("crossed", False)),
        fee=_as_float(raw.get("fee")),
    )


class FillSubscription:
    """Handle returned by ``FillStream.subscribe``."""

    def __init__(
        self,
        address: str,
        ws: HyperliquidWebSocketClient,
        queue: asyncio.Queue[FillEvent | None],
        reader_task: asyncio.Task[None],
        consumer_task: asyncio.Task[None],
    ) -> None:
        self.address = address
        self.ws = ws
        self._queue = queue
        self._reader_task = reader_task
        self._consumer_task = consumer_task
        self._closed = False
        self.log = structlog.get_logger(__name__)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def state(self) -> ConnectionState:
        return self.ws.state

    def pending(self) -> int:
        return self._queue.qsize()

    async def wait(self) -> None:
        """Block until the stream ends; re-raises a terminal stream failure."""
        await self._reader_task

    async def unsubscribe(self) -> None:
        """Close the transport and let the in-flight fill finish. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.ws.stop()
        await asyncio.gather(self._reader_task, return_exceptions=True)
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            self.log.warning("fill_queue_dropped_on_unsubscribe", dropped=dropped)
        self._queue.put_nowait(None)
        await asyncio.gather(self._consumer_task, return_exceptions=True)
        self.log.info("fills_unsubscribed", address=self.address)


class FillStream:
    """Subscribes to ``userFills`` for an address and dispatches live fills."""

    def __init__(
        self,
        settings: Settings,
        metrics: "Metrics" | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self.settings = settings
        self._metrics = metrics
        self._connect = connect
        self.log = structlog.get_logger(__name__)

    async def subscribe(
        self,
        address: str,
        on_fill: FillHandler,
        ignored: IgnoredCoins | None = None,
    ) -> FillSubscription:
        ws = HyperliquidWebSocketClient(
            self.settings.stream,
            self.settings.hyperliquid_ws_url,
            metrics=self._metrics,
            connect=self._connect,
        )
        queue: asyncio.Queue[FillEvent | None] = asyncio.Queue(maxsize=self.settings.stream.max_pending_fills)

        def handler(payload: Any) -> None:
            for fill in self._extract_live_fills(payload):
                try:
                    queue.put_nowait(fill)
                except asyncio.QueueFull:
                    self.log.error(
                        "fill_dropped_queue_full",
                        coin=fill.coin,
                        hash=fill.hash,
                        max_pending=queue.maxsize,
                    )
                    if self._metrics is not None:
                        self._metrics.fills_dropped_total.inc()
            self._update_depth(queue)

        subscription = {"type": "userFills", "user": address}
        reader_task = asyncio.create_task(ws.run([subscription], handler))
        consumer_task = asyncio.create_task(self._consume(queue, on_fill, ignored))
        self.log.info("fills_subscribed", address=address)
        return FillSubscription(address, ws, queue, reader_task, consumer_task)

    def _update_depth(self, queue: asyncio.Queue[FillEvent | None]) -> None:
        if self._metrics is not None:
            self._metrics.fill_queue_depth.set(queue.qsize())

    def _extract_live_fills(self, payload: Any) -> list[FillEvent]:
        if not isinstance(payload, dict):
            return []
        channel = payload.get("channel")
        if channel == "pong":
            self.log.debug("ws_pong_received")
            return []
        if channel == "subscriptionResponse":
            self.log.info("ws_subscription_ack", subscription=payload.get("data"))
            return []
        if channel == "error":
            self.log.warning("ws_server_error", data=payload.get("data"))
            return []
        if channel != "userFills":
            return []
        data = payload.get("data") or {}
        if data.get("isSnapshot") is True:
            self.log.debug("fill_snapshot_skipped", count=len(data.get("fills") or []))
            return []
        raw_fills = data.get("fills") or []
        if not isinstance(raw_fills, list):
            return []
        return [normalize_fill(raw) for raw in raw_fills if isinstance(raw, dict)]

    async def _consume(
        self,
        queue: asyncio.Queue[FillEvent | None],
        on_fill: FillHandler,
        ignored: IgnoredCoins | None,
    ) -> None:
        while True:
            fill = await queue.get()
            self._update_depth(queue)
            if fill is None:
                return
            action = classify_fill(fill)
            if ignored is not None and ignored.should_skip(fill, action):
                continue
            try:
                await on_fill(fill)
            except Exception as exc:
                self.log.exception(
                    "fill_handler_error",
                    coin=fill.coin,
                    hash=fill.hash,
                    action=action.value,
                    **format_error(exc),
                )

