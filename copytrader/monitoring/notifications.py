"""Rate-limited trade notifications for the public agent feed."""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from typing import Any, Awaitable, Callable, TYPE_CHECKING

import structlog

from copytrader.errors import format_error
from copytrader.models import CopyTradeParams, FillEvent, TradeAction

if TYPE_CHECKING:
    from copytrader.monitoring.metrics import Metrics


PostSink = Callable[[str], Awaitable[Any]]


class NotificationQueue:
    """Bounded FIFO drained by one task, spacing posts ``min_interval_sec`` apart.

    Spacing runs from the end of one post to the start of the next. A full
    queue drops its oldest entry. Failed posts are logged and never retried.
    """

    def __init__(
        self,
        sink: PostSink,
        min_interval_sec: float = 360.0,
        max_size: int = 5,
        metrics: "Metrics" | None = None,
    ) -> None:
        self._sink = sink
        self.min_interval_sec = min_interval_sec
        self.max_size = max_size
        self._pending: deque[str] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._last_post_end: float | None = None
        self._closed = False
        self._metrics = metrics
        self.log = structlog.get_logger(__name__)

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def enqueue(self, content: str) -> None:
        if self._closed:
            self.log.debug("notification_after_close", content=content)
            return
        if len(self._pending) >= self.max_size:
            dropped = self._pending.popleft()
            self.log.warning("notification_dropped", dropped=dropped, max_size=self.max_size)
            if self._metrics is not None:
                self._metrics.notifications_dropped_total.inc()
        self._pending.append(content)
        self._update_depth()
        if not self.draining:
            self._drain_task = asyncio.create_task(self._drain())

    async def close(self) -> None:
        """Skip pending notifications and stop the drain task."""
        self._closed = True
        skipped = len(self._pending)
        self._pending.clear()
        self._update_depth()
        if skipped:
            self.log.info("notifications_skipped_on_close", skipped=skipped)
        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._pending:
            if self._last_post_end is not None:
                remaining = self._last_post_end + self.min_interval_sec - loop.time()
                while remaining > 0:
                    await asyncio.sleep(remaining)
                    remaining = self._last_post_end + self.min_interval_sec - loop.time()
            if not self._pending:
                break
            content = self._pending.popleft()
            self._update_depth()
            try:
                await self._sink(content)
                self.log.info("notification_posted")
                if self._metrics is not None:
                    self._metrics.notifications_posted_total.inc()
            except Exception as exc:
                self.log.warning("notification_post_failed", **format_error(exc))
                if self._metrics is not None:
                    self._metrics.notifications_failed_total.inc()
            finally:
                self._last_post_end = loop.time()

    def _update_depth(self) -> None:
        if self._metrics is not None:
            self._metrics.notification_queue_depth.set(len(self._pending))


def format_trade_message(
    fill: FillEvent,
    action: TradeAction,
    params: CopyTradeParams,
) -> str:
    """Feed text for a mirrored trade, priced at the observed fill."""
    price = fill.px
    notional = price * float(params.size)
    if action is TradeAction.OPEN:
        side_text = "Long" if params.side == "B" else "Short"
        return (
            f"🟢 Opened {side_text}\n"
            f"{fill.coin} • {params.size} @ ${price:.4f}\n"
            f"Notional: ${notional:.2f} • {params.leverage}x leverage\n"
            f"Type: {params.order_type}"
        )
    # The mirrored order sells to close a long and buys to close a short
    side_text = "Long" if params.side == "A" else "Short"
    verb = "Closed" if action is TradeAction.CLOSE else "Reduced"
    pnl = fill.closed_pnl
    emoji = "🟢" if pnl >= 0 else "🔴"
    sign = "+" if pnl >= 0 else "-"
    return (
        f"{emoji} {verb} {side_text}\n"
        f"{fill.coin} • {params.size} @ ${price:.4f}\n"
        f"Notional: ${notional:.2f}\n"
        f"PnL: {sign}${abs(pnl):.2f}"
    )


class TradeNotifier:
    """Routes trade summaries to the feed queue, or to the log in dry-run."""

    def __init__(
        self,
        queue: NotificationQueue | None,
        enabled: bool = True,
        dry_run: bool = False,
    ) -> None:
        self.queue = queue
        self.enabled = enabled
        self.dry_run = dry_run
        self.log = structlog.get_logger(__name__)

    def notify_trade(self, fill: FillEvent, action: TradeAction, params: CopyTradeParams) -> None:
        content = format_trade_message(fill, action, params)
        if self.dry_run:
            self.log.info("dry_run_feed_post", content=content)
            return
        if not self.enabled or self.queue is None:
            return
        self.queue.enqueue(content)

    @property
    def pending(self) -> int:
        return self.queue.pending if self.queue is not None else 0

    async def close(self) -> None:
        if self.queue is not None:
            await self.queue.close()
