"""Hyperliquid WebSocket client with keep-alive and bounded reconnect."""

from __future__ import annotations

import asyncio
import time
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, TYPE_CHECKING

import orjson
import structlog
import websockets

from copytrader.config.settings import StreamConfig
from copytrader.errors import CopyTradingError, ErrorKind, format_error

if TYPE_CHECKING:
    from copytrader.monitoring.metrics import Metrics


MessageHandler = Callable[[Any], Awaitable[None] | None]

PING_MESSAGE = {"method": "ping"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class HyperliquidWebSocketClient:
    """Single persistent connection replaying its subscriptions on every connect.

    ``run`` returns when ``stop`` is called and raises a FATAL
    ``CopyTradingError`` once ``max_reconnect_attempts`` consecutive reconnects
    have failed. The attempt counter resets after a connection that delivered
    at least one message.
    """

    def __init__(
        self,
        config: StreamConfig,
        url: str,
        metrics: "Metrics" | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self.config = config
        self.url = url
        self._connect = connect or websockets.connect
        self._metrics = metrics
        self._stop = asyncio.Event()
        self._state = ConnectionState.DISCONNECTED
        self._last_message_time: float | None = None
        self._received_on_connection = False
        self.log = structlog.get_logger(__name__)

    @property
    def state(self) -> ConnectionState:
        return self._state

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based)."""
        delay = self.config.reconnect_base_delay_sec * (2 ** (attempt - 1))
        return min(delay, self.config.reconnect_max_delay_sec)

    async def run(self, subscriptions: list[dict[str, Any]], handler: MessageHandler) -> None:
        attempt = 0
        while not self._stop.is_set():
            self._set_state(ConnectionState.CONNECTING)
            self._received_on_connection = False
            try:
                self.log.info("ws_connecting", url=self.url, attempt=attempt)
                async with self._connect(
                    self.url,
                    ping_interval=None,
                    open_timeout=self.config.open_timeout_sec,
                ) as ws:
                    self._set_state(ConnectionState.CONNECTED)
                    self.log.info("ws_connected", subscription_count=len(subscriptions))
                    for subscription in subscriptions:
                        await ws.send(_encode({"method": "subscribe", "subscription": subscription}))
                    ping_task = asyncio.create_task(self._ping_loop(ws))
                    try:
                        await self._read_loop(ws, handler)
                    finally:
                        ping_task.cancel()
                        with suppress(asyncio.CancelledError):
                            await ping_task
                if not self._stop.is_set():
                    self.log.warning("ws_closed")
            except asyncio.CancelledError:
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except Exception as exc:
                self.log.warning("ws_disconnected", **format_error(exc))

            if self._stop.is_set():
                break
            if self._received_on_connection:
                attempt = 0
            attempt += 1
            if attempt > self.config.max_reconnect_attempts:
                self._set_state(ConnectionState.FAILED)
                self.log.error("ws_reconnect_exhausted", attempts=attempt - 1)
                raise CopyTradingError(
                    "WebSocket reconnect attempts exhausted",
                    ErrorKind.FATAL,
                    context={"url": self.url, "attempts": attempt - 1},
                )
            delay = self.reconnect_delay(attempt)
            self._set_state(ConnectionState.RECONNECTING)
            if self._metrics is not None:
                self._metrics.ws_reconnects_total.inc()
            self.log.info(
                "ws_reconnect_scheduled",
                attempt=attempt,
                max_attempts=self.config.max_reconnect_attempts,
                delay_sec=delay,
            )
            if await self._wait_before_reconnect(delay):
                break
        self._set_state(ConnectionState.DISCONNECTED)

    def stop(self) -> None:
        self._stop.set()

    def last_message_age_sec(self) -> float | None:
        if self._last_message_time is None:
            return None
        return max(0.0, time.time() - self._last_message_time)

    async def _read_loop(self, ws: Any, handler: MessageHandler) -> None:
        while not self._stop.is_set():
            recv_task = asyncio.create_task(ws.recv())
            stop_task = asyncio.create_task(self._stop.wait())
            done, _ = await asyncio.wait(
                {recv_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stop_task in done:
                recv_task.cancel()
                with suppress(asyncio.CancelledError, Exception):
                    await recv_task
                return
            stop_task.cancel()
            message = recv_task.result()
            self._received_on_connection = True
            self._last_message_time = time.time()
            if self._metrics is not None:
                self._metrics.ws_last_message_age_sec.set(0)
            try:
                payload = orjson.loads(message)
            except orjson.JSONDecodeError:
                preview = message[:200] if isinstance(message, str) else "<binary>"
                self.log.error("ws_invalid_message", data=preview)
                continue
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self.log.exception("ws_handler_error", **format_error(exc))

    async def _ping_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.config.ping_interval_sec)
            try:
                await ws.send(_encode(PING_MESSAGE))
            except Exception as exc:
                self.log.error("ws_ping_failed", **format_error(exc))
                return
            self.log.debug("ws_ping_sent")

    async def _wait_before_reconnect(self, delay: float) -> bool:
        """Sleep for ``delay``; True when stopped while waiting."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        if self._metrics is not None:
            self._metrics.ws_connected.set(1 if state is ConnectionState.CONNECTED else 0)


def _encode(message: dict[str, Any]) -> str:
    return orjson.dumps(message).decode()
