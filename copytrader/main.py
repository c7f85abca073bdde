"""Process entry point for the copy trader."""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from typing import Any

import structlog
import uvicorn

from copytrader.api.operator import create_app
from copytrader.config.settings import Settings, load_settings
from copytrader.connectors import ArenaRestClient, HyperliquidInfoClient
from copytrader.execution import CopyTrader, ExecutionClient, FillStream
from copytrader.monitoring import (
    ErrorReporter,
    Metrics,
    NotificationQueue,
    TradeNotifier,
    configure_logging,
)

log = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1


def _mode(settings: Settings) -> str:
    if settings.copy_trading.dry_run:
        return "dry_run"
    return "testnet" if settings.testnet else "live"


async def main_async() -> int:
    settings = load_settings()
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)
    errors = settings.validate_for_startup()
    if errors:
        log.error("settings_validation_failed", errors=errors)
        return EXIT_FAILURE

    copy = settings.copy_trading
    log.info(
        "copy_trader_configuration",
        target_wallet=settings.target_wallet,
        mode=_mode(settings),
        size_multiplier=copy.size_multiplier,
        max_leverage=copy.max_leverage,
        max_position_size_percent=copy.max_position_size_percent,
        min_notional=copy.min_notional,
        max_concurrent_trades=copy.max_concurrent_trades,
        blocked_assets=copy.blocked_assets,
    )

    metrics = Metrics()
    reporter = ErrorReporter(
        settings.monitoring.alert_webhooks,
        dedup_window_sec=settings.monitoring.alert_dedup_window_sec,
        mode=_mode(settings),
    )
    info = HyperliquidInfoClient(settings)
    arena = ArenaRestClient(settings)
    notifier = TradeNotifier(
        NotificationQueue(
            arena.create_post,
            min_interval_sec=settings.notifications.min_interval_sec,
            max_size=settings.notifications.max_queue,
            metrics=metrics,
        ),
        enabled=settings.notifications.enabled,
        dry_run=copy.dry_run,
    )
    trader = CopyTrader(
        settings,
        ExecutionClient(settings, info, arena, metrics=metrics),
        FillStream(settings, metrics=metrics),
        notifier=notifier,
        reporter=reporter,
        metrics=metrics,
    )
    try:
        return await _run(settings, trader, metrics, reporter)
    finally:
        await notifier.close()
        await info.close()
        await arena.close()


async def _run(
    settings: Settings,
    trader: CopyTrader,
    metrics: Metrics,
    reporter: ErrorReporter,
    shutdown: asyncio.Event | None = None,
) -> int:
    """Run until the stream fails or shutdown is requested; returns the exit status."""
    try:
        await trader.check_account()
        await trader.initialize()
    except Exception as exc:
        await reporter.report("startup_failed", exc, phase="startup")
        return EXIT_FAILURE

    if settings.monitoring.metrics_enabled:
        try:
            metrics.start(settings.monitoring.metrics_port)
        except Exception as exc:
            log.warning("metrics_start_failed", error=str(exc))

    loop = asyncio.get_running_loop()
    if shutdown is None:
        shutdown = asyncio.Event()
    unhandled: list[Any] = []

    def request_shutdown(reason: str) -> None:
        if not shutdown.is_set():
            log.info("shutdown_requested", reason=reason)
        shutdown.set()

    def handle_loop_exception(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        log.error(
            "unhandled_async_error",
            message=context.get("message"),
            error=str(exc) if exc else None,
        )
        unhandled.append(exc or context.get("message"))
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, request_shutdown, sig.name)
    previous_exception_handler = loop.get_exception_handler()
    loop.set_exception_handler(handle_loop_exception)

    async def health_loop() -> None:
        interval = settings.monitoring.health_check_interval_sec
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval)
            subscription = trader.subscription
            if subscription is not None:
                age = subscription.ws.last_message_age_sec()
                if age is not None:
                    metrics.ws_last_message_age_sec.set(age)
            try:
                await trader.health_check()
            except Exception as exc:
                log.warning("health_check_failed", error=str(exc))

    async def api_server() -> None:
        """Run the operator API server."""
        if not settings.monitoring.api_enabled:
            return
        try:
            config = uvicorn.Config(
                create_app(trader, settings),
                host="127.0.0.1",
                port=settings.monitoring.api_port,
                log_level="warning",
            )
            server = uvicorn.Server(config)
            await server.serve()
        except (Exception, SystemExit) as exc:
            # uvicorn exits the process when it cannot bind
            log.warning("api_server_failed", error=str(exc))
            return
        # serve() only returns after it handled SIGINT/SIGTERM itself
        request_shutdown("api_server_stopped")

    subscription = await trader.start()
    stream_task = asyncio.create_task(subscription.wait())
    shutdown_task = asyncio.create_task(shutdown.wait())
    background = [asyncio.create_task(health_loop()), asyncio.create_task(api_server())]
    log.info("copy_trader_running")

    exit_code = EXIT_OK
    try:
        await asyncio.wait({stream_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        if stream_task.done():
            exc = stream_task.exception()
            if exc is not None:
                await reporter.report("fill_stream_failed", exc)
                exit_code = EXIT_FAILURE
        if unhandled:
            exit_code = EXIT_FAILURE
    finally:
        await trader.stop()
        for task in (stream_task, shutdown_task, *background):
            task.cancel()
        await asyncio.gather(stream_task, shutdown_task, *background, return_exceptions=True)
        loop.set_exception_handler(previous_exception_handler)
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
    log.info("copy_trader_exited", exit_code=exit_code)
    return exit_code


def main() -> None:
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
