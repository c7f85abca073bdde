"""Read-only operator API for inspecting the running copy trader."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException

from copytrader import __version__
from copytrader.config.settings import Settings
from copytrader.errors import format_error
from copytrader.execution.copy_trader import CopyTrader
from copytrader.models import HealthCheckResult


def _serialize_health_check(result: HealthCheckResult) -> dict[str, Any]:
    return {
        "timestamp": result.timestamp,
        "our_equity": result.our_equity,
        "target_equity": result.target_equity,
        "our_positions": [asdict(p) for p in result.our_positions],
        "target_positions": [asdict(p) for p in result.target_positions],
        "drift": {coin: asdict(entry) for coin, entry in result.drift.items()},
    }


def create_app(trader: CopyTrader, settings: Settings) -> FastAPI:
    """Create the FastAPI application bound to a running trader."""
    start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        nonlocal start_time
        start_time = time.time()
        yield

    app = FastAPI(
        title="Copy Trader Operator API",
        description="Inspect the copy trader's stream, mirror state and drift",
        version=__version__,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Stream status and uptime."""
        subscription = trader.subscription
        stream_state = subscription.state.value if subscription is not None else "not_started"
        ws_age = subscription.ws.last_message_age_sec() if subscription is not None else None
        return {
            "status": "healthy" if stream_state == "connected" else "degraded",
            "uptime_sec": time.time() - start_time,
            "stream_state": stream_state,
            "ws_last_message_age_sec": ws_age,
            "dry_run": settings.copy_trading.dry_run,
            "testnet": settings.testnet,
            "target_wallet": settings.target_wallet,
            "api_port": settings.monitoring.api_port,
            "metrics_port": settings.monitoring.metrics_port,
        }

    @app.get("/state")
    async def get_state() -> dict[str, Any]:
        """Mirror state held in memory."""
        last = trader.last_health_check
        return {
            "active_trades": trader.active_trades.snapshot(),
            "active_trades_count": trader.active_trades_count,
            "max_concurrent_trades": settings.copy_trading.max_concurrent_trades,
            "ignored_coins": trader.ignored_coins.snapshot(),
            "pending_notifications": trader.notifier.pending,
            "pending_fills": trader.subscription.pending() if trader.subscription else 0,
            "last_health_check": _serialize_health_check(last) if last else None,
        }

    @app.get("/drift")
    async def get_drift() -> dict[str, Any]:
        """Run a health check now and return per-coin drift."""
        try:
            result = await trader.health_check()
        except Exception as exc:
            raise HTTPException(status_code=502, detail=format_error(exc)) from exc
        return _serialize_health_check(result)

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {
            "name": "Copy Trader Operator API",
            "version": __version__,
            "endpoints": {
                "health": "GET /health",
                "state": "GET /state",
                "drift": "GET /drift",
            },
        }

    return app
