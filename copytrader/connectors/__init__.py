"""Exchange, execution backend and streaming connectors."""

from copytrader.connectors.arena import ArenaRestClient
from copytrader.connectors.hyperliquid import HyperliquidInfoClient
from copytrader.connectors.ws_client import ConnectionState, HyperliquidWebSocketClient

__all__ = [
    "ArenaRestClient",
    "HyperliquidInfoClient",
    "HyperliquidWebSocketClient",
    "ConnectionState",
]
