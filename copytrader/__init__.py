"""Mirror an observed Hyperliquid account onto a controlled account."""

__version__ = "0.1.0"
