"""Operator HTTP API."""

from copytrader.api.operator import create_app

__all__ = ["create_app"]
