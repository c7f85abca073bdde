"""Shared helpers."""

from copytrader.utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, retry_with_backoff

__all__ = ["DEFAULT_RETRY_POLICY", "RetryPolicy", "retry_with_backoff"]
