"""Exponential backoff for outbound calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import structlog

from copytrader.config.settings import RetryConfig
from copytrader.errors import format_error, is_retryable

T = TypeVar("T")

RetryCallback = Callable[[BaseException, int], None]

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay_sec,
            max_delay=config.max_delay_sec,
            backoff_multiplier=config.backoff_multiplier,
        )

    def delays(self) -> list[float]:
        """Waits between attempts, in order."""
        result = []
        delay = self.initial_delay
        for _ in range(max(0, self.max_attempts - 1)):
            result.append(delay)
            delay = min(delay * self.backoff_multiplier, self.max_delay)
        return result


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    on_retry: RetryCallback | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, raising the last error when exhausted.

    Non-retryable errors are raised immediately. ``on_retry(error, attempt)`` is
    called before each wait.
    """
    delay = policy.initial_delay
    attempt = 1
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.max_attempts:
                raise
            if on_retry is not None:
                on_retry(exc, attempt)
            else:
                _log.warning(
                    "retry_scheduled",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay_sec=delay,
                    **format_error(exc),
                )
            await sleep(delay)
            delay = min(delay * policy.backoff_multiplier, policy.max_delay)
            attempt += 1
