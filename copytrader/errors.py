"""Error kinds and retryability classification."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

import httpx
from websockets.exceptions import ConnectionClosed, InvalidHandshake

RETRYABLE_STATUS_CODES = frozenset({418, 429, 500, 502, 503, 504})


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    TRADING = "trading"
    ACCOUNT = "account"
    CONFIG = "config"
    FATAL = "fatal"


class CopyTradingError(Exception):
    """Failure tagged with its kind, retryability and log context."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.retryable = kind is ErrorKind.TRANSIENT if retryable is None else retryable
        self.context = dict(context or {})

    def __repr__(self) -> str:
        return f"CopyTradingError({self.kind.value}: {self.message!r})"


def is_retryable(exc: BaseException) -> bool:
    """Transport-level faults and explicitly tagged errors are retryable."""
    if isinstance(exc, CopyTradingError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, (ConnectionClosed, InvalidHandshake)):
        return True
    # TimeoutError and OSError cover DNS failures and connection resets
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, OSError))


def http_error(
    exc: httpx.HTTPStatusError,
    kind: ErrorKind = ErrorKind.TRADING,
    **context: Any,
) -> CopyTradingError:
    """Convert an HTTP status failure into a tagged error."""
    status = exc.response.status_code
    retryable = status in RETRYABLE_STATUS_CODES
    detail: dict[str, Any] = {}
    try:
        body = exc.response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = {
            "error_code": body.get("errorCode"),
            "api_message": body.get("message"),
        }
    message = detail.get("api_message") or exc.response.reason_phrase or "HTTP error"
    return CopyTradingError(
        f"HTTP {status}: {message}",
        ErrorKind.TRANSIENT if retryable else kind,
        retryable=retryable,
        context={"status_code": status, **detail, **context},
    )


def format_error(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into structured log fields."""
    if isinstance(exc, CopyTradingError):
        return {
            "error": exc.message,
            "error_kind": exc.kind.value,
            "retryable": exc.retryable,
            "error_context": exc.context,
        }
    return {
        "error": str(exc) or type(exc).__name__,
        "error_kind": "unknown",
        "retryable": is_retryable(exc),
        "error_type": type(exc).__name__,
    }


def wrap_error(exc: BaseException, message: str, kind: ErrorKind, **context: Any) -> CopyTradingError:
    """Return ``exc`` if already tagged, otherwise wrap it keeping retryability."""
    if isinstance(exc, CopyTradingError):
        return exc
    return CopyTradingError(
        f"{message}: {exc}" if str(exc) else message,
        kind,
        retryable=is_retryable(exc),
        context={"original_error": type(exc).__name__, **context},
    )
