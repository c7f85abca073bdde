"""Error reporting with optional webhook alerts."""

from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone
from typing import Any

import aiohttp
import structlog

from copytrader.errors import format_error


def _format_timestamp(ts: datetime) -> str:
    """Format timestamp as ISO-8601 with Z suffix."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _compute_reason_hash(reason: str) -> str:
    """Compute a short hash for deduplication."""
    return hashlib.md5(reason.encode()).hexdigest()[:8]


class ErrorReporter:
    """Log failures and forward them to operator webhooks.

    Every report is logged at ERROR. When webhook URLs are configured the same
    report is posted once per dedup window for a given (title, coin, error).
    Slack and Discord URLs get their native message format.
    """

    def __init__(
        self,
        webhook_urls: list[str] | None = None,
        dedup_window_sec: int = 300,
        mode: str = "live",
    ) -> None:
        self.webhook_urls = list(webhook_urls or [])
        self.dedup_window_sec = dedup_window_sec
        self.mode = mode
        self._seen_timestamps: dict[tuple[str, str, str], datetime] = {}
        self._log = structlog.get_logger(__name__)

    async def report(
        self,
        title: str,
        exc: BaseException | None = None,
        *,
        alert: bool = True,
        **context: Any,
    ) -> None:
        """Log a failure; with ``alert`` also forward it to the webhooks."""
        error_fields = format_error(exc) if exc is not None else {}
        if not alert:
            self._log.warning(title, **context, **error_fields)
            return
        self._log.error(title, **context, **error_fields)
        if not self.webhook_urls:
            return

        if len(self._seen_timestamps) > 1000:
            self._cleanup_expired()

        reason = str(error_fields.get("error", ""))
        dedup_key = (title, str(context.get("coin", "")), _compute_reason_hash(reason))
        if self._is_duplicate(dedup_key):
            self._log.debug("alert_suppressed_duplicate", title=title)
            return

        payload = self._create_payload(title, reason, error_fields, context)
        await self._dispatch(payload)
        self._seen_timestamps[dedup_key] = datetime.now(timezone.utc)
        self._log.info("alert_sent", title=title, webhook_count=len(self.webhook_urls))

    def _is_duplicate(self, dedup_key: tuple[str, str, str]) -> bool:
        seen = self._seen_timestamps.get(dedup_key)
        if seen is None:
            return False
        elapsed = (datetime.now(timezone.utc) - seen).total_seconds()
        return elapsed < self.dedup_window_sec

    def _cleanup_expired(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [
            key
            for key, ts in self._seen_timestamps.items()
            if (now - ts).total_seconds() >= self.dedup_window_sec
        ]
        for key in expired:
            self._seen_timestamps.pop(key, None)

    def _create_payload(
        self,
        title: str,
        reason: str,
        error_fields: dict[str, Any],
        context: dict[str, Any],
    ) -> dict[str, Any]:
        return {
            "alert_type": title,
            "mode": self.mode,
            "coin": str(context.get("coin", "N/A")),
            "reason": reason or "N/A",
            "error_kind": error_fields.get("error_kind", "N/A"),
            "timestamp": _format_timestamp(datetime.now(timezone.utc)),
            "context": {key: str(value) for key, value in context.items()},
        }

    def _format_slack(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "attachments": [
                {
                    "color": "danger",
                    "blocks": [
                        {
                            "type": "section",
                            "text": {
                                "type": "mrkdwn",
                                "text": f":rotating_light: *{payload['alert_type']}*\n*Reason:* {payload['reason']}",
                            },
                        },
                        {
                            "type": "section",
                            "fields": [
                                {"type": "mrkdwn", "text": f"*Coin:*\n{payload['coin']}"},
                                {"type": "mrkdwn", "text": f"*Mode:*\n{payload['mode']}"},
                                {"type": "mrkdwn", "text": f"*Kind:*\n{payload['error_kind']}"},
                                {"type": "mrkdwn", "text": f"*Time:*\n{payload['timestamp']}"},
                            ],
                        },
                    ],
                }
            ],
        }

    def _format_discord(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {
            "embeds": [
                {
                    "title": f"🔴 {payload['alert_type']}",
                    "description": payload["reason"],
                    "color": 0xFF0000,
                    "fields": [
                        {"name": "Coin", "value": payload["coin"], "inline": True},
                        {"name": "Mode", "value": payload["mode"], "inline": True},
                        {"name": "Kind", "value": str(payload["error_kind"]), "inline": True},
                    ],
                    "timestamp": payload["timestamp"],
                }
            ],
        }

    async def _send_webhook(self, url: str, payload: dict[str, Any]) -> None:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as response:
                    if response.status >= 400:
                        text = await response.text()
                        self._log.warning(
                            "webhook_failed",
                            url=url,
                            status=response.status,
                            response_body=text,
                        )
                    else:
                        self._log.debug("webhook_sent", url=url)
        except asyncio.TimeoutError:
            self._log.warning("webhook_timeout", url=url)
        except Exception as exc:
            self._log.warning("webhook_error", url=url, error=str(exc))

    async def _dispatch(self, payload: dict[str, Any]) -> None:
        tasks = []
        for url in self.webhook_urls:
            if "slack" in url.lower():
                body = self._format_slack(payload)
            elif "discord" in url.lower():
                body = self._format_discord(payload)
            else:
                body = payload
            tasks.append(self._send_webhook(url, body))
        await asyncio.gather(*tasks, return_exceptions=True)
