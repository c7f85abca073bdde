"""Structured logging configuration.

structlog events are handed to stdlib logging and rendered by a
``ProcessorFormatter`` per handler, so the console and the rotating
``errors.log`` see the same events as third-party stdlib records.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from copytrader.config.settings import MonitoringConfig

ERROR_LOG_NAME = "errors.log"
NOISY_LOGGERS = ("httpx", "httpcore", "websockets", "aiohttp")

# Applied to stdlib records that did not come through structlog
_FOREIGN_PRE_CHAIN: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _formatter(json_logs: bool) -> structlog.stdlib.ProcessorFormatter:
    if json_logs:
        processors: list[structlog.types.Processor] = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ]
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_FOREIGN_PRE_CHAIN,
        processors=processors,
    )


def configure_logging(
    log_level: str = "INFO",
    logs_path: str | Path | None = None,
    monitoring: MonitoringConfig | None = None,
) -> None:
    """Route structlog through stdlib logging: stdout at ``log_level``, errors.log at ERROR."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    json_logs = monitoring.json_logs if monitoring else True

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(json_logs))
    root.addHandler(console)

    if logs_path:
        log_dir = Path(logs_path)
        log_dir.mkdir(parents=True, exist_ok=True)
        errors = RotatingFileHandler(
            log_dir / ERROR_LOG_NAME,
            maxBytes=monitoring.error_log_max_bytes if monitoring else 5_000_000,
            backupCount=monitoring.error_log_backup_count if monitoring else 3,
            encoding="utf-8",
        )
        errors.setLevel(logging.ERROR)
        # The file is always JSON so it can be grepped and parsed
        errors.setFormatter(_formatter(json_logs=True))
        root.addHandler(errors)

    # REST traffic is logged by the connectors as rest_request / rest_response
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
