"""Logging setup: structlog events rendered through stdlib logging on stderr.

stdout is reserved for the change log itself (``ingest -o -``), so every
handler writes to stderr.
"""

from __future__ import annotations

import logging
import logging.config
import os

import structlog

# Chatty third-party loggers held at WARNING regardless of the chosen level.
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the CLI.

    *level* wins over ``COMMITREEL_LOG_LEVEL`` (default INFO);
    ``COMMITREEL_LOG_FORMAT`` picks ``console`` or ``json``.
    """
    log_level = (level or os.environ.get("COMMITREEL_LOG_LEVEL") or "INFO").upper()
    fmt = os.environ.get("COMMITREEL_LOG_FORMAT", "console").lower()

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    loggers = {name: {"level": "WARNING"} for name in _QUIET_LOGGERS}
    loggers["commitreel"] = {"level": log_level}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "events": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "foreign_pre_chain": pre_chain,
                    "processors": [
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        _renderer(fmt),
                    ],
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": "events",
                },
            },
            "root": {"handlers": ["stderr"], "level": log_level},
            "loggers": loggers,
        }
    )
