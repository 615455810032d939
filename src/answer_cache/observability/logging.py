"""Structured logging configuration.

Logs are JSON in production (for log aggregators) and colored console
output elsewhere. Every module asks for its own named logger, which gives
each log line its scope:

    >>> from answer_cache.observability.logging import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("cache_hit", kind="exact", query_hash="9f1c...")

Configuration:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    - LOG_FORMAT: json, console (default: json in production, console otherwise)
    - ENVIRONMENT: development, production
"""

import logging
import os
import sys
from typing import Any

import structlog
from structlog.types import Processor

_configured = False

# Keys whose values never reach the log output
_REDACTED_KEYS = frozenset(
    {"password", "token", "access_token", "refresh_token", "authorization", "api_key"}
)


def _redact_secrets(
    _logger: Any, _method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    for key in _REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[REDACTED]"
    return event_dict


def configure_logging(
    level: str | None = None,
    log_format: str | None = None,
    is_production: bool | None = None,
) -> None:
    """Configure structured logging for the process.

    Safe to call multiple times; only the first call takes effect.

    Args:
        level: Log level name. Defaults to LOG_LEVEL.
        log_format: "json" or "console". Defaults by environment.
        is_production: Override production detection. Defaults to ENVIRONMENT.
    """
    global _configured
    if _configured:
        return

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

    if is_production is None:
        is_production = os.getenv("ENVIRONMENT", "development").lower() == "production"

    if log_format is None:
        log_format = os.getenv("LOG_FORMAT", "json" if is_production else "console")

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, configuring logging on first use.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured structlog BoundLogger instance.
    """
    if not _configured:
        configure_logging()

    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger


def bind_context(**kwargs: Any) -> None:
    """Bind context variables (request id, zone, ...) to subsequent log calls."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
