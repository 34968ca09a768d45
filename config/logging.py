#!/usr/bin/env python3
"""
Enrollment calendar sync - structlog configuration.

Centralised structlog setup for structured JSON logging.

Usage:
    from config.logging import configure_logging

    # At application start
    configure_logging()

    # In modules
    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("message", key=value)
"""

import logging
import os
import sys

import structlog
from structlog.types import EventDict, WrappedLogger

APP_NAME = "enrollment-calendar-sync"


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add application context to every log line.

    Adds:
    - app: "enrollment-calendar-sync"
    - environment: value of APP_ENV (default "development")
    """
    event_dict["app"] = APP_NAME
    event_dict["environment"] = os.getenv("APP_ENV", "development")
    return event_dict


# Bearer tokens and provider secrets never reach the log sink
SECRET_KEYS = frozenset(
    {"token", "authorization", "access_token", "refresh_token", "credentials_json", "password"}
)
REDACTED = "[REDACTED]"


def redact_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential-bearing keys, including inside a ``headers`` mapping."""
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {
            name: REDACTED if name.lower() in SECRET_KEYS else value
            for name, value in headers.items()
        }
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    enable_colors: bool = False,
) -> None:
    """
    Configure structlog for the calendar sync engine.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, render JSON lines. If False, human-readable (dev)
        enable_colors: If True, colourise console output (dev only)

    Example:
        >>> configure_logging(level="DEBUG", json_format=False, enable_colors=True)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=enable_colors))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
