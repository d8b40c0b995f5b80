"""
Structured logging setup.

Events are logged as ``logger.info("event_name", key=value)``. A per-request
correlation id is carried in structlog's context variables so that every log
line emitted while handling a request can be tied back to it.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

CORRELATION_ID_KEY = "correlation_id"


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog to emit JSON lines."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(**initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Return a logger with the given key/values bound to every event."""
    return structlog.get_logger("chatapi").bind(**initial_values)


def set_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(**{CORRELATION_ID_KEY: correlation_id})


def clear_correlation_id() -> None:
    structlog.contextvars.unbind_contextvars(CORRELATION_ID_KEY)


logger = structlog.get_logger("chatapi")
