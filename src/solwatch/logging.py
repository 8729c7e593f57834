"""Structured logging for the solwatch price and sync service.

Every module logs through ``get_logger(__name__)``. Fields bound with
``log_context`` (instrument_id during a price refresh, address during a
wallet snapshot, user_id while a realtime sync applies an event) ride along
on every event the current task emits and never leak into sibling tasks
refreshing other instruments concurrently.
"""

import logging
import os
from contextlib import AbstractContextManager
from typing import Any

import structlog

SERVICE_NAME = "solwatch"

# Third-party loggers that are chatty at INFO under 15s polling
NOISY_LOGGERS = ("aiohttp.access", "uvicorn.access", "ccxt.base.exchange")


def _add_service(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str | None = None) -> None:
    """Configure structlog over stdlib logging.

    Args:
        log_level: Root level name (DEBUG shows skipped and stale refreshes).
        log_format: "json" or "console"; defaults to the LOG_FORMAT
            environment variable, then "console".
    """
    log_format = (log_format or os.environ.get("LOG_FORMAT", "console")).lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_context(**fields: Any) -> AbstractContextManager[Any]:
    """Bind ``fields`` to every log event of the current task inside the block."""
    return structlog.contextvars.bound_contextvars(**fields)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)
