"""Structured logging configuration.

structlog renders application events; stdlib records from uvicorn, httpx and
SQLAlchemy are routed to the same stream at the configured level.
"""
import logging
import sys
from typing import Any

import structlog

# Libraries that log every request or statement at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def _add_service(app_name: str | None):
    def processor(_logger: Any, _method: str, event_dict: dict) -> dict:
        if app_name:
            event_dict.setdefault("service", app_name)
        return event_dict

    return processor


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    app_name: str | None = None,
) -> None:
    """Configure structured logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_service(app_name),
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(stream=sys.stdout, level=level, format="%(levelname)s %(name)s: %(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> Any:
    """Get a configured structlog logger."""
    return structlog.get_logger(name)
