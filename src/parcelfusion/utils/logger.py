"""
Logging Configuration

Structured logging setup using structlog. Pipeline runs bind the source id
into the context so every event emitted during a run carries it.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

from config.settings import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add application context to all log entries.
    """
    event_dict["environment"] = settings.environment
    event_dict["app"] = "parcelfusion"
    return event_dict


def setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None
) -> structlog.BoundLogger:
    """
    Configure structured logging for the application.

    Args:
        level: Override for settings.log_level (e.g. from a --verbose flag)
        log_format: Override for settings.log_format ('json' or 'console')

    Returns:
        Configured structlog logger instance
    """
    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.ExceptionRenderer())
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


def bind_run_context(source_id: str, **extra: Any) -> None:
    """Attach the running source id (and any extras) to every subsequent event."""
    structlog.contextvars.bind_contextvars(source_id=source_id, **extra)


def clear_run_context() -> None:
    """Drop run-scoped context after a source finishes."""
    structlog.contextvars.clear_contextvars()
