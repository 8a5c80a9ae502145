"""Structured logging configuration."""

import sys
import structlog
import logging
from pathlib import Path
from typing import List
from relaychat.core.config import RelaySettings

# Every module logger is a child of this one, so handlers attach here and not on root
LOGGER_NAME = "relaychat"


def _build_handlers(settings: RelaySettings) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def configure_logging(settings: RelaySettings) -> None:
    """Route relay client logs through structlog at the configured level and format.

    Safe to call again; handlers from a previous call are replaced.
    """
    level = getattr(logging, settings.log_level)

    package_logger = logging.getLogger(LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(settings):
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))
        processors.insert(0, structlog.stdlib.add_logger_name)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.insert(0, structlog.processors.TimeStamper(fmt="%H:%M:%S"))
        processors.append(structlog.dev.ConsoleRenderer(
            colors=False,
            pad_event=35,
            exception_formatter=structlog.dev.plain_traceback
        ))

    # Module loggers are created at import time, so they must not freeze the first config they see
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_push_outcome(logger: structlog.BoundLogger, topic: str, event: str,
                     status: str, ref: str, **kwargs) -> None:
    """Log the settlement of a channel push with standardized fields."""
    logger.debug(
        "Push settled",
        topic=topic,
        push_event=event,
        status=status,
        ref=ref,
        **kwargs
    )
