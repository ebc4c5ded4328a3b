"""Structured logging for the replay harvester."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import structlog
from structlog.stdlib import LoggerFactory

from .config import AppSettings

LOG_MAX_BYTES = 50 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """Configure structlog on top of stdlib logging.

    ``text`` renders human-readable status lines for unattended runs, ``json``
    renders one JSON object per line.
    """
    if settings is None:
        from .config import get_settings
        settings = get_settings()

    level = getattr(logging, settings.LOG_LEVEL.upper())

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setLevel(level)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, format="%(message)s", force=True)

    # Silence noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def bind_step(rank: str, cycle: int, **extra: Any) -> None:
    """Bind the current sweep position into every following log line."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(rank=rank, cycle=cycle, **extra)


def clear_step() -> None:
    """Drop sweep context from the log context."""
    structlog.contextvars.clear_contextvars()
