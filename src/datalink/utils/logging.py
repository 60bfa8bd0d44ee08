"""Structured logging setup shared by every datalink component."""

import functools
import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import List, Optional

import colorlog
import structlog
from structlog.typing import Processor

from ..config.settings import get_settings

# Handlers installed here carry this name so a later setup can replace them.
HANDLER_NAME = "datalink"

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _resolve_level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def _processors(format_type: str) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if format_type == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    return processors


def _console_handler(level: int, format_type: str) -> logging.Handler:
    if format_type == "console":
        handler = colorlog.StreamHandler(sys.stderr)
        handler.setFormatter(colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            reset=True,
            log_colors=LEVEL_COLORS,
        ))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    return handler


def _file_handler(file_path: str, level: int) -> logging.Handler:
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """Configure structlog and the root logger.

    Arguments left unset fall back to the ``DATALINK_LOG_*`` settings.
    Calling this again replaces the handlers installed by the previous call.

    Args:
        log_level: Standard level name such as ``INFO``
        log_format: ``json`` or ``console``
        log_file: Optional path of a rotating log file
    """
    settings = get_settings().logging
    level = _resolve_level(log_level or settings.level)
    format_type = (log_format or settings.format).lower()
    file_path = log_file or settings.file_path

    structlog.configure(
        processors=_processors(format_type),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if handler.get_name() == HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()

    handlers = [_console_handler(level, format_type)]
    if file_path:
        handlers.append(_file_handler(file_path, level))
    for handler in handlers:
        handler.set_name(HANDLER_NAME)
        root.addHandler(handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_async_execution_time(func):
    """Log how long a coroutine took, and its error when it raised."""

    logger = get_logger(func.__module__)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        started = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Operation failed",
                function=func.__qualname__,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(e)
            )
            raise
        logger.debug(
            "Operation completed",
            function=func.__qualname__,
            duration_ms=round((time.perf_counter() - started) * 1000, 2)
        )
        return result

    return wrapper
