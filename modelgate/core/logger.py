"""Logging setup for ModelGate.

Every module logs through `logging.getLogger(__name__)`, so configuring
the "modelgate" logger covers the whole package. Decisions are logged at
INFO, evaluation faults and ignored overrides at WARNING.
"""

import logging
import logging.handlers
import os
from typing import Optional

from modelgate.core.config import get_settings

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
ISO_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Chatty third-party loggers kept at WARNING unless debugging
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def _parse_level(level: str) -> int:
    level_upper = level.upper()
    if level_upper not in LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {level}. Must be one of: {', '.join(LOG_LEVELS)}"
        )
    return getattr(logging, level_upper)


def _rotating_file_handler(
    log_dir: str, name: str, max_bytes: int, backup_count: int
) -> logging.Handler:
    os.makedirs(log_dir, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, f"{name}.log"),
        maxBytes=max_bytes,
        backupCount=backup_count,
    )


def setup_logger(
    name: str,
    log_dir: str = "/var/log/modelgate",
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    file_logging: bool = True,
    console_logging: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Attach file and console handlers to a named logger.

    Args:
        name: Logger name; also the log file name
        log_dir: Directory for the rotating log file
        level: Level name, case-insensitive
        log_format: Record format, DEFAULT_FORMAT if omitted
        date_format: Timestamp format, ISO 8601 if omitted
        file_logging: Write to `<log_dir>/<name>.log`
        console_logging: Write to stderr
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files to keep

    Returns:
        The configured logger. Calling again only updates the level.

    Raises:
        ValueError: If the level name is unknown
    """
    logger = logging.getLogger(name)
    logger.setLevel(_parse_level(level))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        log_format or DEFAULT_FORMAT, datefmt=date_format or ISO_DATE_FORMAT
    )
    handlers = []
    if file_logging:
        handlers.append(_rotating_file_handler(log_dir, name, max_bytes, backup_count))
    if console_logging:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def configure_logging(settings=None) -> logging.Logger:
    """Configure the package logger from Settings (the cached settings by default)."""
    settings = settings or get_settings()

    logger = setup_logger(
        "modelgate",
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.file_logging,
    )
    if not settings.debug:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for `name`, which setup_logger may have configured."""
    return logging.getLogger(name)
