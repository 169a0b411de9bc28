"""Logger factory shared by every pulselink module.

Each named logger writes to stderr and, unless ``PULSELINK_LOG_TO_FILE`` is
off, to its own rotating file under ``Configuration.log_directory()``.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pulselink.utilities.env import Configuration

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5


def _sanitize_logger_name(name: str) -> str:
    parts = [part for part in re.split(r"[./\\]+", name) if part]
    return "_".join(parts) or "root"


def _log_file(name: str) -> Path:
    directory = Configuration.log_directory()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{_sanitize_logger_name(name)}.log"


def _build_handlers(name: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if Configuration.file_logging_enabled():
        handlers.append(
            RotatingFileHandler(
                _log_file(name),
                maxBytes=MAX_LOG_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
        )
    return handlers


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, attaching handlers on first use."""

    level = Configuration.log_level()
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in _build_handlers(name):
        handler.setFormatter(formatter)
        handler.setLevel(level)
        logger.addHandler(handler)
    logger.propagate = False
    return logger
