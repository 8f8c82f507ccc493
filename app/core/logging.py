"""Logging for prodev.

All loggers live under the ``prodev`` namespace.  ``setup_logging()`` is
called once by the entry point (and by the API lifespan); modules just call
``get_logger("storage.repo_store")`` at import time.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.core.config import get_settings

ROOT_LOGGER = "prodev"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Client libraries that log one INFO line per HTTP request.
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")

_configured = False


def setup_logging(level: str | None = None) -> logging.Logger:
    """Attach console and rotating-file handlers to the ``prodev`` logger. Idempotent."""
    global _configured
    logger = logging.getLogger(ROOT_LOGGER)
    if _configured:
        return logger

    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False

    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    logger.addHandler(console)

    # 5 MB x 3 backups; an empty LOG_FILE disables the file handler
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    logger.info("Logging initialised (level=%s, file=%s)", level_name, settings.log_file or "-")
    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Return ``prodev.<name>``; names already under ``prodev`` are used as is."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
