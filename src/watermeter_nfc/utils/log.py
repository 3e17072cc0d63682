# src/watermeter_nfc/utils/log.py
"""
Logging setup for the meter reader.

Modules get their logger via `get_logger(__name__)`. Handlers are attached to
the package logger exactly once; `configure_logging()` may be called again to
change level or add the rotating file handler (CLI does this after the
settings are loaded).
"""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

PACKAGE_LOGGER = "watermeter_nfc"
LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_SIZE_BYTES = 1 * 1024 * 1024
BACKUP_COUNT = 3

_console_handler: Optional[logging.Handler] = None
_file_handler: Optional[logging.Handler] = None


def configure_logging(level: int | str = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach console (and optionally rotating file) handlers to the package logger."""
    global _console_handler, _file_handler

    root = logging.getLogger(PACKAGE_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(formatter)
        root.addHandler(_console_handler)
    _console_handler.setLevel(level)

    if log_file and _file_handler is None:
        try:
            _file_handler = RotatingFileHandler(
                log_file,
                maxBytes=MAX_LOG_SIZE_BYTES,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as e:
            root.error("Failed to open log file %s: %s", log_file, e)
        else:
            _file_handler.setFormatter(formatter)
            root.addHandler(_file_handler)
    if _file_handler is not None:
        _file_handler.setLevel(level)

    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger below the package logger (usually `get_logger(__name__)`)."""
    if not name or name == "__main__":
        return logging.getLogger(PACKAGE_LOGGER)
    if name.startswith(PACKAGE_LOGGER):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
