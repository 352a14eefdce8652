"""Logging utilities for janus commands."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "janus"

# verbose minus quiet, clamped to the ends of this table
_LEVELS = {
    -3: logging.CRITICAL + 10,
    -2: logging.ERROR,
    -1: logging.WARNING,
    0: logging.INFO,
    1: logging.DEBUG,
}


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the janus hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


def level_for_verbosity(verbosity: int) -> int:
    clamped = max(-3, min(1, verbosity))
    return _LEVELS[clamped]


def configure_logging(
    *, verbosity: int = 0, log_file: Path | None = None
) -> logging.Logger:
    """Configure the janus logger with console output and optional file sink."""
    level = level_for_verbosity(verbosity)
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Reset handlers to avoid duplicate output when the CLI is invoked multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter("[janus] %(levelname)s %(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(min(level, logging.DEBUG))
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = ["configure_logging", "get_logger", "level_for_verbosity"]
