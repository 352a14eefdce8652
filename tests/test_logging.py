"""Tests for janus logging setup."""

from __future__ import annotations

import logging
from pathlib import Path

from janus.logging import configure_logging, get_logger, level_for_verbosity


def test_level_for_verbosity_clamps() -> None:
    assert level_for_verbosity(0) == logging.INFO
    assert level_for_verbosity(3) == logging.DEBUG
    assert level_for_verbosity(-1) == logging.WARNING
    assert level_for_verbosity(-2) == logging.ERROR
    assert level_for_verbosity(-9) > logging.CRITICAL


def test_configure_logging_resets_handlers_and_writes_log_file(tmp_path: Path) -> None:
    log_file = tmp_path / "janus.log"

    configure_logging(verbosity=0)
    logger = configure_logging(verbosity=1, log_file=log_file)
    get_logger("test").debug("hello %s", "file")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 2
    assert "janus.test: hello file" in log_file.read_text(encoding="utf-8")
    for handler in list(logger.handlers):
        handler.close()
