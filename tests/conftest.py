from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from tests._fixtures.dotfiles_builder import DotfilesBuilder, FakeSecretEngine


@pytest.fixture
def dotfiles(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> DotfilesBuilder:
    """Provide a dotfiles builder with HOME and XDG_CONFIG_HOME pointed at tmp_path."""
    builder = DotfilesBuilder(tmp_path)
    monkeypatch.setenv("HOME", str(builder.home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(builder.config_home))
    return builder


@pytest.fixture
def secret_engine() -> FakeSecretEngine:
    return FakeSecretEngine()


@pytest.fixture(autouse=True)
def _reset_janus_logger() -> Iterator[None]:
    """Undo CLI logging setup so caplog sees records in later tests."""
    yield
    logger = logging.getLogger("janus")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
