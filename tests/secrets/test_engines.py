"""Tests for command-backed secret engines."""

from __future__ import annotations

import subprocess

import pytest

from janus.errors import SecretResolutionError
from janus.secrets import CommandSecretEngine


def test_onepassword_runs_op_read_and_strips_output() -> None:
    calls = []

    def runner(args, *, timeout):
        calls.append((list(args), timeout))
        return "value\n"

    engine = CommandSecretEngine(timeout=7, runner=runner)

    assert engine.resolve("1password", "op://Private/item/field") == "value"
    assert calls == [(["op", "read", "op://Private/item/field"], 7)]


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (FileNotFoundError("op"), "not found"),
        (subprocess.TimeoutExpired(["op"], 1), "timed out"),
        (subprocess.CalledProcessError(1, ["op"], stderr="no such item"), "no such item"),
    ],
)
def test_runner_failures_become_resolution_errors(error: Exception, message: str) -> None:
    def runner(args, *, timeout):
        raise error

    engine = CommandSecretEngine(runner=runner)

    with pytest.raises(SecretResolutionError, match=message):
        engine.resolve("1password", "op://Private/item/field")


def test_empty_output_is_an_error() -> None:
    engine = CommandSecretEngine(runner=lambda args, *, timeout: "  \n")

    with pytest.raises(SecretResolutionError, match="empty output"):
        engine.resolve("1password", "op://Private/item/field")


def test_unknown_engine_is_an_error() -> None:
    engine = CommandSecretEngine(runner=lambda args, *, timeout: "value")

    with pytest.raises(SecretResolutionError, match="unknown secret engine: vault"):
        engine.resolve("vault", "secret/path")
