"""Tests for the advisory process lock."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from janus.errors import LockError
from janus.lock import RETRY_INTERVAL, ProcessLock


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_lock_writes_owner_pid_and_releases(tmp_path: Path) -> None:
    path = tmp_path / ".janus.lock"

    with ProcessLock(path) as lock:
        assert lock.held
        assert path.read_text(encoding="ascii").strip() == str(os.getpid())

    assert not lock.held
    assert path.read_text(encoding="ascii") == ""


def test_second_lock_times_out_naming_the_holder(tmp_path: Path) -> None:
    path = tmp_path / ".janus.lock"
    clock = _FakeClock()
    contender = ProcessLock(path, timeout=1.0, sleep=clock.sleep, clock=clock)

    with ProcessLock(path):
        with pytest.raises(LockError, match=f"held by PID {os.getpid()}"):
            contender.acquire()

    assert clock.sleeps and set(clock.sleeps) == {RETRY_INTERVAL}
    assert not contender.held


def test_lock_is_available_after_release(tmp_path: Path) -> None:
    path = tmp_path / ".janus.lock"
    first = ProcessLock(path)
    first.acquire()
    first.release()

    second = ProcessLock(path, timeout=0)
    second.acquire()
    assert second.held
    second.release()
