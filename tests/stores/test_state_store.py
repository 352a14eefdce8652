"""Tests for the durable pipeline state store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from janus.errors import StateStoreError
from janus.models import FileRecord, PipelineStatus
from janus.stores import StateStore


def test_missing_and_empty_files_load_as_empty(tmp_path: Path) -> None:
    missing = StateStore.load(tmp_path / "absent.json")
    empty_path = tmp_path / "empty.json"
    empty_path.write_text("", encoding="utf-8")
    empty = StateStore.load(empty_path)

    assert list(missing.records()) == []
    assert list(empty.records()) == []
    assert empty.get("anything").status is PipelineStatus.UNMANAGED


def test_commit_writes_through_and_round_trips(tmp_path: Path) -> None:
    path = tmp_path / ".janus_state.json"
    store = StateStore.load(path)

    changed = store.commit(
        "hypr/hypr.conf",
        FileRecord(status=PipelineStatus.GENERATED, generated_hash="abc"),
    )

    assert changed is True
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    assert payload["files"]["hypr/hypr.conf"]["status"] == "generated"
    reloaded = StateStore.load(path)
    assert reloaded.get("hypr/hypr.conf").generated_hash == "abc"


def test_unchanged_commit_skips_the_write(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = StateStore.load(tmp_path / ".janus_state.json")
    store.commit("a.conf", FileRecord(status=PipelineStatus.STAGED, staged_hash="x"))
    writes = []
    monkeypatch.setattr(store, "_write", lambda: writes.append(1))

    assert store.commit("a.conf", FileRecord(status=PipelineStatus.STAGED, staged_hash="x")) is False
    assert writes == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        '{"files": {"a.conf": "deployed"}}',
        '{"files": {"a.conf": {"status": "exploded"}}}',
        '{"files": {"a.conf": {"status": "staged", "drift": "yes"}}}',
    ],
)
def test_corrupt_state_raises_instead_of_resetting(tmp_path: Path, content: str) -> None:
    path = tmp_path / ".janus_state.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(StateStoreError):
        StateStore.load(path)
    assert path.read_text(encoding="utf-8") == content


def test_unknown_fields_survive_a_rewrite(tmp_path: Path) -> None:
    path = tmp_path / ".janus_state.json"
    path.write_text(
        json.dumps(
            {
                "version": 1,
                "future_top_level": {"keep": True},
                "files": {
                    "a.conf": {"status": "deployed", "target": "~/.config/a.conf", "owner": "me"},
                },
            }
        ),
        encoding="utf-8",
    )
    store = StateStore.load(path)

    record = store.get("a.conf")
    record.status = PipelineStatus.STAGED
    store.commit("a.conf", record)
    store.commit("b.conf", FileRecord(status=PipelineStatus.GENERATED))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["future_top_level"] == {"keep": True}
    assert payload["files"]["a.conf"]["owner"] == "me"
    assert payload["files"]["a.conf"]["status"] == "staged"


def test_failed_write_raises_and_keeps_previous_record(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / ".janus_state.json"
    store = StateStore.load(path)
    store.commit("a.conf", FileRecord(status=PipelineStatus.GENERATED))

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("janus.stores.state.os.replace", broken_replace)

    with pytest.raises(StateStoreError, match="disk full"):
        store.commit("a.conf", FileRecord(status=PipelineStatus.STAGED))

    assert store.get("a.conf").status is PipelineStatus.GENERATED
    assert sorted(p.name for p in tmp_path.iterdir()) == [".janus_state.json"]


def test_ignored_paths_and_forget(tmp_path: Path) -> None:
    path = tmp_path / ".janus_state.json"
    store = StateStore.load(path)
    store.add_ignored("~/.config/noise.conf")
    store.add_ignored("~/.config/noise.conf")
    store.commit("a.conf", FileRecord(status=PipelineStatus.GENERATED))

    reloaded = StateStore.load(path)
    assert reloaded.is_ignored("~/.config/noise.conf")
    assert len(reloaded.ignored()) == 1
    assert reloaded.ignored()[0].reason == "user_declined"

    assert reloaded.forget("a.conf") is True
    assert reloaded.forget("a.conf") is False
    assert reloaded.remove_ignored("~/.config/noise.conf") is True
    assert list(StateStore.load(path).records()) == []
