"""Durable per-file pipeline state (``.janus_state.json``)."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

from ..errors import StateStoreError
from ..logging import get_logger
from ..models import FileRecord, IgnoredPath, PipelineStatus

_STATE_VERSION = 1
_RECORD_FIELDS = ("status", "target", "generated_hash", "staged_hash", "drift")

logger = get_logger("state")


class StateStore:
    """Single source of truth for what janus actually did to each file.

    Every mutation is written through immediately with a temp-file replace,
    so a crash leaves the store matching exactly the files that completed.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._records: Dict[str, FileRecord] = {}
        self._ignored: List[IgnoredPath] = []
        self._extra: Dict[str, Any] = {}

    @classmethod
    def load(cls, path: Path) -> "StateStore":
        store = cls(path)
        if not path.exists():
            return store
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateStoreError(f"Failed to read state file {path}: {exc}") from exc
        if not text.strip():
            return store
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateStoreError(
                f"State file {path} is corrupt ({exc}). Repair it by hand or remove it and "
                "run `janus init`."
            ) from exc
        if not isinstance(payload, dict):
            raise StateStoreError(f"State file {path} must contain a JSON object")
        store._parse(payload)
        return store

    @property
    def path(self) -> Path:
        return self._path

    def get(self, src: str) -> FileRecord:
        record = self._records.get(src)
        if record is None:
            return FileRecord()
        return replace(record, extra=dict(record.extra))

    def __contains__(self, src: object) -> bool:
        return src in self._records

    def records(self) -> Iterator[Tuple[str, FileRecord]]:
        for src in sorted(self._records):
            yield src, self.get(src)

    def commit(self, src: str, record: FileRecord) -> bool:
        """Persist ``record`` for ``src``. Returns ``False`` when nothing changed."""
        previous = self._records.get(src)
        if previous == record:
            return False
        self._records[src] = replace(record, extra=dict(record.extra))
        try:
            self._write()
        except OSError as exc:
            if previous is None:
                self._records.pop(src, None)
            else:
                self._records[src] = previous
            self._log_recovery(src, exc)
            raise StateStoreError(f"Failed to write state file {self._path}: {exc}") from exc
        logger.debug("State committed: %s -> %s", src, record.status.value)
        return True

    def forget(self, src: str) -> bool:
        previous = self._records.pop(src, None)
        if previous is None:
            return False
        try:
            self._write()
        except OSError as exc:
            self._records[src] = previous
            self._log_recovery(src, exc)
            raise StateStoreError(f"Failed to write state file {self._path}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Import bookkeeping

    def is_ignored(self, path: str) -> bool:
        return any(item.path == path for item in self._ignored)

    def ignored(self) -> List[IgnoredPath]:
        return list(self._ignored)

    def add_ignored(self, path: str, reason: str = "user_declined") -> None:
        if self.is_ignored(path):
            return
        self._ignored.append(IgnoredPath(path=path, reason=reason))
        self._write_or_raise()

    def remove_ignored(self, path: str) -> bool:
        remaining = [item for item in self._ignored if item.path != path]
        if len(remaining) == len(self._ignored):
            return False
        self._ignored = remaining
        self._write_or_raise()
        return True

    # ------------------------------------------------------------------
    # Internal helpers

    def _write_or_raise(self) -> None:
        try:
            self._write()
        except OSError as exc:
            raise StateStoreError(f"Failed to write state file {self._path}: {exc}") from exc

    def _parse(self, payload: Dict[str, Any]) -> None:
        files = payload.get("files", {})
        if not isinstance(files, dict):
            raise StateStoreError(f"State file {self._path}: `files` must be an object")
        for src, raw in files.items():
            self._records[src] = _record_from_dict(self._path, src, raw)

        ignored = payload.get("ignored", [])
        if not isinstance(ignored, list):
            raise StateStoreError(f"State file {self._path}: `ignored` must be a list")
        for raw in ignored:
            if not isinstance(raw, dict) or not isinstance(raw.get("path"), str):
                raise StateStoreError(f"State file {self._path}: malformed ignored entry {raw!r}")
            self._ignored.append(
                IgnoredPath(path=raw["path"], reason=str(raw.get("reason", "user_declined")))
            )

        self._extra = {
            key: value
            for key, value in payload.items()
            if key not in {"version", "files", "ignored"}
        }

    def _payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(self._extra)
        payload["version"] = _STATE_VERSION
        payload["files"] = {
            src: _record_to_dict(record) for src, record in sorted(self._records.items())
        }
        payload["ignored"] = [
            {"path": item.path, "reason": item.reason} for item in self._ignored
        ]
        return payload

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _log_recovery(self, src: str, exc: OSError) -> None:
        logger.error(
            "Could not record state for %s (%s). The filesystem may be ahead of %s; "
            "re-run the same command once the problem is fixed and janus will "
            "reconcile the file from disk.",
            src,
            exc,
            self._path,
        )


def _record_from_dict(path: Path, src: str, raw: Any) -> FileRecord:
    if not isinstance(raw, dict):
        raise StateStoreError(f"State file {path}: record for {src} must be an object")
    try:
        status = PipelineStatus(raw.get("status", PipelineStatus.UNMANAGED.value))
    except ValueError as exc:
        raise StateStoreError(
            f"State file {path}: unknown status {raw.get('status')!r} for {src}"
        ) from exc
    target = raw.get("target")
    generated_hash = raw.get("generated_hash")
    staged_hash = raw.get("staged_hash")
    for key, value in (("target", target), ("generated_hash", generated_hash), ("staged_hash", staged_hash)):
        if value is not None and not isinstance(value, str):
            raise StateStoreError(f"State file {path}: `{key}` for {src} must be a string")
    drift = raw.get("drift", False)
    if not isinstance(drift, bool):
        raise StateStoreError(f"State file {path}: `drift` for {src} must be a boolean")
    extra = {key: value for key, value in raw.items() if key not in _RECORD_FIELDS}
    return FileRecord(
        status=status,
        target=target,
        generated_hash=generated_hash,
        staged_hash=staged_hash,
        drift=drift,
        extra=extra,
    )


def _record_to_dict(record: FileRecord) -> Dict[str, Any]:
    payload: Dict[str, Any] = dict(record.extra)
    payload["status"] = record.status.value
    payload["drift"] = record.drift
    if record.target is not None:
        payload["target"] = record.target
    if record.generated_hash is not None:
        payload["generated_hash"] = record.generated_hash
    if record.staged_hash is not None:
        payload["staged_hash"] = record.staged_hash
    return payload


__all__ = ["StateStore"]
