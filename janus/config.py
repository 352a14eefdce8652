"""Configuration loading and editing for janus (``config.toml``)."""

from __future__ import annotations

import difflib
import os
import re
import tempfile
import tomllib
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import tomli_w

from .errors import ConfigError
from .logging import get_logger
from .models import FileEntry, Fileset, default_target
from .paths import default_config_path, expand_tilde

logger = get_logger("config")

STATE_FILENAME = ".janus_state.json"
LOCK_FILENAME = ".janus.lock"
GENERATED_DIRNAME = ".generated"
STAGED_DIRNAME = ".staged"

_SUGGESTION_CUTOFF = 0.8


@dataclass
class JanusConfig:
    """Represents the settings defined in ``config.toml``."""

    path: Path
    dotfiles_dir: str
    vars: List[str] = field(default_factory=list)
    secrets: List[str] = field(default_factory=list)
    files: List[FileEntry] = field(default_factory=list)
    filesets: Dict[str, Fileset] = field(default_factory=dict)
    atomic_deploy: bool = True
    lock_timeout: float = 5.0
    secret_timeout: float = 30.0

    @property
    def dotfiles_path(self) -> Path:
        """Absolute dotfiles root; relative paths are taken from the config file's directory."""
        root = expand_tilde(self.dotfiles_dir)
        if not root.is_absolute():
            root = Path(os.path.abspath(self.path.parent / root))
        return root

    @property
    def generated_dir(self) -> Path:
        return self.dotfiles_path / GENERATED_DIRNAME

    @property
    def staged_dir(self) -> Path:
        return self.dotfiles_path / STAGED_DIRNAME

    @property
    def state_path(self) -> Path:
        return self.dotfiles_path / STATE_FILENAME

    @property
    def lock_path(self) -> Path:
        return self.dotfiles_path / LOCK_FILENAME

    def source_path(self, src: str) -> Path:
        return self.dotfiles_path / src

    def generated_path(self, src: str) -> Path:
        return self.generated_dir / src

    def staged_path(self, src: str) -> Path:
        return self.staged_dir / src

    def entry(self, src: str) -> Optional[FileEntry]:
        for candidate in self.files:
            if candidate.src == src:
                return candidate
        return None

    def matching_filesets(self, src: str) -> List[Fileset]:
        """Filesets whose patterns match ``src``, in declaration order."""
        return [
            fileset
            for fileset in self.filesets.values()
            if any(pattern_matches(src, pattern) for pattern in fileset.patterns)
        ]

    def filter_files(self, patterns: Optional[Sequence[str]]) -> List[FileEntry]:
        """Entries matching any of ``patterns``; ``None`` selects every entry."""
        if patterns is None:
            return list(self.files)
        return [
            entry
            for entry in self.files
            if any(pattern_matches(entry.src, pattern) for pattern in patterns)
        ]

    def resolve_filesets(self, names: Sequence[str]) -> List[str]:
        patterns: List[str] = []
        for name in names:
            fileset = self.filesets.get(name)
            if fileset is None:
                suggestion = difflib.get_close_matches(
                    name, list(self.filesets), n=1, cutoff=_SUGGESTION_CUTOFF
                )
                if suggestion:
                    raise ConfigError(f"Unknown fileset: {name}. Did you mean: {suggestion[0]}?")
                raise ConfigError(f"Unknown fileset: {name}")
            patterns.extend(fileset.patterns)
        return patterns

    def suggest_files(self, patterns: Sequence[str]) -> List[str]:
        sources = [entry.src for entry in self.files]
        suggestions: List[str] = []
        for pattern in patterns:
            for match in difflib.get_close_matches(pattern, sources, n=1, cutoff=_SUGGESTION_CUTOFF):
                if match not in suggestions:
                    suggestions.append(match)
        return suggestions


def load_config(config_path: Path | None = None) -> JanusConfig:
    """Load configuration from disk."""
    path = (config_path or default_config_path()).expanduser()
    if not path.exists():
        raise ConfigError(f"Config file not found: {path} (run `janus init` first)")
    data = _read_config(path)

    dotfiles_dir = _as_str(data.get("dotfiles_dir"))
    if not dotfiles_dir:
        raise ConfigError(f"{path.name}: `dotfiles_dir` is required")

    files: List[FileEntry] = []
    seen: set[str] = set()
    raw_files = data.get("files", [])
    if not isinstance(raw_files, list):
        raise ConfigError(f"{path.name}: `files` must be an array of tables")
    for index, raw in enumerate(raw_files):
        entry = _parse_file_entry(raw, index)
        if entry.src in seen:
            raise ConfigError(f"{path.name}: duplicate file entry for src = {entry.src!r}")
        seen.add(entry.src)
        files.append(entry)

    filesets: Dict[str, Fileset] = {}
    raw_filesets = data.get("filesets", {})
    if not isinstance(raw_filesets, dict):
        raise ConfigError(f"{path.name}: `filesets` must be a table")
    for name, raw in raw_filesets.items():
        filesets[name] = _parse_fileset(name, raw)

    return JanusConfig(
        path=path,
        dotfiles_dir=dotfiles_dir,
        vars=_as_str_list(data.get("vars"), "vars"),
        secrets=_as_str_list(data.get("secrets"), "secrets"),
        files=files,
        filesets=filesets,
        atomic_deploy=_as_bool(data.get("atomic_deploy"), default=True),
        lock_timeout=_as_float(data.get("lock_timeout"), default=5.0),
        secret_timeout=_as_float(data.get("secret_timeout"), default=30.0),
    )


def select_entries(
    config: JanusConfig,
    files: Sequence[str] = (),
    *,
    select_all: bool = False,
    filesets: Sequence[str] = (),
) -> List[FileEntry]:
    """Resolve exactly one of explicit files, ``--all`` or ``--filesets`` to entries."""
    sources = sum(1 for flag in (bool(files), select_all, bool(filesets)) if flag)
    if sources > 1:
        raise ConfigError("Cannot combine explicit files, --all, and --filesets")
    if sources == 0:
        raise ConfigError("Specify files to process, --all, or --filesets")

    if select_all:
        entries = config.filter_files(None)
        if not entries:
            logger.info("No files configured")
        return entries

    patterns = config.resolve_filesets(filesets) if filesets else list(files)
    for pattern in patterns:
        validate_pattern(pattern)
    entries = config.filter_files(patterns)
    if not entries:
        suggestions = config.suggest_files(patterns)
        if suggestions:
            raise ConfigError(
                f"No matching files found in config. Did you mean: {', '.join(suggestions)}?"
            )
        raise ConfigError("No matching files found in config")
    return entries


def pattern_matches(src: str, pattern: str) -> bool:
    return src == pattern or fnmatchcase(src, pattern)


def validate_pattern(pattern: str) -> None:
    """Reject globs that are empty or contain an unterminated character class."""
    if not pattern:
        raise ConfigError("Empty glob pattern")
    index = 0
    while index < len(pattern):
        if pattern[index] == "[":
            close = pattern.find("]", index + 2 if pattern[index + 1 : index + 2] in ("!", "]") else index + 1)
            if close == -1:
                raise ConfigError(f"Invalid glob pattern {pattern!r}: unterminated character class")
            index = close
        index += 1


# ----------------------------------------------------------------------
# Config editing (import/unimport)


def append_file_entry(config_path: Path, src: str, target: str) -> None:
    """Append a ``[[files]]`` table for ``src``; ``target`` is omitted when it is the default."""
    data = _read_config(config_path)
    files = data.setdefault("files", [])
    if not isinstance(files, list):
        raise ConfigError("Config `files` field is malformed; cannot append entry")
    table: Dict[str, Any] = {"src": src}
    if target != default_target(src):
        table["target"] = target
    files.append(table)
    _write_config(config_path, data)
    logger.debug("Added config entry: src=%s, target=%s", src, target)


def remove_file_entry(config_path: Path, src: str) -> bool:
    """Remove the ``[[files]]`` table whose ``src`` matches. Returns whether one was found."""
    data = _read_config(config_path)
    files = data.get("files")
    if not isinstance(files, list):
        logger.warning("Config entry not found for src: %s", src)
        return False
    remaining = [table for table in files if not (isinstance(table, dict) and table.get("src") == src)]
    if len(remaining) == len(files):
        logger.warning("Config entry not found for src: %s", src)
        return False
    data["files"] = remaining
    _write_config(config_path, data)
    logger.debug("Removed config entry: src=%s", src)
    return True


def write_default_config(config_path: Path, dotfiles_dir: str) -> None:
    _write_config(config_path, {"dotfiles_dir": dotfiles_dir, "vars": ["vars.toml"]})


# ----------------------------------------------------------------------
# Internal helpers


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc


def _write_config(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = tomli_w.dumps(data)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        os.replace(tmp_name, path)
    except OSError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise ConfigError(f"Failed to write config file {path}: {exc}") from exc


def _parse_file_entry(raw: Any, index: int) -> FileEntry:
    if not isinstance(raw, dict):
        raise ConfigError(f"files[{index}] must be a table")
    src = _as_str(raw.get("src"))
    if not src:
        raise ConfigError(f"files[{index}]: `src` is required")
    target = raw.get("target")
    if target is not None and not isinstance(target, str):
        raise ConfigError(f"files[{index}] ({src}): `target` must be a string")
    template = raw.get("template", True)
    if not isinstance(template, bool):
        raise ConfigError(f"files[{index}] ({src}): `template` must be a boolean")
    return FileEntry(
        src=_normalise_src(src),
        target=target,
        template=template,
        vars=tuple(_as_str_list(raw.get("vars"), f"files[{index}].vars")),
        secrets=tuple(_as_str_list(raw.get("secrets"), f"files[{index}].secrets")),
    )


def _parse_fileset(name: str, raw: Any) -> Fileset:
    if not isinstance(raw, dict):
        raise ConfigError(f"filesets.{name} must be a table")
    if "patterns" not in raw:
        raise ConfigError(f"filesets.{name}: `patterns` is required")
    patterns = _as_str_list(raw.get("patterns"), f"filesets.{name}.patterns")
    for pattern in patterns:
        validate_pattern(pattern)
    return Fileset(
        name=name,
        patterns=tuple(patterns),
        vars=tuple(_as_str_list(raw.get("vars"), f"filesets.{name}.vars")),
        secrets=tuple(_as_str_list(raw.get("secrets"), f"filesets.{name}.secrets")),
    )


def _normalise_src(src: str) -> str:
    return Path(src).as_posix().lstrip("/")


_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_str_list(value: Any, key: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ConfigError(f"`{key}` must be a list of strings")


def _as_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigError(f"Expected a boolean, got {value!r}")


def _as_float(value: Any, *, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected a number, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value)
    raise ConfigError(f"Expected a number, got {value!r}")


__all__ = [
    "ConfigError",
    "JanusConfig",
    "append_file_entry",
    "load_config",
    "pattern_matches",
    "remove_file_entry",
    "select_entries",
    "validate_pattern",
    "write_default_config",
]
