"""Per-file configuration merge: global, then filesets, then file."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml

from .config import JanusConfig
from .errors import ConfigError
from .logging import get_logger
from .models import EffectiveConfig, FileEntry, SecretDefinition
from .secrets.resolver import parse_secret_files

_YAML_SUFFIXES = {".yml", ".yaml"}


class ConfigResolver:
    """Builds :class:`EffectiveConfig` objects for configured files.

    Variable files are read once per resolver; secret files are parsed for
    every file that references them.
    """

    def __init__(self, config: JanusConfig) -> None:
        self.config = config
        self.logger = get_logger("resolver")
        self._var_cache: Dict[Path, Dict[str, Any]] = {}

    def resolve(self, entry: FileEntry) -> EffectiveConfig:
        var_files: List[str] = list(self.config.vars)
        secret_files: List[str] = list(self.config.secrets)
        for fileset in self.config.matching_filesets(entry.src):
            var_files.extend(fileset.vars)
            secret_files.extend(fileset.secrets)
        var_files.extend(entry.vars)
        secret_files.extend(entry.secrets)

        variables: Dict[str, Any] = {}
        for name in var_files:
            variables.update(self.load_vars(name))

        definitions = parse_secret_files(self.config.dotfiles_path, secret_files)
        return EffectiveConfig(
            entry=entry,
            variables=variables,
            secret_refs=_dedupe_by_name(definitions),
        )

    def load_vars(self, name: str) -> Dict[str, Any]:
        path = self.config.dotfiles_path / name
        cached = self._var_cache.get(path)
        if cached is not None:
            return cached
        if not path.exists():
            self.logger.warning("Vars file not found, skipping: %s", path)
            self._var_cache[path] = {}
            return {}
        self.logger.debug("Loading vars from %s", path)
        data = _read_vars(path)
        self._var_cache[path] = data
        return data


def _read_vars(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read vars file {path}: {exc}") from exc
    if path.suffix in _YAML_SUFFIXES:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse vars file {path}: {exc}") from exc
        if data is None:
            return {}
    else:
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Failed to parse vars file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Vars file {path} must contain a mapping at the top level")
    return data


def _dedupe_by_name(definitions: Sequence[SecretDefinition]) -> tuple[SecretDefinition, ...]:
    # later definitions win but keep the position of the first occurrence
    merged: Dict[str, SecretDefinition] = {}
    for definition in definitions:
        merged[definition.name] = definition
    return tuple(merged.values())


__all__ = ["ConfigResolver"]
