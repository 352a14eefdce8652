"""Run-scoped secret resolution with an injected cache."""

from __future__ import annotations

import tomllib
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import ConfigError, SecretConflictError, SecretResolutionError
from ..logging import get_logger
from ..models import EffectiveConfig, SecretDefinition

logger = get_logger("secrets")

CacheKey = Tuple[str, str]


class SecretCache:
    """Memo of resolved secret values keyed by ``(engine, reference)``."""

    def __init__(self) -> None:
        self._values: Dict[CacheKey, str] = {}
        self.lookups: Counter[CacheKey] = Counter()

    def get(self, key: CacheKey) -> Optional[str]:
        return self._values.get(key)

    def put(self, key: CacheKey, value: str) -> None:
        self._values[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


class SecretResolver:
    def __init__(self, engine, cache: SecretCache) -> None:
        self.engine = engine
        self.cache = cache

    def resolve(self, definition: SecretDefinition) -> str:
        key = definition.cache_key
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Secret cache hit: %s", definition.name)
            return cached
        self.cache.lookups[key] += 1
        try:
            value = self.engine.resolve(definition.engine, definition.reference)
        except SecretResolutionError as exc:
            raise SecretResolutionError(
                definition.reference, exc.reason, name=definition.name
            ) from exc
        self.cache.put(key, value)
        return value

    def resolve_all(self, refs: Iterable[SecretDefinition]) -> Dict[str, str]:
        return {definition.name: self.resolve(definition) for definition in refs}

    def flatten(self, effective: EffectiveConfig) -> Dict[str, Any]:
        """Merge variables with resolved secrets into one rendering context."""
        collisions = effective.collisions()
        if collisions:
            raise SecretConflictError({effective.entry.src: collisions})
        context: Dict[str, Any] = dict(effective.variables)
        context.update(self.resolve_all(effective.secret_refs))
        return context


def check_conflicts(effectives: Iterable[EffectiveConfig]) -> None:
    """Raise one :class:`SecretConflictError` covering every collision in the run."""
    by_file: Dict[str, List[str]] = {}
    for effective in effectives:
        if not effective.template:
            continue
        collisions = effective.collisions()
        if collisions:
            by_file[effective.entry.src] = collisions
    if by_file:
        raise SecretConflictError(by_file)


def parse_secret_files(dotfiles_dir: Path, secret_files: Sequence[str]) -> List[SecretDefinition]:
    """Parse ``[[secret]]`` tables from each file. Missing files are skipped."""
    definitions: List[SecretDefinition] = []
    for name in secret_files:
        path = dotfiles_dir / name
        if not path.exists():
            logger.warning("Secrets file not found, skipping: %s", path)
            continue
        logger.debug("Loading secrets from %s", path)
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigError(f"Failed to read secrets file {path}: {exc}") from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Failed to parse secrets file {path}: {exc}") from exc
        raw_entries = data.get("secret", [])
        if not isinstance(raw_entries, list):
            raise ConfigError(f"{path}: `secret` must be an array of tables")
        for index, raw in enumerate(raw_entries):
            definitions.append(_parse_definition(path, index, raw))
    return definitions


def _parse_definition(path: Path, index: int, raw: Any) -> SecretDefinition:
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: secret[{index}] must be a table")
    fields = {}
    for key in ("name", "engine", "reference"):
        value = raw.get(key)
        if not isinstance(value, str) or not value:
            raise ConfigError(f"{path}: secret[{index}] is missing `{key}`")
        fields[key] = value
    return SecretDefinition(**fields)


__all__ = ["SecretCache", "SecretResolver", "check_conflicts", "parse_secret_files"]
