"""Secret lookup, caching and conflict detection."""

from .engines import CommandSecretEngine, SecretEngine
from .resolver import SecretCache, SecretResolver, check_conflicts, parse_secret_files

__all__ = [
    "CommandSecretEngine",
    "SecretCache",
    "SecretEngine",
    "SecretResolver",
    "check_conflicts",
    "parse_secret_files",
]
