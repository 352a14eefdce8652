"""Exception hierarchy shared across janus components."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence


class JanusError(RuntimeError):
    """Base class for all janus failures."""


class ConfigError(JanusError):
    """Raised when the configuration file cannot be loaded or a selection is invalid."""


class StateStoreError(JanusError):
    """Raised when the persisted pipeline state is unreadable or cannot be written."""


class LockError(JanusError):
    """Raised when another janus process holds the dotfiles lock."""


class TransitionError(JanusError):
    """Raised when a pipeline action is not allowed from the file's current status."""


class PublishError(JanusError):
    """Raised when a deploy or undeploy cannot be performed safely."""


class RenderError(JanusError):
    """Raised when a template fails to render."""

    def __init__(self, src: str, reason: str) -> None:
        super().__init__(f"Failed to render template {src}: {reason}")
        self.src = src
        self.reason = reason


class SecretResolutionError(JanusError):
    """Raised when a secret engine lookup fails for a single reference."""

    def __init__(self, reference: str, reason: str, *, name: Optional[str] = None) -> None:
        label = f"'{name}' ({reference})" if name else reference
        super().__init__(f"Failed to resolve secret {label}: {reason}")
        self.reference = reference
        self.reason = reason
        self.name = name


class SecretConflictError(JanusError):
    """Raised when secret names collide with variable names.

    Carries every colliding name found in the run, not only the first one.
    """

    def __init__(self, by_file: Mapping[str, Sequence[str]]) -> None:
        self.by_file: Dict[str, List[str]] = {src: sorted(names) for src, names in by_file.items()}
        self.names: List[str] = sorted({name for names in self.by_file.values() for name in names})
        details = "; ".join(f"{src}: {', '.join(names)}" for src, names in sorted(self.by_file.items()))
        super().__init__(
            f"Variable/secret name collision: {', '.join(self.names)} ({details}). "
            "Each name must be unique across vars and secrets."
        )


class SyncConflictError(JanusError):
    """Raised when staged drift no longer lines up with the source file."""

    def __init__(self, src: str, message: str, *, hunk_index: Optional[int] = None) -> None:
        where = f" (hunk {hunk_index})" if hunk_index is not None else ""
        super().__init__(f"{src}{where}: {message}")
        self.src = src
        self.hunk_index = hunk_index


__all__ = [
    "ConfigError",
    "JanusError",
    "LockError",
    "PublishError",
    "RenderError",
    "SecretConflictError",
    "SecretResolutionError",
    "StateStoreError",
    "SyncConflictError",
    "TransitionError",
]
