"""Path helpers for tilde expansion and XDG locations."""

from __future__ import annotations

import os
from pathlib import Path


def home_dir() -> Path:
    """Return the user's home directory, honouring ``$HOME``."""
    return Path(os.environ.get("HOME") or Path.home())


def config_home() -> Path:
    """Return ``$XDG_CONFIG_HOME`` or ``~/.config``."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return home_dir() / ".config"


def default_config_path() -> Path:
    return config_home() / "janus" / "config.toml"


def expand_tilde(path: str | Path) -> Path:
    """Expand a leading ``~`` to the home directory; other paths are returned unchanged."""
    text = str(path)
    if text == "~":
        return home_dir()
    if text.startswith("~/"):
        return home_dir() / text[2:]
    return Path(text)


def collapse_tilde(path: str | Path) -> str:
    """Render ``path`` with the home directory collapsed back to ``~`` for display and storage."""
    candidate = Path(path)
    try:
        relative = candidate.relative_to(home_dir())
    except ValueError:
        return candidate.as_posix()
    if not relative.parts:
        return "~"
    return f"~/{relative.as_posix()}"


def remove_empty_parents(path: Path, stop_at: Path) -> None:
    """Remove empty directories above ``path`` up to, but excluding, ``stop_at``."""
    current = path.parent
    while current != stop_at and stop_at in current.parents:
        try:
            current.rmdir()
        except OSError:
            break
        current = current.parent


__all__ = [
    "collapse_tilde",
    "config_home",
    "default_config_path",
    "expand_tilde",
    "home_dir",
    "remove_empty_parents",
]
