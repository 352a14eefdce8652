"""Symlink publication of staged files onto their targets."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from .errors import PublishError
from .logging import get_logger

TEMP_SUFFIX = ".janus.tmp"
BACKUP_SUFFIX = ".janus.bak"


class Publisher:
    """Deploys staged files as symlinks and converts them back to plain files.

    In atomic mode the new link is created beside the target and renamed over
    it, so the target path is never observed missing.
    """

    def __init__(self, atomic: bool = True) -> None:
        self.atomic = atomic
        self.logger = get_logger("publisher")

    def deploy(self, staged: Path, target: Path, *, force: bool = False) -> bool:
        """Point ``target`` at ``staged``. Returns ``False`` when already deployed."""
        if is_janus_symlink(target, staged):
            return False
        if target.is_dir() and not target.is_symlink():
            raise PublishError(f"Target {target} is a directory")
        target.parent.mkdir(parents=True, exist_ok=True)

        occupied = target.exists() or target.is_symlink()
        if occupied and not force:
            backup = backup_path(target)
            try:
                shutil.copy2(target, backup, follow_symlinks=False)
            except OSError as exc:
                raise PublishError(f"Failed to back up {target} to {backup}: {exc}") from exc
            self.logger.info("Backed up existing %s to %s", target, backup.name)

        if self.atomic:
            self._swap_link(staged, target)
        else:
            try:
                if occupied:
                    target.unlink()
                os.symlink(staged, target)
            except OSError as exc:
                raise PublishError(f"Failed to link {target}: {exc}") from exc
        return True

    def undeploy(self, staged: Path, target: Path, *, remove_file: bool = False) -> None:
        """Replace the janus symlink at ``target`` with a copy, or remove it."""
        if not is_janus_symlink(target, staged):
            raise PublishError(f"{target} is not a janus symlink to {staged}")
        if remove_file:
            try:
                target.unlink()
            except OSError as exc:
                raise PublishError(f"Failed to remove {target}: {exc}") from exc
            return

        if self.atomic:
            temp = temp_path(target)
            try:
                _unlink_quietly(temp)
                shutil.copy2(staged, temp)
                os.replace(temp, target)
            except OSError as exc:
                _unlink_quietly(temp)
                raise PublishError(f"Failed to replace {target} with a copy: {exc}") from exc
        else:
            try:
                target.unlink()
                shutil.copy2(staged, target)
            except OSError as exc:
                raise PublishError(f"Failed to replace {target} with a copy: {exc}") from exc

    def _swap_link(self, staged: Path, target: Path) -> None:
        temp = temp_path(target)
        try:
            _unlink_quietly(temp)
            os.symlink(staged, temp)
            os.replace(temp, target)
        except OSError as exc:
            _unlink_quietly(temp)
            raise PublishError(f"Failed to link {target}: {exc}") from exc


def is_janus_symlink(target: Path, staged: Path) -> bool:
    if not target.is_symlink():
        return False
    link = Path(os.readlink(target))
    if not link.is_absolute():
        link = target.parent / link
    return os.path.normpath(link) == os.path.normpath(staged)


def temp_path(target: Path) -> Path:
    return target.with_name(target.name + TEMP_SUFFIX)


def backup_path(target: Path) -> Path:
    return target.with_name(target.name + BACKUP_SUFFIX)


def _unlink_quietly(path: Path) -> None:
    if path.exists() or path.is_symlink():
        path.unlink()


__all__ = ["BACKUP_SUFFIX", "Publisher", "TEMP_SUFFIX", "backup_path", "is_janus_symlink"]
