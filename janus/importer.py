"""Bring existing configuration files under janus management."""

from __future__ import annotations

import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Callable, List, Protocol

from rich.console import Console
from rich.prompt import Prompt

from .config import JanusConfig, append_file_entry, load_config
from .errors import ConfigError
from .logging import get_logger
from .models import FileOutcome, Outcome, RunReport
from .orchestrator import PER_FILE_ERRORS, Orchestrator
from .paths import collapse_tilde, config_home, expand_tilde, home_dir
from .stores import StateStore

DEFAULT_MAX_DEPTH = 10


def map_import_path(path: Path, home: Path, config_dir: Path) -> str:
    """Return the ``src`` a discovered file is stored under in the dotfiles root.

    ``~/.config/hypr/hypr.conf`` maps to ``hypr/hypr.conf``, ``~/.bashrc`` to
    ``bashrc`` and ``/etc/systemd/system/foo.service`` to
    ``etc_systemd_system_foo.service``.
    """
    absolute = Path(os.path.abspath(path))
    try:
        return absolute.relative_to(config_dir).as_posix()
    except ValueError:
        pass
    try:
        relative = absolute.relative_to(home).as_posix()
    except ValueError:
        return absolute.as_posix().lstrip("/").replace("/", "_")
    return relative[1:] if relative.startswith(".") else relative


class ImportChoice(str, Enum):
    IMPORT = "import"
    IGNORE = "ignore"
    SKIP = "skip"


class ImportPrompter(Protocol):
    def choose(self, path: str) -> ImportChoice:
        ...


class RichImportPrompter:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def choose(self, path: str) -> ImportChoice:
        answer = Prompt.ask(
            f"Import {path}?",
            choices=[choice.value for choice in ImportChoice],
            default=ImportChoice.IMPORT.value,
            console=self.console,
        )
        return ImportChoice(answer)


class Importer:
    """Walks a path, asks about each unmanaged file and applies the ones accepted."""

    def __init__(
        self,
        config: JanusConfig,
        store: StateStore,
        prompter: ImportPrompter,
        orchestrator_factory: Callable[[JanusConfig], Orchestrator],
        *,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.store = store
        self.prompter = prompter
        self.orchestrator_factory = orchestrator_factory
        self.dry_run = dry_run
        self.logger = get_logger("importer")

    def run(
        self, path: str, *, import_all: bool = False, max_depth: int = DEFAULT_MAX_DEPTH
    ) -> RunReport:
        report = RunReport("import")
        root = expand_tilde(path)
        if not root.exists():
            raise ConfigError(f"Path does not exist: {root}")

        files = discover_files(root, max_depth) if root.is_dir() else [root]
        if not files:
            self.logger.info("No files found to import")
            return report
        self.logger.info("Found %d file(s) to consider", len(files))

        managed = {Path(os.path.abspath(entry.target_path())) for entry in self.config.files}
        for file_path in files:
            display = collapse_tilde(file_path)
            if Path(os.path.abspath(file_path)) in managed:
                self.logger.debug("Already managed, skipping: %s", display)
                continue
            if self.store.is_ignored(display):
                self.logger.debug("Already ignored, skipping: %s", display)
                continue

            if not import_all:
                choice = self.prompter.choose(display)
                if choice is ImportChoice.IGNORE:
                    if self.dry_run:
                        self.logger.info("[dry-run] Would ignore %s", display)
                    else:
                        self.store.add_ignored(display)
                        self.logger.info("Ignored %s", display)
                    report.add(FileOutcome(display, "import", Outcome.SKIPPED, "Ignored"))
                    continue
                if choice is ImportChoice.SKIP:
                    report.add(FileOutcome(display, "import", Outcome.SKIPPED, "Skipped"))
                    continue

            try:
                self._import_file(file_path, display, report)
            except PER_FILE_ERRORS as exc:
                self.logger.warning("Failed to import %s: %s", display, exc)
                report.add(FileOutcome(display, "import", Outcome.FAILED, str(exc), error=exc))
        return report

    def _import_file(self, file_path: Path, display: str, report: RunReport) -> None:
        src = map_import_path(file_path, home_dir(), config_home())
        dest = self.config.source_path(src)
        if dest.exists():
            raise FileExistsError(
                f"Destination already exists: {dest} (would overwrite existing source file)"
            )
        if self.dry_run:
            self.logger.info("[dry-run] Would import: %s -> %s", display, src)
            report.add(FileOutcome(src, "import", Outcome.DRY_RUN, f"Would import {display}"))
            return

        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(file_path, dest)
        append_file_entry(self.config.path, src, display)
        self.config = load_config(self.config.path)
        entry = self.config.entry(src)
        if entry is None:
            raise ConfigError(f"Config entry for {src} missing after import")

        report.add(FileOutcome(src, "import", Outcome.OK, f"Imported {display}"))
        orchestrator = self.orchestrator_factory(self.config)
        report.extend(orchestrator.apply([entry], force=True))
        self.logger.info("Imported %s", display)


def discover_files(root: Path, max_depth: int) -> List[Path]:
    """Regular files under ``root`` (following links) at most ``max_depth`` levels down."""
    found: List[Path] = []
    for current, dirnames, filenames in os.walk(root, followlinks=True):
        depth = len(Path(current).relative_to(root).parts)
        if depth + 1 >= max_depth:
            dirnames[:] = []
        else:
            dirnames.sort()
        if depth + 1 > max_depth:
            continue
        for name in sorted(filenames):
            path = Path(current) / name
            if path.is_file():
                found.append(path)
    return found


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "ImportChoice",
    "ImportPrompter",
    "Importer",
    "RichImportPrompter",
    "discover_files",
    "map_import_path",
]
