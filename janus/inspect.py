"""Read-only status and diff reporting."""

from __future__ import annotations

import difflib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import JanusConfig, pattern_matches
from .errors import ConfigError
from .models import FileEntry, PipelineStatus
from .orchestrator import content_hash, observed_status
from .publisher import is_janus_symlink
from .stores import StateStore
from .sync.hunks import split_lines


@dataclass
class StatusFilters:
    only_diffs: bool = False
    deployed: bool = False
    undeployed: bool = False


@dataclass
class FileStatus:
    src: str
    status: PipelineStatus
    deployed: bool
    detail: str
    drift: bool = False
    changed_lines: int = 0

    @property
    def has_diff(self) -> bool:
        return any(marker in self.detail for marker in ("diff", "missing", "not yet"))


@dataclass
class StatusReport:
    statuses: List[FileStatus] = field(default_factory=list)
    # (fileset name, files changed, lines changed), most lines first
    fileset_summary: List[Tuple[str, int, int]] = field(default_factory=list)


@dataclass
class FileDiff:
    src: str
    state: str
    diff: str = ""


def compute_status(
    config: JanusConfig,
    store: StateStore,
    entries: Sequence[FileEntry],
    filters: Optional[StatusFilters] = None,
) -> StatusReport:
    filters = filters or StatusFilters()
    if filters.deployed and filters.undeployed:
        raise ConfigError("Cannot specify both --deployed and --undeployed")

    report = StatusReport()
    for entry in entries:
        record = store.get(entry.src)
        status = observed_status(config, entry, record.status)
        staged = config.staged_path(entry.src)
        deployed = status is PipelineStatus.DEPLOYED and is_janus_symlink(entry.target_path(), staged)
        row = FileStatus(
            src=entry.src,
            status=status,
            deployed=deployed,
            detail=_detail(config, entry, deployed),
            drift=_drifted(staged, record.staged_hash) or record.drift,
            changed_lines=count_changed_lines(config.generated_path(entry.src), staged),
        )
        if filters.deployed and not row.deployed:
            continue
        if filters.undeployed and row.deployed:
            continue
        if filters.only_diffs and not row.has_diff:
            continue
        report.statuses.append(row)

    report.fileset_summary = _fileset_summary(config, report.statuses)
    return report


def compute_diffs(config: JanusConfig, entries: Sequence[FileEntry]) -> List[FileDiff]:
    """Unified diff of generated against staged output for each entry."""
    diffs: List[FileDiff] = []
    for entry in entries:
        generated = config.generated_path(entry.src)
        staged = config.staged_path(entry.src)
        if not generated.is_file():
            diffs.append(FileDiff(entry.src, "missing-generated"))
            continue
        if not staged.is_file():
            diffs.append(FileDiff(entry.src, "missing-staged"))
            continue
        old_bytes = generated.read_bytes()
        new_bytes = staged.read_bytes()
        if old_bytes == new_bytes:
            diffs.append(FileDiff(entry.src, "identical"))
            continue
        old = old_bytes.decode("utf-8", errors="replace")
        new = new_bytes.decode("utf-8", errors="replace")
        text = "".join(
            difflib.unified_diff(
                old.splitlines(keepends=True),
                new.splitlines(keepends=True),
                fromfile=f"generated/{entry.src}",
                tofile=f"staged/{entry.src}",
                n=3,
            )
        )
        diffs.append(FileDiff(entry.src, "changed", text))
    return diffs


def count_changed_lines(generated: Path, staged: Path) -> int:
    if not generated.is_file() or not staged.is_file():
        return 0
    old = generated.read_text(encoding="utf-8", errors="replace")
    new = staged.read_text(encoding="utf-8", errors="replace")
    if old == new:
        return 0
    matcher = difflib.SequenceMatcher(None, split_lines(old), split_lines(new), autojunk=False)
    return sum(
        (i2 - i1) + (j2 - j1)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    )


def _detail(config: JanusConfig, entry: FileEntry, deployed: bool) -> str:
    source = config.source_path(entry.src)
    generated = config.generated_path(entry.src)
    staged = config.staged_path(entry.src)
    if not source.is_file():
        return "source missing"
    if not generated.is_file():
        return "not yet generated"

    # rendered templates never match their source byte for byte
    source_differs = not entry.template and source.read_bytes() != generated.read_bytes()
    if not staged.is_file():
        if source_differs:
            return "source -> generated diff, not yet staged"
        return "not yet staged"

    parts: List[str] = []
    if source_differs:
        parts.append("source -> generated diff")
    if generated.read_bytes() != staged.read_bytes():
        parts.append("generated -> staged diff")
    if parts:
        return ", ".join(parts)
    return "up to date" if deployed else "ready to deploy"


def _drifted(staged: Path, baseline: Optional[str]) -> bool:
    if baseline is None or not staged.is_file():
        return False
    return content_hash(staged.read_bytes()) != baseline


def _fileset_summary(config: JanusConfig, statuses: Sequence[FileStatus]) -> List[Tuple[str, int, int]]:
    totals: Dict[str, Tuple[int, int]] = {}
    for name, fileset in config.filesets.items():
        for row in statuses:
            if row.changed_lines == 0:
                continue
            if any(pattern_matches(row.src, pattern) for pattern in fileset.patterns):
                files, lines = totals.get(name, (0, 0))
                totals[name] = (files + 1, lines + row.changed_lines)
    summary = [(name, files, lines) for name, (files, lines) in totals.items()]
    summary.sort(key=lambda item: item[2], reverse=True)
    return summary


__all__ = [
    "FileDiff",
    "FileStatus",
    "StatusFilters",
    "StatusReport",
    "compute_diffs",
    "compute_status",
    "count_changed_lines",
]
