"""Pipeline orchestration for generate/stage/deploy and their inverses."""

from __future__ import annotations

import difflib
import hashlib
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, Set

from .config import JanusConfig, remove_file_entry
from .errors import (
    ConfigError,
    PublishError,
    RenderError,
    SecretConflictError,
    SecretResolutionError,
    SyncConflictError,
    TransitionError,
)
from .logging import get_logger
from .models import (
    TRANSITIONS,
    EffectiveConfig,
    FileEntry,
    FileOutcome,
    FileRecord,
    Outcome,
    PipelineStatus,
    RunReport,
)
from .paths import collapse_tilde, expand_tilde, remove_empty_parents
from .publisher import Publisher, is_janus_symlink
from .rendering import TemplateRenderer
from .resolver import ConfigResolver
from .secrets import (
    CommandSecretEngine,
    SecretCache,
    SecretEngine,
    SecretResolver,
    check_conflicts,
)
from .stores import StateStore

ConfirmOverwrite = Callable[[FileEntry, str], bool]

# Errors confined to a single file; anything else aborts the run.
PER_FILE_ERRORS = (
    OSError,
    UnicodeDecodeError,
    PublishError,
    RenderError,
    SecretConflictError,
    SecretResolutionError,
    SyncConflictError,
    TransitionError,
)

_TRANSITION_HINTS = {
    ("stage", PipelineStatus.UNMANAGED): "not generated yet (run `janus generate` first)",
    ("deploy", PipelineStatus.UNMANAGED): "not staged yet (run `janus stage` first)",
    ("deploy", PipelineStatus.GENERATED): "not staged yet (run `janus stage` first)",
}


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _refuse_overwrite(entry: FileEntry, diff_text: str) -> bool:
    return False


class Orchestrator:
    """Drives each selected file through the pipeline, one file at a time.

    State is committed after every file so an interrupted run can be resumed
    by re-running the same command.
    """

    def __init__(
        self,
        config: JanusConfig,
        *,
        engine: SecretEngine | None = None,
        renderer: TemplateRenderer | None = None,
        publisher: Publisher | None = None,
        store: StateStore | None = None,
        resolver: ConfigResolver | None = None,
        confirm_overwrite: ConfirmOverwrite | None = None,
        fail_fast: bool = False,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.engine = engine or CommandSecretEngine(timeout=config.secret_timeout)
        self.renderer = renderer or TemplateRenderer()
        self.publisher = publisher or Publisher(atomic=config.atomic_deploy)
        self.store = store if store is not None else StateStore.load(config.state_path)
        self.resolver = resolver or ConfigResolver(config)
        self.secret_cache = SecretCache()
        self.secrets = SecretResolver(self.engine, self.secret_cache)
        self.confirm_overwrite = confirm_overwrite or _refuse_overwrite
        self.fail_fast = fail_fast
        self.dry_run = dry_run
        self.logger = get_logger("orchestrator")
        # dry-run bookkeeping so later steps can assume earlier ones happened
        self._pending_generated: Dict[str, bytes] = {}
        self._pending_staged: Set[str] = set()

    # ------------------------------------------------------------------
    # Public operations

    def generate(self, entries: Sequence[FileEntry]) -> RunReport:
        report = RunReport("generate")
        effectives = self._prepare(entries)
        for entry in entries:
            if self._halted(report):
                self._skip_after_failure(report, entry, "generate")
                continue
            self._generate_one(entry, effectives.get(entry.src), report)
        return report

    def stage(self, entries: Sequence[FileEntry], *, force: bool = False) -> RunReport:
        report = RunReport("stage")
        for entry in entries:
            self._stage_one(entry, report, force=force)
        return report

    def deploy(self, entries: Sequence[FileEntry], *, force: bool = False) -> RunReport:
        report = RunReport("deploy")
        for entry in entries:
            self._deploy_one(entry, report, force=force)
        return report

    def apply(self, entries: Sequence[FileEntry], *, force: bool = False) -> RunReport:
        """Generate, stage and deploy each file; a failed step stops only that file."""
        report = RunReport("apply")
        effectives = self._prepare(entries)
        for entry in entries:
            if self._halted(report):
                self._skip_after_failure(report, entry, "apply")
                continue
            record = self._generate_one(entry, effectives.get(entry.src), report)
            if record is None:
                continue
            record = self._stage_one(entry, report, force=force, record=record)
            if record is None:
                continue
            self._deploy_one(entry, report, force=force, record=record)
        return report

    def undeploy(self, entries: Sequence[FileEntry], *, remove_file: bool = False) -> RunReport:
        report = RunReport("undeploy")
        for entry in entries:
            src = entry.src
            try:
                record = self.reconcile(entry)
                if record.status is not PipelineStatus.DEPLOYED:
                    report.add(FileOutcome(src, "undeploy", Outcome.SKIPPED, "Not deployed"))
                    continue
                next_status = self._next("undeploy", entry, record)
                target = entry.target_path()
                if self.dry_run:
                    verb = "remove" if remove_file else "replace with a copy"
                    self._dry(report, src, "undeploy", f"Would {verb}: {target}")
                    continue
                self.publisher.undeploy(
                    self.config.staged_path(src), target, remove_file=remove_file
                )
                record.status = next_status
                self.store.commit(src, record)
                message = "Removed" if remove_file else "Replaced symlink with a copy"
                report.add(FileOutcome(src, "undeploy", Outcome.OK, f"{message}: {target}"))
                self.logger.info("Undeployed %s (%s)", src, collapse_tilde(target))
            except PER_FILE_ERRORS as exc:
                self._fail(report, src, "undeploy", exc)
        return report

    def clean(self, *, generated: bool = False, orphans: bool = False) -> RunReport:
        if not generated and not orphans:
            raise ConfigError("Specify --generated and/or --orphans")
        report = RunReport("clean")
        if generated:
            self._clean_generated(report)
        if orphans:
            self._clean_orphans(report)
        return report

    def unimport(self, entries: Sequence[FileEntry], *, remove_file: bool = False) -> RunReport:
        """Stop managing files: undeploy, drop the config entry and delete every copy."""
        report = RunReport("unimport")
        for entry in entries:
            src = entry.src
            try:
                record = self.reconcile(entry)
                paths = [
                    (self.config.source_path(src), self.config.dotfiles_path),
                    (self.config.generated_path(src), self.config.generated_dir),
                    (self.config.staged_path(src), self.config.staged_dir),
                ]
                if self.dry_run:
                    if record.status is PipelineStatus.DEPLOYED:
                        self._dry(report, src, "undeploy", f"Would undeploy {entry.target_path()}")
                    self._dry(report, src, "unimport", "Would remove config entry and delete copies")
                    continue
                if record.status is PipelineStatus.DEPLOYED:
                    self.publisher.undeploy(
                        self.config.staged_path(src), entry.target_path(), remove_file=remove_file
                    )
                remove_file_entry(self.config.path, src)
                for path, root in paths:
                    if path.exists() or path.is_symlink():
                        path.unlink()
                        remove_empty_parents(path, root)
                self.store.forget(src)
                report.add(FileOutcome(src, "unimport", Outcome.OK, "Unimported"))
                self.logger.info("Unimported %s", src)
            except PER_FILE_ERRORS as exc:
                self._fail(report, src, "unimport", exc)
        return report

    def reconcile(self, entry: FileEntry) -> FileRecord:
        """Return the stored record, downgraded to what the filesystem actually shows."""
        src = entry.src
        record = self.store.get(src)
        observed = observed_status(self.config, entry, record.status)
        if observed is record.status:
            return record
        self.logger.info(
            "%s%s: state says %s but disk shows %s; correcting",
            self._prefix(),
            src,
            record.status.value,
            observed.value,
        )
        record.status = observed
        if not self.dry_run:
            self.store.commit(src, record)
        return record

    # ------------------------------------------------------------------
    # Per-file steps

    def _generate_one(
        self, entry: FileEntry, effective: Optional[EffectiveConfig], report: RunReport
    ) -> Optional[FileRecord]:
        src = entry.src
        try:
            record = self.reconcile(entry)
            next_status = self._next("generate", entry, record)
            source = self.config.source_path(src)
            if not source.is_file():
                raise FileNotFoundError(f"Source file not found: {source}")
            if entry.template:
                if effective is None:
                    effective = self.resolver.resolve(entry)
                body = source.read_text(encoding="utf-8")
                context = self.secrets.flatten(effective)
                content = self.renderer.render(src, body, context).encode("utf-8")
            else:
                content = source.read_bytes()

            generated = self.config.generated_path(src)
            record.status = next_status
            record.generated_hash = content_hash(content)
            if self.dry_run:
                self._pending_generated[src] = content
                if _same_content(generated, content):
                    report.add(FileOutcome(src, "generate", Outcome.OK, "Already up to date"))
                else:
                    self._dry(report, src, "generate", f"Would write {generated}")
                return record

            changed = write_if_changed(generated, content, mode=source.stat().st_mode)
            self.store.commit(src, record)
            message = "Generated" if changed else "Already up to date"
            report.add(FileOutcome(src, "generate", Outcome.OK, message))
            if changed:
                self.logger.info("Generated %s", src)
            return record
        except PER_FILE_ERRORS as exc:
            self._fail(report, src, "generate", exc)
            return None

    def _stage_one(
        self,
        entry: FileEntry,
        report: RunReport,
        *,
        force: bool = False,
        record: Optional[FileRecord] = None,
    ) -> Optional[FileRecord]:
        src = entry.src
        try:
            if record is None:
                record = self.reconcile(entry)
            next_status = self._next("stage", entry, record)
            generated = self.config.generated_path(src)
            staged = self.config.staged_path(src)
            if src in self._pending_generated:
                content = self._pending_generated[src]
            elif generated.is_file():
                content = generated.read_bytes()
            else:
                raise TransitionError(f"Cannot stage {src}: no generated file (run `janus generate` first)")
            digest = content_hash(content)

            if staged.is_file():
                current = staged.read_bytes()
                if current != content and content_hash(current) != record.staged_hash:
                    if not force and not self._confirm_drift(entry, current, content):
                        record.drift = True
                        if not self.dry_run:
                            self.store.commit(src, record)
                        raise SyncConflictError(
                            src,
                            "staged copy has drifted from what janus last staged; "
                            "run `janus sync` to merge it back or pass --force to overwrite",
                        )

            record.status = next_status
            record.staged_hash = digest
            record.drift = False
            if self.dry_run:
                self._pending_staged.add(src)
                if _same_content(staged, content):
                    report.add(FileOutcome(src, "stage", Outcome.OK, "Already staged"))
                else:
                    self._dry(report, src, "stage", f"Would write {staged}")
                return record

            mode = generated.stat().st_mode if generated.exists() else None
            changed = write_if_changed(staged, content, mode=mode)
            self.store.commit(src, record)
            report.add(FileOutcome(src, "stage", Outcome.OK, "Staged" if changed else "Already staged"))
            if changed:
                self.logger.info("Staged %s", src)
            return record
        except PER_FILE_ERRORS as exc:
            self._fail(report, src, "stage", exc)
            return None

    def _deploy_one(
        self,
        entry: FileEntry,
        report: RunReport,
        *,
        force: bool = False,
        record: Optional[FileRecord] = None,
    ) -> Optional[FileRecord]:
        src = entry.src
        try:
            if record is None:
                record = self.reconcile(entry)
            next_status = self._next("deploy", entry, record)
            staged = self.config.staged_path(src)
            if not staged.is_file() and src not in self._pending_staged:
                raise TransitionError(f"Cannot deploy {src}: no staged file (run `janus stage` first)")
            target = entry.target_path()
            record.status = next_status
            record.target = collapse_tilde(target)
            if self.dry_run:
                if is_janus_symlink(target, staged):
                    report.add(FileOutcome(src, "deploy", Outcome.OK, "Already deployed"))
                else:
                    self._dry(report, src, "deploy", f"Would link {target} -> {staged}")
                return record

            changed = self.publisher.deploy(staged, target, force=force)
            self.store.commit(src, record)
            message = f"Deployed -> {record.target}" if changed else "Already deployed"
            report.add(FileOutcome(src, "deploy", Outcome.OK, message))
            if changed:
                self.logger.info("Deployed %s -> %s", src, record.target)
            return record
        except PER_FILE_ERRORS as exc:
            self._fail(report, src, "deploy", exc)
            return None

    # ------------------------------------------------------------------
    # Clean

    def _clean_generated(self, report: RunReport) -> None:
        root = self.config.generated_dir
        if root.exists():
            files = sorted(path for path in root.rglob("*") if path.is_file() or path.is_symlink())
            for path in files:
                rel = path.relative_to(root).as_posix()
                if self.dry_run:
                    self._dry(report, rel, "clean", f"Would remove {path}")
                else:
                    report.add(FileOutcome(rel, "clean", Outcome.OK, f"Removed {path}"))
            if not self.dry_run:
                shutil.rmtree(root)
                self.logger.info("Removed %s", root)

        for src, record in list(self.store.records()):
            next_status = TRANSITIONS.get(("clean", record.status))
            if next_status is None or record.status is next_status:
                continue
            record.status = next_status
            record.generated_hash = None
            if not self.dry_run:
                self.store.commit(src, record)

    def _clean_orphans(self, report: RunReport) -> None:
        configured = {entry.src for entry in self.config.files}
        for root in (self.config.generated_dir, self.config.staged_dir):
            if not root.exists():
                continue
            for path in sorted(root.rglob("*")):
                if path.is_dir() and not path.is_symlink():
                    continue
                rel = path.relative_to(root).as_posix()
                if rel in configured:
                    continue
                if root == self.config.staged_dir and self._still_deployed(rel, path):
                    report.add(
                        FileOutcome(rel, "clean", Outcome.SKIPPED, "Orphan is still deployed; kept")
                    )
                    continue
                if self.dry_run:
                    self._dry(report, rel, "clean", f"Would remove orphan {path}")
                    continue
                try:
                    path.unlink()
                    remove_empty_parents(path, root)
                except OSError as exc:
                    self._fail(report, rel, "clean", exc)
                    continue
                report.add(FileOutcome(rel, "clean", Outcome.OK, f"Removed orphan {path}"))
                self.logger.info("Removed orphan %s", path)

        for src, record in list(self.store.records()):
            if src in configured or self._still_deployed(src, self.config.staged_path(src)):
                continue
            if self.dry_run:
                self._dry(report, src, "clean", "Would forget state record")
            else:
                self.store.forget(src)

    def _still_deployed(self, src: str, staged: Path) -> bool:
        record = self.store.get(src)
        if record.status is not PipelineStatus.DEPLOYED or not record.target:
            return False
        return is_janus_symlink(expand_tilde(record.target), staged)

    # ------------------------------------------------------------------
    # Helpers

    def _prepare(self, entries: Sequence[FileEntry]) -> Dict[str, EffectiveConfig]:
        """Resolve template files up front and refuse the run on any secret collision."""
        effectives = {
            entry.src: self.resolver.resolve(entry) for entry in entries if entry.template
        }
        check_conflicts(effectives.values())
        return effectives

    def _next(self, action: str, entry: FileEntry, record: FileRecord) -> PipelineStatus:
        next_status = TRANSITIONS.get((action, record.status))
        if next_status is None:
            hint = _TRANSITION_HINTS.get((action, record.status), f"status is {record.status.value}")
            raise TransitionError(f"Cannot {action} {entry.src}: {hint}")
        return next_status

    def _confirm_drift(self, entry: FileEntry, current: bytes, incoming: bytes) -> bool:
        if self.dry_run:
            return False
        diff_text = "".join(
            difflib.unified_diff(
                current.decode("utf-8", errors="replace").splitlines(keepends=True),
                incoming.decode("utf-8", errors="replace").splitlines(keepends=True),
                fromfile=f"staged/{entry.src}",
                tofile=f"generated/{entry.src}",
            )
        )
        return self.confirm_overwrite(entry, diff_text)

    def _halted(self, report: RunReport) -> bool:
        return self.fail_fast and not report.ok

    def _skip_after_failure(self, report: RunReport, entry: FileEntry, action: str) -> None:
        report.add(
            FileOutcome(entry.src, action, Outcome.SKIPPED, "Skipped after earlier failure (--fail-fast)")
        )

    def _fail(self, report: RunReport, src: str, action: str, exc: BaseException) -> None:
        self.logger.warning("Failed to %s %s: %s", action, src, exc)
        report.add(FileOutcome(src, action, Outcome.FAILED, str(exc), error=exc))

    def _dry(self, report: RunReport, src: str, action: str, message: str) -> None:
        self.logger.info("[dry-run] %s: %s", src, message)
        report.add(FileOutcome(src, action, Outcome.DRY_RUN, message))

    def _prefix(self) -> str:
        return "[dry-run] " if self.dry_run else ""


def observed_status(
    config: JanusConfig, entry: FileEntry, status: PipelineStatus
) -> PipelineStatus:
    """Downgrade ``status`` until it matches the files actually on disk."""
    generated = config.generated_path(entry.src)
    staged = config.staged_path(entry.src)
    if status is PipelineStatus.DEPLOYED and not (
        staged.is_file() and is_janus_symlink(entry.target_path(), staged)
    ):
        status = PipelineStatus.STAGED
    if status is PipelineStatus.STAGED and not staged.is_file():
        status = PipelineStatus.GENERATED
    if status is PipelineStatus.GENERATED and not generated.is_file():
        status = PipelineStatus.UNMANAGED
    return status


def write_if_changed(path: Path, content: bytes, *, mode: Optional[int] = None) -> bool:
    """Atomically replace ``path`` with ``content`` unless it already matches."""
    permissions = stat.S_IMODE(mode) if mode is not None else None
    if _same_content(path, content):
        if permissions is not None and stat.S_IMODE(path.stat().st_mode) != permissions:
            os.chmod(path, permissions)
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        if permissions is not None:
            os.chmod(tmp_name, permissions)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


def _same_content(path: Path, content: bytes) -> bool:
    return path.is_file() and path.read_bytes() == content


__all__ = [
    "Orchestrator",
    "PER_FILE_ERRORS",
    "content_hash",
    "observed_status",
    "write_if_changed",
]
