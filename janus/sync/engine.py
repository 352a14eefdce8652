"""Apply staged drift back onto source files, hunk by hunk."""

from __future__ import annotations

from typing import List, Sequence

from ..config import JanusConfig
from ..errors import SyncConflictError, TransitionError
from ..logging import get_logger
from ..models import FileEntry, FileOutcome, Outcome, RunReport
from ..orchestrator import PER_FILE_ERRORS, content_hash, write_if_changed
from ..stores import StateStore
from .hunks import HunkClass, classify_hunk, compute_hunks, split_lines
from .prompt import Action, HunkPrompter, HunkRequest


class SyncEngine:
    """Reconciles ``.staged`` edits into the source tree.

    Source line ``i`` corresponds to generated line ``i``; every applied hunk
    shifts the following hunks by its line delta.
    """

    def __init__(
        self,
        config: JanusConfig,
        store: StateStore,
        prompter: HunkPrompter,
        *,
        dry_run: bool = False,
    ) -> None:
        self.config = config
        self.store = store
        self.prompter = prompter
        self.dry_run = dry_run
        self.logger = get_logger("sync")

    def sync(self, entries: Sequence[FileEntry]) -> RunReport:
        report = RunReport("sync")
        for entry in entries:
            try:
                report.add(self.sync_file(entry))
            except PER_FILE_ERRORS as exc:
                self.logger.warning("Failed to sync %s: %s", entry.src, exc)
                report.add(FileOutcome(entry.src, "sync", Outcome.FAILED, str(exc), error=exc))
        return report

    def sync_file(self, entry: FileEntry) -> FileOutcome:
        src = entry.src
        source = self.config.source_path(src)
        generated = self.config.generated_path(src)
        staged = self.config.staged_path(src)
        if not generated.is_file():
            raise TransitionError(f"Cannot sync {src}: no generated file (run `janus generate` first)")
        if not staged.is_file():
            raise TransitionError(f"Cannot sync {src}: no staged file (run `janus stage` first)")
        if not source.is_file():
            raise FileNotFoundError(f"Source file not found: {source}")

        source_text = source.read_text(encoding="utf-8")
        generated_text = generated.read_text(encoding="utf-8")
        staged_bytes = staged.read_bytes()
        staged_text = staged_bytes.decode("utf-8")
        if generated_text == staged_text:
            self.logger.debug("%s: generated and staged are identical, skipping", src)
            return FileOutcome(src, "sync", Outcome.SKIPPED, "No drift")

        output = split_lines(source_text)
        if entry.template and len(output) != len(split_lines(generated_text)):
            raise SyncConflictError(
                src,
                f"source ({len(output)} lines) and generated ({len(split_lines(generated_text))} "
                "lines) differ in line count; template control structures prevent line-level "
                "sync, merge this file by hand",
            )

        hunks = compute_hunks(generated_text, staged_text)
        offset = 0
        applied = 0
        for hunk in hunks:
            kind = classify_hunk(hunk, output, offset, entry.template)
            start = hunk.old_start + offset
            end = start + len(hunk.old_lines)
            request = HunkRequest(
                src=src,
                hunk=hunk,
                kind=kind,
                total=len(hunks),
                source_lines=tuple(output[start:end]),
                default=Action.ACCEPT if kind is HunkClass.SAFE else Action.SKIP,
            )
            if self.dry_run:
                self.logger.info(
                    "[dry-run] %s hunk %d/%d (%s, %s): default %s",
                    src,
                    hunk.index + 1,
                    len(hunks),
                    hunk.kind,
                    kind.value,
                    request.default.value,
                )
                continue

            decision = self.prompter.decide(request)
            if decision.action is Action.SKIP:
                continue
            if decision.action is Action.ACCEPT:
                if kind is HunkClass.CONFLICT:
                    raise SyncConflictError(
                        src,
                        "source was edited since the last generate; skip or edit this hunk",
                        hunk_index=hunk.index,
                    )
                replacement: List[str] = list(hunk.new_lines)
            else:
                replacement = split_lines(decision.text or "")
                if replacement and not replacement[-1].endswith("\n") and end < len(output):
                    replacement[-1] += "\n"
            output[start:end] = replacement
            offset += len(replacement) - len(hunk.old_lines)
            applied += 1

        if self.dry_run:
            return FileOutcome(
                src, "sync", Outcome.DRY_RUN, f"Would prompt for {len(hunks)} hunk(s)"
            )

        new_source = "".join(output)
        if new_source != source_text:
            write_if_changed(source, new_source.encode("utf-8"), mode=source.stat().st_mode)
            self.logger.info("Updated source: %s", src)
        write_if_changed(generated, staged_bytes, mode=generated.stat().st_mode)

        record = self.store.get(src)
        digest = content_hash(staged_bytes)
        record.generated_hash = digest
        record.staged_hash = digest
        record.drift = False
        self.store.commit(src, record)
        return FileOutcome(
            src, "sync", Outcome.OK, f"Applied {applied} of {len(hunks)} hunk(s)"
        )


__all__ = ["SyncEngine"]
