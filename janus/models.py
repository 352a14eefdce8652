"""Core data models shared across janus components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .paths import expand_tilde


@dataclass(frozen=True)
class FileEntry:
    """A managed file declared in ``[[files]]``."""

    src: str
    target: Optional[str] = None
    template: bool = True
    vars: Tuple[str, ...] = ()
    secrets: Tuple[str, ...] = ()

    @property
    def target_spec(self) -> str:
        """Target as written in config, defaulting to ``~/.config/<src>``."""
        return self.target or default_target(self.src)

    def target_path(self):
        return expand_tilde(self.target_spec)


def default_target(src: str) -> str:
    return f"~/.config/{src}"


@dataclass(frozen=True)
class Fileset:
    """Named group of files selected by glob patterns."""

    name: str
    patterns: Tuple[str, ...]
    vars: Tuple[str, ...] = ()
    secrets: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SecretDefinition:
    """A ``[[secret]]`` entry: template name bound to an engine reference."""

    name: str
    engine: str
    reference: str

    @property
    def cache_key(self) -> Tuple[str, str]:
        return (self.engine, self.reference)


@dataclass
class EffectiveConfig:
    """Fully merged configuration for one file."""

    entry: FileEntry
    variables: Dict[str, Any]
    secret_refs: Tuple[SecretDefinition, ...]

    @property
    def target(self):
        return self.entry.target_path()

    @property
    def template(self) -> bool:
        return self.entry.template

    def collisions(self) -> List[str]:
        """Variable names that are also declared as secrets."""
        secret_names = {ref.name for ref in self.secret_refs}
        return sorted(name for name in self.variables if name in secret_names)


class PipelineStatus(str, Enum):
    UNMANAGED = "unmanaged"
    GENERATED = "generated"
    STAGED = "staged"
    DEPLOYED = "deployed"


# (action, current status) -> next status. Anything absent is an illegal transition.
TRANSITIONS: Mapping[Tuple[str, PipelineStatus], PipelineStatus] = {
    ("generate", PipelineStatus.UNMANAGED): PipelineStatus.GENERATED,
    ("generate", PipelineStatus.GENERATED): PipelineStatus.GENERATED,
    ("generate", PipelineStatus.STAGED): PipelineStatus.STAGED,
    ("generate", PipelineStatus.DEPLOYED): PipelineStatus.DEPLOYED,
    ("stage", PipelineStatus.GENERATED): PipelineStatus.STAGED,
    ("stage", PipelineStatus.STAGED): PipelineStatus.STAGED,
    ("stage", PipelineStatus.DEPLOYED): PipelineStatus.DEPLOYED,
    ("deploy", PipelineStatus.STAGED): PipelineStatus.DEPLOYED,
    ("deploy", PipelineStatus.DEPLOYED): PipelineStatus.DEPLOYED,
    ("undeploy", PipelineStatus.DEPLOYED): PipelineStatus.STAGED,
    ("clean", PipelineStatus.GENERATED): PipelineStatus.UNMANAGED,
    ("clean", PipelineStatus.UNMANAGED): PipelineStatus.UNMANAGED,
}


@dataclass
class FileRecord:
    """Persisted pipeline state for a single ``src``."""

    status: PipelineStatus = PipelineStatus.UNMANAGED
    target: Optional[str] = None
    generated_hash: Optional[str] = None
    staged_hash: Optional[str] = None
    drift: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IgnoredPath:
    """Import candidate the user declined; never prompted for again."""

    path: str
    reason: str = "user_declined"


@dataclass(frozen=True)
class SyncHunk:
    """Contiguous run of line differences between generated and staged text."""

    index: int
    kind: str
    old_start: int
    old_lines: Tuple[str, ...]
    new_start: int
    new_lines: Tuple[str, ...]

    @property
    def old_end(self) -> int:
        return self.old_start + len(self.old_lines)

    @property
    def delta(self) -> int:
        return len(self.new_lines) - len(self.old_lines)


class Outcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry-run"


@dataclass
class FileOutcome:
    """Result of one action against one file."""

    src: str
    action: str
    result: Outcome
    message: str = ""
    error: Optional[BaseException] = None


@dataclass
class RunReport:
    """Per-file outcomes collected over a command run."""

    action: str
    outcomes: List[FileOutcome] = field(default_factory=list)

    def add(self, outcome: FileOutcome) -> FileOutcome:
        self.outcomes.append(outcome)
        return outcome

    def extend(self, other: "RunReport") -> None:
        self.outcomes.extend(other.outcomes)

    @property
    def failures(self) -> List[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.result is Outcome.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failures

    def for_src(self, src: str) -> List[FileOutcome]:
        return [outcome for outcome in self.outcomes if outcome.src == src]

    def failed(self, src: str) -> bool:
        return any(outcome.result is Outcome.FAILED for outcome in self.for_src(src))

    def count(self, result: Outcome) -> int:
        return sum(1 for outcome in self.outcomes if outcome.result is result)
