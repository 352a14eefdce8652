"""Hunk decision prompters: interactive (rich) and scripted."""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Protocol, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text

from ..models import SyncHunk
from .hunks import HunkClass


class Action(str, Enum):
    ACCEPT = "accept"
    SKIP = "skip"
    EDIT = "edit"


@dataclass(frozen=True)
class Decision:
    action: Action
    text: Optional[str] = None

    @classmethod
    def accept(cls) -> "Decision":
        return cls(Action.ACCEPT)

    @classmethod
    def skip(cls) -> "Decision":
        return cls(Action.SKIP)

    @classmethod
    def edit(cls, text: str) -> "Decision":
        return cls(Action.EDIT, text)


@dataclass(frozen=True)
class HunkRequest:
    """Everything a prompter needs to decide one hunk."""

    src: str
    hunk: SyncHunk
    kind: HunkClass
    total: int
    source_lines: Tuple[str, ...]
    default: Action

    @property
    def choices(self) -> List[Action]:
        if self.kind is HunkClass.CONFLICT:
            return [Action.SKIP, Action.EDIT]
        return [Action.ACCEPT, Action.SKIP, Action.EDIT]

    @property
    def annotation(self) -> Optional[str]:
        if self.kind is HunkClass.TEMPLATE:
            return "(!) Template syntax: applying would replace template expressions"
        if self.kind is HunkClass.CONFLICT:
            return "(!) Source was edited since the last generate: apply is not allowed"
        return None


class HunkPrompter(Protocol):
    def decide(self, request: HunkRequest) -> Decision:
        ...


@dataclass
class ScriptedPrompter:
    """Plays back a fixed list of decisions, falling back to each request's default."""

    decisions: List[Decision] = field(default_factory=list)
    requests: List[HunkRequest] = field(default_factory=list)

    def decide(self, request: HunkRequest) -> Decision:
        self.requests.append(request)
        if self.decisions:
            return self.decisions.pop(0)
        return Decision(request.default)


class RichHunkPrompter:
    """Shows each hunk in the terminal and asks Accept, Skip or Edit."""

    def __init__(
        self,
        console: Console | None = None,
        *,
        runner: Callable[..., None] | None = None,
    ) -> None:
        self.console = console or Console()
        self._runner = runner or self._default_runner

    def decide(self, request: HunkRequest) -> Decision:
        self.console.print(render_hunk(request))
        choices = [choice.value for choice in request.choices]
        answer = Prompt.ask(
            "Action",
            choices=choices,
            default=request.default.value,
            console=self.console,
        )
        action = Action(answer)
        if action is Action.EDIT:
            return Decision.edit(self._edit("".join(request.hunk.new_lines)))
        return Decision(action)

    def _edit(self, initial: str) -> str:
        editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
        if not editor:
            return self._edit_inline()
        fd, name = tempfile.mkstemp(prefix="janus-hunk-", suffix=".txt")
        path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(initial)
            self._runner([*shlex.split(editor), str(path)])
            return path.read_text(encoding="utf-8")
        finally:
            path.unlink(missing_ok=True)

    def _edit_inline(self) -> str:
        self.console.print("Enter replacement lines; finish with a single '.' line.")
        lines: List[str] = []
        while True:
            line = self.console.input("> ")
            if line == ".":
                break
            lines.append(line + "\n")
        return "".join(lines)

    @staticmethod
    def _default_runner(args: Iterable[str]) -> None:
        subprocess.run(list(args), check=True)


def render_hunk(request: HunkRequest) -> Panel:
    hunk = request.hunk
    body = Text()
    if request.annotation:
        body.append(request.annotation + "\n", style="bold yellow")
    if hunk.kind != "insert":
        body.append(f"source (line {hunk.old_start + 1}):\n", style="dim")
        for line in request.source_lines:
            body.append(f"  {line.rstrip(chr(10))}\n", style="cyan")
    for line in hunk.old_lines:
        body.append(f"- {line.rstrip(chr(10))}\n", style="red")
    for line in hunk.new_lines:
        body.append(f"+ {line.rstrip(chr(10))}\n", style="green")
    title = f"{request.src} hunk {hunk.index + 1}/{request.total} ({hunk.kind}, {request.kind.value})"
    return Panel(body, title=title, title_align="left")


__all__ = [
    "Action",
    "Decision",
    "HunkPrompter",
    "HunkRequest",
    "RichHunkPrompter",
    "ScriptedPrompter",
    "render_hunk",
]
