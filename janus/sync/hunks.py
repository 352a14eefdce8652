"""Line-level hunk computation and classification against the source file."""

from __future__ import annotations

import difflib
from enum import Enum
from typing import List, Sequence

from ..models import SyncHunk
from ..rendering import has_template_syntax


class HunkClass(str, Enum):
    SAFE = "safe"
    TEMPLATE = "template"
    CONFLICT = "conflict"


def split_lines(text: str) -> List[str]:
    """Split on ``\\n`` only, keeping line endings."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def compute_hunks(generated: str, staged: str) -> List[SyncHunk]:
    old = split_lines(generated)
    new = split_lines(staged)
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    hunks: List[SyncHunk] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        hunks.append(
            SyncHunk(
                index=len(hunks),
                kind=tag,
                old_start=i1,
                old_lines=tuple(old[i1:i2]),
                new_start=j1,
                new_lines=tuple(new[j1:j2]),
            )
        )
    return hunks


def classify_hunk(
    hunk: SyncHunk, source_lines: Sequence[str], offset: int, template: bool
) -> HunkClass:
    """Decide whether ``hunk`` can be applied to the source at ``old_start + offset``."""
    start = hunk.old_start + offset
    if hunk.kind == "insert":
        return HunkClass.SAFE if 0 <= start <= len(source_lines) else HunkClass.CONFLICT
    source_range = tuple(source_lines[start : start + len(hunk.old_lines)])
    if template and any(has_template_syntax(line) for line in source_range):
        return HunkClass.TEMPLATE
    if source_range == hunk.old_lines:
        return HunkClass.SAFE
    return HunkClass.CONFLICT


__all__ = ["HunkClass", "classify_hunk", "compute_hunks", "split_lines"]
