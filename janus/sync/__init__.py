"""Merge drift from staged files back into source templates."""

from .engine import SyncEngine
from .hunks import HunkClass, classify_hunk, compute_hunks, split_lines
from .prompt import Action, Decision, HunkPrompter, HunkRequest, RichHunkPrompter, ScriptedPrompter

__all__ = [
    "Action",
    "Decision",
    "HunkClass",
    "HunkPrompter",
    "HunkRequest",
    "RichHunkPrompter",
    "ScriptedPrompter",
    "SyncEngine",
    "classify_hunk",
    "compute_hunks",
    "split_lines",
]
