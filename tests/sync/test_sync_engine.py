"""Tests for merging staged drift back into source files."""

from __future__ import annotations

from janus.errors import SyncConflictError
from janus.models import FileEntry, Outcome
from janus.orchestrator import Orchestrator, content_hash
from janus.sync import Decision, HunkClass, ScriptedPrompter, SyncEngine
from tests._fixtures.dotfiles_builder import DotfilesBuilder, FakeSecretEngine


def _deploy(dotfiles: DotfilesBuilder, files: dict, *, template: bool = True) -> FileEntry:
    dotfiles.write({"vars.toml": "port = 8080\n", **files})
    src = next(iter(files))
    flag = "" if template else "template = false"
    dotfiles.write_config(
        f"""
vars = ["vars.toml"]

[[files]]
src = "{src}"
{flag}
"""
    )
    config = dotfiles.load()
    orchestrator = Orchestrator(config, engine=FakeSecretEngine(), store=dotfiles.store())
    assert orchestrator.apply(config.files).ok
    return config.files[0]


def _engine(dotfiles: DotfilesBuilder, decisions, *, dry_run: bool = False):
    prompter = ScriptedPrompter(list(decisions))
    engine = SyncEngine(dotfiles.load(), dotfiles.store(), prompter, dry_run=dry_run)
    return engine, prompter


def test_sync_round_trip_updates_template_line(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"app.conf": "# header\nport = {{ port }}\nname = static\n"})
    dotfiles.target("app.conf").write_text("# header\nport = 9090\nname = static\n", encoding="utf-8")
    engine, prompter = _engine(dotfiles, [Decision.accept()])

    report = engine.sync([entry])

    assert report.ok
    assert prompter.requests[0].kind is HunkClass.TEMPLATE
    source = (dotfiles.root / "app.conf").read_text(encoding="utf-8")
    assert source == "# header\nport = 9090\nname = static\n"

    store = dotfiles.store()
    record = store.get("app.conf")
    staged_bytes = (dotfiles.root / ".staged" / "app.conf").read_bytes()
    assert (dotfiles.root / ".generated" / "app.conf").read_bytes() == staged_bytes
    assert record.generated_hash == record.staged_hash == content_hash(staged_bytes)
    assert record.drift is False

    orchestrator = Orchestrator(dotfiles.load(), engine=FakeSecretEngine(), store=store)
    orchestrator.generate([entry])
    generated = (dotfiles.root / ".generated" / "app.conf").read_text(encoding="utf-8")
    assert "port = 9090\n" in generated


def test_template_hunks_default_to_skip(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"app.conf": "port = {{ port }}\n"})
    dotfiles.target("app.conf").write_text("port = 9090\n", encoding="utf-8")
    engine, prompter = _engine(dotfiles, [])

    report = engine.sync([entry])

    assert report.ok
    assert prompter.requests[0].default.value == "skip"
    assert (dotfiles.root / "app.conf").read_text(encoding="utf-8") == "port = {{ port }}\n"
    # skipped drift is not offered again
    assert (dotfiles.root / ".generated" / "app.conf").read_text(encoding="utf-8") == "port = 9090\n"


def test_conflicting_hunk_is_never_applied(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"plain.conf": "a\nb\nc\n"}, template=False)
    dotfiles.target("plain.conf").write_text("a\nB\nc\n", encoding="utf-8")
    (dotfiles.root / "plain.conf").write_text("a\nb-edited\nc\n", encoding="utf-8")
    engine, prompter = _engine(dotfiles, [Decision.accept()])

    report = engine.sync([entry])

    assert not report.ok
    assert isinstance(report.failures[0].error, SyncConflictError)
    assert prompter.requests[0].kind is HunkClass.CONFLICT
    assert (dotfiles.root / "plain.conf").read_text(encoding="utf-8") == "a\nb-edited\nc\n"
    assert (dotfiles.root / ".generated" / "plain.conf").read_text(encoding="utf-8") == "a\nb\nc\n"


def test_conflicting_hunk_can_be_edited(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"plain.conf": "a\nb\nc\n"}, template=False)
    dotfiles.target("plain.conf").write_text("a\nB\nc\n", encoding="utf-8")
    (dotfiles.root / "plain.conf").write_text("a\nb-edited\nc\n", encoding="utf-8")
    engine, _ = _engine(dotfiles, [Decision.edit("merged")])

    assert engine.sync([entry]).ok
    assert (dotfiles.root / "plain.conf").read_text(encoding="utf-8") == "a\nmerged\nc\n"


def test_applied_hunks_shift_later_hunks(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"plain.conf": "one\ntwo\nthree\nfour\n"}, template=False)
    dotfiles.target("plain.conf").write_text(
        "zero\nhalf\none\ntwo\nthree\nFOUR\n", encoding="utf-8"
    )
    engine, prompter = _engine(dotfiles, [Decision.accept(), Decision.accept()])

    assert engine.sync([entry]).ok
    assert [request.kind for request in prompter.requests] == [HunkClass.SAFE, HunkClass.SAFE]
    assert (dotfiles.root / "plain.conf").read_text(encoding="utf-8") == (
        "zero\nhalf\none\ntwo\nthree\nFOUR\n"
    )


def test_line_count_mismatch_in_template_needs_manual_merge(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(
        dotfiles,
        {"loop.conf": "{% for i in [1, 2] %}\nitem {{ i }}\n{% endfor %}\n"},
    )
    generated = (dotfiles.root / ".generated" / "loop.conf").read_text(encoding="utf-8")
    dotfiles.target("loop.conf").write_text(generated + "extra\n", encoding="utf-8")
    engine, prompter = _engine(dotfiles, [])

    report = engine.sync([entry])

    assert isinstance(report.failures[0].error, SyncConflictError)
    assert "line count" in report.failures[0].message
    assert prompter.requests == []


def test_dry_run_and_identical_files(dotfiles: DotfilesBuilder) -> None:
    entry = _deploy(dotfiles, {"plain.conf": "a\n"}, template=False)
    engine, prompter = _engine(dotfiles, [])
    assert engine.sync([entry]).outcomes[0].result is Outcome.SKIPPED

    dotfiles.target("plain.conf").write_text("b\n", encoding="utf-8")
    engine, prompter = _engine(dotfiles, [], dry_run=True)

    report = engine.sync([entry])

    assert report.outcomes[0].result is Outcome.DRY_RUN
    assert prompter.requests == []
    assert (dotfiles.root / "plain.conf").read_text(encoding="utf-8") == "a\n"
    assert (dotfiles.root / ".generated" / "plain.conf").read_text(encoding="utf-8") == "a\n"
