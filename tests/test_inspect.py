"""Tests for status and diff reporting."""

from __future__ import annotations

import pytest

from janus.errors import ConfigError
from janus.inspect import StatusFilters, compute_diffs, compute_status
from janus.models import PipelineStatus
from janus.orchestrator import Orchestrator
from tests._fixtures.dotfiles_builder import DotfilesBuilder, FakeSecretEngine


def _setup(dotfiles: DotfilesBuilder):
    dotfiles.write(
        {
            "vars.toml": "port = 8080\n",
            "hypr/hypr.conf": "port = {{ port }}\n",
            "hypr/paper.conf": "wallpaper = a.png\n",
            "waybar/config": "bar\n",
            "never.conf": "x\n",
        }
    )
    dotfiles.write_config(
        """
        vars = ["vars.toml"]

        [[files]]
        src = "hypr/hypr.conf"

        [[files]]
        src = "hypr/paper.conf"
        template = false

        [[files]]
        src = "waybar/config"

        [[files]]
        src = "never.conf"

        [filesets.desktop]
        patterns = ["hypr/*"]

        [filesets.bar]
        patterns = ["waybar/*"]
        """
    )
    config = dotfiles.load()
    orchestrator = Orchestrator(config, engine=FakeSecretEngine(), store=dotfiles.store())
    deployed = [config.entry("hypr/hypr.conf"), config.entry("hypr/paper.conf")]
    assert orchestrator.apply(deployed).ok
    assert orchestrator.generate([config.entry("waybar/config")]).ok
    return dotfiles.load()


def test_status_reports_pipeline_stage_and_detail(dotfiles: DotfilesBuilder) -> None:
    config = _setup(dotfiles)

    report = compute_status(config, dotfiles.store(), config.files)

    rows = {row.src: row for row in report.statuses}
    assert rows["hypr/hypr.conf"].status is PipelineStatus.DEPLOYED
    assert rows["hypr/hypr.conf"].deployed is True
    assert rows["hypr/hypr.conf"].detail == "up to date"
    assert rows["waybar/config"].status is PipelineStatus.GENERATED
    assert rows["waybar/config"].detail == "not yet staged"
    assert rows["never.conf"].status is PipelineStatus.UNMANAGED
    assert rows["never.conf"].detail == "not yet generated"


def test_status_detects_live_edits(dotfiles: DotfilesBuilder) -> None:
    config = _setup(dotfiles)
    dotfiles.target("hypr/paper.conf").write_text("wallpaper = b.png\n", encoding="utf-8")
    (dotfiles.root / "hypr/paper.conf").write_text("wallpaper = c.png\n", encoding="utf-8")

    report = compute_status(config, dotfiles.store(), [config.entry("hypr/paper.conf")])

    row = report.statuses[0]
    assert row.detail == "source -> generated diff, generated -> staged diff"
    assert row.drift is True
    assert row.changed_lines == 2
    assert report.fileset_summary == [("desktop", 1, 2)]


def test_status_filters(dotfiles: DotfilesBuilder) -> None:
    config = _setup(dotfiles)
    store = dotfiles.store()

    deployed = compute_status(config, store, config.files, StatusFilters(deployed=True))
    undeployed = compute_status(config, store, config.files, StatusFilters(undeployed=True))
    diffs = compute_status(config, store, config.files, StatusFilters(only_diffs=True))

    assert [row.src for row in deployed.statuses] == ["hypr/hypr.conf", "hypr/paper.conf"]
    assert [row.src for row in undeployed.statuses] == ["waybar/config", "never.conf"]
    assert [row.src for row in diffs.statuses] == ["waybar/config", "never.conf"]
    with pytest.raises(ConfigError, match="Cannot specify both"):
        compute_status(config, store, config.files, StatusFilters(deployed=True, undeployed=True))


def test_compute_diffs_states(dotfiles: DotfilesBuilder) -> None:
    config = _setup(dotfiles)
    dotfiles.target("hypr/hypr.conf").write_text("port = 9090\n", encoding="utf-8")

    diffs = {diff.src: diff for diff in compute_diffs(config, config.files)}

    assert diffs["hypr/paper.conf"].state == "identical"
    assert diffs["waybar/config"].state == "missing-staged"
    assert diffs["never.conf"].state == "missing-generated"
    changed = diffs["hypr/hypr.conf"]
    assert changed.state == "changed"
    assert "--- generated/hypr/hypr.conf" in changed.diff
    assert "-port = 8080" in changed.diff
    assert "+port = 9090" in changed.diff


def test_compute_diffs_tolerates_non_utf8_content(dotfiles: DotfilesBuilder) -> None:
    dotfiles.write_config(
        """
        [[files]]
        src = "blob.bin"
        template = false
        """
    )
    (dotfiles.root / "blob.bin").write_bytes(b"\x00\x01plain\n")
    config = dotfiles.load()
    assert Orchestrator(config, engine=FakeSecretEngine(), store=dotfiles.store()).apply(config.files).ok
    dotfiles.target("blob.bin").write_bytes(b"\xff\xfe\x00xyz\n")

    (diff,) = compute_diffs(config, config.files)

    assert diff.state == "changed"
    assert "+\ufffd\ufffd\x00xyz" in diff.diff
