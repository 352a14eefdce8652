"""Tests for per-file variable and secret merging."""

from __future__ import annotations

import pytest

from janus.errors import ConfigError
from janus.resolver import ConfigResolver
from tests._fixtures.dotfiles_builder import DotfilesBuilder


def _precedence_setup(dotfiles: DotfilesBuilder, *, fileset: bool = True, per_file: bool = True):
    dotfiles.write(
        {
            "global.toml": "x = 1\nname = 'global'\n",
            "desktop.toml": "x = 2\n",
            "hypr.yaml": "x: 3\nnested:\n  key: value\n",
        }
    )
    file_vars = 'vars = ["hypr.yaml"]' if per_file else ""
    fileset_vars = 'vars = ["desktop.toml"]' if fileset else ""
    dotfiles.write_config(
        f"""
vars = ["global.toml"]

[[files]]
src = "hypr/hypr.conf"
{file_vars}

[filesets.desktop]
patterns = ["hypr/*"]
{fileset_vars}
"""
    )
    config = dotfiles.load()
    return ConfigResolver(config), config.files[0]


def test_per_file_vars_override_fileset_and_global(dotfiles: DotfilesBuilder) -> None:
    resolver, entry = _precedence_setup(dotfiles)

    effective = resolver.resolve(entry)

    assert effective.variables["x"] == 3
    assert effective.variables["name"] == "global"
    assert effective.variables["nested"] == {"key": "value"}


def test_fileset_vars_override_global(dotfiles: DotfilesBuilder) -> None:
    resolver, entry = _precedence_setup(dotfiles, per_file=False)

    assert resolver.resolve(entry).variables["x"] == 2


def test_global_vars_apply_without_overrides(dotfiles: DotfilesBuilder) -> None:
    resolver, entry = _precedence_setup(dotfiles, fileset=False, per_file=False)

    assert resolver.resolve(entry).variables["x"] == 1


def test_missing_vars_file_is_skipped(dotfiles: DotfilesBuilder, caplog: pytest.LogCaptureFixture) -> None:
    dotfiles.write_config(
        """
        vars = ["absent.toml"]

        [[files]]
        src = "a.conf"
        """
    )
    config = dotfiles.load()

    with caplog.at_level("WARNING", logger="janus"):
        effective = ConfigResolver(config).resolve(config.files[0])

    assert effective.variables == {}
    assert "Vars file not found" in caplog.text


def test_unparseable_vars_file_raises(dotfiles: DotfilesBuilder) -> None:
    dotfiles.write({"broken.toml": "x = \n"})
    dotfiles.write_config(
        """
        vars = ["broken.toml"]

        [[files]]
        src = "a.conf"
        """
    )
    config = dotfiles.load()

    with pytest.raises(ConfigError, match="broken.toml"):
        ConfigResolver(config).resolve(config.files[0])


def test_secret_definitions_merge_by_name(dotfiles: DotfilesBuilder) -> None:
    dotfiles.write(
        {
            "secrets.toml": """
            [[secret]]
            name = "token"
            engine = "1password"
            reference = "op://Private/global/token"

            [[secret]]
            name = "password"
            engine = "1password"
            reference = "op://Private/global/password"
            """,
            "hypr-secrets.toml": """
            [[secret]]
            name = "token"
            engine = "1password"
            reference = "op://Private/hypr/token"
            """,
        }
    )
    dotfiles.write_config(
        """
        secrets = ["secrets.toml"]

        [[files]]
        src = "hypr/hypr.conf"
        secrets = ["hypr-secrets.toml"]
        """
    )
    config = dotfiles.load()

    refs = ConfigResolver(config).resolve(config.files[0]).secret_refs

    assert [ref.name for ref in refs] == ["token", "password"]
    assert refs[0].reference == "op://Private/hypr/token"


def test_collisions_list_names_shared_by_vars_and_secrets(dotfiles: DotfilesBuilder) -> None:
    dotfiles.write(
        {
            "vars.toml": "api_key = 'plain'\nport = 1\n",
            "secrets.toml": """
            [[secret]]
            name = "api_key"
            engine = "1password"
            reference = "op://Private/api/key"
            """,
        }
    )
    dotfiles.write_config(
        """
        vars = ["vars.toml"]
        secrets = ["secrets.toml"]

        [[files]]
        src = "app.conf"
        """
    )
    config = dotfiles.load()

    assert ConfigResolver(config).resolve(config.files[0]).collisions() == ["api_key"]
