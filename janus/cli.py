"""CLI entrypoints for janus commands."""

from __future__ import annotations

import argparse
import contextlib
import sys
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm
from rich.syntax import Syntax
from rich.table import Table

from .config import JanusConfig, load_config, select_entries, write_default_config
from .errors import JanusError
from .importer import DEFAULT_MAX_DEPTH, Importer, RichImportPrompter
from .inspect import StatusFilters, compute_diffs, compute_status
from .lock import ProcessLock
from .logging import configure_logging, get_logger
from .models import FileEntry, Outcome, RunReport
from .orchestrator import Orchestrator
from .paths import default_config_path, expand_tilde
from .stores import StateStore
from .sync import RichHunkPrompter, SyncEngine

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2

console = Console()
logger = get_logger("cli")


def _add_global_options(parser: argparse.ArgumentParser, *, suppress_default: bool = False) -> None:
    def default(value):
        return argparse.SUPPRESS if suppress_default else value

    parser.add_argument(
        "--config",
        type=Path,
        default=default(None),
        help="Path to config.toml (defaults to $XDG_CONFIG_HOME/janus/config.toml).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=default(False),
        help="Show what would happen without touching the filesystem or state.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=default(0),
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=default(0),
        help="Decrease log verbosity (repeatable).",
    )


def _add_selection_options(parser: argparse.ArgumentParser, *, allow_all: bool = True) -> None:
    parser.add_argument("files", nargs="*", help="Source paths or glob patterns to process.")
    if allow_all:
        parser.add_argument(
            "--all",
            dest="select_all",
            action="store_true",
            help="Process every configured file.",
        )
    parser.add_argument(
        "--filesets",
        type=_comma_list,
        default=[],
        help="Comma-separated fileset names to process.",
    )


def _comma_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="janus", description="Two-way dotfile manager.")
    _add_global_options(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        _add_global_options(sub, suppress_default=True)
        return sub

    init_parser = add("init", "Create the dotfiles directory, state file and config.")
    init_parser.add_argument(
        "--dotfiles-dir",
        default="~/dotfiles",
        help="Dotfiles root to initialise (defaults to ~/dotfiles).",
    )

    import_parser = add("import", "Import existing config files into the dotfiles directory.")
    import_parser.add_argument("path", help="File or directory to import.")
    import_parser.add_argument(
        "--all",
        dest="import_all",
        action="store_true",
        help="Import every file found without prompting.",
    )
    import_parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help="Maximum directory depth to walk (default: %(default)s).",
    )

    generate_parser = add("generate", "Render sources into .generated/.")
    _add_selection_options(generate_parser)
    _add_fail_fast_option(generate_parser)

    stage_parser = add("stage", "Copy generated output into .staged/.")
    _add_selection_options(stage_parser)
    _add_force_option(stage_parser, "Overwrite staged copies that have drifted.")

    deploy_parser = add("deploy", "Symlink staged files to their targets.")
    _add_selection_options(deploy_parser)
    _add_force_option(deploy_parser, "Replace existing targets without a .janus.bak backup.")

    apply_parser = add("apply", "Generate, stage and deploy in one step.")
    _add_selection_options(apply_parser)
    _add_force_option(apply_parser, "Overwrite drifted staged copies and skip target backups.")
    _add_fail_fast_option(apply_parser)

    undeploy_parser = add("undeploy", "Replace deployed symlinks with plain copies.")
    _add_selection_options(undeploy_parser)
    _add_remove_file_option(undeploy_parser)

    unimport_parser = add("unimport", "Stop managing files and remove them from the dotfiles directory.")
    _add_selection_options(unimport_parser, allow_all=False)
    _add_remove_file_option(unimport_parser)

    status_parser = add("status", "Show pipeline status per file.")
    _add_selection_options(status_parser)
    status_parser.add_argument("--only-diffs", action="store_true", help="Only show files with pending changes.")
    status_parser.add_argument("--deployed", action="store_true", help="Only show deployed files.")
    status_parser.add_argument("--undeployed", action="store_true", help="Only show undeployed files.")

    diff_parser = add("diff", "Show differences between generated and staged files.")
    _add_selection_options(diff_parser)

    sync_parser = add("sync", "Merge staged edits back into source files.")
    _add_selection_options(sync_parser)

    clean_parser = add("clean", "Remove generated output and orphaned files.")
    clean_parser.add_argument("--generated", action="store_true", help="Wipe the .generated/ directory.")
    clean_parser.add_argument("--orphans", action="store_true", help="Remove files no longer in config.")

    return parser


def _add_force_option(parser: argparse.ArgumentParser, help_text: str) -> None:
    parser.add_argument("--force", action="store_true", help=help_text)


def _add_fail_fast_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--fail-fast", action="store_true", help="Stop at the first failed file.")


def _add_remove_file_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--remove-file",
        action="store_true",
        help="Delete the target instead of leaving a plain copy behind.",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entrypoint for janus commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbosity=int(getattr(args, "verbose", 0)) - int(getattr(args, "quiet", 0)))

    try:
        if args.command == "init":
            return _run_init(args)
        config = load_config(args.config)
        return _COMMANDS[args.command](args, config)
    except JanusError as exc:
        parser.exit(EXIT_FATAL, f"janus: {exc}\n")
    except KeyboardInterrupt:
        parser.exit(130, "janus: interrupted\n")


# ----------------------------------------------------------------------
# Commands


def _run_init(args: argparse.Namespace) -> int:
    dotfiles = expand_tilde(args.dotfiles_dir)
    stored_dir = args.dotfiles_dir
    if not dotfiles.is_absolute():
        dotfiles = dotfiles.absolute()
        stored_dir = str(dotfiles)
    config_path = (args.config or default_config_path()).expanduser()
    state_path = dotfiles / ".janus_state.json"
    vars_path = dotfiles / "vars.toml"
    if args.dry_run:
        for path in (dotfiles, dotfiles / ".generated", dotfiles / ".staged"):
            logger.info("[dry-run] Would create directory: %s", path)
        logger.info("[dry-run] Would create state file: %s", state_path)
        logger.info("[dry-run] Would create config file: %s", config_path)
        return EXIT_OK

    logger.info("Initializing dotfiles directory at %s", dotfiles)
    (dotfiles / ".generated").mkdir(parents=True, exist_ok=True)
    (dotfiles / ".staged").mkdir(parents=True, exist_ok=True)
    if not vars_path.exists():
        vars_path.write_text("# Template variables\n", encoding="utf-8")
        logger.info("Created %s", vars_path)
    if not state_path.exists():
        state_path.write_text("", encoding="utf-8")
        logger.info("Created %s", state_path)
    if config_path.exists():
        logger.info("Config already exists at %s", config_path)
    else:
        write_default_config(config_path, stored_dir)
        logger.info("Created config at %s", config_path)
    print(f"Initialized {dotfiles}")
    return EXIT_OK


def _run_import(args: argparse.Namespace, config: JanusConfig) -> int:
    with _locked(config, args.dry_run):
        store = StateStore.load(config.state_path)

        def factory(current: JanusConfig) -> Orchestrator:
            return Orchestrator(current, store=store, dry_run=args.dry_run)

        importer = Importer(config, store, RichImportPrompter(console), factory, dry_run=args.dry_run)
        report = importer.run(args.path, import_all=args.import_all, max_depth=args.max_depth)
    return _finish(report)


def _run_generate(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).generate(entries)
    return _finish(report)


def _run_stage(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).stage(entries, force=args.force)
    return _finish(report)


def _run_deploy(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).deploy(entries, force=args.force)
    return _finish(report)


def _run_apply(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).apply(entries, force=args.force)
    return _finish(report)


def _run_undeploy(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).undeploy(entries, remove_file=args.remove_file)
    return _finish(report)


def _run_unimport(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).unimport(entries, remove_file=args.remove_file)
    return _finish(report)


def _run_clean(args: argparse.Namespace, config: JanusConfig) -> int:
    with _locked(config, args.dry_run):
        report = _orchestrator(args, config).clean(generated=args.generated, orphans=args.orphans)
    return _finish(report)


def _run_sync(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    with _locked(config, args.dry_run):
        store = StateStore.load(config.state_path)
        engine = SyncEngine(config, store, RichHunkPrompter(console), dry_run=args.dry_run)
        report = engine.sync(entries)
    if report.count(Outcome.OK) and not args.dry_run:
        print("Run `janus generate` to re-render updated templates.")
    return _finish(report)


def _run_status(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    store = StateStore.load(config.state_path)
    filters = StatusFilters(
        only_diffs=args.only_diffs, deployed=args.deployed, undeployed=args.undeployed
    )
    result = compute_status(config, store, entries, filters)
    if not result.statuses:
        logger.info("No files match the given filters")
        return EXIT_OK

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("File", style="bold")
    table.add_column("Status")
    table.add_column("Deployed")
    table.add_column("Detail")
    table.add_column("Drift")
    table.add_column("Lines", justify="right")
    for row in result.statuses:
        table.add_row(
            row.src,
            row.status.value,
            "yes" if row.deployed else "no",
            row.detail,
            "[yellow]yes[/yellow]" if row.drift else "",
            str(row.changed_lines) if row.changed_lines else "",
        )
    console.print(table)

    if result.fileset_summary:
        console.print("\nFilesets needing sync:")
        for name, files_changed, lines in result.fileset_summary:
            console.print(f"  {name}  {files_changed} file(s) changed, {lines} line(s)", markup=False)
    return EXIT_OK


def _run_diff(args: argparse.Namespace, config: JanusConfig) -> int:
    entries = _select(args, config)
    for item in compute_diffs(config, entries):
        if item.state == "changed":
            console.print(Syntax(item.diff, "diff", theme="ansi_dark", background_color="default"))
        elif item.state == "identical":
            logger.debug("%s: no differences", item.src)
        else:
            console.print(f"{item.src}: {item.state.replace('-', ' ')}", markup=False)
    return EXIT_OK


_COMMANDS = {
    "import": _run_import,
    "generate": _run_generate,
    "stage": _run_stage,
    "deploy": _run_deploy,
    "apply": _run_apply,
    "undeploy": _run_undeploy,
    "unimport": _run_unimport,
    "clean": _run_clean,
    "sync": _run_sync,
    "status": _run_status,
    "diff": _run_diff,
}


# ----------------------------------------------------------------------
# Helpers


def _select(args: argparse.Namespace, config: JanusConfig) -> List[FileEntry]:
    return select_entries(
        config,
        args.files,
        select_all=bool(getattr(args, "select_all", False)),
        filesets=args.filesets,
    )


def _orchestrator(args: argparse.Namespace, config: JanusConfig) -> Orchestrator:
    confirm = _confirm_overwrite if sys.stdin.isatty() else None
    return Orchestrator(
        config,
        confirm_overwrite=confirm,
        fail_fast=bool(getattr(args, "fail_fast", False)),
        dry_run=args.dry_run,
    )


def _confirm_overwrite(entry: FileEntry, diff_text: str) -> bool:
    console.print(f"Staged copy of {entry.src} has drifted:", markup=False)
    console.print(Syntax(diff_text, "diff", theme="ansi_dark", background_color="default"))
    return Confirm.ask("Overwrite it with the newly generated output?", default=False, console=console)


@contextlib.contextmanager
def _locked(config: JanusConfig, dry_run: bool) -> Iterator[None]:
    if dry_run:
        yield
        return
    with ProcessLock(config.lock_path, timeout=config.lock_timeout):
        yield


def _finish(report: RunReport) -> int:
    for outcome in report.outcomes:
        if outcome.result is Outcome.FAILED:
            print(f"  failed   {outcome.src} ({outcome.action}): {outcome.message}", file=sys.stderr)
        elif outcome.result is Outcome.DRY_RUN:
            print(f"  dry-run  {outcome.src}: {outcome.message}")
        else:
            print(f"  {outcome.result.value:<8} {outcome.src}: {outcome.message}")
    summary = ", ".join(
        f"{report.count(result)} {result.value}"
        for result in Outcome
        if report.count(result)
    )
    if summary:
        print(f"{report.action}: {summary}")
    return EXIT_OK if report.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
