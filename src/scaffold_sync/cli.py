"""Command line interface for scaffold-sync.

Commands::

    scaffold-sync check     [--version V]          classify and preview, no writes
    scaffold-sync apply     [--version V] [--yes]  run the update transaction
    scaffold-sync rollback                         restore the last backup
    scaffold-sync init      [--version V]          start tracking a project
    scaffold-sync backups                          list backup snapshots

Reports go to stdout (``--json`` for machine-readable output); log records
go to stderr.  The exit code tells the caller what happened (see
``scaffold_sync.errors.ExitCode``).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import pydantic
import yaml
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import ExitCode, ValidationError
from .fetch import DirectoryReleaseSource, HttpReleaseSource, ThrottledSource
from .fetch.base import ReleaseSource
from .logger import setup_logging
from .update import (
    BackupHandle,
    BackupManager,
    SyncContext,
    UpdateApplier,
    format_check_preview,
    format_update_report,
    report_to_json,
)
from .update.backup import ConfirmPrune, deny_prune

logger = logging.getLogger(__name__)

#: Commands that need a release source.
SOURCE_COMMANDS = ("check", "apply", "init")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scaffold-sync",
        description="Keep a template-generated project in step with upstream "
        "template releases without losing local customizations.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what an update would do
  scaffold-sync --source-dir ../template-releases check

  # Update to the latest release, pruning old backups without asking
  scaffold-sync --source-url https://templates.example.com apply --yes

  # Update to a specific release
  scaffold-sync apply --version v1.4.0

  # Undo the last update
  scaffold-sync rollback

Exit codes: 0 ok, 1 unexpected error, 2 validation failure, 3 fetch failure,
4 conflicts need attention, 5 I/O failure (changes rolled back).
        """,
    )
    parser.add_argument(
        "--project",
        default=".",
        help="Project directory to synchronise (default: current directory)",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--source-url",
        help="Release index URL (takes precedence over SCAFFOLD_SYNC_SOURCE_URL and config files)",
    )
    source.add_argument(
        "--source-dir",
        help="Local directory with one subdirectory per release",
    )
    parser.add_argument(
        "--config",
        help="Config file path (takes precedence over discovered config files)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    parser.add_argument("--log-file", help="Also write log records to this file")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON instead of text",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"scaffold-sync version {__version__}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    check = commands.add_parser(
        "check", help="Classify artifacts and preview the update (no writes)"
    )
    check.add_argument("--version", dest="target", help="Release to compare against")

    apply = commands.add_parser("apply", help="Apply the update")
    apply.add_argument("--version", dest="target", help="Release to update to")
    apply.add_argument(
        "--yes",
        action="store_true",
        help="Prune old backups beyond the retention limit without asking",
    )

    commands.add_parser("rollback", help="Restore the most recent backup")

    init = commands.add_parser(
        "init", help="Start tracking an existing project"
    )
    init.add_argument(
        "--version",
        dest="target",
        help="Release the project was generated from",
    )

    commands.add_parser("backups", help="List backup snapshots")
    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def load_settings(args: argparse.Namespace) -> tuple[Config, UnifiedConfig]:
    """Resolve settings from CLI args, environment, .env and YAML files."""
    explicit = Path(args.config) if args.config else None
    unified = build_config(load_hierarchical_config(explicit))
    source_fallbacks = {
        k: v for k, v in unified.source.model_dump().items() if v is not None
    }
    config = load_config(
        source_url=args.source_url,
        source_dir=args.source_dir,
        insecure=args.insecure,
        debug=args.debug,
        yaml_fallbacks=source_fallbacks,
        update_fallbacks=unified.update.model_dump(),
        require_source=args.command in SOURCE_COMMANDS,
    )
    return config, unified


def make_source(config: Config) -> ReleaseSource:
    source: ReleaseSource
    if config.source_url:
        source = HttpReleaseSource(
            config.source_url,
            token=config.token,
            insecure=config.insecure,
            timeout=(10, config.timeout),
        )
    elif config.source_dir:
        source = DirectoryReleaseSource(Path(config.source_dir).expanduser())
    else:
        raise ValidationError("No release source configured")
    if config.request_interval > 0:
        source = ThrottledSource(source, config.request_interval)
    logger.debug("Release source: %r", source)
    return source


def make_prune_prompt(assume_yes: bool) -> ConfirmPrune:
    """Build the backup-pruning confirmation for this invocation.

    ``--yes`` approves; otherwise the user is asked on a TTY and the
    answer is no when stdin is not interactive.
    """
    if assume_yes:
        return lambda candidates: True
    if not sys.stdin.isatty():
        return deny_prune

    def _ask(candidates: list[BackupHandle]) -> bool:
        print(
            f"{len(candidates)} backup snapshot(s) exceed the retention limit:",
            file=sys.stderr,
        )
        for handle in candidates:
            print(f"  {handle.backup_id}  {handle.path}", file=sys.stderr)
        sys.stderr.write("Delete them? [y/N] ")
        sys.stderr.flush()
        answer = input()
        return answer.strip().lower() in ("y", "yes")

    return _ask


def make_context(
    args: argparse.Namespace, config: Config
) -> SyncContext:
    return SyncContext.for_project(
        Path(args.project).expanduser(),
        state_dir=config.state_dir,
        backup_dir=config.backup_dir,
        conflict_line_threshold=config.conflict_line_threshold,
        backup_retention=config.backup_retention,
        confirm_prune=make_prune_prompt(getattr(args, "yes", False)),
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_backups(backups: list[BackupHandle], as_json: bool) -> None:
    if as_json:
        payload = [h.model_dump(mode="json") for h in backups]
        print(json.dumps(payload, indent=2))
        return
    if not backups:
        print("No backup snapshots.")
        return
    for handle in backups:
        print(
            f"{handle.backup_id}  {handle.state.value:<11}  "
            f"{len(handle.files)} files  {handle.path}"
        )


def execute(args: argparse.Namespace, config: Config) -> int:
    """Run the selected command and print its report.

    Returns:
        Process exit code.
    """
    ctx = make_context(args, config)

    if args.command == "backups":
        _print_backups(BackupManager(ctx.backup_dir).list_backups(), args.json)
        return int(ExitCode.OK)

    if args.command == "rollback":
        applier = UpdateApplier(None, ctx)
        report = applier.rollback_last()
    else:
        applier = UpdateApplier(make_source(config), ctx)
        if args.command == "check":
            report = applier.run(check_only=True, version=args.target)
        elif args.command == "apply":
            report = applier.run(version=args.target)
        else:
            report = applier.init(version=args.target)

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif report.mode == "check":
        print(format_check_preview(report))
    else:
        print(format_update_report(report))
    return report.exit_code


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run one command."""
    args = build_parser().parse_args(argv)

    # .env first so ${VAR} interpolation in config files can use its values
    load_dotenv()

    try:
        config, unified = load_settings(args)
    except (
        ValueError,
        FileNotFoundError,
        yaml.YAMLError,
        pydantic.ValidationError,
    ) as exc:
        setup_logging(debug=args.debug, log_file=args.log_file)
        logger.error("Configuration error: %s", exc)
        return int(ExitCode.VALIDATION)

    setup_logging(
        debug=config.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=unified.logging.format,
        level=unified.logging.level,
    )
    logger.debug("scaffold-sync %s, command %s", __version__, args.command)

    return execute(args, config)


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(int(ExitCode.UNEXPECTED))


if __name__ == "__main__":
    run()
