#!/usr/bin/env python3
"""Upgrade matrix regression run for scaffold-sync.

Installs every selected "from" release into a fresh project, applies an
optional set of customizations, updates to the "to" release, and reports
one outcome per upgrade path: success, needs_attention, failure, or timeout.

Customizations come from a YAML file mapping project paths to new text
(``null`` deletes the file)::

    commands/build.md: |
      # Build (customized)
    docs/obsolete.md: null

Usage:
  python scripts/upgrade_matrix.py --source-dir releases                 # every older release -> latest
  python scripts/upgrade_matrix.py --source-dir releases --consecutive   # each release -> the next one
  python scripts/upgrade_matrix.py --source-url https://t.example.com \\
      --from v1.0.0 v1.1.0 --to v2.0.0
  python scripts/upgrade_matrix.py --source-dir releases --custom edits.yml --json
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from scaffold_sync.config_loader import load_hierarchical_config
from scaffold_sync.config_schema import build_config
from scaffold_sync.fetch import DirectoryReleaseSource, HttpReleaseSource
from scaffold_sync.harness import HarnessOutcome, UpgradeHarness, UpgradePath
from scaffold_sync.logger import setup_logging
from scaffold_sync.version import sort_key

VERSION = "1.0.0"

logger = logging.getLogger("upgrade_matrix")


def build_paths(
    versions: list[str],
    from_versions: list[str] | None,
    to_version: str | None,
    consecutive: bool,
    customizations: dict[str, str | None],
) -> list[UpgradePath]:
    """Expand the command line selection into upgrade paths."""
    ordered = sorted(set(versions), key=sort_key)
    if consecutive:
        pairs = list(zip(ordered, ordered[1:]))
    else:
        target = to_version or (ordered[-1] if ordered else None)
        if target is None:
            return []
        sources = from_versions or [v for v in ordered if v != target]
        pairs = [(v, target) for v in sources if v != target]
    return [
        UpgradePath(from_version=a, to_version=b, customizations=customizations)
        for a, b in pairs
    ]


def load_customizations(path: str | None) -> dict[str, str | None]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping of path -> text")
    return {str(k): (None if v is None else str(v)) for k, v in data.items()}


def print_table(results) -> None:
    width = max((len(r.path.name) for r in results), default=10)
    for r in results:
        line = f"{r.path.name:<{width}}  {r.outcome.value:<16} {r.duration:6.1f}s  {r.message}"
        print(line)
        if r.workdir is not None:
            print(f"{'':<{width}}  kept at {r.workdir}")


def main():
    parser = argparse.ArgumentParser(
        description="Upgrade matrix regression run for scaffold-sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --source-dir releases                   # all releases -> latest
  %(prog)s --source-dir releases --consecutive     # each release -> next
  %(prog)s --source-dir releases --concurrency 8   # wider pool
  %(prog)s --source-dir releases --timeout 60      # tighter per-path timeout
        """,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {VERSION}"
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--source-url", help="Release index URL")
    source.add_argument("--source-dir", help="Local directory of releases")
    parser.add_argument(
        "--from",
        dest="from_versions",
        nargs="+",
        metavar="VERSION",
        help="Releases to upgrade from (default: every release except the target)",
    )
    parser.add_argument(
        "--to", dest="to_version", help="Release to upgrade to (default: latest)"
    )
    parser.add_argument(
        "--consecutive",
        action="store_true",
        help="Upgrade each release to the next one instead of to a single target",
    )
    parser.add_argument("--custom", help="YAML file of customizations to apply")
    parser.add_argument(
        "--work-dir",
        default="upgrade-matrix",
        help="Directory for per-path work directories (default: ./upgrade-matrix)",
    )
    parser.add_argument("--concurrency", type=int, help="Parallel upgrade paths")
    parser.add_argument("--timeout", type=float, help="Seconds allowed per path")
    parser.add_argument(
        "--request-interval",
        type=float,
        default=1.0,
        help="Minimum seconds between release requests (default: 1.0)",
    )
    parser.add_argument("--json", action="store_true", help="JSON output")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Verbose console output"
    )
    args = parser.parse_args()

    load_dotenv()
    unified = build_config(load_hierarchical_config())
    setup_logging(debug=args.verbose, level=unified.logging.level)

    if args.source_dir:
        release_source = DirectoryReleaseSource(Path(args.source_dir))
        versions = release_source.versions()
    else:
        release_source = HttpReleaseSource(args.source_url)
        versions = list(args.from_versions or [])
        if args.to_version:
            versions.append(args.to_version)

    try:
        customizations = load_customizations(args.custom)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error("Cannot load customizations: %s", exc)
        sys.exit(2)

    paths = build_paths(
        versions,
        args.from_versions,
        args.to_version,
        args.consecutive,
        customizations,
    )
    if not paths:
        logger.error("No upgrade paths selected")
        sys.exit(2)

    harness = UpgradeHarness(
        release_source,
        Path(args.work_dir),
        concurrency=args.concurrency or unified.harness.concurrency,
        timeout=args.timeout or unified.harness.timeout_seconds,
        min_free_bytes=unified.harness.min_free_mb * 1024 * 1024,
        request_interval=args.request_interval,
        conflict_line_threshold=unified.update.conflict_line_threshold,
    )
    results = harness.run(paths)

    if args.json:
        payload = [
            {
                "from": r.path.from_version,
                "to": r.path.to_version,
                "outcome": r.outcome.value,
                "message": r.message,
                "duration": round(r.duration, 3),
                "workdir": str(r.workdir) if r.workdir else None,
                "last_stage": r.last_stage.value if r.last_stage else None,
                "files_present": r.files_present,
            }
            for r in results
        ]
        print(json.dumps(payload, indent=2))
    else:
        print_table(results)

    bad = [
        r
        for r in results
        if r.outcome in (HarnessOutcome.FAILURE, HarnessOutcome.TIMEOUT)
    ]
    sys.exit(1 if bad else 0)


if __name__ == "__main__":
    main()
