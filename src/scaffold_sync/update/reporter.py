"""Update report formatting functions.

Provides human-readable and machine-readable output for update runs:

- ``format_update_report`` -- full post-run summary.
- ``format_check_preview`` -- check-mode preview grouped by action.
- ``format_failure`` -- failed stage, affected paths, rollback state.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FailureInfo, UpdateReport

from .models import ArtifactAction

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_update_report(report: UpdateReport) -> str:
    """Format a completed update report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged artifacts are summarised by count only.

    Args:
        report: The completed update report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Update report for {report.project_root}"
    if report.mode != "apply":
        header += f" ({report.mode})"
    lines.append(header)
    lines.append(
        f"Upstream: {report.from_version or 'untracked'} -> "
        f"{report.to_version or 'unknown'}"
    )
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    if report.recovered_backup:
        lines.append(
            f"Recovered interrupted update from backup {report.recovered_backup}"
        )
    lines.append("")

    if report.failure is not None:
        lines.append(format_failure(report.failure))
        return "\n".join(lines).rstrip()

    lines.append(
        f"{len(report.results)} artifacts: "
        f"{len(report.updated)} updated, {len(report.added)} added, "
        f"{len(report.removed)} removed, {len(report.merged)} merged, "
        f"{len(report.preserved)} preserved, "
        f"{len(report.flagged)} need attention"
    )
    lines.append("")

    sections = [
        ("Updated from upstream:", report.updated),
        ("Added from upstream:", report.added),
        ("Removed (deleted upstream):", report.removed),
        ("Merged automatically:", report.merged),
        ("Customizations preserved:", report.preserved),
    ]
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            suffix = f" ({r.detail})" if r.detail else ""
            lines.append(f"  {r.path}{suffix}")
        lines.append("")

    if report.flagged:
        lines.append("Needs attention:")
        for r in report.flagged:
            lines.append(f"  {r.path}: {r.detail or r.action.value}")
            if r.resolution_path and r.resolution_path != r.path:
                lines.append(f"    see {r.resolution_path}")
        lines.append("")

    unchanged = len(report.unchanged)
    if unchanged > 0:
        lines.append(f"Unchanged: {unchanged} artifacts")
        lines.append("")

    if report.backup_path:
        lines.append(f"Backup: {report.backup_path}")

    return "\n".join(lines).rstrip()


def format_failure(failure: FailureInfo) -> str:
    """Format the failure section of a report.

    Args:
        failure: Failure details.

    Returns:
        Multi-line formatted string.
    """
    lines = [
        f"FAILED during {failure.stage.value}: {failure.message}",
        f"Error kind: {failure.kind}",
    ]
    if failure.affected_paths:
        lines.append("Affected artifacts:")
        shown = failure.affected_paths[:20]
        for path in shown:
            lines.append(f"  {path}")
        if len(failure.affected_paths) > len(shown):
            lines.append(
                f"  ... ({len(failure.affected_paths) - len(shown)} more)"
            )
    if failure.rolled_back:
        lines.append("Working tree restored from backup.")
    elif failure.backup_path:
        lines.append(
            "Working tree was NOT restored; run 'scaffold-sync rollback'."
        )
    else:
        lines.append("No changes were made.")
    if failure.backup_path:
        lines.append(f"Backup kept at: {failure.backup_path}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# Check-mode preview
# ------------------------------------------------------------------


def format_check_preview(report: UpdateReport) -> str:
    """Format a check-mode preview grouped by action type.

    Each planned action is shown as ``[ACTION] path``.

    Args:
        report: A check-mode report (``mode="check"``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("CHECK -- No changes will be made")
    lines.append(f"Project: {report.project_root}")
    lines.append(
        f"Upstream: {report.from_version or 'untracked'} -> "
        f"{report.to_version or 'unknown'}"
    )
    lines.append("")

    if report.failure is not None:
        lines.append(format_failure(report.failure))
        return "\n".join(lines).rstrip()

    groups: dict[ArtifactAction, list[str]] = defaultdict(list)
    for r in report.results:
        entry = r.path
        if r.resolution_path and r.resolution_path != r.path:
            entry += f" -> {r.resolution_path}"
        groups[r.action].append(entry)

    display_order = [
        ArtifactAction.OVERWRITE,
        ArtifactAction.ADD,
        ArtifactAction.REMOVE,
        ArtifactAction.MERGE,
        ArtifactAction.PRESERVE,
        ArtifactAction.MARKERS,
        ArtifactAction.DIFF_ARTIFACT,
        ArtifactAction.FLAGGED,
    ]

    for action in display_order:
        if action not in groups:
            continue
        label = action.value.upper().replace("_", " ")
        lines.append(f"[{label}]")
        for entry in groups[action]:
            lines.append(f"  {entry}")
        lines.append("")

    unchanged = len(groups.get(ArtifactAction.NONE, []))
    if unchanged > 0:
        lines.append(f"Unchanged: {unchanged} artifacts")
        lines.append("")

    if not any(
        a not in (ArtifactAction.NONE, ArtifactAction.PRESERVE) for a in groups
    ):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: UpdateReport) -> dict:
    """Convert an update report to a structured dict for JSON serialisation.

    Args:
        report: The update report.

    Returns:
        Dict with versions, outcome, counts, per-artifact results, and
        failure details when the run failed.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "state": r.state.value if r.state else None,
            "action": r.action.value,
            "needs_attention": r.needs_attention,
        }
        if r.resolution_path:
            entry["resolution_path"] = r.resolution_path
        if r.detail:
            entry["detail"] = r.detail
        results_list.append(entry)

    data: dict = {
        "mode": report.mode,
        "project_root": report.project_root,
        "from_version": report.from_version,
        "to_version": report.to_version,
        "outcome": report.outcome,
        "exit_code": report.exit_code,
        "stage": report.stage.value,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "backup_id": report.backup_id,
        "backup_path": report.backup_path,
        "recovered_backup": report.recovered_backup,
        "counts": {
            "total": len(report.results),
            "updated": len(report.updated),
            "added": len(report.added),
            "removed": len(report.removed),
            "merged": len(report.merged),
            "preserved": len(report.preserved),
            "needs_attention": len(report.flagged),
        },
        "results": results_list,
    }
    if report.failure is not None:
        data["failure"] = report.failure.model_dump(mode="json")
    return data
