"""Tests for update reporter formatting functions.

Covers:
- format_update_report with various result combinations
- format_check_preview grouping and the "no changes" case
- format_failure with and without rollback, long path lists
- report_to_json structure and exit codes
"""

from __future__ import annotations

import json

from scaffold_sync.update.models import (
    ArtifactAction,
    ArtifactResult,
    ArtifactState,
    FailureInfo,
    UpdateReport,
    UpdateStage,
)
from scaffold_sync.update.reporter import (
    format_check_preview,
    format_failure,
    format_update_report,
    report_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_report(
    results: list[ArtifactResult] | None = None,
    mode: str = "apply",
    failure: FailureInfo | None = None,
    **kwargs,
) -> UpdateReport:
    """Build an UpdateReport with sensible defaults."""
    return UpdateReport(
        mode=mode,
        project_root="/work/project",
        from_version="v1.0.0",
        to_version="v1.1.0",
        results=results or [],
        stage=UpdateStage.FAILED if failure else UpdateStage.DONE,
        failure=failure,
        started_at="2026-02-07T10:00:00Z",
        completed_at="2026-02-07T10:01:00Z",
        **kwargs,
    )


def _result(
    action: ArtifactAction,
    path: str = "docs/guide.md",
    state: ArtifactState | None = None,
    resolution_path: str | None = None,
    detail: str | None = None,
) -> ArtifactResult:
    return ArtifactResult(
        path=path,
        state=state,
        action=action,
        resolution_path=resolution_path,
        detail=detail,
    )


def _failure(**kwargs) -> FailureInfo:
    defaults = dict(
        stage=UpdateStage.APPLYING,
        kind="io",
        message="Disk full",
        affected_paths=["a.md"],
        exit_code=5,
    )
    defaults.update(kwargs)
    return FailureInfo(**defaults)


# ---------------------------------------------------------------------------
# format_update_report
# ---------------------------------------------------------------------------


class TestFormatUpdateReport:
    """Tests for format_update_report()."""

    def test_header(self):
        text = format_update_report(_make_report())
        assert text.startswith("Update report for /work/project\n")
        assert "Upstream: v1.0.0 -> v1.1.0" in text

    def test_mode_in_header(self):
        text = format_update_report(_make_report(mode="rollback"))
        assert "Update report for /work/project (rollback)" in text

    def test_untracked_project(self):
        report = _make_report().model_copy(update={"from_version": None})
        assert "Upstream: untracked -> v1.1.0" in format_update_report(report)

    def test_counts_line(self):
        report = _make_report(
            [
                _result(ArtifactAction.OVERWRITE, "a.md"),
                _result(ArtifactAction.ADD, "b.md"),
                _result(ArtifactAction.MARKERS, "c.md", resolution_path="c.md"),
                _result(ArtifactAction.NONE, "d.md"),
            ]
        )
        text = format_update_report(report)
        assert (
            "4 artifacts: 1 updated, 1 added, 0 removed, 0 merged, "
            "0 preserved, 1 need attention"
        ) in text

    def test_sections_only_when_populated(self):
        report = _make_report([_result(ArtifactAction.ADD, "new.md")])
        text = format_update_report(report)
        assert "Added from upstream:\n  new.md" in text
        assert "Updated from upstream:" not in text
        assert "Needs attention:" not in text

    def test_detail_shown(self):
        report = _make_report(
            [
                _result(
                    ArtifactAction.MERGE,
                    "notes.md",
                    detail="changes merged automatically",
                )
            ]
        )
        text = format_update_report(report)
        assert "Merged automatically:" in text
        assert "  notes.md (changes merged automatically)" in text

    def test_attention_points_to_resolution(self):
        report = _make_report(
            [
                _result(
                    ArtifactAction.DIFF_ARTIFACT,
                    "big.md",
                    resolution_path="big.md.upstream-diff.md",
                    detail="2 changed section(s) listed; file left unchanged",
                ),
                _result(ArtifactAction.MARKERS, "small.md", resolution_path="small.md"),
            ]
        )
        text = format_update_report(report)
        assert "Needs attention:" in text
        assert "    see big.md.upstream-diff.md" in text
        assert "see small.md" not in text

    def test_unchanged_summarised(self):
        report = _make_report(
            [_result(ArtifactAction.NONE, f"f{i}.md") for i in range(3)]
        )
        text = format_update_report(report)
        assert "Unchanged: 3 artifacts" in text
        assert "f0.md" not in text

    def test_backup_and_recovery_lines(self):
        report = _make_report(
            backup_path="/work/project/.scaffold_sync/backups/b1",
            recovered_backup="b0",
        )
        text = format_update_report(report)
        assert "Backup: /work/project/.scaffold_sync/backups/b1" in text
        assert "Recovered interrupted update from backup b0" in text

    def test_failure_replaces_sections(self):
        report = _make_report(
            [_result(ArtifactAction.OVERWRITE, "a.md")], failure=_failure()
        )
        text = format_update_report(report)
        assert "FAILED during applying: Disk full" in text
        assert "Updated from upstream:" not in text


# ---------------------------------------------------------------------------
# format_failure
# ---------------------------------------------------------------------------


class TestFormatFailure:
    """Tests for format_failure()."""

    def test_rolled_back(self):
        text = format_failure(
            _failure(rolled_back=True, backup_path="/b/1")
        )
        assert "Error kind: io" in text
        assert "Working tree restored from backup." in text
        assert "Backup kept at: /b/1" in text

    def test_not_restored(self):
        text = format_failure(_failure(backup_path="/b/1"))
        assert "NOT restored" in text
        assert "scaffold-sync rollback" in text

    def test_nothing_changed(self):
        text = format_failure(
            _failure(stage=UpdateStage.VALIDATING, affected_paths=[])
        )
        assert "No changes were made." in text
        assert "Affected artifacts:" not in text

    def test_long_path_list_truncated(self):
        paths = [f"f{i:02d}.md" for i in range(25)]
        text = format_failure(_failure(affected_paths=paths))
        assert "  f19.md" in text
        assert "f20.md" not in text
        assert "... (5 more)" in text


# ---------------------------------------------------------------------------
# format_check_preview
# ---------------------------------------------------------------------------


class TestFormatCheckPreview:
    """Tests for format_check_preview()."""

    def test_banner(self):
        text = format_check_preview(_make_report(mode="check"))
        assert text.startswith("CHECK -- No changes will be made")

    def test_grouped_by_action(self):
        report = _make_report(
            [
                _result(ArtifactAction.OVERWRITE, "a.md"),
                _result(ArtifactAction.OVERWRITE, "b.md"),
                _result(ArtifactAction.FLAGGED, "logo.png", resolution_path="logo.png.incoming"),
                _result(ArtifactAction.DIFF_ARTIFACT, "big.md", resolution_path="big.md.upstream-diff.md"),
            ],
            mode="check",
        )
        text = format_check_preview(report)
        assert "[OVERWRITE]\n  a.md\n  b.md" in text
        assert "[DIFF ARTIFACT]\n  big.md -> big.md.upstream-diff.md" in text
        assert "[FLAGGED]\n  logo.png -> logo.png.incoming" in text
        assert text.index("[OVERWRITE]") < text.index("[DIFF ARTIFACT]")
        assert "No changes needed." not in text

    def test_no_changes_needed(self):
        report = _make_report(
            [
                _result(ArtifactAction.NONE, "a.md"),
                _result(ArtifactAction.PRESERVE, "b.md"),
            ],
            mode="check",
        )
        text = format_check_preview(report)
        assert "[PRESERVE]\n  b.md" in text
        assert "Unchanged: 1 artifacts" in text
        assert "No changes needed." in text

    def test_failure(self):
        report = _make_report(
            mode="check",
            failure=_failure(stage=UpdateStage.VALIDATING, kind="unreachable", exit_code=3),
        )
        assert "FAILED during validating" in format_check_preview(report)


# ---------------------------------------------------------------------------
# report_to_json
# ---------------------------------------------------------------------------


class TestReportToJson:
    """Tests for report_to_json()."""

    def test_structure(self):
        report = _make_report(
            [
                _result(
                    ArtifactAction.OVERWRITE,
                    "a.md",
                    state=ArtifactState.UPSTREAM_CHANGED_ONLY,
                ),
                _result(
                    ArtifactAction.MARKERS,
                    "b.md",
                    state=ArtifactState.CONFLICT,
                    resolution_path="b.md",
                ),
            ],
            backup_id="b1",
        )
        data = report_to_json(report)

        assert data["mode"] == "apply"
        assert data["outcome"] == "needs_attention"
        assert data["exit_code"] == 4
        assert data["backup_id"] == "b1"
        assert data["counts"] == {
            "total": 2,
            "updated": 1,
            "added": 0,
            "removed": 0,
            "merged": 0,
            "preserved": 0,
            "needs_attention": 1,
        }
        first, second = data["results"]
        assert first == {
            "path": "a.md",
            "state": "upstream_changed_only",
            "action": "overwrite",
            "needs_attention": False,
        }
        assert second["resolution_path"] == "b.md"
        assert second["needs_attention"] is True
        assert "failure" not in data

    def test_serialisable(self):
        report = _make_report(
            [_result(ArtifactAction.ADD, "a.md")], failure=_failure()
        )
        data = json.loads(json.dumps(report_to_json(report)))
        assert data["outcome"] == "failed"
        assert data["exit_code"] == 5
        assert data["stage"] == "failed"
        assert data["failure"]["stage"] == "applying"
        assert data["failure"]["affected_paths"] == ["a.md"]

    def test_up_to_date(self):
        data = report_to_json(_make_report([_result(ArtifactAction.NONE, "a.md")]))
        assert data["outcome"] == "up_to_date"
        assert data["exit_code"] == 0
