"""Pydantic models for the update engine.

Defines the core data contracts used across all update modules:

- ``ArtifactState``: Classification of one tracked path.
- ``Artifact`` / ``Manifest``: The persisted ledger of baselines.
- ``BackupState`` / ``BackupHandle``: Snapshot bookkeeping.
- ``CleanMerge`` / ``InlineConflict`` / ``DiffArtifactConflict`` /
  ``Unmergeable``: The closed set of conflict resolution outcomes.
- ``ArtifactAction`` / ``ArtifactResult`` / ``FailureInfo`` /
  ``UpdateReport``: What a run did, or would do.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from scaffold_sync.errors import ExitCode

MANIFEST_SCHEMA_VERSION = 1


class ArtifactState(str, Enum):
    """Relationship between baseline, current, and incoming content."""

    UNMODIFIED = "unmodified"
    UPSTREAM_CHANGED_ONLY = "upstream_changed_only"
    CUSTOMIZED_NO_UPSTREAM_CHANGE = "customized_no_upstream_change"
    CONFLICT = "conflict"
    NEW_UPSTREAM = "new_upstream"
    REMOVED_UPSTREAM = "removed_upstream"


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class Artifact(BaseModel):
    """One tracked path in the manifest.

    Attributes:
        path: POSIX path relative to the project root.
        baseline_fingerprint: Fingerprint at the last successful sync.
        is_customized: Whether the on-disk copy diverged from the baseline
            when the manifest was written (derived, not authoritative).
        last_state: Classification at the last sync.  ``None`` for entries
            registered by bootstrap that have not been synced yet.
    """

    path: str
    baseline_fingerprint: str
    is_customized: bool = False
    last_state: ArtifactState | None = None

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class Manifest(BaseModel):
    """Persisted record of every template-owned path and its baseline.

    Attributes:
        schema_version: On-disk format version.
        tool_version: Version of scaffold-sync that wrote the manifest.
        upstream_version: Template release last synced, ``None`` if unknown.
        artifacts: Tracked artifacts, sorted by path, one entry per path.
    """

    schema_version: int = MANIFEST_SCHEMA_VERSION
    tool_version: str = ""
    upstream_version: str | None = None
    artifacts: list[Artifact] = []

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    @field_validator("artifacts")
    @classmethod
    def _sorted_unique(cls, value: list[Artifact]) -> list[Artifact]:
        seen: set[str] = set()
        for artifact in value:
            if artifact.path in seen:
                raise ValueError(
                    f"duplicate artifact path: {artifact.path}"
                )
            seen.add(artifact.path)
        return sorted(value, key=lambda a: a.path)

    def get(self, path: str) -> Artifact | None:
        """Return the artifact tracked at *path*, or ``None``."""
        for artifact in self.artifacts:
            if artifact.path == path:
                return artifact
        return None

    @property
    def paths(self) -> list[str]:
        return [a.path for a in self.artifacts]


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


class BackupState(str, Enum):
    """Lifecycle of a backup snapshot."""

    TAKEN = "taken"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class BackupHandle(BaseModel):
    """Reference to a completed snapshot on disk.

    Attributes:
        backup_id: Timestamp identifier (also the directory name).
        path: Snapshot directory.
        created_at: ISO 8601 timestamp.
        files: Paths copied into the snapshot.
        absent: Paths that did not exist when the snapshot was taken.
        absent_dirs: Parent directories of absent paths that did not exist
            either.
        manifest_included: Whether the manifest file was copied.
        state: Current lifecycle state.
    """

    backup_id: str
    path: Path
    created_at: str
    files: list[str] = []
    absent: list[str] = []
    absent_dirs: list[str] = []
    manifest_included: bool = False
    state: BackupState = BackupState.TAKEN

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Conflict resolution outcomes
# ---------------------------------------------------------------------------


class CleanMerge(BaseModel):
    """Both sides' changes merged without overlap."""

    kind: Literal["clean"] = "clean"
    text: str

    model_config = ConfigDict(frozen=True)


class InlineConflict(BaseModel):
    """Overlapping changes written in place with three-way markers."""

    kind: Literal["inline"] = "inline"
    text: str
    conflict_count: int

    model_config = ConfigDict(frozen=True)


class DiffArtifactConflict(BaseModel):
    """Overlapping changes in a large file, reported in a diff document."""

    kind: Literal["diff_artifact"] = "diff_artifact"
    document: str
    section_count: int
    unchanged_count: int

    model_config = ConfigDict(frozen=True)


class Unmergeable(BaseModel):
    """The contents cannot be merged line by line (binary, missing side)."""

    kind: Literal["unmergeable"] = "unmergeable"
    reason: str

    model_config = ConfigDict(frozen=True)


ResolutionOutcome = Union[
    CleanMerge, InlineConflict, DiffArtifactConflict, Unmergeable
]


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class UpdateStage(str, Enum):
    """Stages of the update transaction."""

    VALIDATING = "validating"
    CLASSIFYING = "classifying"
    RESOLVING = "resolving"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    COMMITTING = "committing"
    DONE = "done"
    ROLLING_BACK = "rolling_back"
    FAILED = "failed"


class ArtifactAction(str, Enum):
    """What happened (or would happen) to one artifact."""

    NONE = "none"
    OVERWRITE = "overwrite"
    ADD = "add"
    REMOVE = "remove"
    PRESERVE = "preserve"
    MERGE = "merge"
    MARKERS = "markers"
    DIFF_ARTIFACT = "diff_artifact"
    FLAGGED = "flagged"


#: Actions that leave an artifact needing the user's attention.
ATTENTION_ACTIONS = frozenset(
    {ArtifactAction.MARKERS, ArtifactAction.DIFF_ARTIFACT, ArtifactAction.FLAGGED}
)


class ArtifactResult(BaseModel):
    """Result for one artifact.

    Attributes:
        path: Artifact path relative to the project root.
        state: Classification (``None`` for rollback and init results).
        action: Action taken (or planned in check mode).
        resolution_path: Where conflict output can be found (the artifact
            itself for markers, the diff document, or the ``.incoming``
            sibling).
        detail: Optional human-readable note.
    """

    path: str
    state: ArtifactState | None = None
    action: ArtifactAction
    resolution_path: str | None = None
    detail: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def needs_attention(self) -> bool:
        return self.action in ATTENTION_ACTIONS


class FailureInfo(BaseModel):
    """Why a run failed.

    Attributes:
        stage: Stage in which the failure happened.
        kind: Error kind (``validation``, ``unreachable``, ``io`` ...).
        message: Error message.
        affected_paths: Artifacts involved in the failed stage.
        rolled_back: Whether the working tree was restored from backup.
        backup_path: Location of the preserved snapshot, if one was taken.
        exit_code: Process exit code for this failure.
    """

    stage: UpdateStage
    kind: str
    message: str
    affected_paths: list[str] = []
    rolled_back: bool = False
    backup_path: str | None = None
    exit_code: int = int(ExitCode.UNEXPECTED)

    model_config = ConfigDict(frozen=True)


class UpdateReport(BaseModel):
    """Aggregate report for one run.

    Attributes:
        mode: ``check``, ``apply``, ``rollback``, or ``init``.
        project_root: Project directory.
        from_version: Upstream version recorded before the run.
        to_version: Upstream version the run targeted.
        results: Per-artifact results.
        stage: Final stage reached (``done`` or ``failed``).
        failure: Failure details when ``stage`` is ``failed``.
        backup_id: Snapshot taken for this run, if any.
        backup_path: Snapshot directory, if any.
        recovered_backup: Snapshot restored from an interrupted earlier run.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run completed.
    """

    mode: str
    project_root: str
    from_version: str | None = None
    to_version: str | None = None
    results: list[ArtifactResult] = []
    stage: UpdateStage = UpdateStage.DONE
    failure: FailureInfo | None = None
    backup_id: str | None = None
    backup_path: str | None = None
    recovered_backup: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = ConfigDict(frozen=True)

    def _with_action(self, *actions: ArtifactAction) -> list[ArtifactResult]:
        return [r for r in self.results if r.action in actions]

    @property
    def updated(self) -> list[ArtifactResult]:
        """Results overwritten with upstream content."""
        return self._with_action(ArtifactAction.OVERWRITE)

    @property
    def added(self) -> list[ArtifactResult]:
        return self._with_action(ArtifactAction.ADD)

    @property
    def removed(self) -> list[ArtifactResult]:
        return self._with_action(ArtifactAction.REMOVE)

    @property
    def preserved(self) -> list[ArtifactResult]:
        """Customized artifacts left untouched."""
        return self._with_action(ArtifactAction.PRESERVE)

    @property
    def merged(self) -> list[ArtifactResult]:
        """Conflicts resolved by a clean three-way merge."""
        return self._with_action(ArtifactAction.MERGE)

    @property
    def unchanged(self) -> list[ArtifactResult]:
        return self._with_action(ArtifactAction.NONE)

    @property
    def flagged(self) -> list[ArtifactResult]:
        """Artifacts that need the user's attention."""
        return [r for r in self.results if r.needs_attention]

    @property
    def changed(self) -> list[ArtifactResult]:
        """Results whose action writes to the working tree."""
        return [
            r
            for r in self.results
            if r.action not in (ArtifactAction.NONE, ArtifactAction.PRESERVE)
        ]

    @property
    def outcome(self) -> str:
        """``failed``, ``needs_attention``, ``updated``, or ``up_to_date``."""
        if self.failure is not None:
            return "failed"
        if self.flagged:
            return "needs_attention"
        if self.changed:
            return "updated"
        return "up_to_date"

    @property
    def exit_code(self) -> int:
        if self.failure is not None:
            return self.failure.exit_code
        if self.flagged:
            return int(ExitCode.CONFLICT)
        return int(ExitCode.OK)

    def summary(self) -> str:
        """Format a short human-readable summary of the run.

        Returns:
            Multi-line summary string with counts by action.
        """
        lines = [
            f"Update report ({self.mode}) for {self.project_root}",
            f"  Updated:    {len(self.updated)}",
            f"  Added:      {len(self.added)}",
            f"  Removed:    {len(self.removed)}",
            f"  Merged:     {len(self.merged)}",
            f"  Preserved:  {len(self.preserved)}",
            f"  Attention:  {len(self.flagged)}",
            f"  Total:      {len(self.results)}",
        ]
        return "\n".join(lines)
