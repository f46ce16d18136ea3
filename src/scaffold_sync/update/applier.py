"""Update applier: runs one upstream update as a single transaction.

The ``UpdateApplier`` ties together the manifest store, fingerprinter,
classifier, conflict resolver, and backup manager.  It is the only component
that mutates the project tree.  A run moves through explicit stages, each a
method from one typed plan value to the next:

1. ``VALIDATING``  -- recover an interrupted apply, load (or bootstrap) the
   manifest, resolve and download the incoming release.
2. ``CLASSIFYING`` -- fingerprint the tree and classify every tracked or
   newly seen path.
3. ``RESOLVING``   -- turn every classification into planned writes; merge or
   flag conflicts (fetching the base release once, if needed).
4. ``BACKING_UP``  -- snapshot every path about to change, open the journal.
5. ``APPLYING``    -- write, add, and remove files.
6. ``COMMITTING``  -- verify what is on disk, then save the new manifest.

A failure before ``BACKING_UP`` leaves the project untouched.  A failure
after a snapshot exists restores it (``ROLLING_BACK``) before the failure is
reported, and the snapshot is kept for manual inspection.  Check mode stops
after ``RESOLVING``.

Conflicts are not failures: they are reported as artifacts needing
attention next to everything that was applied.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from scaffold_sync.errors import FetchError, UpdateError, ValidationError
from scaffold_sync.fetch.base import ReleaseSource
from scaffold_sync.fetch.models import (
    Downloaded,
    ReleaseFound,
    ReleaseManifest,
    raise_for_failure,
)
from scaffold_sync.file_handler import (
    read_bytes,
    read_text,
    remove_file,
    resolve_artifact_path,
    write_file_atomic,
)
from scaffold_sync.update.backup import BackupManager
from scaffold_sync.update.classifier import Classifier
from scaffold_sync.update.context import SyncContext
from scaffold_sync.update.fingerprint import Fingerprinter, fingerprints_equal
from scaffold_sync.update.manifest import ManifestStore
from scaffold_sync.update.models import (
    Artifact,
    ArtifactAction,
    ArtifactResult,
    ArtifactState,
    BackupHandle,
    BackupState,
    CleanMerge,
    DiffArtifactConflict,
    FailureInfo,
    InlineConflict,
    Manifest,
    Unmergeable,
    UpdateReport,
    UpdateStage,
)
from scaffold_sync.update.resolver import (
    ConflictResolver,
    diff_artifact_path,
    has_conflict_markers,
    incoming_copy_path,
)
from scaffold_sync.version import is_newer

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Stage values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidatedRun:
    manifest: Manifest
    bootstrapped: bool
    release: ReleaseManifest
    incoming_root: Path
    staging: Path
    recovered_backup: str | None = None


@dataclass(frozen=True)
class ArtifactPlan:
    """Classification of one path, with the fingerprints that produced it."""

    path: str
    state: ArtifactState
    previous: Artifact | None
    baseline: str | None
    current: str | None
    incoming: str | None


@dataclass(frozen=True)
class ClassifiedRun:
    validated: ValidatedRun
    plans: list[ArtifactPlan]


@dataclass(frozen=True)
class PlannedWrite:
    """A file to write (``data``) or remove (``data is None``)."""

    path: str
    data: bytes | None


@dataclass(frozen=True)
class ResolvedArtifact:
    plan: ArtifactPlan
    action: ArtifactAction
    writes: tuple[PlannedWrite, ...] = ()
    entry: Artifact | None = None
    resolution_path: str | None = None
    detail: str | None = None

    def result(self) -> ArtifactResult:
        return ArtifactResult(
            path=self.plan.path,
            state=self.plan.state,
            action=self.action,
            resolution_path=self.resolution_path,
            detail=self.detail,
        )


@dataclass(frozen=True)
class ResolvedRun:
    classified: ClassifiedRun
    artifacts: list[ResolvedArtifact]
    manifest: Manifest

    @property
    def writes(self) -> list[PlannedWrite]:
        return [w for a in self.artifacts for w in a.writes]

    @property
    def is_noop(self) -> bool:
        """Nothing to write and no baseline or customization flag changed."""
        validated = self.classified.validated

        def tracked(manifest: Manifest) -> set[tuple[str, str, bool]]:
            return {
                (a.path, a.baseline_fingerprint, a.is_customized)
                for a in manifest.artifacts
            }

        return (
            not self.writes
            and not validated.bootstrapped
            and self.manifest.upstream_version
            == validated.manifest.upstream_version
            and tracked(self.manifest) == tracked(validated.manifest)
        )


@dataclass(frozen=True)
class BackedUpRun:
    resolved: ResolvedRun
    handle: BackupHandle


@dataclass(frozen=True)
class AppliedRun:
    backed_up: BackedUpRun
    written: list[str]


@dataclass
class _Progress:
    """Mutable bookkeeping for a single run."""

    stage: UpdateStage = UpdateStage.VALIDATING
    affected: list[str] = field(default_factory=list)
    handle: BackupHandle | None = None
    staging: Path | None = None
    from_version: str | None = None
    to_version: str | None = None
    results: list[ArtifactResult] = field(default_factory=list)
    recovered_backup: str | None = None


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


class UpdateApplier:
    """Apply an upstream template release to one project.

    Args:
        source: Release source collaborator (``None`` for rollback only).
        context: Per-invocation context.
        fingerprinter: Content fingerprinter.
        manifest_store: Manifest persistence.
        classifier: State classifier.
        resolver: Conflict resolver.
        backups: Backup manager.
    """

    def __init__(
        self,
        source: ReleaseSource | None,
        context: SyncContext,
        *,
        fingerprinter: Fingerprinter | None = None,
        manifest_store: ManifestStore | None = None,
        classifier: Classifier | None = None,
        resolver: ConflictResolver | None = None,
        backups: BackupManager | None = None,
    ) -> None:
        self.source = source
        self.context = context
        self.fingerprinter = fingerprinter or Fingerprinter()
        self.store = manifest_store or ManifestStore(context.state_dir)
        self.classifier = classifier or Classifier()
        self.resolver = resolver or ConflictResolver(
            context.conflict_line_threshold
        )
        self.backups = backups or BackupManager(context.backup_dir)

    @property
    def root(self) -> Path:
        return self.context.project_root

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(
        self, check_only: bool = False, version: str | None = None
    ) -> UpdateReport:
        """Update the project to *version* (default: the latest release).

        Args:
            check_only: Classify and resolve in memory, write nothing.
            version: Explicit release to update to.

        Returns:
            An ``UpdateReport``; failures are reported, not raised.
        """
        mode = "check" if check_only else "apply"
        started_at = _now()
        progress = _Progress()

        try:
            validated = self._validate(progress, version, check_only)
            classified = self._classify(progress, validated)
            resolved = self._resolve(progress, classified)
        except UpdateError as exc:
            self._enter(progress, UpdateStage.FAILED)
            return self._failure_report(mode, started_at, progress, exc)

        progress.results = [a.result() for a in resolved.artifacts]

        if check_only or resolved.is_noop:
            self._discard_staging(progress)
            self._enter(progress, UpdateStage.DONE)
            if not check_only:
                logger.info("Project is up to date at %s", progress.to_version)
            return self._report(mode, started_at, progress)

        try:
            backed_up = self._back_up(progress, resolved)
        except UpdateError as exc:
            self._enter(progress, UpdateStage.FAILED)
            return self._failure_report(mode, started_at, progress, exc)

        try:
            applied = self._apply(progress, backed_up)
            self._commit(progress, applied)
        except Exception as exc:
            rolled_back = self._roll_back(progress)
            self._enter(progress, UpdateStage.FAILED)
            return self._failure_report(
                mode, started_at, progress, exc, rolled_back=rolled_back
            )

        self._discard_staging(progress)
        self._enter(progress, UpdateStage.DONE)
        return self._report(mode, started_at, progress)

    def rollback_last(self) -> UpdateReport:
        """Restore the most recent backup snapshot.

        An interrupted apply's snapshot (from the journal) takes precedence
        over the newest listed snapshot.
        """
        started_at = _now()
        progress = _Progress(stage=UpdateStage.VALIDATING)
        try:
            self._check_project_root()
            journal = self.store.pending_transaction()
            if journal is not None:
                handle = self._journal_backup(journal)
            else:
                handle = self.backups.latest()
            if handle is None:
                raise ValidationError(
                    f"No backup snapshot found in {self.context.backup_dir}"
                )
            progress.handle = handle
            progress.affected = sorted(handle.files + handle.absent)
            self._enter(progress, UpdateStage.ROLLING_BACK)
            progress.handle = self.backups.restore(
                handle, self.root, self.store.manifest_path
            )
            if journal is not None:
                self.store.clear_transaction()
        except UpdateError as exc:
            self._enter(progress, UpdateStage.FAILED)
            return self._failure_report("rollback", started_at, progress, exc)

        progress.results = [
            ArtifactResult(path=p, action=ArtifactAction.OVERWRITE, detail="restored")
            for p in handle.files
        ] + [
            ArtifactResult(path=p, action=ArtifactAction.REMOVE, detail="did not exist in backup")
            for p in handle.absent
        ]
        self._enter(progress, UpdateStage.DONE)
        return self._report("rollback", started_at, progress)

    def init(self, version: str | None = None) -> UpdateReport:
        """Bring an untracked project under tracking.

        Every template path present on disk is registered as customized.
        When *version* is given it is recorded as the release the project
        was generated from, which lets the next update three-way merge
        against it.
        """
        started_at = _now()
        progress = _Progress(stage=UpdateStage.VALIDATING)
        try:
            self._check_project_root()
            if self.store.load() is not None:
                raise ValidationError(
                    f"Project already has a manifest: {self.store.manifest_path}"
                )
            release = self._fetch_release(version)
            progress.to_version = version
            self._enter(progress, UpdateStage.COMMITTING)
            manifest = self.store.bootstrap(
                self.root, release.paths, self.fingerprinter, version
            )
            self.store.save(manifest)
        except UpdateError as exc:
            self._enter(progress, UpdateStage.FAILED)
            return self._failure_report("init", started_at, progress, exc)

        progress.results = [
            ArtifactResult(
                path=a.path,
                action=ArtifactAction.NONE,
                detail="registered as customized",
            )
            for a in manifest.artifacts
        ]
        self._enter(progress, UpdateStage.DONE)
        return self._report("init", started_at, progress)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _validate(
        self, progress: _Progress, version: str | None, check_only: bool
    ) -> ValidatedRun:
        self._enter(progress, UpdateStage.VALIDATING)
        self._check_project_root()

        recovered = self._recover_interrupted(check_only)
        progress.recovered_backup = recovered

        manifest = self.store.load()
        progress.from_version = manifest.upstream_version if manifest else None

        release = self._fetch_release(version)
        progress.to_version = release.version
        if (
            progress.from_version is not None
            and release.version != progress.from_version
            and not is_newer(release.version, progress.from_version)
        ):
            logger.warning(
                "Release %s is older than the synced release %s",
                release.version,
                progress.from_version,
            )
        self._check_release_paths(release)

        bootstrapped = manifest is None
        if manifest is None:
            manifest = self.store.bootstrap(
                self.root, release.paths, self.fingerprinter
            )

        progress.staging = Path(tempfile.mkdtemp(prefix="scaffold-sync-"))
        incoming_root = self._download(release, progress.staging / "incoming")

        return ValidatedRun(
            manifest=manifest,
            bootstrapped=bootstrapped,
            release=release,
            incoming_root=incoming_root,
            staging=progress.staging,
            recovered_backup=recovered,
        )

    def _classify(
        self, progress: _Progress, validated: ValidatedRun
    ) -> ClassifiedRun:
        self._enter(progress, UpdateStage.CLASSIFYING)
        manifest = validated.manifest
        release_paths = set(validated.release.paths)
        paths = sorted(set(manifest.paths) | release_paths)
        progress.affected = paths

        current = self.fingerprinter.fingerprint_tree(self.root, paths)
        incoming = {
            p: self.fingerprinter.fingerprint_file(
                validated.incoming_root / p, p
            )
            for p in sorted(release_paths)
        }

        plans = []
        for path in paths:
            baseline = self.store.baseline(manifest, path)
            state = self.classifier.classify(
                baseline, current[path], incoming.get(path)
            )
            plans.append(
                ArtifactPlan(
                    path=path,
                    state=state,
                    previous=manifest.get(path),
                    baseline=baseline,
                    current=current[path],
                    incoming=incoming.get(path),
                )
            )
            logger.debug("Classified %s as %s", path, state.value)
        return ClassifiedRun(validated=validated, plans=plans)

    def _resolve(
        self, progress: _Progress, classified: ClassifiedRun
    ) -> ResolvedRun:
        self._enter(progress, UpdateStage.RESOLVING)
        validated = classified.validated

        base_root = None
        if any(p.state == ArtifactState.CONFLICT for p in classified.plans):
            base_root = self._fetch_base(validated)

        artifacts = [
            self._resolve_artifact(plan, validated, base_root)
            for plan in classified.plans
        ]
        entries = [a.entry for a in artifacts if a.entry is not None]
        manifest = Manifest(
            upstream_version=validated.release.version,
            tool_version=validated.manifest.tool_version,
            artifacts=entries,
        )
        return ResolvedRun(
            classified=classified, artifacts=artifacts, manifest=manifest
        )

    def _back_up(
        self, progress: _Progress, resolved: ResolvedRun
    ) -> BackedUpRun:
        self._enter(progress, UpdateStage.BACKING_UP)
        writes = resolved.writes
        progress.affected = sorted({w.path for w in writes})

        tracked = [p.path for p in resolved.classified.plans]
        handle = self.backups.snapshot(
            self.root,
            tracked + [w.path for w in writes],
            self.store.manifest_path,
        )
        progress.handle = handle
        self.store.begin_transaction(handle.backup_id, progress.affected)
        return BackedUpRun(resolved=resolved, handle=handle)

    def _apply(self, progress: _Progress, backed_up: BackedUpRun) -> AppliedRun:
        self._enter(progress, UpdateStage.APPLYING)
        written: list[str] = []
        for write in backed_up.resolved.writes:
            self.context.raise_if_cancelled()
            target = resolve_artifact_path(self.root, write.path)
            if write.data is None:
                remove_file(target, write.path)
                logger.info("Removed %s", write.path)
            else:
                write_file_atomic(target, write.data, write.path)
                logger.info("Wrote %s", write.path)
            written.append(write.path)
        return AppliedRun(backed_up=backed_up, written=written)

    def _commit(self, progress: _Progress, applied: AppliedRun) -> None:
        self._enter(progress, UpdateStage.COMMITTING)
        resolved = applied.backed_up.resolved

        # What is on disk must match what the manifest is about to claim
        for artifact in resolved.artifacts:
            for write in artifact.writes:
                if write.path != artifact.plan.path or write.data is None:
                    continue
                expected = self.fingerprinter.fingerprint(write.data)
                actual = self.fingerprinter.fingerprint_file(
                    resolve_artifact_path(self.root, write.path), write.path
                )
                if not fingerprints_equal(expected, actual):
                    raise UpdateError(
                        f"Verification failed for {write.path}: content on disk "
                        "does not match what was written"
                    )

        self.store.save(resolved.manifest)
        self.store.clear_transaction()
        handle = applied.backed_up.handle
        progress.handle = self.backups.mark(handle, BackupState.COMMITTED)

        try:
            self.backups.prune(
                self.context.backup_retention, self.context.confirm_prune
            )
        except OSError as exc:
            logger.warning("Pruning old backups failed: %s", exc)

    # ------------------------------------------------------------------
    # Per-artifact resolution
    # ------------------------------------------------------------------

    def _resolve_artifact(
        self,
        plan: ArtifactPlan,
        validated: ValidatedRun,
        base_root: Path | None,
    ) -> ResolvedArtifact:
        state = plan.state
        incoming_path = validated.incoming_root / plan.path

        if state == ArtifactState.UNMODIFIED:
            return ResolvedArtifact(
                plan=plan,
                action=ArtifactAction.NONE,
                entry=self._entry(plan, plan.incoming, customized=False),
            )

        if state in (
            ArtifactState.UPSTREAM_CHANGED_ONLY,
            ArtifactState.NEW_UPSTREAM,
        ):
            action = (
                ArtifactAction.ADD
                if state == ArtifactState.NEW_UPSTREAM
                else ArtifactAction.OVERWRITE
            )
            return ResolvedArtifact(
                plan=plan,
                action=action,
                writes=(PlannedWrite(plan.path, read_bytes(incoming_path, plan.path)),),
                entry=self._entry(plan, plan.incoming, customized=False),
            )

        if state == ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE:
            if self._markers_remain(plan):
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.MARKERS,
                    entry=self._still_conflicted(plan),
                    resolution_path=plan.path,
                    detail="conflict markers from an earlier update remain",
                )
            entry = None
            if plan.previous is not None:
                last_state = (
                    None if plan.previous.last_state is None else state
                )
                entry = plan.previous.model_copy(
                    update={"is_customized": True, "last_state": last_state}
                )
            detail = "deleted locally" if plan.current is None else None
            return ResolvedArtifact(
                plan=plan,
                action=ArtifactAction.PRESERVE,
                entry=entry,
                detail=detail,
            )

        if state == ArtifactState.REMOVED_UPSTREAM:
            if plan.current is None:
                return ResolvedArtifact(
                    plan=plan, action=ArtifactAction.REMOVE, detail="already absent"
                )
            return ResolvedArtifact(
                plan=plan,
                action=ArtifactAction.REMOVE,
                writes=(PlannedWrite(plan.path, None),),
            )

        return self._resolve_conflict(plan, validated, base_root)

    def _resolve_conflict(
        self,
        plan: ArtifactPlan,
        validated: ValidatedRun,
        base_root: Path | None,
    ) -> ResolvedArtifact:
        path = plan.path
        current_text = None
        if plan.current is not None:
            current_text = read_text(resolve_artifact_path(self.root, path), path)

        incoming_bytes = None
        incoming_text = None
        if plan.incoming is not None:
            incoming_file = validated.incoming_root / path
            incoming_bytes = read_bytes(incoming_file, path)
            incoming_text = read_text(incoming_file, path)

        base_fingerprint = self._base_fingerprint(plan, base_root)
        base_text = None
        if base_fingerprint is not None:
            base_text = read_text(base_root / path, path)

        outcome = self.resolver.resolve(
            path,
            current_text,
            base_text,
            incoming_text,
            base_version=(
                validated.manifest.upstream_version if base_text is not None else None
            ),
            incoming_version=validated.release.version,
        )

        match outcome:
            case CleanMerge(text=text):
                data = text.encode("utf-8")
                merged = self.fingerprinter.fingerprint(data)
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.MERGE,
                    writes=(PlannedWrite(path, data),),
                    entry=self._entry(
                        plan,
                        plan.incoming,
                        customized=not fingerprints_equal(merged, plan.incoming),
                    ),
                    detail="changes merged automatically",
                )
            case InlineConflict(text=text, conflict_count=count):
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.MARKERS,
                    writes=(PlannedWrite(path, text.encode("utf-8")),),
                    entry=self._entry(plan, plan.incoming, customized=True),
                    resolution_path=path,
                    detail=f"{count} conflicting region(s) marked inline",
                )
            case DiffArtifactConflict(document=document, section_count=sections):
                diff_path = diff_artifact_path(path)
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.DIFF_ARTIFACT,
                    writes=self._sibling_write(diff_path, document.encode("utf-8")),
                    entry=self._still_conflicted(plan, base_fingerprint),
                    resolution_path=diff_path,
                    detail=f"{sections} changed section(s) listed; file left unchanged",
                )
            case Unmergeable(reason=reason) if incoming_bytes is not None:
                copy_path = incoming_copy_path(path)
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.FLAGGED,
                    writes=self._sibling_write(copy_path, incoming_bytes),
                    entry=self._still_conflicted(plan, base_fingerprint),
                    resolution_path=copy_path,
                    detail=reason,
                )
            case Unmergeable(reason=reason):
                return ResolvedArtifact(
                    plan=plan,
                    action=ArtifactAction.FLAGGED,
                    entry=self._still_conflicted(plan, base_fingerprint),
                    detail=reason,
                )
            case _:
                raise TypeError(f"Unexpected resolution outcome: {outcome!r}")

    def _base_fingerprint(
        self, plan: ArtifactPlan, base_root: Path | None
    ) -> str | None:
        """Fingerprint of the base file to merge against, or ``None``.

        The base release is the manifest's recorded version.  A tracked
        artifact whose baseline differs from that release's copy (a conflict
        left unresolved by an earlier run) gets no base, so it is merged
        against an empty one.  Bootstrapped entries trust the recorded
        release.
        """
        if base_root is None or plan.previous is None:
            return None
        base_file = base_root / plan.path
        if not base_file.is_file():
            return None
        base_fingerprint = self.fingerprinter.fingerprint_file(base_file, plan.path)
        if plan.baseline is not None and not fingerprints_equal(
            base_fingerprint, plan.baseline
        ):
            logger.debug(
                "Base release copy of %s does not match its baseline", plan.path
            )
            return None
        return base_fingerprint

    @staticmethod
    def _still_conflicted(
        plan: ArtifactPlan, base_fingerprint: str | None = None
    ) -> Artifact | None:
        """Keep the old baseline of an artifact whose file was not rewritten.

        The conflict is classified again on every run until the user settles
        it.  A bootstrapped entry takes the base it was merged against as its
        baseline; without one it is dropped and stays untracked.
        """
        previous = plan.previous
        if previous is None:
            return None
        update = {"is_customized": True, "last_state": ArtifactState.CONFLICT}
        if previous.last_state is None:
            if base_fingerprint is None:
                return None
            update["baseline_fingerprint"] = base_fingerprint
        return previous.model_copy(update=update)

    def _markers_remain(self, plan: ArtifactPlan) -> bool:
        previous = plan.previous
        if (
            previous is None
            or previous.last_state != ArtifactState.CONFLICT
            or plan.current is None
        ):
            return False
        text = read_text(resolve_artifact_path(self.root, plan.path), plan.path)
        return text is not None and has_conflict_markers(text)

    def _sibling_write(self, path: str, data: bytes) -> tuple[PlannedWrite, ...]:
        target = resolve_artifact_path(self.root, path)
        if target.is_file() and read_bytes(target, path) == data:
            return ()
        return (PlannedWrite(path, data),)

    @staticmethod
    def _entry(
        plan: ArtifactPlan, baseline: str | None, customized: bool
    ) -> Artifact | None:
        if baseline is None:
            return None
        return Artifact(
            path=plan.path,
            baseline_fingerprint=baseline,
            is_customized=customized,
            last_state=plan.state,
        )

    # ------------------------------------------------------------------
    # Release handling
    # ------------------------------------------------------------------

    def _fetch_release(self, version: str | None) -> ReleaseManifest:
        if self.source is None:
            raise ValidationError("No release source configured")
        if version is None:
            result = self.source.get_latest()
        else:
            result = self.source.get_version(version)
        match result:
            case ReleaseFound(release=release):
                pass
            case _:
                raise_for_failure(result)
                raise FetchError(
                    "malformed",
                    version or "latest",
                    f"unexpected {result.kind} result for a release lookup",
                )
        logger.info(
            "Incoming release %s (%d files)", release.version, len(release.files)
        )
        return release

    def _download(self, release: ReleaseManifest, dest: Path) -> Path:
        dest.mkdir(parents=True, exist_ok=True)
        result = self.source.download(release, dest)
        match result:
            case Downloaded(root=root, paths=paths):
                pass
            case _:
                raise_for_failure(result)
                raise FetchError(
                    "malformed",
                    release.version,
                    f"unexpected {result.kind} result for a download",
                )
        missing = set(release.paths) - set(paths)
        if missing:
            raise ValidationError(
                f"Release {release.version} download is missing "
                f"{len(missing)} file(s): {', '.join(sorted(missing)[:5])}"
            )
        return root

    def _fetch_base(self, validated: ValidatedRun) -> Path | None:
        """Download the last synced release to merge against.

        Failure is not fatal: conflicts are then resolved without a base.
        """
        base_version = validated.manifest.upstream_version
        if base_version is None:
            return None
        if base_version == validated.release.version:
            return validated.incoming_root
        try:
            release = self._fetch_release(base_version)
            return self._download(release, validated.staging / "base")
        except UpdateError as exc:
            logger.warning(
                "Base release %s unavailable (%s); merging without a base",
                base_version,
                exc,
            )
            return None

    def _check_release_paths(self, release: ReleaseManifest) -> None:
        prefix = self.context.internal_prefix
        if prefix is None:
            return
        for path in release.paths:
            if path == prefix or path.startswith(prefix + "/"):
                raise ValidationError(
                    f"Release {release.version} contains reserved path {path}"
                )

    # ------------------------------------------------------------------
    # Recovery and rollback
    # ------------------------------------------------------------------

    def _check_project_root(self) -> None:
        if not self.root.is_dir():
            raise ValidationError(f"Project directory not found: {self.root}")

    def _journal_backup(self, journal: dict) -> BackupHandle:
        handle = self.backups.get(journal["backupId"])
        if handle is None:
            raise ValidationError(
                f"Interrupted update references missing backup {journal['backupId']}"
            )
        return handle

    def _recover_interrupted(self, check_only: bool) -> str | None:
        journal = self.store.pending_transaction()
        if journal is None:
            return None
        if check_only:
            raise ValidationError(
                f"A previous update was interrupted (backup {journal['backupId']}); "
                "run apply to recover or rollback to restore it"
            )
        handle = self._journal_backup(journal)
        logger.warning(
            "Previous update was interrupted; restoring backup %s",
            handle.backup_id,
        )
        self.backups.restore(handle, self.root, self.store.manifest_path)
        self.store.clear_transaction()
        return handle.backup_id

    def _roll_back(self, progress: _Progress) -> bool:
        handle = progress.handle
        if handle is None:
            return False
        self._enter(progress, UpdateStage.ROLLING_BACK)
        try:
            progress.handle = self.backups.restore(
                handle, self.root, self.store.manifest_path
            )
            self.store.clear_transaction()
        except (UpdateError, OSError) as exc:
            logger.error(
                "Rollback from backup %s failed: %s; the journal is kept so the "
                "next run retries the restore",
                handle.backup_id,
                exc,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Reporting helpers
    # ------------------------------------------------------------------

    def _enter(self, progress: _Progress, stage: UpdateStage) -> None:
        if stage not in (UpdateStage.FAILED, UpdateStage.ROLLING_BACK):
            progress.stage = stage
        logger.debug("Stage: %s", stage.value)
        self.context.enter(stage)

    def _discard_staging(self, progress: _Progress) -> None:
        if progress.staging is not None:
            shutil.rmtree(progress.staging, ignore_errors=True)
            progress.staging = None

    def _report(
        self, mode: str, started_at: str, progress: _Progress
    ) -> UpdateReport:
        handle = progress.handle
        return UpdateReport(
            mode=mode,
            project_root=str(self.root),
            from_version=progress.from_version,
            to_version=progress.to_version,
            results=progress.results,
            stage=UpdateStage.DONE,
            backup_id=handle.backup_id if handle else None,
            backup_path=str(handle.path) if handle else None,
            recovered_backup=progress.recovered_backup,
            started_at=started_at,
            completed_at=_now(),
        )

    def _failure_report(
        self,
        mode: str,
        started_at: str,
        progress: _Progress,
        exc: Exception,
        rolled_back: bool = False,
    ) -> UpdateReport:
        handle = progress.handle
        affected = progress.affected
        if isinstance(exc, UpdateError) and getattr(exc, "path", None):
            if progress.stage in (UpdateStage.VALIDATING, UpdateStage.CLASSIFYING):
                affected = [exc.path]

        if isinstance(exc, UpdateError):
            kind, exit_code = exc.kind, exc.exit_code
        else:
            kind, exit_code = "unexpected", 1
            logger.exception("Unexpected error during %s", progress.stage.value)

        logger.error(
            "Update failed during %s: %s (rolled back: %s)",
            progress.stage.value,
            exc,
            "yes" if rolled_back else "no",
        )
        if progress.staging is not None:
            logger.info("Staged release files kept at %s", progress.staging)

        return UpdateReport(
            mode=mode,
            project_root=str(self.root),
            from_version=progress.from_version,
            to_version=progress.to_version,
            results=progress.results,
            stage=UpdateStage.FAILED,
            failure=FailureInfo(
                stage=progress.stage,
                kind=kind,
                message=str(exc),
                affected_paths=affected,
                rolled_back=rolled_back,
                backup_path=str(handle.path) if handle else None,
                exit_code=int(exit_code),
            ),
            backup_id=handle.backup_id if handle else None,
            backup_path=str(handle.path) if handle else None,
            recovered_backup=progress.recovered_backup,
            started_at=started_at,
            completed_at=_now(),
        )
