"""Backup snapshots and rollback.

Before an apply writes anything, ``BackupManager.snapshot()`` copies every
tracked file (plus the manifest) into a timestamped directory::

    <backup_root>/<backup_id>/
        snapshot.json        # BackupHandle metadata, written last
        manifest.json        # copy of the manifest, if one existed
        files/<rel_path>     # verbatim copies

Paths that do not exist yet (new upstream files, diff artifacts) are recorded
as *absent* so ``restore()`` can delete them again, together with any of
their parent directories that did not exist either.  A snapshot without
``snapshot.json`` is incomplete and is never listed.

Lifecycle: ``taken`` -> ``committed`` (kept per retention policy) or
``rolled_back`` (restored, then kept for manual recovery).  ``prune()`` never
deletes a snapshot without a positive answer from its ``confirm`` callback.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Callable

import pydantic

from scaffold_sync.errors import ArtifactIOError, SnapshotError
from scaffold_sync.file_handler import (
    read_bytes,
    remove_file,
    resolve_artifact_path,
    write_file_atomic,
)
from scaffold_sync.update.models import BackupHandle, BackupState

logger = logging.getLogger(__name__)

METADATA_FILENAME = "snapshot.json"
FILES_DIRNAME = "files"
MANIFEST_COPY = "manifest.json"

ConfirmPrune = Callable[[list[BackupHandle]], bool]


def deny_prune(candidates: list[BackupHandle]) -> bool:
    """Default prune confirmation: keep everything."""
    return False


def _missing_parents(project_root: Path, rel_path: str) -> list[str]:
    """Parent directories of *rel_path* that do not exist under the root."""
    missing = []
    parent = PurePosixPath(rel_path).parent
    while parent != PurePosixPath(".") and not (project_root / parent).exists():
        missing.append(parent.as_posix())
        parent = parent.parent
    return missing


class BackupManager:
    """Create, restore, list, and prune backup snapshots.

    Args:
        backup_root: Directory holding one subdirectory per snapshot.
    """

    def __init__(self, backup_root: Path) -> None:
        self.backup_root = backup_root

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(
        self,
        project_root: Path,
        paths: list[str],
        manifest_path: Path | None = None,
    ) -> BackupHandle:
        """Copy every existing path in *paths* into a new snapshot.

        Args:
            project_root: Project directory the paths are relative to.
            paths: Tracked paths plus every path the apply may create.
            manifest_path: Manifest file to include, if any.

        Returns:
            Handle for the completed snapshot.

        Raises:
            SnapshotError: If any copy fails.  The partial snapshot is
                removed and nothing in the project has been changed.
        """
        backup_id = self._new_backup_id()
        snapshot_dir = self.backup_root / backup_id
        files_dir = snapshot_dir / FILES_DIRNAME

        copied: list[str] = []
        absent: list[str] = []
        absent_dirs: set[str] = set()
        try:
            files_dir.mkdir(parents=True, exist_ok=False)
            for rel_path in sorted(set(paths)):
                source = resolve_artifact_path(project_root, rel_path)
                if not source.exists():
                    absent.append(rel_path)
                    absent_dirs.update(_missing_parents(project_root, rel_path))
                    continue
                target = files_dir / rel_path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                copied.append(rel_path)

            manifest_included = False
            if manifest_path is not None and manifest_path.exists():
                shutil.copy2(manifest_path, snapshot_dir / MANIFEST_COPY)
                manifest_included = True

            handle = BackupHandle(
                backup_id=backup_id,
                path=snapshot_dir,
                created_at=datetime.now(timezone.utc).isoformat(),
                files=copied,
                absent=absent,
                absent_dirs=sorted(absent_dirs),
                manifest_included=manifest_included,
            )
            self._write_metadata(handle)
        except (OSError, ArtifactIOError) as exc:
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            raise SnapshotError(
                f"Backup snapshot failed after {len(copied)} files: {exc}",
                getattr(exc, "path", None) or getattr(exc, "filename", None),
            ) from exc

        logger.info(
            "Backup %s taken: %d files, %d absent",
            backup_id,
            len(copied),
            len(absent),
        )
        return handle

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(
        self,
        handle: BackupHandle,
        project_root: Path,
        manifest_path: Path | None = None,
    ) -> BackupHandle:
        """Restore the project to the snapshot's contents.

        Every copied file is written back verbatim, every path recorded as
        absent is deleted (with any directory created for it that is now
        empty), and the manifest is restored (or removed if none
        existed when the snapshot was taken).  The snapshot itself is kept.

        Returns:
            The handle marked ``rolled_back``.

        Raises:
            ArtifactIOError: If a file cannot be restored.
        """
        files_dir = handle.path / FILES_DIRNAME
        for rel_path in handle.files:
            target = resolve_artifact_path(project_root, rel_path)
            source = files_dir / rel_path
            data = read_bytes(source, rel_path)
            if target.is_dir():
                shutil.rmtree(target)
            write_file_atomic(target, data, rel_path)
            shutil.copystat(source, target)

        for rel_path in handle.absent:
            target = resolve_artifact_path(project_root, rel_path)
            if target.is_file() or target.is_symlink():
                remove_file(target, rel_path)

        # Deepest first, so emptied parents can go too
        for rel_dir in sorted(
            handle.absent_dirs, key=lambda p: p.count("/"), reverse=True
        ):
            target = resolve_artifact_path(project_root, rel_dir)
            if target.is_dir() and not any(target.iterdir()):
                try:
                    target.rmdir()
                except OSError as exc:
                    raise ArtifactIOError(
                        f"Cannot remove directory {rel_dir}: {exc}", rel_dir
                    ) from exc

        if manifest_path is not None:
            manifest_copy = handle.path / MANIFEST_COPY
            if handle.manifest_included:
                write_file_atomic(
                    manifest_path, read_bytes(manifest_copy), str(manifest_path)
                )
            else:
                remove_file(manifest_path)

        logger.warning(
            "Restored backup %s: %d files written back, %d removed",
            handle.backup_id,
            len(handle.files),
            len(handle.absent),
        )
        return self.mark(handle, BackupState.ROLLED_BACK)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def mark(self, handle: BackupHandle, state: BackupState) -> BackupHandle:
        """Persist a new lifecycle state for *handle*."""
        updated = handle.model_copy(update={"state": state})
        try:
            self._write_metadata(updated)
        except OSError as exc:
            raise ArtifactIOError(
                f"Cannot update backup metadata {handle.backup_id}: {exc}",
                str(handle.path),
            ) from exc
        return updated

    def get(self, backup_id: str) -> BackupHandle | None:
        """Load one snapshot's handle, or ``None`` if missing/incomplete."""
        return self._load_metadata(self.backup_root / backup_id)

    def list_backups(self) -> list[BackupHandle]:
        """Return complete snapshots, newest first."""
        if not self.backup_root.is_dir():
            return []
        handles = []
        for child in self.backup_root.iterdir():
            if not child.is_dir():
                continue
            handle = self._load_metadata(child)
            if handle is not None:
                handles.append(handle)
        return sorted(handles, key=lambda h: h.backup_id, reverse=True)

    def latest(self) -> BackupHandle | None:
        backups = self.list_backups()
        return backups[0] if backups else None

    def prune(
        self, retention: int, confirm: ConfirmPrune = deny_prune
    ) -> list[BackupHandle]:
        """Offer the snapshots beyond the newest *retention* for deletion.

        Args:
            retention: Number of most recent snapshots to keep.
            confirm: Called with the deletion candidates (oldest first);
                nothing is deleted unless it returns ``True``.

        Returns:
            The snapshots that were deleted.
        """
        if retention < 1:
            raise ValueError("retention must be at least 1")
        backups = self.list_backups()
        surplus = list(reversed(backups[retention:]))
        if not surplus:
            return []
        if not confirm(surplus):
            logger.info(
                "Keeping %d backups beyond retention %d (not confirmed)",
                len(surplus),
                retention,
            )
            return []
        for handle in surplus:
            shutil.rmtree(handle.path)
            logger.info("Pruned backup %s", handle.backup_id)
        return surplus

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_backup_id(self) -> str:
        backup_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        # Two snapshots inside the same microsecond get a numeric suffix
        candidate, n = backup_id, 1
        while (self.backup_root / candidate).exists():
            candidate = f"{backup_id}-{n}"
            n += 1
        return candidate

    def _write_metadata(self, handle: BackupHandle) -> None:
        payload = handle.model_dump(mode="json")
        payload["path"] = handle.path.name
        (handle.path / METADATA_FILENAME).write_text(
            json.dumps(payload, indent=2) + "\n", encoding="utf-8"
        )

    def _load_metadata(self, snapshot_dir: Path) -> BackupHandle | None:
        meta = snapshot_dir / METADATA_FILENAME
        if not meta.is_file():
            return None
        try:
            data = json.loads(meta.read_text(encoding="utf-8"))
            data["path"] = snapshot_dir
            return BackupHandle.model_validate(data)
        except (OSError, ValueError, pydantic.ValidationError) as exc:
            logger.warning("Ignoring unreadable backup %s: %s", snapshot_dir, exc)
            return None
