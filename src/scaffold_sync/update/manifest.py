"""Artifact manifest persistence layer.

Manages the JSON manifest that records, for every template-owned path, the
fingerprint agreed at the last successful sync.  The manifest lives in the
project's state directory (``.scaffold_sync/manifest.json`` by default) next
to the transaction journal.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Bootstrap** -- projects without a manifest get one built from the files
  currently on disk, every entry marked customized so nothing is ever
  assumed untouched.
* **Transaction journal** -- ``transaction.json`` exists only between the
  backup snapshot and the manifest commit of an apply.  Finding it on load
  means the previous apply was interrupted and its snapshot must be
  restored before anything else happens.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pydantic

from scaffold_sync import __version__
from scaffold_sync.errors import ArtifactIOError, ValidationError
from scaffold_sync.file_handler import remove_file, resolve_artifact_path
from scaffold_sync.update.fingerprint import Fingerprinter
from scaffold_sync.update.models import (
    MANIFEST_SCHEMA_VERSION,
    Artifact,
    Manifest,
)
from scaffold_sync.validators import validate_artifact_path

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
JOURNAL_FILENAME = "transaction.json"


class ManifestStore:
    """Load, save, and bootstrap the artifact manifest.

    Args:
        state_dir: Directory holding the manifest and the transaction
            journal (typically ``<project>/.scaffold_sync``).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def manifest_path(self) -> Path:
        return self._state_dir / MANIFEST_FILENAME

    @property
    def journal_path(self) -> Path:
        return self._state_dir / JOURNAL_FILENAME

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> Manifest | None:
        """Load the manifest from disk.

        Returns:
            The manifest, or ``None`` if the project has none yet.

        Raises:
            ValidationError: If the file is corrupt, has an unsupported
                schema version, or lists an invalid path.
            ArtifactIOError: If the file exists but cannot be read.
        """
        path = self.manifest_path
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                f"Corrupt manifest {path}: {exc}"
            ) from exc
        except OSError as exc:
            raise ArtifactIOError(
                f"Cannot read manifest {path}: {exc.strerror or exc}",
                str(path),
            ) from exc

        if not isinstance(data, dict):
            raise ValidationError(
                f"Corrupt manifest {path}: root must be an object"
            )
        schema = data.get("schemaVersion")
        if schema != MANIFEST_SCHEMA_VERSION:
            raise ValidationError(
                f"Unsupported manifest schema version {schema!r} in {path}"
            )
        try:
            manifest = Manifest.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(
                f"Corrupt manifest {path}: {exc.errors()[0]['msg']}"
            ) from exc

        for artifact in manifest.artifacts:
            valid, reason = validate_artifact_path(artifact.path)
            if not valid:
                raise ValidationError(f"Corrupt manifest {path}: {reason}")

        logger.debug(
            "Loaded manifest with %d artifacts (upstream %s)",
            len(manifest.artifacts),
            manifest.upstream_version,
        )
        return manifest

    def save(self, manifest: Manifest) -> None:
        """Persist the manifest atomically.

        Writes to a temporary file in the state directory then atomically
        replaces the target.  Creates the state directory if needed.

        Raises:
            ArtifactIOError: If the manifest cannot be written.
        """
        manifest = manifest.model_copy(update={"tool_version": __version__})
        payload = manifest.model_dump(mode="json", by_alias=True)
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            self._write_json_atomic(self.manifest_path, payload)
        except OSError as exc:
            raise ArtifactIOError(
                f"Cannot write manifest {self.manifest_path}: {exc.strerror or exc}",
                str(self.manifest_path),
            ) from exc
        logger.info(
            "Manifest committed: %d artifacts at upstream %s",
            len(manifest.artifacts),
            manifest.upstream_version,
        )

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap(
        self,
        project_root: Path,
        template_paths: list[str],
        fingerprinter: Fingerprinter,
        upstream_version: str | None = None,
    ) -> Manifest:
        """Build a manifest for a project that has never been tracked.

        Every template path present on disk is registered with its current
        fingerprint as baseline and ``is_customized=True``: a legacy file is
        never assumed to be untouched.  Nothing is written; call ``save()``
        to persist.

        Args:
            project_root: Project directory.
            template_paths: Paths the template owns (e.g. the file set of a
                release).
            fingerprinter: Used to fingerprint the current files.
            upstream_version: Release the project was generated from, if
                known.
        """
        artifacts: list[Artifact] = []
        for rel_path in sorted(set(template_paths)):
            abs_path = resolve_artifact_path(project_root, rel_path)
            if not abs_path.is_file():
                continue
            artifacts.append(
                Artifact(
                    path=rel_path,
                    baseline_fingerprint=fingerprinter.fingerprint_file(
                        abs_path, rel_path
                    ),
                    is_customized=True,
                    last_state=None,
                )
            )
        logger.info(
            "Bootstrapped manifest: %d of %d template paths present",
            len(artifacts),
            len(set(template_paths)),
        )
        return Manifest(
            upstream_version=upstream_version,
            tool_version=__version__,
            artifacts=artifacts,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @staticmethod
    def baseline(manifest: Manifest, path: str) -> str | None:
        """Return the baseline fingerprint for *path*, or ``None``.

        Bootstrapped entries that were never synced have no trustworthy
        baseline: their recorded fingerprint is simply what was on disk, so
        ``None`` is returned to keep them out of the upstream-only path.
        """
        artifact = manifest.get(path)
        if artifact is None:
            return None
        if artifact.last_state is None and artifact.is_customized:
            return None
        return artifact.baseline_fingerprint

    # ------------------------------------------------------------------
    # Transaction journal
    # ------------------------------------------------------------------

    def begin_transaction(self, backup_id: str, paths: list[str]) -> None:
        """Record that an apply is about to mutate *paths*."""
        payload = {
            "backupId": backup_id,
            "startedAt": datetime.now(timezone.utc).isoformat(),
            "paths": sorted(paths),
        }
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            self._write_json_atomic(self.journal_path, payload)
        except OSError as exc:
            raise ArtifactIOError(
                f"Cannot write transaction journal: {exc.strerror or exc}",
                str(self.journal_path),
            ) from exc

    def pending_transaction(self) -> dict | None:
        """Return the journal of an interrupted apply, or ``None``.

        Raises:
            ValidationError: If the journal exists but is unreadable.
        """
        if not self.journal_path.exists():
            return None
        try:
            with open(self.journal_path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError(
                f"Corrupt transaction journal {self.journal_path}: {exc}"
            ) from exc
        if not isinstance(data, dict) or "backupId" not in data:
            raise ValidationError(
                f"Corrupt transaction journal {self.journal_path}"
            )
        return data

    def clear_transaction(self) -> None:
        remove_file(self.journal_path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_json_atomic(self, target: Path, payload: dict) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
                fh.write("\n")
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
