"""Template update engine.

Public API for bringing a project generated from a template up to date
with a newer template release without destroying local customizations.

Architecture
------------
Every template-owned path is tracked in a manifest together with the
fingerprint it had at the last successful sync (its *baseline*).  An update
compares three fingerprints per path -- baseline, current, incoming -- and
only ever overwrites paths the user has not touched.  Paths changed on both
sides are three-way merged against the previous release; overlaps become
inline markers (small files) or a diff document next to the file (large
files).  Every apply is wrapped in a backup snapshot and rolls back on
failure.

Modules:

- ``applier``     -- ``UpdateApplier``: runs one update as a transaction.
- ``manifest``    -- ``ManifestStore``: load/save/bootstrap, journal.
- ``fingerprint`` -- ``Fingerprinter``: normalized content digests.
- ``classifier``  -- ``classify``: six-state classification.
- ``merger``      -- ``ThreeWayMerge`` via the ``merge3`` library.
- ``resolver``    -- ``ConflictResolver``: markers or diff artifact.
- ``backup``      -- ``BackupManager``: snapshot, restore, prune.
- ``context``     -- ``SyncContext``: per-invocation settings.
- ``models``      -- Data contracts.
- ``reporter``    -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from scaffold_sync.fetch import DirectoryReleaseSource
    from scaffold_sync.update import (
        SyncContext, UpdateApplier, format_check_preview, format_update_report,
    )

    ctx = SyncContext.for_project(Path("my-project"))
    applier = UpdateApplier(DirectoryReleaseSource(Path("releases")), ctx)

    preview = applier.run(check_only=True)
    print(format_check_preview(preview))

    report = applier.run()
    print(format_update_report(report))
"""

from .applier import UpdateApplier
from .backup import BackupManager
from .classifier import Classifier, classify
from .context import SyncContext
from .fingerprint import Fingerprinter
from .manifest import ManifestStore
from .models import (
    Artifact,
    ArtifactAction,
    ArtifactResult,
    ArtifactState,
    BackupHandle,
    FailureInfo,
    Manifest,
    UpdateReport,
    UpdateStage,
)
from .resolver import ConflictResolver
from .reporter import (
    format_check_preview,
    format_update_report,
    report_to_json,
)

__all__ = [
    "Artifact",
    "ArtifactAction",
    "ArtifactResult",
    "ArtifactState",
    "BackupHandle",
    "BackupManager",
    "Classifier",
    "ConflictResolver",
    "FailureInfo",
    "Fingerprinter",
    "Manifest",
    "ManifestStore",
    "SyncContext",
    "UpdateApplier",
    "UpdateReport",
    "UpdateStage",
    "classify",
    "format_check_preview",
    "format_update_report",
    "report_to_json",
]
