"""Release source backed by a local directory of releases.

Each subdirectory of ``root`` is one release, named by its version
identifier::

    releases/
        v1.0.0/commands/build.md
        v1.1.0/commands/build.md
        v1.1.0/commands/deploy.md

The latest release is the highest version identifier.  Used for offline
updates, the regression harness, and tests.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from scaffold_sync.fetch.models import (
    Downloaded,
    FetchResult,
    Malformed,
    NotFound,
    ReleaseFile,
    ReleaseFound,
    ReleaseManifest,
    Unreachable,
)
from scaffold_sync.file_handler import resolve_artifact_path
from scaffold_sync.validators import validate_version_id
from scaffold_sync.version import latest

logger = logging.getLogger(__name__)


class DirectoryReleaseSource:
    """Serve releases from subdirectories of *root*."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def __repr__(self) -> str:
        return f"DirectoryReleaseSource({str(self.root)!r})"

    def versions(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return [
            child.name
            for child in self.root.iterdir()
            if child.is_dir() and validate_version_id(child.name)[0]
        ]

    def get_latest(self) -> FetchResult:
        if not self.root.is_dir():
            return Unreachable(
                identifier=str(self.root), detail="release directory missing"
            )
        version = latest(self.versions())
        if version is None:
            return NotFound(identifier="latest", detail=f"no releases in {self.root}")
        return self.get_version(version)

    def get_version(self, version_id: str) -> FetchResult:
        if not self.root.is_dir():
            return Unreachable(
                identifier=str(self.root), detail="release directory missing"
            )
        valid, reason = validate_version_id(version_id)
        if not valid:
            return Malformed(identifier=version_id, detail=reason)
        release_dir = self.root / version_id
        if not release_dir.is_dir():
            return NotFound(identifier=version_id)

        files = [
            ReleaseFile(
                path=path.relative_to(release_dir).as_posix(),
                size=path.stat().st_size,
            )
            for path in sorted(release_dir.rglob("*"))
            if path.is_file()
        ]
        return ReleaseFound(
            release=ReleaseManifest(version=version_id, files=files)
        )

    def download(self, release: ReleaseManifest, dest: Path) -> FetchResult:
        release_dir = self.root / release.version
        written: list[str] = []
        for release_file in release.files:
            source = release_dir / release_file.path
            if not source.is_file():
                return NotFound(identifier=f"{release.version}/{release_file.path}")
            target = resolve_artifact_path(dest, release_file.path)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            written.append(release_file.path)
        logger.debug(
            "Copied %d files for release %s", len(written), release.version
        )
        return Downloaded(version=release.version, root=dest, paths=sorted(written))
