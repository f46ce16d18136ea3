"""Protocol that all release sources satisfy."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from scaffold_sync.fetch.models import FetchResult, ReleaseManifest


class ReleaseSource(Protocol):
    """Where upstream template releases come from.

    Implementations fail fast: they never retry, and they report expected
    failures as ``FetchResult`` failure variants instead of raising.
    """

    def get_latest(self) -> FetchResult:
        """Return ``ReleaseFound`` for the newest release."""
        ...  # pragma: no cover

    def get_version(self, version_id: str) -> FetchResult:
        """Return ``ReleaseFound`` for a specific release."""
        ...  # pragma: no cover

    def download(self, release: ReleaseManifest, dest: Path) -> FetchResult:
        """Write the release's files under *dest*; return ``Downloaded``."""
        ...  # pragma: no cover
