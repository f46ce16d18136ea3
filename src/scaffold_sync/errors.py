"""Error taxonomy for scaffold-sync.

Every failure surfaced by the update engine derives from ``UpdateError``:

- ``ValidationError`` -- missing prerequisites or a corrupt manifest.  Fatal,
  raised before any write.
- ``FetchError`` -- the release source was unreachable, returned not-found,
  rate-limited the request, or sent a malformed response.  Fatal, never
  retried.
- ``ArtifactIOError`` -- a tracked file could not be read or written.
  ``SnapshotError`` and ``DiskSpaceError`` specialise it.
- ``UpdateCancelled`` -- the run was cancelled (harness timeout).

Conflicts are *not* errors: they are a classified outcome reported alongside
whatever else succeeded.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes for the command surface."""

    OK = 0
    UNEXPECTED = 1
    VALIDATION = 2
    FETCH = 3
    CONFLICT = 4
    IO = 5


class UpdateError(Exception):
    """Base class for all update engine failures."""

    kind = "error"
    exit_code = ExitCode.UNEXPECTED


class ValidationError(UpdateError):
    """Missing prerequisite, invalid input, or corrupt manifest."""

    kind = "validation"
    exit_code = ExitCode.VALIDATION


class FetchError(UpdateError):
    """A release source request failed.

    Args:
        kind: One of ``unreachable``, ``not_found``, ``rate_limited``,
            ``malformed``.
        identifier: The version id, URL, or file path that failed.
        detail: Human-readable description.
        retry_after: Seconds suggested by the source (rate limits only).
    """

    exit_code = ExitCode.FETCH

    def __init__(
        self,
        kind: str,
        identifier: str,
        detail: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.kind = kind
        self.identifier = identifier
        self.detail = detail
        self.retry_after = retry_after
        message = f"{kind.replace('_', ' ')}: {identifier}"
        if detail:
            message += f" ({detail})"
        if retry_after is not None:
            message += f"; retry after {retry_after:g}s"
        super().__init__(message)


class ArtifactIOError(UpdateError):
    """A tracked file could not be read, written, or removed."""

    kind = "io"
    exit_code = ExitCode.IO

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class SnapshotError(ArtifactIOError):
    """The pre-mutation backup snapshot could not be completed."""

    kind = "snapshot"


class DiskSpaceError(ArtifactIOError):
    """Free disk space is below the configured floor."""

    kind = "disk_space"


class UpdateCancelled(UpdateError):
    """The run was cancelled before it completed."""

    kind = "cancelled"
