"""Data contracts for release sources.

Every release source operation returns one variant of ``FetchResult``:

- ``ReleaseFound`` -- release metadata (``get_latest`` / ``get_version``).
- ``Downloaded`` -- release files materialised on local disk.
- ``Unreachable`` / ``NotFound`` / ``RateLimited`` / ``Malformed`` -- the
  failures a caller must be able to tell apart.

Callers ``match`` on the variant; ``raise_for_failure()`` converts a failure
into ``FetchError`` for code paths that only continue on success.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, field_validator

from scaffold_sync.errors import FetchError
from scaffold_sync.validators import validate_artifact_path, validate_version_id


class ReleaseFile(BaseModel):
    """One file in a release.

    Attributes:
        path: POSIX path relative to the project root.
        url: Download URL, if the source provides one per file.
        sha256: Expected SHA-256 of the raw bytes, if published.
        size: Size in bytes, if published.
    """

    path: str
    url: str | None = None
    sha256: str | None = None
    size: int | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("path")
    @classmethod
    def _safe_path(cls, value: str) -> str:
        valid, reason = validate_artifact_path(value)
        if not valid:
            raise ValueError(reason)
        return value


class ReleaseManifest(BaseModel):
    """A release: its version identifier and file set."""

    version: str
    files: list[ReleaseFile] = []

    model_config = ConfigDict(frozen=True)

    @field_validator("version")
    @classmethod
    def _valid_version(cls, value: str) -> str:
        valid, reason = validate_version_id(value)
        if not valid:
            raise ValueError(reason)
        return value

    @field_validator("files")
    @classmethod
    def _unique_paths(cls, value: list[ReleaseFile]) -> list[ReleaseFile]:
        paths = [f.path for f in value]
        if len(paths) != len(set(paths)):
            raise ValueError("release lists a path more than once")
        return value

    @property
    def paths(self) -> list[str]:
        return sorted(f.path for f in self.files)


# ---------------------------------------------------------------------------
# Result variants
# ---------------------------------------------------------------------------


class ReleaseFound(BaseModel):
    kind: Literal["found"] = "found"
    release: ReleaseManifest

    model_config = ConfigDict(frozen=True)


class Downloaded(BaseModel):
    """Release files written under ``root`` at their relative paths."""

    kind: Literal["downloaded"] = "downloaded"
    version: str
    root: Path
    paths: list[str]

    model_config = ConfigDict(frozen=True)


class Unreachable(BaseModel):
    kind: Literal["unreachable"] = "unreachable"
    identifier: str
    detail: str = ""

    model_config = ConfigDict(frozen=True)


class NotFound(BaseModel):
    kind: Literal["not_found"] = "not_found"
    identifier: str
    detail: str = ""

    model_config = ConfigDict(frozen=True)


class RateLimited(BaseModel):
    kind: Literal["rate_limited"] = "rate_limited"
    identifier: str
    retry_after: float | None = None
    detail: str = ""

    model_config = ConfigDict(frozen=True)


class Malformed(BaseModel):
    kind: Literal["malformed"] = "malformed"
    identifier: str
    detail: str = ""

    model_config = ConfigDict(frozen=True)


FetchFailure = Union[Unreachable, NotFound, RateLimited, Malformed]
FetchResult = Union[ReleaseFound, Downloaded, FetchFailure]


def raise_for_failure(result: FetchResult) -> None:
    """Raise ``FetchError`` if *result* is a failure variant."""
    match result:
        case ReleaseFound() | Downloaded():
            return
        case RateLimited(identifier=identifier, retry_after=retry_after, detail=detail):
            raise FetchError("rate_limited", identifier, detail, retry_after)
        case Unreachable() | NotFound() | Malformed():
            raise FetchError(result.kind, result.identifier, result.detail)
        case _:
            raise TypeError(f"Unexpected fetch result: {result!r}")
