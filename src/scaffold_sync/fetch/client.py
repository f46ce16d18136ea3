"""HTTP release source.

Talks to a release index served over HTTP(S)::

    GET {base_url}/releases/latest
    GET {base_url}/releases/{version}
        -> {"version": "v1.2.0",
            "files": [{"path": "commands/build.md",
                       "url": "https://...", "sha256": "..."}]}

    GET {file.url}  or  {base_url}/releases/{version}/files/{path}
        -> raw file bytes

Requests fail fast: there is no retry or backoff.  Transport errors map to
``Unreachable``, 404 to ``NotFound``, 429 (or 403 with an exhausted
``X-RateLimit-Remaining``) to ``RateLimited`` and anything that does not
decode to ``Malformed``.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from pathlib import Path
from urllib.parse import quote

import pydantic
import requests

from scaffold_sync.fetch.models import (
    Downloaded,
    FetchResult,
    Malformed,
    NotFound,
    RateLimited,
    ReleaseFound,
    ReleaseManifest,
    Unreachable,
)
from scaffold_sync.file_handler import resolve_artifact_path, write_file_atomic

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (10, 60)


class HttpReleaseSource:
    """Release source backed by an HTTP release index.

    Args:
        base_url: Root URL of the release index.
        token: Optional bearer token.
        insecure: Skip SSL verification (development only).
        timeout: ``(connect, read)`` timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        insecure: bool = False,
        timeout: tuple[float, float] = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.insecure = insecure
        self.timeout = timeout
        self._thread_local = threading.local()

    def __repr__(self) -> str:
        return f"HttpReleaseSource({self.base_url!r})"

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.insecure
        session.headers["Accept"] = "application/json"
        if self.token:
            session.headers["Authorization"] = f"Bearer {self.token}"
        return session

    # ------------------------------------------------------------------
    # Release source protocol
    # ------------------------------------------------------------------

    def get_latest(self) -> FetchResult:
        return self._get_release(f"{self.base_url}/releases/latest", "latest")

    def get_version(self, version_id: str) -> FetchResult:
        url = f"{self.base_url}/releases/{quote(version_id, safe='')}"
        return self._get_release(url, version_id)

    def download(self, release: ReleaseManifest, dest: Path) -> FetchResult:
        """Download every file of *release* under *dest*."""
        written: list[str] = []
        for release_file in release.files:
            url = release_file.url or (
                f"{self.base_url}/releases/{quote(release.version, safe='')}"
                f"/files/{quote(release_file.path)}"
            )
            response = self._request(url)
            if not isinstance(response, requests.Response):
                return response

            data = response.content
            if release_file.sha256 and (
                hashlib.sha256(data).hexdigest().lower()
                != release_file.sha256.lower()
            ):
                return Malformed(
                    identifier=release_file.path,
                    detail="sha256 mismatch",
                )
            target = resolve_artifact_path(dest, release_file.path)
            write_file_atomic(target, data, release_file.path)
            written.append(release_file.path)

        logger.info(
            "Downloaded %d files for release %s", len(written), release.version
        )
        return Downloaded(
            version=release.version, root=dest, paths=sorted(written)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get_release(self, url: str, identifier: str) -> FetchResult:
        response = self._request(url, identifier)
        if not isinstance(response, requests.Response):
            return response
        try:
            payload = response.json()
        except ValueError as exc:
            return Malformed(identifier=identifier, detail=f"invalid JSON: {exc}")
        try:
            release = ReleaseManifest.model_validate(payload)
        except pydantic.ValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(p) for p in first["loc"])
            return Malformed(
                identifier=identifier, detail=f"{loc}: {first['msg']}"
            )
        logger.debug(
            "Release %s lists %d files", release.version, len(release.files)
        )
        return ReleaseFound(release=release)

    def _request(
        self, url: str, identifier: str | None = None
    ) -> requests.Response | FetchResult:
        identifier = identifier or url
        logger.debug("GET %s", url)
        try:
            response = self._get_session().get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            return Unreachable(identifier=identifier, detail=str(exc))
        except requests.RequestException as exc:
            return Malformed(identifier=identifier, detail=str(exc))

        if response.status_code == 404:
            return NotFound(identifier=identifier, detail=f"HTTP 404 for {url}")
        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("X-RateLimit-Remaining") == "0"
        ):
            return RateLimited(
                identifier=identifier,
                retry_after=_retry_after(response),
                detail=f"HTTP {response.status_code}",
            )
        if response.status_code >= 500:
            return Unreachable(
                identifier=identifier, detail=f"HTTP {response.status_code}"
            )
        if response.status_code >= 400:
            return Malformed(
                identifier=identifier, detail=f"HTTP {response.status_code}"
            )
        return response


def _retry_after(response: requests.Response) -> float | None:
    """Extract a retry-after hint in seconds from rate limit headers."""
    header = response.headers.get("Retry-After")
    if header is not None:
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
    reset = response.headers.get("X-RateLimit-Reset")
    if reset is not None:
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            pass
    return None
