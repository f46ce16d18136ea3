"""Serialised, rate-limited access to a shared release source."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from scaffold_sync.fetch.base import ReleaseSource
from scaffold_sync.fetch.models import FetchResult, ReleaseManifest

logger = logging.getLogger(__name__)


class ThrottledSource:
    """Wrap a release source so calls never overlap or burst.

    A lock admits one request at a time, and each request waits until at
    least ``min_interval`` seconds have passed since the previous one ended.
    Safe to share between worker threads.

    Args:
        source: The wrapped release source.
        min_interval: Minimum delay between requests, in seconds.
        clock: Monotonic clock (injectable for tests).
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        source: ReleaseSource,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_request: float | None = None

    def __repr__(self) -> str:
        return f"ThrottledSource({self.source!r}, {self.min_interval})"

    def get_latest(self) -> FetchResult:
        return self._call(self.source.get_latest)

    def get_version(self, version_id: str) -> FetchResult:
        return self._call(self.source.get_version, version_id)

    def download(self, release: ReleaseManifest, dest: Path) -> FetchResult:
        return self._call(self.source.download, release, dest)

    def _call(self, func: Callable[..., FetchResult], *args) -> FetchResult:
        with self._lock:
            if self._last_request is not None:
                wait = self.min_interval - (self._clock() - self._last_request)
                if wait > 0:
                    logger.debug("Throttling release request for %.2fs", wait)
                    self._sleep(wait)
            try:
                return func(*args)
            finally:
                self._last_request = self._clock()
