"""Release sources: where upstream template releases come from.

Modules:

- ``base``     -- ``ReleaseSource`` protocol.
- ``models``   -- ``ReleaseManifest`` and the ``FetchResult`` variants.
- ``client``   -- ``HttpReleaseSource`` (requests-based, fail-fast).
- ``local``    -- ``DirectoryReleaseSource`` (releases as directories).
- ``throttle`` -- ``ThrottledSource`` (lock + inter-request delay).
"""

from .base import ReleaseSource
from .client import HttpReleaseSource
from .local import DirectoryReleaseSource
from .models import (
    Downloaded,
    FetchResult,
    Malformed,
    NotFound,
    RateLimited,
    ReleaseFile,
    ReleaseFound,
    ReleaseManifest,
    Unreachable,
    raise_for_failure,
)
from .throttle import ThrottledSource

__all__ = [
    "DirectoryReleaseSource",
    "Downloaded",
    "FetchResult",
    "HttpReleaseSource",
    "Malformed",
    "NotFound",
    "RateLimited",
    "ReleaseFile",
    "ReleaseFound",
    "ReleaseManifest",
    "ReleaseSource",
    "ThrottledSource",
    "Unreachable",
    "raise_for_failure",
]
