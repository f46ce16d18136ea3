"""Format-insensitive content fingerprints.

A fingerprint is the SHA-256 hex digest of a file's *normalised* text, so
that the same content saved by different editors or platforms compares
equal.  Normalisation steps (applied in order):

1. Strip a single leading BOM (``\\ufeff``).
2. Replace ``\\r\\n`` with ``\\n``.
3. Right-strip each line.

The result is encoded as UTF-8 before hashing.  Bytes that are not valid
UTF-8 are carried through with ``surrogateescape`` so binary assets still get
a stable fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from scaffold_sync.file_handler import read_bytes, resolve_artifact_path

logger = logging.getLogger(__name__)


def normalize(text: str) -> str:
    """Return *text* normalised for fingerprinting."""
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n"))


def fingerprint_text(text: str) -> str:
    """Fingerprint already-decoded text."""
    normalised = normalize(text)
    return hashlib.sha256(
        normalised.encode("utf-8", "surrogateescape")
    ).hexdigest()


def fingerprint_bytes(data: bytes) -> str:
    """Fingerprint raw file bytes (assumed UTF-8 text)."""
    return fingerprint_text(data.decode("utf-8", "surrogateescape"))


def fingerprints_equal(a: str | None, b: str | None) -> bool:
    """Compare two fingerprints case-insensitively.

    ``None`` stands for an absent file and only equals ``None``.
    """
    if a is None or b is None:
        return a is None and b is None
    return a.lower() == b.lower()


class Fingerprinter:
    """Compute fingerprints for files in a project tree.

    Stateless; instances exist so the update applier can have the
    fingerprinter injected (and replaced in tests).
    """

    def fingerprint(self, data: bytes) -> str:
        return fingerprint_bytes(data)

    def fingerprint_text(self, text: str) -> str:
        return fingerprint_text(text)

    def fingerprint_file(self, path: Path, rel_path: str | None = None) -> str:
        """Fingerprint a file on disk.

        Raises:
            ArtifactIOError: If the file is missing or unreadable.  An
                unreadable file is never treated as unchanged.
        """
        return fingerprint_bytes(read_bytes(path, rel_path))

    def fingerprint_tree(
        self, root: Path, paths: list[str]
    ) -> dict[str, str | None]:
        """Fingerprint every path under *root*.

        Returns:
            Mapping of path to fingerprint, ``None`` for absent files.

        Raises:
            ArtifactIOError: If a present file cannot be read.
        """
        result: dict[str, str | None] = {}
        for rel_path in paths:
            abs_path = resolve_artifact_path(root, rel_path)
            if not abs_path.exists():
                result[rel_path] = None
                continue
            result[rel_path] = self.fingerprint_file(abs_path, rel_path)
        logger.debug(
            "Fingerprinted %d paths under %s (%d absent)",
            len(result),
            root,
            sum(1 for v in result.values() if v is None),
        )
        return result
