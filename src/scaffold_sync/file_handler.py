"""File handler module: path resolution, byte and text I/O, atomic writes.

Provides the file I/O infrastructure used by the update engine.  Every
failure is converted into ``ArtifactIOError`` carrying the offending path so
callers can report exactly which artifact could not be touched.
"""

import os
import tempfile
from pathlib import Path

from charset_normalizer import from_bytes

from scaffold_sync.errors import ArtifactIOError, ValidationError
from scaffold_sync.validators import validate_artifact_path

# =============================================================================
# Path Resolution
# =============================================================================


def resolve_artifact_path(root: Path, rel_path: str) -> Path:
    """Resolve a relative artifact path under *root*.

    Args:
        root: Project root directory.
        rel_path: POSIX path relative to *root*.

    Returns:
        Absolute path inside *root*.

    Raises:
        ValidationError: If the path is invalid or escapes *root*.
    """
    valid, reason = validate_artifact_path(rel_path)
    if not valid:
        raise ValidationError(reason)
    root_resolved = root.resolve()
    resolved = (root_resolved / rel_path).resolve()
    if not resolved.is_relative_to(root_resolved):
        raise ValidationError(
            f"Artifact path escapes project root: {rel_path}"
        )
    return root_resolved / rel_path


# =============================================================================
# File Read/Write
# =============================================================================


def read_bytes(path: Path, rel_path: str | None = None) -> bytes:
    """Read a file's raw bytes.

    Raises:
        ArtifactIOError: If the file is missing, locked, a directory, or
            permission is denied.
    """
    label = rel_path or str(path)
    try:
        return path.read_bytes()
    except FileNotFoundError:
        raise ArtifactIOError(f"File not found: {label}", label) from None
    except PermissionError:
        raise ArtifactIOError(
            f"Permission denied reading {label}", label
        ) from None
    except OSError as exc:
        raise ArtifactIOError(
            f"Cannot read {label}: {exc.strerror or exc}", label
        ) from exc


def decode_text(raw: bytes) -> str | None:
    """Decode file bytes as text, or return ``None`` for binary content.

    UTF-8 is tried first (a leading BOM is kept so that the text round-trips
    byte for byte).  For other encodings charset-normalizer picks the best
    match.  Content with NUL bytes, or that no encoding explains, is binary.
    """
    if not raw:
        return ""
    if b"\x00" in raw:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        return None
    return str(result)


def read_text(path: Path, rel_path: str | None = None) -> str | None:
    """Read a file as text; ``None`` means the file is binary."""
    return decode_text(read_bytes(path, rel_path))


def write_file_atomic(
    path: Path, data: bytes, rel_path: str | None = None
) -> int:
    """Write bytes to *path* atomically, creating parent directories.

    The content is written to a temporary file in the destination directory
    and moved into place with ``os.replace()``, so readers never observe a
    partially written file.  An existing file's permission bits are kept.

    Returns:
        Number of bytes written.

    Raises:
        ArtifactIOError: If the file cannot be written.
    """
    label = rel_path or str(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        mode = path.stat().st_mode if path.exists() else None
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as exc:
        raise ArtifactIOError(
            f"Cannot write {label}: {exc.strerror or exc}", label
        ) from exc

    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException as exc:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if isinstance(exc, OSError):
            raise ArtifactIOError(
                f"Cannot write {label}: {exc.strerror or exc}", label
            ) from exc
        raise
    return len(data)


def write_text(path: Path, content: str, rel_path: str | None = None) -> int:
    """Write UTF-8 text atomically (no byte-order mark is added)."""
    return write_file_atomic(path, content.encode("utf-8"), rel_path)


def remove_file(path: Path, rel_path: str | None = None) -> bool:
    """Remove a file.

    Returns:
        ``True`` if a file was removed, ``False`` if it did not exist.
    """
    label = rel_path or str(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise ArtifactIOError(
            f"Cannot remove {label}: {exc.strerror or exc}", label
        ) from exc
    return True
