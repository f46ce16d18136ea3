"""
Input validation functions for scaffold-sync.

Provides validation for artifact paths and release version identifiers
coming from the manifest, the release source, or the command line.
"""

import re
from pathlib import PurePosixPath

_VERSION_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Artifact path")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_artifact_path(path: str) -> tuple[bool, str]:
    """
    Validate a tracked artifact path.

    Args:
        path: POSIX-style path relative to the project root

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Must be relative (no leading '/' and no drive letter)
        - Cannot contain '..' segments (path traversal protection)
        - Cannot contain backslashes or empty segments
    """
    if not path or not path.strip():
        return (
            False,
            format_validation_error("Artifact path", "cannot be empty"),
        )

    if "\\" in path:
        return (
            False,
            format_validation_error(
                "Artifact path", f"must use '/' separators: {path}"
            ),
        )

    if path.startswith("/") or re.match(r"^[A-Za-z]:", path):
        return (
            False,
            format_validation_error(
                "Artifact path", f"must be relative: {path}"
            ),
        )

    parts = path.split("/")
    if any(part == "" for part in parts):
        return (
            False,
            format_validation_error(
                "Artifact path", f"cannot have empty segments: {path}"
            ),
        )

    if any(part == ".." for part in PurePosixPath(path).parts):
        return (
            False,
            format_validation_error(
                "Artifact path", f"cannot contain '..': {path}"
            ),
        )

    return (True, "")


def validate_version_id(version_id: str) -> tuple[bool, str]:
    """
    Validate a release version identifier.

    Args:
        version_id: Identifier such as ``v1.4.0`` or ``2024.06-rc1``

    Returns:
        Tuple of (is_valid, error_message).
    """
    if not version_id or not version_id.strip():
        return (
            False,
            format_validation_error("Version", "cannot be empty"),
        )

    if not _VERSION_PATTERN.match(version_id):
        return (
            False,
            format_validation_error(
                "Version", f"contains invalid characters: {version_id!r}"
            ),
        )

    return (True, "")
