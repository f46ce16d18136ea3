"""Ordering of upstream release version identifiers."""

import re

_NUMERIC = re.compile(r"\d+")


def sort_key(version_id: str) -> tuple:
    """Return a sort key that orders version identifiers naturally.

    A leading ``v`` is ignored and numeric runs compare as numbers, so
    ``v1.10.0`` sorts after ``v1.9.2``.  A pre-release suffix introduced by
    ``-`` sorts before the corresponding release (``1.2.0-rc1`` < ``1.2.0``).
    """
    text = version_id.strip()
    if text[:1] in ("v", "V") and text[1:2].isdigit():
        text = text[1:]

    release, sep, pre = text.partition("-")
    return (
        _split(release),
        0 if sep else 1,
        _split(pre),
    )


def _split(text: str) -> tuple:
    parts: list[tuple[int, int | str]] = []
    pos = 0
    for match in _NUMERIC.finditer(text):
        if match.start() > pos:
            parts.append((0, text[pos : match.start()]))
        parts.append((1, int(match.group())))
        pos = match.end()
    if pos < len(text):
        parts.append((0, text[pos:]))
    return tuple(parts)


def is_newer(candidate: str, current: str | None) -> bool:
    """Return ``True`` if *candidate* sorts after *current*.

    Any version is newer than an unknown (``None``) current version.
    """
    if current is None:
        return True
    return sort_key(candidate) > sort_key(current)


def latest(version_ids: list[str]) -> str | None:
    """Return the highest version identifier, or ``None`` for an empty list."""
    if not version_ids:
        return None
    return max(version_ids, key=sort_key)
