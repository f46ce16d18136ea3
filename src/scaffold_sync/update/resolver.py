"""Conflict resolution for artifacts changed on both sides.

``ConflictResolver.resolve()`` first attempts a line-level three-way merge.
When the changes do not overlap the merged text is returned as
``CleanMerge``.  When they do, the output form depends on the size of the
user's file:

- at most ``line_threshold`` lines (default 100): ``InlineConflict`` -- the
  artifact is rewritten with three-way markers around each overlapping
  range, everything else untouched;
- more than ``line_threshold`` lines: ``DiffArtifactConflict`` -- the
  artifact is left as-is and a markdown document listing the differing
  sections is produced instead.

Binary content, or a side that does not exist, yields ``Unmergeable``.  The
resolver never raises for bad input and never touches the filesystem: all
output is computed in memory and written by the update applier.
"""

from __future__ import annotations

import logging
import re

from scaffold_sync.update.merger import (
    CONFLICT,
    CURRENT,
    INCOMING,
    MergeRegion,
    ThreeWayMerge,
)
from scaffold_sync.update.models import (
    CleanMerge,
    DiffArtifactConflict,
    InlineConflict,
    ResolutionOutcome,
    Unmergeable,
)

logger = logging.getLogger(__name__)

DEFAULT_LINE_THRESHOLD = 100

START_MARKER = "<<<<<<< current"
BASE_MARKER = "||||||| base"
MID_MARKER = "======="
END_MARKER = ">>>>>>> incoming"

DIFF_ARTIFACT_SUFFIX = ".upstream-diff.md"
INCOMING_SUFFIX = ".incoming"

_CONTEXT_LINES = 3
_BACKTICK_RUN = re.compile(r"`{3,}")

_REGION_LABELS = {
    CONFLICT: "Conflicting edit (changed in both versions)",
    INCOMING: "Upstream change not present in your file",
    CURRENT: "Local change (upstream unchanged)",
}


def diff_artifact_path(path: str) -> str:
    """Return the sibling path of the diff document for *path*."""
    return path + DIFF_ARTIFACT_SUFFIX


def incoming_copy_path(path: str) -> str:
    """Return the sibling path of the saved incoming copy for *path*."""
    return path + INCOMING_SUFFIX


def is_binary_text(text: str) -> bool:
    return "\x00" in text


def count_lines(text: str) -> int:
    """Count lines the way an editor does (a final newline adds none)."""
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


class ConflictResolver:
    """Resolve conflicting artifacts.

    Args:
        line_threshold: Files with more lines than this get a diff artifact
            instead of inline markers.
    """

    def __init__(self, line_threshold: int = DEFAULT_LINE_THRESHOLD) -> None:
        if line_threshold < 1:
            raise ValueError("line_threshold must be at least 1")
        self.line_threshold = line_threshold

    def resolve(
        self,
        path: str,
        current_text: str | None,
        base_text: str | None,
        incoming_text: str | None,
        *,
        base_version: str | None = None,
        incoming_version: str | None = None,
    ) -> ResolutionOutcome:
        """Resolve one conflicting artifact.

        Args:
            path: Artifact path (for labels and logging).
            current_text: The user's copy, ``None`` if absent or binary.
            base_text: Copy from the last synced release, ``None`` if it
                cannot be retrieved (merged against an empty base).
            incoming_text: The upstream copy, ``None`` if absent or binary.
            base_version: Release id of the base, for labels.
            incoming_version: Release id of the incoming copy, for labels.

        Returns:
            One of ``CleanMerge``, ``InlineConflict``,
            ``DiffArtifactConflict``, ``Unmergeable``.
        """
        if incoming_text is None:
            return Unmergeable(reason="removed upstream; local edits kept")
        if current_text is None:
            return Unmergeable(
                reason="missing or binary locally; incoming copy saved"
            )
        if is_binary_text(current_text) or is_binary_text(incoming_text):
            return Unmergeable(reason="binary content cannot be merged")
        if base_text is not None and is_binary_text(base_text):
            base_text = None

        if base_text is None:
            logger.warning(
                "No base content for %s -- whole file treated as conflicting",
                path,
            )

        merge = ThreeWayMerge(base_text or "", current_text, incoming_text)

        if not merge.has_conflicts:
            logger.info("Clean three-way merge for %s", path)
            return CleanMerge(text=merge.merged_text())

        line_count = count_lines(current_text)
        if line_count <= self.line_threshold:
            text = render_inline_markers(
                merge, base_version=base_version, incoming_version=incoming_version
            )
            logger.info(
                "Conflict markers for %s (%d regions, %d lines)",
                path,
                len(merge.conflicts),
                line_count,
            )
            return InlineConflict(text=text, conflict_count=len(merge.conflicts))

        document, sections, unchanged = render_diff_artifact(
            path,
            merge,
            base_version=base_version,
            incoming_version=incoming_version,
        )
        logger.info(
            "Diff artifact for %s (%d sections, %d lines)",
            path,
            sections,
            line_count,
        )
        return DiffArtifactConflict(
            document=document,
            section_count=sections,
            unchanged_count=unchanged,
        )


# ---------------------------------------------------------------------------
# Inline markers
# ---------------------------------------------------------------------------


def _label(marker: str, version: str | None) -> str:
    return f"{marker} ({version})" if version else marker


def _terminated(lines: list[str], newline: str) -> list[str]:
    if lines and not lines[-1].endswith("\n"):
        return lines[:-1] + [lines[-1] + newline]
    return lines


def render_inline_markers(
    merge: ThreeWayMerge,
    *,
    base_version: str | None = None,
    incoming_version: str | None = None,
) -> str:
    """Render the merge with three-way markers around conflicting regions.

    Non-conflicting regions are emitted exactly as merged.  Each side of a
    conflict is newline-terminated so every marker starts its own line.
    """
    nl = merge.newline
    out: list[str] = []
    for region in merge.regions:
        if not region.is_conflict:
            out.extend(merge.resolved_lines(region))
            continue
        out = _terminated(out, nl)
        out.append(START_MARKER + nl)
        out.extend(_terminated(merge.lines_for(region, CURRENT), nl))
        out.append(_label(BASE_MARKER, base_version) + nl)
        out.extend(_terminated(merge.lines_for(region, "base"), nl))
        out.append(MID_MARKER + nl)
        out.extend(_terminated(merge.lines_for(region, INCOMING), nl))
        out.append(_label(END_MARKER, incoming_version) + nl)
    return "".join(out)


def has_conflict_markers(text: str) -> bool:
    """Return ``True`` if *text* still contains unresolved inline markers."""
    return any(
        line.startswith(START_MARKER) or line.startswith(END_MARKER)
        for line in text.splitlines()
    )


# ---------------------------------------------------------------------------
# Diff artifact
# ---------------------------------------------------------------------------


def _fence_for(lines: list[str]) -> str:
    longest = 2
    for line in lines:
        for match in _BACKTICK_RUN.finditer(line):
            longest = max(longest, len(match.group()))
    return "`" * (longest + 1)


def _fenced(lines: list[str]) -> list[str]:
    body = [line.rstrip("\r\n") for line in lines]
    fence = _fence_for(body)
    return [fence, *body, fence]


def _line_range(start: int, end: int) -> str:
    if end > start:
        return f"Lines {start + 1}-{end}"
    return f"Lines {start}-{start}, empty"


def render_diff_artifact(
    path: str,
    merge: ThreeWayMerge,
    *,
    base_version: str | None = None,
    incoming_version: str | None = None,
) -> tuple[str, int, int]:
    """Render the markdown diff document for a large conflicting file.

    Every region where the user's file and the incoming file differ gets a
    ``## Changed Section N`` block, so every incoming change the untouched
    file lacks can be found in the document.

    Returns:
        Tuple of ``(document, changed_section_count, unchanged_section_count)``.
    """
    lines: list[str] = [
        f"# Upstream Update Conflict: {path}",
        "",
        f"- **File:** `{path}`",
        f"- **Your version:** based on `{base_version or 'unknown'}`"
        " (with local changes)",
        f"- **Incoming version:** `{incoming_version or 'unknown'}`",
        "",
        "The file was left unchanged because it is too large for inline "
        "conflict markers. Apply the incoming sections you want by hand.",
        "",
    ]

    section = 0
    unchanged_regions = 0
    unchanged_lines = 0
    for region in merge.regions:
        if not region.differs:
            unchanged_regions += 1
            unchanged_lines += region.current_end - region.current_start
            continue

        section += 1
        lines.extend(_render_section(section, region, merge))

    lines.extend(
        [
            "## Unchanged Sections",
            "",
            f"{unchanged_regions} unchanged sections ({unchanged_lines} lines) "
            "are identical in both versions and are not shown.",
            "",
        ]
    )
    return "\n".join(lines), section, unchanged_regions


def _render_section(
    number: int, region: MergeRegion, merge: ThreeWayMerge
) -> list[str]:
    out = [
        f"## Changed Section {number}",
        "",
        f"_{_REGION_LABELS[region.kind]}_",
        "",
    ]

    context_start = max(0, region.current_start - _CONTEXT_LINES)
    context = merge.current[context_start : region.current_start]
    if context:
        out.append(
            f"Context ({_line_range(context_start, region.current_start)}):"
        )
        out.append("")
        out.extend(_fenced(context))
        out.append("")

    out.append(
        f"### Your Version ({_line_range(region.current_start, region.current_end)})"
    )
    out.append("")
    out.extend(_fenced(merge.lines_for(region, CURRENT)))
    out.append("")
    out.append(
        f"### Incoming Version ({_line_range(region.incoming_start, region.incoming_end)})"
    )
    out.append("")
    out.extend(_fenced(merge.lines_for(region, INCOMING)))
    out.append("")
    return out
