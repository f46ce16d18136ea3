"""Three-way line merge for the update engine.

Uses the ``merge3`` library (the same algorithm used by Bazaar/Breezy) to
find the sync regions where base, current, and incoming agree; everything
between two sync regions is a changed region.

Key design choices:

* Lines are **matched** on a normalised key (line ending and trailing
  whitespace stripped) so a file re-saved with CRLF endings does not turn
  into one large conflict.  Output always uses the original lines.
* Regions where only one side changed are taken from that side; regions
  changed identically on both sides are taken from the current file.  Only
  regions changed differently on both sides are conflicts.
* Lines taken from the incoming file are converted to the current file's
  line ending.
"""

from __future__ import annotations

from dataclasses import dataclass

from merge3 import Merge3

UNCHANGED = "unchanged"
SAME = "same"
CURRENT = "current"
INCOMING = "incoming"
CONFLICT = "conflict"


def split_lines(text: str) -> list[str]:
    """Split *text* on ``\\n`` only, keeping line endings.

    Unlike ``str.splitlines()`` this does not break on form feeds or
    Unicode line separators, so line numbers match what editors show.
    """
    if not text:
        return []
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def line_key(line: str) -> str:
    """Return the comparison key for one line."""
    return line.rstrip()


def detect_newline(lines: list[str]) -> str:
    """Return ``"\\r\\n"`` if most terminated lines use it, else ``"\\n"``."""
    crlf = sum(1 for line in lines if line.endswith("\r\n"))
    lf = sum(1 for line in lines if line.endswith("\n"))
    return "\r\n" if crlf and crlf * 2 >= lf else "\n"


def _convert_newline(line: str, newline: str) -> str:
    if line.endswith("\r\n"):
        body = line[:-2]
    elif line.endswith("\n"):
        body = line[:-1]
    else:
        return line
    return body + newline


@dataclass(frozen=True)
class MergeRegion:
    """A run of lines with a single merge outcome.

    Ranges are zero-based, end-exclusive indexes into the base, current, and
    incoming line lists.
    """

    kind: str
    base_start: int
    base_end: int
    current_start: int
    current_end: int
    incoming_start: int
    incoming_end: int

    @property
    def is_conflict(self) -> bool:
        return self.kind == CONFLICT

    @property
    def differs(self) -> bool:
        """Whether the current and incoming files differ in this region."""
        return self.kind in (CURRENT, INCOMING, CONFLICT)


class ThreeWayMerge:
    """Line-level three-way merge of one artifact.

    Args:
        base_text: Common ancestor (the release last synced).
        current_text: The user's working-tree copy.
        incoming_text: The new upstream copy.
    """

    def __init__(
        self, base_text: str, current_text: str, incoming_text: str
    ) -> None:
        self.base = split_lines(base_text)
        self.current = split_lines(current_text)
        self.incoming = split_lines(incoming_text)
        self.newline = detect_newline(self.current or self.incoming)
        self.regions = self._compute_regions()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def conflicts(self) -> list[MergeRegion]:
        return [r for r in self.regions if r.is_conflict]

    @property
    def has_conflicts(self) -> bool:
        return any(r.is_conflict for r in self.regions)

    def lines_for(self, region: MergeRegion, side: str) -> list[str]:
        """Return the lines of *region* on *side* (base/current/incoming)."""
        if side == "base":
            return self.base[region.base_start : region.base_end]
        if side == CURRENT:
            return self.current[region.current_start : region.current_end]
        if side == INCOMING:
            return [
                _convert_newline(line, self.newline)
                for line in self.incoming[
                    region.incoming_start : region.incoming_end
                ]
            ]
        raise ValueError(f"Unknown side: {side}")

    def resolved_lines(self, region: MergeRegion) -> list[str]:
        """Return the merged lines for a non-conflicting region."""
        if region.kind == INCOMING:
            return self.lines_for(region, INCOMING)
        if region.kind == CONFLICT:
            raise ValueError("Conflicting regions have no single resolution")
        return self.lines_for(region, CURRENT)

    def merged_text(self) -> str:
        """Return the merged text.

        Raises:
            ValueError: If any region conflicts.
        """
        if self.has_conflicts:
            raise ValueError("Merge has conflicting regions")
        return "".join(
            line for r in self.regions for line in self.resolved_lines(r)
        )

    # ------------------------------------------------------------------
    # Region computation
    # ------------------------------------------------------------------

    def _compute_regions(self) -> list[MergeRegion]:
        base_keys = [line_key(line) for line in self.base]
        current_keys = [line_key(line) for line in self.current]
        incoming_keys = [line_key(line) for line in self.incoming]

        m3 = Merge3(base_keys, current_keys, incoming_keys)

        regions: list[MergeRegion] = []
        iz = ia = ib = 0
        # The last sync region is always a zero-length sentinel at the end
        for zmatch, zend, amatch, aend, bmatch, bend in m3.find_sync_regions():
            if zmatch > iz or amatch > ia or bmatch > ib:
                base_chunk = base_keys[iz:zmatch]
                current_chunk = current_keys[ia:amatch]
                incoming_chunk = incoming_keys[ib:bmatch]

                if current_chunk == incoming_chunk:
                    kind = UNCHANGED if current_chunk == base_chunk else SAME
                elif current_chunk == base_chunk:
                    kind = INCOMING
                elif incoming_chunk == base_chunk:
                    kind = CURRENT
                else:
                    kind = CONFLICT
                regions.append(
                    MergeRegion(kind, iz, zmatch, ia, amatch, ib, bmatch)
                )

            if zend > zmatch:
                regions.append(
                    MergeRegion(UNCHANGED, zmatch, zend, amatch, aend, bmatch, bend)
                )
            iz, ia, ib = zend, aend, bend

        return regions
