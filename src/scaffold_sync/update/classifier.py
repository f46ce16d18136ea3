"""Artifact state classification.

``classify()`` is a pure function of three fingerprints -- the manifest
baseline, the user's current copy, and the incoming upstream copy -- any of
which may be ``None`` when the file is absent on that side.  It is total:
every triple maps to exactly one ``ArtifactState``.

When upstream removes a file the user has edited, the result is
``CONFLICT``; local work is never deleted silently.
"""

from __future__ import annotations

from scaffold_sync.update.fingerprint import fingerprints_equal
from scaffold_sync.update.models import ArtifactState


def classify(
    baseline: str | None,
    current: str | None,
    incoming: str | None,
) -> ArtifactState:
    """Classify one artifact.

    Args:
        baseline: Fingerprint recorded at the last sync (``None`` if the
            path is untracked or its baseline is unknown).
        current: Fingerprint of the working-tree copy (``None`` if absent).
        incoming: Fingerprint of the upstream copy (``None`` if the new
            release does not contain the path).

    Returns:
        The artifact state.
    """
    # Untracked path
    if baseline is None:
        if current is None:
            if incoming is None:
                return ArtifactState.UNMODIFIED
            return ArtifactState.NEW_UPSTREAM
        if incoming is None:
            # A local file the template does not own
            return ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE
        if fingerprints_equal(current, incoming):
            return ArtifactState.UNMODIFIED
        # Both sides created the file independently
        return ArtifactState.CONFLICT

    local_changed = not fingerprints_equal(current, baseline)

    # Upstream removed the file
    if incoming is None:
        if current is None or not local_changed:
            return ArtifactState.REMOVED_UPSTREAM
        return ArtifactState.CONFLICT

    upstream_changed = not fingerprints_equal(incoming, baseline)

    # User removed the file
    if current is None:
        if upstream_changed:
            return ArtifactState.CONFLICT
        return ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE

    if not local_changed and not upstream_changed:
        return ArtifactState.UNMODIFIED
    if not local_changed:
        return ArtifactState.UPSTREAM_CHANGED_ONLY
    if not upstream_changed:
        return ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE
    if fingerprints_equal(current, incoming):
        # Same edit made on both sides
        return ArtifactState.UNMODIFIED
    return ArtifactState.CONFLICT


class Classifier:
    """Injectable wrapper around ``classify()``."""

    def classify(
        self,
        baseline: str | None,
        current: str | None,
        incoming: str | None,
    ) -> ArtifactState:
        return classify(baseline, current, incoming)
