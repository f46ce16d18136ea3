"""Tests for artifact state classification.

Covers:
- the full baseline/current/incoming decision table
- absent files on each side (new upstream, removed upstream, deleted locally)
- untracked paths (no baseline)
- tie-breaks: identical edits on both sides, upstream removal of an edited file
"""

from __future__ import annotations

import itertools

import pytest

from scaffold_sync.update.classifier import Classifier, classify
from scaffold_sync.update.fingerprint import fingerprint_text
from scaffold_sync.update.models import ArtifactState

H1 = fingerprint_text("base\n")
H2 = fingerprint_text("local edit\n")
H3 = fingerprint_text("upstream edit\n")


class TestClassifyTracked:
    """Paths with a known baseline."""

    def test_nothing_changed(self):
        assert classify(H1, H1, H1) == ArtifactState.UNMODIFIED

    def test_upstream_changed_only(self):
        assert classify(H1, H1, H3) == ArtifactState.UPSTREAM_CHANGED_ONLY

    def test_customized_no_upstream_change(self):
        assert classify(H1, H2, H1) == ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE

    def test_both_changed_differently(self):
        assert classify(H1, H2, H3) == ArtifactState.CONFLICT

    def test_both_made_same_edit(self):
        assert classify(H1, H2, H2) == ArtifactState.UNMODIFIED

    def test_removed_upstream_untouched_locally(self):
        assert classify(H1, H1, None) == ArtifactState.REMOVED_UPSTREAM

    def test_removed_upstream_and_locally(self):
        assert classify(H1, None, None) == ArtifactState.REMOVED_UPSTREAM

    def test_removed_upstream_but_edited_locally(self):
        """Local edits are never deleted silently."""
        assert classify(H1, H2, None) == ArtifactState.CONFLICT

    def test_deleted_locally_upstream_unchanged(self):
        assert classify(H1, None, H1) == ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE

    def test_deleted_locally_upstream_changed(self):
        assert classify(H1, None, H3) == ArtifactState.CONFLICT

    def test_fingerprint_case_ignored(self):
        assert classify(H1, H1.upper(), H1) == ArtifactState.UNMODIFIED


class TestClassifyUntracked:
    """Paths without a baseline."""

    def test_new_upstream(self):
        assert classify(None, None, H3) == ArtifactState.NEW_UPSTREAM

    def test_local_file_not_in_template(self):
        assert classify(None, H2, None) == ArtifactState.CUSTOMIZED_NO_UPSTREAM_CHANGE

    def test_both_created_same_content(self):
        assert classify(None, H3, H3) == ArtifactState.UNMODIFIED

    def test_both_created_different_content(self):
        assert classify(None, H2, H3) == ArtifactState.CONFLICT

    def test_absent_everywhere(self):
        assert classify(None, None, None) == ArtifactState.UNMODIFIED


class TestClassifyTotal:
    """classify() maps every triple to exactly one state."""

    @pytest.mark.parametrize(
        "triple", list(itertools.product([None, H1, H2, H3], repeat=3))
    )
    def test_every_triple_has_a_state(self, triple):
        assert isinstance(classify(*triple), ArtifactState)

    def test_classifier_wrapper_delegates(self):
        assert Classifier().classify(H1, H1, H3) == classify(H1, H1, H3)
