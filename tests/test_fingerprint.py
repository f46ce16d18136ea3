"""Tests for content fingerprints.

Covers:
- normalize strips BOM, converts CRLF, right-strips each line
- fingerprints are insensitive to line endings, trailing spaces and BOM
- real content changes (including trailing blank lines) change the fingerprint
- fingerprints_equal is case-insensitive and None-aware
- fingerprint_tree reports absent files as None
- unreadable files raise ArtifactIOError instead of comparing equal
"""

from __future__ import annotations

from pathlib import Path

import pytest

from scaffold_sync.errors import ArtifactIOError
from scaffold_sync.update.fingerprint import (
    Fingerprinter,
    fingerprint_bytes,
    fingerprint_text,
    fingerprints_equal,
    normalize,
)

# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestNormalize:
    """Tests for normalize()."""

    def test_strips_leading_bom(self):
        assert normalize("\ufeffhello") == "hello"

    def test_only_one_bom_stripped(self):
        assert normalize("\ufeff\ufeffx") == "\ufeffx"

    def test_crlf_becomes_lf(self):
        assert normalize("a\r\nb\r\n") == "a\nb\n"

    def test_trailing_whitespace_removed_per_line(self):
        assert normalize("a  \nb\t\n") == "a\nb\n"

    def test_leading_whitespace_kept(self):
        assert normalize("  indented\n") == "  indented\n"


class TestFingerprint:
    """Tests for fingerprint_text() and fingerprint_bytes()."""

    def test_same_text_same_fingerprint(self):
        assert fingerprint_text("# Title\n") == fingerprint_text("# Title\n")

    def test_line_endings_ignored(self):
        assert fingerprint_bytes(b"a\r\nb\r\n") == fingerprint_bytes(b"a\nb\n")

    def test_trailing_spaces_ignored(self):
        assert fingerprint_text("a   \nb\n") == fingerprint_text("a\nb\n")

    def test_bom_ignored(self):
        assert fingerprint_bytes(b"\xef\xbb\xbfa\n") == fingerprint_bytes(b"a\n")

    def test_content_change_detected(self):
        assert fingerprint_text("a\n") != fingerprint_text("b\n")

    def test_trailing_blank_line_is_a_change(self):
        assert fingerprint_text("a\n") != fingerprint_text("a\n\n")

    def test_fingerprint_is_sha256_hex(self):
        fp = fingerprint_text("x")
        assert len(fp) == 64
        assert all(c in "0123456789abcdef" for c in fp)

    def test_non_utf8_bytes_fingerprinted(self):
        """Binary content gets a stable fingerprint instead of an error."""
        data = b"\xff\xfe\x00\x01"
        assert fingerprint_bytes(data) == fingerprint_bytes(data)
        assert fingerprint_bytes(data) != fingerprint_bytes(b"\xff\xfe\x00\x02")


class TestFingerprintsEqual:
    """Tests for fingerprints_equal()."""

    def test_case_insensitive(self):
        fp = fingerprint_text("x")
        assert fingerprints_equal(fp, fp.upper())

    def test_none_equals_none(self):
        assert fingerprints_equal(None, None)

    def test_none_never_equals_value(self):
        fp = fingerprint_text("x")
        assert not fingerprints_equal(None, fp)
        assert not fingerprints_equal(fp, None)


# ---------------------------------------------------------------------------
# Files and trees
# ---------------------------------------------------------------------------


class TestFingerprinter:
    """Tests for the Fingerprinter file and tree helpers."""

    def test_fingerprint_file_matches_bytes(self, tmp_path: Path):
        path = tmp_path / "a.md"
        path.write_bytes(b"hello\r\n")
        assert Fingerprinter().fingerprint_file(path) == fingerprint_text("hello\n")

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(ArtifactIOError) as exc_info:
            Fingerprinter().fingerprint_file(tmp_path / "gone.md", "gone.md")
        assert exc_info.value.path == "gone.md"

    def test_directory_raises(self, tmp_path: Path):
        (tmp_path / "dir").mkdir()
        with pytest.raises(ArtifactIOError):
            Fingerprinter().fingerprint_file(tmp_path / "dir", "dir")

    def test_tree_reports_absent_as_none(self, tmp_path: Path):
        (tmp_path / "docs").mkdir()
        (tmp_path / "docs" / "a.md").write_text("a\n")
        tree = Fingerprinter().fingerprint_tree(
            tmp_path, ["docs/a.md", "docs/b.md"]
        )
        assert tree["docs/a.md"] == fingerprint_text("a\n")
        assert tree["docs/b.md"] is None
