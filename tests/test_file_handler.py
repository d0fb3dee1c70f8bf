"""Tests for file_handler module: encoding-aware reads and atomic writes."""

import os
from unittest.mock import patch

import pytest

from tracker_sync.file_handler import atomic_write, read_file_with_encoding, read_text

# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8(self, tmp_path):
        f = tmp_path / "a.md"
        f.write_text("héllo", encoding="utf-8")
        assert read_file_with_encoding(f) == ("héllo", "utf-8")

    def test_bom_stripped(self, tmp_path):
        f = tmp_path / "a.md"
        f.write_bytes(b"\xef\xbb\xbfhello")
        assert read_text(f) == "hello"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.md"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_latin1_detected(self, tmp_path):
        f = tmp_path / "latin.md"
        text = "Le café était très agréable, à côté de la rivière. " * 5
        f.write_bytes(text.encode("latin-1"))
        content, encoding = read_file_with_encoding(f)
        assert "café" in content
        assert encoding != "utf-8"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_file_with_encoding(tmp_path / "nope.md")


# =============================================================================
# atomic_write
# =============================================================================


class TestAtomicWrite:
    """Tests for atomic_write(path, content)."""

    def test_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.yml"
        written = atomic_write(target, "x: 1\n")
        assert target.read_text() == "x: 1\n"
        assert written == 5

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "file.md"
        target.write_text("old")
        atomic_write(target, "new")
        assert target.read_text() == "new"

    def test_no_temp_files_left(self, tmp_path):
        atomic_write(tmp_path / "file.md", "content")
        assert [p.name for p in tmp_path.iterdir()] == ["file.md"]

    def test_failed_replace_keeps_original_and_cleans_up(self, tmp_path):
        target = tmp_path / "file.md"
        target.write_text("original")
        with patch("tracker_sync.file_handler.os.replace", side_effect=OSError("boom")):
            with pytest.raises(OSError, match="boom"):
                atomic_write(target, "new")
        assert target.read_text() == "original"
        assert sorted(os.listdir(tmp_path)) == ["file.md"]
