"""
Tests for path safety validation.

Tests the shared path_safety module and the archive code that relies on it
for blob filenames.
"""
from __future__ import annotations

import pytest

from component_cli.archive import ComponentArchive
from component_cli.errors import StructuralError
from component_cli.path_safety import resolve_under, safe_relpath

from .helpers.archives import local_resource, write_archive


class TestSafeRelpath:
    """Test safe_relpath function directly."""

    def test_safe_paths_allowed(self):
        assert safe_relpath("file.txt") == "file.txt"
        assert safe_relpath("dir/file.txt") == "dir/file.txt"
        assert safe_relpath("sha256.abc") == "sha256.abc"

    def test_absolute_paths_rejected(self):
        with pytest.raises(ValueError, match="unsafe path: /etc/passwd"):
            safe_relpath("/etc/passwd")

    @pytest.mark.parametrize("path", ["../evil.txt", "dir/../../evil.txt", "good/../bad/../../evil.txt"])
    def test_parent_directory_traversal_rejected(self, path):
        with pytest.raises(ValueError, match="unsafe path"):
            safe_relpath(path)

    @pytest.mark.parametrize("path", ["a\\b\\c.txt", "..\\..\\etc\\passwd", "mixed/path\\file"])
    def test_backslash_paths_rejected(self, path):
        with pytest.raises(ValueError, match="unsafe path"):
            safe_relpath(path)

    @pytest.mark.parametrize("path", ["", ".", "file\x00.txt"])
    def test_degenerate_paths_rejected(self, path):
        with pytest.raises(ValueError, match="unsafe path"):
            safe_relpath(path)


class TestResolveUnder:

    def test_resolves_inside_root(self, tmp_path):
        assert resolve_under(tmp_path, "blobs/file") == (tmp_path / "blobs" / "file").resolve()

    def test_symlink_escape_rejected(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(tmp_path)
        with pytest.raises(ValueError, match="escapes"):
            resolve_under(root, "link/outside.txt")


class TestArchiveBlobPaths:

    def test_traversing_blob_filename_rejected_on_load(self, tmp_path):
        (tmp_path / "secret").write_bytes(b"secret")
        write_archive(tmp_path / "archive", resources=[local_resource("leak", "../../secret")])

        with pytest.raises(StructuralError, match="unsafe path"):
            ComponentArchive.from_path(tmp_path / "archive")
