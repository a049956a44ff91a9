"""
Test deterministic archive export functionality.

Validates that component archive exports are byte-identical for identical
inputs and that extraction refuses unsafe members.
"""
from __future__ import annotations

import io
import os
import tarfile

import pytest
import zstandard as zstd

from component_cli.export import (
    ZSTD_MAGIC,
    _apply_canonical_headers,
    deterministic_archive_bytes,
    extract_archive,
    normalize_relpath,
    write_deterministic_archive,
)

from .helpers.archives import example_archive


class TestDeterministicExport:
    """Test deterministic archive creation."""

    def test_identical_archives_produce_identical_exports(self, tmp_path):
        first = example_archive(tmp_path / "a")
        second = example_archive(tmp_path / "b")

        assert first.export("tar") == second.export("tar")
        assert first.export("tar.zst") == second.export("tar.zst")

    def test_export_ignores_mtime_and_mode(self, tmp_path):
        first = example_archive(tmp_path / "a")
        second = example_archive(tmp_path / "b")
        blob = second.blob_dir / "cli-binary-linux"
        os.utime(blob, (1_000_000, 1_000_000))
        os.chmod(blob, 0o600)

        assert first.export() == second.export()

    def test_member_order_and_headers(self):
        data = deterministic_archive_bytes({"b/two": b"2", "a.txt": b"1", "b/one": b"1"})

        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            members = tar.getmembers()

        assert [m.name for m in members] == ["a.txt", "b", "b/one", "b/two"]
        assert all(m.mtime == 0 and m.uid == 0 and m.gid == 0 for m in members)
        assert members[1].isdir()

    def test_zstd_output(self, tmp_path):
        data = deterministic_archive_bytes({"x": b"content"}, fmt="tar.zst")
        assert data.startswith(ZSTD_MAGIC)
        tar_bytes = zstd.ZstdDecompressor().decompress(data)
        with tarfile.open(fileobj=io.BytesIO(tar_bytes)) as tar:
            assert tar.extractfile("x").read() == b"content"

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Invalid format"):
            deterministic_archive_bytes({"x": b""}, fmt="zip")

    def test_write_is_atomic_file(self, tmp_path):
        out = tmp_path / "out.tar"
        write_deterministic_archive({"x": b"content"}, out)
        assert out.read_bytes() == deterministic_archive_bytes({"x": b"content"})
        assert [p.name for p in tmp_path.iterdir()] == ["out.tar"]

    def test_export_does_not_mutate_archive(self, tmp_path):
        archive = example_archive(tmp_path / "a")
        before = archive.descriptor_path.read_bytes()
        archive.export("tar.zst")
        assert archive.descriptor_path.read_bytes() == before


class TestExtract:

    def test_round_trip(self, tmp_path):
        data = deterministic_archive_bytes({"dir/file": b"abc"}, fmt="tar.zst")
        dest = extract_archive(data, tmp_path / "out")
        assert (dest / "dir" / "file").read_bytes() == b"abc"

    def test_rejects_traversal(self, tmp_path):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo("../escape")
            info.size = 1
            tar.addfile(info, io.BytesIO(b"x"))

        with pytest.raises(ValueError):
            extract_archive(buf.getvalue(), tmp_path / "out")
        assert not (tmp_path / "escape").exists()

    def test_rejects_symlinks(self, tmp_path):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            info = tarfile.TarInfo("link")
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            tar.addfile(info)

        with pytest.raises(ValueError, match="unsupported"):
            extract_archive(buf.getvalue(), tmp_path / "out")


class TestPathNormalization:

    def test_normalize_relpath(self):
        assert normalize_relpath("./a/b") == "a/b"
        assert normalize_relpath("a\\b") == "a/b"

    @pytest.mark.parametrize("path", ["", ".", "/abs", "../up", "a/../../b", "nul\x00byte"])
    def test_unsafe_paths(self, path):
        with pytest.raises(ValueError):
            normalize_relpath(path)

    def test_canonical_headers_keep_exec_bit(self):
        info = tarfile.TarInfo("bin")
        info.mode = 0o750
        _apply_canonical_headers(info)
        assert info.mode == 0o755
        assert info.mtime == 0
