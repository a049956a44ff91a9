"""
Deterministic archive export.

Creates byte-identical tar archives from identical inputs by normalizing
paths, tar headers, and compression settings. Enforces USTAR format for
cross-platform compatibility. Also provides safe extraction of such archives.
"""
from __future__ import annotations

import io
import os
import tarfile
import tempfile
import unicodedata
from pathlib import Path, PurePosixPath
from typing import Mapping, Union

import zstandard as zstd

from .path_safety import resolve_under

__all__ = [
    "FORMATS",
    "ZSTD_MAGIC",
    "deterministic_archive_bytes",
    "write_deterministic_archive",
    "extract_archive",
    "normalize_relpath",
]

FORMATS = ("tar", "tar.zst")
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"

Member = Union[Path, bytes]


def deterministic_archive_bytes(members: Mapping[str, Member], *,
                                fmt: str = "tar", zstd_level: int = 19) -> bytes:
    """
    Build a deterministic archive in memory.

    Produces byte-identical output from identical members by:
    - Sorting entries by archive name
    - Emitting parent directories before their contents
    - Setting deterministic tar headers (uid=0, gid=0, mtime=0)
    - Using USTAR format without PAX headers
    - Applying fixed compression settings

    Args:
        members: Archive name -> file path or raw bytes
        fmt: "tar" or "tar.zst"
        zstd_level: Zstandard compression level

    Raises:
        ValueError: If fmt is unknown or a member name is unsafe
    """
    if fmt not in FORMATS:
        raise ValueError(f"Invalid format '{fmt}'. Use one of: {', '.join(FORMATS)}")

    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        _add_members(tar, members)
    data = buf.getvalue()

    if fmt == "tar.zst":
        compressor = zstd.ZstdCompressor(
            level=zstd_level,
            write_content_size=True,
            write_checksum=True
        )
        data = compressor.compress(data)
    return data


def write_deterministic_archive(members: Mapping[str, Member], out_path: Union[str, Path], *,
                                fmt: str = "tar", zstd_level: int = 19) -> None:
    """
    Write a deterministic archive to out_path atomically.

    Raises:
        ValueError: If fmt is unknown or a member name is unsafe
        OSError: If archive creation fails
    """
    out_path = Path(out_path).resolve()
    data = deterministic_archive_bytes(members, fmt=fmt, zstd_level=zstd_level)

    temp_fd, temp_path = tempfile.mkstemp(
        suffix='.tmp',
        dir=out_path.parent,
        prefix=out_path.name + '.'
    )
    try:
        with os.fdopen(temp_fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, out_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def _add_members(tar: tarfile.TarFile, members: Mapping[str, Member]) -> None:
    """Add members and their parent directories in deterministic order."""
    normalized = {normalize_relpath(name): content for name, content in members.items()}

    directories = set()
    for name in normalized:
        for parent in PurePosixPath(name).parents:
            if str(parent) != ".":
                directories.add(str(parent))

    entries = [(d, None) for d in directories] + list(normalized.items())
    entries.sort(key=lambda x: x[0])

    for arcname, content in entries:
        if content is None:
            tarinfo = tarfile.TarInfo(name=arcname + "/")
            tarinfo.type = tarfile.DIRTYPE
            _apply_canonical_headers(tarinfo)
            tar.addfile(tarinfo)
        elif isinstance(content, bytes):
            tarinfo = tarfile.TarInfo(name=arcname)
            tarinfo.size = len(content)
            _apply_canonical_headers(tarinfo)
            tar.addfile(tarinfo, io.BytesIO(content))
        else:
            tarinfo = tar.gettarinfo(str(content), arcname=arcname)
            _apply_canonical_headers(tarinfo)
            with open(content, "rb") as entry_file:
                tar.addfile(tarinfo, entry_file)


def extract_archive(source: Union[str, Path, bytes], dest: Union[str, Path]) -> Path:
    """
    Extract a (optionally zstd-compressed) tar archive into dest.

    Only regular files and directories are extracted; every member name is
    validated so nothing is written outside dest.

    Returns:
        The destination directory

    Raises:
        ValueError: If a member path is unsafe or of an unsupported type
        tarfile.TarError: If the archive is malformed
    """
    data = source if isinstance(source, bytes) else Path(source).read_bytes()
    if data.startswith(ZSTD_MAGIC):
        data = zstd.ZstdDecompressor().decompress(data)

    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
        for member in tar.getmembers():
            target = resolve_under(dest, normalize_relpath(member.name.rstrip("/")))
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isreg():
                target.parent.mkdir(parents=True, exist_ok=True)
                extracted = tar.extractfile(member)
                with open(target, "wb") as out:
                    out.write(extracted.read())
            else:
                raise ValueError(f"unsupported archive member type: {member.name}")
    return dest


def normalize_relpath(path: str) -> str:
    """
    Normalize relative path for archive creation.

    Converts backslashes to forward slashes and applies basic safety validation.

    Raises:
        ValueError: If path contains unsafe sequences after normalization
    """
    normalized = unicodedata.normalize('NFC', path.replace('\\', '/'))
    if normalized.startswith("./"):
        normalized = normalized[2:]

    _validate_archive_path(normalized)
    return normalized


def _validate_archive_path(path: str) -> None:
    """
    Validate path is safe for archive creation.

    Raises:
        ValueError: If path contains dangerous sequences
    """
    rel = PurePosixPath(path)
    s = str(rel)

    if not s or s == ".":
        raise ValueError(f"unsafe archive path: {path}")
    if "\\" in s:
        raise ValueError(f"unsafe archive path: {path}")
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"unsafe archive path: {path}")

    # NUL bytes can cause path truncation
    if "\x00" in s:
        raise ValueError(f"archive path contains NUL byte: {path}")


def _apply_canonical_headers(tarinfo: tarfile.TarInfo) -> None:
    """
    Apply canonical tar headers for deterministic output.

    Sets consistent ownership, timestamps, and permissions while
    preserving essential file type information.
    """
    tarinfo.uid = 0
    tarinfo.gid = 0
    tarinfo.uname = ""
    tarinfo.gname = ""

    tarinfo.mtime = 0

    if tarinfo.isdir():
        tarinfo.mode = 0o755
    elif tarinfo.isreg():
        # Preserve execute bit for regular files
        if tarinfo.mode & 0o100:
            tarinfo.mode = 0o755
        else:
            tarinfo.mode = 0o644
