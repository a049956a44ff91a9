"""
Path safety utilities for component-cli.

This module provides shared validation for paths taken from descriptors and
archive members to prevent directory traversal.
"""
from __future__ import annotations

from pathlib import Path, PurePosixPath


def safe_relpath(path: str) -> str:
    """
    Validate and normalize a relative path to prevent traversal attacks.

    This function enforces the following safety rules:
    - No empty strings or "." (prevents root directory access)
    - No absolute paths (starting with '/')
    - No parent directory references ('..' components)
    - No backslashes or NUL bytes

    Args:
        path: Path string from a descriptor or archive member

    Returns:
        Normalized relative path safe for use

    Raises:
        ValueError: If path violates safety rules

    Examples:
        >>> safe_relpath("sha256.abc")
        'sha256.abc'

        >>> safe_relpath("../secrets.txt")
        ValueError: unsafe path: ../secrets.txt
    """
    rel = PurePosixPath(path)
    s = str(rel)
    if not s or s == ".":
        raise ValueError(f"unsafe path: {path}")
    if "\\" in s or "\x00" in s:
        raise ValueError(f"unsafe path: {path}")
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"unsafe path: {path}")
    return s


def resolve_under(root: Path, relpath: str) -> Path:
    """
    Join a relative path onto root, refusing anything that escapes it.

    Raises:
        ValueError: If relpath is unsafe or resolves outside root
    """
    candidate = (root / safe_relpath(relpath)).resolve()
    root_resolved = root.resolve()
    if candidate != root_resolved and root_resolved not in candidate.parents:
        raise ValueError(f"unsafe path: {relpath} escapes {root}")
    return candidate


__all__ = ["safe_relpath", "resolve_under"]
