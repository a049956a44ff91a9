"""
Local content-addressed blob cache.

Blobs are stored under ``<base>/blobs/sha256/<hex>`` and addressed purely by
digest, so identical bytes from different components collapse into one
entry. Writes go to a temp file in the same directory and are renamed into
place only once complete, so a reader never observes a partial entry.
"""
from __future__ import annotations

import hashlib
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Tuple, Union

from .cancellation import CancelSignal, raise_if_cancelled
from .errors import CacheCorruptionError, NotFoundError

__all__ = ["BlobCache", "CacheEntry", "compute_digest", "validate_digest", "CHUNK_SIZE", "LOCK_STRIPES"]

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB

_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")

# Fixed pool of writer locks shared by digests with the same stripe
LOCK_STRIPES = 64


def compute_digest(data: bytes) -> str:
    """Return the sha256 content digest of data."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def validate_digest(digest: str) -> None:
    """
    Validate digest format.

    Raises:
        ValueError: If digest is not sha256:<64 lowercase hex>
    """
    if not isinstance(digest, str) or not _DIGEST_RE.match(digest):
        raise ValueError(f"Invalid digest format: {digest}")


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cache entry: digest, byte length and local path."""
    digest: str
    size: int
    path: Path


class BlobCache:
    """
    Content-addressed blob store on local disk.

    Thread-safe: concurrent writers of the same digest are serialized (first
    writer wins, later writers observe the cached entry) through a fixed pool
    of striped locks, so distinct digests are mostly written concurrently.
    The directory is created lazily on first use and never removed.
    """

    def __init__(self, base_path: Union[str, Path], *, verify_on_read: bool = True):
        """
        Args:
            base_path: Cache root directory
            verify_on_read: Re-hash blobs in get() and reject corrupt ones
        """
        self._base = Path(base_path)
        self._blob_dir = self._base / "blobs" / "sha256"
        self.verify_on_read = verify_on_read
        self._locks: Tuple[threading.Lock, ...] = tuple(threading.Lock() for _ in range(LOCK_STRIPES))

    @property
    def base_path(self) -> Path:
        return self._base

    def _ensure_dirs(self) -> None:
        self._blob_dir.mkdir(parents=True, exist_ok=True)

    def _lock_for(self, digest: str) -> threading.Lock:
        return self._locks[int(digest[7:15], 16) % LOCK_STRIPES]

    def path_for(self, digest: str) -> Path:
        """Filesystem path an entry is (or would be) stored at."""
        validate_digest(digest)
        return self._blob_dir / digest.split(":", 1)[1]

    def has(self, digest: str) -> bool:
        return self.path_for(digest).is_file()

    def info(self, digest: str) -> CacheEntry:
        """
        Get metadata for a cached blob.

        Raises:
            NotFoundError: If the digest is not cached
        """
        path = self.path_for(digest)
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise NotFoundError(f"blob {digest} not found in cache", operation="cache-get") from e
        return CacheEntry(digest=digest, size=size, path=path)

    def get(self, digest: str, *, verify: bool | None = None) -> bytes:
        """
        Read a cached blob.

        Args:
            digest: Content digest
            verify: Override verify_on_read for this call

        Raises:
            NotFoundError: If the digest is not cached
            CacheCorruptionError: If verification is on and the bytes do not
                hash to the digest
        """
        path = self.path_for(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"blob {digest} not found in cache", operation="cache-get") from e

        if verify is None:
            verify = self.verify_on_read
        if verify:
            actual = compute_digest(data)
            if actual != digest:
                logger.error(f"Cache entry {digest} is corrupt (content hashes to {actual})")
                raise CacheCorruptionError(
                    f"cached blob {digest} is corrupt: content hashes to {actual}",
                    expected=digest, actual=actual, operation="cache-get"
                )
        return data

    def open(self, digest: str) -> BinaryIO:
        """
        Open a cached blob for streaming reads (no verification).

        Raises:
            NotFoundError: If the digest is not cached
        """
        path = self.path_for(digest)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError(f"blob {digest} not found in cache", operation="cache-open") from e

    def verify(self, digest: str) -> bool:
        """Re-hash a cached blob and report whether it matches its digest."""
        hash_obj = hashlib.sha256()
        with self.open(digest) as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hash_obj.update(chunk)
        return f"sha256:{hash_obj.hexdigest()}" == digest

    def put(self, digest: str, data: bytes, *, cancel: CancelSignal = None) -> CacheEntry:
        """
        Store bytes under their digest.

        Idempotent: if the digest is already cached nothing is written and
        existing bytes are not compared.

        Raises:
            ValueError: If digest is malformed or does not match data
            OperationCancelled: If cancel is set before the entry is committed
        """
        validate_digest(digest)
        actual = compute_digest(data)
        if actual != digest:
            raise ValueError(f"Digest mismatch: expected {digest}, got {actual}")

        with self._lock_for(digest):
            path = self.path_for(digest)
            if path.is_file():
                return CacheEntry(digest=digest, size=path.stat().st_size, path=path)

            chunks = (data[i:i + CHUNK_SIZE] for i in range(0, len(data), CHUNK_SIZE))
            temp_path, _, size = self._write_temp(chunks, cancel)
            self._commit(temp_path, path)
            logger.debug(f"Cached blob {digest} ({size} bytes)")
            return CacheEntry(digest=digest, size=size, path=path)

    def add_file(self, file_path: Union[str, Path], *, cancel: CancelSignal = None) -> CacheEntry:
        """
        Copy a file into the cache, computing its digest in the same pass.

        The file is read exactly once. If its digest is already cached the
        copy is discarded.

        Raises:
            OSError: If the file cannot be read
            OperationCancelled: If cancel is set while copying
        """
        with open(file_path, "rb") as f:
            temp_path, hex_digest, size = self._write_temp(
                iter(lambda: f.read(CHUNK_SIZE), b""), cancel
            )

        digest = f"sha256:{hex_digest}"
        path = self.path_for(digest)
        with self._lock_for(digest):
            if path.is_file():
                temp_path.unlink(missing_ok=True)
                logger.debug(f"Blob {digest} from {file_path} already cached")
            else:
                self._commit(temp_path, path)
                logger.debug(f"Cached {file_path} as {digest} ({size} bytes)")
        return CacheEntry(digest=digest, size=size, path=path)

    def _write_temp(self, chunks: Iterable[bytes], cancel: CancelSignal) -> Tuple[Path, str, int]:
        """Write chunks to a temp file next to the final location."""
        self._ensure_dirs()
        hash_obj = hashlib.sha256()
        size = 0
        fd, temp_name = tempfile.mkstemp(prefix=".tmp.", dir=self._blob_dir)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                for chunk in chunks:
                    raise_if_cancelled(cancel, operation="cache-put")
                    hash_obj.update(chunk)
                    out.write(chunk)
                    size += len(chunk)
                out.flush()
                os.fsync(out.fileno())
            raise_if_cancelled(cancel, operation="cache-put")
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path, hash_obj.hexdigest(), size

    def _commit(self, temp_path: Path, final_path: Path) -> None:
        try:
            os.replace(temp_path, final_path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
