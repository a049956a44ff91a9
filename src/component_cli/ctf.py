"""
Transport bundle (CTF) aggregation and replication.

A transport bundle is a single uncompressed tar file that collects many
packed component archives so they can be moved as one unit and replicated
into a target registry. The file only ever grows by appending members:

    blobs/sha256.<hex>     packed component archive (deterministic tar export)
    index/<seq>.json       one {name, version, digest} record per entry
    SEALED                 marker; no more entries may be added

Blobs are stored once per digest, so the same archive added under several
identities occupies the space of one.
"""
from __future__ import annotations

import io
import json
import logging
import tarfile
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .archive import ComponentArchive
from .cache import compute_digest
from .cancellation import CancelSignal, raise_if_cancelled
from .errors import ComponentCliError, NotFoundError, OperationCancelled, StructuralError, ValidationError

__all__ = [
    "TransportBundle",
    "BundleEntry",
    "BundleState",
    "ReplicationResult",
    "replicate",
    "SEALED_MARKER",
]

logger = logging.getLogger(__name__)

BLOB_PREFIX = "blobs/"
INDEX_PREFIX = "index/"
SEALED_MARKER = "SEALED"


class BundleState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    SEALED = "sealed"


@dataclass(frozen=True)
class BundleEntry:
    """One component version recorded in the bundle index."""
    name: str
    version: str
    digest: str

    @property
    def identity(self) -> str:
        return f"{self.name}:{self.version}"


@dataclass(frozen=True)
class ReplicationResult:
    """Per-entry outcome of replicate(); error is None on success."""
    name: str
    version: str
    digest: str
    reference: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _blob_member(digest: str) -> str:
    return f"{BLOB_PREFIX}{digest.replace(':', '.', 1)}"


def _tarinfo(name: str, size: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=name)
    info.size = size
    info.mode = 0o644
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


class TransportBundle:
    """
    Append-only transport bundle file.

    All reads and appends on one instance are serialized by a lock; the
    bundle is re-read from disk on every operation, so entries appended
    through another instance are visible.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"TransportBundle({str(self.path)!r})"

    @classmethod
    def open(cls, path: Union[str, Path], create: bool = True) -> TransportBundle:
        """
        Open an existing bundle or create an empty one.

        Raises:
            NotFoundError: If the file does not exist and create is False
            StructuralError: If the file is not a tar archive
        """
        path = Path(path)
        if not path.exists():
            if not create:
                raise NotFoundError(f"transport bundle {path} does not exist", operation="ctf-open")
            path.parent.mkdir(parents=True, exist_ok=True)
            tarfile.open(path, mode="w", format=tarfile.USTAR_FORMAT).close()
            logger.debug(f"Created empty transport bundle {path}")

        bundle = cls(path)
        bundle._scan()
        return bundle

    def _scan(self) -> Tuple[List[BundleEntry], List[str], bool]:
        """Read index records, blob digests and the sealed flag from disk."""
        records: List[Tuple[str, BundleEntry]] = []
        blobs: List[str] = []
        sealed = False
        try:
            with tarfile.open(self.path, mode="r:") as tar:
                for member in tar.getmembers():
                    if member.name == SEALED_MARKER:
                        sealed = True
                    elif member.name.startswith(BLOB_PREFIX):
                        blobs.append(member.name[len(BLOB_PREFIX):].replace(".", ":", 1))
                    elif member.name.startswith(INDEX_PREFIX):
                        record = json.loads(tar.extractfile(member).read())
                        records.append((member.name, BundleEntry(
                            name=record["name"], version=record["version"], digest=record["digest"]
                        )))
        except (tarfile.TarError, OSError) as e:
            raise StructuralError(f"unable to read transport bundle {self.path}: {e}", operation="ctf-read") from e
        except (ValueError, KeyError) as e:
            raise StructuralError(f"corrupt index record in transport bundle {self.path}: {e}",
                                  operation="ctf-read") from e

        records.sort(key=lambda r: r[0])
        return [entry for _, entry in records], blobs, sealed

    @property
    def entries(self) -> List[BundleEntry]:
        """Index entries in insertion order."""
        with self._lock:
            return self._scan()[0]

    @property
    def state(self) -> BundleState:
        with self._lock:
            entries, _, sealed = self._scan()
        if sealed:
            return BundleState.SEALED
        return BundleState.ACCUMULATING if entries else BundleState.EMPTY

    def blob_digests(self) -> List[str]:
        """Distinct blob digests in storage order."""
        with self._lock:
            return self._scan()[1]

    def add_archive(self, archive: ComponentArchive, name: Optional[str] = None,
                    version: Optional[str] = None) -> BundleEntry:
        """
        Pack an archive and record it in the index.

        Args:
            archive: Component archive to add
            name: Identity name to record (descriptor name if None)
            version: Identity version to record (descriptor version if None)

        Raises:
            ValidationError: If the bundle is sealed or already records the
                same name and version with different content
        """
        data = archive.export("tar")
        return self._add_blob(name or archive.descriptor.name, version or archive.descriptor.version, data)

    def add_bundle(self, other: TransportBundle) -> List[BundleEntry]:
        """Copy every entry of another bundle into this one."""
        added = []
        for entry in other.entries:
            added.append(self._add_blob(entry.name, entry.version, other.read_blob(entry.digest)))
        return added

    def _add_blob(self, name: str, version: str, data: bytes) -> BundleEntry:
        digest = compute_digest(data)
        entry = BundleEntry(name=name, version=version, digest=digest)
        with self._lock:
            entries, blobs, sealed = self._scan()
            if sealed:
                raise ValidationError(f"transport bundle {self.path} is sealed", component=entry.identity,
                                      operation="ctf-add")
            if entry in entries:
                logger.debug(f"{entry.identity} ({digest}) already in {self.path}")
                return entry
            for existing in entries:
                if (existing.name, existing.version) == (name, version):
                    raise ValidationError(
                        f"{entry.identity} already recorded with {existing.digest}, refusing {digest}",
                        component=entry.identity, operation="ctf-add"
                    )

            with tarfile.open(self.path, mode="a", format=tarfile.USTAR_FORMAT) as tar:
                if digest not in blobs:
                    tar.addfile(_tarinfo(_blob_member(digest), len(data)), io.BytesIO(data))
                record = json.dumps(
                    {"name": name, "version": version, "digest": digest},
                    sort_keys=True, separators=(',', ':')
                ).encode("utf-8")
                tar.addfile(_tarinfo(f"{INDEX_PREFIX}{len(entries):08d}.json", len(record)), io.BytesIO(record))

        logger.info(f"Added {entry.identity} to {self.path}")
        return entry

    def seal(self) -> None:
        """Mark the bundle complete. Sealing twice is a no-op."""
        with self._lock:
            if self._scan()[2]:
                return
            with tarfile.open(self.path, mode="a", format=tarfile.USTAR_FORMAT) as tar:
                tar.addfile(_tarinfo(SEALED_MARKER, 0), io.BytesIO(b""))
        logger.info(f"Sealed {self.path}")

    def read_blob(self, digest: str) -> bytes:
        """
        Packed archive bytes stored under digest.

        Raises:
            NotFoundError: If the bundle has no such blob
        """
        with self._lock:
            with tarfile.open(self.path, mode="r:") as tar:
                try:
                    member = tar.getmember(_blob_member(digest))
                except KeyError as e:
                    raise NotFoundError(f"blob {digest} not in transport bundle {self.path}",
                                        operation="ctf-read") from e
                return tar.extractfile(member).read()

    def extract(self, entry: BundleEntry, dest: Union[str, Path]) -> ComponentArchive:
        """Unpack an entry's component archive into dest and load it."""
        return ComponentArchive.from_tar(self.read_blob(entry.digest), dest)


def replicate(bundle: TransportBundle, target_base_url: str, pipeline, *,
              max_workers: int = 4, cancel: CancelSignal = None) -> List[ReplicationResult]:
    """
    Push every entry of a bundle into a target registry.

    Each distinct packed archive is extracted and pushed once with the
    target as repository override; entries sharing a digest share the
    outcome. Entries fail independently and the result list follows index
    order. After cancellation, entries not yet started report
    OperationCancelled.

    Args:
        bundle: Transport bundle to replicate
        target_base_url: Base URL of the target repository context
        pipeline: PushPipeline used for every push
        max_workers: Concurrent pushes
        cancel: Cancellation signal
    """
    entries = bundle.entries

    def push_one(digest: str) -> Tuple[Optional[str], Optional[Exception]]:
        try:
            raise_if_cancelled(cancel, operation="ctf-push")
            with tempfile.TemporaryDirectory(prefix="component-cli-ctf-") as tmp:
                archive = bundle.extract(BundleEntry("", "", digest), Path(tmp) / "archive")
                result = pipeline.push(archive, repository_override=target_base_url, cancel=cancel)
            return result.reference, None
        except OperationCancelled as e:
            return None, e
        except ComponentCliError as e:
            logger.warning(f"Replicating {digest} failed: {e}")
            return None, e
        except Exception as e:
            logger.warning(f"Replicating {digest} failed unexpectedly: {e}")
            return None, e

    digests = list(dict.fromkeys(entry.digest for entry in entries))
    outcomes: Dict[str, Tuple[Optional[str], Optional[Exception]]] = {}
    if digests:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {digest: pool.submit(push_one, digest) for digest in digests}
            for digest, future in futures.items():
                outcomes[digest] = future.result()

    results = []
    for entry in entries:
        reference, error = outcomes[entry.digest]
        results.append(ReplicationResult(
            name=entry.name, version=entry.version, digest=entry.digest,
            reference=reference, error=error,
        ))

    failed = sum(1 for r in results if not r.ok)
    logger.info(f"Replicated {len(results) - failed}/{len(results)} entries from {bundle.path} to {target_base_url}")
    return results
