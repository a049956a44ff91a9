"""
OCI manifest builder.

Turns a component archive into an OCI image manifest: the canonical JSON
descriptor becomes the config blob and every local resource, source and
component reference becomes one layer. All blob bytes go through the
content-addressed BlobCache, so the manifest is a pure function of the
archive's content and two builds of identical archives are byte-identical.
"""
from __future__ import annotations

import hashlib
import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .archive import ComponentArchive
from .cache import BlobCache, CacheEntry, compute_digest
from .cancellation import CancelSignal, raise_if_cancelled
from .codec import encode_canonical_json
from .errors import BlobReadError, ManifestBuildError
from .media_types import (
    COMPONENT_DESCRIPTOR_CONFIG,
    COMPONENT_NAME_ANNOTATION,
    COMPONENT_VERSION_ANNOTATION,
    OCI_IMAGE_MANIFEST,
    TITLE_ANNOTATION,
    media_type_for,
)
from .models import LocalFilesystemBlobAccess

__all__ = ["OCIDescriptor", "OCIManifest", "ManifestBuilder", "build_manifest"]

logger = logging.getLogger(__name__)


class OCIDescriptor(BaseModel):
    """OCI content descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    media_type: str = Field(..., alias="mediaType")
    digest: str = Field(..., description="Content digest (sha256:...)")
    size: int = Field(..., description="Blob size in bytes")
    annotations: Optional[Dict[str, str]] = Field(default=None)


class OCIManifest(BaseModel):
    """OCI image manifest v1 for a component version."""
    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str = Field(default=OCI_IMAGE_MANIFEST, alias="mediaType")
    config: OCIDescriptor
    layers: List[OCIDescriptor] = Field(default_factory=list)
    annotations: Optional[Dict[str, str]] = Field(default=None)

    def to_bytes(self) -> bytes:
        """Canonical JSON (sorted keys, no whitespace) - the bytes that get pushed."""
        # Exclude computed fields
        data = self.model_dump(by_alias=True, exclude_none=True, exclude={"digest"})
        canonical = json.dumps(
            data,
            sort_keys=True,
            separators=(',', ':'),
            ensure_ascii=True
        )
        return canonical.encode('utf-8')

    @computed_field
    @property
    def digest(self) -> str:
        """Digest of the canonical manifest bytes."""
        return f"sha256:{hashlib.sha256(self.to_bytes()).hexdigest()}"

    def blob_digests(self) -> List[str]:
        """Config digest followed by distinct layer digests, in manifest order."""
        seen = []
        for desc in [self.config, *self.layers]:
            if desc.digest not in seen:
                seen.append(desc.digest)
        return seen

    @classmethod
    def from_bytes(cls, data: bytes) -> OCIManifest:
        doc = json.loads(data)
        doc.pop("digest", None)
        return cls.model_validate(doc)


class ManifestBuilder:
    """
    Builds the OCI manifest of a component archive.

    Blob reads for distinct files run on a bounded thread pool; layer order
    always follows descriptor order. Each physical file is read once per
    build, even when several entries point at it.
    """

    def __init__(self, cache: BlobCache, archive: ComponentArchive, *,
                 max_workers: int = 4, cancel: CancelSignal = None):
        self.cache = cache
        self.archive = archive
        self.max_workers = max_workers
        self.cancel = cancel

    def build(self) -> OCIManifest:
        """
        Build the manifest, filling the cache with config and layer blobs.

        Raises:
            SerializationError: If the descriptor cannot be serialized
            BlobReadError: If a local blob cannot be read
            ManifestBuildError: If a local entry uses an unsupported access type
            OperationCancelled: If the cancel signal is set
        """
        descriptor = self.archive.descriptor
        component = descriptor.identity
        raise_if_cancelled(self.cancel, operation="build", component=component)

        config_bytes = encode_canonical_json(descriptor)
        config_digest = compute_digest(config_bytes)
        if not self.cache.has(config_digest):
            self.cache.put(config_digest, config_bytes, cancel=self.cancel)
        config = OCIDescriptor(
            media_type=COMPONENT_DESCRIPTOR_CONFIG,
            digest=config_digest,
            size=len(config_bytes),
        )

        plan = []
        for kind, entry in descriptor.local_entries():
            access = entry.access
            if not isinstance(access, LocalFilesystemBlobAccess):
                raise ManifestBuildError(
                    f"local {kind} '{entry.identity_str}' has unsupported access type '{access.type}'",
                    component=component, operation="build"
                )
            blob = self.archive.blob_path(access.filename)
            plan.append((entry, blob, media_type_for(entry.type, access.media_type)))

        cached = self._read_blobs([blob for _, blob, _ in plan])

        layers = []
        for entry, blob, media_type in plan:
            cache_entry = cached[blob]
            layers.append(OCIDescriptor(
                media_type=media_type,
                digest=cache_entry.digest,
                size=cache_entry.size,
                annotations={TITLE_ANNOTATION: entry.name},
            ))

        manifest = OCIManifest(
            config=config,
            layers=layers,
            annotations={
                COMPONENT_NAME_ANNOTATION: descriptor.name,
                COMPONENT_VERSION_ANNOTATION: descriptor.version,
            },
        )
        logger.debug(f"Built manifest {manifest.digest} for {component} with {len(layers)} layer(s)")
        return manifest

    def _read_blobs(self, paths: List[Path]) -> Dict[Path, CacheEntry]:
        unique = list(dict.fromkeys(paths))
        if not unique:
            return {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures: Dict[Path, Future] = {
                path: pool.submit(self._read_blob, path) for path in unique
            }
            results = {}
            try:
                for path, future in futures.items():
                    results[path] = future.result()
            except BaseException:
                for future in futures.values():
                    future.cancel()
                raise
        return results

    def _read_blob(self, path: Path) -> CacheEntry:
        raise_if_cancelled(self.cancel, operation="build", component=self.archive.identity)
        try:
            return self.cache.add_file(path, cancel=self.cancel)
        except OSError as e:
            raise BlobReadError(
                f"unable to read blob {path}: {e}",
                component=self.archive.identity, operation="build"
            ) from e


def build_manifest(cache: BlobCache, archive: ComponentArchive, *,
                   max_workers: int = 4, cancel: CancelSignal = None) -> OCIManifest:
    """Build the OCI manifest of a component archive (see ManifestBuilder)."""
    return ManifestBuilder(cache, archive, max_workers=max_workers, cancel=cancel).build()
