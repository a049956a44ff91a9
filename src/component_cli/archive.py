"""
Component archive.

A component archive is a directory holding exactly one component descriptor
(``component-descriptor.yaml``) plus a ``blobs/`` directory with the bytes of
every local resource, source and component reference. Loading validates the
whole archive up front: no partially-valid archive is ever returned.
"""
from __future__ import annotations

import hashlib
import logging
import os
import tarfile
import tempfile
from pathlib import Path
from typing import Dict, Optional, Union

from .cache import CHUNK_SIZE
from .codec import decode, encode_yaml
from .errors import NotFoundError, StructuralError, ValidationError
from .export import FORMATS, deterministic_archive_bytes, extract_archive, write_deterministic_archive
from .models import ComponentDescriptor, LocalFilesystemBlobAccess, Relation, Resource
from .path_safety import resolve_under, safe_relpath

__all__ = ["ComponentArchive", "COMPONENT_DESCRIPTOR_FILE_NAME", "BLOB_DIR_NAME"]

logger = logging.getLogger(__name__)

COMPONENT_DESCRIPTOR_FILE_NAME = "component-descriptor.yaml"
BLOB_DIR_NAME = "blobs"

_ENTRY_LISTS = {
    "resource": "resources",
    "source": "sources",
    "componentReference": "component_references",
}


class ComponentArchive:
    """
    One component staged on disk: its descriptor plus local blobs.

    The descriptor is held in memory; repository-context appends made during
    a push are not written back unless save() is called.
    """

    def __init__(self, path: Union[str, Path], descriptor: ComponentDescriptor):
        self.path = Path(path)
        self.descriptor = descriptor

    @property
    def descriptor_path(self) -> Path:
        return self.path / COMPONENT_DESCRIPTOR_FILE_NAME

    @property
    def blob_dir(self) -> Path:
        return self.path / BLOB_DIR_NAME

    @property
    def identity(self) -> str:
        return self.descriptor.identity

    def __repr__(self) -> str:
        return f"ComponentArchive({self.identity!r}, path={str(self.path)!r})"

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> ComponentArchive:
        """
        Load and validate an archive directory.

        Raises:
            NotFoundError: If the directory or its descriptor file is missing
            InvalidDescriptor: If the descriptor cannot be decoded
            StructuralError: If a local blob is missing or escapes the blob directory
        """
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"component archive {path} does not exist", operation="load")
        if not path.is_dir():
            raise StructuralError(
                f"{path} is not a directory. It is expected that the given path points to a "
                f"directory that contains the component descriptor as file in '{COMPONENT_DESCRIPTOR_FILE_NAME}'",
                operation="load"
            )

        descriptor_path = path / COMPONENT_DESCRIPTOR_FILE_NAME
        try:
            data = descriptor_path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"component descriptor {descriptor_path} does not exist", operation="load") from e

        archive = cls(path, decode(data))
        archive.validate()
        logger.debug(f"Loaded component archive {archive.identity} from {path}")
        return archive

    @classmethod
    def create(cls, path: Union[str, Path], name: str, version: str,
               provider: str = "internal") -> ComponentArchive:
        """
        Initialize an empty archive directory.

        Raises:
            ValidationError: If the directory already contains a descriptor
        """
        path = Path(path)
        if (path / COMPONENT_DESCRIPTOR_FILE_NAME).exists():
            raise ValidationError(f"{path} already contains a component descriptor", operation="create")

        descriptor = ComponentDescriptor(name=name, version=version, provider=provider)
        archive = cls(path, descriptor)
        archive.blob_dir.mkdir(parents=True, exist_ok=True)
        archive.save()
        return archive

    @classmethod
    def from_tar(cls, source: Union[str, Path, bytes], dest: Union[str, Path]) -> ComponentArchive:
        """
        Unpack an exported archive into dest and load it.

        Raises:
            StructuralError: If the archive is malformed or contains unsafe paths
        """
        try:
            extract_archive(source, dest)
        except (ValueError, tarfile.TarError) as e:
            raise StructuralError(f"unable to unpack component archive: {e}", operation="unpack") from e
        return cls.from_path(dest)

    def blob_path(self, filename: str) -> Path:
        """
        Path of a blob inside the blob directory.

        Raises:
            StructuralError: If filename escapes the blob directory
        """
        try:
            return resolve_under(self.blob_dir, filename)
        except ValueError as e:
            raise StructuralError(str(e), component=self.identity, operation="load") from e

    def validate(self) -> None:
        """
        Check access types against relations and that every local blob
        reference resolves to a readable file.

        Local entries must use localFilesystemBlob access; external entries
        must not.

        Raises:
            StructuralError: On the first mismatched access, missing or unsafe blob
        """
        for kind, entry in self.descriptor.iter_entries():
            if not entry.is_local and isinstance(entry.access, LocalFilesystemBlobAccess):
                raise StructuralError(
                    f"external {kind} '{entry.identity_str}' cannot use {entry.access.type} access",
                    component=self.identity, operation="load"
                )

        for kind, entry in self.descriptor.local_entries():
            access = entry.access
            if not isinstance(access, LocalFilesystemBlobAccess):
                raise StructuralError(
                    f"local {kind} '{entry.identity_str}' has unsupported access type '{access.type}'",
                    component=self.identity, operation="load"
                )
            blob = self.blob_path(access.filename)
            if not blob.is_file():
                raise StructuralError(
                    f"blob '{access.filename}' of {kind} '{entry.identity_str}' does not exist in {self.blob_dir}",
                    component=self.identity, operation="load"
                )
            if not os.access(blob, os.R_OK):
                raise StructuralError(
                    f"blob '{access.filename}' of {kind} '{entry.identity_str}' is not readable",
                    component=self.identity, operation="load"
                )

    def _export_members(self) -> Dict[str, Union[Path, bytes]]:
        members: Dict[str, Union[Path, bytes]] = {
            COMPONENT_DESCRIPTOR_FILE_NAME: encode_yaml(self.descriptor)
        }
        for _, entry in self.descriptor.local_entries():
            if isinstance(entry.access, LocalFilesystemBlobAccess):
                filename = safe_relpath(entry.access.filename)
                members[f"{BLOB_DIR_NAME}/{filename}"] = self.blob_path(filename)
        return members

    def export(self, fmt: str = "tar") -> bytes:
        """
        Serialize descriptor and referenced blobs into one deterministic archive.

        Never mutates the archive.

        Args:
            fmt: "tar" or "tar.zst"
        """
        if fmt not in FORMATS:
            raise ValidationError(f"unknown export format '{fmt}'", component=self.identity, operation="export")
        return deterministic_archive_bytes(self._export_members(), fmt=fmt)

    def write_export(self, out_path: Union[str, Path], fmt: str = "tar") -> None:
        """Export to a file, written atomically."""
        if fmt not in FORMATS:
            raise ValidationError(f"unknown export format '{fmt}'", component=self.identity, operation="export")
        write_deterministic_archive(self._export_members(), out_path, fmt=fmt)
        logger.info(f"Exported {self.identity} to {out_path}")

    def save(self) -> None:
        """Write the in-memory descriptor back to the archive atomically."""
        self.path.mkdir(parents=True, exist_ok=True)
        data = encode_yaml(self.descriptor)
        fd, temp_path = tempfile.mkstemp(prefix=".tmp.", dir=self.path)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, self.descriptor_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _store_blob(self, source_file: Path) -> str:
        """Copy a file into the blob directory under its digest; return the filename."""
        self.blob_dir.mkdir(parents=True, exist_ok=True)
        hash_obj = hashlib.sha256()
        fd, temp_path = tempfile.mkstemp(prefix=".tmp.", dir=self.blob_dir)
        try:
            with open(source_file, "rb") as src, os.fdopen(fd, "wb") as out:
                for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
                    hash_obj.update(chunk)
                    out.write(chunk)
            filename = f"sha256.{hash_obj.hexdigest()}"
            os.replace(temp_path, self.blob_dir / filename)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
        return filename

    def add_resource(self, resource: Resource, source_file: Union[str, Path, None] = None,
                     *, kind: str = "resource") -> Resource:
        """
        Add or replace an entry, keeping descriptor and blob directory consistent.

        For local entries the file is copied into the blob directory as
        ``sha256.<hex>`` and the access is rewritten to point at it. An entry
        with the same identity is replaced.

        Args:
            resource: Entry to add
            source_file: File with the entry's bytes (required for local entries)
            kind: "resource", "source" or "componentReference"

        Returns:
            The entry as stored in the descriptor

        Raises:
            ValidationError: If a local entry has no file or kind is unknown
            NotFoundError: If source_file does not exist
        """
        if kind not in _ENTRY_LISTS:
            raise ValidationError(f"unknown entry kind '{kind}'", component=self.identity, operation="add-resource")

        if resource.relation == Relation.LOCAL:
            if source_file is None:
                raise ValidationError(
                    f"local {kind} '{resource.identity_str}' requires a file",
                    component=self.identity, operation="add-resource"
                )
            source_file = Path(source_file)
            if not source_file.is_file():
                raise NotFoundError(f"file {source_file} does not exist",
                                    component=self.identity, operation="add-resource")

            media_type = None
            if isinstance(resource.access, LocalFilesystemBlobAccess):
                media_type = resource.access.media_type
            filename = self._store_blob(source_file)
            resource = resource.model_copy(update={
                "access": LocalFilesystemBlobAccess(filename=filename, media_type=media_type)
            })

        entries = getattr(self.descriptor, _ENTRY_LISTS[kind])
        replaced = [i for i, e in enumerate(entries) if e.identity == resource.identity]
        previous = None
        if replaced:
            previous = entries[replaced[0]]
            entries[replaced[0]] = resource
        else:
            entries.append(resource)

        if previous is not None:
            self._drop_unreferenced_blob(previous)
        self.save()
        logger.info(f"Added {kind} {resource.identity_str} to {self.identity}")
        return resource

    def remove_resource(self, name: str, version: Optional[str] = None,
                        extra_identity: Optional[Dict[str, str]] = None,
                        *, kind: str = "resource") -> Resource:
        """
        Remove an entry and its blob if no other entry references it.

        Raises:
            NotFoundError: If no entry with that identity exists
        """
        if kind not in _ENTRY_LISTS:
            raise ValidationError(f"unknown entry kind '{kind}'", component=self.identity, operation="remove-resource")

        identity = (name, version or "", tuple(sorted((extra_identity or {}).items())))
        entries = getattr(self.descriptor, _ENTRY_LISTS[kind])
        for i, entry in enumerate(entries):
            if entry.identity == identity:
                removed = entries.pop(i)
                self._drop_unreferenced_blob(removed)
                self.save()
                logger.info(f"Removed {kind} {removed.identity_str} from {self.identity}")
                return removed

        raise NotFoundError(f"{kind} '{name}' not found", component=self.identity, operation="remove-resource")

    def _drop_unreferenced_blob(self, entry: Resource) -> None:
        if not isinstance(entry.access, LocalFilesystemBlobAccess):
            return
        filename = entry.access.filename
        for _, other in self.descriptor.local_entries():
            if isinstance(other.access, LocalFilesystemBlobAccess) and other.access.filename == filename:
                return
        self.blob_path(filename).unlink(missing_ok=True)
