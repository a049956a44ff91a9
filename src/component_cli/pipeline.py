"""
Component push pipeline.

Main entry point for publishing a component archive to an OCI registry:
validate, compute the target reference, build the manifest, resolve
credentials, upload blobs and finally the manifest. Every step is
content-addressed, so re-pushing an unchanged component uploads nothing.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .archive import ComponentArchive
from .cache import BlobCache
from .cancellation import CancelSignal, raise_if_cancelled
from .codec import decode
from .credentials import (
    ConfigFileSecretSource,
    FallbackCredentialSource,
    Keyring,
    Privilege,
    default_docker_config_path,
    resolve_keyring,
)
from .errors import ComponentCliError, InvalidDescriptor, RegistryNotFound, StructuralError, ValidationError
from .manifest import OCIManifest, build_manifest
from .media_types import COMPONENT_DESCRIPTOR_CONFIG
from .models import LocalFilesystemBlobAccess
from .reference import ParsedReference, build_reference, parse_reference
from .settings import Settings
from .storage.oci_registry import OciRegistry
from .storage.registry_factory import make_registry

__all__ = ["CredentialOptions", "PushPipeline", "PushResult", "RegistryFactory"]

logger = logging.getLogger(__name__)

# (host, scheme, keyring) -> registry client
RegistryFactory = Callable[[str, Optional[str], Keyring], OciRegistry]


@dataclass(frozen=True)
class CredentialOptions:
    """
    Where credentials for a run come from.

    Attributes:
        explicit_config_paths: Docker-style credential files, earlier wins
        fallback: Source queried for hosts the explicit files do not cover
    """
    explicit_config_paths: Tuple[str, ...] = ()
    fallback: Optional[FallbackCredentialSource] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialOptions:
        """Explicit files from settings (or the docker default), fallback from cc_config_path."""
        paths: Sequence[str] = settings.registry_config_paths
        if not paths:
            default = default_docker_config_path()
            paths = (str(default),) if default else ()
        fallback = ConfigFileSecretSource(settings.cc_config_path) if settings.cc_config_path else None
        return cls(explicit_config_paths=tuple(paths), fallback=fallback)


@dataclass(frozen=True)
class PushResult:
    """Outcome of a push: where it went and what actually crossed the wire."""
    reference: str
    manifest_digest: str
    uploaded_blobs: Tuple[str, ...] = ()
    skipped_blobs: Tuple[str, ...] = ()
    manifest_uploaded: bool = True


class PushPipeline:
    """
    Publishes component archives through a shared blob cache.

    One pipeline may push many archives concurrently (the transport bundle
    replication does); it holds no per-push state.
    """

    def __init__(self, cache: BlobCache, credentials: Optional[CredentialOptions] = None, *,
                 registry_factory: Optional[RegistryFactory] = None,
                 max_workers: Optional[int] = None,
                 settings: Optional[Settings] = None):
        """
        Args:
            cache: Blob cache for config and layer blobs
            credentials: Credential sources (derived from settings if None)
            registry_factory: Builds the registry client for a host
            max_workers: Concurrent blob uploads (settings.max_workers if None)
            settings: Settings (loaded from env if None)
        """
        if settings is None:
            from .settings import create_settings_from_env
            settings = create_settings_from_env()

        self.cache = cache
        self.settings = settings
        self.credentials = credentials or CredentialOptions.from_settings(settings)
        self.max_workers = max_workers or settings.max_workers
        self._registry_factory = registry_factory or (
            lambda host, scheme, keyring: make_registry(settings, host, keyring, scheme)
        )

    def push(self, archive: ComponentArchive, repository_override: Optional[str] = None, *,
             expected_name: Optional[str] = None, expected_version: Optional[str] = None,
             cancel: CancelSignal = None) -> PushResult:
        """
        Publish a component archive.

        1. Validates caller-supplied name/version and the repository context
           (no cache or network access on failure)
        2. Computes the reference from the effective repository context
        3. Builds the manifest, filling the blob cache
        4. Resolves a readwrite keyring for the registry host
        5. Uploads missing blobs, then the manifest last

        Args:
            archive: Loaded component archive
            repository_override: Base URL appended as the new effective repository context
            expected_name: Name the caller expects the descriptor to have
            expected_version: Version the caller expects the descriptor to have
            cancel: Cancellation signal

        Returns:
            PushResult with the reference and manifest digest

        Raises:
            ValidationError: If name/version disagree or there is no repository context
            ManifestBuildError: If the manifest cannot be built
            AuthError: If credentials are missing or rejected
            RegistryError: If the registry fails
            OperationCancelled: If cancelled before the manifest was uploaded
        """
        descriptor = archive.descriptor
        identity = descriptor.identity
        try:
            reference = self._prepare(archive, repository_override, expected_name, expected_version)
            parsed = parse_reference(reference)

            manifest = build_manifest(self.cache, archive, max_workers=self.max_workers, cancel=cancel)

            registry = self._registry_for(parsed, Privilege.READ_WRITE)
            try:
                uploaded, skipped = self._upload_blobs(registry, parsed.repository, manifest, cancel)

                raise_if_cancelled(cancel, operation="push-manifest", component=identity)
                manifest_digest = manifest.digest
                if self._remote_digest(registry, parsed.repository, parsed.ref) == manifest_digest:
                    logger.debug(f"Manifest {manifest_digest} already at {reference}")
                    manifest_uploaded = False
                else:
                    registry.put_manifest(parsed.repository, manifest.media_type, manifest.to_bytes(), parsed.ref)
                    manifest_uploaded = True
            finally:
                _close(registry)
        except ComponentCliError as e:
            if e.component is None:
                e.component = identity
            raise

        logger.info(f"Pushed {identity} to {reference} ({manifest_digest})")
        return PushResult(
            reference=reference,
            manifest_digest=manifest_digest,
            uploaded_blobs=tuple(uploaded),
            skipped_blobs=tuple(skipped),
            manifest_uploaded=manifest_uploaded,
        )

    def _prepare(self, archive: ComponentArchive, repository_override: Optional[str],
                 expected_name: Optional[str], expected_version: Optional[str]) -> str:
        descriptor = archive.descriptor
        if expected_name is not None and expected_name != descriptor.name:
            raise ValidationError(
                f"component name '{expected_name}' does not match descriptor name '{descriptor.name}'",
                operation="push"
            )
        if expected_version is not None and expected_version != descriptor.version:
            raise ValidationError(
                f"component version '{expected_version}' does not match descriptor version '{descriptor.version}'",
                operation="push"
            )

        if repository_override:
            descriptor.add_repository_context(repository_override)

        context = descriptor.effective_repository_context
        if context is None:
            raise ValidationError("descriptor has no repository context and none was given", operation="push")
        return build_reference(context.base_url, descriptor.name, descriptor.version)

    def _registry_for(self, parsed: ParsedReference, privilege: Privilege) -> OciRegistry:
        keyring = resolve_keyring(
            self.credentials.explicit_config_paths,
            self.credentials.fallback,
            required_privilege=privilege,
            hosts=[parsed.host],
        )
        return self._registry_factory(parsed.host, parsed.scheme, keyring)

    def _upload_blobs(self, registry: OciRegistry, repo: str, manifest: OCIManifest,
                      cancel: CancelSignal) -> Tuple[List[str], List[str]]:
        """Config blob first, then distinct layer blobs concurrently."""
        uploaded: List[str] = []
        skipped: List[str] = []

        def upload(digest: str) -> bool:
            raise_if_cancelled(cancel, operation="push-blob")
            if registry.blob_exists(repo, digest):
                logger.debug(f"Blob {digest} already in {repo}")
                return False
            data = self.cache.get(digest)
            registry.put_blob(repo, digest, data, len(data))
            return True

        digests = manifest.blob_digests()
        config_digest, layer_digests = digests[0], digests[1:]
        (uploaded if upload(config_digest) else skipped).append(config_digest)

        if layer_digests:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [(digest, pool.submit(upload, digest)) for digest in layer_digests]
                try:
                    for digest, future in futures:
                        (uploaded if future.result() else skipped).append(digest)
                except BaseException:
                    for _, future in futures:
                        future.cancel()
                    raise

        return uploaded, skipped

    @staticmethod
    def _remote_digest(registry: OciRegistry, repo: str, ref: str) -> Optional[str]:
        try:
            return registry.head_manifest(repo, ref)
        except RegistryNotFound:
            return None

    def fetch(self, reference: str, dest: Union[str, Path], *,
              cancel: CancelSignal = None) -> ComponentArchive:
        """
        Download a published component version into an archive directory.

        Blobs go through the cache, so fetching after a push reads nothing
        from the registry that is already cached locally.

        Raises:
            InvalidDescriptor: If the manifest config is not a component descriptor
            StructuralError: If the layers do not match the descriptor's local entries
            AuthError, RegistryError: On registry failures
        """
        parsed = parse_reference(reference)
        registry = self._registry_for(parsed, Privilege.READ_ONLY)
        try:
            manifest = OCIManifest.from_bytes(registry.get_manifest(parsed.repository, parsed.ref))
            if manifest.config.media_type != COMPONENT_DESCRIPTOR_CONFIG:
                raise InvalidDescriptor(
                    f"{reference} is not a component descriptor (config media type {manifest.config.media_type})",
                    operation="fetch"
                )
            for digest in manifest.blob_digests():
                raise_if_cancelled(cancel, operation="fetch")
                if not self.cache.has(digest):
                    self.cache.put(digest, registry.get_blob(parsed.repository, digest), cancel=cancel)
        finally:
            _close(registry)

        descriptor = decode(self.cache.get(manifest.config.digest))
        local = descriptor.local_entries()
        if len(local) != len(manifest.layers):
            raise StructuralError(
                f"{reference} has {len(manifest.layers)} layer(s) but the descriptor lists {len(local)} local entries",
                component=descriptor.identity, operation="fetch"
            )

        archive = ComponentArchive(dest, descriptor)
        archive.blob_dir.mkdir(parents=True, exist_ok=True)
        for (_, entry), layer in zip(local, manifest.layers):
            if isinstance(entry.access, LocalFilesystemBlobAccess):
                archive.blob_path(entry.access.filename).write_bytes(self.cache.get(layer.digest))
        archive.save()
        logger.info(f"Fetched {descriptor.identity} from {reference} into {dest}")
        return archive


def _close(registry: OciRegistry) -> None:
    close = getattr(registry, "close", None)
    if callable(close):
        close()
