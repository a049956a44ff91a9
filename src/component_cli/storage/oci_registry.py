"""
OCI registry protocol definition.

Repo-aware interface for the registry operations the push pipeline and the
transport bundle need. Every operation is scoped to a repository path on a
single registry host, which is how the OCI Distribution API works.
"""
from __future__ import annotations

from typing import BinaryIO, Protocol, Union, runtime_checkable


@runtime_checkable
class OciRegistry(Protocol):
    """
    Repo-aware OCI registry operations.

    Implementations map transport failures onto the component-cli error
    taxonomy: AuthError for rejected credentials, RegistryNotFound for 404
    and RegistryError for everything else.
    """

    def head_manifest(self, repo: str, ref: str) -> str:
        """
        HEAD manifest and return canonical digest.

        Args:
            repo: Repository path (e.g., "components/component-descriptors/example/foo")
            ref: Tag or digest reference (e.g., "1.0.0", "sha256:abc...")

        Returns:
            Canonical digest from Docker-Content-Digest header

        Raises:
            RegistryNotFound: If manifest doesn't exist
            AuthError: If authentication fails
            RegistryError: For other registry errors
        """
        ...

    def get_manifest(self, repo: str, ref: str) -> bytes:
        """
        GET manifest content.

        Raises:
            RegistryNotFound: If manifest doesn't exist
            AuthError: If authentication fails
            RegistryError: For other registry errors
        """
        ...

    def put_manifest(self, repo: str, media_type: str, payload: bytes, tag: str) -> str:
        """
        PUT manifest with explicit media type, return canonical digest.

        The digest reported by the registry must match the local computation.

        Raises:
            AuthError: If authentication fails
            RegistryError: For other registry errors or a digest mismatch
        """
        ...

    def get_blob(self, repo: str, digest: str) -> bytes:
        """
        GET blob content by digest.

        Raises:
            RegistryNotFound: If blob doesn't exist
            AuthError: If authentication fails
            RegistryError: For other registry errors or a digest mismatch
        """
        ...

    def put_blob(self, repo: str, digest: str, data: Union[bytes, BinaryIO],
                 size: int | None = None) -> None:
        """
        Upload a blob under its digest.

        Raises:
            AuthError: If authentication fails
            RegistryError: For other registry errors
        """
        ...

    def blob_exists(self, repo: str, digest: str) -> bool:
        """
        Check if blob exists in repository.

        Returns:
            True if the registry has the blob, False on 404

        Raises:
            AuthError: If authentication fails
            RegistryError: For other registry errors
        """
        ...


__all__ = ["OciRegistry"]
