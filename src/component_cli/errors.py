"""
Error taxonomy for component-cli.

Every failure raised by the core derives from ComponentCliError and carries
structured context (component identity, operation) so callers can log the
failure and decide whether to retry. The CLI maps these classes to exit codes
in operations.mappers.
"""
from __future__ import annotations

from typing import Optional


class ComponentCliError(Exception):
    """
    Base class for all component-cli errors.

    Args:
        message: Human-readable description
        component: Component identity ("name:version") if known
        operation: Operation that failed (e.g. "build", "push-blob")
    """

    def __init__(self, message: str, *, component: Optional[str] = None,
                 operation: Optional[str] = None):
        super().__init__(message)
        self.component = component
        self.operation = operation

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.component:
            context.append(f"component={self.component}")
        if self.operation:
            context.append(f"operation={self.operation}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class ValidationError(ComponentCliError):
    """
    Malformed input detected before any disk mutation or network access.

    Raised when:
    - name/version given by the caller disagree with the descriptor
    - a required path or repository context is missing
    - a transport bundle is modified after being sealed
    """
    pass


class InvalidDescriptor(ValidationError):
    """Descriptor document could not be decoded against the schema."""
    pass


class StructuralError(ValidationError):
    """Archive layout is inconsistent with its descriptor (e.g. missing blob)."""
    pass


class NotFoundError(ComponentCliError):
    """A local file, directory or cache entry does not exist."""
    pass


class AuthError(ComponentCliError):
    """
    No usable credential, or the registry rejected the one that was used.

    Kept separate from RegistryError so callers can prompt for
    re-authentication instead of retrying.
    """
    pass


class CredentialLookupError(AuthError):
    """A credential source could not be read or queried."""
    pass


class RegistryError(ComponentCliError):
    """
    Transport or HTTP failure reported by the registry.

    Args:
        reference: Registry reference the operation targeted
        status_code: HTTP status code if the registry answered
        retryable: Whether a caller-driven retry may succeed
    """

    def __init__(self, message: str, *, reference: Optional[str] = None,
                 status_code: Optional[int] = None, retryable: bool = False,
                 component: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, component=component, operation=operation)
        self.reference = reference
        self.status_code = status_code
        self.retryable = retryable


class RegistryNotFound(RegistryError):
    """Manifest, blob or repository does not exist in the registry (HTTP 404)."""
    pass


class CacheCorruptionError(ComponentCliError):
    """
    Cached bytes no longer hash to their digest key.

    Fatal for that entry; corrupt bytes are never served.
    """

    def __init__(self, message: str, *, expected: Optional[str] = None,
                 actual: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class ManifestBuildError(ComponentCliError):
    """The OCI manifest for a component archive could not be assembled."""
    pass


class BlobReadError(ManifestBuildError):
    """A local blob file could not be read."""
    pass


class SerializationError(ManifestBuildError):
    """The component descriptor could not be serialized."""
    pass


class OperationCancelled(ComponentCliError):
    """The caller-supplied cancellation signal was set."""
    pass


__all__ = [
    "ComponentCliError",
    "ValidationError",
    "InvalidDescriptor",
    "StructuralError",
    "NotFoundError",
    "AuthError",
    "CredentialLookupError",
    "RegistryError",
    "RegistryNotFound",
    "CacheCorruptionError",
    "ManifestBuildError",
    "BlobReadError",
    "SerializationError",
    "OperationCancelled",
]
