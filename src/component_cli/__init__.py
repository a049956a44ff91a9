"""
component-cli: package component archives as OCI artifacts.

Loads locally staged component archives, builds content-addressed OCI
manifests through a local blob cache, pushes them to OCI registries with
resolved credentials, and aggregates archives into transport bundles.
"""
from __future__ import annotations

__version__ = "0.1.0"

from .archive import ComponentArchive
from .cache import BlobCache
from .credentials import Keyring, KeyringEntry, Privilege, resolve_keyring
from .ctf import BundleEntry, ReplicationResult, TransportBundle, replicate
from .manifest import OCIManifest, build_manifest
from .models import ComponentDescriptor, Resource
from .pipeline import CredentialOptions, PushPipeline, PushResult
from .reference import build_reference
from .settings import Settings, create_settings_from_env

__all__ = [
    "__version__",
    "ComponentArchive",
    "ComponentDescriptor",
    "Resource",
    "BlobCache",
    "Keyring",
    "KeyringEntry",
    "Privilege",
    "resolve_keyring",
    "OCIManifest",
    "build_manifest",
    "CredentialOptions",
    "PushPipeline",
    "PushResult",
    "TransportBundle",
    "BundleEntry",
    "ReplicationResult",
    "replicate",
    "build_reference",
    "Settings",
    "create_settings_from_env",
]
