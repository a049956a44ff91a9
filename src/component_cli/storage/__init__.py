"""Registry transport for component-cli."""
from __future__ import annotations

from .oci_registry import OciRegistry
from .registry_factory import make_registry
from .registry_http import RegistryHTTP

__all__ = ["OciRegistry", "RegistryHTTP", "make_registry"]
