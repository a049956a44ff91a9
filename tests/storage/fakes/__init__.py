"""In-memory test doubles for the registry transport."""
from .fake_oci_registry import FakeOciRegistry, FakeRegistryFactory

__all__ = ["FakeOciRegistry", "FakeRegistryFactory"]
