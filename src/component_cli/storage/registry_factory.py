"""
Registry factory.

Single place that turns settings, a registry host and a keyring into an
OciRegistry implementation, so call sites (and tests) can swap the
implementation without touching the pipeline.
"""
from __future__ import annotations

from typing import Optional

from ..credentials import Keyring
from ..settings import Settings
from .oci_registry import OciRegistry
from .registry_http import RegistryHTTP


def make_registry(settings: Settings, host: str, keyring: Optional[Keyring] = None,
                  scheme: Optional[str] = None) -> OciRegistry:
    """
    Create the HTTP registry client for host.

    Args:
        settings: Timeouts, retry count and plain-HTTP switch
        host: Registry host with optional port
        keyring: Credentials for the run
        scheme: Explicit scheme from the reference; wins over allow_plain_http

    Examples:
        >>> registry = make_registry(settings, "localhost:5000", keyring)
    """
    registry = f"{scheme}://{host}" if scheme else host
    return RegistryHTTP(
        registry,
        keyring=keyring,
        insecure=settings.allow_plain_http,
        timeout_s=settings.http_timeout_s,
        retries=settings.http_retry,
    )


__all__ = ["make_registry"]
