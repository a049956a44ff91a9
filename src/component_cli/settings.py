"""
Settings and configuration for component-cli.

Centralizes configuration values and provides validation with fail-fast behavior.
Settings are loaded from environment variables; CLI flags override them with
dataclasses.replace().
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

__all__ = ["Settings", "create_settings_from_env", "default_cache_dir"]


def default_cache_dir() -> Path:
    """
    Default location of the OCI blob cache.

    Uses $XDG_CACHE_HOME when set, otherwise ~/.cache.
    """
    base = os.getenv("XDG_CACHE_HOME")
    if base:
        return Path(base) / "component-cli" / "oci"
    return Path.home() / ".cache" / "component-cli" / "oci"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for component-cli.

    Cache Settings:
        cache_dir: Directory of the content-addressed blob cache
        verify_cache: Re-hash cached blobs on read

    Registry Settings:
        registry_config_paths: Docker-style credential files (explicit keyring sources)
        cc_config_path: Secret-server style config used as fallback credential source
        allow_plain_http: Talk plain HTTP to registries without a scheme
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Number of retries for timed-out requests (0=no retry)

    Concurrency Settings:
        max_workers: Worker pool size for blob uploads and bundle replication
    """
    cache_dir: Path = field(default_factory=default_cache_dir)
    verify_cache: bool = True

    registry_config_paths: Tuple[str, ...] = ()
    cc_config_path: Optional[str] = None
    allow_plain_http: bool = False
    http_timeout_s: float = 30.0
    http_retry: int = 0

    max_workers: int = 4

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.cache_dir:
            raise ValueError("cache_dir is required")

        # Normalize to Path without breaking frozen semantics
        if not isinstance(self.cache_dir, Path):
            object.__setattr__(self, "cache_dir", Path(self.cache_dir))
        if not isinstance(self.registry_config_paths, tuple):
            object.__setattr__(self, "registry_config_paths", tuple(self.registry_config_paths))

        if any(not p for p in self.registry_config_paths):
            raise ValueError("registry_config_paths must not contain empty entries")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 0:
            raise ValueError(f"http_retry must be non-negative, got {self.http_retry}")

        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - COMPONENT_CLI_CACHE_DIR (default: XDG cache dir)
        - COMPONENT_CLI_VERIFY_CACHE (default: true)
        - COMPONENT_CLI_REGISTRY_CONFIG (os.pathsep separated list, optional)
        - COMPONENT_CLI_CC_CONFIG (optional)
        - COMPONENT_CLI_ALLOW_PLAIN_HTTP (default: false)
        - COMPONENT_CLI_HTTP_TIMEOUT (default: 30.0)
        - COMPONENT_CLI_HTTP_RETRY (default: 0)
        - COMPONENT_CLI_MAX_WORKERS (default: 4)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    cache_dir = os.getenv("COMPONENT_CLI_CACHE_DIR")
    registry_config = os.getenv("COMPONENT_CLI_REGISTRY_CONFIG", "")

    return Settings(
        cache_dir=Path(cache_dir) if cache_dir else default_cache_dir(),
        verify_cache=str_to_bool(os.getenv("COMPONENT_CLI_VERIFY_CACHE", "true")),
        registry_config_paths=tuple(p for p in registry_config.split(os.pathsep) if p),
        cc_config_path=os.getenv("COMPONENT_CLI_CC_CONFIG") or None,
        allow_plain_http=str_to_bool(os.getenv("COMPONENT_CLI_ALLOW_PLAIN_HTTP", "false")),
        http_timeout_s=get_float("COMPONENT_CLI_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("COMPONENT_CLI_HTTP_RETRY", 0),
        max_workers=get_int("COMPONENT_CLI_MAX_WORKERS", 4),
    )
