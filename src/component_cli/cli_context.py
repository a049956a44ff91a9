"""
CLI Context for managing application dependencies.

Holds the settings of one CLI invocation and lazily creates the blob cache
and push pipeline, avoiding global state and enabling dependency injection
in tests.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .cache import BlobCache
from .pipeline import CredentialOptions, PushPipeline
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    The cache and pipeline are created on first access and reused for the
    rest of the command.
    """
    settings: Settings
    _cache: Optional[BlobCache] = None
    _pipeline: Optional[PushPipeline] = None

    @classmethod
    def from_env(cls) -> CLIContext:
        """Create CLI context from environment variables."""
        return cls(settings=create_settings_from_env())

    @property
    def cache(self) -> BlobCache:
        if self._cache is None:
            self._cache = BlobCache(self.settings.cache_dir, verify_on_read=self.settings.verify_cache)
        return self._cache

    @property
    def pipeline(self) -> PushPipeline:
        """Push pipeline wired to the context's cache and credential settings."""
        if self._pipeline is None:
            self._pipeline = PushPipeline(
                self.cache,
                CredentialOptions.from_settings(self.settings),
                max_workers=self.settings.max_workers,
                settings=self.settings,
            )
        return self._pipeline
