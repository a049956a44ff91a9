"""Root pytest configuration for component-cli tests."""
import pytest

from component_cli.cache import BlobCache
from component_cli.pipeline import CredentialOptions, PushPipeline
from component_cli.settings import Settings

from .storage.fakes.fake_oci_registry import FakeOciRegistry, FakeRegistryFactory

# Import fixtures to make them available
from .fixtures.oci_registry import oci_registry


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Docker)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (may take significant time)"
    )


@pytest.fixture(autouse=True)
def test_env(monkeypatch, tmp_path):
    """Isolate every test from the user's cache and credential files."""
    monkeypatch.setenv("COMPONENT_CLI_CACHE_DIR", str(tmp_path / "env-cache"))
    monkeypatch.setenv("DOCKER_CONFIG", str(tmp_path / "no-docker-config"))
    for var in ("COMPONENT_CLI_REGISTRY_CONFIG", "COMPONENT_CLI_CC_CONFIG",
                "COMPONENT_CLI_ALLOW_PLAIN_HTTP", "COMPONENT_CLI_HTTP_TIMEOUT",
                "COMPONENT_CLI_HTTP_RETRY", "COMPONENT_CLI_MAX_WORKERS",
                "COMPONENT_CLI_VERIFY_CACHE"):
        monkeypatch.delenv(var, raising=False)


# Standardized test fixtures
@pytest.fixture
def settings(tmp_path):
    """Standard test settings."""
    return Settings(cache_dir=tmp_path / "cache", max_workers=2)


@pytest.fixture
def cache(settings):
    return BlobCache(settings.cache_dir)


@pytest.fixture
def registry():
    """Standard fake registry for testing."""
    return FakeOciRegistry()


@pytest.fixture
def registry_factory(registry):
    return FakeRegistryFactory(registry)


@pytest.fixture
def pipeline(cache, registry_factory, settings):
    """Push pipeline wired to the fake registry, anonymous credentials."""
    return PushPipeline(
        cache,
        CredentialOptions(),
        registry_factory=registry_factory,
        settings=settings,
    )
