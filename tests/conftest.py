"""Root pytest configuration for image-sync tests."""
import pytest

from image_sync.cli_context import CLIContext
from image_sync.credentials import CredentialProvider
from image_sync.enumerator import TagPolicy
from image_sync.orchestrator import SyncOrchestrator
from image_sync.settings import Settings

from .fakes.fake_registry import (
    FakeRegistry,
    FakeTransfer,
    RecordingObserver,
    StaticExchange,
    StaticIdentity,
)

_ENV_VARS = [
    "IMAGE_SYNC_CONFIG",
    "IMAGE_SYNC_IMAGES",
    "IMAGE_SYNC_MAX_TAGS",
    "IMAGE_SYNC_SKIP_LATEST",
    "IMAGE_SYNC_ISOLATE_FAILURES",
    "IMAGE_SYNC_WORKERS",
    "IMAGE_SYNC_SOURCE_PROVIDER",
    "IMAGE_SYNC_SOURCE_URL",
    "IMAGE_SYNC_SOURCE_TOKEN_FILE",
    "IMAGE_SYNC_SOURCE_PULL_SECRET_FILE",
    "IMAGE_SYNC_DESTINATION_PROVIDER",
    "IMAGE_SYNC_DESTINATION_URL",
    "IMAGE_SYNC_AZURE_CLIENT_SECRET_FILE",
    "IMAGE_SYNC_REQUEST_TIMEOUT",
    "IMAGE_SYNC_HTTP_RETRY",
    "AZURE_TENANT_ID",
    "AZURE_CLIENT_ID",
]


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Keep the developer's environment out of every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retries in tests should not sleep."""
    from tenacity import wait_none
    monkeypatch.setattr("image_sync.registry.http.RETRY_WAIT", wait_none())


@pytest.fixture
def source():
    """Quay-like source with four tags, newest first."""
    return FakeRegistry({"org/app": ["v3", "v2", "v1", "latest"]}, host="quay.io")


@pytest.fixture
def destination():
    """Empty ACR-like destination."""
    return FakeRegistry({}, host="mirror.azurecr.io")


@pytest.fixture
def transfer():
    return FakeTransfer()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def make_orchestrator(source, destination, transfer, observer):
    """Factory for an orchestrator wired to the fakes."""
    def _make(max_tags=3, skip_latest=True, **kwargs):
        return SyncOrchestrator(
            source, destination, transfer,
            TagPolicy(max_tags=max_tags, skip_latest=skip_latest),
            observers=[observer],
            **kwargs,
        )
    return _make


@pytest.fixture
def make_context(source, destination, transfer):
    """Factory for a CLIContext wired to the fakes, accepting Settings overrides."""
    def _make(config_path=None, **overrides):
        settings = Settings(
            images=("org/app",),
            max_tags=3,
            destination_url="https://mirror.azurecr.io",
        ).with_overrides(**overrides)
        credentials = CredentialProvider(
            settings.destination_url, identity=StaticIdentity(), exchange=StaticExchange(),
        )
        return CLIContext(
            settings=settings,
            _source=source,
            _destination=destination,
            _credentials=credentials,
            _transfer=transfer,
        )
    return _make
