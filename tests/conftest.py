"""Common test fixtures for the Issue Memo MCP server."""

import pytest

from issuememo_mcp.observability import metrics
from issuememo_mcp.services.memo_service import MemoService
from issuememo_mcp.storage.attachment_repository import AttachmentRepository
from issuememo_mcp.storage.github_client import GitHubClient
from issuememo_mcp.storage.memo_repository import MemoRepository
from issuememo_mcp.storage.settings_repository import (
    JsonFileStore,
    SettingsRepository,
    ShortcutRepository,
)
from issuememo_mcp.storage.user_repository import UserRepository
from tests.fakes import FakeGitHub, make_config


@pytest.fixture
def test_config():
    """Fully configured tracker config, independent of the environment."""
    return make_config()


@pytest.fixture
def fake_github():
    """Empty in-memory GitHub repository."""
    return FakeGitHub()


@pytest.fixture
def github_client(test_config, fake_github):
    """Real GitHubClient talking to the fake through httpx.MockTransport."""
    http = fake_github.http_client(test_config)
    client = GitHubClient(test_config, http=http)
    yield client
    http.close()


@pytest.fixture
def memo_repository(github_client):
    yield MemoRepository(github_client)


@pytest.fixture
def attachment_repository(github_client):
    yield AttachmentRepository(github_client)


@pytest.fixture
def json_store(github_client):
    yield JsonFileStore(github_client)


@pytest.fixture
def settings_repository(json_store):
    yield SettingsRepository(json_store)


@pytest.fixture
def shortcut_repository(json_store):
    yield ShortcutRepository(json_store)


@pytest.fixture
def user_repository(github_client):
    yield UserRepository(github_client)


@pytest.fixture
def memo_service(test_config, fake_github):
    """MemoService wired to the fake repository."""
    service = MemoService(test_config, http=fake_github.http_client(test_config))
    yield service
    service.close()


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the global metrics collector independent between tests."""
    metrics.reset()
    yield
    metrics.reset()
