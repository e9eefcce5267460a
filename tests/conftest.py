"""Shared pytest fixtures for backlog-jira-sync tests."""

import pytest
from dotenv import load_dotenv

from backlog_jira_sync.config import Config
from backlog_jira_sync.sync.store import SyncStore

load_dotenv()

JIRA_ENV_VARS = (
    "JIRA_URL",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "JIRA_PROJECT",
    "JIRA_ISSUE_TYPE",
    "JIRA_INSECURE",
    "BACKLOG_JIRA_DEBUG",
    "BACKLOG_JIRA_BATCH_SIZE",
    "BACKLOG_JIRA_CONFIG",
    "LOG_LEVEL",
)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require live Jira and Backlog instances",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the tool reads."""
    for name in JIRA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        jira_url="https://example.atlassian.net",
        email="dev@example.com",
        api_token="secret-token",
        project_key="PROJ",
    )


@pytest.fixture
def store():
    """In-memory sync store, closed after the test."""
    with SyncStore() as s:
        yield s
