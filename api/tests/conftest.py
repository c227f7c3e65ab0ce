"""
Pytest configuration and fixtures for the PR Reaction Bot API.

This module provides:
- Test settings with an isolated data directory
- A seeded identity store and an in-memory PR cache
- A ReconciliationEngine wired to the fake Slack Web API
- A FastAPI test client whose app.state is populated without the lifespan
"""

import shutil
import tempfile
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from prbot.core.config import Settings
from prbot.services.announcement import AnnouncementService
from prbot.services.coordination import InMemoryKeyedLock
from prbot.services.identity_repository import IdentityRepository
from prbot.services.pr_cache import InMemoryPRStateCache
from prbot.services.reaction_client import ReactionClient
from prbot.services.reconciliation import ReconciliationEngine
from tests.data import (
    STRICT_REPO_FULL_NAME,
    TEST_SIGNING_SECRET,
    TEST_WEBHOOK_SECRET,
    FakeSlack,
)


@pytest.fixture
def test_data_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test data.

    Yields:
        str: Path to the temporary test data directory
    """
    temp_dir = tempfile.mkdtemp(prefix="prbot_test_")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_settings(test_data_dir: str) -> Settings:
    """Create test settings with isolated test environment.

    Args:
        test_data_dir: Temporary directory for test data

    Returns:
        Settings: Configured settings instance for testing
    """
    return Settings(
        _env_file=None,
        DEBUG=True,
        ENVIRONMENT="testing",
        DATA_DIR=test_data_dir,
        GITHUB_WEBHOOK_SECRET=TEST_WEBHOOK_SECRET,
        SLACK_BOT_TOKEN="xoxb-test",
        SLACK_SIGNING_SECRET=TEST_SIGNING_SECRET,
        PR_CACHE_BACKEND="memory",
        TWO_APPROVAL_REPOS=STRICT_REPO_FULL_NAME,
    )


@pytest.fixture
def fake_slack() -> FakeSlack:
    return FakeSlack()


@pytest.fixture
def identity(test_settings: Settings) -> IdentityRepository:
    """Identity store seeded with three teams and one linked user."""
    repository = IdentityRepository(test_settings.IDENTITY_DB_PATH)
    repository.seed(
        {
            "backend": ["C-BACKEND"],
            "frontend": ["C-FRONTEND"],
            "platform": ["C-BACKEND", "C-PLATFORM"],
        },
        {"alice": "U-ALICE"},
    )
    return repository


@pytest.fixture
def pr_cache() -> InMemoryPRStateCache:
    return InMemoryPRStateCache(ttl_seconds=259200)


@pytest.fixture
def engine(
    test_settings: Settings,
    fake_slack: FakeSlack,
    identity: IdentityRepository,
    pr_cache: InMemoryPRStateCache,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        cache=pr_cache,
        reactions=ReactionClient(fake_slack, timeout=1.0),
        guard=InMemoryKeyedLock(),
        identity=identity,
        announcer=AnnouncementService(fake_slack, timeout=1.0),
        required_approvals=test_settings.required_approvals,
    )


@pytest.fixture
def test_client(
    test_settings: Settings,
    identity: IdentityRepository,
    pr_cache: InMemoryPRStateCache,
    engine: ReconciliationEngine,
) -> Generator[TestClient, None, None]:
    """FastAPI test client wired to the fake Slack engine.

    The lifespan is not entered (no `with` block), so app.state is populated
    here instead of at startup.
    """
    from prbot.main import app

    app.state.settings = test_settings
    app.state.identity = identity
    app.state.pr_cache = pr_cache
    app.state.engine = engine
    client = TestClient(app)
    yield client
    for name in ("settings", "identity", "pr_cache", "engine"):
        if hasattr(app.state, name):
            delattr(app.state, name)
