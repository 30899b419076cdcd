"""Pytest configuration and fixtures for streamrelay tests."""

import os
from uuid import uuid4

# Set test environment variables BEFORE importing streamrelay modules
# This ensures the Settings singleton loads with test values
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OPENAI_API_KEY"] = "test-openai-key"
os.environ["RELAY_STORE_BACKEND"] = "memory"
os.environ["GITHUB_CLIENT_ID"] = ""

import pytest

from streamrelay.config import settings
from streamrelay.db import create_engine, create_session_factory, init_db
from streamrelay.services import (
    InMemoryTaskStore,
    PollPolicy,
    SqlTaskStore,
    build_services,
)
from tests.factories import FakeProvider


@pytest.fixture
def memory_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
async def sql_store(tmp_path):
    """SQL store on a throwaway SQLite file, schema created from the models."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await init_db(engine)
    store = SqlTaskStore(create_session_factory(engine), engine=engine)
    yield store
    await store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run a test against both store backends."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fast_policy() -> PollPolicy:
    """Poll schedule short enough for tests."""
    return PollPolicy(initial_seconds=0.01, max_seconds=0.02, backoff=2.0, timeout_seconds=5.0)


@pytest.fixture
def services(memory_store, fake_provider, fast_policy):
    return build_services(settings, store=memory_store, provider=fake_provider, policy=fast_policy)


@pytest.fixture
def test_user_id() -> str:
    """Generate a unique user ID for test isolation."""
    return f"user-{uuid4().hex[:12]}"
