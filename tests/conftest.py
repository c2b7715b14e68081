"""Pytest configuration and fixtures."""

import os

# Set before any tutor_guard import so cached settings and loggers see them
os.environ["TUTOR_GUARD_ENV"] = "test"
for key in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
    os.environ.pop(key, None)

import pytest  # noqa: E402

from tests.fakes.fake_settings import make_settings  # noqa: E402
from tutor_guard.core.config import Settings  # noqa: E402
from tutor_guard.db.memory_store import InMemoryMemoryStore, InMemoryProfileStore  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def memory_store() -> InMemoryMemoryStore:
    return InMemoryMemoryStore()


@pytest.fixture
def profile_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()
