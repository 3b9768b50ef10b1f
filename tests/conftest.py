"""
Model Cache - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from model_cache.caching.backends import MemoryCacheBackend, TaggedMemoryCacheBackend
from model_cache.caching.executor import CachingQueryExecutor
from model_cache.config import ModelCacheSettings
from model_cache.database.executor import DatabaseQueryExecutor
from model_cache.manager import ModelCache
from model_cache.models.base import EntityType

# =============================================================================
# Schema
# =============================================================================

SCHEMA = [
    """
    create table users (
        id integer primary key autoincrement,
        name text not null,
        email text not null unique,
        active integer not null default 1,
        score integer not null default 0,
        deleted_at text,
        updated_at text
    )
    """,
    """
    create table roles (
        id integer primary key autoincrement,
        name text not null unique
    )
    """,
    """
    create table role_user (
        user_id integer not null,
        role_id integer not null,
        level integer,
        primary key (user_id, role_id)
    )
    """,
]

USERS = [
    {"name": "Ada", "email": "ada@example.com", "active": 1, "score": 10},
    {"name": "Grace", "email": "grace@example.com", "active": 1, "score": 20},
    {"name": "Linus", "email": "linus@example.com", "active": 0, "score": 5},
]

USER = EntityType(name="User", table="users", soft_deletes=True, per_page=2)
ADMIN = EntityType(name="Admin", table="users", soft_deletes=True)
ROLE = EntityType(name="Role", table="roles", updated_at_column=None)
ROLE_USER = EntityType(name="RoleUser", table="role_user", updated_at_column=None)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite database with the test schema and seed users."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.exec_driver_sql(statement)
        for user in USERS:
            conn.exec_driver_sql(
                "insert into users (name, email, active, score) values (?, ?, ?, ?)",
                (user["name"], user["email"], user["active"], user["score"]),
            )
        for name in ("admin", "editor"):
            conn.exec_driver_sql("insert into roles (name) values (?)", (name,))
    yield engine
    engine.dispose()


@pytest.fixture
def db_executor(engine: Engine) -> DatabaseQueryExecutor:
    """Non-caching executor over the test database."""
    return DatabaseQueryExecutor(engine, clock=lambda: "2024-01-01T00:00:00+00:00")


@pytest.fixture
def spy_executor(db_executor: DatabaseQueryExecutor) -> MagicMock:
    """The database executor wrapped so calls can be counted."""
    return MagicMock(spec=DatabaseQueryExecutor, wraps=db_executor)


# =============================================================================
# Cache
# =============================================================================


@pytest.fixture
def settings() -> ModelCacheSettings:
    return ModelCacheSettings(
        _env_file=None,
        enabled=True,
        cache_duration=60,
        cache_key_prefix="model_cache_",
        cache_store="tagged_memory",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tagged_backend(clock: FakeClock) -> TaggedMemoryCacheBackend:
    return TaggedMemoryCacheBackend(namespace="model_cache_", clock=clock)


@pytest.fixture
def untagged_backend(clock: FakeClock) -> MemoryCacheBackend:
    return MemoryCacheBackend(namespace="model_cache_", clock=clock)


@pytest.fixture
def model_cache(settings: ModelCacheSettings, tagged_backend: TaggedMemoryCacheBackend) -> ModelCache:
    return ModelCache(settings=settings, backend=tagged_backend)


@pytest.fixture
def caching_executor(model_cache: ModelCache, spy_executor: MagicMock) -> CachingQueryExecutor:
    """Caching executor in front of the counted database executor."""
    return model_cache.wrap(spy_executor)
