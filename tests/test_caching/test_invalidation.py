"""
Tests for Scope Invalidation
============================

Tests for model_cache/caching/invalidation.py
"""

from unittest.mock import MagicMock

import pytest

from model_cache.caching.backends import TaggedCacheBackend
from model_cache.caching.invalidation import (
    InvalidationEvent,
    InvalidationStats,
    InvalidationStrategy,
    ScopeInvalidator,
)
from model_cache.caching.tags import TagScopeResolver
from model_cache.errors import BackendUnavailableError
from tests.conftest import ADMIN, ROLE, USER

USER_TAGS = ("model_cache", "entity:User", "table:users")
ADMIN_TAGS = ("model_cache", "entity:Admin", "table:users")
ROLE_TAGS = ("model_cache", "entity:Role", "table:roles")


@pytest.fixture
def failing_tagged_backend():
    """Tagged backend whose tag flush fails."""
    backend = MagicMock(spec=TaggedCacheBackend)
    backend.namespace = "model_cache_"
    backend.tags.return_value.flush.side_effect = BackendUnavailableError("down")
    return backend


class TestInvalidationStats:
    """Tests for InvalidationStats dataclass."""

    def test_defaults(self):
        """Test default values."""
        stats = InvalidationStats()

        assert stats.events_received == 0
        assert stats.tag_flushes == 0
        assert stats.full_flushes == 0
        assert stats.failures == 0
        assert stats.errors == 0


class TestTaggedInvalidation:
    """Tests for invalidation against a tagged backend."""

    def test_invalidate_entity_scope(self, tagged_backend):
        """Test only the entity's entries (and its table's) are dropped."""
        tagged_backend.set("model_cache_user", b"1", 60, USER_TAGS)
        tagged_backend.set("model_cache_role", b"2", 60, ROLE_TAGS)
        invalidator = ScopeInvalidator(tagged_backend)

        assert invalidator.flush_entity(USER) is True

        assert tagged_backend.get("model_cache_user") is None
        assert tagged_backend.get("model_cache_role") == b"2"
        assert invalidator.get_stats().tag_flushes == 1

    def test_shared_table_is_invalidated(self, tagged_backend):
        """Test invalidating one entity reaches others on the same table."""
        tagged_backend.set("model_cache_admin", b"1", 60, ADMIN_TAGS)
        invalidator = ScopeInvalidator(tagged_backend)

        invalidator.flush_entity(USER)

        assert tagged_backend.get("model_cache_admin") is None

    def test_flush_all(self, tagged_backend):
        """Test flush_all drops every model cache entry."""
        tagged_backend.set("model_cache_user", b"1", 60, USER_TAGS)
        tagged_backend.set("model_cache_role", b"2", 60, ROLE_TAGS)

        assert ScopeInvalidator(tagged_backend).flush_all() is True

        assert len(tagged_backend) == 0

    def test_failed_tag_flush_falls_back_to_full_flush(self, failing_tagged_backend):
        """Test a tag flush failure is recovered with a full flush."""
        invalidator = ScopeInvalidator(failing_tagged_backend)

        assert invalidator.flush_entity(USER, "update") is True

        failing_tagged_backend.tags.assert_called_once_with(("entity:User", "table:users"))
        failing_tagged_backend.flush.assert_called_once()
        stats = invalidator.get_stats()
        assert stats.failures == 1
        assert stats.full_flushes == 1

    def test_fallback_failure_returns_false(self, failing_tagged_backend):
        """Test a failing fallback is logged and reported, never raised."""
        failing_tagged_backend.flush.side_effect = BackendUnavailableError("still down")
        invalidator = ScopeInvalidator(failing_tagged_backend)

        assert invalidator.flush_entity(USER) is False
        assert invalidator.get_stats().errors == 1

    def test_capability_checked_once(self, tagged_backend):
        """Test tag support is read at construction."""
        invalidator = ScopeInvalidator(tagged_backend)

        assert invalidator.supports_tags is True


class TestUntaggedInvalidation:
    """Tests for invalidation against a backend without tags."""

    def test_full_flush(self, untagged_backend):
        """Test any invalidation flushes the whole namespace."""
        untagged_backend.set("model_cache_user", b"1", 60, USER_TAGS)
        untagged_backend.set("model_cache_role", b"2", 60, ROLE_TAGS)
        invalidator = ScopeInvalidator(untagged_backend)

        assert invalidator.flush_entity(USER) is True

        assert len(untagged_backend) == 0
        assert invalidator.get_stats().full_flushes == 1
        assert invalidator.supports_tags is False


class TestCallbacks:
    """Tests for invalidation callbacks."""

    def test_callback_receives_event(self, tagged_backend):
        """Test callbacks see scope, operation and strategy."""
        events: list[InvalidationEvent] = []
        invalidator = ScopeInvalidator(tagged_backend, TagScopeResolver())
        invalidator.register_callback(events.append)

        invalidator.flush_entity(ROLE, "deleted")

        assert len(events) == 1
        assert events[0].operation == "deleted"
        assert events[0].scope.entity_tag == "entity:Role"
        assert events[0].strategy == InvalidationStrategy.TAGS

    def test_full_flush_event_strategy(self, untagged_backend):
        """Test full flushes are reported as such."""
        events: list[InvalidationEvent] = []
        invalidator = ScopeInvalidator(untagged_backend)
        invalidator.register_callback(events.append)

        invalidator.flush_entity(USER)

        assert events[0].strategy == InvalidationStrategy.FULL_FLUSH

    def test_callback_error_does_not_propagate(self, tagged_backend):
        """Test a failing callback does not break invalidation."""
        invalidator = ScopeInvalidator(tagged_backend)
        invalidator.register_callback(MagicMock(side_effect=RuntimeError("boom")))

        assert invalidator.flush_entity(USER) is True
