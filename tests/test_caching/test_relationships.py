"""
Tests for Relationship Invalidation
===================================

Tests for model_cache/caching/relationships.py
"""

from unittest.mock import MagicMock

import pytest

from model_cache.caching.relationships import (
    RelationshipInvalidationAdapter,
    pivot_changed,
)
from model_cache.database.base import PivotRelation
from model_cache.database.pivot import DatabasePivotTable
from model_cache.database.query import query_for
from model_cache.errors import ConfigurationError
from model_cache.manager import EntityCache
from tests.conftest import ROLE, ROLE_USER, USER


@pytest.fixture
def relation():
    relation = MagicMock(spec=PivotRelation)
    relation.attach.return_value = None
    relation.detach.return_value = 1
    relation.sync.return_value = {"attached": [2], "detached": [], "updated": []}
    relation.update_existing_pivot.return_value = 1
    relation.sync_without_detaching.return_value = {"attached": [], "detached": [], "updated": []}
    return relation


@pytest.fixture
def owner():
    return MagicMock(spec=EntityCache)


@pytest.fixture
def related_owner():
    return MagicMock(spec=EntityCache)


class TestPivotChanged:
    """Tests for pivot result interpretation."""

    @pytest.mark.parametrize("result, expected", [
        (None, True),
        (0, False),
        (2, True),
        ({"attached": [], "detached": [], "updated": []}, False),
        ({"attached": [], "detached": [3], "updated": []}, True),
    ])
    def test_pivot_changed(self, result, expected):
        """Test attach results, row counts and sync diffs."""
        assert pivot_changed(result) is expected


class TestRelationshipInvalidationAdapter:
    """Tests for RelationshipInvalidationAdapter."""

    def test_attach_invalidates_both_owners(self, relation, owner, related_owner):
        """Test attach flushes the owner and the related owner."""
        adapter = RelationshipInvalidationAdapter(relation, owner, related_owner)

        adapter.attach([2], {"level": 1})

        relation.attach.assert_called_once_with([2], {"level": 1})
        owner.flush_cache.assert_called_once_with("attach")
        related_owner.flush_cache.assert_called_once_with("attach")

    def test_results_pass_through(self, relation, owner):
        """Test the wrapped call's result is returned unchanged."""
        adapter = RelationshipInvalidationAdapter(relation, owner)

        assert adapter.detach([2]) == 1
        assert adapter.sync([2]) == {"attached": [2], "detached": [], "updated": []}
        assert adapter.update_existing_pivot(2, {"level": 3}) == 1
        assert owner.flush_cache.call_count == 3

    def test_no_change_skips_invalidation(self, relation, owner):
        """Test empty sync diffs and zero-row detaches do not flush."""
        relation.detach.return_value = 0
        adapter = RelationshipInvalidationAdapter(relation, owner)

        adapter.detach([9])
        adapter.sync_without_detaching([])

        owner.flush_cache.assert_not_called()

    def test_owner_without_flush_rejected(self, relation):
        """Test an owner that cannot invalidate is a configuration error."""
        with pytest.raises(ConfigurationError):
            RelationshipInvalidationAdapter(relation, object())

    def test_related_owner_without_flush_rejected(self, relation, owner):
        """Test the related owner is checked too."""
        with pytest.raises(ConfigurationError):
            RelationshipInvalidationAdapter(relation, owner, related_owner="roles")

    def test_relation_missing_operation_rejected(self, owner):
        """Test the relation must support every pivot operation."""
        class AttachOnly:
            def attach(self, ids, attributes=None):
                return None

        with pytest.raises(ConfigurationError):
            RelationshipInvalidationAdapter(AttachOnly(), owner)


class TestRelationshipEndToEnd:
    """Tests for pivot writes through the facade."""

    def test_attach_invalidates_cached_reads(self, model_cache, caching_executor, spy_executor, db_executor):
        """Test attaching a role drops cached user and role reads."""
        pivot = DatabasePivotTable(db_executor, ROLE_USER, "user_id", "role_id", parent_id=1)
        roles = model_cache.relationship(pivot, owner=USER, related_owner=ROLE)
        caching_executor.get(query_for(USER))
        caching_executor.get(query_for(ROLE))

        roles.attach([1, 2])
        caching_executor.get(query_for(USER))
        caching_executor.get(query_for(ROLE))

        assert pivot.related_ids() == [1, 2]
        assert spy_executor.get.call_count == 4

    def test_empty_sync_keeps_cache(self, model_cache, caching_executor, spy_executor, db_executor):
        """Test a sync that changes nothing keeps cached reads."""
        pivot = DatabasePivotTable(db_executor, ROLE_USER, "user_id", "role_id", parent_id=1)
        pivot.attach([1])
        roles = model_cache.relationship(pivot, owner=USER)
        caching_executor.get(query_for(USER))

        changes = roles.sync([1])
        caching_executor.get(query_for(USER))

        assert changes == {"attached": [], "detached": [], "updated": []}
        assert spy_executor.get.call_count == 1
