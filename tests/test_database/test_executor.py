"""
Tests for the Database Query Executor
=====================================

Tests for model_cache/database/executor.py against in-memory SQLite.
"""

import pytest

from model_cache.database.base import QueryExecutor
from model_cache.database.query import query_for
from model_cache.errors import ConfigurationError
from model_cache.models.base import Page
from tests.conftest import ROLE, USER


def _user(db_executor, user_id):
    return db_executor.first(query_for(USER).with_trashed().where_equals("id", user_id))


class TestReads:
    """Tests for read operations."""

    def test_satisfies_protocol(self, db_executor):
        """Test the executor implements QueryExecutor."""
        assert isinstance(db_executor, QueryExecutor)

    def test_get_returns_dict_rows(self, db_executor):
        """Test rows come back as plain dicts."""
        rows = db_executor.get(query_for(ROLE).order_by("id"))

        assert rows == [{"id": 1, "name": "admin"}, {"id": 2, "name": "editor"}]

    def test_first(self, db_executor):
        """Test first returns one row or None."""
        assert db_executor.first(query_for(ROLE).where_equals("name", "editor"))["id"] == 2
        assert db_executor.first(query_for(ROLE).where_equals("name", "nobody")) is None

    def test_aggregates(self, db_executor):
        """Test aggregate helpers."""
        query = query_for(USER)

        assert db_executor.count(query) == 3
        assert db_executor.sum(query, "score") == 35
        assert db_executor.min(query, "score") == 5
        assert db_executor.max(query, "score") == 20
        assert db_executor.avg(query, "score") == pytest.approx(35 / 3)

    def test_sum_of_nothing_is_zero(self, db_executor):
        """Test sum over no rows is 0 rather than None."""
        assert db_executor.sum(query_for(USER).where_equals("id", 999), "score") == 0

    def test_paginate(self, db_executor):
        """Test pagination uses the entity's page size by default."""
        page = db_executor.paginate(query_for(USER).order_by("id"), page=2)

        assert isinstance(page, Page)
        assert page.total == 3
        assert page.per_page == 2
        assert [row["name"] for row in page.items] == ["Linus"]
        assert page.has_more_pages is False

    def test_paginate_rejects_bad_page(self, db_executor):
        """Test page numbers start at 1."""
        with pytest.raises(ConfigurationError):
            db_executor.paginate(query_for(USER), page=0)


class TestMutations:
    """Tests for mutation operations."""

    def test_insert(self, db_executor):
        """Test single and multi-row inserts."""
        assert db_executor.insert(ROLE, [{"name": "viewer"}, {"name": "owner"}]) is True

        assert db_executor.count(query_for(ROLE)) == 4

    def test_insert_rejects_mixed_columns(self, db_executor):
        """Test every inserted row must share the same columns."""
        with pytest.raises(ConfigurationError):
            db_executor.insert(ROLE, [{"name": "a"}, {"id": 9, "name": "b"}])

    def test_insert_get_id(self, db_executor):
        """Test the generated key is returned."""
        new_id = db_executor.insert_get_id(ROLE, {"name": "viewer"})

        assert new_id == 3

    def test_insert_or_ignore(self, db_executor):
        """Test duplicates are skipped and counted as 0 rows."""
        assert db_executor.insert_or_ignore(ROLE, [{"name": "admin"}, {"name": "viewer"}]) == 1

    def test_update(self, db_executor):
        """Test update reports affected rows."""
        assert db_executor.update(query_for(USER).where_equals("active", 1), {"score": 0}) == 2
        assert db_executor.update(query_for(USER).where_equals("id", 999), {"score": 0}) == 0

    def test_update_or_insert(self, db_executor):
        """Test update_or_insert updates a match or inserts a new row."""
        assert db_executor.update_or_insert(USER, {"email": "ada@example.com"}, {"score": 1}) is True
        assert db_executor.update_or_insert(
            USER, {"email": "alan@example.com"}, {"name": "Alan"}
        ) is True

        assert _user(db_executor, 1)["score"] == 1
        assert db_executor.count(query_for(USER)) == 4

    def test_upsert(self, db_executor):
        """Test upsert updates on conflict and inserts otherwise."""
        affected = db_executor.upsert(
            USER,
            [
                {"name": "Ada L.", "email": "ada@example.com"},
                {"name": "Alan", "email": "alan@example.com"},
            ],
            unique_by=["email"],
        )

        assert affected == 2
        assert _user(db_executor, 1)["name"] == "Ada L."
        assert db_executor.count(query_for(USER)) == 4

    def test_increment_and_decrement(self, db_executor):
        """Test arithmetic updates with extra columns."""
        one = query_for(USER).where_equals("id", 1)

        assert db_executor.increment(one, "score", 5, {"name": "Ada!"}) == 1
        assert db_executor.decrement(one, "score", 2) == 1
        assert _user(db_executor, 1)["score"] == 13
        assert _user(db_executor, 1)["name"] == "Ada!"

    def test_increment_rejects_non_numeric(self, db_executor):
        """Test amounts must be numbers."""
        with pytest.raises(ConfigurationError):
            db_executor.increment(query_for(USER), "score", "5")

    def test_soft_delete_and_restore(self, db_executor):
        """Test delete stamps deleted_at and restore clears it."""
        one = query_for(USER).where_equals("id", 1)

        assert db_executor.delete(one) == 1
        assert db_executor.count(query_for(USER)) == 2
        assert _user(db_executor, 1)["deleted_at"] == "2024-01-01T00:00:00+00:00"

        assert db_executor.restore(one) == 1
        assert db_executor.restore(one) == 0
        assert db_executor.count(query_for(USER)) == 3

    def test_force_delete_includes_trashed(self, db_executor):
        """Test force_delete removes soft-deleted rows too."""
        one = query_for(USER).where_equals("id", 1)
        db_executor.delete(one)

        assert db_executor.force_delete(one) == 1
        assert _user(db_executor, 1) is None

    def test_hard_delete(self, db_executor):
        """Test entities without soft deletes are removed."""
        assert db_executor.delete(query_for(ROLE).where_equals("id", 1)) == 1
        assert db_executor.count(query_for(ROLE)) == 1

    def test_restore_requires_soft_deletes(self, db_executor):
        """Test restore on a hard-deleting entity is a configuration error."""
        with pytest.raises(ConfigurationError):
            db_executor.restore(query_for(ROLE))

    def test_truncate(self, db_executor):
        """Test truncate removes every row."""
        assert db_executor.truncate(ROLE) is True
        assert db_executor.count(query_for(ROLE)) == 0

    def test_touch(self, db_executor):
        """Test touch stamps the updated_at column."""
        assert db_executor.touch(query_for(USER).where_equals("id", 2)) == 1
        assert _user(db_executor, 2)["updated_at"] == "2024-01-01T00:00:00+00:00"

    def test_touch_without_timestamp_column(self, db_executor):
        """Test touch needs a timestamp column."""
        with pytest.raises(ConfigurationError):
            db_executor.touch(query_for(ROLE))
