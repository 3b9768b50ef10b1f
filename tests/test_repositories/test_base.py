"""
Tests for the Entity Repository
===============================

Tests for model_cache/repositories/base.py
"""

from unittest.mock import MagicMock

import pytest

from model_cache.errors import ConfigurationError
from model_cache.repositories.base import EntityRepository, LifecycleEvent
from tests.conftest import USER


@pytest.fixture
def users(db_executor):
    return EntityRepository(USER, db_executor)


@pytest.fixture
def events(users):
    """Names of every lifecycle event fired, in order."""
    fired: list[str] = []
    for name in ("created", "updated", "saved", "deleted", "restored"):
        users.on(name, lambda event: fired.append(event.name))
    return fired


class TestEntityRepository:
    """Tests for EntityRepository."""

    def test_find(self, users):
        """Test lookup by primary key."""
        assert users.find(1)["name"] == "Ada"
        assert users.find(999) is None

    def test_create(self, users, events):
        """Test create returns the stored row and fires created, saved."""
        record = users.create({"name": "Alan", "email": "alan@example.com"})

        assert record["id"] == 4
        assert record["active"] == 1
        assert events == ["created", "saved"]

    def test_update(self, users, events):
        """Test update fires updated, saved only when a row changed."""
        assert users.update(1, {"score": 50}) == 1
        assert users.update(999, {"score": 50}) == 0

        assert users.find(1)["score"] == 50
        assert events == ["updated", "saved"]

    def test_save_existing(self, users, events):
        """Test save updates when the primary key exists."""
        record = users.save({"id": 2, "name": "Grace H."})

        assert record["name"] == "Grace H."
        assert events == ["updated", "saved"]

    def test_save_new(self, users, events):
        """Test save creates when there is no primary key."""
        record = users.save({"name": "Alan", "email": "alan@example.com"})

        assert record["id"] == 4
        assert events == ["created", "saved"]

    def test_delete_and_restore(self, users, events):
        """Test soft delete hides the row and restore brings it back."""
        assert users.delete(1) is True
        assert users.find(1) is None
        assert users.find(1, with_trashed=True)["deleted_at"] is not None

        assert users.restore(1) is True
        assert users.find(1)["deleted_at"] is None
        assert events == ["deleted", "restored"]

    def test_delete_missing(self, users, events):
        """Test deleting a missing row fires nothing."""
        assert users.delete(999) is False
        assert events == []

    def test_force_delete(self, users, events):
        """Test force delete removes trashed rows."""
        users.delete(1)

        assert users.force_delete(1) is True
        assert users.find(1, with_trashed=True) is None
        assert events == ["deleted", "deleted"]

    def test_event_payload(self, users):
        """Test listeners receive the entity type, key and record."""
        listener = MagicMock()
        users.on("created", listener)

        users.create({"name": "Alan", "email": "alan@example.com"})

        event = listener.call_args.args[0]
        assert isinstance(event, LifecycleEvent)
        assert event.entity_type == USER
        assert event.key == 4
        assert event.record["email"] == "alan@example.com"

    def test_unknown_event_rejected(self, users):
        """Test only lifecycle events can be subscribed."""
        with pytest.raises(ConfigurationError):
            users.on("creating", lambda event: None)

    def test_listener_errors_propagate(self, users):
        """Test a failing listener surfaces to the caller."""
        users.on("deleted", MagicMock(side_effect=RuntimeError("listener failed")))

        with pytest.raises(RuntimeError):
            users.delete(1)

    def test_first_or_create_existing(self, users, events):
        """Test a matching row is returned without writing."""
        record = users.first_or_create({"email": "grace@example.com"}, {"name": "Other"})

        assert record["id"] == 2
        assert record["name"] == "Grace"
        assert events == []

    def test_first_or_create_new(self, users, events):
        """Test a missing row is created from the attributes and values."""
        record = users.first_or_create({"email": "alan@example.com"}, {"name": "Alan"})

        assert record["id"] == 4
        assert record["name"] == "Alan"
        assert events == ["created", "saved"]

    def test_create_many(self, users, events):
        """Test each record is created and fires its own events."""
        records = users.create_many([
            {"name": "Alan", "email": "alan@example.com"},
            {"name": "Barbara", "email": "barbara@example.com"},
        ])

        assert [record["id"] for record in records] == [4, 5]
        assert events == ["created", "saved", "created", "saved"]

    def test_save_many(self, users, events):
        """Test save_many updates existing rows and creates new ones."""
        records = users.save_many([
            {"id": 1, "score": 99},
            {"name": "Alan", "email": "alan@example.com"},
        ])

        assert records[0]["score"] == 99
        assert records[1]["id"] == 4
        assert events == ["updated", "saved", "created", "saved"]

    def test_update_quietly(self, users, events):
        """Test a quiet update writes without lifecycle events."""
        quiet = MagicMock()
        users.on_quiet_write(quiet)

        assert users.update_quietly(1, {"score": 42}) == 1
        assert users.update_quietly(999, {"score": 42}) == 0

        assert users.find(1)["score"] == 42
        assert events == []
        event = quiet.call_args.args[0]
        assert quiet.call_count == 1
        assert event.name == "update_quietly"
        assert event.key == 1

    def test_delete_quietly(self, users, events):
        """Test a quiet delete soft deletes without lifecycle events."""
        quiet = MagicMock()
        users.on_quiet_write(quiet)

        assert users.delete_quietly(3) is True
        assert users.find(3) is None
        assert events == []
        assert quiet.call_args.args[0].name == "delete_quietly"
