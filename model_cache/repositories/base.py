"""
Entity Repository

Singular lifecycle operations over one entity type, with explicit
callback registration for the events each operation fires.
"""

from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from model_cache.database.base import QueryExecutor, Row
from model_cache.database.query import Query, query_for
from model_cache.errors import ConfigurationError
from model_cache.models.base import EntityType

logger = structlog.get_logger(__name__)

LIFECYCLE_EVENTS = ("created", "updated", "saved", "deleted", "restored")


@dataclass(frozen=True)
class LifecycleEvent:
    """A completed write on one entity, handed to listeners."""

    name: str
    entity_type: EntityType
    key: Any
    record: Row | None = None


LifecycleCallback = Callable[[LifecycleEvent], None]


class EntityRepository:
    """
    Lifecycle operations for one entity type.

    Events fire only after the underlying write has completed and reported
    a change. Listener exceptions propagate to the caller.
    """

    def __init__(self, entity_type: EntityType, executor: QueryExecutor):
        """
        Initialize repository with an executor.

        Args:
            entity_type: Entity type this repository manages
            executor: Executor that runs the reads and writes
        """
        self.entity_type = entity_type
        self.executor = executor
        self.logger = structlog.get_logger(self.__class__.__name__)
        self._listeners: dict[str, list[LifecycleCallback]] = defaultdict(list)
        self._quiet_listeners: list[LifecycleCallback] = []

    def on(self, event: str, callback: LifecycleCallback) -> LifecycleCallback:
        """
        Register a callback for a lifecycle event.

        Args:
            event: One of created, updated, saved, deleted, restored
            callback: Called with the LifecycleEvent after the write

        Returns:
            The callback, so this can be used as a decorator factory

        Raises:
            ConfigurationError: If the event name is unknown
        """
        if event not in LIFECYCLE_EVENTS:
            raise ConfigurationError(
                f"Unknown lifecycle event '{event}'; expected one of {', '.join(LIFECYCLE_EVENTS)}"
            )
        self._listeners[event].append(callback)
        return callback

    def listeners(self, event: str) -> list[LifecycleCallback]:
        return list(self._listeners.get(event, ()))

    def on_quiet_write(self, callback: LifecycleCallback) -> LifecycleCallback:
        """
        Register a callback for writes made through the ``*_quietly`` methods.

        Quiet writes skip the lifecycle listeners; these callbacks receive an
        event named after the operation, e.g. ``update_quietly``.
        """
        self._quiet_listeners.append(callback)
        return callback

    def quiet_write_listeners(self) -> list[LifecycleCallback]:
        return list(self._quiet_listeners)

    def _fire(self, *events: str, key: Any, record: Row | None = None) -> None:
        for name in events:
            event = LifecycleEvent(name=name, entity_type=self.entity_type, key=key, record=record)
            for callback in self._listeners.get(name, ()):
                callback(event)
            self.logger.debug("entity_event_fired", lifecycle_event=name, entity=self.entity_type.name, key=key)

    def _fire_quiet(self, operation: str, key: Any) -> None:
        event = LifecycleEvent(name=operation, entity_type=self.entity_type, key=key)
        for callback in self._quiet_listeners:
            callback(event)

    # =========================================================================
    # Reads
    # =========================================================================

    def query(self) -> Query:
        return query_for(self.entity_type)

    def _by_key(self, key: Any) -> Query:
        return self.query().where_equals(self.entity_type.primary_key, key)

    def find(self, key: Any, with_trashed: bool = False) -> Row | None:
        """Fetch one row by primary key, or None."""
        query = self._by_key(key)
        if with_trashed:
            query = query.with_trashed()
        return self.executor.first(query)

    # =========================================================================
    # Writes
    # =========================================================================

    def create(self, attributes: Mapping[str, Any]) -> Row:
        """
        Insert a row and fire ``created`` then ``saved``.

        Returns:
            The stored row as read back, or the attributes plus the new key
        """
        key = self.executor.insert_get_id(self.entity_type, attributes)
        record = self.find(key) or {**attributes, self.entity_type.primary_key: key}
        self.logger.info("entity_created", entity=self.entity_type.name, key=key)
        self._fire("created", "saved", key=key, record=record)
        return record

    def update(self, key: Any, values: Mapping[str, Any]) -> int:
        """Update one row; fires ``updated`` then ``saved`` if it changed."""
        affected = self.executor.update(self._by_key(key), values)
        if affected > 0:
            self._fire("updated", "saved", key=key, record=dict(values))
        return affected

    def save(self, attributes: Mapping[str, Any]) -> Row:
        """Update the row named by the primary key if it exists, else create it."""
        pk = self.entity_type.primary_key
        key = attributes.get(pk)
        if key is not None and self.find(key) is not None:
            values = {c: v for c, v in attributes.items() if c != pk}
            if values:
                self.update(key, values)
            return self.find(key) or dict(attributes)
        return self.create(attributes)

    def delete(self, key: Any) -> bool:
        """Delete (or soft delete) one row; fires ``deleted``."""
        deleted = self.executor.delete(self._by_key(key)) > 0
        if deleted:
            self._fire("deleted", key=key)
        return deleted

    def force_delete(self, key: Any) -> bool:
        """Permanently delete one row, trashed or not; fires ``deleted``."""
        deleted = self.executor.force_delete(self._by_key(key).with_trashed()) > 0
        if deleted:
            self._fire("deleted", key=key)
        return deleted

    def restore(self, key: Any) -> bool:
        """Clear a soft delete; fires ``restored``."""
        restored = self.executor.restore(self._by_key(key)) > 0
        if restored:
            self._fire("restored", key=key, record=self.find(key))
        return restored

    def first_or_create(
        self,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> Row:
        """
        Return the first row matching ``attributes``, creating it if none does.

        Only the create path fires events; a found row writes nothing.

        Args:
            attributes: Column values to match on
            values: Extra column values used only when creating

        Returns:
            The existing or newly created row
        """
        query = self.query()
        for column, value in attributes.items():
            query = query.where_equals(column, value)
        existing = self.executor.first(query)
        if existing is not None:
            return existing
        return self.create({**attributes, **(values or {})})

    def create_many(self, records: Iterable[Mapping[str, Any]]) -> list[Row]:
        """Create each record in turn; every create fires its own events."""
        return [self.create(attributes) for attributes in records]

    def save_many(self, records: Iterable[Mapping[str, Any]]) -> list[Row]:
        """Save each record in turn."""
        return [self.save(attributes) for attributes in records]

    # =========================================================================
    # Quiet writes
    # =========================================================================

    def update_quietly(self, key: Any, values: Mapping[str, Any]) -> int:
        """Update one row without firing lifecycle events."""
        affected = self.executor.update(self._by_key(key), values)
        if affected > 0:
            self._fire_quiet("update_quietly", key)
        return affected

    def delete_quietly(self, key: Any) -> bool:
        """Delete (or soft delete) one row without firing lifecycle events."""
        deleted = self.executor.delete(self._by_key(key)) > 0
        if deleted:
            self._fire_quiet("delete_quietly", key)
        return deleted
