"""
Database Pivot Table
====================

Reference ``PivotRelation`` over a many-to-many pivot table, scoped to one
parent row. Pivot mutations never touch the parent's own row, which is why
the caching layer wraps them separately.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from model_cache.database.executor import DatabaseQueryExecutor
from model_cache.database.query import Query, query_for
from model_cache.models.base import EntityType, validate_identifier

logger = structlog.get_logger(__name__)


def _parse_ids(ids: Any) -> dict[Any, dict[str, Any]]:
    """
    Normalize the accepted id forms into ``{id: pivot_attributes}``.

    Accepts a single id, an iterable of ids, or a mapping of id to pivot
    attributes.
    """
    if ids is None:
        return {}
    if isinstance(ids, Mapping):
        return {key: dict(attrs or {}) for key, attrs in ids.items()}
    if isinstance(ids, (str, bytes)) or not isinstance(ids, Iterable):
        return {ids: {}}
    return {item: {} for item in ids}


class DatabasePivotTable:
    """Pivot rows linking one parent id to many related ids."""

    def __init__(
        self,
        executor: DatabaseQueryExecutor,
        pivot: EntityType,
        foreign_pivot_key: str,
        related_pivot_key: str,
        parent_id: Any,
    ) -> None:
        """
        Initialize the pivot relation.

        Args:
            executor: Executor used for pivot reads and writes
            pivot: Entity type describing the pivot table
            foreign_pivot_key: Pivot column holding the parent id
            related_pivot_key: Pivot column holding the related id
            parent_id: Id of the owning parent row
        """
        self._executor = executor
        self.pivot = pivot
        self.foreign_pivot_key = validate_identifier(foreign_pivot_key, "foreign_pivot_key")
        self.related_pivot_key = validate_identifier(related_pivot_key, "related_pivot_key")
        self.parent_id = parent_id

    def _query(self) -> Query:
        return query_for(self.pivot).where_equals(self.foreign_pivot_key, self.parent_id)

    def related_ids(self) -> list[Any]:
        rows = self._executor.get(self._query(), [self.related_pivot_key])
        return [row[self.related_pivot_key] for row in rows]

    def attach(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> None:
        records = [
            {
                self.foreign_pivot_key: self.parent_id,
                self.related_pivot_key: related_id,
                **(attributes or {}),
                **extra,
            }
            for related_id, extra in _parse_ids(ids).items()
        ]
        if records:
            # Rows with differing pivot columns cannot share one statement
            for record in records:
                self._executor.insert(self.pivot, record)

    def detach(self, ids: Any = None) -> int:
        query = self._query()
        if ids is not None:
            targets = list(_parse_ids(ids))
            if not targets:
                return 0
            query = query.where_in(self.related_pivot_key, targets)
        return self._executor.force_delete(query)

    def update_existing_pivot(self, id: Any, attributes: Mapping[str, Any]) -> int:
        query = self._query().where_equals(self.related_pivot_key, id)
        return self._executor.update(query, attributes)

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        """
        Make the pivot rows match ``ids``.

        Returns:
            Dict with ``attached``, ``detached`` and ``updated`` id lists
        """
        changes: dict[str, list[Any]] = {"attached": [], "detached": [], "updated": []}
        wanted = _parse_ids(ids)
        current = self.related_ids()

        if detaching:
            stale = [related_id for related_id in current if related_id not in wanted]
            if stale:
                self.detach(stale)
                changes["detached"] = stale

        for related_id, attributes in wanted.items():
            if related_id not in current:
                self.attach({related_id: attributes})
                changes["attached"].append(related_id)
            elif attributes and self.update_existing_pivot(related_id, attributes):
                changes["updated"].append(related_id)

        logger.debug(
            "pivot_synced",
            pivot=self.pivot.table,
            parent_id=self.parent_id,
            attached=len(changes["attached"]),
            detached=len(changes["detached"]),
            updated=len(changes["updated"]),
        )
        return changes

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]:
        return self.sync(ids, detaching=False)
