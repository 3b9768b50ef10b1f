"""
Query Executor Interface

The contract between the caching layer and whatever actually runs
queries. Reads return plain rows (``dict`` per row), scalars or a ``Page``;
mutations report success or an affected-row count so callers can tell a
no-op from a real write.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from model_cache.database.query import Query
from model_cache.models.base import EntityType, Page

Row = dict[str, Any]
Rows = Mapping[str, Any] | Sequence[Mapping[str, Any]]


@runtime_checkable
class QueryExecutor(Protocol):
    """Executes reads and mutations for ``Query`` objects."""

    # Reads
    def get(self, query: Query, columns: Sequence[str] | None = None) -> list[Row]: ...

    def first(self, query: Query, columns: Sequence[str] | None = None) -> Row | None: ...

    def count(self, query: Query, column: str = "*") -> int: ...

    def sum(self, query: Query, column: str) -> Any: ...

    def min(self, query: Query, column: str) -> Any: ...

    def max(self, query: Query, column: str) -> Any: ...

    def avg(self, query: Query, column: str) -> Any: ...

    def paginate(
        self,
        query: Query,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
        page_name: str = "page",
    ) -> Page: ...

    # Mutations
    def insert(self, entity: EntityType, rows: Rows) -> bool: ...

    def insert_get_id(self, entity: EntityType, values: Mapping[str, Any]) -> Any: ...

    def insert_or_ignore(self, entity: EntityType, rows: Rows) -> int: ...

    def update(self, query: Query, values: Mapping[str, Any]) -> int: ...

    def update_or_insert(
        self,
        entity: EntityType,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> bool: ...

    def upsert(
        self,
        entity: EntityType,
        rows: Rows,
        unique_by: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int: ...

    def increment(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int: ...

    def decrement(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int: ...

    def delete(self, query: Query) -> int: ...

    def force_delete(self, query: Query) -> int: ...

    def restore(self, query: Query) -> int: ...

    def truncate(self, entity: EntityType) -> bool: ...

    def touch(self, query: Query, column: str | None = None) -> int: ...


def normalize_rows(rows: Rows) -> list[dict[str, Any]]:
    """Accept one mapping or a sequence of mappings."""
    if isinstance(rows, Mapping):
        return [dict(rows)]
    return [dict(r) for r in rows]


@runtime_checkable
class PivotRelation(Protocol):
    """Many-to-many pivot rows owned by one parent entity."""

    def attach(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> None: ...

    def detach(self, ids: Any = None) -> int: ...

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]: ...

    def update_existing_pivot(self, id: Any, attributes: Mapping[str, Any]) -> int: ...

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]: ...
