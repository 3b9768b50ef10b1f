"""
Database Query Executor
=======================

Non-caching ``QueryExecutor`` over a SQLAlchemy ``Engine``.

Statements are rendered with ``?`` placeholders and sent through
``exec_driver_sql``, so the engine's driver must use the qmark paramstyle
(SQLite does). Each mutation runs in its own transaction and reports the
driver's affected-row count.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import Engine

from model_cache.database.base import Row, Rows, normalize_rows
from model_cache.database.query import Query, query_for, render_columns
from model_cache.errors import ConfigurationError
from model_cache.models.base import EntityType, Page, validate_identifier

logger = structlog.get_logger(__name__)


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


class DatabaseQueryExecutor:
    """
    Executes ``Query`` reads and mutations against a relational database.

    Rows come back as plain dicts so results are JSON-friendly.
    """

    def __init__(self, engine: Engine, clock: Callable[[], Any] | None = None) -> None:
        """
        Initialize the executor.

        Args:
            engine: SQLAlchemy engine with a qmark-paramstyle driver
            clock: Returns the timestamp written by soft deletes and touch()
        """
        self._engine = engine
        self._clock = clock or _utcnow

    # =========================================================================
    # Low-level helpers
    # =========================================================================

    def select(self, sql: str, bindings: Sequence[Any] = ()) -> list[Row]:
        """Run a select and return rows as dicts."""
        with self._engine.connect() as conn:
            result = conn.exec_driver_sql(sql, tuple(bindings))
            rows = [dict(row) for row in result.mappings()]
        logger.debug("query_selected", sql=sql, rows=len(rows))
        return rows

    def statement(self, sql: str, bindings: Sequence[Any] = ()) -> int:
        """Run a write statement in its own transaction; returns affected rows."""
        return self.statement_many(sql, [tuple(bindings)])

    def statement_many(self, sql: str, binding_sets: Sequence[tuple[Any, ...]]) -> int:
        """Run one statement per binding set inside a single transaction."""
        affected = 0
        with self._engine.begin() as conn:
            for bindings in binding_sets:
                result = conn.exec_driver_sql(sql, bindings)
                affected += max(result.rowcount, 0)
        logger.debug("statement_executed", sql=sql, affected=affected)
        return affected

    def _scalar(self, sql: str, bindings: Sequence[Any]) -> Any:
        rows = self.select(sql, bindings)
        return rows[0]["aggregate"] if rows else None

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, query: Query, columns: Sequence[str] | None = None) -> list[Row]:
        return self.select(query.to_sql(columns), query.bindings)

    def first(self, query: Query, columns: Sequence[str] | None = None) -> Row | None:
        rows = self.get(query.take(1), columns)
        return rows[0] if rows else None

    def count(self, query: Query, column: str = "*") -> int:
        return int(self._scalar(query.aggregate_sql("count", column), query.bindings) or 0)

    def sum(self, query: Query, column: str) -> Any:
        result = self._scalar(query.aggregate_sql("sum", column), query.bindings)
        return result if result is not None else 0

    def min(self, query: Query, column: str) -> Any:
        return self._scalar(query.aggregate_sql("min", column), query.bindings)

    def max(self, query: Query, column: str) -> Any:
        return self._scalar(query.aggregate_sql("max", column), query.bindings)

    def avg(self, query: Query, column: str) -> Any:
        return self._scalar(query.aggregate_sql("avg", column), query.bindings)

    def paginate(
        self,
        query: Query,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
        page_name: str = "page",
    ) -> Page:
        per_page = per_page or query.entity.per_page
        if per_page < 1 or page < 1:
            raise ConfigurationError("per_page and page must be positive")

        total = self.count(query.without_limits())
        items = self.get(query.take(per_page).skip((page - 1) * per_page), columns)
        return Page(
            items=items,
            total=total,
            per_page=per_page,
            current_page=page,
            page_name=page_name,
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    def _insert_sql(self, entity: EntityType, columns: Sequence[str], verb: str = "insert") -> str:
        placeholders = ", ".join("?" for _ in columns)
        return f"{verb} into {entity.table} ({render_columns(columns)}) values ({placeholders})"

    def _insert_rows(self, entity: EntityType, rows: Rows, verb: str) -> int:
        records = normalize_rows(rows)
        if not records:
            return 0
        columns = list(records[0].keys())
        for record in records:
            if list(record.keys()) != columns:
                raise ConfigurationError("All inserted rows must have the same columns in the same order")
        values = [tuple(record[c] for c in columns) for record in records]
        return self.statement_many(self._insert_sql(entity, columns, verb), values)

    def insert(self, entity: EntityType, rows: Rows) -> bool:
        records = normalize_rows(rows)
        if not records:
            return True
        self._insert_rows(entity, records, "insert")
        return True

    def insert_get_id(self, entity: EntityType, values: Mapping[str, Any]) -> Any:
        columns = list(values.keys())
        sql = self._insert_sql(entity, columns)
        with self._engine.begin() as conn:
            result = conn.exec_driver_sql(sql, tuple(values[c] for c in columns))
            new_id = values.get(entity.primary_key, result.lastrowid)
        logger.debug("statement_executed", sql=sql, inserted_id=new_id)
        return new_id

    def insert_or_ignore(self, entity: EntityType, rows: Rows) -> int:
        return self._insert_rows(entity, rows, "insert or ignore")

    def _set_clause(self, values: Mapping[str, Any]) -> tuple[str, list[Any]]:
        if not values:
            raise ConfigurationError("update values cannot be empty")
        assignments = [f"{validate_identifier(c, 'column')} = ?" for c in values]
        return ", ".join(assignments), list(values.values())

    def update(self, query: Query, values: Mapping[str, Any]) -> int:
        set_sql, set_bindings = self._set_clause(values)
        sql = f"update {query.table} set {set_sql}{query.where_sql()}"
        return self.statement(sql, [*set_bindings, *query.bindings])

    def update_or_insert(
        self,
        entity: EntityType,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        values = dict(values or {})
        query = query_for(entity)
        for column, value in attributes.items():
            query = query.where_equals(column, value)

        if self.first(query) is None:
            return self.insert(entity, {**attributes, **values})
        if not values:
            return True
        return self.update(query, values) > 0

    def upsert(
        self,
        entity: EntityType,
        rows: Rows,
        unique_by: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        records = normalize_rows(rows)
        if not records:
            return 0
        if not unique_by:
            raise ConfigurationError("upsert() requires at least one unique_by column")

        columns = list(records[0].keys())
        if update_columns is None:
            update_columns = [c for c in columns if c not in unique_by]
        conflict = render_columns(unique_by)
        sql = self._insert_sql(entity, columns)
        if update_columns:
            updates = ", ".join(
                f"{validate_identifier(c, 'column')} = excluded.{c}" for c in update_columns
            )
            sql += f" on conflict ({conflict}) do update set {updates}"
        else:
            sql += f" on conflict ({conflict}) do nothing"
        values = [tuple(record[c] for c in columns) for record in records]
        return self.statement_many(sql, values)

    def increment(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ConfigurationError("Non-numeric value passed to increment method")
        column = validate_identifier(column, "column")
        set_sql = f"{column} = {column} + ?"
        bindings: list[Any] = [amount]
        if extra:
            extra_sql, extra_bindings = self._set_clause(extra)
            set_sql += f", {extra_sql}"
            bindings.extend(extra_bindings)
        sql = f"update {query.table} set {set_sql}{query.where_sql()}"
        return self.statement(sql, [*bindings, *query.bindings])

    def decrement(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ConfigurationError("Non-numeric value passed to decrement method")
        return self.increment(query, column, -amount, extra)

    def delete(self, query: Query) -> int:
        if query.entity.soft_deletes:
            return self.update(query, {query.entity.deleted_at_column: self._clock()})
        return self.force_delete(query)

    def force_delete(self, query: Query) -> int:
        query = query.with_trashed()
        return self.statement(f"delete from {query.table}{query.where_sql()}", query.bindings)

    def restore(self, query: Query) -> int:
        entity = query.entity
        if not entity.soft_deletes:
            raise ConfigurationError(f"Entity type {entity.name} does not use soft deletes")
        trashed = query.with_trashed().where(f"{entity.deleted_at_column} is not null")
        return self.update(trashed, {entity.deleted_at_column: None})

    def truncate(self, entity: EntityType) -> bool:
        # SQLite has no TRUNCATE; an unqualified delete is its equivalent
        self.statement(f"delete from {entity.table}")
        return True

    def touch(self, query: Query, column: str | None = None) -> int:
        column = column or query.entity.updated_at_column
        if not column:
            raise ConfigurationError(f"Entity type {query.entity.name} has no timestamp column to touch")
        return self.update(query, {column: self._clock()})
