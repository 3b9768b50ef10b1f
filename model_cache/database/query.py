"""
Query Value Object
==================

An immutable description of a read against one entity type. It exposes
what the caching layer needs to inspect (table name, literal SQL text,
ordered bound parameters, eager-load names, locale, TTL override) and
renders qmark-style SQL for the reference executor.

Every modifier returns a new ``Query``; instances are safe to share.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from model_cache.errors import ConfigurationError
from model_cache.models.base import EntityType, validate_identifier

AGGREGATE_FUNCTIONS = frozenset({"count", "sum", "min", "max", "avg"})


def render_columns(columns: Sequence[str] | None) -> str:
    """Render a projection, treating ``None`` and ``["*"]`` as all columns."""
    if columns is None or list(columns) == ["*"]:
        return "*"
    if not columns:
        raise ConfigurationError("Column list cannot be empty; pass None for all columns")
    return ", ".join(validate_identifier(c, "column") for c in columns)


@dataclass(frozen=True)
class Query:
    """A filtered, ordered read over one entity type."""

    entity: EntityType
    wheres: tuple[str, ...] = ()
    bindings: tuple[Any, ...] = ()
    orders: tuple[str, ...] = ()
    limit: int | None = None
    offset: int | None = None
    eager_load: tuple[str, ...] = ()
    locale: str | None = None
    cache_minutes: int | None = None
    include_trashed: bool = False

    @property
    def table(self) -> str:
        return self.entity.table

    # =========================================================================
    # Builders
    # =========================================================================

    def where(self, clause: str, *bindings: Any) -> Query:
        """
        Add a raw condition using ``?`` placeholders.

        Conditions are AND-ed in the order they are added, and bindings keep
        that same order.
        """
        if not clause or not clause.strip():
            raise ConfigurationError("where() clause cannot be blank")
        if clause.count("?") != len(bindings):
            raise ConfigurationError(
                f"where() clause has {clause.count('?')} placeholders "
                f"but {len(bindings)} bindings were given"
            )
        return replace(
            self,
            wheres=self.wheres + (clause.strip(),),
            bindings=self.bindings + tuple(bindings),
        )

    def where_equals(self, column: str, value: Any) -> Query:
        if value is None:
            return self.where(f"{validate_identifier(column, 'column')} is null")
        return self.where(f"{validate_identifier(column, 'column')} = ?", value)

    def where_in(self, column: str, values: Sequence[Any]) -> Query:
        values = list(values)
        if not values:
            # Matches nothing, like an empty IN list in most query builders
            return self.where("0 = 1")
        placeholders = ", ".join("?" for _ in values)
        return self.where(f"{validate_identifier(column, 'column')} in ({placeholders})", *values)

    def order_by(self, column: str, direction: str = "asc") -> Query:
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ConfigurationError(f"Invalid order direction: {direction}")
        return replace(
            self,
            orders=self.orders + (f"{validate_identifier(column, 'column')} {direction}",),
        )

    def take(self, limit: int) -> Query:
        if limit < 0:
            raise ConfigurationError("limit cannot be negative")
        return replace(self, limit=limit)

    def skip(self, offset: int) -> Query:
        if offset < 0:
            raise ConfigurationError("offset cannot be negative")
        return replace(self, offset=offset)

    def without_limits(self) -> Query:
        return replace(self, limit=None, offset=None, orders=())

    def with_relations(self, *relations: str) -> Query:
        """Name relations to eager-load alongside the primary rows."""
        return replace(self, eager_load=self.eager_load + tuple(relations))

    def for_locale(self, locale: str) -> Query:
        return replace(self, locale=locale)

    def with_trashed(self) -> Query:
        return replace(self, include_trashed=True)

    def remember(self, minutes: int) -> Query:
        """
        Override the cache TTL for this query.

        Args:
            minutes: Minutes to keep results; 0 disables caching entirely

        Raises:
            ConfigurationError: If minutes is negative or not an integer
        """
        if isinstance(minutes, bool) or not isinstance(minutes, int):
            raise ConfigurationError(f"remember() expects whole minutes, got {minutes!r}")
        if minutes < 0:
            raise ConfigurationError("remember() minutes cannot be negative")
        return replace(self, cache_minutes=minutes)

    def without_cache(self) -> Query:
        return replace(self, cache_minutes=0)

    # =========================================================================
    # SQL rendering
    # =========================================================================

    def conditions(self) -> tuple[str, ...]:
        """All conditions, including the soft-delete filter when it applies."""
        conditions = self.wheres
        if self.entity.soft_deletes and not self.include_trashed:
            conditions = conditions + (f"{self.entity.deleted_at_column} is null",)
        return conditions

    def where_sql(self) -> str:
        conditions = self.conditions()
        if not conditions:
            return ""
        return " where " + " and ".join(f"({c})" for c in conditions)

    def to_sql(self, columns: Sequence[str] | None = None) -> str:
        """Render the select statement for this query."""
        sql = f"select {render_columns(columns)} from {self.table}{self.where_sql()}"
        if self.orders:
            sql += " order by " + ", ".join(self.orders)
        if self.limit is not None:
            sql += f" limit {int(self.limit)}"
        elif self.offset is not None:
            sql += " limit -1"
        if self.offset is not None:
            sql += f" offset {int(self.offset)}"
        return sql

    def aggregate_sql(self, function: str, column: str = "*") -> str:
        function = function.lower()
        if function not in AGGREGATE_FUNCTIONS:
            raise ConfigurationError(f"Unsupported aggregate: {function}")
        if column == "*":
            if function != "count":
                raise ConfigurationError(f"{function}() requires a column")
            target = "*"
        else:
            target = validate_identifier(column, "column")
        return f"select {function}({target}) as aggregate from {self.table}{self.where_sql()}"


def query_for(entity: EntityType) -> Query:
    """Start a new query over ``entity``."""
    return Query(entity=entity)
