"""
Query Signatures
================

A signature canonicalizes everything that can change a query's result
set. Two queries with equal signatures share one cache entry, so every
result-affecting input must appear here.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from model_cache.database.query import Query
from model_cache.errors import ConfigurationError
from model_cache.models.base import validate_identifier

# Canonical stand-in for "all columns". An explicit list naming every
# column is a different projection and must not collapse into this.
ALL_COLUMNS = "__all_columns__"


class OperationKind:
    """Read operations the caching layer distinguishes in keys."""

    GET = "get"
    FIRST = "first"
    COUNT = "count"
    SUM = "sum"
    MIN = "min"
    MAX = "max"
    AVG = "avg"
    PAGINATE = "paginate"


@dataclass(frozen=True)
class QuerySignature:
    """Canonical description of one cached read."""

    table_name: str
    sql_text: str
    bound_parameters: tuple[Any, ...]
    projected_columns: str | tuple[str, ...]
    locale_tag: str | None
    eager_loaded_relation_names: tuple[str, ...]
    operation_kind: str
    operation_params: tuple[Any, ...]

    def as_tuple(self) -> tuple[Any, ...]:
        """The ordered tuple that key derivation serializes."""
        return (
            self.table_name,
            self.sql_text,
            self.bound_parameters,
            self.projected_columns,
            self.locale_tag,
            self.eager_loaded_relation_names,
            self.operation_kind,
            self.operation_params,
        )


def normalize_columns(columns: Sequence[str] | str | None) -> str | tuple[str, ...]:
    if columns is None:
        return ALL_COLUMNS
    if isinstance(columns, str):
        columns = [columns]
    columns = tuple(columns)
    if columns == ("*",):
        return ALL_COLUMNS
    if not columns:
        raise ConfigurationError("Projected columns cannot be an empty list")
    return tuple(validate_identifier(column, "column") for column in columns)


def build_signature(
    table_name: str,
    sql_text: str,
    bound_parameters: Sequence[Any] = (),
    projected_columns: Sequence[str] | str | None = None,
    eager_loaded_relation_names: Iterable[str] = (),
    locale_tag: str | None = None,
    operation_kind: str = OperationKind.GET,
    operation_params: Sequence[Any] = (),
) -> QuerySignature:
    """
    Build a canonical signature for a read.

    Args:
        table_name: Table the query reads from
        sql_text: Literal SQL text with placeholders
        bound_parameters: Placeholder values in positional order
        projected_columns: Selected columns; None or "*" means all columns
        eager_loaded_relation_names: Relations loaded alongside (order-insensitive)
        locale_tag: Locale that can change rendered results
        operation_kind: Read operation (get, count, paginate, ...)
        operation_params: Operation arguments (aggregate column, page, ...)

    Returns:
        Frozen QuerySignature

    Raises:
        ConfigurationError: If the table or SQL text cannot be derived
    """
    if not isinstance(table_name, str) or not table_name.strip():
        raise ConfigurationError("Cannot build a cache signature without a table name")
    if not isinstance(sql_text, str) or not sql_text.strip():
        raise ConfigurationError("Cannot build a cache signature without SQL text")
    if not operation_kind:
        raise ConfigurationError("Cannot build a cache signature without an operation kind")

    return QuerySignature(
        table_name=table_name,
        sql_text=sql_text,
        bound_parameters=tuple(bound_parameters),
        projected_columns=normalize_columns(projected_columns),
        locale_tag=locale_tag,
        eager_loaded_relation_names=tuple(sorted(set(eager_loaded_relation_names))),
        operation_kind=operation_kind,
        operation_params=tuple(operation_params),
    )


def signature_for(
    query: Query,
    operation_kind: str = OperationKind.GET,
    operation_params: Sequence[Any] = (),
    columns: Sequence[str] | str | None = None,
    locale: str | None = None,
) -> QuerySignature:
    """Derive the signature of ``query`` for one read operation."""
    return build_signature(
        table_name=query.table,
        sql_text=query.to_sql(),
        bound_parameters=query.bindings,
        projected_columns=columns,
        eager_loaded_relation_names=query.eager_load,
        locale_tag=query.locale or locale,
        operation_kind=operation_kind,
        operation_params=operation_params,
    )
