"""
Caching Query Executor
======================

Decorates any ``QueryExecutor`` with read-through caching and
write-through invalidation.

Reads derive a key from the query signature and a scope from the entity
type, serve hits from the backend and store misses as JSON. Writes run
first and invalidate the entity's scope once, after they report a change.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from model_cache.caching.backends import CacheBackend, ensure_backend
from model_cache.caching.invalidation import ScopeInvalidator
from model_cache.caching.keys import CacheKeyDeriver
from model_cache.caching.signature import OperationKind, signature_for
from model_cache.caching.tags import TagScopeResolver
from model_cache.config import ModelCacheSettings, get_settings
from model_cache.database.base import QueryExecutor, Row, Rows
from model_cache.database.query import Query
from model_cache.errors import BackendUnavailableError, ConfigurationError
from model_cache.models.base import EntityType, Page
from model_cache.monitoring.logging import log_duration

logger = structlog.get_logger(__name__)


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    bypasses: int = 0
    invalidations: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


def reports_change(result: Any) -> bool:
    """Whether a mutation result says something was written."""
    if isinstance(result, bool):
        return result
    if isinstance(result, (int, float)):
        return result > 0
    return result is not None


def _identity(value: Any) -> Any:
    return value


class CachingQueryExecutor:
    """
    Read-through cache in front of a ``QueryExecutor``.

    Plain reads (``get``, ``count``, ...) are cached unless the query was
    built with ``remember(0)``/``without_cache()`` or caching is disabled
    globally. The ``*_from_cache`` entry points always read through the
    cache while it is enabled, using the query's TTL override when it has
    a positive one.
    """

    def __init__(
        self,
        inner: QueryExecutor,
        backend: CacheBackend,
        settings: ModelCacheSettings | None = None,
        deriver: CacheKeyDeriver | None = None,
        resolver: TagScopeResolver | None = None,
        invalidator: ScopeInvalidator | None = None,
    ) -> None:
        """
        Initialize the caching executor.

        Args:
            inner: Executor that actually runs queries
            backend: Cache store for serialized results
            settings: Cache settings (defaults to get_settings())
            deriver: Key deriver (defaults to one over the settings prefix)
            resolver: Tag scope resolver
            invalidator: Shared invalidation primitive for ``backend``

        Raises:
            ConfigurationError: If ``inner`` is not a QueryExecutor, or the
                backend lacks required tag support or does not hold the
                key prefix as its namespace
        """
        if not isinstance(inner, QueryExecutor):
            raise ConfigurationError(f"{type(inner).__name__} is not a QueryExecutor")

        self._settings = settings or get_settings()
        self._deriver = deriver or CacheKeyDeriver(
            self._settings.cache_key_prefix, debug=self._settings.debug_mode
        )
        self._backend = ensure_backend(
            backend, self._settings.require_tag_support, key_prefix=self._deriver.prefix
        )
        self._inner = inner
        self._resolver = resolver or TagScopeResolver(query_tags=self._settings.query_tags)
        self._invalidator = invalidator or ScopeInvalidator(self._backend, self._resolver)
        self._stats = CacheStats()

    @property
    def inner(self) -> QueryExecutor:
        return self._inner

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def invalidator(self) -> ScopeInvalidator:
        return self._invalidator

    def get_stats(self) -> CacheStats:
        return self._stats

    def cache_key(
        self,
        query: Query,
        operation_kind: str = OperationKind.GET,
        operation_params: Sequence[Any] = (),
        columns: Sequence[str] | None = None,
    ) -> str:
        """Derive the key a read of ``query`` is cached under."""
        signature = signature_for(
            query,
            operation_kind=operation_kind,
            operation_params=operation_params,
            columns=columns,
            locale=self._settings.default_locale,
        )
        return self._deriver.derive(signature)

    # =========================================================================
    # Read path
    # =========================================================================

    def _bypass(self, query: Query) -> bool:
        if not self._settings.enabled or query.cache_minutes == 0:
            self._stats.bypasses += 1
            return True
        return False

    def get(self, query: Query, columns: Sequence[str] | None = None) -> list[Row]:
        if self._bypass(query):
            return self._inner.get(query, columns)
        return self.get_from_cache(query, columns)

    def first(self, query: Query, columns: Sequence[str] | None = None) -> Row | None:
        if self._bypass(query):
            return self._inner.first(query, columns)
        return self.first_from_cache(query, columns)

    def count(self, query: Query, column: str = "*") -> int:
        if self._bypass(query):
            return self._inner.count(query, column)
        return self.count_from_cache(query, column)

    def sum(self, query: Query, column: str) -> Any:
        if self._bypass(query):
            return self._inner.sum(query, column)
        return self.sum_from_cache(query, column)

    def min(self, query: Query, column: str) -> Any:
        if self._bypass(query):
            return self._inner.min(query, column)
        return self.min_from_cache(query, column)

    def max(self, query: Query, column: str) -> Any:
        if self._bypass(query):
            return self._inner.max(query, column)
        return self.max_from_cache(query, column)

    def avg(self, query: Query, column: str) -> Any:
        if self._bypass(query):
            return self._inner.avg(query, column)
        return self.avg_from_cache(query, column)

    average = avg

    def paginate(
        self,
        query: Query,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
        page_name: str = "page",
    ) -> Page:
        if self._bypass(query):
            return self._inner.paginate(query, per_page, page, columns, page_name)
        return self.paginate_from_cache(query, per_page, page, columns, page_name)

    def get_from_cache(self, query: Query, columns: Sequence[str] | None = None) -> list[Row]:
        return self._remember(
            query, OperationKind.GET, (), columns,
            lambda: self._inner.get(query, columns),
        )

    def first_from_cache(self, query: Query, columns: Sequence[str] | None = None) -> Row | None:
        return self._remember(
            query, OperationKind.FIRST, (), columns,
            lambda: self._inner.first(query, columns),
        )

    def count_from_cache(self, query: Query, column: str = "*") -> int:
        return self._remember(
            query, OperationKind.COUNT, (column,), None,
            lambda: self._inner.count(query, column),
        )

    def sum_from_cache(self, query: Query, column: str) -> Any:
        return self._remember(
            query, OperationKind.SUM, (column,), None,
            lambda: self._inner.sum(query, column),
        )

    def min_from_cache(self, query: Query, column: str) -> Any:
        return self._remember(
            query, OperationKind.MIN, (column,), None,
            lambda: self._inner.min(query, column),
        )

    def max_from_cache(self, query: Query, column: str) -> Any:
        return self._remember(
            query, OperationKind.MAX, (column,), None,
            lambda: self._inner.max(query, column),
        )

    def avg_from_cache(self, query: Query, column: str) -> Any:
        return self._remember(
            query, OperationKind.AVG, (column,), None,
            lambda: self._inner.avg(query, column),
        )

    def paginate_from_cache(
        self,
        query: Query,
        per_page: int | None = None,
        page: int = 1,
        columns: Sequence[str] | None = None,
        page_name: str = "page",
    ) -> Page:
        per_page = per_page or query.entity.per_page
        return self._remember(
            query, OperationKind.PAGINATE, (per_page, page_name, page), columns,
            lambda: self._inner.paginate(query, per_page, page, columns, page_name),
            encode=lambda result: result.model_dump(mode="json"),
            decode=Page.model_validate,
        )

    def _ttl_seconds(self, query: Query) -> int:
        minutes = query.cache_minutes or self._settings.cache_duration
        return minutes * 60

    def _remember(
        self,
        query: Query,
        operation_kind: str,
        operation_params: Sequence[Any],
        columns: Sequence[str] | None,
        compute: Callable[[], Any],
        encode: Callable[[Any], Any] = _identity,
        decode: Callable[[Any], Any] = _identity,
    ) -> Any:
        """
        Serve a read from the cache, computing and storing it on a miss.

        Args:
            query: Query being read
            operation_kind: Read operation, folded into the key
            operation_params: Operation arguments, folded into the key
            columns: Projected columns, folded into the key
            compute: Runs the read against the inner executor
            encode: Converts the computed value into JSON-native data
            decode: Rebuilds the returned value from JSON-native data

        Returns:
            The value decoded from the serialized payload, so a miss and a
            later hit return equal values
        """
        if not self._settings.enabled:
            self._stats.bypasses += 1
            return compute()

        key = self.cache_key(query, operation_kind, operation_params, columns)

        try:
            cached = self._backend.get(key)
        except BackendUnavailableError as e:
            self._stats.errors += 1
            logger.warning("cache_get_error", key=key, error=str(e))
            return compute()

        if cached is not None:
            try:
                data = json.loads(cached)
            except ValueError as e:
                self._stats.errors += 1
                logger.warning("cache_decode_error", key=key, error=str(e))
            else:
                self._stats.hits += 1
                logger.debug("cache_hit", key=key, table=query.table, operation=operation_kind)
                return decode(data)

        self._stats.misses += 1
        logger.debug("cache_miss", key=key, table=query.table, operation=operation_kind)

        with log_duration(logger, "query_execution", level="debug", table=query.table, kind=operation_kind):
            result = compute()

        payload = json.dumps(encode(result), default=str, separators=(",", ":")).encode("utf-8")

        if len(payload) > self._settings.max_cached_result_bytes:
            logger.info(
                "cache_result_too_large",
                key=key,
                size=len(payload),
                max_size=self._settings.max_cached_result_bytes,
            )
            return decode(json.loads(payload))

        scope = self._resolver.resolve_query(query)
        try:
            self._backend.set(key, payload, self._ttl_seconds(query), scope.tags)
        except BackendUnavailableError as e:
            self._stats.errors += 1
            logger.warning("cache_set_error", key=key, error=str(e))
        else:
            self._stats.writes += 1

        return decode(json.loads(payload))

    # =========================================================================
    # Write path
    # =========================================================================

    def _invalidate_after(self, entity: EntityType, operation: str, result: Any) -> Any:
        if not reports_change(result):
            logger.debug("cache_invalidation_skipped", entity=entity.name, operation=operation)
            return result
        self._stats.invalidations += 1
        self._invalidator.invalidate(self._resolver.resolve(entity), operation)
        return result

    def insert(self, entity: EntityType, rows: Rows) -> bool:
        return self._invalidate_after(entity, "insert", self._inner.insert(entity, rows))

    def insert_get_id(self, entity: EntityType, values: Mapping[str, Any]) -> Any:
        return self._invalidate_after(
            entity, "insert_get_id", self._inner.insert_get_id(entity, values)
        )

    def insert_or_ignore(self, entity: EntityType, rows: Rows) -> int:
        return self._invalidate_after(
            entity, "insert_or_ignore", self._inner.insert_or_ignore(entity, rows)
        )

    def update(self, query: Query, values: Mapping[str, Any]) -> int:
        return self._invalidate_after(query.entity, "update", self._inner.update(query, values))

    def update_or_insert(
        self,
        entity: EntityType,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        return self._invalidate_after(
            entity, "update_or_insert", self._inner.update_or_insert(entity, attributes, values)
        )

    def upsert(
        self,
        entity: EntityType,
        rows: Rows,
        unique_by: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        return self._invalidate_after(
            entity, "upsert", self._inner.upsert(entity, rows, unique_by, update_columns)
        )

    def increment(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        return self._invalidate_after(
            query.entity, "increment", self._inner.increment(query, column, amount, extra)
        )

    def decrement(
        self,
        query: Query,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        return self._invalidate_after(
            query.entity, "decrement", self._inner.decrement(query, column, amount, extra)
        )

    def delete(self, query: Query) -> int:
        return self._invalidate_after(query.entity, "delete", self._inner.delete(query))

    def force_delete(self, query: Query) -> int:
        return self._invalidate_after(query.entity, "force_delete", self._inner.force_delete(query))

    def restore(self, query: Query) -> int:
        return self._invalidate_after(query.entity, "restore", self._inner.restore(query))

    def truncate(self, entity: EntityType) -> bool:
        self._inner.truncate(entity)
        return self._invalidate_after(entity, "truncate", True)

    def touch(self, query: Query, column: str | None = None) -> int:
        return self._invalidate_after(query.entity, "touch", self._inner.touch(query, column))

    # =========================================================================
    # Explicit invalidation
    # =========================================================================

    def flush_query_cache(self, query: Query, columns: Sequence[str] | None = None) -> bool:
        """
        Forget a query's cached rows and invalidate its scope.

        Args:
            query: Query whose results must stop being served
            columns: Projection the rows were read with

        Returns:
            True if the scope was invalidated
        """
        key = self.cache_key(query, OperationKind.GET, (), columns)
        try:
            self._backend.delete(key)
        except BackendUnavailableError as e:
            self._stats.errors += 1
            logger.warning("cache_delete_error", key=key, error=str(e))

        self._stats.invalidations += 1
        return self._invalidator.invalidate(
            self._resolver.resolve_query(query), "flush_query_cache"
        )

    flush_cache = flush_query_cache
