"""
Scope Invalidation
==================

The single primitive every invalidation path goes through: bulk writes in
the caching executor, lifecycle hooks, pivot adapters and explicit flushes.

Tagged backends flush the scope's tags. Untagged backends, and tagged
backends whose tag flush fails, get a conservative full-namespace flush:
without tags there is no safe way to reach every cached read of the data.
Nothing here raises into the caller, because the triggering write has
already committed by the time invalidation runs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from model_cache.caching.backends import CacheBackend, has_tag_support
from model_cache.caching.tags import GLOBAL_TAG, CacheScope, TagScopeResolver
from model_cache.errors import BackendUnavailableError, InvalidationFailure
from model_cache.models.base import EntityType

logger = structlog.get_logger(__name__)


class InvalidationStrategy:
    """How an invalidation was carried out."""

    TAGS = "tags"
    FULL_FLUSH = "full_flush"


@dataclass
class InvalidationEvent:
    """One invalidation, handed to callbacks and then discarded."""

    scope: CacheScope | None
    operation: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    strategy: str = InvalidationStrategy.TAGS


@dataclass
class InvalidationStats:
    """Statistics for cache invalidation monitoring."""

    events_received: int = 0
    tag_flushes: int = 0
    full_flushes: int = 0
    failures: int = 0
    errors: int = 0


class ScopeInvalidator:
    """
    Invalidates cache scopes against one backend.

    Tag support is read once here, never probed per call.
    """

    def __init__(self, backend: CacheBackend, resolver: TagScopeResolver | None = None) -> None:
        self._backend = backend
        self._resolver = resolver or TagScopeResolver()
        self._tagged = has_tag_support(backend)
        self._stats = InvalidationStats()
        self._callbacks: list[Callable[[InvalidationEvent], None]] = []

    @property
    def supports_tags(self) -> bool:
        return self._tagged

    @property
    def resolver(self) -> TagScopeResolver:
        return self._resolver

    def register_callback(self, callback: Callable[[InvalidationEvent], None]) -> None:
        """Register a callback invoked after every invalidation."""
        self._callbacks.append(callback)

    def get_stats(self) -> InvalidationStats:
        return self._stats

    # =========================================================================
    # Public API
    # =========================================================================

    def invalidate(self, scope: CacheScope, operation: str) -> bool:
        """
        Invalidate everything reachable through ``scope``.

        Args:
            scope: Scope whose entries must stop being served
            operation: Name of the triggering operation (for logs/events)

        Returns:
            True if the cache was invalidated, False if even the fallback
            flush failed
        """
        self._stats.events_received += 1

        if self._tagged:
            try:
                self._flush_tags(scope.flush_tags)
            except InvalidationFailure as e:
                self._stats.failures += 1
                logger.warning(
                    "cache_invalidation_failed",
                    tags=list(e.tags),
                    operation=operation,
                    error=e.reason,
                    fallback=InvalidationStrategy.FULL_FLUSH,
                )
            else:
                self._stats.tag_flushes += 1
                logger.info(
                    "cache_scope_invalidated",
                    entity_tag=scope.entity_tag,
                    table_tag=scope.table_tag,
                    query_tag=scope.query_tag,
                    operation=operation,
                )
                self._notify(InvalidationEvent(scope=scope, operation=operation))
                return True

        return self._full_flush(InvalidationEvent(
            scope=scope,
            operation=operation,
            strategy=InvalidationStrategy.FULL_FLUSH,
        ))

    def flush_entity(self, entity: EntityType, operation: str = "flush") -> bool:
        """Invalidate an entity type's whole scope."""
        return self.invalidate(self._resolver.resolve(entity), operation)

    def flush_all(self, operation: str = "flush_all") -> bool:
        """Invalidate every model cache entry, whatever its entity type."""
        self._stats.events_received += 1

        if self._tagged:
            try:
                self._flush_tags((GLOBAL_TAG,))
            except InvalidationFailure as e:
                self._stats.failures += 1
                logger.warning(
                    "cache_invalidation_failed",
                    tags=list(e.tags),
                    operation=operation,
                    error=e.reason,
                    fallback=InvalidationStrategy.FULL_FLUSH,
                )
            else:
                self._stats.tag_flushes += 1
                logger.info("cache_all_models_invalidated", operation=operation)
                self._notify(InvalidationEvent(scope=None, operation=operation))
                return True

        return self._full_flush(InvalidationEvent(
            scope=None,
            operation=operation,
            strategy=InvalidationStrategy.FULL_FLUSH,
        ))

    # =========================================================================
    # Internals
    # =========================================================================

    def _flush_tags(self, tags: tuple[str, ...]) -> None:
        try:
            self._backend.tags(tags).flush()  # type: ignore[attr-defined]
        except BackendUnavailableError as e:
            raise InvalidationFailure(tags, str(e)) from e

    def _full_flush(self, event: InvalidationEvent) -> bool:
        try:
            self._backend.flush()
        except BackendUnavailableError as e:
            self._stats.errors += 1
            logger.error(
                "cache_full_flush_failed",
                operation=event.operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        self._stats.full_flushes += 1
        logger.info(
            "cache_namespace_flushed",
            namespace=self._backend.namespace,
            operation=event.operation,
            entity_tag=event.scope.entity_tag if event.scope else None,
        )
        self._notify(event)
        return True

    def _notify(self, event: InvalidationEvent) -> None:
        for callback in self._callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning("invalidation_callback_error", error=str(e))
