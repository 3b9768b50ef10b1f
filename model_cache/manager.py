"""
Model Cache Facade
==================

Builds one backend, key deriver, scope resolver and invalidator from
settings and hands out the pieces wired to them:

    cache = ModelCache()
    executor = cache.wrap(DatabaseQueryExecutor(engine))
    users = cache.register(EntityRepository(USER, DatabaseQueryExecutor(engine)))
    roles = cache.relationship(pivot, owner=cache.entity(USER), related_owner=cache.entity(ROLE))
"""

from __future__ import annotations

from typing import Any

import structlog

from model_cache.caching.backends import CacheBackend, create_backend, ensure_backend
from model_cache.caching.executor import CachingQueryExecutor
from model_cache.caching.hooks import MutationInvalidationHooks
from model_cache.caching.invalidation import ScopeInvalidator
from model_cache.caching.keys import CacheKeyDeriver
from model_cache.caching.relationships import RelationshipInvalidationAdapter
from model_cache.caching.tags import TagScopeResolver
from model_cache.config import ModelCacheSettings, get_settings
from model_cache.database.base import PivotRelation, QueryExecutor
from model_cache.models.base import EntityType
from model_cache.repositories.base import EntityRepository

logger = structlog.get_logger(__name__)


class EntityCache:
    """The cache scope of one entity type."""

    def __init__(self, entity_type: EntityType, invalidator: ScopeInvalidator) -> None:
        self.entity_type = entity_type
        self._invalidator = invalidator

    def flush_cache(self, operation: str = "flush") -> bool:
        """Invalidate every cached read of this entity type."""
        return self._invalidator.flush_entity(self.entity_type, operation)

    def __repr__(self) -> str:
        return f"EntityCache({self.entity_type.name!r})"


class ModelCache:
    """
    Entry point wiring the caching components together.

    The backend's tag capability is checked once, here.
    """

    def __init__(
        self,
        settings: ModelCacheSettings | None = None,
        backend: CacheBackend | None = None,
    ) -> None:
        """
        Initialize the model cache.

        Args:
            settings: Cache settings (defaults to get_settings())
            backend: Cache store; built from settings.cache_store if omitted

        Raises:
            ConfigurationError: If the backend is invalid, lacks tag support
                while require_tag_support is set, or its namespace is not
                settings.cache_key_prefix
        """
        self.settings = settings or get_settings()
        if backend is None:
            backend = create_backend(self.settings)
        self.backend = ensure_backend(
            backend, self.settings.require_tag_support, key_prefix=self.settings.cache_key_prefix
        )

        self.deriver = CacheKeyDeriver(self.settings.cache_key_prefix, debug=self.settings.debug_mode)
        self.resolver = TagScopeResolver(query_tags=self.settings.query_tags)
        self.invalidator = ScopeInvalidator(self.backend, self.resolver)
        self.hooks = MutationInvalidationHooks(self.invalidator)

        logger.info(
            "model_cache_configured",
            store=type(self.backend).__name__,
            supports_tags=self.invalidator.supports_tags,
            enabled=self.settings.enabled,
            cache_duration=self.settings.cache_duration,
        )

    def wrap(self, executor: QueryExecutor) -> CachingQueryExecutor:
        """Decorate ``executor`` with caching over this cache's backend."""
        return CachingQueryExecutor(
            executor,
            self.backend,
            settings=self.settings,
            deriver=self.deriver,
            resolver=self.resolver,
            invalidator=self.invalidator,
        )

    def entity(self, entity_type: EntityType) -> EntityCache:
        return EntityCache(entity_type, self.invalidator)

    def flush_cache(self, entity_type: EntityType) -> bool:
        """Invalidate an entity type's whole scope."""
        return self.invalidator.flush_entity(entity_type)

    def flush_all(self) -> bool:
        """Invalidate every model cache entry."""
        return self.invalidator.flush_all()

    def register(self, repository: EntityRepository) -> EntityRepository:
        """
        Invalidate on ``repository``'s lifecycle events.

        Give the repository a non-caching executor: a caching one already
        invalidates on every write, and the hooks would repeat it.
        """
        return self.hooks.register(repository)

    def relationship(
        self,
        relation: PivotRelation,
        owner: Any,
        related_owner: Any = None,
    ) -> RelationshipInvalidationAdapter:
        """
        Wrap a pivot relation so its writes invalidate its owners.

        ``owner`` and ``related_owner`` may be entity types or anything
        providing ``flush_cache()``.
        """
        if isinstance(owner, EntityType):
            owner = self.entity(owner)
        if isinstance(related_owner, EntityType):
            related_owner = self.entity(related_owner)
        return RelationshipInvalidationAdapter(relation, owner, related_owner)
