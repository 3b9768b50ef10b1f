"""
Mutation Invalidation Hooks

Subscribes the scope invalidator to repository lifecycle events, so
singular writes invalidate through the same primitive as bulk writes.
"""

from __future__ import annotations

import structlog

from model_cache.caching.invalidation import ScopeInvalidator
from model_cache.repositories.base import LIFECYCLE_EVENTS, EntityRepository, LifecycleEvent

logger = structlog.get_logger(__name__)


class MutationInvalidationHooks:
    """Invalidates an entity type's scope after each lifecycle event."""

    def __init__(self, invalidator: ScopeInvalidator) -> None:
        self._invalidator = invalidator

    def register(self, repository: EntityRepository) -> EntityRepository:
        """
        Subscribe to every lifecycle event of ``repository`` and to its
        quiet writes, which fire no lifecycle events but still invalidate.

        Registering the same repository twice is a no-op.
        """
        if self.is_registered(repository):
            return repository

        for event in LIFECYCLE_EVENTS:
            repository.on(event, self._handle)
        repository.on_quiet_write(self._handle)

        logger.info(
            "invalidation_hooks_registered",
            entity=repository.entity_type.name,
            events=list(LIFECYCLE_EVENTS),
        )
        return repository

    def is_registered(self, repository: EntityRepository) -> bool:
        return self._handle in repository.quiet_write_listeners()

    def _handle(self, event: LifecycleEvent) -> None:
        self._invalidator.flush_entity(event.entity_type, event.name)
