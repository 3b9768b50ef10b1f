"""
Model Cache Repositories
"""

from model_cache.repositories.base import (
    LIFECYCLE_EVENTS,
    EntityRepository,
    LifecycleEvent,
)

__all__ = [
    "LIFECYCLE_EVENTS",
    "EntityRepository",
    "LifecycleEvent",
]
