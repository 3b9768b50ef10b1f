"""
Relationship Invalidation
=========================

Pivot mutations (attach, detach, sync, ...) change what a many-to-many
read returns without touching either side's own rows, so no lifecycle
event fires for them. The adapter wraps a pivot relation and invalidates
the owning entity scopes after each call that changed something.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import structlog

from model_cache.caching.executor import reports_change
from model_cache.database.base import PivotRelation
from model_cache.errors import ConfigurationError

logger = structlog.get_logger(__name__)

PIVOT_OPERATIONS = ("attach", "detach", "sync", "update_existing_pivot", "sync_without_detaching")


@runtime_checkable
class Invalidatable(Protocol):
    """Something whose cache scope can be flushed."""

    def flush_cache(self, operation: str = "flush") -> bool: ...


def pivot_changed(result: Any) -> bool:
    """
    Whether a pivot call result reports a change.

    ``attach`` returns nothing and is always treated as a change; sync
    results are dicts of id lists and count as a change if any is non-empty.
    """
    if result is None:
        return True
    if isinstance(result, Mapping):
        return any(result.values())
    return reports_change(result)


class RelationshipInvalidationAdapter:
    """Wraps a ``PivotRelation`` and invalidates its owners after writes."""

    def __init__(
        self,
        relation: PivotRelation,
        owner: Any,
        related_owner: Any = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            relation: Pivot relation to wrap
            owner: Owning side's cache scope (e.g. an EntityCache)
            related_owner: Related side's cache scope, if its reads also
                depend on the pivot

        Raises:
            ConfigurationError: If the relation lacks a pivot operation or
                an owner cannot invalidate its cache
        """
        missing = [op for op in PIVOT_OPERATIONS if not callable(getattr(relation, op, None))]
        if missing:
            raise ConfigurationError(
                f"{type(relation).__name__} does not support {', '.join(missing)}"
            )

        owners = [owner] if related_owner is None else [owner, related_owner]
        for candidate in owners:
            if not isinstance(candidate, Invalidatable):
                raise ConfigurationError(
                    f"{type(candidate).__name__} must provide flush_cache() to own a cached relationship"
                )

        self._relation = relation
        self._owners = owners

    @property
    def relation(self) -> PivotRelation:
        return self._relation

    def _after(self, operation: str, result: Any) -> Any:
        if not pivot_changed(result):
            logger.debug("relationship_invalidation_skipped", operation=operation)
            return result
        for owner in self._owners:
            owner.flush_cache(operation)
        return result

    def attach(self, ids: Any, attributes: Mapping[str, Any] | None = None) -> None:
        return self._after("attach", self._relation.attach(ids, attributes))

    def detach(self, ids: Any = None) -> int:
        return self._after("detach", self._relation.detach(ids))

    def sync(self, ids: Any, detaching: bool = True) -> dict[str, list[Any]]:
        return self._after("sync", self._relation.sync(ids, detaching))

    def update_existing_pivot(self, id: Any, attributes: Mapping[str, Any]) -> int:
        return self._after(
            "update_existing_pivot", self._relation.update_existing_pivot(id, attributes)
        )

    def sync_without_detaching(self, ids: Any) -> dict[str, list[Any]]:
        return self._after("sync_without_detaching", self._relation.sync_without_detaching(ids))
