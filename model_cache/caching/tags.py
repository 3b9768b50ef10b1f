"""
Tag Scopes
==========

Every cached entry is written with the tags of its scope:

    ("model_cache", "entity:<EntityName>", "table:<table>"[, "query:<digest>"])

The entity tag separates entity kinds that share a table. The table tag
reaches every read that could have observed a row of that table, so
flushing it is always safe. The optional query tag narrows an explicit
per-query flush.
"""

from __future__ import annotations

from dataclasses import dataclass

from model_cache.caching.keys import hash_query
from model_cache.database.query import Query
from model_cache.errors import ConfigurationError
from model_cache.models.base import EntityType

GLOBAL_TAG = "model_cache"


@dataclass(frozen=True)
class CacheScope:
    """Ordered tag set attached to cache entries."""

    global_tag: str
    entity_tag: str
    table_tag: str
    query_tag: str | None = None

    @property
    def tags(self) -> tuple[str, ...]:
        """All tags written alongside an entry, in order."""
        tags = (self.global_tag, self.entity_tag, self.table_tag)
        if self.query_tag:
            tags += (self.query_tag,)
        return tags

    @property
    def flush_tags(self) -> tuple[str, ...]:
        """
        Tags flushed when this scope is invalidated.

        The global tag is excluded: flushing it would drop every entity's
        entries, which is what ``flush_all`` is for.
        """
        return self.tags[1:]

    def without_query(self) -> CacheScope:
        return CacheScope(self.global_tag, self.entity_tag, self.table_tag)


class TagScopeResolver:
    """Computes the invalidation scope of an entity type or query."""

    def __init__(self, query_tags: bool = True) -> None:
        self.query_tags = query_tags

    def entity_tag(self, entity: EntityType) -> str:
        return f"entity:{entity.name}"

    def table_tag(self, table: str) -> str:
        return f"table:{table}"

    def resolve(self, entity: EntityType, query: Query | None = None) -> CacheScope:
        """
        Resolve the scope for an entity type, optionally narrowed to a query.

        Raises:
            ConfigurationError: If the query belongs to a different entity type
        """
        if query is not None and query.entity != entity:
            raise ConfigurationError(
                f"Query over {query.entity.name} cannot resolve a scope for {entity.name}"
            )

        query_tag = None
        if query is not None and self.query_tags:
            query_tag = f"query:{hash_query(query.to_sql(), query.bindings)}"

        return CacheScope(
            global_tag=GLOBAL_TAG,
            entity_tag=self.entity_tag(entity),
            table_tag=self.table_tag(entity.table),
            query_tag=query_tag,
        )

    def resolve_query(self, query: Query) -> CacheScope:
        return self.resolve(query.entity, query)
