"""
Query Caching

Signatures, keys, scopes, backends and the decorators that cache reads
and invalidate on writes.
"""

from model_cache.caching.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    TaggedCache,
    TaggedCacheBackend,
    TaggedMemoryCacheBackend,
    create_backend,
    ensure_backend,
    has_tag_support,
)
from model_cache.caching.executor import CacheStats, CachingQueryExecutor
from model_cache.caching.hooks import MutationInvalidationHooks
from model_cache.caching.invalidation import (
    InvalidationEvent,
    InvalidationStats,
    ScopeInvalidator,
)
from model_cache.caching.keys import CacheKeyDeriver, canonical_serialize, hash128
from model_cache.caching.relationships import Invalidatable, RelationshipInvalidationAdapter
from model_cache.caching.signature import (
    ALL_COLUMNS,
    OperationKind,
    QuerySignature,
    build_signature,
    signature_for,
)
from model_cache.caching.tags import GLOBAL_TAG, CacheScope, TagScopeResolver

__all__ = [
    # Signatures and keys
    "ALL_COLUMNS",
    "OperationKind",
    "QuerySignature",
    "build_signature",
    "signature_for",
    "CacheKeyDeriver",
    "canonical_serialize",
    "hash128",
    # Scopes
    "GLOBAL_TAG",
    "CacheScope",
    "TagScopeResolver",
    # Backends
    "CacheBackend",
    "TaggedCacheBackend",
    "TaggedCache",
    "MemoryCacheBackend",
    "TaggedMemoryCacheBackend",
    "RedisCacheBackend",
    "create_backend",
    "ensure_backend",
    "has_tag_support",
    # Invalidation
    "InvalidationEvent",
    "InvalidationStats",
    "ScopeInvalidator",
    "MutationInvalidationHooks",
    "Invalidatable",
    "RelationshipInvalidationAdapter",
    # Executor
    "CacheStats",
    "CachingQueryExecutor",
]
