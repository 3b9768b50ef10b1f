"""
Cache Backends
==============

Capability-negotiated cache stores.

Every backend supports get/set/delete and a conservative flush of its whole
namespace. Backends that can also drop every entry carrying a tag derive
from ``TaggedCacheBackend``; callers check that once, at configuration
time, with ``isinstance``.

Store failures surface as ``BackendUnavailableError`` so the caching layer
can degrade to direct execution.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar

import redis
import structlog

from model_cache.config import GLOB_METACHARACTERS, ModelCacheSettings
from model_cache.errors import BackendUnavailableError, ConfigurationError

logger = structlog.get_logger(__name__)


@dataclass
class CacheEntry:
    """A serialized query result held by an in-process backend."""

    key: str
    value: bytes
    created_at: datetime
    expires_at: datetime
    tags: tuple[str, ...] = field(default_factory=tuple)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def ttl_remaining(self, now: datetime) -> int:
        """Remaining TTL in seconds."""
        remaining = (self.expires_at - now).total_seconds()
        return max(0, int(remaining))


class CacheBackend(ABC):
    """Key/value store for serialized query results."""

    supports_tags: ClassVar[bool] = False

    def __init__(self, namespace: str) -> None:
        if not namespace:
            raise ConfigurationError("Cache backend namespace cannot be empty")
        if any(ch in GLOB_METACHARACTERS for ch in namespace):
            raise ConfigurationError(f"Cache backend namespace cannot contain glob characters: {namespace!r}")
        self.namespace = namespace

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return the stored bytes, or None on a miss."""

    @abstractmethod
    def set(self, key: str, value: bytes, ttl_seconds: int, tags: Sequence[str] = ()) -> None:
        """Store bytes for ``ttl_seconds``; untagged backends ignore ``tags``."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Forget one key. Returns True if it existed."""

    @abstractmethod
    def flush(self) -> None:
        """Drop every entry in this backend's namespace."""


class TaggedCache:
    """A tag-set view over a tagged backend, mirroring ``tags(...).flush()``."""

    def __init__(self, backend: TaggedCacheBackend, tags: Sequence[str]) -> None:
        self._backend = backend
        self.tags = tuple(tags)

    def flush(self) -> None:
        self._backend.flush_tags(self.tags)


class TaggedCacheBackend(CacheBackend):
    """A backend that can invalidate every entry carrying a tag."""

    supports_tags: ClassVar[bool] = True

    def tags(self, tags: Sequence[str]) -> TaggedCache:
        return TaggedCache(self, tags)

    @abstractmethod
    def flush_tags(self, tags: Sequence[str]) -> None:
        """Drop every entry written with any of ``tags``."""


# =============================================================================
# In-process backends
# =============================================================================

class MemoryCacheBackend(CacheBackend):
    """
    In-process TTL cache without tag support.

    Invalidation against this store always falls back to a full flush.
    Expired entries are dropped when read, and swept every
    ``cleanup_interval`` writes.
    """

    def __init__(
        self,
        namespace: str = "model_cache_",
        clock: Callable[[], datetime] | None = None,
        cleanup_interval: int = 256,
    ) -> None:
        super().__init__(namespace)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._cleanup_interval = cleanup_interval
        self._writes_since_cleanup = 0

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for entry in self._entries.values() if not entry.is_expired(now))

    def keys(self) -> list[str]:
        """Keys of live (unexpired) entries."""
        with self._lock:
            now = self._clock()
            return [key for key, entry in self._entries.items() if not entry.is_expired(now)]

    def _evict(self, key: str) -> CacheEntry | None:
        return self._entries.pop(key, None)

    def _index(self, key: str, tags: Sequence[str]) -> None:
        pass

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                self._evict(key)
                return None
            return entry.value

    def set(self, key: str, value: bytes, ttl_seconds: int, tags: Sequence[str] = ()) -> None:
        now = self._clock()
        with self._lock:
            self._evict(key)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
                tags=tuple(tags),
            )
            self._index(key, tags)
            self._writes_since_cleanup += 1
            if self._writes_since_cleanup >= self._cleanup_interval:
                self.cleanup_expired()

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._evict(key) is not None

    def cleanup_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                self._evict(key)
            self._writes_since_cleanup = 0
        if expired:
            logger.debug("memory_cache_expired_removed", entries=len(expired))
        return len(expired)

    def flush(self) -> None:
        with self._lock:
            stale = [key for key in self._entries if key.startswith(self.namespace)]
            for key in stale:
                self._evict(key)
        logger.debug("memory_cache_flushed", namespace=self.namespace, entries=len(stale))


class TaggedMemoryCacheBackend(MemoryCacheBackend, TaggedCacheBackend):
    """In-process TTL cache that indexes entries by tag."""

    def __init__(
        self,
        namespace: str = "model_cache_",
        clock: Callable[[], datetime] | None = None,
        cleanup_interval: int = 256,
    ) -> None:
        self._tag_index: dict[str, set[str]] = defaultdict(set)
        super().__init__(namespace, clock, cleanup_interval)

    def tag_count(self) -> int:
        """Number of tags currently indexing at least one entry."""
        with self._lock:
            return len(self._tag_index)

    def _evict(self, key: str) -> CacheEntry | None:
        entry = super()._evict(key)
        if entry is not None:
            for tag in entry.tags:
                members = self._tag_index.get(tag)
                if members is not None:
                    members.discard(key)
                    if not members:
                        del self._tag_index[tag]
        return entry

    def _index(self, key: str, tags: Sequence[str]) -> None:
        for tag in tags:
            self._tag_index[tag].add(key)

    def flush_tags(self, tags: Sequence[str]) -> None:
        removed = 0
        with self._lock:
            for tag in tags:
                for key in list(self._tag_index.get(tag, ())):
                    if self._evict(key) is not None:
                        removed += 1
                self._tag_index.pop(tag, None)
        logger.debug("memory_cache_tags_flushed", tags=list(tags), entries=removed)


# =============================================================================
# Redis backend
# =============================================================================

REDIS_ERRORS = (redis.exceptions.RedisError, OSError)


class RedisCacheBackend(TaggedCacheBackend):
    """
    Redis-backed tagged cache.

    Entries are stored with SETEX. Each tag is a Redis set of the keys
    written with it, stored under ``<namespace>tag:<tag>``. Flushing a tag
    renames its set to a private key, then deletes the members and that key,
    so a key tagged while the flush runs keeps its membership. Tag sets
    carry no TTL so a short-lived entry can never shorten the membership of
    a longer-lived one.
    """

    def __init__(
        self,
        client: Any = None,
        url: str | None = None,
        namespace: str = "model_cache_",
        socket_timeout: float = 5.0,
        scan_count: int = 500,
    ) -> None:
        """
        Initialize the backend.

        Args:
            client: Existing redis.Redis client (takes precedence over url)
            url: Redis URL used to build a client when none is given
            namespace: Prefix shared by every key and tag set
            socket_timeout: Socket timeout in seconds for a built client
            scan_count: SCAN batch hint used by flush()
        """
        super().__init__(namespace)
        if client is None:
            if not url:
                raise ConfigurationError("RedisCacheBackend needs a client or a url")
            client = redis.Redis.from_url(
                url,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self._redis = client
        self._scan_count = scan_count

    def tag_key(self, tag: str) -> str:
        return f"{self.namespace}tag:{tag}"

    def get(self, key: str) -> bytes | None:
        try:
            data = self._redis.get(key)
        except REDIS_ERRORS as e:
            raise BackendUnavailableError(f"Redis get failed: {e}") from e
        if data is None:
            return None
        return data if isinstance(data, bytes) else str(data).encode("utf-8")

    def set(self, key: str, value: bytes, ttl_seconds: int, tags: Sequence[str] = ()) -> None:
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.setex(key, ttl_seconds, value)
            for tag in tags:
                pipe.sadd(self.tag_key(tag), key)
            pipe.execute()
        except REDIS_ERRORS as e:
            raise BackendUnavailableError(f"Redis set failed: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            result: int = self._redis.delete(key)
        except REDIS_ERRORS as e:
            raise BackendUnavailableError(f"Redis delete failed: {e}") from e
        return result > 0

    def flush_tags(self, tags: Sequence[str]) -> None:
        removed = 0
        try:
            for tag in tags:
                removed += self._flush_tag(tag)
        except REDIS_ERRORS as e:
            raise BackendUnavailableError(f"Redis tag flush failed: {e}") from e
        logger.debug("redis_cache_tags_flushed", tags=list(tags), entries=removed)

    def _flush_tag(self, tag: str) -> int:
        tag_key = self.tag_key(tag)
        # Claim the set first; keys tagged after the RENAME go to a fresh set.
        claimed = f"{tag_key}:flushing:{uuid.uuid4().hex}"
        try:
            self._redis.rename(tag_key, claimed)
        except redis.exceptions.ResponseError:
            # no such key
            return 0

        members = list(self._redis.smembers(claimed))
        pipe = self._redis.pipeline(transaction=True)
        if members:
            pipe.delete(*members)
        pipe.delete(claimed)
        pipe.execute()
        return len(members)

    def flush(self) -> None:
        removed = 0
        try:
            batch: list[Any] = []
            for key in self._redis.scan_iter(match=f"{self.namespace}*", count=self._scan_count):
                batch.append(key)
                if len(batch) >= self._scan_count:
                    removed += self._redis.delete(*batch)
                    batch = []
            if batch:
                removed += self._redis.delete(*batch)
        except REDIS_ERRORS as e:
            raise BackendUnavailableError(f"Redis flush failed: {e}") from e
        logger.debug("redis_cache_flushed", namespace=self.namespace, entries=removed)


def create_backend(settings: ModelCacheSettings) -> CacheBackend:
    """Build the cache store named by ``settings.cache_store``."""
    store = settings.cache_store
    if store == "memory":
        return MemoryCacheBackend(namespace=settings.cache_key_prefix)
    if store == "tagged_memory":
        return TaggedMemoryCacheBackend(namespace=settings.cache_key_prefix)
    if store == "redis":
        return RedisCacheBackend(
            url=settings.redis_url,
            namespace=settings.cache_key_prefix,
            socket_timeout=settings.redis_socket_timeout,
        )
    raise ConfigurationError(f"Unknown cache store: {store}")


def has_tag_support(backend: CacheBackend) -> bool:
    return isinstance(backend, TaggedCacheBackend)


def ensure_backend(
    backend: Any,
    require_tags: bool = False,
    key_prefix: str | None = None,
) -> CacheBackend:
    """
    Validate a backend once, at configuration time.

    Args:
        backend: The candidate cache store
        require_tags: Refuse stores without tag invalidation
        key_prefix: Prefix of the keys that will be written; a full flush
            only reaches keys under the backend namespace, so they must match

    Raises:
        ConfigurationError: If it is not a CacheBackend, lacks tag support
            while ``require_tags`` is set, or its namespace differs from
            ``key_prefix``
    """
    if not isinstance(backend, CacheBackend):
        raise ConfigurationError(f"{type(backend).__name__} is not a CacheBackend")
    if key_prefix is not None and backend.namespace != key_prefix:
        raise ConfigurationError(
            f"Cache key prefix '{key_prefix}' does not match backend namespace '{backend.namespace}'"
        )
    if require_tags and not has_tag_support(backend):
        raise ConfigurationError(
            f"{type(backend).__name__} does not support tag invalidation"
        )
    return backend

