"""
Cache Key Derivation
====================

key = prefix + blake2b-128(prefix | canonical_json(signature))

The digest is unkeyed and the serialization is fully ordered, so every
process on every host derives the same key for the same signature.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import structlog

from model_cache.caching.signature import QuerySignature
from model_cache.errors import ConfigurationError

logger = structlog.get_logger(__name__)

DIGEST_SIZE = 16  # 128 bits


def _canonical(value: Any) -> Any:
    """
    Convert a value into JSON-native, type-preserving form.

    Values JSON cannot tell apart (1 vs Decimal("1") vs "1", tuple vs list)
    are wrapped in a tagged object so they serialize differently.
    """
    if value is None:
        return value
    if isinstance(value, Enum):
        return {"__enum__": f"{type(value).__name__}.{value.name}", "value": _canonical(value.value)}
    if isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return {"__float__": repr(value)}
        return value
    if isinstance(value, Decimal):
        return {"__decimal__": str(value)}
    if isinstance(value, datetime):
        return {"__datetime__": value.isoformat()}
    if isinstance(value, date):
        return {"__date__": value.isoformat()}
    if isinstance(value, time):
        return {"__time__": value.isoformat()}
    if isinstance(value, UUID):
        return {"__uuid__": str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"__bytes__": bytes(value).hex()}
    if isinstance(value, tuple):
        return [_canonical(v) for v in value]
    if isinstance(value, list):
        return {"__list__": [_canonical(v) for v in value]}
    if isinstance(value, (set, frozenset)):
        items = [_canonical(v) for v in value]
        return {"__set__": sorted(items, key=lambda v: json.dumps(v, sort_keys=True))}
    if isinstance(value, dict):
        return {"__dict__": [[_canonical(k), _canonical(v)] for k, v in sorted(value.items(), key=lambda kv: repr(kv[0]))]}
    raise ConfigurationError(
        f"Cannot derive a stable cache key from a {type(value).__name__} binding"
    )


def canonical_serialize(signature: QuerySignature) -> str:
    """Serialize a signature to compact, deterministic JSON."""
    return json.dumps(
        _canonical(signature.as_tuple()),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def hash128(text: str) -> str:
    """Deterministic 128-bit hex digest of ``text``."""
    return hashlib.blake2b(text.encode("utf-8"), digest_size=DIGEST_SIZE).hexdigest()


def hash_query(sql_text: str, bindings: Sequence[Any]) -> str:
    """Digest of SQL text plus bindings, used for per-query tags."""
    payload = json.dumps(
        [sql_text, _canonical(tuple(bindings))],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hash128(payload)


class CacheKeyDeriver:
    """Derives opaque, host-independent cache keys from signatures."""

    def __init__(self, prefix: str, debug: bool = False) -> None:
        if not prefix:
            raise ConfigurationError("Cache key prefix cannot be empty")
        self.prefix = prefix
        self._debug = debug

    def derive(self, signature: QuerySignature) -> str:
        """
        Derive the cache key for a signature.

        Args:
            signature: Canonical query signature

        Returns:
            The namespace prefix followed by a 32-character hex digest
        """
        digest = hash128(self.prefix + "|" + canonical_serialize(signature))
        key = f"{self.prefix}{digest}"

        if self._debug:
            logger.debug(
                "cache_key_derived",
                key=key,
                table=signature.table_name,
                sql=signature.sql_text,
                operation=signature.operation_kind,
                relations=list(signature.eager_loaded_relation_names),
            )
        return key
