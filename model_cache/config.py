"""
Model Cache Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation. Every field can be overridden with a
``MODEL_CACHE_`` prefixed environment variable or through a ``.env`` file.
"""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Largest string value Redis will store
REDIS_MAX_VALUE_BYTES = 512 * 1024 * 1024

# Characters SCAN MATCH treats as pattern syntax
GLOB_METACHARACTERS = frozenset("*?[]\\")


class ModelCacheSettings(BaseSettings):
    """Model cache settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MODEL_CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # QUERY CACHING
    # ═══════════════════════════════════════════════════════════════
    enabled: bool = Field(default=True, description="Globally enable query result caching")
    cache_duration: int = Field(
        default=60, ge=1, description="Default number of minutes to cache query results"
    )
    cache_key_prefix: str = Field(
        default="model_cache_", description="Prefix for every cache key and tag set"
    )
    query_tags: bool = Field(
        default=True, description="Attach a per-query tag to every cached entry"
    )
    max_cached_result_bytes: int = Field(
        default=1048576, ge=1, description="Results larger than this are not cached"
    )
    default_locale: str = Field(
        default="en", description="Locale folded into cache keys when a query sets none"
    )

    # ═══════════════════════════════════════════════════════════════
    # CACHE STORE
    # ═══════════════════════════════════════════════════════════════
    cache_store: Literal["memory", "tagged_memory", "redis"] = Field(
        default="tagged_memory", description="Cache backend used for query results"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")
    redis_socket_timeout: float = Field(
        default=5.0, gt=0, description="Redis socket timeout in seconds"
    )
    require_tag_support: bool = Field(
        default=False, description="Refuse to start on a backend without tag flushing"
    )

    # ═══════════════════════════════════════════════════════════════
    # LOGGING
    # ═══════════════════════════════════════════════════════════════
    debug_mode: bool = Field(default=False, description="Log derived cache keys")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("cache_key_prefix")
    @classmethod
    def validate_cache_key_prefix(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("cache_key_prefix cannot be blank")
        if any(ch.isspace() for ch in v):
            raise ValueError("cache_key_prefix cannot contain whitespace")
        if any(ch in GLOB_METACHARACTERS for ch in v):
            raise ValueError("cache_key_prefix cannot contain glob characters (* ? [ ] \\)")
        return v

    @field_validator("default_locale")
    @classmethod
    def validate_default_locale(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("default_locale cannot be blank")
        return v.strip()

    @model_validator(mode="after")
    def warn_redis_value_limit(self) -> "ModelCacheSettings":
        if self.cache_store == "redis" and self.max_cached_result_bytes > REDIS_MAX_VALUE_BYTES:
            logger.warning(
                "max_cached_result_bytes exceeds the Redis value limit; "
                "results above %d bytes will fail to store",
                REDIS_MAX_VALUE_BYTES,
            )
        return self

    @property
    def default_ttl_seconds(self) -> int:
        """Default TTL expressed in seconds."""
        return self.cache_duration * 60


@lru_cache
def get_settings() -> ModelCacheSettings:
    """Get cached settings instance."""
    return ModelCacheSettings()
