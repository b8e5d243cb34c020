"""Data models for the bounded in-memory cache.

Defines Pydantic v2 models for cache entries, cache options, statistics
snapshots and eviction results.

``CacheEntry`` is the only mutable model here: the cache bumps its access
bookkeeping on every hit.  It is validated in strict mode so that a warm-restart
snapshot carrying, say, a string timestamp is rejected instead of coerced.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EvictionPolicy(str, Enum):  # noqa: UP042
    """Which entry the cache removes first when a limit would be exceeded."""

    LRU = "lru"    # least recently accessed
    LFU = "lfu"    # least frequently accessed
    FIFO = "fifo"  # oldest inserted


class EvictionReason(str, Enum):  # noqa: UP042
    """Why entries left the cache."""

    TTL = "ttl"
    MAX_ENTRIES = "max_entries"
    MEMORY_PRESSURE = "memory_pressure"
    MANUAL = "manual"


class CacheEntry(BaseModel):
    """A single stored value plus its bookkeeping.

    Timestamps are wall-clock seconds (``time.time()``) so that exported
    snapshots stay meaningful across process restarts.
    """

    model_config = ConfigDict(strict=True)

    value: Any
    created_at: float
    # Seconds the entry stays valid after ``created_at``.
    ttl: float = Field(ge=0)
    # Estimated payload size in bytes.
    size: int = Field(ge=0)
    access_count: int = Field(default=0, ge=0)
    last_accessed: float
    # sha256 hex digest of the payload; None when hashing is off or failed.
    fingerprint: str | None = None

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl


class CacheOptions(BaseModel):
    """Tunable limits and behaviour of a :class:`BoundedCache`.

    Durations are in seconds, sizes in bytes.
    """

    model_config = ConfigDict(frozen=True)

    default_ttl: float = Field(default=24 * 60 * 60, gt=0)
    max_memory_usage: int = Field(default=50 * 1024 * 1024, ge=1)
    max_entries: int = Field(default=10_000, ge=1)
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    cleanup_interval: float = Field(default=5 * 60, gt=0)
    enable_content_hashing: bool = True


class CacheStatistics(BaseModel):
    """Point-in-time statistics snapshot returned by ``get_stats()``."""

    model_config = ConfigDict(frozen=True)

    total_entries: int = 0
    total_memory_usage: int = 0
    hit_rate: float = 0.0  # percent, rounded to 2 decimals
    total_hits: int = 0
    total_misses: int = 0
    total_evictions: int = 0
    oldest_entry: float | None = None
    newest_entry: float | None = None
    average_access_count: float = 0.0


class CacheEvictionResult(BaseModel):
    """Outcome of a sweep or an eviction pass."""

    model_config = ConfigDict(frozen=True)

    evicted_count: int = 0
    freed_memory: int = 0
    reason: EvictionReason = EvictionReason.MANUAL
