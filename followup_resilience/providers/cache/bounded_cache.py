"""Bounded in-memory cache with selectable eviction and a TTL sweep.

Storage is a ``cachetools.Cache`` subclass whose ``getsizeof`` reads the
estimated byte size recorded on each :class:`CacheEntry`.  cachetools does the
memory accounting and calls ``popitem()`` whenever an insert would push
``currsize`` past ``maxsize``; the subclass overrides ``popitem()`` so the
victim is chosen by the configured policy (LRU, LFU or FIFO) rather than by
iteration order.  The entry-count limit is enforced by :class:`BoundedCache`
before the insert, through the same eviction path.

Expiry is checked lazily on ``get``/``has`` and eagerly by a periodic sweep
task started with :meth:`BoundedCache.start_cleanup`.

Every public method is synchronous.  There is no suspension point between a
capacity check and the insert it guards, so the single event loop serialises
all accounting.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import re
import sys
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog
from cachetools import Cache
from pydantic import BaseModel, ValidationError

from followup_resilience.interfaces.cache_provider import ICacheProvider
from followup_resilience.models.cache import (
    CacheEntry,
    CacheEvictionResult,
    CacheOptions,
    CacheStatistics,
    EvictionPolicy,
    EvictionReason,
)
from followup_resilience.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

# Lower bound for the sweep interval, in seconds.
MIN_CLEANUP_INTERVAL = 1.0

# Fallback size when an object reports no size of its own.
_UNKNOWN_OBJECT_SIZE = 100


# ---------------------------------------------------------------------------
# Size estimation and fingerprinting
# ---------------------------------------------------------------------------

def estimate_size(value: Any, _seen: set[int] | None = None) -> int:
    """Rough byte size of *value*.

    Strings count two bytes per character, numbers eight, booleans four.
    Containers are summed recursively; a container already visited (a cycle
    or a shared reference) counts once.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return 4
    if isinstance(value, (int, float)):
        return 8
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, (bytes, bytearray)):
        return len(value)

    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        return 0
    seen.add(id(value))

    if isinstance(value, BaseModel):
        return estimate_size(value.model_dump(), seen)
    if isinstance(value, Mapping):
        return sum(estimate_size(k, seen) + estimate_size(v, seen) for k, v in value.items())
    if isinstance(value, (list, tuple, set, frozenset)):
        return sum(estimate_size(item, seen) for item in value)
    try:
        return sys.getsizeof(value)
    except TypeError:
        return _UNKNOWN_OBJECT_SIZE


def compute_fingerprint(value: Any) -> str | None:
    """sha256 hex digest of *value*, or ``None`` if it cannot be serialised."""
    try:
        if isinstance(value, (bytes, bytearray)):
            payload = bytes(value)
        elif isinstance(value, str):
            payload = value.encode("utf-8")
        else:
            payload = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
    except (TypeError, ValueError, RecursionError) as exc:
        logger.debug("cache_fingerprint_failed", error=str(exc))
        return None
    return hashlib.sha256(payload).hexdigest()


# ---------------------------------------------------------------------------
# Policy-aware store
# ---------------------------------------------------------------------------

class _PolicyStore(Cache):
    """``cachetools.Cache`` that evicts by policy instead of iteration order.

    Keeps two sequence stamps per key: when it was inserted and when it was
    last touched.  The stamps come from one shared counter, so they are unique
    and double as the insertion-order tie-breaker.
    """

    def __init__(
        self,
        maxsize: int,
        policy: EvictionPolicy,
        on_evict: Callable[[str, CacheEntry, EvictionReason], None],
    ) -> None:
        super().__init__(maxsize=maxsize, getsizeof=lambda entry: entry.size)
        self.policy = policy
        self._on_evict = on_evict
        self._seq = itertools.count()
        self._inserted: dict[str, int] = {}
        self._touched: dict[str, int] = {}

    def __setitem__(self, key: str, entry: CacheEntry) -> None:
        super().__setitem__(key, entry)
        stamp = next(self._seq)
        self._inserted.setdefault(key, stamp)
        self._touched[key] = stamp

    def __delitem__(self, key: str) -> None:
        super().__delitem__(key)
        self._inserted.pop(key, None)
        self._touched.pop(key, None)

    def touch(self, key: str) -> None:
        if key in self._touched:
            self._touched[key] = next(self._seq)

    def insertion_order(self) -> list[str]:
        return sorted(self._inserted, key=self._inserted.__getitem__)

    def victim(self) -> str:
        if not self._inserted:
            raise KeyError(f"{type(self).__name__} is empty")
        if self.policy is EvictionPolicy.LRU:
            return min(self._touched, key=self._touched.__getitem__)
        if self.policy is EvictionPolicy.LFU:
            return min(
                self._inserted,
                key=lambda k: (Cache.__getitem__(self, k).access_count, self._inserted[k]),
            )
        return min(self._inserted, key=self._inserted.__getitem__)

    def evict(self, reason: EvictionReason) -> tuple[str, CacheEntry]:
        key = self.victim()
        entry = self.pop(key)
        self._on_evict(key, entry, reason)
        return key, entry

    def popitem(self) -> tuple[str, CacheEntry]:
        # Called by cachetools when an insert would exceed maxsize.
        return self.evict(EvictionReason.MEMORY_PRESSURE)

    def resized(self, maxsize: int) -> _PolicyStore:
        """Return a copy bounded by *maxsize*, evicting from this store first."""
        while self.currsize > maxsize:
            self.popitem()
        clone = _PolicyStore(maxsize, self.policy, self._on_evict)
        for key in self.insertion_order():
            Cache.__setitem__(clone, key, Cache.__getitem__(self, key))
        clone._seq = self._seq
        clone._inserted = dict(self._inserted)
        clone._touched = dict(self._touched)
        return clone


# ---------------------------------------------------------------------------
# BoundedCache
# ---------------------------------------------------------------------------

class BoundedCache(ICacheProvider):
    """TTL cache bounded by entry count and estimated memory.

    Parameters
    ----------
    options:
        Limits and behaviour; defaults to :class:`CacheOptions()`.
    clock:
        Wall-clock source in seconds.  Injected so tests can move time.
    """

    def __init__(
        self,
        options: CacheOptions | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._options = options or CacheOptions()
        self._clock = clock
        self._store = self._new_store()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def options(self) -> CacheOptions:
        return self._options

    def __len__(self) -> int:
        return len(self._store)

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the value for *key*, or ``None`` on a miss.

        Expired entries and entries whose content no longer matches the
        stored fingerprint are dropped and reported as misses.
        """
        entry: CacheEntry | None = self._store.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("cache_miss", key=key)
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._expire(key, entry)
            self._misses += 1
            logger.debug("cache_miss", key=key, reason="expired")
            return None

        if (
            self._options.enable_content_hashing
            and entry.fingerprint is not None
            and compute_fingerprint(entry.value) != entry.fingerprint
        ):
            self._remove(key)
            self._misses += 1
            logger.warning("cache_integrity_mismatch", key=key)
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._store.touch(key)
        self._hits += 1
        logger.debug("cache_hit", key=key)
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store *value* under *key*, evicting by policy to stay within limits.

        A fingerprint failure stores the entry without a fingerprint.  A value
        whose estimated size alone exceeds ``max_memory_usage`` is not stored,
        and any previous value under *key* is removed.
        """
        now = self._clock()
        fingerprint = (
            compute_fingerprint(value) if self._options.enable_content_hashing else None
        )
        entry = CacheEntry(
            value=value,
            created_at=now,
            ttl=float(ttl if ttl is not None else self._options.default_ttl),
            size=estimate_size(value),
            last_accessed=now,
            fingerprint=fingerprint,
        )
        if self._insert(key, entry):
            logger.debug("cache_set", key=key, size=entry.size, ttl=entry.ttl)

    def has(self, key: str) -> bool:
        """Return ``True`` if *key* is present and unexpired.

        Does not count as an access: hit/miss counters and the LRU/LFU
        bookkeeping are left alone.
        """
        entry: CacheEntry | None = self._store.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._expire(key, entry)
            return False
        return True

    def invalidate(self, key: str) -> bool:
        removed = self._remove(key)
        if removed:
            logger.debug("cache_invalidated", key=key)
        return removed

    def bulk_invalidate(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every key matched (``re.search``) by *pattern*."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        matching = [key for key in list(self._store.keys()) if regex.search(key)]
        for key in matching:
            self._remove(key)
        logger.debug("cache_bulk_invalidated", pattern=regex.pattern, count=len(matching))
        return len(matching)

    def clear(self) -> None:
        """Drop every entry.  Not counted as evictions."""
        count = len(self._store)
        self._store = self._new_store()
        logger.info("cache_cleared", entries=count)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> CacheEvictionResult:
        """Purge every expired entry once."""
        now = self._clock()
        expired = [
            (key, entry)
            for key, entry in list(self._store.items())
            if entry.is_expired(now)
        ]
        freed = 0
        for key, entry in expired:
            self._expire(key, entry)
            freed += entry.size
        if expired:
            logger.info("cache_cleanup", evicted=len(expired), freed_memory=freed)
        return CacheEvictionResult(
            evicted_count=len(expired),
            freed_memory=freed,
            reason=EvictionReason.TTL,
        )

    def get_stats(self) -> CacheStatistics:
        entries = list(self._store.values())
        lookups = self._hits + self._misses
        hit_rate = round(self._hits / lookups * 100, 2) if lookups else 0.0
        return CacheStatistics(
            total_entries=len(entries),
            total_memory_usage=self._store.currsize,
            hit_rate=hit_rate,
            total_hits=self._hits,
            total_misses=self._misses,
            total_evictions=self._evictions,
            oldest_entry=min((e.created_at for e in entries), default=None),
            newest_entry=max((e.created_at for e in entries), default=None),
            average_access_count=(
                sum(e.access_count for e in entries) / len(entries) if entries else 0.0
            ),
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get_cache_keys(self, pattern: str | re.Pattern[str] | None = None) -> list[str]:
        """Unexpired keys in insertion order, optionally filtered by *pattern*."""
        now = self._clock()
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        keys = []
        for key in self._store.insertion_order():
            if self._store[key].is_expired(now):
                continue
            if regex is not None and not regex.search(key):
                continue
            keys.append(key)
        return keys

    def get_memory_pressure(self) -> float:
        """Saturation (0-100) of the more constrained limit."""
        by_count = len(self._store) / self._options.max_entries
        by_memory = self._store.currsize / self._options.max_memory_usage
        return round(min(100.0, max(by_count, by_memory) * 100), 2)

    def update_options(self, **changes: Any) -> None:
        """Apply new option values, evicting at once if a limit shrank.

        Raises
        ------
        ConfigurationError
            If a name is not a cache option or a value fails validation.
        """
        unknown = set(changes) - set(CacheOptions.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown cache options: {sorted(unknown)}")
        try:
            new = CacheOptions.model_validate({**self._options.model_dump(), **changes})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid cache options: {exc}") from exc

        old = self._options
        self._options = new
        self._store.policy = new.eviction_policy
        if new.max_memory_usage != old.max_memory_usage:
            self._store = self._store.resized(new.max_memory_usage)
        while len(self._store) > new.max_entries:
            self._store.evict(EvictionReason.MAX_ENTRIES)

        logger.info("cache_options_updated", changes=sorted(changes))
        if new.cleanup_interval != old.cleanup_interval and self.cleanup_running:
            self.stop_cleanup()
            self.start_cleanup()

    # ------------------------------------------------------------------
    # Warm restart
    # ------------------------------------------------------------------

    def export_cache(self) -> list[dict[str, Any]]:
        """Snapshot of the unexpired entries, oldest insert first."""
        now = self._clock()
        snapshot = []
        for key in self._store.insertion_order():
            entry: CacheEntry = self._store[key]
            if entry.is_expired(now):
                continue
            snapshot.append({"key": key, "entry": entry.model_dump()})
        return snapshot

    def import_cache(self, snapshot: Iterable[Mapping[str, Any]]) -> int:
        """Load entries produced by :meth:`export_cache`.

        Structurally invalid and already-expired entries are skipped; the rest
        go through the normal capacity checks.  Returns the number imported.
        """
        now = self._clock()
        imported = 0
        for position, item in enumerate(snapshot):
            try:
                key = item["key"]
                if not isinstance(key, str):
                    raise TypeError(f"cache key must be str, got {type(key).__name__}")
                entry = CacheEntry.model_validate(item["entry"])
            except (KeyError, TypeError, ValidationError) as exc:
                logger.warning("cache_import_entry_skipped", position=position, error=str(exc))
                continue
            if entry.is_expired(now):
                continue
            if self._insert(key, entry):
                imported += 1
        logger.info("cache_imported", imported=imported)
        return imported

    # ------------------------------------------------------------------
    # Sweep task lifecycle
    # ------------------------------------------------------------------

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start_cleanup(self) -> None:
        """Start the periodic TTL sweep on the running event loop.

        Raises ``RuntimeError`` when called outside a running loop.
        """
        if self.cleanup_running:
            return
        interval = self._options.cleanup_interval
        if interval < MIN_CLEANUP_INTERVAL:
            logger.warning(
                "cache_cleanup_interval_clamped",
                requested=interval,
                minimum=MIN_CLEANUP_INTERVAL,
            )
            interval = MIN_CLEANUP_INTERVAL
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._cleanup_loop(interval), name="bounded-cache-cleanup"
        )
        logger.debug("cache_cleanup_started", interval=interval)

    def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
            logger.debug("cache_cleanup_stopped")

    async def close(self) -> None:
        """Stop the sweep and wait for the task to finish."""
        task = self._cleanup_task
        self.stop_cleanup()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.cleanup()
            except Exception:
                logger.exception("cache_cleanup_failed")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _new_store(self) -> _PolicyStore:
        return _PolicyStore(
            self._options.max_memory_usage,
            self._options.eviction_policy,
            self._on_evict,
        )

    def _insert(self, key: str, entry: CacheEntry) -> bool:
        self._remove(key)
        if entry.size > self._options.max_memory_usage:
            logger.warning(
                "cache_entry_too_large",
                key=key,
                size=entry.size,
                max_memory_usage=self._options.max_memory_usage,
            )
            return False
        while len(self._store) >= self._options.max_entries:
            self._store.evict(EvictionReason.MAX_ENTRIES)
        # cachetools evicts through popitem() if memory would overflow.
        self._store[key] = entry
        return True

    def _remove(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def _expire(self, key: str, entry: CacheEntry) -> None:
        self._remove(key)
        self._evictions += 1
        logger.debug("cache_expired", key=key, age=self._clock() - entry.created_at)

    def _on_evict(self, key: str, entry: CacheEntry, reason: EvictionReason) -> None:
        self._evictions += 1
        logger.debug(
            "cache_evicted",
            key=key,
            size=entry.size,
            reason=reason.value,
            policy=self._options.eviction_policy.value,
        )
