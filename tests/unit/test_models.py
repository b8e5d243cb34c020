"""Unit tests for option, entry and result models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from followup_resilience.models import (
    BatchItemError,
    BatchOptions,
    CacheEntry,
    CacheOptions,
    CircuitBreakerOptions,
    EvictionPolicy,
    RetryOptions,
)


class TestRetryOptions:
    def test_defaults(self) -> None:
        options = RetryOptions()
        assert options.max_attempts == 3
        assert options.base_delay_ms == 1000
        assert options.max_delay_ms == 30_000
        assert options.backoff_factor == 2
        assert options.jitter_ms == 100

    def test_merge_applies_only_explicit_fields(self) -> None:
        defaults = RetryOptions(max_attempts=5, base_delay_ms=200)
        merged = defaults.merged_with(RetryOptions(jitter_ms=0))
        assert merged.max_attempts == 5
        assert merged.base_delay_ms == 200
        assert merged.jitter_ms == 0

    def test_merge_with_none_returns_defaults(self) -> None:
        defaults = RetryOptions()
        assert defaults.merged_with(None) is defaults

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValidationError):
            RetryOptions(max_attempts=0)

    def test_is_frozen(self) -> None:
        with pytest.raises(ValidationError):
            RetryOptions().max_attempts = 9  # type: ignore[misc]


class TestOtherOptions:
    def test_breaker_defaults(self) -> None:
        options = CircuitBreakerOptions()
        assert options.failure_threshold == 5
        assert options.recovery_timeout_ms == 60_000

    def test_cache_defaults(self) -> None:
        options = CacheOptions()
        assert options.default_ttl == 24 * 60 * 60
        assert options.max_memory_usage == 50 * 1024 * 1024
        assert options.max_entries == 10_000
        assert options.eviction_policy is EvictionPolicy.LRU
        assert options.cleanup_interval == 300
        assert options.enable_content_hashing is True

    def test_eviction_policy_from_string(self) -> None:
        assert CacheOptions(eviction_policy="lfu").eviction_policy is EvictionPolicy.LFU

    def test_batch_defaults(self) -> None:
        options = BatchOptions()
        assert options.batch_size == 10
        assert options.max_concurrent_batches == 3
        assert options.max_concurrent_items == 1


class TestCacheEntry:
    def test_expiry_boundary(self) -> None:
        entry = CacheEntry(value="x", created_at=100.0, ttl=10.0, size=2, last_accessed=100.0)
        assert entry.is_expired(110.0) is False
        assert entry.is_expired(110.5) is True
        assert entry.expires_at == 110.0

    def test_strict_validation_rejects_strings(self) -> None:
        with pytest.raises(ValidationError):
            CacheEntry.model_validate(
                {"value": 1, "created_at": "100", "ttl": 1.0, "size": 8, "last_accessed": 100.0}
            )


class TestBatchItemError:
    def test_message(self) -> None:
        item_error = BatchItemError(index=3, batch_index=0, error=RuntimeError("nope"))
        assert item_error.message == "nope"
