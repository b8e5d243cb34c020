"""Pydantic models shared by the cache, retry and batch components."""

from followup_resilience.models.batch import (
    BatchCompletedEvent,
    BatchEvent,
    BatchItemError,
    BatchItemFailedEvent,
    BatchOptions,
    BatchProgressEvent,
    BatchResult,
)
from followup_resilience.models.cache import (
    CacheEntry,
    CacheEvictionResult,
    CacheOptions,
    CacheStatistics,
    EvictionPolicy,
    EvictionReason,
)
from followup_resilience.models.retry import (
    CircuitBreakerOptions,
    CircuitBreakerSnapshot,
    CircuitBreakerState,
    RetryAttemptRecord,
    RetryOptions,
    RetryStats,
)

__all__ = [
    "BatchCompletedEvent",
    "BatchEvent",
    "BatchItemError",
    "BatchItemFailedEvent",
    "BatchOptions",
    "BatchProgressEvent",
    "BatchResult",
    "CacheEntry",
    "CacheEvictionResult",
    "CacheOptions",
    "CacheStatistics",
    "CircuitBreakerOptions",
    "CircuitBreakerSnapshot",
    "CircuitBreakerState",
    "EvictionPolicy",
    "EvictionReason",
    "RetryAttemptRecord",
    "RetryOptions",
    "RetryStats",
]
