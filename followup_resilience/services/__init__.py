"""Resilient-execution services.

- **CircuitBreaker** -- CLOSED/OPEN/HALF_OPEN state machine guarding one
  downstream dependency.
- **RetryExecutor** -- exponential-backoff retries, consulting an injected
  or named circuit breaker before every attempt.
- **BatchExecutor** -- cancellable, concurrency-bounded batch runner that
  sends each item through the RetryExecutor.
- **CachedRetryingFetcher** -- cache lookup in front of the RetryExecutor.
"""

from followup_resilience.services.batch_executor import BatchExecutor
from followup_resilience.services.cached_fetcher import CachedRetryingFetcher
from followup_resilience.services.circuit_breaker import CircuitBreaker, CircuitPermit
from followup_resilience.services.retry_executor import RetryExecutor

__all__ = [
    "BatchExecutor",
    "CachedRetryingFetcher",
    "CircuitBreaker",
    "CircuitPermit",
    "RetryExecutor",
]
