"""Cache-then-retry composition used by every network-calling component.

Look the key up in the cache; on a miss run the operation through the retry
executor (and its circuit breaker), store what came back, return it.  A
cached value means no network call, no retry and no breaker check.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import structlog

from followup_resilience.interfaces.cache_provider import ICacheProvider
from followup_resilience.models.retry import RetryOptions
from followup_resilience.services.retry_executor import RetryExecutor

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


class CachedRetryingFetcher:
    """Serves values from *cache*, fetching misses through *retry_executor*."""

    def __init__(self, cache: ICacheProvider, retry_executor: RetryExecutor) -> None:
        self._cache = cache
        self._retry_executor = retry_executor

    async def fetch(
        self,
        key: str,
        operation: Callable[[], Awaitable[_T]],
        ttl: float | None = None,
        options: RetryOptions | Mapping[str, Any] | None = None,
        breaker_key: str | None = None,
    ) -> _T:
        """Return the cached value for *key*, or fetch and cache it.

        ``None`` results are returned but not cached, so a later call tries
        again.  Errors from the retry executor propagate unchanged and leave
        the cache untouched.
        """
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        value = await self._retry_executor.execute_with_retry(operation, options, breaker_key)
        if value is not None:
            self._cache.set(key, value, ttl)
        else:
            logger.debug("fetch_result_not_cached", key=key)
        return value

    def invalidate(self, key: str) -> bool:
        return self._cache.invalidate(key)
