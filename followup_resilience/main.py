"""followup-resilience wiring.

Factory functions that turn :class:`Settings` into configured components,
and :func:`build_resilience_stack`, which assembles one shared set of them
for the add-in's network-calling services.  Callers that need a single
component can use the individual ``build_*`` functions.
"""

from __future__ import annotations

from typing import Any

import structlog

from followup_resilience.config.loader import load_config
from followup_resilience.config.settings import Settings
from followup_resilience.providers.cache.bounded_cache import BoundedCache
from followup_resilience.services.batch_executor import BatchExecutor
from followup_resilience.services.cached_fetcher import CachedRetryingFetcher
from followup_resilience.services.circuit_breaker import CircuitBreaker
from followup_resilience.services.retry_executor import RetryExecutor
from followup_resilience.utils.logging import configure_logging_from_settings, get_logger

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Breaker shared by every call to the language model.
LLM_BREAKER_KEY = "llm-api"

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Component factories
# ---------------------------------------------------------------------------


def build_cache(app_settings: Settings) -> BoundedCache:
    return BoundedCache(app_settings.cache_options())


def build_circuit_breaker(app_settings: Settings, name: str = "default") -> CircuitBreaker:
    return CircuitBreaker(app_settings.circuit_breaker_options(), name=name)


def build_retry_executor(
    app_settings: Settings, circuit_breaker: CircuitBreaker | None = None
) -> RetryExecutor:
    """Retry executor whose named breakers inherit the configured breaker options."""
    return RetryExecutor(
        app_settings.retry_options(),
        circuit_breaker=circuit_breaker,
        breaker_options=app_settings.circuit_breaker_options(),
    )


def build_batch_executor(retry_executor: RetryExecutor) -> BatchExecutor:
    return BatchExecutor(retry_executor)


# ---------------------------------------------------------------------------
# Full assembly
# ---------------------------------------------------------------------------


def build_resilience_stack(custom_settings: Settings | None = None) -> dict[str, Any]:
    """Construct every component, sharing one retry executor and cache.

    When *custom_settings* is omitted, settings come from
    :func:`load_config` (``config/config.yaml`` overlaid by the environment).
    Also configures logging from the settings.

    Returns a flat dict of named components:
    ``settings``, ``cache``, ``retry_executor``, ``batch_executor``,
    ``fetcher`` and ``llm_breaker``.
    """
    app_settings = custom_settings or load_config()
    configure_logging_from_settings(app_settings)

    cache = build_cache(app_settings)
    retry_executor = build_retry_executor(app_settings)
    llm_breaker = retry_executor.create_circuit_breaker(LLM_BREAKER_KEY)
    batch_executor = build_batch_executor(retry_executor)
    fetcher = CachedRetryingFetcher(cache, retry_executor)

    _logger.info(
        "resilience_stack_built",
        app_env=app_settings.app_env,
        max_attempts=app_settings.max_attempts,
        failure_threshold=app_settings.failure_threshold,
        eviction_policy=app_settings.eviction_policy.value,
        max_entries=app_settings.max_entries,
    )
    return {
        "settings": app_settings,
        "cache": cache,
        "retry_executor": retry_executor,
        "batch_executor": batch_executor,
        "fetcher": fetcher,
        "llm_breaker": llm_breaker,
    }
