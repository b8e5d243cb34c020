"""Unit tests for the factory functions in followup_resilience/main.py."""

from __future__ import annotations

import pytest

from followup_resilience.config.settings import Settings
from followup_resilience.main import (
    LLM_BREAKER_KEY,
    build_batch_executor,
    build_cache,
    build_circuit_breaker,
    build_resilience_stack,
    build_retry_executor,
)
from followup_resilience.models.cache import EvictionPolicy
from followup_resilience.providers.cache.bounded_cache import BoundedCache
from followup_resilience.services.batch_executor import BatchExecutor
from followup_resilience.services.cached_fetcher import CachedRetryingFetcher
from followup_resilience.services.retry_executor import RetryExecutor


def _settings(**overrides) -> Settings:
    defaults = {"app_env": "test", "log_level": "WARNING"}
    defaults.update(overrides)
    return Settings(**defaults)


class TestComponentFactories:
    def test_build_cache_uses_settings(self) -> None:
        cache = build_cache(_settings(max_entries=42, eviction_policy="fifo"))
        assert isinstance(cache, BoundedCache)
        assert cache.options.max_entries == 42
        assert cache.options.eviction_policy is EvictionPolicy.FIFO

    def test_build_circuit_breaker(self) -> None:
        breaker = build_circuit_breaker(_settings(failure_threshold=2), name="ews")
        assert breaker.name == "ews"
        assert breaker.options.failure_threshold == 2

    def test_build_retry_executor_named_breakers_inherit_options(self) -> None:
        executor = build_retry_executor(_settings(max_attempts=6, failure_threshold=9))
        assert executor.defaults.max_attempts == 6
        assert executor.create_circuit_breaker("graph").options.failure_threshold == 9

    def test_build_batch_executor(self) -> None:
        assert isinstance(build_batch_executor(RetryExecutor()), BatchExecutor)


class TestBuildResilienceStack:
    @pytest.fixture()
    def stack(self) -> dict:
        return build_resilience_stack(_settings(recovery_timeout_ms=1234))

    def test_components_present(self, stack: dict) -> None:
        assert isinstance(stack["cache"], BoundedCache)
        assert isinstance(stack["retry_executor"], RetryExecutor)
        assert isinstance(stack["batch_executor"], BatchExecutor)
        assert isinstance(stack["fetcher"], CachedRetryingFetcher)
        assert stack["settings"].app_env == "test"

    def test_llm_breaker_registered(self, stack: dict) -> None:
        breaker = stack["retry_executor"].get_circuit_breaker(LLM_BREAKER_KEY)
        assert breaker is stack["llm_breaker"]
        assert breaker.options.recovery_timeout_ms == 1234
