"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# Every tunable of the retry executor, circuit breakers, cache and batch
# executor is a field here.  pydantic-settings fills each field from (in
# priority order):
#
#   1. **Environment variables** -- e.g. MAX_ATTEMPTS=5
#   2. **.env file** -- key=value lines in the working directory
#   3. The default declared below
#
# config/loader.py layers config/config.yaml underneath the environment,
# so the effective order is: env > .env > YAML > defaults.
#
# Units follow the option models: retry and breaker timings are in
# milliseconds, cache durations in seconds, sizes in bytes.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from followup_resilience.models.batch import BatchOptions
from followup_resilience.models.cache import CacheOptions, EvictionPolicy
from followup_resilience.models.retry import CircuitBreakerOptions, RetryOptions


class Settings(BaseSettings):
    """followup-resilience settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    # Unrelated variables in a shared .env file are ignored.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === Retry ===
    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_delay_ms: float = Field(default=30_000.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter_ms: float = Field(default=100.0, ge=0)

    # === Circuit breaker ===
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_ms: float = Field(default=60_000.0, ge=0)

    # === Batch ===
    batch_size: int = Field(default=10, ge=1)
    max_concurrent_batches: int = Field(default=3, ge=1)
    max_concurrent_items: int = Field(default=1, ge=1)

    # === Cache ===
    max_entries: int = Field(default=10_000, ge=1)
    max_memory_usage: int = Field(default=50 * 1024 * 1024, ge=1)
    default_ttl: float = Field(default=24 * 60 * 60, gt=0)
    eviction_policy: EvictionPolicy = EvictionPolicy.LRU
    cleanup_interval: float = Field(default=5 * 60, gt=0)
    enable_content_hashing: bool = True

    # === App Config ===
    app_env: str = "development"
    log_level: str = "INFO"

    def retry_options(self) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_factor=self.backoff_factor,
            jitter_ms=self.jitter_ms,
        )

    def circuit_breaker_options(self) -> CircuitBreakerOptions:
        return CircuitBreakerOptions(
            failure_threshold=self.failure_threshold,
            recovery_timeout_ms=self.recovery_timeout_ms,
        )

    def cache_options(self) -> CacheOptions:
        return CacheOptions(
            default_ttl=self.default_ttl,
            max_memory_usage=self.max_memory_usage,
            max_entries=self.max_entries,
            eviction_policy=self.eviction_policy,
            cleanup_interval=self.cleanup_interval,
            enable_content_hashing=self.enable_content_hashing,
        )

    def batch_options(self) -> BatchOptions:
        """Batch sizing only; retry policy and callbacks are per call."""
        return BatchOptions(
            batch_size=self.batch_size,
            max_concurrent_batches=self.max_concurrent_batches,
            max_concurrent_items=self.max_concurrent_items,
        )
