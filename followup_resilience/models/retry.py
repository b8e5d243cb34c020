"""Models for the retry executor and the circuit breaker.

Option models are frozen Pydantic v2 models; per-call overrides are merged
into executor defaults with ``model_copy(update=...)`` using only the fields
the caller explicitly set (``model_fields_set``), so ``RetryOptions(jitter_ms=0)``
overrides jitter and nothing else.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

# (attempt_number, error, delay_ms) -> None | Awaitable[None]
RetryCallback = Callable[[int, BaseException, float], Any]
# error -> should this unmarked error be retried?
RetryPredicate = Callable[[BaseException], bool]


class RetryAttemptRecord(BaseModel):
    """One failed attempt that will be retried, as handed to telemetry hooks."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    attempt: int
    error: BaseException
    delay_ms: float


# RetryAttemptRecord -> None | Awaitable[None]
AttemptHook = Callable[[RetryAttemptRecord], Any]


class RetryOptions(BaseModel):
    """Backoff policy for :meth:`RetryExecutor.execute_with_retry`.

    The delay before attempt *n+1* is
    ``min(max_delay_ms, base_delay_ms * backoff_factor ** (n - 1))`` plus a
    jitter drawn uniformly from ``[0, jitter_ms]``.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_delay_ms: float = Field(default=30_000.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter_ms: float = Field(default=100.0, ge=0)
    # Refines classification of errors that are neither RetryableError nor
    # NonRetryableError.  None means "retry them".
    retryable_errors: RetryPredicate | None = None
    on_retry: RetryCallback | None = None
    on_attempt_failed: AttemptHook | None = None

    def merged_with(self, overrides: RetryOptions | None) -> RetryOptions:
        """Return a copy with every field explicitly set on *overrides* applied."""
        if overrides is None:
            return self
        update = {name: getattr(overrides, name) for name in overrides.model_fields_set}
        return self.model_copy(update=update)


class RetryStats(BaseModel):
    """Running counters accumulated by one executor instance."""

    model_config = ConfigDict(frozen=True)

    total_attempts: int = 0
    total_retries: int = 0
    successful_retries: int = 0
    failed_retries: int = 0
    average_retry_delay: float = 0.0
    circuit_breaker_trips: int = 0


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

class CircuitBreakerState(str, Enum):  # noqa: UP042
    """States of the breaker state machine.

    CLOSED -> OPEN       failure counter reached the threshold (or forced trip)
    OPEN -> HALF_OPEN    recovery timeout elapsed; checked on the next request
    HALF_OPEN -> CLOSED  the single probe succeeded
    HALF_OPEN -> OPEN    the single probe failed
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreakerOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_ms: float = Field(default=60_000.0, ge=0)


class CircuitBreakerSnapshot(BaseModel):
    """Read-only view of a breaker, for status endpoints and logs."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: CircuitBreakerState
    failure_count: int
    last_transition_at: float
    probe_in_flight: bool
    trip_count: int
