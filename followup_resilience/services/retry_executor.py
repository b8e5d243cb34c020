"""Retry engine with exponential backoff and optional circuit breakers.

:meth:`RetryExecutor.execute_with_retry` calls an idempotent, zero-argument
coroutine factory until it succeeds, the error is classified as permanent, or
the attempt budget is spent.  Before every attempt the guarding circuit
breaker (if any) is asked for permission; a refusal raises
:class:`CircuitOpenError` at once and does not use up an attempt.

Classification, in order:

1. ``NonRetryableError``  -- abort immediately, re-raise.
2. ``CircuitOpenError`` raised by a nested call -- abort, re-raise.
3. ``RetryableError``     -- retry.
4. anything else          -- ``options.retryable_errors(error)`` if given,
   otherwise retry.

When the budget is exhausted the last operation error is re-raised as-is.

Breakers come from two places: one injected at construction (used when no
``key`` is passed) and a registry of named breakers, created on first use of a
key.  All callers passing the same key share one breaker.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

import structlog
from pydantic import ValidationError

from followup_resilience.models.retry import (
    CircuitBreakerOptions,
    CircuitBreakerSnapshot,
    RetryAttemptRecord,
    RetryOptions,
    RetryStats,
)
from followup_resilience.services.circuit_breaker import CircuitBreaker, CircuitPermit
from followup_resilience.utils.concurrency import invoke_callback
from followup_resilience.utils.errors import (
    CircuitOpenError,
    ConfigurationError,
    NonRetryableError,
    RetryableError,
    is_network_error,
    is_rate_limit_error,
)

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

Operation = Callable[[], Awaitable[_T]]


class RetryExecutor:
    """Runs operations under a backoff policy.

    Parameters
    ----------
    defaults:
        Policy used when a call passes no overrides.
    circuit_breaker:
        Breaker consulted when a call passes no ``key``.
    breaker_options:
        Options for named breakers created on first use of a key.
    sleep:
        Awaitable sleep in seconds.  Injected so tests can record delays.
    rng:
        Source of jitter.
    clock:
        Monotonic clock handed to the breakers this executor creates.
    """

    def __init__(
        self,
        defaults: RetryOptions | None = None,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        breaker_options: CircuitBreakerOptions | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._defaults = defaults or RetryOptions()
        self._circuit_breaker = circuit_breaker
        self._breaker_options = breaker_options or CircuitBreakerOptions()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

        self._total_attempts = 0
        self._total_retries = 0
        self._successful_retries = 0
        self._failed_retries = 0
        self._total_retry_delay_ms = 0.0
        self._breaker_trips = 0

    @property
    def defaults(self) -> RetryOptions:
        return self._defaults

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_with_retry(
        self,
        operation: Operation[_T],
        options: RetryOptions | Mapping[str, Any] | None = None,
        key: str | None = None,
    ) -> _T:
        """Invoke *operation* until it succeeds or retrying is pointless.

        Parameters
        ----------
        operation:
            Zero-argument callable returning an awaitable.  Called afresh on
            every attempt, so it must be safe to repeat.
        options:
            Per-call overrides; only the fields given replace the defaults.
        key:
            Name of the circuit breaker to consult.  ``None`` uses the
            injected breaker, if any.

        Raises
        ------
        CircuitOpenError
            The breaker refused an attempt.  Chained to the last operation
            error when there was one.
        """
        opts = self._resolve_options(options)
        breaker = self._select_breaker(key)
        last_error: Exception | None = None
        attempt = 0

        while True:
            permit: CircuitPermit | None = None
            if breaker is not None:
                permit = breaker.acquire()
                if permit is None:
                    logger.warning(
                        "retry_rejected_by_circuit_breaker",
                        breaker=breaker.name,
                        attempt=attempt + 1,
                        retry_after_ms=breaker.retry_after_ms(),
                    )
                    raise breaker.open_error() from last_error

            attempt += 1
            self._total_attempts += 1
            try:
                result = await operation()
            except Exception as exc:
                last_error = exc
                if breaker is not None and breaker.record_failure(exc, permit):
                    self._breaker_trips += 1
                if not self._should_retry(exc, opts):
                    logger.info(
                        "retry_aborted",
                        attempt=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise
                if attempt >= opts.max_attempts:
                    self._failed_retries += 1
                    logger.warning(
                        "retry_exhausted",
                        attempts=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise

                delay_ms = self.calculate_delay(attempt, opts)
                self._total_retries += 1
                self._total_retry_delay_ms += delay_ms
                logger.info(
                    "retry_scheduled",
                    attempt=attempt,
                    max_attempts=opts.max_attempts,
                    delay_ms=round(delay_ms, 1),
                    error=str(exc),
                )
                if opts.on_attempt_failed is not None:
                    await invoke_callback(
                        opts.on_attempt_failed,
                        RetryAttemptRecord(attempt=attempt, error=exc, delay_ms=delay_ms),
                        event="retry_telemetry_failed",
                        logger=logger,
                    )
                await invoke_callback(
                    opts.on_retry,
                    attempt,
                    exc,
                    delay_ms,
                    event="retry_callback_failed",
                    logger=logger,
                )
                await self._sleep(delay_ms / 1000)
            except BaseException:
                # Cancelled mid-attempt: no outcome to report.
                if breaker is not None:
                    breaker.release_probe(permit)
                raise
            else:
                if breaker is not None:
                    breaker.record_success(permit)
                if attempt > 1:
                    self._successful_retries += 1
                    logger.info("retry_succeeded", attempts=attempt)
                return result

    async def execute_with_exponential_backoff(
        self,
        operation: Operation[_T],
        max_attempts: int = 3,
        base_delay_ms: float = 1000.0,
        key: str | None = None,
    ) -> _T:
        options = RetryOptions(
            max_attempts=max_attempts,
            base_delay_ms=base_delay_ms,
            backoff_factor=2.0,
            max_delay_ms=30_000.0,
            jitter_ms=100.0,
        )
        return await self.execute_with_retry(operation, options, key)

    async def retry_on_rate_limit(
        self,
        operation: Operation[_T],
        max_attempts: int = 3,
        base_delay_ms: float = 5000.0,
    ) -> _T:
        """Retry only throttling failures ("429", "rate limit", "quota exceeded")."""
        options = RetryOptions(
            max_attempts=max_attempts,
            base_delay_ms=base_delay_ms,
            backoff_factor=2.0,
            max_delay_ms=60_000.0,
            retryable_errors=is_rate_limit_error,
        )
        return await self.execute_with_retry(operation, options)

    async def retry_on_network_error(
        self,
        operation: Operation[_T],
        max_attempts: int = 3,
        base_delay_ms: float = 1000.0,
    ) -> _T:
        """Retry only connection-level failures (reset, DNS, timeouts)."""
        options = RetryOptions(
            max_attempts=max_attempts,
            base_delay_ms=base_delay_ms,
            backoff_factor=2.0,
            max_delay_ms=30_000.0,
            retryable_errors=is_network_error,
        )
        return await self.execute_with_retry(operation, options)

    def calculate_delay(self, attempt: int, options: RetryOptions | None = None) -> float:
        """Delay in ms to wait after failed attempt number *attempt* (1-based)."""
        opts = options or self._defaults
        backoff = opts.base_delay_ms * opts.backoff_factor ** (attempt - 1)
        delay = min(opts.max_delay_ms, backoff)
        if opts.jitter_ms > 0:
            delay += self._rng.uniform(0, opts.jitter_ms)
        return delay

    # ------------------------------------------------------------------
    # Named circuit breakers
    # ------------------------------------------------------------------

    def create_circuit_breaker(
        self, key: str, options: CircuitBreakerOptions | None = None
    ) -> CircuitBreaker:
        """Create (or replace) the breaker registered under *key*."""
        breaker = CircuitBreaker(
            options or self._breaker_options, name=key, clock=self._clock
        )
        self._breakers[key] = breaker
        logger.debug("circuit_breaker_created", breaker=key)
        return breaker

    def get_circuit_breaker(self, key: str) -> CircuitBreaker | None:
        return self._breakers.get(key)

    def reset_circuit_breaker(self, key: str) -> bool:
        breaker = self._breakers.get(key)
        if breaker is None:
            return False
        breaker.reset()
        return True

    def reset_all_circuit_breakers(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        if self._circuit_breaker is not None:
            self._circuit_breaker.reset()
        self._breaker_trips = 0

    def get_circuit_breaker_states(self) -> dict[str, CircuitBreakerSnapshot]:
        states = {key: breaker.snapshot() for key, breaker in self._breakers.items()}
        if self._circuit_breaker is not None:
            states.setdefault(self._circuit_breaker.name, self._circuit_breaker.snapshot())
        return states

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_stats(self) -> RetryStats:
        average = (
            self._total_retry_delay_ms / self._total_retries if self._total_retries else 0.0
        )
        return RetryStats(
            total_attempts=self._total_attempts,
            total_retries=self._total_retries,
            successful_retries=self._successful_retries,
            failed_retries=self._failed_retries,
            average_retry_delay=average,
            circuit_breaker_trips=self._breaker_trips,
        )

    def reset_stats(self) -> None:
        self._total_attempts = 0
        self._total_retries = 0
        self._successful_retries = 0
        self._failed_retries = 0
        self._total_retry_delay_ms = 0.0
        self._breaker_trips = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _resolve_options(
        self, options: RetryOptions | Mapping[str, Any] | None
    ) -> RetryOptions:
        if options is None or isinstance(options, RetryOptions):
            return self._defaults.merged_with(options)
        try:
            overrides = RetryOptions.model_validate(dict(options))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid retry options: {exc}") from exc
        return self._defaults.merged_with(overrides)

    def _select_breaker(self, key: str | None) -> CircuitBreaker | None:
        if key is None:
            return self._circuit_breaker
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = self.create_circuit_breaker(key)
        return breaker

    @staticmethod
    def _should_retry(error: Exception, options: RetryOptions) -> bool:
        if isinstance(error, (NonRetryableError, CircuitOpenError)):
            return False
        if isinstance(error, RetryableError):
            return True
        if options.retryable_errors is not None:
            return bool(options.retryable_errors(error))
        return True
