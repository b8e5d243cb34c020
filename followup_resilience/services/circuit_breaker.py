"""Circuit breaker guarding one downstream dependency.

The breaker is a three-state machine (see :class:`CircuitBreakerState`).
Callers ask :meth:`CircuitBreaker.acquire` for a permit before each attempt
and report the outcome under it with :meth:`record_success` or
:meth:`record_failure`.
One instance is shared by everything that calls the same service, so all of
them observe the same state.

Transitions are plain synchronous methods with no ``await`` inside, which
makes each one atomic with respect to the event loop.  An instance must not
be shared across event loops or threads.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from followup_resilience.models.retry import (
    CircuitBreakerOptions,
    CircuitBreakerSnapshot,
    CircuitBreakerState,
)
from followup_resilience.utils.errors import CircuitOpenError, RetryableError

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


@dataclass(frozen=True, eq=False)
class CircuitPermit:
    """One admission handed out by :meth:`CircuitBreaker.acquire`.

    Compared by identity: only the permit the breaker issued as its current
    probe can settle or release the HALF_OPEN slot.
    """

    probe: bool
    generation: int


class CircuitBreaker:
    """Failure-counting breaker with a single half-open probe.

    Parameters
    ----------
    options:
        Threshold and recovery timeout; defaults to
        :class:`CircuitBreakerOptions()`.
    name:
        Identifies the guarded service in logs and errors.
    clock:
        Monotonic time source in seconds.
    """

    def __init__(
        self,
        options: CircuitBreakerOptions | None = None,
        *,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._options = options or CircuitBreakerOptions()
        self._name = name
        self._clock = clock
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_transition_at = clock()
        self._probe: CircuitPermit | None = None
        # Bumped on every state change; CLOSED permits from an older
        # generation no longer count.
        self._generation = 0
        self._trip_count = 0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def options(self) -> CircuitBreakerOptions:
        return self._options

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def trip_count(self) -> int:
        """How many times the breaker has gone to OPEN."""
        return self._trip_count

    def snapshot(self) -> CircuitBreakerSnapshot:
        return CircuitBreakerSnapshot(
            name=self._name,
            state=self._state,
            failure_count=self._failure_count,
            last_transition_at=self._last_transition_at,
            probe_in_flight=self._probe is not None,
            trip_count=self._trip_count,
        )

    def retry_after_ms(self) -> float:
        """Milliseconds until an OPEN breaker will admit a probe (0 otherwise)."""
        if self._state is not CircuitBreakerState.OPEN:
            return 0.0
        elapsed_ms = (self._clock() - self._last_transition_at) * 1000
        return max(0.0, self._options.recovery_timeout_ms - elapsed_ms)

    # ------------------------------------------------------------------
    # Permission and outcome reporting
    # ------------------------------------------------------------------

    def acquire(self) -> CircuitPermit | None:
        """Admit the caller, or return ``None`` if the breaker refuses.

        An OPEN breaker whose recovery timeout has elapsed moves to HALF_OPEN
        here and hands the single probe permit to this caller.  Every other
        caller is refused until the probe reports back.

        Pass the returned permit to :meth:`record_success`,
        :meth:`record_failure` or :meth:`release_probe`.  Outcomes reported
        with a permit that no longer matches the breaker (a probe that is not
        the current one, or a CLOSED admission from before a transition) are
        ignored.
        """
        if self._state is CircuitBreakerState.CLOSED:
            return CircuitPermit(probe=False, generation=self._generation)

        if self._state is CircuitBreakerState.OPEN:
            if self.retry_after_ms() > 0:
                return None
            self._transition(CircuitBreakerState.HALF_OPEN)

        if self._probe is not None:
            return None
        self._probe = CircuitPermit(probe=True, generation=self._generation)
        logger.info("circuit_breaker_probe_started", breaker=self._name)
        return self._probe

    def allow_request(self) -> bool:
        """Return whether the caller may attempt the call now.

        Same admission as :meth:`acquire` for callers that report outcomes
        without a permit.
        """
        return self.acquire() is not None

    def record_success(self, permit: CircuitPermit | None = None) -> None:
        if not self._holds(permit, "success"):
            return
        if self._state is CircuitBreakerState.HALF_OPEN:
            self._probe = None
            self._failure_count = 0
            self._transition(CircuitBreakerState.CLOSED)
        elif self._state is CircuitBreakerState.CLOSED:
            self._failure_count = 0

    def record_failure(
        self, error: BaseException | None = None, permit: CircuitPermit | None = None
    ) -> bool:
        """Count a failure.  Returns ``True`` if this call opened the breaker."""
        if not self._holds(permit, "failure"):
            return False
        self._failure_count += 1

        if self._state is CircuitBreakerState.HALF_OPEN:
            self._probe = None
            self._trip("probe_failed", error)
            return True

        if self._state is CircuitBreakerState.CLOSED:
            if isinstance(error, RetryableError) and error.trip_breaker:
                self._trip("forced", error)
                return True
            if self._failure_count >= self._options.failure_threshold:
                self._trip("threshold_reached", error)
                return True

        return False

    def release_probe(self, permit: CircuitPermit | None = None) -> None:
        """Give back a probe slot whose caller went away without an outcome.

        With a *permit*, only that permit's own probe slot is released.
        """
        if permit is not None and permit is not self._probe:
            return
        if self._probe is not None:
            self._probe = None
            logger.info("circuit_breaker_probe_released", breaker=self._name)

    def reset(self) -> None:
        """Force the breaker back to CLOSED with cleared counters."""
        self._failure_count = 0
        self._probe = None
        if self._state is not CircuitBreakerState.CLOSED:
            self._transition(CircuitBreakerState.CLOSED)
        logger.info("circuit_breaker_reset", breaker=self._name)

    async def execute(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        """Run *operation* once under the breaker.

        Raises
        ------
        CircuitOpenError
            If the breaker refuses the call.
        """
        permit = self.acquire()
        if permit is None:
            raise self.open_error()
        try:
            result = await operation()
        except Exception as exc:
            self.record_failure(exc, permit)
            raise
        except BaseException:
            self.release_probe(permit)
            raise
        self.record_success(permit)
        return result

    def open_error(self) -> CircuitOpenError:
        """Build the rejection error for the current state."""
        return CircuitOpenError(
            service_name=self._name,
            state=self._state.value,
            retry_after_ms=self.retry_after_ms(),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _trip(self, reason: str, error: BaseException | None) -> None:
        self._trip_count += 1
        self._transition(CircuitBreakerState.OPEN)
        logger.warning(
            "circuit_breaker_opened",
            breaker=self._name,
            reason=reason,
            failure_count=self._failure_count,
            recovery_timeout_ms=self._options.recovery_timeout_ms,
            error=str(error) if error is not None else None,
        )

    def _holds(self, permit: CircuitPermit | None, outcome: str) -> bool:
        """Whether an outcome reported under *permit* still applies."""
        if permit is None:
            return True
        if permit.probe:
            current = permit is self._probe
        else:
            current = (
                self._state is CircuitBreakerState.CLOSED
                and permit.generation == self._generation
            )
        if not current:
            logger.debug(
                "circuit_breaker_stale_outcome",
                breaker=self._name,
                outcome=outcome,
                state=self._state.value,
            )
        return current

    def _transition(self, new_state: CircuitBreakerState) -> None:
        old_state = self._state
        self._state = new_state
        self._generation += 1
        self._last_transition_at = self._clock()
        logger.info(
            "circuit_breaker_state_changed",
            breaker=self._name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

