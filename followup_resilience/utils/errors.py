"""Custom exception hierarchy for the resilient-execution layer.

All library exceptions inherit from :class:`ResilienceError`, which carries an
optional ``service_name`` so error handlers can identify which downstream
dependency (e.g. "llm-api", "ews", "graph") the failure belongs to.

The hierarchy is organized by failure kind:

    ResilienceError  (base -- catch-all for any library error)
    +-- RetryableError      (transient; may be retried, may force-open a breaker)
    +-- NonRetryableError   (permanent; aborts the retry loop immediately)
    +-- CircuitOpenError    (breaker rejected the call; "temporarily unavailable")
    +-- ConfigurationError  (invalid options / settings)

Operations are free to raise anything.  An exception that is neither a
``RetryableError`` nor a ``NonRetryableError`` is treated as retryable, unless
the caller supplies a ``retryable_errors`` predicate.  The message-based
predicates at the bottom of this module (``is_rate_limit_error`` and friends)
are the classification heuristics the add-in applies to raw HTTP client
errors.
"""

from __future__ import annotations


class ResilienceError(Exception):
    """Base exception for all resilience-layer errors.

    The ``__str__`` method prefixes the service name in brackets for
    structured log output, e.g. ``[llm-api] Service temporarily unavailable``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        service_name: str | None = None,
    ) -> None:
        self._message = message
        self._service_name = service_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def service_name(self) -> str | None:
        return self._service_name

    def __str__(self) -> str:
        if self._service_name:
            return f"[{self._service_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Operation-domain errors (classified by the caller)
# ---------------------------------------------------------------------------

class RetryableError(ResilienceError):
    """Raised by an operation for a transient failure worth retrying.

    When ``trip_breaker`` is set, a guarding circuit breaker opens on this
    failure immediately instead of waiting for its failure threshold (e.g. the
    service answered "quota exhausted for the day").
    """

    def __init__(
        self,
        message: str = "Transient failure",
        trip_breaker: bool = False,
        service_name: str | None = None,
    ) -> None:
        super().__init__(message=message, service_name=service_name)
        self._trip_breaker = trip_breaker

    @property
    def is_retryable(self) -> bool:
        return True

    @property
    def trip_breaker(self) -> bool:
        return self._trip_breaker


class NonRetryableError(ResilienceError):
    """Raised by an operation for a permanent failure (bad request, auth)."""

    def __init__(
        self,
        message: str = "Permanent failure",
        service_name: str | None = None,
    ) -> None:
        super().__init__(message=message, service_name=service_name)

    @property
    def is_retryable(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Breaker rejection
# ---------------------------------------------------------------------------

class CircuitOpenError(ResilienceError):
    """Raised when a circuit breaker refuses to let a call through.

    This is deliberately *not* a ``RetryableError``: the retry loop that
    receives a rejection stops at once, and callers can tell "the service is
    shedding load" apart from "the operation failed".
    """

    def __init__(
        self,
        message: str = "Service temporarily unavailable",
        service_name: str | None = None,
        state: str = "OPEN",
        retry_after_ms: float = 0.0,
    ) -> None:
        super().__init__(message=message, service_name=service_name)
        self._state = state
        self._retry_after_ms = retry_after_ms

    @property
    def state(self) -> str:
        return self._state

    @property
    def retry_after_ms(self) -> float:
        return self._retry_after_ms


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(ResilienceError):
    """Raised when options or settings are invalid."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        service_name: str | None = None,
    ) -> None:
        super().__init__(message=message, service_name=service_name)


# ---------------------------------------------------------------------------
# Message-based classification of raw client errors
# ---------------------------------------------------------------------------

_NETWORK_MARKERS = (
    "network",
    "timeout",
    "timed out",
    "connection",
    "socket",
    "econnreset",
    "enotfound",
)
_RATE_LIMIT_MARKERS = ("rate limit", "429", "quota exceeded", "too many requests")
_SERVER_MARKERS = (
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
    "gateway timeout",
)
_CLIENT_MARKERS = (
    "400",
    "401",
    "403",
    "404",
    "bad request",
    "unauthorized",
    "forbidden",
    "not found",
)


def _message_of(error: BaseException) -> str:
    return str(error).lower()


def is_network_error(error: BaseException) -> bool:
    """Return ``True`` for connection-level failures (reset, DNS, timeouts)."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    message = _message_of(error)
    return any(marker in message for marker in _NETWORK_MARKERS)


def is_rate_limit_error(error: BaseException) -> bool:
    """Return ``True`` when the error text reports throttling / quota."""
    message = _message_of(error)
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


def is_transient_error(error: BaseException) -> bool:
    """Heuristic classification for unmarked errors.

    Network, throttling and 5xx failures are transient; 4xx client errors are
    permanent; anything unrecognised is treated as transient.
    """
    if isinstance(error, NonRetryableError):
        return False
    if isinstance(error, RetryableError):
        return True
    if is_network_error(error) or is_rate_limit_error(error):
        return True
    message = _message_of(error)
    if any(marker in message for marker in _SERVER_MARKERS):
        return True
    if any(marker in message for marker in _CLIENT_MARKERS):
        return False
    return True
