"""Utility modules for followup-resilience.

- **errors** -- Exception hierarchy rooted at ResilienceError, plus the
  message-based predicates used to classify raw client errors.
- **logging** -- structlog setup driven by Settings (console renderer in
  development, JSON in production).
- **concurrency** -- The catch-and-log callback boundary and batch
  partitioning shared by the retry and batch executors.
"""

from followup_resilience.utils.concurrency import create_batches, invoke_callback
from followup_resilience.utils.errors import (
    CircuitOpenError,
    ConfigurationError,
    NonRetryableError,
    ResilienceError,
    RetryableError,
    is_network_error,
    is_rate_limit_error,
    is_transient_error,
)
from followup_resilience.utils.logging import (
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)

__all__ = [
    "CircuitOpenError",
    "ConfigurationError",
    "NonRetryableError",
    "ResilienceError",
    "RetryableError",
    "configure_logging",
    "configure_logging_from_settings",
    "create_batches",
    "get_logger",
    "invoke_callback",
    "is_network_error",
    "is_rate_limit_error",
    "is_transient_error",
]
