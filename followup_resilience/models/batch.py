"""Models for batch jobs: options, per-item errors, results and events.

The batch executor reports progress two ways: the plain callbacks carried on
:class:`BatchOptions` (``on_progress`` and friends), and a stream of typed,
immutable event records delivered to listeners registered on the executor.
Both are fed from the same emission point, so they never disagree.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from followup_resilience.models.retry import RetryOptions

# (processed, total, batches_done, total_batches)
ProgressCallback = Callable[[int, int, int, int], Any]
# (batch_index, results, errors)
BatchCompleteCallback = Callable[[int, list[Any], list[Any]], Any]
# (batch_index, error)
BatchErrorCallback = Callable[[int, BaseException], Any]


class BatchOptions(BaseModel):
    """Configuration of one ``process_batch`` call."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(default=10, ge=1)
    max_concurrent_batches: int = Field(default=3, ge=1)
    # Items of one batch in flight at once; 1 = sequential within the batch.
    max_concurrent_items: int = Field(default=1, ge=1)
    # Per-item retry policy; None uses the retry executor's defaults.
    retry: RetryOptions | None = None
    # Named circuit breaker guarding every item of the job.
    circuit_breaker_key: str | None = None
    on_progress: ProgressCallback | None = None
    on_batch_complete: BatchCompleteCallback | None = None
    on_batch_error: BatchErrorCallback | None = None


class BatchItemError(BaseModel):
    """A failed item, tagged with its index in the original input."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    index: int
    batch_index: int
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error)


class BatchResult(BaseModel):
    """Aggregate outcome of a batch job.

    ``results`` has one slot per input item, in input order; a slot is
    ``None`` when the item failed or was never dispatched because the job was
    cancelled.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    job_id: str
    success: bool
    results: list[Any] = Field(default_factory=list)
    errors: list[BatchItemError] = Field(default_factory=list)
    # Items whose operation ran to completion (succeeded or failed).
    total_processed: int = 0
    total_succeeded: int = 0
    total_batches: int = 0
    completed_batches: int = 0
    processing_time_ms: float = 0.0
    cancelled: bool = False


# ---------------------------------------------------------------------------
# Typed events
# ---------------------------------------------------------------------------

class BatchEvent(BaseModel):
    """Base class for batch events."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    job_id: str


class BatchProgressEvent(BatchEvent):
    processed: int
    total: int
    batches_done: int
    total_batches: int


class BatchCompletedEvent(BatchEvent):
    batch_index: int
    results: list[Any]
    errors: list[BatchItemError]


class BatchItemFailedEvent(BatchEvent):
    batch_index: int
    item_error: BatchItemError
