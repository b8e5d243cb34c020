"""Cancellable, concurrency-bounded batch execution.

# ─── DESIGN ────────────────────────────────────────────────────────────
#
# BatchExecutor runs one async operation over every item of a collection:
#   - Items are split into fixed-size batches (create_batches)
#   - Up to max_concurrent_batches batches run at once (asyncio.Semaphore)
#   - Inside a batch, up to max_concurrent_items items run at once
#   - Every item goes through RetryExecutor on its own, so one bad item
#     never fails its neighbours
#   - cancel_processing() sets the job's asyncio.Event; the flag is checked
#     before each batch and each item is dispatched, and in-flight items
#     are left to finish
#
# Dispatch order is input order: the dispatcher acquires the batch
# semaphore for batch k before batch k+1, and a batch acquires its item
# semaphore for item i before item i+1.
#
# Pattern: Observer (callbacks on BatchOptions + typed event listeners).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any
from uuid import uuid4

import structlog

from followup_resilience.models.batch import (
    BatchCompletedEvent,
    BatchEvent,
    BatchItemError,
    BatchItemFailedEvent,
    BatchOptions,
    BatchProgressEvent,
    BatchResult,
)
from followup_resilience.services.retry_executor import RetryExecutor
from followup_resilience.utils.concurrency import create_batches, invoke_callback

logger = structlog.get_logger(logger_name=__name__)

ItemOperation = Callable[[Any], Awaitable[Any]]
# Receives every BatchEvent of every job; sync or async.
BatchListener = Callable[[BatchEvent], Any]


class _JobState:
    """Internal mutable state for one ``process_batch`` call.

    Only touched from the event loop thread, between suspension points.
    """

    def __init__(self, job_id: str, total_items: int, total_batches: int) -> None:
        self._job_id = job_id
        self._total_items = total_items
        self._total_batches = total_batches
        self._cancel_event = asyncio.Event()
        self._results: list[Any] = [None] * total_items
        self._errors: list[BatchItemError] = []
        self._processed = 0
        self._succeeded = 0
        self._completed_batches = 0
        self._started_at = time.monotonic()

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def to_result(self) -> BatchResult:
        errors = sorted(self._errors, key=lambda e: e.index)
        return BatchResult(
            job_id=self._job_id,
            success=not errors and not self.cancelled,
            results=list(self._results),
            errors=errors,
            total_processed=self._processed,
            total_succeeded=self._succeeded,
            total_batches=self._total_batches,
            completed_batches=self._completed_batches,
            processing_time_ms=(time.monotonic() - self._started_at) * 1000,
            cancelled=self.cancelled,
        )


class BatchExecutor:
    """Runs an operation over a collection in cancellable batches.

    Parameters
    ----------
    retry_executor:
        Wraps every item's operation.  Share one instance with the rest of
        the application so that named circuit breakers are shared too.
    """

    def __init__(self, retry_executor: RetryExecutor | None = None) -> None:
        self._retry_executor = retry_executor or RetryExecutor()
        self._jobs: dict[str, _JobState] = {}
        self._listeners: list[BatchListener] = []

    # ─── Job execution ─────────────────────────────────────────────────

    async def process_batch(
        self,
        items: Sequence[Any],
        operation: ItemOperation,
        options: BatchOptions | None = None,
        *,
        job_id: str | None = None,
    ) -> BatchResult:
        """Run *operation* on every item and collect the outcome.

        Per-item failures are recorded in ``BatchResult.errors`` with the
        item's original index; they are never raised.

        Parameters
        ----------
        items:
            The input collection.
        operation:
            Async function called with one item.  May be called more than once
            per item when retries are configured.
        options:
            Batch sizing, concurrency, retry policy and callbacks.
        job_id:
            Identifier for :meth:`cancel_processing`; generated when omitted.

        Raises
        ------
        ValueError
            If *job_id* names a job that is still running.
        """
        opts = options or BatchOptions()
        items = list(items)
        batches = create_batches(items, opts.batch_size)
        job_id = job_id or str(uuid4())
        if job_id in self._jobs:
            raise ValueError(f"Job already running: {job_id}")

        state = _JobState(job_id, len(items), len(batches))
        self._jobs[job_id] = state
        logger.info(
            "batch_job_started",
            job_id=job_id,
            items=len(items),
            batches=len(batches),
            max_concurrent_batches=opts.max_concurrent_batches,
        )

        batch_semaphore = asyncio.Semaphore(opts.max_concurrent_batches)
        tasks: list[asyncio.Task[None]] = []
        try:
            await self._report_progress(state, opts)
            for batch_index, (offset, batch) in enumerate(batches):
                await batch_semaphore.acquire()
                if state.cancelled:
                    batch_semaphore.release()
                    logger.info(
                        "batch_job_cancelled",
                        job_id=job_id,
                        next_batch=batch_index,
                    )
                    break
                tasks.append(
                    asyncio.create_task(
                        self._run_batch(
                            state, opts, operation, batch_index, offset, batch, batch_semaphore
                        )
                    )
                )
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            self._jobs.pop(job_id, None)

        result = state.to_result()
        logger.info(
            "batch_job_finished",
            job_id=job_id,
            processed=result.total_processed,
            failed=len(result.errors),
            cancelled=result.cancelled,
            processing_time_ms=round(result.processing_time_ms, 1),
        )
        return result

    async def _run_batch(
        self,
        state: _JobState,
        opts: BatchOptions,
        operation: ItemOperation,
        batch_index: int,
        offset: int,
        batch: list[Any],
        batch_semaphore: asyncio.Semaphore,
    ) -> None:
        """Dispatch the items of one batch, then report it complete."""
        try:
            item_semaphore = asyncio.Semaphore(opts.max_concurrent_items)
            item_tasks: list[asyncio.Task[BatchItemError | None]] = []
            for position, item in enumerate(batch):
                await item_semaphore.acquire()
                if state.cancelled:
                    item_semaphore.release()
                    break
                item_tasks.append(
                    asyncio.create_task(
                        self._run_item(
                            state, opts, operation, batch_index, offset + position, item,
                            item_semaphore,
                        )
                    )
                )
            try:
                outcomes = await asyncio.gather(*item_tasks)
            finally:
                for task in item_tasks:
                    if not task.done():
                        task.cancel()

            if len(item_tasks) < len(batch):
                # Cancelled part-way; the batch never completed.
                return

            state._completed_batches += 1
            batch_errors = [error for error in outcomes if error is not None]
            batch_results = state._results[offset : offset + len(batch)]
            logger.debug(
                "batch_completed",
                job_id=state.job_id,
                batch_index=batch_index,
                failed=len(batch_errors),
            )
            await invoke_callback(
                opts.on_batch_complete,
                batch_index,
                batch_results,
                batch_errors,
                event="batch_callback_failed",
                logger=logger,
            )
            await self._emit(
                BatchCompletedEvent(
                    job_id=state.job_id,
                    batch_index=batch_index,
                    results=batch_results,
                    errors=batch_errors,
                )
            )
            await self._report_progress(state, opts)
        finally:
            batch_semaphore.release()

    async def _run_item(
        self,
        state: _JobState,
        opts: BatchOptions,
        operation: ItemOperation,
        batch_index: int,
        index: int,
        item: Any,
        item_semaphore: asyncio.Semaphore,
    ) -> BatchItemError | None:
        """Run one item through the retry executor; return its error, if any."""
        try:
            try:
                result = await self._retry_executor.execute_with_retry(
                    lambda: operation(item),
                    opts.retry,
                    opts.circuit_breaker_key,
                )
            except Exception as exc:
                item_error = BatchItemError(index=index, batch_index=batch_index, error=exc)
                state._errors.append(item_error)
                state._processed += 1
                logger.warning(
                    "batch_item_failed",
                    job_id=state.job_id,
                    index=index,
                    batch_index=batch_index,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                await invoke_callback(
                    opts.on_batch_error,
                    batch_index,
                    exc,
                    event="batch_callback_failed",
                    logger=logger,
                )
                await self._emit(
                    BatchItemFailedEvent(
                        job_id=state.job_id, batch_index=batch_index, item_error=item_error
                    )
                )
                return item_error

            state._results[index] = result
            state._processed += 1
            state._succeeded += 1
            return None
        finally:
            item_semaphore.release()

    # ─── Job control ───────────────────────────────────────────────────

    def cancel_processing(self, job_id: str | None = None) -> int:
        """Request cancellation of one job, or of every active job.

        Items and batches not yet dispatched are skipped; operations already
        running finish normally.  Returns the number of jobs flagged.
        """
        if job_id is not None:
            state = self._jobs.get(job_id)
            targets = [state] if state is not None else []
        else:
            targets = list(self._jobs.values())

        for state in targets:
            state.cancel()
            logger.info("batch_job_cancel_requested", job_id=state.job_id)
        return len(targets)

    def active_jobs(self) -> list[str]:
        """Ids of running jobs that have not been asked to cancel."""
        return [job_id for job_id, state in self._jobs.items() if not state.cancelled]

    # ─── Event listeners (Observer pattern) ────────────────────────────

    def register_listener(self, callback: BatchListener) -> None:
        """Subscribe *callback* to the events of every job."""
        self._listeners.append(callback)

    def unregister_listener(self, callback: BatchListener) -> None:
        self._listeners = [cb for cb in self._listeners if cb is not callback]

    async def _emit(self, event: BatchEvent) -> None:
        for listener in list(self._listeners):
            await invoke_callback(listener, event, event="batch_listener_failed", logger=logger)

    async def _report_progress(self, state: _JobState, opts: BatchOptions) -> None:
        await invoke_callback(
            opts.on_progress,
            state._processed,
            state._total_items,
            state._completed_batches,
            state._total_batches,
            event="batch_callback_failed",
            logger=logger,
        )
        await self._emit(
            BatchProgressEvent(
                job_id=state.job_id,
                processed=state._processed,
                total=state._total_items,
                batches_done=state._completed_batches,
                total_batches=state._total_batches,
            )
        )
