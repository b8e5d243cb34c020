"""Unit tests for BatchExecutor: partitioning, isolation, cancellation, events."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest

from followup_resilience.models.batch import (
    BatchCompletedEvent,
    BatchEvent,
    BatchItemFailedEvent,
    BatchOptions,
    BatchProgressEvent,
)
from followup_resilience.models.retry import CircuitBreakerOptions, RetryOptions
from followup_resilience.services.batch_executor import BatchExecutor
from followup_resilience.services.retry_executor import RetryExecutor
from followup_resilience.utils.errors import CircuitOpenError, NonRetryableError

if TYPE_CHECKING:
    from conftest import RecordingSleep


@pytest.fixture()
def retry_executor(recorded_sleep: RecordingSleep) -> RetryExecutor:
    return RetryExecutor(
        RetryOptions(max_attempts=3, base_delay_ms=10, jitter_ms=0),
        sleep=recorded_sleep,
    )


@pytest.fixture()
def executor(retry_executor: RetryExecutor) -> BatchExecutor:
    return BatchExecutor(retry_executor)


async def _double(item: int) -> int:
    await asyncio.sleep(0)
    return item * 2


# ======================================================================
# Partitioning and results
# ======================================================================


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_25_items_in_batches_of_10(self, executor: BatchExecutor) -> None:
        progress: list[tuple[int, int, int, int]] = []
        options = BatchOptions(batch_size=10, on_progress=lambda *a: progress.append(a))

        result = await executor.process_batch(list(range(25)), _double, options)

        assert result.success is True
        assert result.total_batches == 3
        assert result.completed_batches == 3
        assert result.total_processed == 25
        assert result.total_succeeded == 25
        assert result.results == [i * 2 for i in range(25)]
        assert result.errors == []
        assert result.cancelled is False
        assert progress[0] == (0, 25, 0, 3)
        assert progress[-1] == (25, 25, 3, 3)
        assert len(progress) == 4

    @pytest.mark.asyncio
    async def test_empty_input(self, executor: BatchExecutor) -> None:
        progress = MagicMock()
        result = await executor.process_batch([], _double, BatchOptions(on_progress=progress))

        assert result.success is True
        assert result.total_batches == 0
        assert result.results == []
        progress.assert_called_once_with(0, 0, 0, 0)

    @pytest.mark.asyncio
    async def test_failed_item_is_isolated(self, executor: BatchExecutor) -> None:
        on_batch_error = MagicMock()
        on_batch_complete = MagicMock()

        async def operation(item: int) -> int:
            if item == 7:
                raise NonRetryableError("malformed message")
            return item

        result = await executor.process_batch(
            list(range(25)),
            operation,
            BatchOptions(on_batch_error=on_batch_error, on_batch_complete=on_batch_complete),
        )

        assert result.success is False
        assert result.total_processed == 25
        assert result.total_succeeded == 24
        assert [(e.index, e.batch_index) for e in result.errors] == [(7, 0)]
        assert result.errors[0].message == "malformed message"
        assert result.results[7] is None
        assert result.results[8] == 8
        on_batch_error.assert_called_once()
        assert on_batch_error.call_args.args[0] == 0
        assert isinstance(on_batch_error.call_args.args[1], NonRetryableError)

        first_batch = next(
            c.args for c in on_batch_complete.call_args_list if c.args[0] == 0
        )
        assert first_batch[1][7] is None
        assert [e.index for e in first_batch[2]] == [7]

    @pytest.mark.asyncio
    async def test_items_are_retried(
        self, executor: BatchExecutor, recorded_sleep: RecordingSleep
    ) -> None:
        attempts: dict[int, int] = {}

        async def flaky(item: int) -> int:
            attempts[item] = attempts.get(item, 0) + 1
            if item == 3 and attempts[item] == 1:
                raise ConnectionError("reset by peer")
            return item

        result = await executor.process_batch(list(range(5)), flaky)

        assert result.success is True
        assert attempts[3] == 2
        assert recorded_sleep.delays_ms == [10.0]

    @pytest.mark.asyncio
    async def test_errors_sorted_by_original_index(self, executor: BatchExecutor) -> None:
        async def operation(item: int) -> int:
            await asyncio.sleep(0.001 * (10 - item))
            if item % 4 == 0:
                raise NonRetryableError(f"bad {item}")
            return item

        result = await executor.process_batch(
            list(range(10)),
            operation,
            BatchOptions(batch_size=3, max_concurrent_batches=4, max_concurrent_items=3),
        )

        assert [e.index for e in result.errors] == [0, 4, 8]
        assert [e.batch_index for e in result.errors] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_duplicate_job_id_rejected(self, executor: BatchExecutor) -> None:
        release = asyncio.Event()

        async def blocked(item: int) -> int:
            await release.wait()
            return item

        task = asyncio.create_task(executor.process_batch([1], blocked, job_id="job-1"))
        await asyncio.sleep(0.01)
        with pytest.raises(ValueError):
            await executor.process_batch([2], blocked, job_id="job-1")
        release.set()
        await task


# ======================================================================
# Concurrency limits
# ======================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_items_within_batch_run_in_order_by_default(
        self, executor: BatchExecutor
    ) -> None:
        started: list[int] = []

        async def record(item: int) -> int:
            started.append(item)
            await asyncio.sleep(0.001 * (5 - item))
            return item

        await executor.process_batch(
            list(range(5)), record, BatchOptions(batch_size=5, max_concurrent_batches=1)
        )

        assert started == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_in_flight_bounded_by_limits(self, executor: BatchExecutor) -> None:
        in_flight = 0
        peak = 0

        async def track(item: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.005)
            in_flight -= 1
            return item

        result = await executor.process_batch(
            list(range(20)),
            track,
            BatchOptions(batch_size=5, max_concurrent_batches=2, max_concurrent_items=2),
        )

        assert result.success is True
        assert 1 < peak <= 4

    @pytest.mark.asyncio
    async def test_batches_dispatched_in_order(self, executor: BatchExecutor) -> None:
        first_seen: list[int] = []

        async def record(item: int) -> int:
            batch = item // 3
            if batch not in first_seen:
                first_seen.append(batch)
            await asyncio.sleep(0)
            return item

        await executor.process_batch(
            list(range(12)), record, BatchOptions(batch_size=3, max_concurrent_batches=2)
        )

        assert first_seen == [0, 1, 2, 3]


# ======================================================================
# Cancellation
# ======================================================================


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_after_first_batch_stops_dispatch(self, executor: BatchExecutor) -> None:
        def cancel_all(batch_index: int, results: list[Any], errors: list[Any]) -> None:
            executor.cancel_processing()

        result = await executor.process_batch(
            list(range(25)),
            _double,
            BatchOptions(batch_size=10, max_concurrent_batches=1, on_batch_complete=cancel_all),
        )

        assert result.cancelled is True
        assert result.success is False
        assert result.total_processed < 25
        assert result.total_processed == 10
        assert result.results[:10] == [i * 2 for i in range(10)]
        assert result.results[10:] == [None] * 15

    @pytest.mark.asyncio
    async def test_cancel_by_job_id_lets_in_flight_finish(self, executor: BatchExecutor) -> None:
        gate = asyncio.Event()
        started = asyncio.Event()

        async def slow(item: int) -> int:
            started.set()
            await gate.wait()
            return item

        task = asyncio.create_task(
            executor.process_batch(
                list(range(6)), slow, BatchOptions(batch_size=3, max_concurrent_batches=1),
                job_id="triage-run",
            )
        )
        await started.wait()
        assert executor.active_jobs() == ["triage-run"]

        assert executor.cancel_processing("triage-run") == 1
        assert executor.active_jobs() == []
        gate.set()
        result = await task

        assert result.cancelled is True
        assert result.job_id == "triage-run"
        assert result.total_processed == 1
        assert result.results == [0, None, None, None, None, None]

    def test_cancel_unknown_job_returns_zero(self, executor: BatchExecutor) -> None:
        assert executor.cancel_processing("nope") == 0
        assert executor.cancel_processing() == 0


# ======================================================================
# Circuit breaker sharing
# ======================================================================


class TestCircuitBreakerKey:
    @pytest.mark.asyncio
    async def test_open_breaker_fails_remaining_items_fast(self) -> None:
        retry_executor = RetryExecutor(
            RetryOptions(max_attempts=1),
            breaker_options=CircuitBreakerOptions(failure_threshold=2, recovery_timeout_ms=60_000),
        )
        executor = BatchExecutor(retry_executor)
        calls: list[int] = []

        async def down(item: int) -> int:
            calls.append(item)
            raise RuntimeError("503 Service Unavailable")

        result = await executor.process_batch(
            list(range(5)),
            down,
            BatchOptions(batch_size=5, max_concurrent_batches=1, circuit_breaker_key="llm-api"),
        )

        assert calls == [0, 1]
        assert len(result.errors) == 5
        assert all(isinstance(e.error, CircuitOpenError) for e in result.errors[2:])
        assert result.total_processed == 5


# ======================================================================
# Callbacks and listeners
# ======================================================================


class TestCallbacksAndListeners:
    @pytest.mark.asyncio
    async def test_failing_callback_does_not_abort_job(self, executor: BatchExecutor) -> None:
        def explode(*args: Any) -> None:
            raise RuntimeError("ui gone")

        result = await executor.process_batch(
            list(range(12)),
            _double,
            BatchOptions(batch_size=5, on_progress=explode, on_batch_complete=explode),
        )

        assert result.success is True
        assert result.total_processed == 12

    @pytest.mark.asyncio
    async def test_async_callbacks_are_awaited(self, executor: BatchExecutor) -> None:
        seen: list[int] = []

        async def on_complete(batch_index: int, results: list[Any], errors: list[Any]) -> None:
            await asyncio.sleep(0)
            seen.append(batch_index)

        await executor.process_batch(
            list(range(9)),
            _double,
            BatchOptions(batch_size=3, max_concurrent_batches=1, on_batch_complete=on_complete),
        )

        assert seen == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_listeners_receive_typed_events(self, executor: BatchExecutor) -> None:
        events: list[BatchEvent] = []
        executor.register_listener(events.append)

        async def operation(item: int) -> int:
            if item == 4:
                raise NonRetryableError("bad")
            return item

        result = await executor.process_batch(
            list(range(6)), operation, BatchOptions(batch_size=3), job_id="job-7"
        )

        progress = [e for e in events if isinstance(e, BatchProgressEvent)]
        completed = [e for e in events if isinstance(e, BatchCompletedEvent)]
        failed = [e for e in events if isinstance(e, BatchItemFailedEvent)]
        assert all(e.job_id == "job-7" for e in events)
        assert len(progress) == 3
        assert sorted(e.batch_index for e in completed) == [0, 1]
        assert [e.item_error.index for e in failed] == [4]
        assert result.errors[0].index == 4

    @pytest.mark.asyncio
    async def test_unregistered_listener_is_silent(self, executor: BatchExecutor) -> None:
        listener = MagicMock()
        executor.register_listener(listener)
        executor.unregister_listener(listener)

        await executor.process_batch([1, 2], _double)

        listener.assert_not_called()
