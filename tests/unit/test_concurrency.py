"""Unit tests for the callback boundary and batch partitioning helpers."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from followup_resilience.utils.concurrency import create_batches, invoke_callback


class TestInvokeCallback:
    @pytest.mark.asyncio
    async def test_none_is_noop(self) -> None:
        await invoke_callback(None, 1, 2)

    @pytest.mark.asyncio
    async def test_sync_callback(self) -> None:
        callback = MagicMock()
        await invoke_callback(callback, "a", 1)
        callback.assert_called_once_with("a", 1)

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self) -> None:
        callback = AsyncMock()
        await invoke_callback(callback, "a")
        callback.assert_awaited_once_with("a")

    @pytest.mark.asyncio
    async def test_exceptions_are_logged_not_raised(self) -> None:
        logger = MagicMock()
        callback = AsyncMock(side_effect=RuntimeError("listener broke"))

        await invoke_callback(callback, event="progress_callback_failed", logger=logger)

        logger.warning.assert_called_once()
        assert logger.warning.call_args.args[0] == "progress_callback_failed"
        assert logger.warning.call_args.kwargs["error"] == "listener broke"


class TestCreateBatches:
    def test_partitions_with_offsets(self) -> None:
        batches = create_batches(list(range(25)), 10)
        assert [offset for offset, _ in batches] == [0, 10, 20]
        assert [len(batch) for _, batch in batches] == [10, 10, 5]
        assert batches[2][1] == [20, 21, 22, 23, 24]

    def test_empty_input(self) -> None:
        assert create_batches([], 3) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            create_batches([1, 2], 0)
