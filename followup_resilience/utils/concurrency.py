"""Shared concurrency helpers for the retry and batch executors.

Two small primitives live here:

1. **invoke_callback** -- the catch-and-log boundary around every user
   callback (``on_retry``, ``on_progress``, batch listeners).  Both sync and
   async callables are accepted; whatever the callback raises is logged and
   swallowed so it can never abort the retry loop or a batch run.

2. **create_batches** -- fixed-size partitioning that keeps each batch's
   offset into the original input, so per-item results and errors can be
   written back to their original index.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog

from followup_resilience.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def invoke_callback(
    callback: Callable[..., Any] | None,
    *args: Any,
    event: str = "callback_failed",
    logger: structlog.BoundLogger | None = None,
) -> None:
    """Call *callback* with *args*, awaiting it when it returns an awaitable.

    Parameters
    ----------
    callback:
        A sync or async callable, or ``None`` (no-op).
    *args:
        Positional arguments forwarded to the callback.
    event:
        Log event name used when the callback raises.
    logger:
        Optional structured logger; defaults to this module's logger.
    """
    if callback is None:
        return
    log = logger or _logger
    try:
        outcome = callback(*args)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        log.warning(
            event,
            callback=getattr(callback, "__name__", repr(callback)),
            error=str(exc),
            exc_info=True,
        )


def create_batches(items: Sequence[_T], batch_size: int) -> list[tuple[int, list[_T]]]:
    """Split *items* into consecutive batches of at most *batch_size*.

    Returns
    -------
    list[tuple[int, list]]
        ``(offset, batch)`` pairs where ``offset`` is the index of the batch's
        first item in *items*.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        (offset, list(items[offset : offset + batch_size]))
        for offset in range(0, len(items), batch_size)
    ]
