"""Shared pytest fixtures for the followup-resilience test suite."""

from __future__ import annotations

import asyncio
import random

import pytest


# ---------------------------------------------------------------------------
# Time control
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock; call it to read the current time in seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Drop-in for ``asyncio.sleep`` that records delays instead of waiting.

    Optionally advances a :class:`FakeClock` by each delay so breaker
    recovery timeouts elapse as the retry loop "sleeps".
    """

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)
        await asyncio.sleep(0)

    @property
    def delays_ms(self) -> list[float]:
        return [round(d * 1000, 6) for d in self.delays]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorded_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def clocked_sleep(clock: FakeClock) -> RecordingSleep:
    """Recording sleep that also moves *clock* forward."""
    return RecordingSleep(clock)
