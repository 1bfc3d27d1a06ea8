"""Shared fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from zenfocus.focus.biometrics import StressEstimator
from zenfocus.focus.models import Preset
from zenfocus.focus.scheduler import PhaseScheduler


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 17, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


TINY = Preset(
    id="tiny",
    name="Tiny",
    focus_duration=3,
    short_break_duration=2,
    long_break_duration=4,
    sessions_until_long_break=2,
)


async def run_ticks(scheduler: PhaseScheduler, clock: FakeClock, count: int) -> None:
    for _ in range(count):
        clock.advance(1)
        await scheduler.tick()


async def settle() -> None:
    """Let a zero-delay settle task run."""
    await asyncio.sleep(0.01)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def estimator() -> StressEstimator:
    return StressEstimator(resting_heart_rate=60)


@pytest.fixture
async def scheduler(clock, estimator):
    # The real clock never fires during a test; ticks are driven by hand
    s = PhaseScheduler(
        preset=TINY,
        estimator=estimator,
        tick_interval=3600,
        settle_delay=0,
        clock=clock,
    )
    yield s
    await s.close()
