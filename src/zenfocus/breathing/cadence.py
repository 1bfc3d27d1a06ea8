"""Guided breathing phase timer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TICK_SECONDS = 0.05


class BreathingPhase(Enum):
    INHALE = "inhale"
    HOLD1 = "hold1"
    EXHALE = "exhale"
    HOLD2 = "hold2"
    COMPLETE = "complete"

    @property
    def instruction(self) -> str:
        return _INSTRUCTIONS[self]


_INSTRUCTIONS = {
    BreathingPhase.INHALE: "Breathe In",
    BreathingPhase.HOLD1: "Hold",
    BreathingPhase.EXHALE: "Breathe Out",
    BreathingPhase.HOLD2: "Hold",
    BreathingPhase.COMPLETE: "Complete",
}


@dataclass(frozen=True)
class BreathingExercise:
    """Per-phase durations in seconds. A zero-length hold is skipped."""

    key: str
    name: str
    description: str
    inhale: float
    exhale: float
    hold1: float = 0.0
    hold2: float = 0.0
    cycles: int = 4

    def __post_init__(self) -> None:
        if self.inhale <= 0 or self.exhale <= 0:
            raise ValueError("inhale and exhale must be positive")
        if self.hold1 < 0 or self.hold2 < 0:
            raise ValueError("hold durations cannot be negative")
        if self.cycles < 1:
            raise ValueError("cycles must be at least 1")

    @property
    def total_duration(self) -> float:
        return self.cycles * (self.inhale + self.hold1 + self.exhale + self.hold2)

    @property
    def pattern(self) -> str:
        parts = [self.inhale, self.hold1, self.exhale, self.hold2]
        return "-".join(f"{p:g}" for p in parts)

    def duration_of(self, phase: BreathingPhase) -> float:
        return {
            BreathingPhase.INHALE: self.inhale,
            BreathingPhase.HOLD1: self.hold1,
            BreathingPhase.EXHALE: self.exhale,
            BreathingPhase.HOLD2: self.hold2,
        }.get(phase, 0.0)


BOX_BREATHING = BreathingExercise(
    key="box",
    name="Box Breathing",
    description="Equal counts for inhale, hold, exhale, hold. Great for calming anxiety.",
    inhale=4, hold1=4, exhale=4, hold2=4, cycles=4,
)
RELAXING_BREATH = BreathingExercise(
    key="478",
    name="4-7-8 Relaxing",
    description="Relaxing breath technique. Perfect for stress relief.",
    inhale=4, hold1=7, exhale=8, cycles=4,
)
COHERENT_BREATHING = BreathingExercise(
    key="coherent",
    name="Coherent Breathing",
    description="5 breaths per minute for heart-brain coherence.",
    inhale=6, exhale=6, cycles=5,
)
ENERGIZING_BREATH = BreathingExercise(
    key="energizing",
    name="Energizing Breath",
    description="Shorter exhale to increase energy and alertness.",
    inhale=4, hold1=2, exhale=2, cycles=6,
)

DEFAULT_EXERCISES: dict[str, BreathingExercise] = {
    e.key: e for e in (BOX_BREATHING, RELAXING_BREATH, COHERENT_BREATHING, ENERGIZING_BREATH)
}


class BreathingCadence:
    """Steps through Inhale -> Hold1 -> Exhale -> Hold2 for a number of cycles.

    The clock runs at 50ms so phase boundaries land within one tick of the
    configured duration. Time left over when a phase ends carries into the
    next phase, so rounding does not accumulate over a long exercise.

    Usage:
        cadence = BreathingCadence(BOX_BREATHING)
        cadence.on_phase_change = lambda phase, cycle: print(phase.instruction)
        await cadence.start()
        await cadence.wait_finished()
    """

    def __init__(self, exercise: BreathingExercise, tick_seconds: float = TICK_SECONDS):
        self.exercise = exercise
        self._tick_seconds = tick_seconds
        self._phase = BreathingPhase.INHALE
        self._cycle = 1
        self._phase_elapsed = 0.0
        self._running = False
        self._task: asyncio.Task | None = None
        self._finished = asyncio.Event()

        # Callbacks
        self.on_phase_change: Callable[[BreathingPhase, int], Awaitable[None] | None] | None = None
        self.on_finish: Callable[[], Awaitable[None] | None] | None = None

    @property
    def phase(self) -> BreathingPhase:
        return self._phase

    @property
    def cycle(self) -> int:
        return self._cycle

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_complete(self) -> bool:
        return self._phase == BreathingPhase.COMPLETE

    @property
    def phase_progress(self) -> float:
        duration = self.exercise.duration_of(self._phase)
        if duration <= 0:
            return 1.0 if self.is_complete else 0.0
        return min(1.0, self._phase_elapsed / duration)

    @property
    def remaining_in_phase(self) -> float:
        return max(0.0, self.exercise.duration_of(self._phase) - self._phase_elapsed)

    async def start(self) -> None:
        """Begin the exercise from the first inhale."""
        if self._running:
            return
        self.reset()
        self._running = True
        logger.info(f"Breathing started: {self.exercise.name}")
        self._task = asyncio.create_task(self._tick_loop())
        await self._fire(self.on_phase_change, self._phase, self._cycle)

    async def stop(self) -> None:
        """Stop the exercise and reset to the first inhale."""
        self._running = False
        if self._task and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.reset()
        logger.info("Breathing stopped")

    async def wait_finished(self) -> None:
        await self._finished.wait()

    def reset(self) -> None:
        self._phase = BreathingPhase.INHALE
        self._cycle = 1
        self._phase_elapsed = 0.0
        self._finished.clear()

    def advance(self, seconds: float) -> list[BreathingPhase]:
        """Move the cadence forward by `seconds`.

        Returns the phases entered, in order. Pure bookkeeping so it can be
        driven by any clock.
        """
        entered: list[BreathingPhase] = []
        if self.is_complete:
            return entered

        self._phase_elapsed += seconds
        while not self.is_complete:
            duration = self.exercise.duration_of(self._phase)
            if self._phase_elapsed < duration:
                break
            self._phase_elapsed -= duration
            self._next_phase()
            entered.append(self._phase)

        if self.is_complete:
            self._phase_elapsed = 0.0
        return entered

    def _next_phase(self) -> None:
        ex = self.exercise
        if self._phase == BreathingPhase.INHALE:
            self._phase = BreathingPhase.HOLD1 if ex.hold1 > 0 else BreathingPhase.EXHALE
        elif self._phase == BreathingPhase.HOLD1:
            self._phase = BreathingPhase.EXHALE
        elif self._phase == BreathingPhase.EXHALE and ex.hold2 > 0:
            self._phase = BreathingPhase.HOLD2
        else:
            # End of a full cycle
            if self._cycle >= ex.cycles:
                self._phase = BreathingPhase.COMPLETE
            else:
                self._cycle += 1
                self._phase = BreathingPhase.INHALE

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        try:
            while self._running:
                await asyncio.sleep(self._tick_seconds)
                now = loop.time()
                entered = self.advance(now - last)
                last = now

                for phase in entered:
                    await self._fire(self.on_phase_change, phase, self._cycle)

                if self.is_complete:
                    self._running = False
                    self._finished.set()
                    logger.info(f"Breathing complete: {self.exercise.name}")
                    await self._fire(self.on_finish)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in breathing tick loop: {e}")

    @staticmethod
    async def _fire(callback, *args) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error in breathing callback: {e}")
