"""Focus / break phase state machine with stress-adaptive break offers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from zenfocus.focus.biometrics import BiometricSample, StressEstimator
from zenfocus.focus.models import (
    CLASSIC,
    BreakExtensionOffer,
    Preset,
    Session,
    StressLevel,
    TimerPhase,
    TimerState,
    format_clock,
)

logger = logging.getLogger(__name__)

MIN_SESSION_SECONDS = 60
SETTLE_DELAY_SECONDS = 0.5


class EventKind(Enum):
    """What changed in the scheduler."""
    STATE_CHANGED = "state_changed"
    TICK = "tick"
    PHASE_COMPLETED = "phase_completed"
    PHASE_CHANGED = "phase_changed"
    SESSION_FINALIZED = "session_finalized"
    STRESS_CHANGED = "stress_changed"
    OFFER_PUBLISHED = "offer_published"
    OFFER_CLEARED = "offer_cleared"


@dataclass(frozen=True)
class SchedulerSnapshot:
    """Read-only view of the scheduler's published state."""
    phase: TimerPhase
    state: TimerState
    time_remaining: float
    total_time: float
    completed_focus_sessions: int
    current_session_number: int
    todays_total_focus_time: float
    stress_level: StressLevel
    offer: BreakExtensionOffer | None
    preset_id: str

    @property
    def progress(self) -> float:
        """Fraction of the current phase elapsed (0-1)."""
        if self.total_time <= 0:
            return 0.0
        return min(1.0, max(0.0, 1 - self.time_remaining / self.total_time))

    @property
    def time_remaining_display(self) -> str:
        return format_clock(self.time_remaining)


@dataclass(frozen=True)
class SchedulerEvent:
    """A single change emitted by a mutating operation."""
    kind: EventKind
    snapshot: SchedulerSnapshot
    phase: TimerPhase | None = None
    session: Session | None = None
    offer: BreakExtensionOffer | None = None


Listener = Callable[[SchedulerEvent], Awaitable[None] | None]


class PhaseScheduler:
    """Focus timer state machine driven by a 1-second clock.

    All mutations (user intents, clock ticks and biometric samples) are
    serialized through one asyncio lock. Events produced while the lock is
    held are delivered to callbacks after it is released, so callbacks may
    call back into the scheduler.

    Usage:
        scheduler = PhaseScheduler(preset=CLASSIC, estimator=StressEstimator())
        scheduler.on_phase_complete = lambda phase: print(f"{phase} done")
        scheduler.on_session_finalized = recorder.record

        await scheduler.start()
        await scheduler.pause()
        await scheduler.resume()
        await scheduler.skip()   # finish the phase now
        await scheduler.stop()   # abandon and reset to Focus
    """

    def __init__(
        self,
        preset: Preset = CLASSIC,
        estimator: StressEstimator | None = None,
        *,
        tick_interval: float = 1.0,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        min_session_seconds: float = MIN_SESSION_SECONDS,
        auto_start_breaks: bool = False,
        auto_start_focus: bool = False,
        stress_adaptive_breaks: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._preset = preset
        self._estimator = estimator
        self._tick_interval = tick_interval
        self._settle_delay = settle_delay
        self._min_session_seconds = min_session_seconds
        self.auto_start_breaks = auto_start_breaks
        self.auto_start_focus = auto_start_focus
        self.stress_adaptive_breaks = stress_adaptive_breaks
        self._now = clock

        self._phase = TimerPhase.FOCUS
        self._state = TimerState.IDLE
        self._total_time = preset.focus_duration
        self._time_remaining = preset.focus_duration
        self._completed_focus_sessions = 0
        self._current_session_number = 1
        self._todays_total_focus_time = 0.0
        self._today = clock().date()
        self._stress_level = estimator.stress_level if estimator else StressLevel.NORMAL
        self._offer: BreakExtensionOffer | None = None
        self._session: Session | None = None

        self._clock_task: asyncio.Task | None = None
        self._settle_task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._closed = False

        # Callbacks
        self._listeners: list[Listener] = []
        self.on_tick: Callable[[SchedulerSnapshot], Awaitable[None] | None] | None = None
        self.on_phase_complete: Callable[[TimerPhase], Awaitable[None] | None] | None = None
        self.on_session_finalized: Callable[[Session], Awaitable[None] | None] | None = None
        self.on_break_offer: Callable[[BreakExtensionOffer], Awaitable[None] | None] | None = None

    # Published state

    @property
    def snapshot(self) -> SchedulerSnapshot:
        return SchedulerSnapshot(
            phase=self._phase,
            state=self._state,
            time_remaining=self._time_remaining,
            total_time=self._total_time,
            completed_focus_sessions=self._completed_focus_sessions,
            current_session_number=self._current_session_number,
            todays_total_focus_time=self._todays_total_focus_time,
            stress_level=self._stress_level,
            offer=self._offer,
            preset_id=self._preset.id,
        )

    @property
    def phase(self) -> TimerPhase:
        return self._phase

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def preset(self) -> Preset:
        return self._preset

    @property
    def time_remaining(self) -> float:
        return self._time_remaining

    @property
    def total_time(self) -> float:
        return self._total_time

    @property
    def stress_level(self) -> StressLevel:
        return self._stress_level

    @property
    def offer(self) -> BreakExtensionOffer | None:
        return self._offer

    @property
    def current_session(self) -> Session | None:
        return self._session

    def subscribe(self, listener: Listener) -> None:
        """Receive every SchedulerEvent."""
        self._listeners.append(listener)

    # Intents

    async def start(self) -> None:
        """Start a new phase from Idle, or resume from Paused."""
        async with self._lock:
            if self._closed or self._state == TimerState.RUNNING:
                return

            events: list[SchedulerEvent] = []
            self._roll_day()

            if self._state == TimerState.COMPLETED:
                # Never jump straight from Completed to Running
                self._cancel_settle()
                self._settle_locked(events)

            if self._state == TimerState.IDLE:
                self._session = Session(
                    phase=self._phase,
                    start_time=self._now(),
                    planned_duration=self._total_time,
                )
                logger.info(f"Timer started: {self._phase.value} ({format_clock(self._total_time)})")
            else:
                logger.info(f"Timer resumed: {self._phase.value}")

            self._set_state(TimerState.RUNNING, events)
            self._clock_task = asyncio.create_task(self._run_clock())

        await self._dispatch(events)

    async def resume(self) -> None:
        """Resume a paused timer."""
        await self.start()

    async def pause(self) -> None:
        """Pause a running timer. The session stays open."""
        async with self._lock:
            if self._state != TimerState.RUNNING:
                logger.debug(f"Ignoring pause while {self._state.value}")
                return

            events: list[SchedulerEvent] = []
            await self._cancel_clock()
            self._set_state(TimerState.PAUSED, events)
            self._clear_offer(events)
            logger.info("Timer paused")

        await self._dispatch(events)

    async def stop(self) -> None:
        """Abandon the current phase and reset to an idle Focus phase.

        The open session is kept (as not completed) only if it ran for at
        least the minimum meaningful duration.
        """
        async with self._lock:
            events: list[SchedulerEvent] = []
            await self._cancel_clock()
            self._cancel_settle()

            if self._session is not None:
                now = self._now()
                elapsed = (now - self._session.start_time).total_seconds()
                if elapsed >= self._min_session_seconds:
                    session = self._session.finalize(now, completed=False, stress_level=self._stress_level)
                    events.append(self._event(EventKind.SESSION_FINALIZED, session=session))
                    logger.info(f"Stopped {session.phase.value} session after {elapsed:.0f}s")
                else:
                    logger.debug(f"Discarding {elapsed:.0f}s session")
                self._session = None

            self._clear_offer(events)
            if self._phase != TimerPhase.FOCUS:
                self._phase = TimerPhase.FOCUS
                events.append(self._event(EventKind.PHASE_CHANGED, phase=self._phase))
            self._reset_countdown()
            self._set_state(TimerState.IDLE, events)

        await self._dispatch(events)

    async def skip(self) -> None:
        """Complete the current phase immediately."""
        async with self._lock:
            if self._closed or self._state == TimerState.COMPLETED:
                return
            events: list[SchedulerEvent] = []
            await self._complete_phase(events)

        await self._dispatch(events)

    async def select_preset(self, preset: Preset) -> None:
        """Switch presets. Only allowed while Idle."""
        async with self._lock:
            if self._state != TimerState.IDLE:
                logger.debug(f"Ignoring preset change while {self._state.value}")
                return

            events: list[SchedulerEvent] = []
            self._preset = preset
            if self._phase != TimerPhase.FOCUS:
                self._phase = TimerPhase.FOCUS
                events.append(self._event(EventKind.PHASE_CHANGED, phase=self._phase))
            self._reset_countdown()
            events.append(self._event(EventKind.STATE_CHANGED))
            logger.info(f"Preset selected: {preset.name}")

        await self._dispatch(events)

    async def restore_today(self, todays_focus_time: float, completed_focus_sessions: int) -> None:
        """Seed today's counters from persisted history. Only allowed while Idle."""
        async with self._lock:
            if self._state != TimerState.IDLE:
                return
            self._today = self._now().date()
            self._todays_total_focus_time = todays_focus_time
            self._completed_focus_sessions = completed_focus_sessions

    async def tick(self) -> None:
        """Advance the countdown by one second. No-op unless Running."""
        async with self._lock:
            if self._state != TimerState.RUNNING:
                return

            events: list[SchedulerEvent] = []
            step = min(1.0, self._time_remaining)
            self._time_remaining -= step
            if self._phase == TimerPhase.FOCUS:
                self._todays_total_focus_time += step
            # A tick landing on a new date closes out the previous day
            self._roll_day()
            events.append(self._event(EventKind.TICK))

            if self._time_remaining <= 0:
                await self._complete_phase(events)

        await self._dispatch(events)

    async def update_stress_level(self, level: StressLevel) -> None:
        """Apply a new fused stress level and recompute any break offer."""
        async with self._lock:
            events: list[SchedulerEvent] = []
            self._apply_stress(level, events)

        await self._dispatch(events)

    async def ingest_heart_rate(self, sample: BiometricSample) -> StressLevel | None:
        """Feed a heart-rate reading through the estimator."""
        return await self._ingest(sample, hrv=False)

    async def ingest_hrv(self, sample: BiometricSample) -> StressLevel | None:
        """Feed an HRV reading through the estimator."""
        return await self._ingest(sample, hrv=True)

    async def accept_extension(self) -> float:
        """Lengthen the running break by the offered amount.

        Returns the seconds added, 0 if there was no valid offer.
        """
        async with self._lock:
            offer = self._offer
            if offer is None or not self._phase.is_break or self._state != TimerState.RUNNING:
                return 0.0

            events: list[SchedulerEvent] = []
            self._time_remaining += offer.extension_seconds
            self._total_time += offer.extension_seconds
            self._clear_offer(events)
            logger.info(f"Break extended by {offer.extension_seconds:.0f}s")

        await self._dispatch(events)
        return offer.extension_seconds

    async def decline_extension(self) -> None:
        """Dismiss the current offer without changing the countdown."""
        async with self._lock:
            events: list[SchedulerEvent] = []
            self._clear_offer(events)

        await self._dispatch(events)

    async def close(self) -> None:
        """Cancel the clock and any pending settle. The scheduler is unusable afterwards."""
        async with self._lock:
            self._closed = True
            await self._cancel_clock()
            self._cancel_settle()

    # Internals

    async def _ingest(self, sample: BiometricSample, hrv: bool) -> StressLevel | None:
        if self._estimator is None:
            return None

        async with self._lock:
            if hrv:
                level = self._estimator.add_hrv(sample)
            else:
                level = self._estimator.add_heart_rate(sample)
            if level is None:
                return None
            events: list[SchedulerEvent] = []
            self._apply_stress(level, events)

        await self._dispatch(events)
        return level

    async def _run_clock(self) -> None:
        """Main timer tick loop."""
        try:
            while self._clock_task is asyncio.current_task():
                await asyncio.sleep(self._tick_interval)
                await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in timer tick loop: {e}")

    async def _cancel_clock(self) -> None:
        task = self._clock_task
        self._clock_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _cancel_settle(self) -> None:
        if self._settle_task is not None:
            self._settle_task.cancel()
            self._settle_task = None

    async def _complete_phase(self, events: list[SchedulerEvent]) -> None:
        """Finalize the session and move to the next phase. Lock must be held."""
        await self._cancel_clock()

        finished = self._phase
        if self._session is not None:
            session = self._session.finalize(self._now(), completed=True, stress_level=self._stress_level)
            events.append(self._event(EventKind.SESSION_FINALIZED, session=session))
            self._session = None

        if finished == TimerPhase.FOCUS:
            self._completed_focus_sessions += 1
            if self._completed_focus_sessions % self._preset.sessions_until_long_break == 0:
                self._phase = TimerPhase.LONG_BREAK
            else:
                self._phase = TimerPhase.SHORT_BREAK
            logger.info(f"Focus phase complete! Next: {self._phase.value}")
        else:
            self._current_session_number += 1
            self._phase = TimerPhase.FOCUS
            logger.info("Break complete! Next: focus")

        self._clear_offer(events)
        self._reset_countdown()
        events.append(self._event(EventKind.PHASE_COMPLETED, phase=finished))
        events.append(self._event(EventKind.PHASE_CHANGED, phase=self._phase))
        self._set_state(TimerState.COMPLETED, events)

        self._cancel_settle()
        self._settle_task = asyncio.create_task(self._settle_after_delay())

    async def _settle_after_delay(self) -> None:
        await asyncio.sleep(self._settle_delay)

        async with self._lock:
            if self._settle_task is not asyncio.current_task():
                return
            self._settle_task = None
            events: list[SchedulerEvent] = []
            self._settle_locked(events)
            auto_start = self._state == TimerState.IDLE and (
                self.auto_start_breaks if self._phase.is_break else self.auto_start_focus
            )

        await self._dispatch(events)

        if auto_start:
            await self.start()

    def _settle_locked(self, events: list[SchedulerEvent]) -> None:
        if self._state == TimerState.COMPLETED:
            self._set_state(TimerState.IDLE, events)

    def _roll_day(self) -> None:
        """Zero the per-day counters once the calendar date changes."""
        today = self._now().date()
        if today != self._today:
            logger.info(f"New day {today}, resetting daily focus counters")
            self._today = today
            self._todays_total_focus_time = 0.0
            self._completed_focus_sessions = 0

    def _reset_countdown(self) -> None:
        self._total_time = self._preset.duration_for(self._phase)
        self._time_remaining = self._total_time

    def _set_state(self, state: TimerState, events: list[SchedulerEvent]) -> None:
        self._state = state
        events.append(self._event(EventKind.STATE_CHANGED))

    def _apply_stress(self, level: StressLevel, events: list[SchedulerEvent]) -> None:
        if level != self._stress_level:
            self._stress_level = level
            events.append(self._event(EventKind.STRESS_CHANGED))

        if not (self.stress_adaptive_breaks and self._phase.is_break and self._state == TimerState.RUNNING):
            return

        base = self._preset.duration_for(self._phase)
        suggested = base * (level.break_multiplier - 1)
        if suggested > 0:
            self._offer = BreakExtensionOffer(extension_seconds=suggested, stress_level=level)
            events.append(self._event(EventKind.OFFER_PUBLISHED, offer=self._offer))
            logger.info(f"Stress {level.value}: offering {suggested:.0f}s break extension")
        else:
            self._clear_offer(events)

    def _clear_offer(self, events: list[SchedulerEvent]) -> None:
        if self._offer is not None:
            self._offer = None
            events.append(self._event(EventKind.OFFER_CLEARED))

    def _event(self, kind: EventKind, **kwargs: Any) -> SchedulerEvent:
        return SchedulerEvent(kind=kind, snapshot=self.snapshot, **kwargs)

    async def _dispatch(self, events: list[SchedulerEvent]) -> None:
        for event in events:
            for listener in list(self._listeners):
                await self._fire(listener, event)

            if event.kind == EventKind.TICK and self.on_tick:
                await self._fire(self.on_tick, event.snapshot)
            elif event.kind == EventKind.PHASE_COMPLETED and self.on_phase_complete:
                await self._fire(self.on_phase_complete, event.phase)
            elif event.kind == EventKind.SESSION_FINALIZED and self.on_session_finalized:
                await self._fire(self.on_session_finalized, event.session)
            elif event.kind == EventKind.OFFER_PUBLISHED and self.on_break_offer:
                await self._fire(self.on_break_offer, event.offer)

    @staticmethod
    async def _fire(callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error in scheduler callback {getattr(callback, '__name__', callback)}: {e}")
