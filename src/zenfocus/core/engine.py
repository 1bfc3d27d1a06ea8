"""Engine host wiring the scheduler, stress estimator, recorder and store."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from typing import Awaitable, Callable

from zenfocus.core.config import Config, get_config
from zenfocus.focus.biometrics import BiometricSample, StressEstimator
from zenfocus.focus.models import Session, StressLevel, TimerPhase, TimerState
from zenfocus.focus.presets import PresetLibrary
from zenfocus.focus.recorder import SessionRecorder
from zenfocus.focus.scheduler import PhaseScheduler, SchedulerSnapshot
from zenfocus.storage.session_store import SessionStore

logger = logging.getLogger(__name__)


class FocusEngine:
    """Owns one focus timer and its collaborators.

    Loads today's sessions on start, records and persists every finalized
    session, and forwards phase completions to a notifier. Biometric samples
    may be pushed from any thread.

    Usage:
        engine = FocusEngine(config)
        engine.notifier = lambda phase: print(f"{phase.display_name} finished")
        await engine.start()
        await engine.scheduler.start()
        ...
        await engine.close()
    """

    def __init__(
        self,
        config: Config | None = None,
        store: SessionStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or get_config()
        self.store = store
        self._clock = clock
        self._loop: asyncio.AbstractEventLoop | None = None

        self.presets = PresetLibrary.from_config(self.config.timer)
        bio = self.config.biometrics
        self.estimator = StressEstimator(
            resting_heart_rate=bio.resting_heart_rate,
            default_hrv=bio.default_hrv,
            heart_rate_history=bio.heart_rate_history,
            hrv_history=bio.hrv_history,
        )
        self.recorder = SessionRecorder(
            clock=clock, daily_goal=self.config.timer.daily_goal_minutes * 60
        )

        timer = self.config.timer
        preset = self.presets.get(timer.default_preset)
        if preset is None:
            logger.warning(f"Unknown default preset '{timer.default_preset}', using built-in default")
            preset = self.presets.default

        self.scheduler = PhaseScheduler(
            preset=preset,
            estimator=self.estimator if bio.enabled else None,
            settle_delay=timer.settle_delay_seconds,
            min_session_seconds=timer.min_session_seconds,
            auto_start_breaks=timer.auto_start_breaks,
            auto_start_focus=timer.auto_start_focus,
            stress_adaptive_breaks=bio.stress_adaptive_breaks,
            clock=clock,
        )
        self.scheduler.on_session_finalized = self._on_session_finalized
        self.scheduler.on_phase_complete = self._on_phase_complete

        # Notification collaborator: told which phase just ended
        self.notifier: Callable[[TimerPhase], Awaitable[None] | None] | None = None

    @property
    def state(self) -> SchedulerSnapshot:
        return self.scheduler.snapshot

    async def start(self) -> None:
        """Connect the store and restore today's progress."""
        self._loop = asyncio.get_running_loop()

        sessions: list[Session] = []
        if self.store is not None:
            try:
                await self.store.connect()
                sessions = await self.store.load_day(self._clock().date())
            except (sqlite3.Error, OSError) as e:
                logger.error(f"Could not load session history, starting fresh: {e}")
                sessions = []

        self.recorder.load(sessions)
        await self.scheduler.restore_today(
            self.recorder.todays_focus_time,
            self.recorder.completed_focus_sessions,
        )

    async def close(self) -> None:
        await self.scheduler.close()
        if self.store is not None:
            await self.store.close()

    # Intents

    async def select_preset(self, key: str) -> bool:
        """Select a preset by id or name. Returns False if unknown or not Idle."""
        preset = self.presets.get(key)
        if preset is None:
            logger.debug(f"Unknown preset: {key}")
            return False
        if self.scheduler.state != TimerState.IDLE:
            return False
        await self.scheduler.select_preset(preset)
        return True

    async def ingest_heart_rate(self, value: float, timestamp: datetime | None = None) -> StressLevel | None:
        return await self.scheduler.ingest_heart_rate(BiometricSample(timestamp or self._clock(), value))

    async def ingest_hrv(self, value: float, timestamp: datetime | None = None) -> StressLevel | None:
        return await self.scheduler.ingest_hrv(BiometricSample(timestamp or self._clock(), value))

    def push_heart_rate(self, value: float, timestamp: datetime | None = None) -> None:
        """Thread-safe heart-rate push from a monitor callback."""
        self._submit(self.ingest_heart_rate(value, timestamp))

    def push_hrv(self, value: float, timestamp: datetime | None = None) -> None:
        """Thread-safe HRV push from a monitor callback."""
        self._submit(self.ingest_hrv(value, timestamp))

    def set_resting_heart_rate(self, value: float) -> None:
        self.estimator.set_resting_heart_rate(value)

    # Collaborator hooks

    def _submit(self, coro) -> None:
        if self._loop is None or self._loop.is_closed():
            coro.close()
            logger.debug("Engine not started, dropping biometric sample")
            return
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        future.add_done_callback(_log_push_failure)

    async def _on_session_finalized(self, session: Session) -> None:
        if session.phase == TimerPhase.FOCUS:
            session = replace(
                session,
                average_heart_rate=self.estimator.average_heart_rate(session),
                focus_score=self.estimator.focus_score(session),
            )

        self.recorder.record(session)

        if self.store is not None and self.store.is_connected:
            await self.store.save(session)

    async def _on_phase_complete(self, phase: TimerPhase) -> None:
        if self.notifier is None:
            return
        result = self.notifier(phase)
        if asyncio.iscoroutine(result):
            await result


def _log_push_failure(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Failed to ingest pushed biometric sample: {error}")
