"""Tests for the phase scheduler state machine."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from tests.conftest import TINY, FakeClock, run_ticks, settle
from zenfocus.focus.biometrics import BiometricSample
from zenfocus.focus.models import CLASSIC, DEFAULT_PRESETS, Preset, StressLevel, TimerPhase, TimerState
from zenfocus.focus.scheduler import EventKind, PhaseScheduler


def collect(scheduler: PhaseScheduler) -> list:
    events = []
    scheduler.subscribe(events.append)
    return events


async def start_break(scheduler: PhaseScheduler) -> None:
    """Skip from an idle Focus phase into a running short break."""
    await scheduler.skip()
    await settle()
    await scheduler.start()


class TestPresetSelection:
    @pytest.mark.parametrize("preset", DEFAULT_PRESETS, ids=lambda p: p.id)
    async def test_select_preset_resets_to_focus(self, scheduler, preset):
        await scheduler.select_preset(preset)

        snap = scheduler.snapshot
        assert snap.total_time == preset.focus_duration
        assert snap.time_remaining == preset.focus_duration
        assert snap.phase == TimerPhase.FOCUS
        assert snap.preset_id == preset.id

    async def test_select_preset_from_break_phase(self, scheduler):
        await scheduler.skip()
        await settle()
        assert scheduler.phase == TimerPhase.SHORT_BREAK

        await scheduler.select_preset(CLASSIC)

        assert scheduler.phase == TimerPhase.FOCUS
        assert scheduler.total_time == CLASSIC.focus_duration

    async def test_select_preset_ignored_while_running(self, scheduler):
        await scheduler.start()
        await scheduler.select_preset(CLASSIC)

        assert scheduler.preset is TINY
        assert scheduler.total_time == TINY.focus_duration


class TestStartPauseResume:
    async def test_start_opens_session(self, scheduler, clock):
        await scheduler.start()

        assert scheduler.state == TimerState.RUNNING
        session = scheduler.current_session
        assert session.phase == TimerPhase.FOCUS
        assert session.start_time == clock.now
        assert session.planned_duration == TINY.focus_duration

    async def test_start_twice_is_noop(self, scheduler):
        await scheduler.start()
        first = scheduler.current_session
        await scheduler.start()

        assert scheduler.current_session is first

    async def test_pause_stops_countdown(self, scheduler, clock):
        await scheduler.start()
        await run_ticks(scheduler, clock, 1)
        await scheduler.pause()

        assert scheduler.state == TimerState.PAUSED
        await run_ticks(scheduler, clock, 5)
        assert scheduler.time_remaining == TINY.focus_duration - 1

    async def test_resume_continues_same_session(self, scheduler, clock):
        await scheduler.start()
        session = scheduler.current_session
        await scheduler.pause()
        await scheduler.resume()

        assert scheduler.state == TimerState.RUNNING
        assert scheduler.current_session is session

    async def test_pause_while_idle_is_ignored(self, scheduler):
        events = collect(scheduler)
        await scheduler.pause()

        assert scheduler.state == TimerState.IDLE
        assert events == []

    async def test_real_clock_ticks_and_pause_cancels(self, clock):
        s = PhaseScheduler(preset=CLASSIC, tick_interval=0.01, clock=clock)
        try:
            await s.start()
            await asyncio.sleep(0.1)
            await s.pause()
            remaining = s.time_remaining

            assert remaining < CLASSIC.focus_duration
            await asyncio.sleep(0.05)
            assert s.time_remaining == remaining
        finally:
            await s.close()


class TestTick:
    async def test_tick_decrements_and_accumulates_focus_time(self, scheduler, clock):
        await scheduler.start()
        await run_ticks(scheduler, clock, 2)

        snap = scheduler.snapshot
        assert snap.time_remaining == 1
        assert snap.todays_total_focus_time == 2
        assert snap.progress == pytest.approx(2 / 3)

    async def test_tick_ignored_when_idle(self, scheduler, clock):
        await run_ticks(scheduler, clock, 2)
        assert scheduler.time_remaining == TINY.focus_duration

    async def test_remaining_stays_within_bounds(self, scheduler, clock):
        events = collect(scheduler)
        await scheduler.start()
        await run_ticks(scheduler, clock, 10)

        for event in events:
            snap = event.snapshot
            assert 0 <= snap.time_remaining <= snap.total_time
            assert 0.0 <= snap.progress <= 1.0

    async def test_break_ticks_do_not_count_as_focus(self, scheduler, clock):
        await start_break(scheduler)
        await run_ticks(scheduler, clock, 1)
        assert scheduler.snapshot.todays_total_focus_time == 0


    async def test_daily_counters_reset_at_midnight(self, estimator):
        clock = FakeClock(datetime(2026, 10, 17, 23, 59, 0))
        s = PhaseScheduler(
            preset=CLASSIC, estimator=estimator, tick_interval=3600, settle_delay=0, clock=clock
        )
        try:
            await s.restore_today(50 * 60, 2)
            await s.start()
            await run_ticks(s, clock, 120)

            snap = s.snapshot
            assert clock.now == datetime(2026, 10, 18, 0, 1, 0)
            assert snap.todays_total_focus_time == 60
            assert snap.completed_focus_sessions == 0
        finally:
            await s.close()

    async def test_start_on_a_new_day_resets_counters(self, estimator):
        clock = FakeClock(datetime(2026, 10, 17, 22, 0, 0))
        s = PhaseScheduler(preset=CLASSIC, estimator=estimator, tick_interval=3600, clock=clock)
        try:
            await s.restore_today(50 * 60, 2)
            clock.advance(3 * 3600)
            await s.start()

            assert s.snapshot.todays_total_focus_time == 0
            assert s.snapshot.completed_focus_sessions == 0
        finally:
            await s.close()


class TestPhaseCompletion:
    async def test_countdown_exhaustion_completes_focus(self, scheduler, clock):
        finalized = []
        scheduler.on_session_finalized = finalized.append

        await scheduler.start()
        await run_ticks(scheduler, clock, 3)

        assert scheduler.state == TimerState.COMPLETED
        assert scheduler.phase == TimerPhase.SHORT_BREAK
        assert scheduler.total_time == TINY.short_break_duration
        assert scheduler.snapshot.completed_focus_sessions == 1

        assert len(finalized) == 1
        session = finalized[0]
        assert session.completed is True
        assert session.actual_duration == 3
        assert session.stress_level == StressLevel.NORMAL

        await settle()
        assert scheduler.state == TimerState.IDLE

    async def test_long_break_cadence(self, clock):
        preset = Preset("four", "Four", 60, 30, 90, sessions_until_long_break=4)
        s = PhaseScheduler(preset=preset, tick_interval=3600, settle_delay=0, clock=clock)
        breaks = []
        try:
            for _ in range(8):
                await s.skip()      # focus -> break
                await settle()
                breaks.append(s.phase)
                await s.skip()      # break -> focus
                await settle()
        finally:
            await s.close()

        expected_cycle = [TimerPhase.SHORT_BREAK] * 3 + [TimerPhase.LONG_BREAK]
        assert breaks == expected_cycle * 2
        assert s.snapshot.current_session_number == 9

    async def test_break_completion_returns_to_focus(self, scheduler, clock):
        await start_break(scheduler)
        await run_ticks(scheduler, clock, 2)

        assert scheduler.phase == TimerPhase.FOCUS
        assert scheduler.snapshot.current_session_number == 2

    async def test_notifier_told_which_phase_ended(self, scheduler, clock):
        ended = []
        scheduler.on_phase_complete = ended.append

        await scheduler.start()
        await run_ticks(scheduler, clock, 3)

        assert ended == [TimerPhase.FOCUS]

    async def test_start_during_completed_passes_through_idle(self, clock):
        s = PhaseScheduler(preset=TINY, tick_interval=3600, settle_delay=60, clock=clock)
        states = []
        s.subscribe(lambda e: states.append(e.snapshot.state) if e.kind == EventKind.STATE_CHANGED else None)
        try:
            await s.skip()
            assert s.state == TimerState.COMPLETED
            await s.start()
        finally:
            await s.close()

        assert states[-3:] == [TimerState.COMPLETED, TimerState.IDLE, TimerState.RUNNING]
        assert s.current_session.phase == TimerPhase.SHORT_BREAK

    async def test_auto_start_breaks(self, clock):
        s = PhaseScheduler(
            preset=TINY, tick_interval=3600, settle_delay=0, auto_start_breaks=True, clock=clock
        )
        try:
            await s.start()
            await run_ticks(s, clock, 3)
            await settle()
            assert s.phase == TimerPhase.SHORT_BREAK
            assert s.state == TimerState.RUNNING
        finally:
            await s.close()

    async def test_callback_errors_do_not_break_timer(self, scheduler, clock):
        def boom(_):
            raise RuntimeError("collaborator failed")

        scheduler.on_tick = boom
        scheduler.on_session_finalized = boom
        await scheduler.start()
        await run_ticks(scheduler, clock, 3)

        assert scheduler.phase == TimerPhase.SHORT_BREAK


class TestSkipAndStop:
    async def test_skip_records_elapsed_wall_time(self, clock):
        s = PhaseScheduler(preset=CLASSIC, tick_interval=3600, settle_delay=0, clock=clock)
        finalized = []
        s.on_session_finalized = finalized.append
        try:
            await s.start()
            clock.advance(15 * 60)  # 10 minutes left
            await s.skip()
        finally:
            await s.close()

        assert len(finalized) == 1
        assert finalized[0].completed is True
        assert finalized[0].actual_duration == 15 * 60
        assert finalized[0].planned_duration == 25 * 60

    async def test_skip_from_idle_records_nothing(self, scheduler):
        finalized = []
        scheduler.on_session_finalized = finalized.append
        await scheduler.skip()

        assert finalized == []
        assert scheduler.phase == TimerPhase.SHORT_BREAK

    async def test_stop_short_session_discarded(self, scheduler, clock):
        finalized = []
        scheduler.on_session_finalized = finalized.append
        await scheduler.start()
        clock.advance(59)
        await scheduler.stop()

        assert finalized == []
        assert scheduler.state == TimerState.IDLE
        assert scheduler.current_session is None

    async def test_stop_meaningful_session_recorded_incomplete(self, scheduler, clock):
        finalized = []
        scheduler.on_session_finalized = finalized.append
        await scheduler.start()
        clock.advance(60)
        await scheduler.stop()

        assert len(finalized) == 1
        assert finalized[0].completed is False
        assert finalized[0].actual_duration == 60

    async def test_stop_resets_to_focus(self, scheduler, clock):
        await start_break(scheduler)
        await run_ticks(scheduler, clock, 1)
        await scheduler.stop()

        snap = scheduler.snapshot
        assert snap.phase == TimerPhase.FOCUS
        assert snap.state == TimerState.IDLE
        assert snap.time_remaining == TINY.focus_duration

    async def test_ticks_after_stop_are_noops(self, scheduler, clock):
        await scheduler.start()
        await scheduler.stop()
        await run_ticks(scheduler, clock, 2)

        assert scheduler.time_remaining == TINY.focus_duration
        assert scheduler.state == TimerState.IDLE


class TestBreakExtension:
    async def test_offer_published_on_high_stress(self, scheduler):
        offers = []
        scheduler.on_break_offer = offers.append
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.HIGH)

        assert scheduler.offer.extension_seconds == TINY.short_break_duration * 0.5
        assert offers == [scheduler.offer]

    async def test_no_offer_at_normal_stress(self, scheduler):
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.NORMAL)
        assert scheduler.offer is None

    async def test_no_offer_during_focus(self, scheduler):
        await scheduler.start()
        await scheduler.update_stress_level(StressLevel.HIGH)
        assert scheduler.offer is None
        assert scheduler.stress_level == StressLevel.HIGH

    async def test_no_offer_when_disabled(self, scheduler):
        scheduler.stress_adaptive_breaks = False
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.HIGH)
        assert scheduler.offer is None

    async def test_accept_extends_remaining_and_total(self, scheduler, clock):
        await start_break(scheduler)
        await run_ticks(scheduler, clock, 1)
        await scheduler.update_stress_level(StressLevel.ELEVATED)

        added = await scheduler.accept_extension()

        assert added == TINY.short_break_duration * 0.25
        assert scheduler.time_remaining == 1 + added
        assert scheduler.total_time == TINY.short_break_duration + added
        assert scheduler.offer is None

    async def test_decline_leaves_countdown(self, scheduler):
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.HIGH)
        await scheduler.decline_extension()

        assert scheduler.offer is None
        assert scheduler.total_time == TINY.short_break_duration

    async def test_new_update_after_decline_gives_fresh_offer(self, scheduler):
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.HIGH)
        await scheduler.decline_extension()
        await scheduler.update_stress_level(StressLevel.ELEVATED)

        assert scheduler.offer.extension_seconds == TINY.short_break_duration * 0.25

    async def test_accept_without_offer_changes_nothing(self, scheduler):
        await start_break(scheduler)
        assert await scheduler.accept_extension() == 0.0
        assert scheduler.total_time == TINY.short_break_duration

    async def test_pause_clears_offer(self, scheduler):
        await start_break(scheduler)
        await scheduler.update_stress_level(StressLevel.HIGH)
        await scheduler.pause()
        assert scheduler.offer is None


class TestBiometricIngestion:
    async def test_samples_update_stress(self, scheduler, clock):
        await scheduler.ingest_hrv(BiometricSample(clock.now, 40))
        level = await scheduler.ingest_heart_rate(BiometricSample(clock.now, 90))

        assert level == StressLevel.HIGH
        assert scheduler.stress_level == StressLevel.HIGH

    async def test_malformed_sample_keeps_last_level(self, scheduler, clock):
        await scheduler.ingest_hrv(BiometricSample(clock.now, 80))
        before = scheduler.stress_level

        result = await scheduler.ingest_heart_rate(BiometricSample(clock.now, float("nan")))

        assert result is None
        assert scheduler.stress_level == before

    async def test_samples_during_break_publish_offer(self, scheduler, clock):
        await start_break(scheduler)
        await scheduler.ingest_hrv(BiometricSample(clock.now, 20))
        await scheduler.ingest_heart_rate(BiometricSample(clock.now, 100))

        assert scheduler.offer is not None
        assert scheduler.offer.stress_level == StressLevel.HIGH

    async def test_no_estimator_ignores_samples(self, clock):
        s = PhaseScheduler(preset=TINY, clock=clock)
        assert await s.ingest_heart_rate(BiometricSample(datetime.now(), 80)) is None
        await s.close()


class TestConcurrency:
    async def test_interleaved_intents_stay_consistent(self, clock, estimator):
        s = PhaseScheduler(preset=CLASSIC, estimator=estimator, tick_interval=0.001, clock=clock)
        paused = False
        late_ticks = []
        out_of_bounds = []

        def watch(event):
            snap = event.snapshot
            if not 0 <= snap.time_remaining <= snap.total_time:
                out_of_bounds.append(snap)
            if paused and event.kind == EventKind.TICK:
                late_ticks.append(event)

        s.subscribe(watch)
        try:
            await s.start()
            await asyncio.gather(
                *(s.tick() for _ in range(50)),
                *(s.ingest_heart_rate(BiometricSample(clock.now, 70 + i)) for i in range(20)),
                *(s.ingest_hrv(BiometricSample(clock.now, 30 + i)) for i in range(20)),
                asyncio.sleep(0.05),
                s.pause(),
                *(s.tick() for _ in range(20)),
            )
            assert s.state == TimerState.PAUSED

            paused = True
            remaining = s.time_remaining
            await asyncio.gather(*(s.tick() for _ in range(20)), asyncio.sleep(0.05))

            assert s.time_remaining == remaining
            assert late_ticks == []

            paused = False
            await s.start()
            await asyncio.gather(
                *(s.tick() for _ in range(10)),
                s.stop(),
                *(s.tick() for _ in range(10)),
                asyncio.sleep(0.02),
            )

            assert s.state == TimerState.IDLE
            assert s.time_remaining == CLASSIC.focus_duration
            assert out_of_bounds == []
        finally:
            await s.close()
