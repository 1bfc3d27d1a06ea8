"""Focus timer with stress-adaptive breaks."""

from zenfocus.focus.biometrics import BiometricSample, StressEstimator
from zenfocus.focus.models import (
    DEFAULT_PRESETS,
    BreakExtensionOffer,
    Preset,
    Session,
    StressLevel,
    TimerPhase,
    TimerState,
)
from zenfocus.focus.presets import PresetLibrary
from zenfocus.focus.recorder import DailyStats, SessionRecorder
from zenfocus.focus.scheduler import EventKind, PhaseScheduler, SchedulerEvent, SchedulerSnapshot

__all__ = [
    "BiometricSample",
    "StressEstimator",
    "DEFAULT_PRESETS",
    "BreakExtensionOffer",
    "Preset",
    "Session",
    "StressLevel",
    "TimerPhase",
    "TimerState",
    "PresetLibrary",
    "DailyStats",
    "SessionRecorder",
    "EventKind",
    "PhaseScheduler",
    "SchedulerEvent",
    "SchedulerSnapshot",
]
