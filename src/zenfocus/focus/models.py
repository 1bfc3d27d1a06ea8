"""Core data models for the focus timer."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from functools import total_ordering
from typing import Any


class TimerPhase(Enum):
    """One segment of the work/rest cycle."""
    FOCUS = "focus"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def display_name(self) -> str:
        return _PHASE_NAMES[self]

    @property
    def is_break(self) -> bool:
        return self is not TimerPhase.FOCUS

    @property
    def random_encouragement(self) -> str:
        """Pick a short motivational line for this phase."""
        return random.choice(ENCOURAGEMENTS[self])


_PHASE_NAMES = {
    TimerPhase.FOCUS: "Focus",
    TimerPhase.SHORT_BREAK: "Short Break",
    TimerPhase.LONG_BREAK: "Long Break",
}

ENCOURAGEMENTS: dict[TimerPhase, list[str]] = {
    TimerPhase.FOCUS: [
        "Deep work time",
        "You've got this!",
        "Stay in the zone",
        "One step at a time",
        "Focus on what matters",
    ],
    TimerPhase.SHORT_BREAK: [
        "Breathe and relax",
        "Quick recharge",
        "Stretch a little",
        "Rest your eyes",
        "You earned this break",
    ],
    TimerPhase.LONG_BREAK: [
        "Time to fully recharge",
        "Take a proper break",
        "Move around a bit",
        "Refresh your mind",
        "Great progress today!",
    ],
}

# (title, body) shown when the keyed phase ends
COMPLETION_MESSAGES: dict[TimerPhase, tuple[str, str]] = {
    TimerPhase.FOCUS: ("Focus Session Complete!", "Great work! Time for a break."),
    TimerPhase.SHORT_BREAK: ("Break Over", "Ready to focus again?"),
    TimerPhase.LONG_BREAK: ("Long Break Complete", "Feeling refreshed? Let's go!"),
}


class TimerState(Enum):
    """Scheduler lifecycle state."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@total_ordering
class StressLevel(Enum):
    """Ordinal stress classification fused from heart rate and HRV."""
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, StressLevel):
            return NotImplemented
        return self.score < other.score

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def score(self) -> float:
        """Numeric weight used when fusing classifications."""
        return _STRESS_SCORES[self]

    @property
    def break_multiplier(self) -> float:
        """How much longer a break should be at this stress level."""
        return _BREAK_MULTIPLIERS[self]

    @property
    def recommendation(self) -> str:
        return _RECOMMENDATIONS[self]

    @classmethod
    def from_hrv(cls, hrv: float) -> StressLevel:
        """Classify an HRV reading in milliseconds. Higher HRV means calmer."""
        if hrv >= 70:
            return cls.LOW
        if hrv >= 50:
            return cls.NORMAL
        if hrv >= 30:
            return cls.ELEVATED
        return cls.HIGH

    @classmethod
    def from_heart_rate(cls, heart_rate: float, resting_heart_rate: float) -> StressLevel:
        """Classify a heart rate relative to resting heart rate (floored at 50 bpm)."""
        ratio = heart_rate / max(resting_heart_rate, 50)
        if ratio < 1.1:
            return cls.LOW
        if ratio < 1.3:
            return cls.NORMAL
        if ratio < 1.5:
            return cls.ELEVATED
        return cls.HIGH

    @classmethod
    def from_score(cls, score: float) -> StressLevel:
        """Map a fused score in [0, 1] back to a level."""
        if score < 0.2:
            return cls.LOW
        if score < 0.5:
            return cls.NORMAL
        if score < 0.75:
            return cls.ELEVATED
        return cls.HIGH


_STRESS_SCORES = {
    StressLevel.LOW: 0.0,
    StressLevel.NORMAL: 0.33,
    StressLevel.ELEVATED: 0.66,
    StressLevel.HIGH: 1.0,
}

_BREAK_MULTIPLIERS = {
    StressLevel.LOW: 1.0,
    StressLevel.NORMAL: 1.0,
    StressLevel.ELEVATED: 1.25,
    StressLevel.HIGH: 1.5,
}

_RECOMMENDATIONS = {
    StressLevel.LOW: "Your stress is low. Great time for deep focus!",
    StressLevel.NORMAL: "You're in a good state. Keep up the great work!",
    StressLevel.ELEVATED: "Consider a breathing exercise during your break.",
    StressLevel.HIGH: "Your stress is elevated. A longer break might help.",
}


@dataclass(frozen=True)
class Preset:
    """Named duration configuration. All durations are in seconds.

    Example:
        preset = Preset(
            id="deep",
            name="Deep Work",
            focus_duration=90 * 60,
            short_break_duration=15 * 60,
            long_break_duration=30 * 60,
            sessions_until_long_break=2,
        )
    """
    id: str
    name: str
    focus_duration: float
    short_break_duration: float
    long_break_duration: float
    sessions_until_long_break: int = 4
    is_default: bool = False

    def __post_init__(self) -> None:
        if min(self.focus_duration, self.short_break_duration, self.long_break_duration) <= 0:
            raise ValueError("preset durations must be positive")
        if self.sessions_until_long_break < 1:
            raise ValueError("sessions_until_long_break must be at least 1")

    def duration_for(self, phase: TimerPhase) -> float:
        """Get duration in seconds for a phase."""
        if phase == TimerPhase.FOCUS:
            return self.focus_duration
        elif phase == TimerPhase.SHORT_BREAK:
            return self.short_break_duration
        else:
            return self.long_break_duration

    @classmethod
    def from_minutes(
        cls,
        name: str,
        focus: float,
        short_break: float,
        long_break: float,
        sessions_until_long_break: int = 4,
        id: str | None = None,
        is_default: bool = False,
    ) -> Preset:
        return cls(
            id=id or uuid.uuid4().hex,
            name=name,
            focus_duration=focus * 60,
            short_break_duration=short_break * 60,
            long_break_duration=long_break * 60,
            sessions_until_long_break=sessions_until_long_break,
            is_default=is_default,
        )


CLASSIC = Preset.from_minutes("Classic", 25, 5, 15, 4, id="classic", is_default=True)
EXTENDED = Preset.from_minutes("Extended", 50, 10, 30, 2, id="extended")
QUICK = Preset.from_minutes("Quick", 15, 3, 10, 4, id="quick")

DEFAULT_PRESETS: list[Preset] = [CLASSIC, EXTENDED, QUICK]


@dataclass(frozen=True)
class BreakExtensionOffer:
    """A proposed lengthening of the running break."""
    extension_seconds: float
    stress_level: StressLevel


@dataclass(frozen=True)
class Session:
    """One timed phase, opened on start and finalized on completion or stop."""
    phase: TimerPhase
    start_time: datetime
    planned_duration: float
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    end_time: datetime | None = None
    actual_duration: float | None = None
    completed: bool = False
    stress_level: StressLevel | None = None
    average_heart_rate: float | None = None
    focus_score: int | None = None
    notes: str | None = None

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def finalize(
        self,
        end_time: datetime,
        completed: bool,
        stress_level: StressLevel | None = None,
    ) -> Session:
        """Return a finished copy of this session."""
        return replace(
            self,
            end_time=end_time,
            actual_duration=(end_time - self.start_time).total_seconds(),
            completed=completed,
            stress_level=stress_level,
        )

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> Session:
        """Create from a stored record. Raises on malformed input."""
        return cls(
            id=row["id"],
            phase=TimerPhase(row["phase"]),
            start_time=datetime.fromisoformat(row["start_time"]),
            planned_duration=float(row["planned_duration"]),
            end_time=datetime.fromisoformat(row["end_time"]) if row.get("end_time") else None,
            actual_duration=(
                float(row["actual_duration"]) if row.get("actual_duration") is not None else None
            ),
            completed=bool(row.get("completed", False)),
            stress_level=StressLevel(row["stress_level"]) if row.get("stress_level") else None,
            average_heart_rate=row.get("average_heart_rate"),
            focus_score=row.get("focus_score"),
            notes=row.get("notes"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "phase": self.phase.value,
            "start_time": self.start_time.isoformat(),
            "planned_duration": self.planned_duration,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "actual_duration": self.actual_duration,
            "completed": self.completed,
            "stress_level": self.stress_level.value if self.stress_level else None,
            "average_heart_rate": self.average_heart_rate,
            "focus_score": self.focus_score,
            "notes": self.notes,
        }


def format_clock(seconds: float) -> str:
    """Format a countdown as MM:SS."""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def format_duration(seconds: float) -> str:
    """Format accumulated time as '1h 5m' or '12m'."""
    total = int(seconds)
    hours, minutes = total // 3600, (total % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
