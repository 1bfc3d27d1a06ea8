"""Finalized session log with daily statistics."""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable

from zenfocus.focus.models import Session, TimerPhase, format_duration

logger = logging.getLogger(__name__)


@dataclass
class DailyStats:
    """Aggregates for one calendar day."""

    date: date
    total_focus_time: float = 0.0
    completed_sessions: int = 0
    average_stress_level: float | None = None
    focus_score: int | None = None
    daily_goal: float | None = None

    @property
    def total_focus_display(self) -> str:
        return format_duration(self.total_focus_time)

    @property
    def goal_progress(self) -> float | None:
        """Fraction of the daily focus goal reached, capped at 1."""
        if not self.daily_goal:
            return None
        return min(1.0, self.total_focus_time / self.daily_goal)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "date": self.date.isoformat(),
            "total_focus_time": self.total_focus_time,
            "completed_sessions": self.completed_sessions,
            "average_stress_level": self.average_stress_level,
            "focus_score": self.focus_score,
            "daily_goal": self.daily_goal,
            "goal_progress": self.goal_progress,
        }


def _counts_toward_focus(session: Session) -> bool:
    return session.phase == TimerPhase.FOCUS and session.completed


def summarize_day(
    day: date, sessions: Iterable[Session], daily_goal: float | None = None
) -> DailyStats:
    """Build DailyStats from the sessions that started on `day`.

    `daily_goal` is the focus target in seconds, if one is set.
    """
    focus = [s for s in sessions if s.start_time.date() == day and _counts_toward_focus(s)]

    stress = [s.stress_level.score for s in focus if s.stress_level is not None]
    scores = [s.focus_score for s in focus if s.focus_score is not None]

    return DailyStats(
        date=day,
        total_focus_time=sum(s.actual_duration or 0.0 for s in focus),
        completed_sessions=len(focus),
        average_stress_level=round(statistics.fmean(stress), 2) if stress else None,
        focus_score=round(statistics.fmean(scores)) if scores else None,
        daily_goal=daily_goal,
    )


class SessionRecorder:
    """Holds finalized sessions and keeps today's totals current.

    Today's focus time and completed-session count are maintained
    incrementally on record() and reset when the calendar day changes.
    load() recomputes them from a full log, which is how the persistence
    layer hands history back to the engine.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = datetime.now,
        daily_goal: float | None = None,
    ):
        self._now = clock
        self.daily_goal = daily_goal
        self._sessions: list[Session] = []
        self._today: date = self._now().date()
        self._todays_focus_time = 0.0
        self._completed_focus_sessions = 0

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions)

    @property
    def todays_focus_time(self) -> float:
        self._roll_day()
        return self._todays_focus_time

    @property
    def completed_focus_sessions(self) -> int:
        self._roll_day()
        return self._completed_focus_sessions

    def record(self, session: Session) -> None:
        """Append a finalized session."""
        if not session.is_finalized:
            logger.warning(f"Refusing to record unfinished session {session.id}")
            return

        self._roll_day()
        self._sessions.append(session)
        if session.start_time.date() == self._today and _counts_toward_focus(session):
            self._todays_focus_time += session.actual_duration or 0.0
            self._completed_focus_sessions += 1

        logger.debug(
            f"Recorded {session.phase.value} session "
            f"({session.actual_duration or 0:.0f}s, completed={session.completed})"
        )

    def load(self, sessions: Iterable[Session]) -> None:
        """Replace the log and recompute today's aggregates."""
        self._sessions = sorted(sessions, key=lambda s: s.start_time)
        self._today = self._now().date()
        stats = summarize_day(self._today, self._sessions)
        self._todays_focus_time = stats.total_focus_time
        self._completed_focus_sessions = stats.completed_sessions
        logger.info(
            f"Loaded {len(self._sessions)} sessions, "
            f"{stats.completed_sessions} focus sessions today"
        )

    def sessions_on(self, day: date) -> list[Session]:
        return [s for s in self._sessions if s.start_time.date() == day]

    def today_stats(self) -> DailyStats:
        return summarize_day(self._now().date(), self._sessions, self.daily_goal)

    def history(self, days: int = 7) -> list[DailyStats]:
        """Daily stats for the last `days` days, oldest first."""
        today = self._now().date()
        return [
            summarize_day(today - timedelta(days=offset), self._sessions, self.daily_goal)
            for offset in range(days - 1, -1, -1)
        ]

    def current_streak(self) -> int:
        """Consecutive days with a completed focus session.

        The streak may end yesterday if nothing has been completed today yet.
        """
        active = self._active_days()
        day = self._now().date()
        if day not in active:
            day -= timedelta(days=1)

        streak = 0
        while day in active:
            streak += 1
            day -= timedelta(days=1)
        return streak

    def best_streak(self) -> int:
        """Longest run of consecutive active days in the log."""
        best = run = 0
        previous: date | None = None
        for day in sorted(self._active_days()):
            if previous is not None and day - previous == timedelta(days=1):
                run += 1
            else:
                run = 1
            best = max(best, run)
            previous = day
        return best

    def _active_days(self) -> set[date]:
        return {s.start_time.date() for s in self._sessions if _counts_toward_focus(s)}

    def _roll_day(self) -> None:
        today = self._now().date()
        if today != self._today:
            self._today = today
            self._todays_focus_time = 0.0
            self._completed_focus_sessions = 0
