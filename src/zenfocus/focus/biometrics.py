"""Heart-rate and HRV ingestion with fused stress classification."""

from __future__ import annotations

import logging
import math
import statistics
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime

from zenfocus.focus.models import Session, StressLevel

logger = logging.getLogger(__name__)

HRV_WEIGHT = 0.7
HEART_RATE_WEIGHT = 0.3
NEUTRAL_FOCUS_SCORE = 75


@dataclass(frozen=True)
class BiometricSample:
    """A single reading from the monitor (bpm for heart rate, ms for HRV)."""

    timestamp: datetime
    value: float


def _is_valid(sample: object) -> bool:
    if not isinstance(sample, BiometricSample):
        return False
    if not isinstance(sample.timestamp, datetime):
        return False
    value = sample.value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


class StressEstimator:
    """Fuses heart rate and HRV into a single StressLevel.

    HRV is weighted more heavily (0.7) than heart rate (0.3) since it is the
    more reliable stress indicator. Histories are bounded; the oldest reading
    is evicted first. Thread-safe: samples may arrive from monitor callbacks
    on any thread.

    Usage:
        estimator = StressEstimator(resting_heart_rate=58)
        estimator.add_heart_rate(BiometricSample(datetime.now(), 72))
        estimator.add_hrv(BiometricSample(datetime.now(), 45))
        print(estimator.stress_level)
    """

    DEFAULT_HEART_RATE_HISTORY = 100
    DEFAULT_HRV_HISTORY = 50

    def __init__(
        self,
        resting_heart_rate: float = 60.0,
        default_hrv: float = 50.0,
        heart_rate_history: int = DEFAULT_HEART_RATE_HISTORY,
        hrv_history: int = DEFAULT_HRV_HISTORY,
    ):
        self.resting_heart_rate = resting_heart_rate
        self._heart_rates: deque[BiometricSample] = deque(maxlen=heart_rate_history)
        self._hrvs: deque[BiometricSample] = deque(maxlen=hrv_history)
        self._current_heart_rate: float | None = None
        self._current_hrv = default_hrv
        self._stress_level = StressLevel.NORMAL
        self._lock = threading.Lock()

    @property
    def stress_level(self) -> StressLevel:
        """Latest fused classification."""
        return self._stress_level

    @property
    def current_heart_rate(self) -> float | None:
        return self._current_heart_rate

    @property
    def current_hrv(self) -> float:
        return self._current_hrv

    @property
    def heart_rate_history(self) -> list[BiometricSample]:
        with self._lock:
            return list(self._heart_rates)

    @property
    def hrv_history(self) -> list[BiometricSample]:
        with self._lock:
            return list(self._hrvs)

    def add_heart_rate(self, sample: BiometricSample) -> StressLevel | None:
        """Ingest a heart-rate reading.

        Returns the new fused level, or None if the sample was rejected (the
        previous level is kept).
        """
        if not _is_valid(sample):
            logger.debug(f"Ignoring malformed heart rate sample: {sample!r}")
            return None
        with self._lock:
            self._heart_rates.append(sample)
            self._current_heart_rate = float(sample.value)
            return self._refresh()

    def add_hrv(self, sample: BiometricSample) -> StressLevel | None:
        """Ingest an HRV reading. See add_heart_rate."""
        if not _is_valid(sample):
            logger.debug(f"Ignoring malformed HRV sample: {sample!r}")
            return None
        with self._lock:
            self._hrvs.append(sample)
            self._current_hrv = float(sample.value)
            return self._refresh()

    def set_resting_heart_rate(self, value: float) -> None:
        if isinstance(value, (int, float)) and math.isfinite(value) and value > 0:
            self.resting_heart_rate = float(value)
        else:
            logger.debug(f"Ignoring invalid resting heart rate: {value!r}")

    def _refresh(self) -> StressLevel:
        heart_rate = self._current_heart_rate
        if heart_rate is None:
            # No reading yet: treat as resting
            heart_rate = self.resting_heart_rate
        self._stress_level = self.fuse(
            StressLevel.from_hrv(self._current_hrv),
            StressLevel.from_heart_rate(heart_rate, self.resting_heart_rate),
        )
        return self._stress_level

    @staticmethod
    def fuse(hrv_level: StressLevel, heart_rate_level: StressLevel) -> StressLevel:
        """Weighted combination of the two independent classifications."""
        score = HRV_WEIGHT * hrv_level.score + HEART_RATE_WEIGHT * heart_rate_level.score
        return StressLevel.from_score(score)

    def samples_during(self, session: Session, now: datetime | None = None) -> list[BiometricSample]:
        """Heart-rate readings taken within the session's time span."""
        end = session.end_time or now or datetime.now()
        with self._lock:
            return [s for s in self._heart_rates if session.start_time <= s.timestamp <= end]

    def average_heart_rate(self, session: Session) -> float | None:
        samples = self.samples_during(session)
        if not samples:
            return None
        return statistics.fmean(s.value for s in samples)

    def focus_score(self, session: Session, samples: list[BiometricSample] | None = None) -> int:
        """Rate a session 0-100 on heart-rate stability.

        Lower variance and staying close to resting heart rate both give a
        higher score. With no readings in the session window the neutral
        score of 75 is returned.
        """
        if samples is None:
            samples = self.samples_during(session)
        else:
            end = session.end_time or datetime.now()
            samples = [s for s in samples if session.start_time <= s.timestamp <= end]

        if not samples:
            return NEUTRAL_FOCUS_SCORE

        values = [s.value for s in samples]
        mean = statistics.fmean(values)
        std_dev = statistics.pstdev(values)

        stability = 100 - std_dev * 5
        elevation_penalty = max(0.0, (mean / self.resting_heart_rate - 1.0) * 30)
        return int(min(100, max(0, stability - elevation_penalty)))
