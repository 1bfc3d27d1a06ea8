"""Guided breathing exercises."""

from zenfocus.breathing.cadence import (
    DEFAULT_EXERCISES,
    BreathingCadence,
    BreathingExercise,
    BreathingPhase,
)

__all__ = ["DEFAULT_EXERCISES", "BreathingCadence", "BreathingExercise", "BreathingPhase"]
