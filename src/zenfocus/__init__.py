"""ZenFocus: stress-adaptive focus timer."""

__version__ = "0.1.0"
