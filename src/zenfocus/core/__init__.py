"""Configuration and engine host."""

from zenfocus.core.config import Config, get_config
from zenfocus.core.engine import FocusEngine

__all__ = ["Config", "get_config", "FocusEngine"]
