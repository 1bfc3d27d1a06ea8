"""Built-in and user-defined timer presets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from zenfocus.focus.models import DEFAULT_PRESETS, Preset

if TYPE_CHECKING:
    from zenfocus.core.config import TimerConfig

logger = logging.getLogger(__name__)


class PresetLibrary:
    """Lookup of presets by id or name.

    Built-in presets are always present and cannot be removed. Custom
    presets may be added, replaced by id, or deleted.
    """

    def __init__(self, custom: list[Preset] | None = None):
        self._builtin: dict[str, Preset] = {p.id: p for p in DEFAULT_PRESETS}
        self._custom: dict[str, Preset] = {}
        for preset in custom or []:
            self.save(preset)

    @classmethod
    def from_config(cls, config: TimerConfig) -> PresetLibrary:
        """Build a library from the custom presets in the timer config."""
        custom = [
            Preset.from_minutes(
                name=p.name,
                focus=p.focus_minutes,
                short_break=p.short_break_minutes,
                long_break=p.long_break_minutes,
                sessions_until_long_break=p.sessions_until_long_break,
                id=p.id,
            )
            for p in config.custom_presets
        ]
        return cls(custom)

    @property
    def default(self) -> Preset:
        return next(p for p in self._builtin.values() if p.is_default)

    def all(self) -> list[Preset]:
        return list(self._builtin.values()) + list(self._custom.values())

    def get(self, key: str) -> Preset | None:
        """Find a preset by id, falling back to a case-insensitive name match."""
        preset = self._builtin.get(key) or self._custom.get(key)
        if preset is not None:
            return preset
        lowered = key.lower()
        for candidate in self.all():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def save(self, preset: Preset) -> None:
        """Add or replace a custom preset."""
        if preset.id in self._builtin:
            raise ValueError(f"Cannot overwrite built-in preset: {preset.id}")
        self._custom[preset.id] = preset
        logger.debug(f"Saved preset {preset.name} ({preset.id})")

    def delete(self, preset_id: str) -> bool:
        """Remove a custom preset. Returns False if it did not exist."""
        removed = self._custom.pop(preset_id, None)
        return removed is not None
