"""Configuration management with Pydantic and YAML support."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zenfocus.focus.models import DEFAULT_PRESETS


class PresetConfig(BaseModel):
    """A user-defined timer preset. Durations are in minutes."""

    id: str | None = Field(default=None, description="Stable id, generated when omitted")
    name: str
    focus_minutes: float = Field(gt=0)
    short_break_minutes: float = Field(gt=0)
    long_break_minutes: float = Field(gt=0)
    sessions_until_long_break: int = Field(default=4, ge=1)


class TimerConfig(BaseModel):
    """Focus timer configuration."""

    settle_delay_seconds: float = Field(
        default=0.5, ge=0, description="Time spent in Completed before returning to Idle"
    )
    min_session_seconds: int = Field(
        default=60, ge=0, description="Stopped sessions shorter than this are discarded"
    )
    daily_goal_minutes: float = Field(default=120, gt=0, description="Daily focus target")
    default_preset: str = Field(default="classic")
    auto_start_breaks: bool = False
    auto_start_focus: bool = False
    custom_presets: list[PresetConfig] = Field(default_factory=list)

    @field_validator("custom_presets")
    @classmethod
    def check_preset_ids(cls, presets: list[PresetConfig]) -> list[PresetConfig]:
        builtin = {p.id for p in DEFAULT_PRESETS}
        seen: set[str] = set()
        for preset in presets:
            if preset.id is None:
                continue
            if preset.id in builtin:
                raise ValueError(f"custom preset id '{preset.id}' clashes with a built-in preset")
            if preset.id in seen:
                raise ValueError(f"duplicate custom preset id '{preset.id}'")
            seen.add(preset.id)
        return presets


class BiometricsConfig(BaseModel):
    """Heart-rate / HRV stress estimation configuration."""

    enabled: bool = True
    stress_adaptive_breaks: bool = Field(
        default=True, description="Offer longer breaks when stress is elevated"
    )
    resting_heart_rate: float = Field(default=60.0, gt=0)
    default_hrv: float = Field(default=50.0, ge=0, description="HRV assumed before any sample")
    heart_rate_history: int = Field(default=100, ge=1)
    hrv_history: int = Field(default=50, ge=1)


class BreathingConfig(BaseModel):
    """Guided breathing configuration."""

    tick_seconds: float = Field(default=0.05, gt=0, le=0.1)
    default_exercise: str = Field(default="box")


class Config(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ZENFOCUS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local/share/zenfocus")
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".local/state/zenfocus")
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".config/zenfocus")

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")

    # Sub-configurations
    timer: TimerConfig = Field(default_factory=TimerConfig)
    biometrics: BiometricsConfig = Field(default_factory=BiometricsConfig)
    breathing: BreathingConfig = Field(default_factory=BreathingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values passed in from the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @property
    def db_path(self) -> Path:
        """Path to the session database."""
        return self.data_dir / "zenfocus.db"

    @property
    def config_file(self) -> Path:
        """Path to YAML config file."""
        return self.config_dir / "config.yaml"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        # Health data stays private to the user
        os.chmod(self.data_dir, 0o700)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from YAML file, environment variables, and defaults.

        Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values
        """
        config_path = config_path or Path.home() / ".config/zenfocus/config.yaml"

        yaml_config: dict[str, Any] = {}
        if config_path.exists():
            with open(config_path) as f:
                yaml_config = yaml.safe_load(f) or {}

        return cls(**yaml_config)

    def save(self, config_path: Path | None = None) -> None:
        """Save current configuration to YAML file."""
        config_path = config_path or self.config_file
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(mode="json", exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        os.chmod(config_path, 0o600)


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config.load()
