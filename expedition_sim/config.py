"""Configuration loading utilities for the expedition simulation."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml


DATA_DIR = Path(__file__).parent / "data"
DEFAULT_SETTINGS_PATH = DATA_DIR / "settings.yaml"

_STAGE_BREAKPOINTS = {
    "preparation": 0.0,
    "early": 0.10,
    "middle": 0.30,
    "late": 0.70,
    "completion": 0.95,
}
_STAGE_RISK_WEIGHTS = {
    "preparation": 0.3,
    "early": 0.7,
    "middle": 1.2,
    "late": 1.5,
    "completion": 0.8,
}
_STAGE_EVENT_MULTIPLIERS = {
    "preparation": 3.0,
    "early": 2.0,
    "middle": 1.0,
    "late": 1.5,
    "completion": 2.5,
}
_MODE_RISK_MULTIPLIERS = {
    "safe": 0.7,
    "balanced": 1.0,
    "exploration": 1.2,
    "aggressive": 1.5,
}
_RISK_THRESHOLDS = {"low": 0.3, "medium": 0.6, "high": 0.8}
_RARITY_WEIGHTS = {"common": 1.0, "uncommon": 0.3, "rare": 0.1, "legendary": 0.02}
_STAGE_SUCCESS_MULTIPLIERS = {
    "preparation": 1.05,
    "early": 1.0,
    "middle": 0.95,
    "late": 0.9,
    "completion": 1.0,
}
_RISK_SUCCESS_MULTIPLIERS = {"low": 1.1, "medium": 1.0, "high": 0.9, "critical": 0.8}


def _floats(mapping: Dict[str, Any] | None, default: Dict[str, float]) -> Dict[str, float]:
    merged = dict(default)
    for key, value in (mapping or {}).items():
        merged[str(key)] = float(value)
    return merged


@dataclass(frozen=True)
class Settings:
    """Typed view over the settings YAML file."""

    tick_interval_seconds: float
    min_tick_spacing_seconds: float
    min_progress_delta: float
    base_event_interval_seconds: float
    stage_breakpoints: Dict[str, float]
    stage_risk_weights: Dict[str, float]
    stage_event_multipliers: Dict[str, float]
    mode_risk_multipliers: Dict[str, float]
    risk_thresholds: Dict[str, float]
    eligibility_threshold: float
    rarity_weights: Dict[str, float]
    stage_success_multipliers: Dict[str, float]
    risk_success_multipliers: Dict[str, float]
    success_rate_bounds: Tuple[float, float]
    optional_requirement_bonus: float
    skill_bonus_per_level: float
    experience_bonus_per_expedition: float
    experience_bonus_cap: float
    sweep_interval_seconds: float
    emergency_cooldown_factor: float
    emergency_cooldown_floor_minutes: float
    money_per_hour: int
    pokemon_value: int
    event_bonus: int
    recent_buffer: int

    @staticmethod
    def from_dict(data: Dict[str, Any] | None) -> "Settings":
        data = data or {}
        engine = data.get("engine", {}) or {}
        events = data.get("events", {}) or {}
        interventions = data.get("interventions", {}) or {}
        rewards = data.get("rewards", {}) or {}
        notifications = data.get("notifications", {}) or {}
        low, high = events.get("success_rate_bounds", [0.05, 0.95])
        if float(low) > float(high):
            raise ValueError("success_rate_bounds must be ordered as [low, high]")
        return Settings(
            tick_interval_seconds=float(engine.get("tick_interval_seconds", 1.0)),
            min_tick_spacing_seconds=float(engine.get("min_tick_spacing_seconds", 0.5)),
            min_progress_delta=float(engine.get("min_progress_delta", 0.001)),
            base_event_interval_seconds=float(engine.get("base_event_interval_seconds", 30)),
            stage_breakpoints=_floats(engine.get("stage_breakpoints"), _STAGE_BREAKPOINTS),
            stage_risk_weights=_floats(engine.get("stage_risk_weights"), _STAGE_RISK_WEIGHTS),
            stage_event_multipliers=_floats(
                engine.get("stage_event_multipliers"), _STAGE_EVENT_MULTIPLIERS
            ),
            mode_risk_multipliers=_floats(
                engine.get("mode_risk_multipliers"), _MODE_RISK_MULTIPLIERS
            ),
            risk_thresholds=_floats(engine.get("risk_thresholds"), _RISK_THRESHOLDS),
            eligibility_threshold=float(events.get("eligibility_threshold", 0.5)),
            rarity_weights=_floats(events.get("rarity_weights"), _RARITY_WEIGHTS),
            stage_success_multipliers=_floats(
                events.get("stage_success_multipliers"), _STAGE_SUCCESS_MULTIPLIERS
            ),
            risk_success_multipliers=_floats(
                events.get("risk_success_multipliers"), _RISK_SUCCESS_MULTIPLIERS
            ),
            success_rate_bounds=(float(low), float(high)),
            optional_requirement_bonus=float(events.get("optional_requirement_bonus", 0.10)),
            skill_bonus_per_level=float(events.get("skill_bonus_per_level", 0.02)),
            experience_bonus_per_expedition=float(
                events.get("experience_bonus_per_expedition", 0.01)
            ),
            experience_bonus_cap=float(events.get("experience_bonus_cap", 0.20)),
            sweep_interval_seconds=float(interventions.get("sweep_interval_seconds", 30)),
            emergency_cooldown_factor=float(interventions.get("emergency_cooldown_factor", 0.5)),
            emergency_cooldown_floor_minutes=float(
                interventions.get("emergency_cooldown_floor_minutes", 5)
            ),
            money_per_hour=int(rewards.get("money_per_hour", 100)),
            pokemon_value=int(rewards.get("pokemon_value", 1000)),
            event_bonus=int(rewards.get("event_bonus", 200)),
            recent_buffer=int(notifications.get("recent_buffer", 200)),
        )

    def clamp_success_rate(self, value: float) -> float:
        low, high = self.success_rate_bounds
        return max(low, min(high, value))


class SettingsLoader:
    """Loads and caches settings from YAML configuration files."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or DEFAULT_SETTINGS_PATH
        self._cache: Settings | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self, force: bool = False) -> Settings:
        if self._cache is not None and not force:
            return self._cache
        with self._path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        self._cache = Settings.from_dict(data)
        return self._cache


def get_settings() -> Settings:
    """Convenience accessor for default settings."""

    return SettingsLoader().load()


__all__ = ["DATA_DIR", "Settings", "SettingsLoader", "get_settings"]
