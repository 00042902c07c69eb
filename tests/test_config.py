"""Tests for settings loading."""
from __future__ import annotations

import pytest

from expedition_sim.config import Settings, SettingsLoader, get_settings


def test_default_settings_match_tuned_constants():
    settings = get_settings()

    assert settings.stage_breakpoints["middle"] == pytest.approx(0.30)
    assert settings.rarity_weights["legendary"] == pytest.approx(0.02)
    assert settings.success_rate_bounds == (0.05, 0.95)
    assert settings.min_tick_spacing_seconds == pytest.approx(0.5)
    assert settings.sweep_interval_seconds == pytest.approx(30)


def test_from_dict_falls_back_to_defaults():
    settings = Settings.from_dict({})

    assert settings.mode_risk_multipliers["aggressive"] == pytest.approx(1.5)
    assert settings.risk_success_multipliers["critical"] == pytest.approx(0.8)
    assert settings.money_per_hour == 100


def test_from_dict_overrides_single_values():
    settings = Settings.from_dict({"events": {"rarity_weights": {"rare": 0.5}}})

    assert settings.rarity_weights["rare"] == pytest.approx(0.5)
    assert settings.rarity_weights["common"] == pytest.approx(1.0)


def test_unordered_bounds_rejected():
    with pytest.raises(ValueError):
        Settings.from_dict({"events": {"success_rate_bounds": [0.9, 0.1]}})


def test_clamp_success_rate():
    settings = Settings.from_dict({})

    assert settings.clamp_success_rate(1.4) == pytest.approx(0.95)
    assert settings.clamp_success_rate(-1) == pytest.approx(0.05)
    assert settings.clamp_success_rate(0.5) == pytest.approx(0.5)


def test_loader_caches_until_forced(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("rewards:\n  money_per_hour: 150\n", encoding="utf-8")
    loader = SettingsLoader(path)

    first = loader.load()
    path.write_text("rewards:\n  money_per_hour: 300\n", encoding="utf-8")

    assert loader.load() is first
    assert loader.load(force=True).money_per_hour == 300
