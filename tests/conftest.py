"""Shared fixtures for expedition simulation tests."""
from __future__ import annotations

from datetime import timedelta

import pytest

from expedition_sim.clock import ManualClock
from expedition_sim.config import get_settings
from expedition_sim.models import Expedition, ExpeditionMode, Location, Trainer
from expedition_sim.notifications import NotificationHub
from expedition_sim.rng import DeterministicRNG
from expedition_sim.service import ExpeditionService
from expedition_sim.telemetry import TelemetryCollector


class FixedRNG(DeterministicRNG):
    """RNG whose uniform draw is pinned, for forcing success or failure."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value

    def chance(self, probability: float) -> bool:
        return self.value < probability


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def telemetry(tmp_path):
    return TelemetryCollector(tmp_path / "telemetry.db")


@pytest.fixture
def service(clock, telemetry):
    return ExpeditionService(clock=clock, seed=7, telemetry=telemetry)


@pytest.fixture
def make_trainer():
    def factory(**overrides) -> Trainer:
        data = {
            "id": "trainer-1",
            "name": "Ash",
            "level": 5,
            "skills": {"capture": 5, "exploration": 5, "battle": 4, "research": 4, "healing": 3},
            "trust_level": 60,
            "total_expeditions": 0,
        }
        data.update(overrides)
        return Trainer(**data)

    return factory


@pytest.fixture
def forest():
    return Location(id=1, name="Viridian Forest", difficulty=0.2, risk=0.3)


@pytest.fixture
def make_expedition(clock):
    def factory(
        expedition_id: str = "exp-1",
        hours: float = 1.0,
        mode: ExpeditionMode = ExpeditionMode.BALANCED,
        location_id: int = 1,
    ) -> Expedition:
        now = clock.now()
        return Expedition(
            id=expedition_id,
            trainer_id="trainer-1",
            location_id=location_id,
            mode=mode,
            target_duration=hours,
            start_time=now,
            estimated_end_time=now + timedelta(hours=hours),
        )

    return factory


@pytest.fixture
def fixed_rng():
    return FixedRNG
