"""Tests for tick-driven expedition progress."""
from __future__ import annotations

from datetime import timedelta

import pytest

from expedition_sim.models import (
    ActiveIntervention,
    AppliedEffect,
    EffectKind,
    ExpeditionMode,
    Location,
    RiskLevel,
    Stage,
    StopReason,
)
from expedition_sim.notifications import CATEGORY_EXPEDITION, CATEGORY_PROGRESS
from expedition_sim.progress import (
    ProgressEngine,
    classify_risk,
    classify_stage,
    initial_risk,
    stage_progress,
)
from expedition_sim.registry import ExpeditionRegistry
from expedition_sim.rng import DeterministicRNG


def make_engine(settings, clock, hub, **kwargs):
    registry = ExpeditionRegistry()
    engine = ProgressEngine(registry, settings, clock, DeterministicRNG(11), hub, **kwargs)
    return engine, registry


@pytest.mark.parametrize(
    "progress, expected",
    [
        (0.0, Stage.PREPARATION),
        (0.09, Stage.PREPARATION),
        (0.10, Stage.EARLY),
        (0.30, Stage.MIDDLE),
        (0.45, Stage.MIDDLE),
        (0.70, Stage.LATE),
        (0.95, Stage.COMPLETION),
        (1.0, Stage.COMPLETION),
    ],
)
def test_classify_stage_uses_breakpoints(settings, progress, expected):
    assert classify_stage(progress, settings.stage_breakpoints) is expected


def test_stage_progress_is_fraction_of_stage_range(settings):
    assert stage_progress(0.2, Stage.EARLY, settings.stage_breakpoints) == pytest.approx(0.5)
    assert stage_progress(0.975, Stage.COMPLETION, settings.stage_breakpoints) == pytest.approx(0.5)


def test_classify_risk_thresholds(settings):
    thresholds = settings.risk_thresholds

    assert classify_risk(0.1, thresholds) is RiskLevel.LOW
    assert classify_risk(0.3, thresholds) is RiskLevel.MEDIUM
    assert classify_risk(0.7, thresholds) is RiskLevel.HIGH
    assert classify_risk(0.8, thresholds) is RiskLevel.CRITICAL


def test_initial_risk_scales_with_mode_and_experience(settings, make_trainer, forest):
    rookie = make_trainer(level=1, total_expeditions=0)
    veteran = make_trainer(level=10, total_expeditions=40)
    cave = Location(id=5, name="Cerulean Cave", difficulty=1.0, risk=0.9)

    assert initial_risk(forest, ExpeditionMode.BALANCED, rookie, settings) == pytest.approx(0.2)
    assert initial_risk(forest, ExpeditionMode.SAFE, veteran, settings) == 0.0
    assert initial_risk(cave, ExpeditionMode.AGGRESSIVE, rookie, settings) == pytest.approx(1.25)


def test_progress_is_monotonic_and_bounded(settings, clock, hub, make_trainer, make_expedition, forest):
    completed = []
    engine, registry = make_engine(settings, clock, hub, on_complete=completed.append)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)

    seen = []
    for _ in range(70):
        clock.advance(60)
        for snapshot in engine.tick():
            seen.append(snapshot.overall_progress)

    assert seen == sorted(seen)
    assert all(0.0 <= value <= 1.0 for value in seen)
    assert seen[-1] == pytest.approx(1.0)
    assert len(completed) == 1
    assert expedition.stop_reason is StopReason.COMPLETE
    assert expedition.actual_end_time is not None
    assert len(registry) == 0
    assert engine.get(expedition.id) is None


def test_completion_fires_once_even_when_finish_repeats(settings, clock, hub, make_trainer, make_expedition, forest):
    completed = []
    engine, _ = make_engine(settings, clock, hub, on_complete=completed.append)
    expedition = make_expedition(hours=0.5)
    engine.start(expedition, make_trainer(), forest)

    clock.advance(timedelta(hours=1))
    engine.tick()

    assert engine.finish(expedition.id, StopReason.COMPLETE) is None
    assert len(completed) == 1


def test_negative_offset_never_moves_progress_backwards(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, registry = make_engine(settings, clock, hub)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)

    clock.advance(timedelta(minutes=30))
    before = engine.tick()[0].overall_progress
    registry.get(expedition.id).progress_offset = -0.4
    clock.advance(60)
    after = engine.tick()[0].overall_progress

    assert before == pytest.approx(0.5)
    assert after == pytest.approx(before)


def test_ticks_closer_than_min_spacing_are_ignored(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, _ = make_engine(settings, clock, hub)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)

    clock.advance(0.2)

    assert engine.tick() == []
    assert engine.get(expedition.id).overall_progress == 0.0


def test_progress_boost_scales_elapsed_time(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, registry = make_engine(settings, clock, hub)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)
    registry.get(expedition.id).active_interventions.append(
        ActiveIntervention(
            id="int-1",
            expedition_id=expedition.id,
            action_id="healing_potion",
            applied_at=clock.now(),
            effects=[AppliedEffect(EffectKind.PROGRESS_BOOST, 1.0, clock.now(), 60, "healing_potion")],
        )
    )

    clock.advance(60)
    snapshot = engine.tick()[0]

    assert snapshot.overall_progress == pytest.approx(2 / 60)


def test_risk_reduction_lowers_risk_score(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, registry = make_engine(settings, clock, hub)
    plain = make_expedition("exp-a", hours=1.0)
    shielded = make_expedition("exp-b", hours=1.0)
    engine.start(plain, make_trainer(), forest)
    engine.start(shielded, make_trainer(), forest)
    registry.get("exp-b").active_interventions.append(
        ActiveIntervention(
            id="int-1",
            expedition_id="exp-b",
            action_id="healing_potion",
            applied_at=clock.now(),
            effects=[AppliedEffect(EffectKind.RISK_REDUCTION, 0.1, clock.now(), 120, "healing_potion")],
        )
    )

    clock.advance(60)
    engine.tick()

    assert engine.get("exp-b").risk_score == pytest.approx(engine.get("exp-a").risk_score - 0.1)


def test_event_source_called_when_due(settings, clock, hub, make_trainer, make_expedition, forest):
    calls = []
    engine, _ = make_engine(
        settings, clock, hub, event_source=lambda record, now: calls.append((record.id, now))
    )
    expedition = make_expedition(hours=2.0)
    engine.start(expedition, make_trainer(), forest)

    for _ in range(10):
        clock.advance(60)
        engine.tick()

    assert calls
    assert all(exp_id == expedition.id for exp_id, _ in calls)
    assert engine.get(expedition.id).next_event_at > clock.now()


def test_progress_notifications_carry_previous_snapshot(settings, clock, hub, make_trainer, make_expedition, forest):
    changes = []
    engine, _ = make_engine(settings, clock, hub)
    hub.subscribe(CATEGORY_PROGRESS, changes.append)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)

    clock.advance(60)
    engine.tick()

    assert len(changes) == 1
    assert changes[0].previous_data.overall_progress == 0.0
    assert changes[0].data.overall_progress == pytest.approx(1 / 60)


def test_stage_transitions_are_recorded(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, registry = make_engine(settings, clock, hub)
    expedition = make_expedition(hours=1.0)
    engine.start(expedition, make_trainer(), forest)

    clock.advance(timedelta(minutes=10))
    engine.tick()
    stages = [transition.stage for transition in registry.get(expedition.id).stage_transitions]

    assert stages == [Stage.PREPARATION, Stage.EARLY]


def test_stop_unknown_expedition_is_noop(settings, clock, hub, make_trainer, make_expedition, forest):
    removed = []
    engine, _ = make_engine(settings, clock, hub)
    hub.subscribe(CATEGORY_EXPEDITION, removed.append)
    expedition = make_expedition()
    engine.start(expedition, make_trainer(), forest)

    assert engine.stop("missing") is None
    assert engine.stop(expedition.id) is not None
    assert engine.stop(expedition.id) is None
    assert expedition.stop_reason is StopReason.CANCELLED
    assert [change.action for change in removed] == ["create", "delete"]


def test_shutdown_stops_everything(settings, clock, hub, make_trainer, make_expedition, forest):
    engine, registry = make_engine(settings, clock, hub)
    first = make_expedition("exp-a")
    second = make_expedition("exp-b")
    engine.start(first, make_trainer(), forest)
    engine.start(second, make_trainer(), forest)

    engine.shutdown()

    assert len(registry) == 0
    assert first.stop_reason is StopReason.SHUTDOWN
    assert second.stop_reason is StopReason.SHUTDOWN


def test_failing_completion_hook_does_not_stall_other_expeditions(
    settings, clock, hub, make_trainer, make_expedition, forest, caplog
):
    completed = []

    def on_complete(record):
        if record.id == "exp-a":
            raise RuntimeError("reward table missing")
        completed.append(record.id)

    engine, registry = make_engine(settings, clock, hub, on_complete=on_complete)
    engine.start(make_expedition("exp-a", hours=0.5), make_trainer(), forest)
    engine.start(make_expedition("exp-b", hours=0.5), make_trainer(), forest)

    clock.advance(timedelta(hours=1))
    snapshots = engine.tick()

    assert completed == ["exp-b"]
    assert [snapshot.expedition_id for snapshot in snapshots] == ["exp-b"]
    assert len(registry) == 0
    assert "Tick failed for expedition exp-a" in caplog.text
