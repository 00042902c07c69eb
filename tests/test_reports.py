"""Tests for expedition report assembly and the archive."""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from expedition_sim.models import (
    EventOutcome,
    EventType,
    Expedition,
    ExpeditionEvent,
    ExpeditionLoot,
    ExpeditionMode,
    ExpeditionProgress,
    InterventionOutcome,
    InterventionRecord,
    Rarity,
    ReportOutcome,
    RewardCalculation,
    RiskLevel,
    Stage,
    StageTransition,
)
from expedition_sim.reports import ReportArchive, ReportBuilder, report_to_dict

START = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)


def make_event(index, event_type=EventType.ENCOUNTER, success=True, resolved=True):
    event = ExpeditionEvent(
        id=f"exp-1-evt-{index}",
        expedition_id="exp-1",
        template_id="wild_pokemon_common",
        type=event_type,
        rarity=Rarity.COMMON,
        message=f"Event {index}",
        timestamp=START + timedelta(minutes=10 * index),
        stage=Stage.MIDDLE,
    )
    if resolved:
        event.resolve(EventOutcome("observe", success, "done", event.timestamp + timedelta(minutes=1)))
    return event


def make_expedition(events=(), hours=2.0, actual_minutes=120, interventions=(), expedition_id="exp-1"):
    return Expedition(
        id=expedition_id,
        trainer_id="trainer-1",
        location_id=1,
        mode=ExpeditionMode.BALANCED,
        target_duration=hours,
        start_time=START,
        estimated_end_time=START + timedelta(hours=hours),
        actual_end_time=START + timedelta(minutes=actual_minutes),
        events=list(events),
        interventions=list(interventions),
    )


def make_progress(overall=1.0, risk=RiskLevel.LOW):
    return ExpeditionProgress(
        expedition_id="exp-1",
        stage=Stage.COMPLETION,
        stage_progress=1.0,
        overall_progress=overall,
        risk_level=risk,
        risk_score=0.2,
        estimated_end_time=START + timedelta(hours=2),
        next_event_at=None,
        updated_at=START + timedelta(hours=2),
    )


def make_loot(total_value=2500, money=264):
    return ExpeditionLoot(
        expedition_id="exp-1",
        money=RewardCalculation(base=money, bonuses=(), total=money),
        pokemon=(),
        items=(),
        experience=120,
        trainer_experience=90,
        special_rewards=(),
        total_value=total_value,
        rarity_bonus=0,
        summary=f"{money} money, 0 pokemon, 0 items from Viridian Forest",
    )


@pytest.mark.parametrize(
    "overall, value, expected",
    [
        (1.0, 2500, ReportOutcome.SUCCESS),
        (0.96, 900, ReportOutcome.PARTIAL_SUCCESS),
        (0.7, 5000, ReportOutcome.PARTIAL_SUCCESS),
        (0.5, 5000, ReportOutcome.FAILURE),
    ],
)
def test_outcome_thresholds(overall, value, expected):
    builder = ReportBuilder()

    assert builder.determine_outcome(make_progress(overall), make_loot(value)) is expected


def test_timeline_is_chronological_and_complete(make_trainer):
    intervention = InterventionRecord(
        id="exp-1-int-1",
        expedition_id="exp-1",
        action_id="healing_potion",
        timestamp=START + timedelta(minutes=15),
        result=InterventionOutcome.SUCCESS,
        effect="Stamina restored",
        cost=500,
    )
    expedition = make_expedition(
        events=[make_event(3), make_event(1, success=False)], interventions=[intervention]
    )
    transitions = [
        StageTransition(Stage.PREPARATION, START, 0.0),
        StageTransition(Stage.EARLY, START + timedelta(minutes=12), 0.1),
    ]

    report = ReportBuilder().build(expedition, make_trainer(), make_progress(), make_loot(), transitions)
    timeline = report.timeline

    assert [entry.type for entry in timeline] == [
        "start", "event", "stage_change", "intervention", "event", "completion",
    ]
    assert [entry.timestamp for entry in timeline] == sorted(entry.timestamp for entry in timeline)
    assert timeline[1].impact == "negative"
    assert timeline[4].impact == "positive"


def test_no_events_defaults(make_trainer):
    report = ReportBuilder().build(make_expedition(), make_trainer(), make_progress(), make_loot())

    assert report.performance.trainer.decision_quality == pytest.approx(0.8)
    assert report.metadata["data_quality"] == pytest.approx(0.7)
    assert report.metadata["reliability"] == pytest.approx(0.5)
    assert report.report_id == "report-exp-1"


def test_rating_is_bounded(make_trainer):
    slow = make_expedition(actual_minutes=2000, events=[make_event(i, resolved=False) for i in range(4)])

    report = ReportBuilder().build(slow, make_trainer(), make_progress(0.3), make_loot(100))

    assert 0.0 <= report.summary.overall_rating <= 10.0
    assert report.summary.outcome is ReportOutcome.FAILURE
    assert "Several events were left unresolved" in report.summary.concerns
    assert "Progress is low" in report.summary.concerns


def test_achievements(make_trainer):
    events = [make_event(i, EventType.DANGER) for i in range(1, 4)]
    expedition = make_expedition(events=events, actual_minutes=100)

    report = ReportBuilder().build(expedition, make_trainer(), make_progress(), make_loot())
    ids = {achievement.id for achievement in report.summary.achievements}

    assert ids == {"perfect_handling", "efficiency_master", "survivor"}
    assert "Finished ahead of schedule" in report.summary.highlights


def test_recommendations_are_sorted_by_priority(make_trainer):
    events = [make_event(i, success=False) for i in range(1, 3)] + [
        make_event(i, resolved=False) for i in range(3, 6)
    ]
    expedition = make_expedition(events=events, actual_minutes=200)

    report = ReportBuilder().build(
        expedition, make_trainer(), make_progress(0.8, RiskLevel.CRITICAL), make_loot(50)
    )
    priorities = [rec.priority for rec in report.recommendations]

    assert priorities == sorted(priorities, key=["high", "medium", "low"].index)
    assert {rec.category for rec in report.recommendations} >= {"training", "strategy", "timing"}


def test_cost_effectiveness_uses_cost_floor(make_trainer):
    report = ReportBuilder().build(make_expedition(), make_trainer(), make_progress(), make_loot(2500))

    assert report.performance.resource_utilization["cost_effectiveness"] == pytest.approx(25.0)


def test_improvement_against_previous_rating(make_trainer):
    builder = ReportBuilder()
    first = builder.build(make_expedition(), make_trainer(), make_progress(), make_loot())

    second = builder.build(
        make_expedition(), make_trainer(), make_progress(), make_loot(),
        previous_rating=first.summary.overall_rating - 1.5,
    )

    assert second.performance.trainer.improvement == pytest.approx(1.5)


def test_build_is_deterministic(make_trainer):
    builder = ReportBuilder()
    expedition = make_expedition(events=[make_event(1), make_event(2, EventType.DISCOVERY)])

    first = builder.build(expedition, make_trainer(), make_progress(), make_loot())
    second = builder.build(expedition, make_trainer(), make_progress(), make_loot())

    assert first == second


def test_report_serializes_to_json(make_trainer):
    report = ReportBuilder().build(
        make_expedition(events=[make_event(1)]), make_trainer(), make_progress(), make_loot()
    )

    payload = report_to_dict(report)

    assert payload["summary"]["outcome"] == "success"
    assert payload["metadata"]["generated_at"] == (START + timedelta(minutes=120)).isoformat()
    json.dumps(payload)


def test_archive_limits_and_latest_rating(make_trainer):
    archive = ReportArchive()
    builder = ReportBuilder()
    for index in range(25):
        expedition = make_expedition(expedition_id=f"exp-{index}")
        archive.store(builder.build(expedition, make_trainer(), make_progress(), make_loot()))

    trainer_history = archive.history("trainer", "trainer-1")
    assert len(trainer_history) == 20
    assert trainer_history[0].expedition_id == "exp-5"
    assert len(archive.history("location", 1)) == 25
    assert archive.history("expedition", "exp-24")[0].expedition_id == "exp-24"
    assert archive.latest_rating("trainer-1") == trainer_history[-1].summary.overall_rating
    assert archive.latest_rating("nobody") is None
    assert archive.statistics_summary()["total_reports"] == 25
    with pytest.raises(ValueError):
        archive.history("guild", "x")
