"""Post-expedition report assembly and the report archive."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    EventType,
    Expedition,
    ExpeditionEvent,
    ExpeditionLoot,
    ExpeditionProgress,
    InterventionOutcome,
    Rarity,
    ReportOutcome,
    RiskLevel,
    Stage,
    StageTransition,
    Trainer,
)

logger = logging.getLogger(__name__)

REPORT_VERSION = "1.0"
TRAINER_HISTORY_LIMIT = 20
LOCATION_HISTORY_LIMIT = 50

_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}
_SAFETY_PENALTY = {RiskLevel.CRITICAL: 0.8, RiskLevel.HIGH: 0.6}
_EVENT_TITLES = {
    EventType.ENCOUNTER: "Pokemon encounter",
    EventType.DISCOVERY: "Discovery",
    EventType.DANGER: "Danger",
    EventType.WEATHER: "Weather change",
    EventType.SOCIAL: "Trainer meeting",
}


@dataclass(frozen=True)
class TimelineEntry:
    timestamp: datetime
    type: str
    title: str
    description: str
    impact: str = "neutral"
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Achievement:
    id: str
    type: str
    name: str
    description: str
    rarity: Rarity
    points: int


@dataclass(frozen=True)
class Recommendation:
    priority: str
    category: str
    title: str
    description: str
    expected_improvement: str
    implementation_cost: int
    difficulty: str


@dataclass(frozen=True)
class ReportSummary:
    outcome: ReportOutcome
    planned_minutes: float
    actual_minutes: float
    duration_efficiency: float
    achievements: Tuple[Achievement, ...]
    highlights: Tuple[str, ...]
    concerns: Tuple[str, ...]
    overall_rating: float


@dataclass(frozen=True)
class TrainerPerformance:
    skill_utilization: Dict[str, float]
    decision_quality: float
    adaptability: float
    reliability: float
    improvement: float
    strengths: Tuple[str, ...]
    weaknesses: Tuple[str, ...]


@dataclass(frozen=True)
class PerformanceAnalysis:
    trainer: TrainerPerformance
    event_handling: Dict[str, Any]
    resource_utilization: Dict[str, float]
    risk_management: Dict[str, Any]
    efficiency: Dict[str, float]


@dataclass(frozen=True)
class ExpeditionReport:
    report_id: str
    expedition_id: str
    trainer_id: str
    location_id: int
    summary: ReportSummary
    timeline: Tuple[TimelineEntry, ...]
    performance: PerformanceAnalysis
    recommendations: Tuple[Recommendation, ...]
    statistics: Dict[str, Any]
    metadata: Dict[str, Any]


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def report_to_dict(report: ExpeditionReport) -> Dict[str, Any]:
    """JSON-ready rendering of a report."""
    return _jsonable(asdict(report))


def _ratio(part: int, whole: int, default: float) -> float:
    return part / whole if whole else default


class ReportBuilder:
    """Deterministic report assembly; the builder holds no state."""

    def build(
        self,
        expedition: Expedition,
        trainer: Trainer,
        progress: ExpeditionProgress,
        loot: ExpeditionLoot,
        stage_transitions: Sequence[StageTransition] = (),
        previous_rating: Optional[float] = None,
    ) -> ExpeditionReport:
        events = list(expedition.events)
        end = expedition.actual_end_time or expedition.estimated_end_time
        planned_minutes = expedition.target_duration * 60
        actual_minutes = max((end - expedition.start_time).total_seconds() / 60, 0.0)
        efficiency = planned_minutes / actual_minutes if actual_minutes > 0 else 1.0

        outcome = self.determine_outcome(progress, loot)
        timeline = self.build_timeline(expedition, events, stage_transitions, loot, outcome)
        achievements = self.check_achievements(events, loot, planned_minutes, actual_minutes)
        rating = self.overall_rating(outcome, efficiency, events, loot)
        summary = ReportSummary(
            outcome=outcome,
            planned_minutes=planned_minutes,
            actual_minutes=actual_minutes,
            duration_efficiency=efficiency,
            achievements=achievements,
            highlights=self.highlights(events, loot, efficiency),
            concerns=self.concerns(events, progress, efficiency),
            overall_rating=rating,
        )
        improvement = rating - previous_rating if previous_rating is not None else 0.0
        performance = self.analyze_performance(
            expedition, trainer, events, progress, loot, efficiency, actual_minutes, improvement
        )
        statistics = self.statistics(expedition, events, loot)
        report = ExpeditionReport(
            report_id=f"report-{expedition.id}",
            expedition_id=expedition.id,
            trainer_id=trainer.id,
            location_id=expedition.location_id,
            summary=summary,
            timeline=timeline,
            performance=performance,
            recommendations=self.recommendations(performance, efficiency, events),
            statistics=statistics,
            metadata={
                "generated_at": end,
                "version": REPORT_VERSION,
                "data_quality": self._data_quality(expedition, events),
                "reliability": min(1.0, len(events) * 0.1 + 0.5),
            },
        )
        logger.debug("Report built for %s: %s rated %.1f", expedition.id, outcome.value, rating)
        return report

    # ------------------------------------------------------------------
    def determine_outcome(self, progress: ExpeditionProgress, loot: ExpeditionLoot) -> ReportOutcome:
        if progress.overall_progress >= 0.95 and loot.total_value > 1000:
            return ReportOutcome.SUCCESS
        if progress.overall_progress >= 0.7:
            return ReportOutcome.PARTIAL_SUCCESS
        return ReportOutcome.FAILURE

    def build_timeline(
        self,
        expedition: Expedition,
        events: Sequence[ExpeditionEvent],
        stage_transitions: Sequence[StageTransition],
        loot: ExpeditionLoot,
        outcome: ReportOutcome,
    ) -> Tuple[TimelineEntry, ...]:
        entries: List[TimelineEntry] = [
            TimelineEntry(
                timestamp=expedition.start_time,
                type="start",
                title="Expedition started",
                description=f"{expedition.mode.value} expedition to location {expedition.location_id}",
            )
        ]
        for transition in stage_transitions:
            if transition.stage is Stage.PREPARATION:
                continue
            entries.append(
                TimelineEntry(
                    timestamp=transition.timestamp,
                    type="stage_change",
                    title=f"Entered {transition.stage.value} stage",
                    description=f"Progress reached {transition.progress:.0%}",
                )
            )
        for event in events:
            if not event.resolved:
                impact = "neutral"
            else:
                impact = "positive" if event.successful else "negative"
            entries.append(
                TimelineEntry(
                    timestamp=event.timestamp,
                    type="event",
                    title=_EVENT_TITLES.get(event.type, "Event"),
                    description=event.message,
                    impact=impact,
                    details={
                        "type": event.type.value,
                        "resolved": event.resolved,
                        "choice": event.outcome.choice_id if event.outcome else None,
                    },
                )
            )
        for record in expedition.interventions:
            entries.append(
                TimelineEntry(
                    timestamp=record.timestamp,
                    type="intervention",
                    title="Player intervention",
                    description=record.effect,
                    impact="positive" if record.result is InterventionOutcome.SUCCESS else "negative",
                    details={"action": record.action_id, "result": record.result.value},
                )
            )
        if expedition.actual_end_time is not None:
            entries.append(
                TimelineEntry(
                    timestamp=expedition.actual_end_time,
                    type="completion",
                    title="Expedition finished",
                    description=loot.summary,
                    impact="negative" if outcome is ReportOutcome.FAILURE else "positive",
                )
            )
        return tuple(sorted(entries, key=lambda entry: entry.timestamp))

    def check_achievements(
        self,
        events: Sequence[ExpeditionEvent],
        loot: ExpeditionLoot,
        planned_minutes: float,
        actual_minutes: float,
    ) -> Tuple[Achievement, ...]:
        achievements: List[Achievement] = []
        if events and all(event.resolved for event in events):
            achievements.append(
                Achievement("perfect_handling", "skill", "Perfect Handling",
                            "Handled every event", Rarity.RARE, 100)
            )
        if actual_minutes < planned_minutes:
            achievements.append(
                Achievement("efficiency_master", "record", "Efficiency Master",
                            "Finished ahead of schedule", Rarity.UNCOMMON, 50)
            )
        if any(pokemon.rarity_bonus >= 2 for pokemon in loot.pokemon):
            achievements.append(
                Achievement("rare_hunter", "discovery", "Rare Hunter",
                            "Found a rare pokemon", Rarity.RARE, 150)
            )
        dangers = [event for event in events if event.type is EventType.DANGER]
        if len(dangers) >= 3 and all(event.resolved for event in dangers):
            achievements.append(
                Achievement("survivor", "survival", "Survivor",
                            "Came through several dangers", Rarity.UNCOMMON, 75)
            )
        return tuple(achievements)

    def overall_rating(
        self,
        outcome: ReportOutcome,
        efficiency: float,
        events: Sequence[ExpeditionEvent],
        loot: ExpeditionLoot,
    ) -> float:
        rating = 5.0
        rating += {
            ReportOutcome.SUCCESS: 2.0,
            ReportOutcome.PARTIAL_SUCCESS: 0.5,
            ReportOutcome.FAILURE: -2.0,
        }[outcome]
        rating += (efficiency - 1.0) * 2
        resolved_ratio = _ratio(sum(1 for e in events if e.resolved), len(events), 1.0)
        rating += resolved_ratio * 2 - 1
        if loot.total_value > 5000:
            rating += 1
        if len(loot.pokemon) > 2:
            rating += 0.5
        return max(0.0, min(10.0, rating))

    def highlights(
        self, events: Sequence[ExpeditionEvent], loot: ExpeditionLoot, efficiency: float
    ) -> Tuple[str, ...]:
        notes: List[str] = []
        if efficiency > 1.1:
            notes.append("Finished ahead of schedule")
        if loot.pokemon:
            notes.append(f"Found {len(loot.pokemon)} pokemon")
        if loot.special_rewards:
            notes.append("Earned special rewards")
        if events and all(event.resolved for event in events):
            notes.append("Handled every event")
        return tuple(notes)

    def concerns(
        self,
        events: Sequence[ExpeditionEvent],
        progress: ExpeditionProgress,
        efficiency: float,
    ) -> Tuple[str, ...]:
        notes: List[str] = []
        if efficiency < 0.8:
            notes.append("Ran well over schedule")
        if progress.risk_level is RiskLevel.CRITICAL:
            notes.append("Risk level is critical")
        if sum(1 for event in events if not event.resolved) > 2:
            notes.append("Several events were left unresolved")
        if progress.overall_progress < 0.5:
            notes.append("Progress is low")
        return tuple(notes)

    # ------------------------------------------------------------------
    def analyze_performance(
        self,
        expedition: Expedition,
        trainer: Trainer,
        events: Sequence[ExpeditionEvent],
        progress: ExpeditionProgress,
        loot: ExpeditionLoot,
        efficiency: float,
        actual_minutes: float,
        improvement: float,
    ) -> PerformanceAnalysis:
        def count(kind: EventType) -> int:
            return sum(1 for event in events if event.type is kind)

        skill_utilization = {
            "capture": min(count(EventType.ENCOUNTER) * 0.2, 1.0),
            "exploration": min(len(events) * 0.1, 1.0),
            "battle": min(count(EventType.DANGER) * 0.3, 1.0),
            "research": min(count(EventType.DISCOVERY) * 0.25, 1.0),
            "healing": 0.5,
        }
        successful = sum(1 for event in events if event.successful)
        decision_quality = _ratio(successful, len(events), 0.8)
        interventions = expedition.interventions
        successful_interventions = sum(
            1 for record in interventions if record.result is InterventionOutcome.SUCCESS
        )
        variety = len({event.type for event in events})
        adaptability = min(variety * 0.2 + successful_interventions * 0.1, 1.0)

        strengths = [f"Strong {skill} skill" for skill, level in trainer.skills.items() if level >= 7]
        weaknesses = [f"{skill.capitalize()} skill needs work" for skill, level in trainer.skills.items() if level <= 3]
        if decision_quality > 0.8:
            strengths.append("Sound judgement")
        if decision_quality < 0.6:
            weaknesses.append("Judgement needs work")
        if trainer.trust_level > 80:
            strengths.append("Strong trust")
        if trainer.trust_level < 50:
            weaknesses.append("Trust needs building")

        trainer_performance = TrainerPerformance(
            skill_utilization=skill_utilization,
            decision_quality=decision_quality,
            adaptability=adaptability,
            reliability=min(trainer.trust_level / 100, 1.0),
            improvement=improvement,
            strengths=tuple(strengths),
            weaknesses=tuple(weaknesses),
        )

        by_type: Dict[str, Dict[str, float]] = {}
        for event in events:
            entry = by_type.setdefault(event.type.value, {"count": 0, "success_rate": 0.0})
            entry["count"] += 1
            if event.successful:
                entry["success_rate"] += 1
        for entry in by_type.values():
            entry["success_rate"] = entry["success_rate"] / entry["count"]
        critical = [e for e in events if e.type in (EventType.DANGER, EventType.ENCOUNTER)]
        event_handling = {
            "total_events": len(events),
            "resolved_successfully": successful,
            "missed_opportunities": sum(1 for event in events if not event.resolved),
            "event_type_breakdown": by_type,
            "critical_event_handling": _ratio(sum(1 for e in critical if e.resolved), len(critical), 1.0),
        }

        total_cost = sum(record.cost for record in interventions)
        resource_utilization = {
            "time_efficiency": min(efficiency, 2.0),
            "cost_effectiveness": loot.total_value / max(total_cost, 100),
            "intervention_efficiency": _ratio(successful_interventions, len(interventions), 1.0),
            "wasted_resources": max(0.0, total_cost - loot.total_value * 0.5),
        }

        dangers = [event for event in events if event.type is EventType.DANGER]
        risk_management = {
            "final_risk_level": progress.risk_level.value,
            "risk_mitigation_success": _ratio(sum(1 for e in dangers if e.resolved), len(dangers), 1.0),
            "dangerous_decisions": sum(1 for e in dangers if not e.resolved),
            "safety_margin": max(0.0, 1.0 - _SAFETY_PENALTY.get(progress.risk_level, 0.4)),
        }

        hours = max(actual_minutes / 60, 1 / 60)
        efficiency_analysis = {
            "progress_rate": progress.overall_progress / hours,
            "event_resolution_rate": sum(1 for e in events if e.resolved) / hours,
            "resource_to_outcome_ratio": progress.overall_progress
            / max(hours / expedition.target_duration, 0.1),
        }
        return PerformanceAnalysis(
            trainer=trainer_performance,
            event_handling=event_handling,
            resource_utilization=resource_utilization,
            risk_management=risk_management,
            efficiency=efficiency_analysis,
        )

    def recommendations(
        self,
        performance: PerformanceAnalysis,
        efficiency: float,
        events: Sequence[ExpeditionEvent],
    ) -> Tuple[Recommendation, ...]:
        recs: List[Recommendation] = []
        if performance.trainer.decision_quality < 0.7:
            recs.append(
                Recommendation("high", "training", "Decision-making drills",
                               "Run simulated scenarios so the trainer picks better options",
                               "20-30% better decisions", 5000, "medium")
            )
        if performance.resource_utilization["cost_effectiveness"] < 1.5:
            recs.append(
                Recommendation("medium", "equipment", "Better field equipment",
                               "More efficient gear should raise returns per coin spent",
                               "25% better cost effectiveness", 3000, "easy")
            )
        if performance.risk_management["safety_margin"] < 0.3:
            recs.append(
                Recommendation("high", "strategy", "Review risk strategy",
                               "Pick safer modes or intervene earlier to keep a safety margin",
                               "50% fewer incidents", 0, "medium")
            )
        if efficiency < 0.8:
            recs.append(
                Recommendation("low", "timing", "Plan shorter legs",
                               "Expeditions are overrunning; plan durations closer to reality",
                               "Fewer overruns", 0, "easy")
            )
        if sum(1 for event in events if not event.resolved) > 2:
            recs.append(
                Recommendation("medium", "risk_management", "Respond to events",
                               "Unanswered events are lost opportunities; check in more often",
                               "More events resolved", 0, "easy")
            )
        return tuple(sorted(recs, key=lambda rec: _PRIORITY_ORDER[rec.priority]))

    def statistics(
        self, expedition: Expedition, events: Sequence[ExpeditionEvent], loot: ExpeditionLoot
    ) -> Dict[str, Any]:
        dangers = [event for event in events if event.type is EventType.DANGER]
        return {
            "pokemon_encountered": sum(1 for e in events if e.type is EventType.ENCOUNTER),
            "pokemon_caught": len(loot.pokemon),
            "items_found": len(loot.items),
            "money_earned": loot.money.total,
            "experience_gained": loot.experience,
            "distance_traveled": expedition.target_duration * 5,
            "battles_won": sum(1 for e in dangers if e.successful),
            "dangers_faced": len(dangers),
        }

    @staticmethod
    def _data_quality(expedition: Expedition, events: Sequence[ExpeditionEvent]) -> float:
        quality = 1.0
        if expedition.actual_end_time is None:
            quality -= 0.2
        if not events:
            quality -= 0.3
        return max(0.0, quality)


class ReportArchive:
    """Keeps finished reports by expedition, trainer and location."""

    def __init__(self) -> None:
        self._by_expedition: Dict[str, ExpeditionReport] = {}
        self._by_trainer: Dict[str, List[ExpeditionReport]] = {}
        self._by_location: Dict[int, List[ExpeditionReport]] = {}

    def store(self, report: ExpeditionReport) -> None:
        self._by_expedition[report.expedition_id] = report
        trainer_reports = self._by_trainer.setdefault(report.trainer_id, [])
        trainer_reports.append(report)
        del trainer_reports[:-TRAINER_HISTORY_LIMIT]
        location_reports = self._by_location.setdefault(report.location_id, [])
        location_reports.append(report)
        del location_reports[:-LOCATION_HISTORY_LIMIT]

    def get(self, expedition_id: str) -> Optional[ExpeditionReport]:
        return self._by_expedition.get(expedition_id)

    def history(self, kind: str, key: Any) -> List[ExpeditionReport]:
        if kind == "expedition":
            report = self._by_expedition.get(key)
            return [report] if report else []
        if kind == "trainer":
            return list(self._by_trainer.get(key, []))
        if kind == "location":
            return list(self._by_location.get(key, []))
        raise ValueError(f"Unknown report history kind: {kind}")

    def latest_rating(self, trainer_id: str) -> Optional[float]:
        reports = self._by_trainer.get(trainer_id)
        if not reports:
            return None
        return reports[-1].summary.overall_rating

    def statistics_summary(self) -> Dict[str, Any]:
        reports = list(self._by_expedition.values())
        count = max(len(reports), 1)
        return {
            "total_reports": len(reports),
            "average_rating": sum(r.summary.overall_rating for r in reports) / count,
            "success_rate": sum(1 for r in reports if r.summary.outcome is ReportOutcome.SUCCESS) / count,
            "total_achievements": sum(len(r.summary.achievements) for r in reports),
        }

    def __len__(self) -> int:
        return len(self._by_expedition)


__all__ = [
    "Achievement",
    "ExpeditionReport",
    "PerformanceAnalysis",
    "Recommendation",
    "ReportArchive",
    "ReportBuilder",
    "ReportSummary",
    "TimelineEntry",
    "TrainerPerformance",
    "report_to_dict",
]
