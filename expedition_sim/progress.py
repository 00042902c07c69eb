"""Tick-driven expedition progress: stage, risk and event scheduling."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .config import Settings
from .models import (
    EffectKind,
    Expedition,
    ExpeditionEvent,
    ExpeditionMode,
    ExpeditionProgress,
    Location,
    RiskLevel,
    Stage,
    StageTransition,
    StopReason,
    Trainer,
)
from .notifications import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    CATEGORY_EXPEDITION,
    CATEGORY_PROGRESS,
    DataChange,
    NotificationHub,
)
from .registry import ExpeditionRecord, ExpeditionRegistry
from .rng import DeterministicRNG

logger = logging.getLogger(__name__)

STAGE_ORDER = (
    Stage.PREPARATION,
    Stage.EARLY,
    Stage.MIDDLE,
    Stage.LATE,
    Stage.COMPLETION,
)

EventSource = Callable[[ExpeditionRecord, datetime], Optional[ExpeditionEvent]]
CompletionHook = Callable[[ExpeditionRecord], None]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def classify_stage(progress: float, breakpoints: Dict[str, float]) -> Stage:
    """Map overall progress onto the stage whose range contains it."""
    current = STAGE_ORDER[0]
    for stage in STAGE_ORDER:
        if progress >= breakpoints[stage.value]:
            current = stage
    return current


def stage_progress(progress: float, stage: Stage, breakpoints: Dict[str, float]) -> float:
    index = STAGE_ORDER.index(stage)
    start = breakpoints[stage.value]
    end = breakpoints[STAGE_ORDER[index + 1].value] if index + 1 < len(STAGE_ORDER) else 1.0
    if end <= start:
        return 1.0
    return _clamp((progress - start) / (end - start))


def classify_risk(score: float, thresholds: Dict[str, float]) -> RiskLevel:
    if score < thresholds["low"]:
        return RiskLevel.LOW
    if score < thresholds["medium"]:
        return RiskLevel.MEDIUM
    if score < thresholds["high"]:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def initial_risk(
    location: Location, mode: ExpeditionMode, trainer: Trainer, settings: Settings
) -> float:
    """Starting risk: location risk scaled by mode, softened by experience."""
    multiplier = settings.mode_risk_multipliers.get(mode.value, 1.0)
    experience = min((trainer.level + trainer.total_expeditions / 10) * 0.1, 0.5)
    return max(0.0, location.risk * multiplier - experience)


def tick_risk(stage: Stage, progress: float, settings: Settings) -> float:
    weight = settings.stage_risk_weights.get(stage.value, 1.0)
    return 0.4 * weight + math.sin(progress * math.pi) * 0.3


class ProgressEngine:
    """Advances every registered expedition on each tick.

    Progress is derived from the effective elapsed time (wall time scaled by
    live progress boosts) plus the offset accumulated from event outcomes. It
    is clamped to ``[0, 1]`` and never moves backwards. Completion fires the
    completion hook exactly once and then removes the expedition.
    """

    def __init__(
        self,
        registry: ExpeditionRegistry,
        settings: Settings,
        clock,
        rng: DeterministicRNG,
        notifier: NotificationHub,
        event_source: Optional[EventSource] = None,
        on_complete: Optional[CompletionHook] = None,
    ) -> None:
        self._registry = registry
        self._settings = settings
        self._clock = clock
        self._rng = rng
        self._notifier = notifier
        self.event_source = event_source
        self.on_complete = on_complete

    # ------------------------------------------------------------------
    def start(
        self, expedition: Expedition, trainer: Trainer, location: Location
    ) -> ExpeditionProgress:
        now = expedition.start_time
        risk = initial_risk(location, expedition.mode, trainer, self._settings)
        progress = ExpeditionProgress(
            expedition_id=expedition.id,
            stage=Stage.PREPARATION,
            stage_progress=0.0,
            overall_progress=0.0,
            risk_level=classify_risk(risk, self._settings.risk_thresholds),
            risk_score=risk,
            estimated_end_time=expedition.estimated_end_time,
            next_event_at=None,
            updated_at=now,
        )
        record = ExpeditionRecord(
            expedition=expedition,
            trainer=trainer,
            location=location,
            progress=progress,
            last_tick=now,
            next_event_at=now + self._event_delay(Stage.PREPARATION),
            initial_risk=risk,
        )
        record.progress.next_event_at = record.next_event_at
        record.stage_transitions.append(StageTransition(Stage.PREPARATION, now, 0.0))
        self._registry.add(record)
        logger.info(
            "Expedition %s started at location %s (%s, %sh, risk %.2f)",
            expedition.id,
            location.id,
            expedition.mode.value,
            expedition.target_duration,
            risk,
        )
        self._notifier.emit(
            DataChange(
                category=CATEGORY_EXPEDITION,
                action=ACTION_CREATE,
                entity_id=expedition.id,
                timestamp=now,
                data=expedition,
            )
        )
        return replace(record.progress)

    def tick(self, now: Optional[datetime] = None) -> List[ExpeditionProgress]:
        """Advance all expeditions; returns progress for those that moved."""
        now = now or self._clock.now()
        updated: List[ExpeditionProgress] = []
        for record in self._registry:
            try:
                snapshot = self._tick_record(record, now)
            except Exception:
                # Failures stay scoped to the expedition that raised them.
                logger.exception("Tick failed for expedition %s", record.id)
                continue
            if snapshot is not None:
                updated.append(snapshot)
        return updated

    def _tick_record(self, record: ExpeditionRecord, now: datetime) -> Optional[ExpeditionProgress]:
        if record.completed:
            return None
        elapsed = (now - record.last_tick).total_seconds()
        if elapsed < self._settings.min_tick_spacing_seconds:
            return None

        boost = record.effect_total(EffectKind.PROGRESS_BOOST, now)
        reduction = record.effect_total(EffectKind.RISK_REDUCTION, now)
        record.effective_elapsed += elapsed * (1.0 + boost)
        record.last_tick = now

        previous = replace(record.progress)
        planned = record.expedition.planned_seconds
        raw = record.effective_elapsed / planned + record.progress_offset if planned > 0 else 1.0
        overall = _clamp(max(previous.overall_progress, raw))
        stage = classify_stage(overall, self._settings.stage_breakpoints)
        risk = max(0.0, tick_risk(stage, overall, self._settings) - reduction)
        remaining = (1.0 - overall) * planned / (1.0 + boost)

        progress = record.progress
        progress.overall_progress = overall
        progress.stage = stage
        progress.stage_progress = stage_progress(overall, stage, self._settings.stage_breakpoints)
        progress.risk_score = risk
        progress.risk_level = classify_risk(risk, self._settings.risk_thresholds)
        progress.estimated_end_time = now + timedelta(seconds=remaining)
        progress.updated_at = now
        record.expedition.estimated_end_time = progress.estimated_end_time

        if stage is not previous.stage:
            record.stage_transitions.append(StageTransition(stage, now, overall))
            logger.debug("Expedition %s entered stage %s", record.id, stage.value)

        if overall < 1.0 and now >= record.next_event_at:
            if self.event_source is not None:
                self.event_source(record, now)
            record.next_event_at = now + self._event_delay(stage)
        progress.next_event_at = record.next_event_at

        if (
            abs(overall - previous.overall_progress) >= self._settings.min_progress_delta
            or stage is not previous.stage
            or progress.risk_level is not previous.risk_level
        ):
            self._notifier.emit(
                DataChange(
                    category=CATEGORY_PROGRESS,
                    action=ACTION_UPDATE,
                    entity_id=record.id,
                    timestamp=now,
                    data=replace(progress),
                    previous_data=previous,
                )
            )

        snapshot = replace(progress)
        if overall >= 1.0:
            self.finish(record.id, StopReason.COMPLETE, now)
        return snapshot

    def _event_delay(self, stage: Stage) -> timedelta:
        multiplier = self._settings.stage_event_multipliers.get(stage.value, 1.0)
        seconds = self._settings.base_event_interval_seconds * multiplier * (0.5 + self._rng.random())
        return timedelta(seconds=seconds)

    # ------------------------------------------------------------------
    def finish(
        self, expedition_id: str, reason: StopReason, now: Optional[datetime] = None
    ) -> Optional[ExpeditionRecord]:
        """Complete an expedition once: run the completion hook, then stop it."""
        record = self._registry.find(expedition_id)
        if record is None or record.completed:
            return None
        now = now or self._clock.now()
        record.completed = True
        record.expedition.actual_end_time = now
        try:
            if self.on_complete is not None:
                self.on_complete(record)
        finally:
            self.stop(expedition_id, reason, now)
        return record

    def stop(
        self, expedition_id: str, reason: StopReason = StopReason.CANCELLED, now: Optional[datetime] = None
    ) -> Optional[ExpeditionRecord]:
        record = self._registry.remove(expedition_id)
        if record is None:
            logger.debug("Stop ignored for inactive expedition %s", expedition_id)
            return None
        now = now or self._clock.now()
        expedition = record.expedition
        expedition.stop_reason = reason
        if expedition.actual_end_time is None:
            expedition.actual_end_time = now
        logger.info("Expedition %s stopped (%s)", expedition_id, reason.value)
        self._notifier.emit(
            DataChange(
                category=CATEGORY_EXPEDITION,
                action=ACTION_DELETE,
                entity_id=expedition_id,
                timestamp=now,
                data=expedition,
            )
        )
        return record

    def get(self, expedition_id: str) -> Optional[ExpeditionProgress]:
        record = self._registry.find(expedition_id)
        if record is None:
            return None
        return replace(record.progress)

    def all_progress(self) -> List[ExpeditionProgress]:
        return [replace(record.progress) for record in self._registry]

    def shutdown(self) -> None:
        for record in self._registry:
            self.stop(record.id, StopReason.SHUTDOWN)


__all__ = [
    "ProgressEngine",
    "STAGE_ORDER",
    "classify_risk",
    "classify_stage",
    "initial_risk",
    "stage_progress",
    "tick_risk",
]
