"""Expedition service orchestrating progress, events, interventions and rewards."""

from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from .catalogs import EventCatalog, InterventionCatalog, LocationCatalog, RewardCatalog
from .clock import SystemClock
from .config import Settings, get_settings
from .events import EventResolver
from .interventions import InterventionController
from .models import (
    EventResolution,
    Expedition,
    ExpeditionEvent,
    ExpeditionLoot,
    ExpeditionMode,
    ExpeditionProgress,
    InterventionAction,
    InterventionResult,
    PlayerState,
    RiskLevel,
    StopReason,
    Trainer,
)
from .notifications import (
    ACTION_CREATE,
    CATEGORY_REPORT,
    CATEGORY_REWARDS,
    DataChange,
    NotificationHub,
)
from .progress import ProgressEngine
from .registry import ExpeditionRecord, ExpeditionRegistry
from .reports import ExpeditionReport, ReportArchive, ReportBuilder
from .rewards import RewardCalculator
from .rng import DeterministicRNG
from .telemetry import TelemetryCollector, get_telemetry, track_duration

logger = logging.getLogger(__name__)


class ExpeditionService:
    """Host object that builds and wires one instance of every component.

    All mutating entry points run under a single re-entrant lock so ticks
    from the background scheduler and player commands never interleave.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        clock=None,
        rng: Optional[DeterministicRNG] = None,
        seed: int = 42,
        telemetry: Optional[TelemetryCollector] = None,
        notifier: Optional[NotificationHub] = None,
        data_path: Optional[Path] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self._rng = rng or DeterministicRNG(seed=seed)
        self._telemetry = telemetry or get_telemetry()
        self.notifications = notifier or NotificationHub(self.settings.recent_buffer)
        self.registry = ExpeditionRegistry()

        self.locations = LocationCatalog(data_path)
        self.events = EventResolver(
            EventCatalog(data_path),
            self.registry,
            self.settings,
            self.clock,
            self._rng,
            self.notifications,
        )
        self.engine = ProgressEngine(
            self.registry,
            self.settings,
            self.clock,
            self._rng,
            self.notifications,
            event_source=self.events.generate_for,
            on_complete=self._on_complete,
        )
        self.interventions = InterventionController(
            InterventionCatalog(data_path),
            self.registry,
            self.events,
            self.settings,
            self.clock,
            self.notifications,
            on_recall=self.recall,
        )
        self.rewards = RewardCalculator(
            RewardCatalog(data_path), self.locations, self.settings, self._rng
        )
        self.reports = ReportBuilder()
        self.archive = ReportArchive()

        self._loot: Dict[str, ExpeditionLoot] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    @property
    def telemetry(self) -> TelemetryCollector:
        return self._telemetry

    # ------------------------------------------------------------------
    # Commands

    def launch_expedition(
        self,
        trainer: Trainer,
        location_id: int,
        mode: ExpeditionMode | str,
        duration_hours: float,
        *,
        expedition_id: Optional[str] = None,
        weather: str = "clear",
    ) -> Expedition:
        if duration_hours <= 0:
            raise ValueError("Expedition duration must be positive")
        mode = ExpeditionMode(mode)
        location = self.locations.get(location_id)
        with self._lock:
            now = self.clock.now()
            expedition = Expedition(
                id=expedition_id or f"exp-{next(self._ids)}",
                trainer_id=trainer.id,
                location_id=location.id,
                mode=mode,
                target_duration=float(duration_hours),
                start_time=now,
                estimated_end_time=now + timedelta(hours=duration_hours),
            )
            self.engine.start(expedition, trainer, location)
            self.registry.get(expedition.id).weather = weather
        self._track(
            "track_expedition",
            "expedition_started",
            expedition.id,
            trainer.id,
            {"location_id": location.id, "mode": mode.value, "hours": duration_hours},
        )
        return expedition

    def tick(self, now: Optional[datetime] = None) -> List[ExpeditionProgress]:
        with self._lock:
            with track_duration("expedition_tick", collector=self._telemetry):
                return self.engine.tick(now)

    def resolve_choice(
        self,
        expedition_id: str,
        event_id: str,
        choice_id: str,
        trainer: Optional[Trainer] = None,
    ) -> EventResolution:
        with self._lock:
            resolution = self.events.resolve_choice(expedition_id, event_id, choice_id, trainer)
        self._track(
            "track_event_resolution",
            expedition_id,
            event_id,
            choice_id,
            resolution.accepted,
            resolution.success,
            resolution.success_rate,
        )
        return resolution

    def intervene(
        self,
        expedition_id: str,
        action_id: str,
        player: PlayerState,
        trainer: Optional[Trainer] = None,
    ) -> InterventionResult:
        with self._lock:
            result = self.interventions.execute(expedition_id, action_id, player, trainer)
        self._track("track_intervention", expedition_id, action_id, result.success, result.cost)
        return result

    def emergency_intervene(
        self,
        expedition_id: str,
        event_id: str,
        action_id: str,
        trainer: Optional[Trainer] = None,
    ) -> EventResolution:
        with self._lock:
            resolution = self.interventions.emergency_execute(
                expedition_id, event_id, action_id, trainer
            )
        self._track(
            "track_intervention", expedition_id, action_id, resolution.accepted, 0, True
        )
        return resolution

    def available_actions(
        self, expedition_id: str, player: PlayerState, trainer: Optional[Trainer] = None
    ) -> List[InterventionAction]:
        with self._lock:
            return self.interventions.available_actions(expedition_id, player, trainer)

    def recall(self, expedition_id: str) -> Optional[ExpeditionLoot]:
        """Bring an expedition home now, paying out what it earned so far."""
        with self._lock:
            self.registry.get(expedition_id)
            self.engine.finish(expedition_id, StopReason.RECALLED)
            return self._loot.get(expedition_id)

    def cancel(self, expedition_id: str) -> None:
        """Abandon an expedition without rewards."""
        with self._lock:
            self.engine.stop(expedition_id, StopReason.CANCELLED)

    def sweep_effects(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            return self.interventions.sweep(now)

    def shutdown(self) -> None:
        with self._lock:
            self.engine.shutdown()
        self._telemetry.flush()

    # ------------------------------------------------------------------
    # Completion

    def completion_success_rate(self, record: ExpeditionRecord) -> float:
        events = record.expedition.events
        if events:
            successful = sum(1 for event in events if event.successful)
            rate = 0.5 + 0.5 * successful / len(events)
        else:
            rate = 1.0
        if record.progress.risk_level is RiskLevel.CRITICAL:
            rate *= 0.8
        if record.progress.overall_progress < 1.0:
            rate *= record.progress.overall_progress
        return rate

    def _on_complete(self, record: ExpeditionRecord) -> None:
        expedition = record.expedition
        end = expedition.actual_end_time or self.clock.now()
        actual_hours = (end - expedition.start_time).total_seconds() / 3600
        loot = self.rewards.generate_rewards(
            expedition, record.trainer, self.completion_success_rate(record), actual_hours
        )
        report = self.reports.build(
            expedition,
            record.trainer,
            record.progress,
            loot,
            record.stage_transitions,
            previous_rating=self.archive.latest_rating(record.trainer.id),
        )
        expedition.outcome = report.summary.outcome
        self._loot[expedition.id] = loot
        self.archive.store(report)
        logger.info(
            "Expedition %s finished: %s, rating %.1f",
            expedition.id,
            report.summary.outcome.value,
            report.summary.overall_rating,
        )
        self.notifications.emit(
            DataChange(CATEGORY_REWARDS, ACTION_CREATE, expedition.id, end, data=loot)
        )
        self.notifications.emit(
            DataChange(CATEGORY_REPORT, ACTION_CREATE, expedition.id, end, data=report)
        )
        self._track(
            "track_reward",
            expedition.id,
            loot.total_value,
            loot.money.total,
            len(loot.pokemon),
            len(loot.items),
        )
        self._track(
            "track_expedition",
            "expedition_completed",
            expedition.id,
            record.trainer.id,
            {"outcome": report.summary.outcome.value},
        )

    # ------------------------------------------------------------------
    # Queries

    def expedition(self, expedition_id: str) -> Expedition:
        with self._lock:
            return self.registry.expedition(expedition_id)

    def progress(self, expedition_id: str) -> Optional[ExpeditionProgress]:
        with self._lock:
            return self.engine.get(expedition_id)

    def all_progress(self) -> List[ExpeditionProgress]:
        with self._lock:
            return self.engine.all_progress()

    def pending_events(self, expedition_id: str) -> List[ExpeditionEvent]:
        with self._lock:
            return self.events.pending(expedition_id)

    def loot(self, expedition_id: str) -> Optional[ExpeditionLoot]:
        return self._loot.get(expedition_id)

    def report(self, expedition_id: str) -> Optional[ExpeditionReport]:
        return self.archive.get(expedition_id)

    def system_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_expeditions": len(self.registry),
                "finished_expeditions": len(self.registry.finished()),
                "events": self.events.statistics(),
                "interventions": self.interventions.statistics(),
                "reports": self.archive.statistics_summary(),
                "subscribers": self.notifications.subscriber_counts(),
            }

    def health_check(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Flag expeditions whose last tick is far behind the clock."""
        with self._lock:
            now = now or self.clock.now()
            limit = timedelta(seconds=self.settings.tick_interval_seconds * 10)
            stale = [record.id for record in self.registry if now - record.last_tick > limit]
            return {
                "status": "degraded" if stale else "ok",
                "active_expeditions": len(self.registry),
                "stale_expeditions": stale,
                "checked_at": now.isoformat(),
            }

    # ------------------------------------------------------------------
    def _track(self, method: str, *args: Any) -> None:
        try:
            getattr(self._telemetry, method)(*args)
        except Exception:
            logger.debug("Telemetry %s failed", method, exc_info=True)


__all__ = ["ExpeditionService"]
