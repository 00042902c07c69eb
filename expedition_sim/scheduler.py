"""Background scheduling of expedition ticks and effect sweeps."""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .service import ExpeditionService

logger = logging.getLogger(__name__)


class ExpeditionScheduler:
    """Drives an :class:`ExpeditionService` from APScheduler interval jobs.

    Scheduler events are reported to the service's own telemetry collector.
    """

    def __init__(
        self,
        service: ExpeditionService,
        tick_seconds: Optional[float] = None,
        sweep_seconds: Optional[float] = None,
    ) -> None:
        self.service = service
        self.tick_seconds = tick_seconds or service.settings.tick_interval_seconds
        self.sweep_seconds = sweep_seconds or service.settings.sweep_interval_seconds
        self.scheduler: Optional[BackgroundScheduler] = None

    def start(self) -> None:
        if self.scheduler is not None:
            return
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self._tick,
            "interval",
            seconds=self.tick_seconds,
            id="expedition_tick",
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self._sweep,
            "interval",
            seconds=self.sweep_seconds,
            id="intervention_sweep",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self.scheduler = scheduler
        logger.info(
            "Expedition scheduler started (tick %ss, sweep %ss)", self.tick_seconds, self.sweep_seconds
        )
        self.service.telemetry.track_system_event("scheduler_started", source="expedition_scheduler")

    def shutdown(self, wait: bool = False) -> None:
        if self.scheduler is None:
            return
        self.scheduler.shutdown(wait=wait)
        self.scheduler = None
        self.service.shutdown()
        logger.info("Expedition scheduler stopped")

    def _tick(self) -> None:
        try:
            self.service.tick()
        except Exception:
            logger.exception("Expedition tick failed")
            self.service.telemetry.track_error("tick_failed", operation="expedition_tick")

    def _sweep(self) -> None:
        removed = self.service.sweep_effects()
        if removed:
            logger.debug("Sweep removed %d expired effects", removed)


__all__ = ["BackgroundScheduler", "ExpeditionScheduler"]
