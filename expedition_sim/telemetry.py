"""Telemetry for expedition simulation activity.

Metric events are buffered in memory and written to a SQLite file in
batches. Summaries flush first so readers always see the full picture.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TELEMETRY_DB_ENV = "EXPEDITION_SIM_TELEMETRY_DB"
DEFAULT_DB_NAME = "expedition_telemetry.db"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp REAL NOT NULL,
        metric_type TEXT NOT NULL,
        name TEXT NOT NULL,
        value REAL NOT NULL,
        tags TEXT,
        metadata TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_metrics_type_name ON metrics(metric_type, name)",
    "CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON metrics(timestamp)",
)


class MetricType(Enum):
    EXPEDITION_LIFECYCLE = "expedition_lifecycle"
    EVENT_RESOLUTION = "event_resolution"
    INTERVENTION = "intervention"
    REWARD = "reward"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    SYSTEM_EVENT = "system_event"


@dataclass
class MetricEvent:
    """One buffered measurement."""

    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_row(self) -> tuple:
        return (
            self.timestamp,
            self.metric_type.value,
            self.name,
            self.value,
            json.dumps(self.tags),
            json.dumps(self.metadata),
        )


def _tags(**values: Any) -> Dict[str, str]:
    """Stringify tag values, skipping the ones that were not supplied."""
    return {key: str(value) for key, value in values.items() if value is not None}


def _cutoff(hours: float) -> float:
    return time.time() - hours * 3600


class TelemetryCollector:
    """Buffers metric events and persists them to SQLite."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        flush_threshold: int = 100,
        flush_interval: float = 60.0,
    ):
        if db_path is None:
            db_path = Path(os.getenv(TELEMETRY_DB_ENV, DEFAULT_DB_NAME))
        self.db_path = Path(db_path)
        self._metrics_buffer: List[MetricEvent] = []
        self._flush_threshold = flush_threshold
        self._flush_interval = flush_interval
        self._last_flush = time.time()
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    # Domain helpers -----------------------------------------------------

    def track_expedition(
        self,
        event_name: str,
        expedition_id: str,
        trainer_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Lifecycle markers: started, completed, recalled, cancelled."""
        self.record(
            MetricType.EXPEDITION_LIFECYCLE,
            event_name,
            1.0,
            tags=_tags(expedition_id=expedition_id, trainer_id=trainer_id or None),
            metadata=details,
        )

    def track_event_resolution(
        self,
        expedition_id: str,
        event_id: str,
        choice_id: str,
        accepted: bool,
        success: bool,
        success_rate: float = 0.0,
    ):
        self.record(
            MetricType.EVENT_RESOLUTION,
            choice_id,
            1.0 if success else 0.0,
            tags=_tags(
                expedition_id=expedition_id,
                event_id=event_id,
                accepted=accepted,
                success=success,
            ),
            metadata={"success_rate": success_rate},
        )

    def track_intervention(
        self,
        expedition_id: str,
        action_id: str,
        success: bool,
        cost: int = 0,
        emergency: bool = False,
    ):
        # Value is the money spent so summaries total player spend per action.
        self.record(
            MetricType.INTERVENTION,
            action_id,
            float(cost),
            tags=_tags(expedition_id=expedition_id, success=success, emergency=emergency),
        )

    def track_reward(self, expedition_id: str, total_value: int, money: int, pokemon: int, items: int):
        self.record(
            MetricType.REWARD,
            "expedition_reward",
            float(total_value),
            tags=_tags(expedition_id=expedition_id),
            metadata={"money": money, "pokemon": pokemon, "items": items},
        )

    def track_performance(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.record(MetricType.PERFORMANCE, operation, duration_ms, tags=tags)

    def track_error(
        self,
        error_type: str,
        operation: Optional[str] = None,
        error_details: Optional[str] = None,
    ):
        self.record(
            MetricType.ERROR_RATE,
            error_type,
            1.0,
            tags=_tags(operation=operation),
            metadata={"error_details": error_details} if error_details else None,
        )

    def track_system_event(self, event: str, *, source: Optional[str] = None, reason: Optional[str] = None):
        self.record(
            MetricType.SYSTEM_EVENT,
            event,
            1.0,
            tags=_tags(source=source),
            metadata={"reason": reason} if reason else None,
        )

    # Storage ------------------------------------------------------------

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        now = time.time()
        self._metrics_buffer.append(
            MetricEvent(now, metric_type, name, value, dict(tags or {}), dict(metadata or {}))
        )
        due = now - self._last_flush > self._flush_interval
        if due or len(self._metrics_buffer) >= self._flush_threshold:
            self.flush()

    def flush(self):
        """Write buffered metrics; on failure the buffer is kept for the next attempt."""
        if not self._metrics_buffer:
            return
        pending = list(self._metrics_buffer)
        try:
            with self._connect() as conn:
                conn.executemany(
                    "INSERT INTO metrics (timestamp, metric_type, name, value, tags, metadata) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    [event.as_row() for event in pending],
                )
        except sqlite3.Error as exc:
            logger.error("Failed to flush %d metrics to %s: %s", len(pending), self.db_path, exc)
            return
        del self._metrics_buffer[: len(pending)]
        self._last_flush = time.time()
        logger.debug("Flushed %d metrics", len(pending))

    # Queries ------------------------------------------------------------

    def get_metrics_summary(self, hours: int = 24) -> Dict[str, Dict[str, Any]]:
        """Count, average and total per metric type and name."""
        self.flush()
        summary: Dict[str, Dict[str, Any]] = {}
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT metric_type, name, COUNT(*), AVG(value), SUM(value) FROM metrics "
                "WHERE timestamp >= ? GROUP BY metric_type, name",
                (_cutoff(hours),),
            ).fetchall()
        for metric_type, name, count, avg, total in rows:
            summary.setdefault(metric_type, {})[name] = {"count": count, "average": avg, "total": total}
        return summary

    def get_performance_summary(self, hours: int = 24) -> Dict[str, Dict[str, float]]:
        self.flush()
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT name, COUNT(*), AVG(value), MIN(value), MAX(value) FROM metrics "
                "WHERE metric_type = ? AND timestamp >= ? GROUP BY name",
                (MetricType.PERFORMANCE.value, _cutoff(hours)),
            ).fetchall()
        return {
            name: {"count": count, "avg_ms": avg, "min_ms": low, "max_ms": high}
            for name, count, avg, low, high in rows
        }

    def cleanup_old_data(self, days_to_keep: int = 30) -> int:
        with self._connect() as conn:
            deleted = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?", (_cutoff(days_to_keep * 24),)
            ).rowcount
        logger.info("Removed %d telemetry rows older than %d days", deleted, days_to_keep)
        return deleted


_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Default collector for callers that were not handed one."""
    global _telemetry
    if _telemetry is None:
        _telemetry = TelemetryCollector()
    return _telemetry


class track_duration:
    """Time a block and record it as a performance metric.

    An exception escaping the block is also counted as an error, then re-raised.
    """

    def __init__(
        self,
        operation: str,
        tags: Optional[Dict[str, str]] = None,
        collector: Optional[TelemetryCollector] = None,
    ):
        self.operation = operation
        self.tags = tags or {}
        self.collector = collector
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed_ms = (time.perf_counter() - self._started) * 1000
        telemetry = self.collector or get_telemetry()
        telemetry.track_performance(self.operation, elapsed_ms, self.tags)
        if exc_type is not None:
            telemetry.track_error(exc_type.__name__, operation=self.operation, error_details=str(exc_val))
        return False


__all__ = [
    "MetricEvent",
    "MetricType",
    "TELEMETRY_DB_ENV",
    "TelemetryCollector",
    "get_telemetry",
    "track_duration",
]
