"""Tests for telemetry and metrics tracking."""
import sqlite3
import time

import pytest

from expedition_sim.telemetry import (
    MetricEvent,
    MetricType,
    TelemetryCollector,
    track_duration,
)


def test_metric_event_creation():
    """Test MetricEvent dataclass creation."""
    event = MetricEvent(
        timestamp=time.time(),
        metric_type=MetricType.INTERVENTION,
        name="healing_potion",
        value=500.0,
        tags={"expedition_id": "exp-1"},
    )

    assert event.metric_type == MetricType.INTERVENTION
    assert event.tags["expedition_id"] == "exp-1"
    assert event.metadata == {}


def test_telemetry_collector_init(tmp_path):
    db_path = tmp_path / "telemetry.db"
    collector = TelemetryCollector(db_path)

    assert collector.db_path == db_path
    assert db_path.exists()
    assert len(collector._metrics_buffer) == 0


def test_default_path_comes_from_environment(tmp_path, monkeypatch):
    db_path = tmp_path / "env.db"
    monkeypatch.setenv("EXPEDITION_SIM_TELEMETRY_DB", str(db_path))

    collector = TelemetryCollector()

    assert collector.db_path == db_path


def test_track_expedition(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")

    collector.track_expedition("expedition_started", "exp-1", "trainer-1", {"mode": "safe"})

    event = collector._metrics_buffer[0]
    assert event.metric_type == MetricType.EXPEDITION_LIFECYCLE
    assert event.name == "expedition_started"
    assert event.tags == {"expedition_id": "exp-1", "trainer_id": "trainer-1"}
    assert event.metadata["mode"] == "safe"


def test_track_event_resolution_value_reflects_success(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")

    collector.track_event_resolution("exp-1", "exp-1-evt-1", "capture", True, False, 0.4)

    event = collector._metrics_buffer[0]
    assert event.value == 0.0
    assert event.tags["accepted"] == "True"
    assert event.metadata["success_rate"] == 0.4


def test_track_error_and_intervention(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")

    collector.track_intervention("exp-1", "emergency_recall", True, 1000, emergency=True)
    collector.track_error("tick_failed", operation="expedition_tick", error_details="boom")

    intervention, error = collector._metrics_buffer
    assert intervention.value == 1000.0
    assert intervention.tags["emergency"] == "True"
    assert error.metric_type == MetricType.ERROR_RATE
    assert error.metadata == {"error_details": "boom"}


def test_flush_persists_buffer(tmp_path):
    db_path = tmp_path / "test.db"
    collector = TelemetryCollector(db_path)
    collector.track_reward("exp-1", 1500, 300, 1, 2)

    collector.flush()

    assert collector._metrics_buffer == []
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute("SELECT metric_type, name, value FROM metrics").fetchall()
    assert rows == [("reward", "expedition_reward", 1500.0)]


def test_flush_threshold_triggers_auto_flush(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db", flush_threshold=3)

    for index in range(3):
        collector.track_system_event(f"event_{index}", source="test")

    assert collector._metrics_buffer == []


def test_metrics_summary_groups_by_type_and_name(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")
    collector.track_intervention("exp-1", "healing_potion", True, 500)
    collector.track_intervention("exp-2", "healing_potion", True, 700)

    summary = collector.get_metrics_summary()

    stats = summary["intervention"]["healing_potion"]
    assert stats["count"] == 2
    assert stats["average"] == pytest.approx(600.0)
    assert stats["total"] == pytest.approx(1200.0)


def test_track_duration_records_performance(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")

    with track_duration("expedition_tick", collector=collector):
        time.sleep(0.001)

    perf = collector.get_performance_summary()
    assert perf["expedition_tick"]["count"] == 1
    assert perf["expedition_tick"]["max_ms"] > 0


def test_track_duration_records_errors(tmp_path):
    collector = TelemetryCollector(tmp_path / "test.db")

    with pytest.raises(ValueError):
        with track_duration("expedition_tick", collector=collector):
            raise ValueError("bad tick")

    names = [event.name for event in collector._metrics_buffer]
    assert names == ["expedition_tick", "ValueError"]


def test_cleanup_old_data(tmp_path):
    db_path = tmp_path / "test.db"
    collector = TelemetryCollector(db_path)
    collector.track_system_event("old")
    collector._metrics_buffer[0].timestamp = time.time() - 40 * 86400
    collector.track_system_event("fresh")
    collector.flush()

    collector.cleanup_old_data(days_to_keep=30)

    with sqlite3.connect(db_path) as conn:
        names = [row[0] for row in conn.execute("SELECT name FROM metrics").fetchall()]
    assert names == ["fresh"]
