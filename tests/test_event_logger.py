import json
import os

import pytest

from tremorwatch.event_logger import EventLogger, EventType


NOW = 1_700_000_000.0


@pytest.fixture
def logger():
    return EventLogger()


def test_events_kept_in_memory(logger):
    logger.log_episode_started(NOW, confidence=0.91234)
    logger.log_episode_ended(NOW + 5, duration=5.0, sample_count=250, max_severity=3.6, tremor_type="resting")

    events = logger.get_recent_events()
    assert [e["event_type"] for e in events] == ["episode_started", "episode_ended"]
    assert [e["event_id"] for e in events] == [1, 2]
    assert events[0]["detection"]["confidence"] == 0.912
    assert events[1]["episode"]["tremor_type"] == "resting"
    assert logger.save_daily_metrics() is None


def test_recent_events_filtered(logger):
    for i in range(5):
        logger.log_event(EventType.CONFIG_UPDATED, NOW + i, profile=f"p{i}")
    logger.log_system_alert(NOW, "sensor", "warning", "Gyroscope stalled")

    updates = logger.get_recent_events(n=2, event_type=EventType.CONFIG_UPDATED)
    assert [e["data"]["profile"] for e in updates] == ["p3", "p4"]
    assert len(logger.get_recent_events(event_type=EventType.SYSTEM_ALERT)) == 1


def test_buffer_bounded():
    logger = EventLogger(buffer_size=3)
    for i in range(10):
        logger.log_event(EventType.BASELINE_SAVED, NOW + i)
    assert len(logger.event_buffer) == 3
    logger.clear_buffer()
    assert logger.get_recent_events() == []


def test_daily_metrics(logger):
    logger.log_episode_ended(NOW, 4.0, 200, max_severity=2.0, tremor_type="resting")
    logger.log_episode_ended(NOW, 6.0, 300, max_severity=4.0, tremor_type="resting")
    logger.log_calibration(NOW, success=True, baseline_magnitude=0.2, baseline_variance=0.0001)
    logger.log_calibration(NOW, success=False)
    logger.log_system_alert(NOW, "buffer", "warning", "Dropped records")

    metrics = logger.get_daily_metrics()
    assert metrics["episodes"]["count"] == 2
    assert metrics["episodes"]["total_duration"] == pytest.approx(10.0)
    assert metrics["episodes"]["max_severity"] == 4.0
    assert metrics["episodes"]["avg_severity"] == pytest.approx(3.0)
    assert metrics["episodes"]["types"] == {"resting": 2}
    assert metrics["calibrations"] == {"completed": 1, "failed": 1}
    assert metrics["system_alerts"]["types"] == {"buffer": 1}

    # Returned metrics are a copy
    metrics["episodes"]["count"] = 99
    assert logger.get_daily_metrics()["episodes"]["count"] == 2


def test_events_written_to_disk(tmp_path):
    logger = EventLogger(log_directory=str(tmp_path / "events"))
    logger.log_calibration(NOW, success=True, baseline_magnitude=0.2)
    logger.log_episode_started(NOW, confidence=0.8)

    files = sorted(os.listdir(tmp_path / "events"))
    assert len(files) == 2
    assert any(f.endswith("_calibration_completed.json") for f in files)

    path = logger.save_daily_metrics()
    saved = json.loads(open(path).read())
    assert saved["calibrations"]["completed"] == 1
    assert "severities" not in saved["episodes"]
