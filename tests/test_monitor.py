import math

import pytest

from conftest import accel_sample, gyro_sample
from tremorwatch import PRESETS, DetectionConfig, TremorMonitoringEngine, create_mock_engine
from tremorwatch.config import ConfigHolder
from tremorwatch.data.models import SensorReading
from tremorwatch.detection.baseline import PERSIST_EVERY_N_UPDATES, BaselineTracker
from tremorwatch.event_logger import EventLogger, EventType
from tremorwatch.monitor import classify_movement


START_MS = 1_700_000_000_000


def make_engine(config=None, **kwargs):
    return TremorMonitoringEngine(config_holder=ConfigHolder(config), **kwargs)


# ---------------------------------------------------------------------
# FALLBACK CLASSIFICATION
# ---------------------------------------------------------------------

@pytest.mark.parametrize("magnitude,variance,expected", [
    (0.01, 0.0, (False, 0.0)),
    (2.5, 0.0, (False, 0.0)),
    (0.5, 0.0, (True, 1.0)),
    (0.1, 0.0, (True, 0.8)),
    (1.8, 0.0, (False, 0.3)),
    (0.5, 5.0, (True, 0.7)),
    (0.1, 5.0, (False, 0.5)),
])
def test_classify_movement(magnitude, variance, expected):
    is_tremor, confidence = classify_movement(magnitude, variance)
    assert is_tremor is expected[0]
    assert confidence == pytest.approx(expected[1])


# ---------------------------------------------------------------------
# END-TO-END
# ---------------------------------------------------------------------

def test_resting_tremor_end_to_end():
    engine, source = create_mock_engine(start_wall_clock_ms=START_MS)
    records = []
    engine.on_record = records.append

    processed = engine.run_until(source, max_samples=250)

    assert processed == 250
    assert len(records) == 250

    last = records[-1]
    assert last.is_tremor
    assert last.in_episode
    assert last.tremor_type == "resting"
    assert 1.5 <= last.severity <= 5.0
    assert last.severity_level in ("mild", "moderate")
    assert abs(last.dominant_frequency - 4.8) <= 50.0 / 64
    assert 0.0 <= last.confidence <= 1.0
    assert last.wall_clock_ms == START_MS + 249 * 20

    assert engine.smoother.episode_count == 1
    assert engine.smoother.episode_duration_seconds(last.timestamp_ns) == pytest.approx(4.94)


def test_alternating_detections_never_start_episode():
    config = DetectionConfig(max_gap_samples=0, min_episode_duration_samples=3)
    engine = make_engine(config)
    records = []
    engine.on_record = records.append

    for i in range(300):
        engine.process_reading(SensorReading(
            timestamp_ns=gyro_sample(i, 0).timestamp_ns,
            gyro=gyro_sample(i, 0.5 if i % 2 == 0 else 0.001),
            accel=accel_sample(i, 0.05),
        ))

    assert len(records) == 300
    assert not any(r.in_episode for r in records)
    assert not any(r.is_tremor for r in records)
    assert engine.smoother.episode_count == 0


def test_episode_callbacks_and_events():
    logger = EventLogger()
    engine = make_engine(event_logger=logger)
    started, ended = [], []
    engine.on_episode_started = started.append
    engine.on_episode_ended = lambda record, duration: ended.append((record, duration))

    for i in range(10):
        engine.process_gyroscope(gyro_sample(i, 0.5))
    for i in range(10, 20):
        engine.process_gyroscope(gyro_sample(i, 0.0))

    assert len(started) == 1
    assert started[0].timestamp_ns == gyro_sample(2, 0).timestamp_ns
    assert len(ended) == 1
    assert ended[0][1] == pytest.approx(0.2)

    assert len(logger.get_recent_events(event_type=EventType.EPISODE_STARTED)) == 1
    end_event = logger.get_recent_events(event_type=EventType.EPISODE_ENDED)[0]
    assert end_event["episode"]["sample_count"] == 10
    assert logger.get_daily_metrics()["episodes"]["count"] == 1


# ---------------------------------------------------------------------
# SAMPLE HANDLING
# ---------------------------------------------------------------------

def test_non_finite_samples_dropped():
    engine = make_engine()
    assert engine.process_gyroscope(gyro_sample(0, math.nan)) is None
    engine.process_accelerometer(accel_sample(0, math.inf))

    assert engine.get_status()["samples_processed"] == 0
    assert len(engine.accel_window) == 0


def test_backward_timestamp_rejected():
    logger = EventLogger()
    engine = make_engine(event_logger=logger)
    assert engine.process_gyroscope(gyro_sample(50, 0.5)) is not None
    assert engine.process_gyroscope(gyro_sample(25, 0.5)) is None
    # Tracking resumes from the new timestamp
    assert engine.process_gyroscope(gyro_sample(26, 0.5)) is not None
    assert engine.get_status()["samples_processed"] == 2
    assert logger.get_daily_metrics()["system_alerts"]["types"] == {"timestamp_regression": 1}


def test_record_interval_throttles_emission():
    engine = make_engine(record_interval_ns=1_000_000_000)
    emitted = [engine.process_gyroscope(gyro_sample(i, 0.5)) for i in range(100)]
    kept = [r for r in emitted if r is not None]

    assert len(kept) == 2
    assert kept[1].timestamp_ns - kept[0].timestamp_ns == 1_000_000_000
    assert engine.get_status()["samples_processed"] == 100


def test_accelerometer_applied_before_gyroscope():
    engine = make_engine()
    record = engine.process_reading(SensorReading(
        timestamp_ns=0, gyro=gyro_sample(0, 0.5), accel=accel_sample(0, 0.3),
    ))
    assert record.accel_magnitude == pytest.approx(0.3)
    assert engine.process_reading(SensorReading(timestamp_ns=0, accel=accel_sample(1, 0.1))) is None


# ---------------------------------------------------------------------
# BATCHING
# ---------------------------------------------------------------------

def test_batches_handed_off():
    engine = make_engine(batch_size=10)
    batches = []
    engine.on_batch_ready = batches.append

    for i in range(25):
        engine.process_gyroscope(gyro_sample(i, 0.5))

    assert [len(b) for b in batches] == [10, 10]
    assert batches[0].batch_id.startswith("batch_")
    assert batches[1].records[0].timestamp_ns == gyro_sample(10, 0).timestamp_ns
    assert len(engine.drain()) == 5
    assert engine.drain() == []


def test_buffer_overflow_drops_oldest():
    logger = EventLogger()
    engine = make_engine(batch_size=10, event_logger=logger)
    for i in range(25):
        engine.process_gyroscope(gyro_sample(i, 0.5))

    status = engine.get_status()
    assert status["records_dropped"] == 11
    pending = engine.drain()
    assert len(pending) == 14
    assert pending[-1].timestamp_ns == gyro_sample(24, 0).timestamp_ns

    alert = logger.get_recent_events(event_type=EventType.SYSTEM_ALERT)[0]
    assert alert["alert"]["type"] == "buffer_overflow"
    assert alert["additional_data"]["dropped"] == 11


def test_invalid_engine_arguments():
    with pytest.raises(ValueError):
        make_engine(batch_size=0)
    with pytest.raises(ValueError):
        make_engine(fft_processing_interval=0)


# ---------------------------------------------------------------------
# CONFIG, CALIBRATION AND STATUS
# ---------------------------------------------------------------------

def test_set_config_applies_and_logs():
    logger = EventLogger()
    engine = make_engine(event_logger=logger)

    engine.set_config(PRESETS["Strict"])

    assert engine.config.profile_name == "Strict"
    assert engine.smoother.config_holder.get() is PRESETS["Strict"]
    event = logger.get_recent_events(event_type=EventType.CONFIG_UPDATED)[0]
    assert event["data"]["profile"] == "Strict"


def test_calibration_fed_from_gyroscope(clock, wall_clock):
    logger = EventLogger()
    tracker = BaselineTracker(clock=clock, wall_clock=wall_clock)
    engine = make_engine(baseline_tracker=tracker, event_logger=logger)

    assert engine.start_calibration()
    assert engine.get_status()["calibrating"]

    for i in range(31):
        clock.now = float(i)
        engine.process_gyroscope(gyro_sample(i, 0.2))

    status = engine.get_status()
    assert not status["calibrating"]
    assert status["calibrated"]
    assert tracker.get_baseline_stats(True).magnitude == pytest.approx(0.2)

    types = [e["event_type"] for e in logger.get_recent_events()]
    assert EventType.CALIBRATION_STARTED.value in types
    assert EventType.CALIBRATION_COMPLETED.value in types


def test_baseline_saves_logged():
    logger = EventLogger()
    engine = make_engine(event_logger=logger)
    for i in range(PERSIST_EVERY_N_UPDATES):
        engine.process_gyroscope(gyro_sample(i, 0.0))

    saved = logger.get_recent_events(event_type=EventType.BASELINE_SAVED)
    assert len(saved) == 1
    assert saved[0]["data"]["resting_samples"] == PERSIST_EVERY_N_UPDATES
    assert saved[0]["data"]["calibrated"] is False


def test_cancel_calibration_logged():
    logger = EventLogger()
    engine = make_engine(event_logger=logger)
    engine.start_calibration()
    engine.cancel_calibration()

    assert not engine.baseline_tracker.is_calibrating()
    assert logger.get_daily_metrics()["calibrations"]["failed"] == 1


def test_reset_clears_episode_and_windows():
    engine = make_engine()
    for i in range(10):
        engine.process_gyroscope(gyro_sample(i, 0.5))
    assert engine.smoother.in_episode

    engine.reset()

    assert not engine.smoother.in_episode
    assert len(engine.gyro_window) == 0
    assert engine.last_gyro_result is None


def test_status_report():
    engine, source = create_mock_engine(start_wall_clock_ms=START_MS)
    engine.run_until(source, max_samples=100)
    status = engine.get_status()

    assert status["config_profile"] == "Default"
    assert status["samples_processed"] == 100
    assert status["records_emitted"] == 100
    assert status["records_pending"] == 100
    assert status["in_episode"]
    assert status["dominant_frequency"] > 0
    assert status["baseline_ready"] == {"resting": False, "active": False}
