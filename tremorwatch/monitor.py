"""
Main tremor monitoring orchestrator.

Coordinates all pipeline stages for every accepted gyroscope sample:
- Analysis windows for both sensor streams
- Spectral analysis (every few samples, once a window is full)
- Dual-sensor fusion and post-filtering
- Episode smoothing
- Baseline evaluation, baseline update and calibration
- Severity scoring and tremor-type classification
- Record batching and event logging

Processing is synchronous: one call per sensor sample, no internal threads.
"""

import logging
import math
import time
from collections import deque
from typing import Callable, List, Optional, Tuple

from .config import ConfigHolder, DetectionConfig
from .data.models import MotionSample, SensorReading, SpectralResult, TremorRecord
from .data.records import RecordBatch, create_batch_id
from .data.source import AnalysisWindow, DataSource, MockDataSource
from .data.storage import BaselineSnapshot
from .detection.baseline import BaselineTracker, CalibrationListener
from .detection.classifier import classify
from .detection.severity import calculate_severity, classify_severity
from .detection.spectral import SpectralAnalyzer
from .event_logger import EventLogger, EventType
from .state_machines import EPISODE_ENDED, EPISODE_STARTED, CalibrationProgress, EpisodeStateMachine


LOGGER = logging.getLogger(__name__)

# Threshold-based fallback classification (rad/s)
LOW_TREMOR_THRESHOLD = 0.02
HIGH_ACTIVITY_THRESHOLD = 2.0
TYPICAL_TREMOR_MAX = 1.5
TYPICAL_TREMOR_RANGE = (0.3, 1.2)
ACCEL_VARIANCE_WINDOW = 20
ACCEL_VARIANCE_MIN_SAMPLES = 10
ACCEL_STABLE_VARIANCE = 2.0

# Dual-sensor fusion
GYRO_FUSION_WEIGHT = 0.6
ACCEL_FUSION_WEIGHT = 0.4
SENSOR_DISAGREEMENT_PENALTY = 0.7

# Post-filter confidence penalties
BELOW_FLOOR_PENALTY = 0.1
LOW_BAND_RATIO_PENALTY = 0.2
LOW_FREQUENCY_PENALTY = 0.2
HIGH_ENERGY_PENALTY = 0.1
MAX_ESTIMATED_SEVERITY = 5.0


def classify_movement(gyro_magnitude: float, accel_variance: float) -> Tuple[bool, float]:
    """
    Threshold-based tremor guess used until spectral results are available.

    Args:
        gyro_magnitude: Gyroscope magnitude (rad/s)
        accel_variance: Variance of recent accelerometer magnitudes

    Returns:
        (is_tremor, confidence)
    """
    if gyro_magnitude < LOW_TREMOR_THRESHOLD or gyro_magnitude > HIGH_ACTIVITY_THRESHOLD:
        return False, 0.0

    confidence = 0.0
    if gyro_magnitude <= TYPICAL_TREMOR_MAX:
        confidence += 0.5
    # Stable position suggests tremor, not intentional movement
    if accel_variance < ACCEL_STABLE_VARIANCE:
        confidence += 0.3
    if TYPICAL_TREMOR_RANGE[0] <= gyro_magnitude <= TYPICAL_TREMOR_RANGE[1]:
        confidence += 0.2

    return confidence > 0.5, confidence


class TremorMonitoringEngine:
    """
    Main tremor monitoring engine.

    Orchestrates all detection components in a per-sample processing loop.
    """

    def __init__(
        self,
        config_holder: Optional[ConfigHolder] = None,
        baseline_tracker: Optional[BaselineTracker] = None,
        sample_rate_hz: float = 50.0,
        fft_window_size: int = 64,
        fft_processing_interval: int = 5,
        record_interval_ns: int = 0,
        batch_size: int = 600,
        event_logger: Optional[EventLogger] = None,
    ):
        """
        Initialize monitoring engine.

        Args:
            config_holder: Shared holder of the active DetectionConfig
            baseline_tracker: Personal baseline owner (fresh in-memory tracker if None)
            sample_rate_hz: Gyroscope sampling rate in Hz
            fft_window_size: Samples per analysis window (power of two)
            fft_processing_interval: Run spectral analysis every N gyroscope samples
            record_interval_ns: Minimum spacing of emitted records (0 = every sample)
            batch_size: Records per batch handed to on_batch_ready
            event_logger: Structured event log (None to disable)
        """
        if batch_size <= 0:
            raise ValueError("Batch size must be positive")
        if fft_processing_interval <= 0:
            raise ValueError("FFT processing interval must be positive")

        self.config_holder = config_holder if config_holder is not None else ConfigHolder()
        self.baseline_tracker = baseline_tracker if baseline_tracker is not None else BaselineTracker()
        self.sample_rate_hz = sample_rate_hz
        self.fft_window_size = fft_window_size
        self.fft_processing_interval = fft_processing_interval
        self.record_interval_ns = record_interval_ns
        self.batch_size = batch_size
        self.max_buffer_size = batch_size * 2
        self.event_logger = event_logger
        if event_logger:
            self.baseline_tracker.on_baseline_saved = self._log_baseline_saved

        # Detection layer
        self.analyzer = SpectralAnalyzer(sample_rate_hz, self.config_holder)
        self.smoother = EpisodeStateMachine(self.config_holder)

        # Sensor windows
        self.gyro_window = AnalysisWindow(fft_window_size)
        self.accel_window = AnalysisWindow(fft_window_size)
        self._accel_recent = deque(maxlen=ACCEL_VARIANCE_WINDOW)
        self._last_accel_magnitude = 0.0

        self.last_gyro_result: Optional[SpectralResult] = None
        self.last_accel_result: Optional[SpectralResult] = None

        # Callbacks for external integration
        self.on_record: Optional[Callable[[TremorRecord], None]] = None
        self.on_batch_ready: Optional[Callable[[RecordBatch], None]] = None
        self.on_episode_started: Optional[Callable[[TremorRecord], None]] = None
        self.on_episode_ended: Optional[Callable[[TremorRecord, float], None]] = None

        # State tracking
        self._buffer: List[TremorRecord] = []
        self._fft_counter = 0
        self._last_saved_ns: Optional[int] = None
        self._sample_count = 0
        self._record_count = 0
        self._dropped_count = 0
        self._episode_max_severity = 0.0
        self._episode_types = {}
        self._start_time: Optional[float] = None

    # ------------------------------------------------------------------
    # Configuration and control
    # ------------------------------------------------------------------

    @property
    def config(self) -> DetectionConfig:
        return self.config_holder.get()

    def set_config(self, config: DetectionConfig) -> None:
        """Swap the active config; takes effect on the next sample."""
        self.config_holder.set(config)
        if self.event_logger:
            self.event_logger.log_event(EventType.CONFIG_UPDATED, time.time(), profile=config.profile_name)

    def reset(self) -> None:
        """Clear windows, spectral results and episode state."""
        self.gyro_window.clear()
        self.accel_window.clear()
        self._accel_recent.clear()
        self._last_accel_magnitude = 0.0
        self.last_gyro_result = None
        self.last_accel_result = None
        self.smoother.reset()
        self._fft_counter = 0
        self._last_saved_ns = None
        self._episode_max_severity = 0.0
        self._episode_types = {}
        LOGGER.info("Monitoring engine reset")

    def start_calibration(self, listener: Optional[CalibrationListener] = None) -> bool:
        """Begin a resting calibration fed from the gyroscope stream."""
        started = self.baseline_tracker.start_calibration(listener)
        if started and self.event_logger:
            self.event_logger.log_event(EventType.CALIBRATION_STARTED, time.time())
        return started

    def cancel_calibration(self) -> None:
        progress = self.baseline_tracker.cancel_calibration()
        if progress is not None and self.event_logger:
            self.event_logger.log_calibration(time.time(), success=False, reason="cancelled")

    def _log_baseline_saved(self, snapshot: BaselineSnapshot) -> None:
        self.event_logger.log_event(
            EventType.BASELINE_SAVED, time.time(),
            resting_samples=snapshot.resting_sample_count,
            active_samples=snapshot.active_sample_count,
            calibrated=snapshot.calibration_complete,
        )

    # ------------------------------------------------------------------
    # Sample processing
    # ------------------------------------------------------------------

    def process_reading(self, reading: SensorReading) -> Optional[TremorRecord]:
        """Process a synchronized reading; the accelerometer is applied first."""
        if reading.accel is not None:
            self.process_accelerometer(reading.accel)
        if reading.gyro is not None:
            return self.process_gyroscope(reading.gyro)
        return None

    def process_accelerometer(self, sample: MotionSample) -> None:
        magnitude = sample.magnitude
        if not math.isfinite(magnitude):
            LOGGER.debug("Dropping non-finite accelerometer sample")
            return

        self._last_accel_magnitude = magnitude
        self._accel_recent.append(magnitude)
        self.accel_window.add(magnitude)

    def process_gyroscope(self, sample: MotionSample) -> Optional[TremorRecord]:
        """
        Process one gyroscope sample.

        Returns:
            The emitted TremorRecord, or None when the sample was rejected
            or throttled by record_interval_ns
        """
        magnitude = sample.magnitude
        if not math.isfinite(magnitude):
            LOGGER.debug("Dropping non-finite gyroscope sample")
            return None

        timestamp_ns = sample.timestamp_ns
        if self._last_saved_ns is not None and timestamp_ns < self._last_saved_ns:
            LOGGER.warning(
                "Sensor timestamp went backward (%.1f ms); resetting timestamp tracking",
                (timestamp_ns - self._last_saved_ns) / 1e6,
            )
            self._last_saved_ns = timestamp_ns
            if self.event_logger:
                self.event_logger.log_system_alert(
                    time.time(), "timestamp_regression", "warning",
                    "Gyroscope timestamp moved backward", timestamp_ns=timestamp_ns,
                )
            return None

        self._sample_count += 1
        if self._start_time is None:
            self._start_time = time.time()

        config = self.config_holder.get()

        if self.baseline_tracker.is_calibrating():
            self._feed_calibration(magnitude)

        self.gyro_window.add(magnitude)
        self._fft_counter += 1
        if self.gyro_window.is_full and self._fft_counter >= self.fft_processing_interval:
            self._run_analysis(config)
            self._fft_counter = 0

        # Throttle record emission
        if self._last_saved_ns is not None and timestamp_ns - self._last_saved_ns < self.record_interval_ns:
            return None
        self._last_saved_ns = timestamp_ns

        record = self._build_record(sample, magnitude, config)
        self._emit(record)
        return record

    def _run_analysis(self, config: DetectionConfig) -> None:
        # Activity state from the previous result; resting until one exists
        if self.last_gyro_result is not None:
            is_resting = self.last_gyro_result.total_power < config.resting_power_threshold
        else:
            is_resting = True

        adaptive = None
        if self.baseline_tracker.has_completed_calibration():
            adaptive = self.baseline_tracker.get_adaptive_thresholds(is_resting, config)

        self.last_gyro_result = self.analyzer.analyze(self.gyro_window.values(), is_resting, adaptive)
        if self.accel_window.is_full:
            self.last_accel_result = self.analyzer.analyze(self.accel_window.values(), is_resting, adaptive)

    def _accel_variance(self) -> float:
        if len(self._accel_recent) < ACCEL_VARIANCE_MIN_SAMPLES:
            return 0.0
        mean = sum(self._accel_recent) / len(self._accel_recent)
        return sum((a - mean) ** 2 for a in self._accel_recent) / len(self._accel_recent)

    def _fuse(self, magnitude: float) -> Tuple[bool, float]:
        gyro = self.last_gyro_result
        accel = self.last_accel_result

        if gyro is not None and gyro.is_tremor:
            if accel is not None and accel.is_tremor:
                confidence = gyro.confidence * GYRO_FUSION_WEIGHT + accel.confidence * ACCEL_FUSION_WEIGHT
            elif accel is not None:
                confidence = gyro.confidence * SENSOR_DISAGREEMENT_PENALTY
            else:
                confidence = gyro.confidence
            return True, min(max(confidence, 0.0), 1.0)

        return classify_movement(magnitude, self._accel_variance())

    def _post_filter(self, is_tremor: bool, confidence: float, magnitude: float,
                     config: DetectionConfig) -> Tuple[bool, float]:
        gyro = self.last_gyro_result
        total_power = gyro.total_power if gyro else 0.0
        is_resting = total_power < config.resting_power_threshold
        estimated_severity = min(magnitude, MAX_ESTIMATED_SEVERITY)

        severity_floor = config.severity_floor
        if self.baseline_tracker.has_completed_calibration():
            thresholds = self.baseline_tracker.get_adaptive_thresholds(is_resting, config)
            if thresholds.is_personalized:
                severity_floor = thresholds.severity_floor

        # Clinically insignificant
        if estimated_severity < severity_floor:
            is_tremor = False
            confidence *= BELOW_FLOOR_PENALTY

        if is_tremor and gyro is not None:
            band_ratio = gyro.band_ratio
            min_band_ratio = config.resting_min_band_ratio if is_resting else config.active_min_band_ratio

            if band_ratio < min_band_ratio:
                is_tremor = False
                confidence *= LOW_BAND_RATIO_PENALTY

            if 0 < gyro.dominant_frequency_hz < config.min_frequency_hz:
                is_tremor = False
                confidence *= LOW_FREQUENCY_PENALTY

            if (estimated_severity > config.high_energy_severity_threshold
                    and band_ratio < config.high_energy_band_ratio_threshold):
                is_tremor = False
                confidence *= HIGH_ENERGY_PENALTY

        return is_tremor, confidence

    def _build_record(self, sample: MotionSample, magnitude: float, config: DetectionConfig) -> TremorRecord:
        gyro = self.last_gyro_result or SpectralResult.neutral()
        total_power = gyro.total_power
        band_ratio = gyro.band_ratio
        dominant_frequency = gyro.dominant_frequency_hz
        is_resting = total_power < config.resting_power_threshold

        raw_is_tremor, raw_confidence = self._fuse(magnitude)
        raw_is_tremor, raw_confidence = self._post_filter(raw_is_tremor, raw_confidence, magnitude, config)

        episode_start_ns = self.smoother.episode_start_time_ns
        smoothed = self.smoother.update(raw_is_tremor, raw_confidence, sample.timestamp_ns)
        is_tremor = smoothed.is_tremor
        confidence = smoothed.confidence

        evaluation = self.baseline_tracker.evaluate_relative_to_baseline(magnitude, band_ratio, is_resting)
        if is_tremor and evaluation.confidence_boost > 0:
            confidence = min(max(confidence + evaluation.confidence_boost, 0.0), 1.0)

        self.baseline_tracker.update_baseline(magnitude, band_ratio, total_power, is_resting, is_tremor)

        severity = 0.0
        if is_tremor:
            severity = calculate_severity(
                magnitude=self.gyro_window.rms_amplitude(),
                dominant_frequency=dominant_frequency,
                band_ratio=band_ratio,
                confidence=confidence,
                episode_duration=self.smoother.episode_duration_seconds(sample.timestamp_ns),
                baseline_multiplier=evaluation.baseline_multiplier,
            )

        classification = None
        if is_tremor and dominant_frequency > 0:
            classification = classify(
                dominant_frequency=dominant_frequency,
                total_power=total_power,
                band_ratio=band_ratio,
                confidence=confidence,
                secondary_magnitude=self._last_accel_magnitude,
            )

        record = TremorRecord(
            timestamp_ns=sample.timestamp_ns,
            wall_clock_ms=sample.wall_clock_ms or int(time.time() * 1000),
            x=sample.x,
            y=sample.y,
            z=sample.z,
            magnitude=magnitude,
            accel_magnitude=self._last_accel_magnitude,
            is_tremor=is_tremor,
            confidence=confidence,
            in_episode=self.smoother.in_episode,
            dominant_frequency=dominant_frequency,
            tremor_band_power=gyro.tremor_band_power,
            total_power=total_power,
            band_ratio=band_ratio,
            peak_prominence=gyro.peak_prominence,
            severity=severity,
            severity_level=classify_severity(severity).value,
            baseline_multiplier=evaluation.baseline_multiplier,
            tremor_type=classification.primary_type.value if classification else "none",
            tremor_type_confidence=classification.confidence if classification else 0.0,
            secondary_type=(
                classification.secondary_type.value
                if classification and classification.secondary_type else None
            ),
            is_resting_state=classification.is_resting if classification else is_resting,
        )

        self._track_episode(record, smoothed.transition, episode_start_ns)
        return record

    def _track_episode(self, record: TremorRecord, transition: Optional[str], episode_start_ns: int) -> None:
        if transition == EPISODE_STARTED:
            self._episode_max_severity = 0.0
            self._episode_types = {}
            if self.event_logger:
                self.event_logger.log_episode_started(record.wall_clock_ms / 1000, record.confidence)
            if self.on_episode_started:
                self.on_episode_started(record)

        if record.in_episode:
            self._episode_max_severity = max(self._episode_max_severity, record.severity)
            if record.tremor_type != "none":
                self._episode_types[record.tremor_type] = self._episode_types.get(record.tremor_type, 0) + 1

        if transition == EPISODE_ENDED:
            duration = max(record.timestamp_ns - episode_start_ns, 0) / 1e9
            dominant_type = (
                max(self._episode_types, key=self._episode_types.get) if self._episode_types else None
            )
            if self.event_logger:
                self.event_logger.log_episode_ended(
                    record.wall_clock_ms / 1000,
                    duration=duration,
                    sample_count=self.smoother.history[-1]["samples"] if self.smoother.history else 0,
                    max_severity=self._episode_max_severity,
                    tremor_type=dominant_type,
                )
            if self.on_episode_ended:
                self.on_episode_ended(record, duration)

    def _feed_calibration(self, magnitude: float) -> CalibrationProgress:
        progress = self.baseline_tracker.process_calibration_sample(magnitude)
        if progress.is_complete and self.event_logger:
            self.event_logger.log_calibration(
                time.time(),
                success=progress.success,
                baseline_magnitude=progress.baseline_magnitude,
                baseline_variance=progress.baseline_variance,
            )
        return progress

    # ------------------------------------------------------------------
    # Record batching
    # ------------------------------------------------------------------

    def _emit(self, record: TremorRecord) -> None:
        self._record_count += 1
        if self.on_record:
            self.on_record(record)

        self._buffer.append(record)

        # Keep the newest records when nobody drains the buffer
        if len(self._buffer) > self.max_buffer_size:
            dropped = len(self._buffer) - self.batch_size
            del self._buffer[:dropped]
            self._dropped_count += dropped
            LOGGER.warning("Record buffer overflow - dropped %d oldest records", dropped)
            if self.event_logger:
                self.event_logger.log_system_alert(
                    time.time(), "buffer_overflow", "warning",
                    f"Dropped {dropped} undelivered records", dropped=dropped,
                )

        if len(self._buffer) >= self.batch_size and self.on_batch_ready:
            batch = RecordBatch(
                batch_id=create_batch_id(record.wall_clock_ms),
                created_ms=int(time.time() * 1000),
                records=list(self._buffer),
            )
            self._buffer.clear()
            self.on_batch_ready(batch)

    def drain(self) -> List[TremorRecord]:
        """Return and clear the records not yet handed off."""
        records = list(self._buffer)
        self._buffer.clear()
        return records

    # ------------------------------------------------------------------
    # Run loop and status
    # ------------------------------------------------------------------

    def run_until(
        self,
        source: DataSource,
        max_samples: Optional[int] = None,
        duration: Optional[float] = None,
        realtime: bool = False,
    ) -> int:
        """
        Run the processing loop over a data source.

        Args:
            source: Data source (mock or live)
            max_samples: Maximum readings to process (None for infinite)
            duration: Maximum run time in seconds (None for infinite)
            realtime: Sleep one sample interval between readings

        Returns:
            Number of readings processed
        """
        start_time = time.time()
        samples = 0

        try:
            while True:
                if duration is not None and (time.time() - start_time) >= duration:
                    break
                if max_samples is not None and samples >= max_samples:
                    break

                self.process_reading(source.read())
                samples += 1

                if samples % 500 == 0:
                    LOGGER.info("Processed %d samples (in episode: %s)", samples, self.smoother.in_episode)

                if realtime:
                    time.sleep(1.0 / self.sample_rate_hz)

        except KeyboardInterrupt:
            LOGGER.info("Interrupted by user")

        finally:
            source.close()

        return samples

    def get_status(self) -> dict:
        """Get current engine status."""
        elapsed = time.time() - self._start_time if self._start_time else 0
        gyro = self.last_gyro_result

        return {
            "config_profile": self.config.profile_name,
            "samples_processed": self._sample_count,
            "records_emitted": self._record_count,
            "records_pending": len(self._buffer),
            "records_dropped": self._dropped_count,
            "elapsed_time": elapsed,
            "in_episode": self.smoother.in_episode,
            "episode_count": self.smoother.episode_count,
            "dominant_frequency": gyro.dominant_frequency_hz if gyro else 0.0,
            "band_ratio": gyro.band_ratio if gyro else 0.0,
            "calibrating": self.baseline_tracker.is_calibrating(),
            "calibrated": self.baseline_tracker.has_completed_calibration(),
            "baseline_ready": {
                "resting": self.baseline_tracker.is_baseline_ready(True),
                "active": self.baseline_tracker.is_baseline_ready(False),
            },
        }


def create_mock_engine(
    sample_rate: float = 50.0,
    config: Optional[DetectionConfig] = None,
    **source_kwargs,
) -> Tuple[TremorMonitoringEngine, MockDataSource]:
    """
    Create a monitoring engine with a synthetic data source.

    Convenience function for testing and development.

    Args:
        sample_rate: Sampling rate in Hz
        config: Detection config (default settings if None)
        **source_kwargs: Passed to MockDataSource (tremor_frequency, ...)

    Returns:
        (engine, source)
    """
    engine = TremorMonitoringEngine(
        config_holder=ConfigHolder(config),
        sample_rate_hz=sample_rate,
    )
    source = MockDataSource(sample_rate=sample_rate, **source_kwargs)
    return engine, source
