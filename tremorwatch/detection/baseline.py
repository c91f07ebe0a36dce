"""
Personal baseline tracking and calibration.

Maintains per-activity-state statistics of non-tremor motion so detection
thresholds adapt to the wearer:
- Rolling EMA of magnitude, band ratio and total power
- Welford running variance of magnitude
- Explicit 30 s resting calibration for a personalized starting point
- Periodic persistence through a BaselineStore
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol
import logging
import math
import threading
import time

from ..config import DetectionConfig
from ..data.storage import BaselineSnapshot, BaselineStore, InMemoryBaselineStore
from ..state_machines import CalibrationProgress, CalibrationSession
from .spectral import AdaptiveThresholds


LOGGER = logging.getLogger(__name__)

EMA_ALPHA = 0.02                 # slow adaptation once the baseline is valid
MIN_SAMPLES_FOR_BASELINE = 60    # ~1 minute of samples before the baseline is used
PERSIST_EVERY_N_UPDATES = 60

CALIBRATION_DURATION_SECONDS = 30
CALIBRATION_SAMPLES_REQUIRED = 30

ADAPTIVE_SIGMA_MULTIPLIER = 2.0        # tremor candidate above mean + 2σ
TREMOR_THRESHOLD_MULTIPLIER = 2.0      # tremor if 2x baseline
SIGNIFICANT_TREMOR_MULTIPLIER = 3.0
ELEVATED_MULTIPLIER = 1.5

ADAPTIVE_SEVERITY_SIGMA = 2.5
MIN_ADAPTIVE_THRESHOLD = 0.05
MAX_ADAPTIVE_THRESHOLD = 1.0
DEFAULT_SEVERITY_FLOOR = 0.005

BAND_RATIO_MARGIN = 0.02
MIN_ADAPTIVE_BAND_RATIO = 0.03
MAX_ADAPTIVE_BAND_RATIO = 0.15
DEFAULT_RESTING_BAND_RATIO = 0.05
DEFAULT_ACTIVE_BAND_RATIO = 0.10

# Minimum baseline value used as a divisor
MIN_BASELINE_DIVISOR = 0.01


@dataclass
class BaselineStats:
    """Statistics of non-tremor motion for one activity state."""
    magnitude: float
    band_ratio: float
    total_power: float
    magnitude_variance: float
    sample_count: int = 0

    @classmethod
    def resting_defaults(cls) -> "BaselineStats":
        return cls(magnitude=0.15, band_ratio=0.05, total_power=3.0, magnitude_variance=0.01)

    @classmethod
    def active_defaults(cls) -> "BaselineStats":
        return cls(magnitude=0.3, band_ratio=0.03, total_power=15.0, magnitude_variance=0.05)

    def is_valid(self) -> bool:
        return self.sample_count >= MIN_SAMPLES_FOR_BASELINE

    @property
    def std_dev(self) -> float:
        return math.sqrt(max(self.magnitude_variance, 0.0))

    def get_adaptive_threshold(self, k: float = ADAPTIVE_SIGMA_MULTIPLIER) -> float:
        """Magnitude above which a sample is a tremor candidate."""
        return self.magnitude + k * self.std_dev

    def copy(self) -> "BaselineStats":
        return replace(self)


@dataclass(frozen=True)
class BaselineEvaluation:
    is_above_baseline: bool
    relative_intensity: float
    baseline_multiplier: float
    confidence_boost: float        # added to confidence when tremor is detected

    @classmethod
    def neutral(cls) -> "BaselineEvaluation":
        return cls(False, 1.0, 1.0, 0.0)


class CalibrationListener(Protocol):
    def on_calibration_progress(self, fraction: float, samples_collected: int, seconds_remaining: int) -> None:
        ...

    def on_calibration_complete(self, success: bool, baseline_magnitude: float, baseline_variance: float) -> None:
        ...


class BaselineTracker:
    """
    Owner of the personal baseline.

    A single lock guards every read and mutation of the statistics, the
    Welford accumulators and the calibration session, so the tracker can be
    shared between the processing thread and a UI/diagnostics thread.

    Args:
        store: Persistence backend (volatile in-memory store if None)
        clock: Monotonic clock in seconds, drives calibration timing
        wall_clock: Epoch clock in seconds, used for persisted timestamps
    """

    def __init__(
        self,
        store: Optional[BaselineStore] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryBaselineStore()
        self.clock = clock
        self.wall_clock = wall_clock

        self._lock = threading.RLock()
        self._resting = BaselineStats.resting_defaults()
        self._active = BaselineStats.active_defaults()
        self._resting_m2 = 0.0
        self._active_m2 = 0.0
        self._dirty_updates = 0

        self._calibration_complete = False
        self._calibration_timestamp_ms = 0
        self._last_update_ms = 0

        self._session = CalibrationSession(CALIBRATION_DURATION_SECONDS, CALIBRATION_SAMPLES_REQUIRED)
        self._listener: Optional[CalibrationListener] = None
        self.on_baseline_saved: Optional[Callable[[BaselineSnapshot], None]] = None

        self._load()

    # ====================== BASELINE UPDATES ======================

    def update_baseline(
        self,
        magnitude: float,
        band_ratio: float,
        total_power: float,
        is_resting: bool,
        is_tremor_sample: bool,
    ) -> None:
        """
        Fold one sample into the baseline of its activity state.

        Tremor samples are excluded so the baseline only describes the
        wearer's normal motion.
        """
        if is_tremor_sample:
            return
        if not all(math.isfinite(v) for v in (magnitude, band_ratio, total_power)):
            return

        with self._lock:
            stats = self._resting if is_resting else self._active
            stats.sample_count += 1

            # Simple average until the baseline is valid, then slow EMA
            if stats.sample_count < MIN_SAMPLES_FOR_BASELINE:
                alpha = 1.0 / stats.sample_count
            else:
                alpha = EMA_ALPHA

            old_mean = stats.magnitude
            stats.magnitude = stats.magnitude * (1 - alpha) + magnitude * alpha
            stats.band_ratio = stats.band_ratio * (1 - alpha) + band_ratio * alpha
            stats.total_power = stats.total_power * (1 - alpha) + total_power * alpha

            # Welford, using the means before and after this update
            delta = (magnitude - old_mean) * (magnitude - stats.magnitude)
            if is_resting:
                self._resting_m2 += delta
                stats.magnitude_variance = self._resting_m2 / stats.sample_count
            else:
                self._active_m2 += delta
                stats.magnitude_variance = self._active_m2 / stats.sample_count

            self._last_update_ms = int(self.wall_clock() * 1000)
            self._dirty_updates += 1
            if self._dirty_updates >= PERSIST_EVERY_N_UPDATES:
                self._save()

    # ====================== EVALUATION ======================

    def evaluate_relative_to_baseline(self, magnitude: float, band_ratio: float, is_resting: bool) -> BaselineEvaluation:
        """
        Compare a sample with the baseline of its activity state.

        Returns:
            BaselineEvaluation; neutral while the baseline is not yet valid
        """
        with self._lock:
            stats = (self._resting if is_resting else self._active).copy()

        if not stats.is_valid() or not (math.isfinite(magnitude) and math.isfinite(band_ratio)):
            return BaselineEvaluation.neutral()

        magnitude_multiplier = magnitude / stats.magnitude if stats.magnitude > MIN_BASELINE_DIVISOR else 1.0
        ratio_multiplier = band_ratio / stats.band_ratio if stats.band_ratio > MIN_BASELINE_DIVISOR else 1.0

        relative_intensity = magnitude_multiplier * 0.6 + ratio_multiplier * 0.4
        is_above = (
            magnitude > stats.get_adaptive_threshold()
            or magnitude_multiplier > TREMOR_THRESHOLD_MULTIPLIER
        )

        if magnitude_multiplier >= SIGNIFICANT_TREMOR_MULTIPLIER:
            boost = 0.2
        elif magnitude_multiplier >= TREMOR_THRESHOLD_MULTIPLIER:
            boost = 0.1
        elif magnitude_multiplier >= ELEVATED_MULTIPLIER:
            boost = 0.05
        else:
            boost = 0.0

        return BaselineEvaluation(
            is_above_baseline=is_above,
            relative_intensity=relative_intensity,
            baseline_multiplier=magnitude_multiplier,
            confidence_boost=boost,
        )

    # ====================== ADAPTIVE THRESHOLDS ======================

    def get_adaptive_severity_threshold(self, is_resting: bool) -> float:
        """Personalized magnitude floor (mean + 2.5σ, clamped)."""
        with self._lock:
            stats = self._resting if is_resting else self._active
            if not stats.is_valid():
                return DEFAULT_SEVERITY_FLOOR
            threshold = stats.magnitude + stats.std_dev * ADAPTIVE_SEVERITY_SIGMA
        return min(max(threshold, MIN_ADAPTIVE_THRESHOLD), MAX_ADAPTIVE_THRESHOLD)

    def get_adaptive_band_ratio_threshold(self, is_resting: bool) -> float:
        """Personalized band ratio floor (baseline ratio + margin, clamped)."""
        with self._lock:
            stats = self._resting if is_resting else self._active
            if not stats.is_valid():
                return DEFAULT_RESTING_BAND_RATIO if is_resting else DEFAULT_ACTIVE_BAND_RATIO
            threshold = stats.band_ratio + BAND_RATIO_MARGIN
        return min(max(threshold, MIN_ADAPTIVE_BAND_RATIO), MAX_ADAPTIVE_BAND_RATIO)

    def get_adaptive_thresholds(self, is_resting: bool, config: Optional[DetectionConfig] = None) -> AdaptiveThresholds:
        """
        Bundle the adaptive thresholds for the spectral analyzer.

        Thresholds are personalized when the baseline is valid and a
        calibration has completed; personalized detection uses the
        calibrated confidence threshold.
        """
        config = config if config is not None else DetectionConfig()
        with self._lock:
            stats = self._resting if is_resting else self._active
            personalized = stats.is_valid() and self._calibration_complete
            return AdaptiveThresholds(
                severity_floor=self.get_adaptive_severity_threshold(is_resting),
                min_band_ratio=self.get_adaptive_band_ratio_threshold(is_resting),
                confidence_threshold=(
                    config.calibrated_confidence_threshold if personalized else config.confidence_threshold
                ),
                is_personalized=personalized,
            )

    # ====================== CALIBRATION ======================

    def start_calibration(self, listener: Optional[CalibrationListener] = None) -> bool:
        """
        Begin a resting calibration session.

        Returns:
            False if a session is already running
        """
        with self._lock:
            if not self._session.start(self.clock()):
                LOGGER.warning("Calibration already in progress")
                return False
            self._listener = listener
        LOGGER.info("Calibration started - rest arm for %d seconds", CALIBRATION_DURATION_SECONDS)
        return True

    def process_calibration_sample(self, magnitude: float) -> CalibrationProgress:
        """
        Feed one resting magnitude to the active session.

        On success the resting baseline is overwritten with the calibration
        mean and variance and persisted immediately.
        """
        with self._lock:
            if not self._session.is_active:
                return CalibrationProgress(fraction=0.0, samples_collected=0, seconds_remaining=0)

            progress = self._session.update(magnitude, self.clock())
            listener = self._listener

            if progress.is_complete:
                if progress.success:
                    self._apply_calibration(progress)
                self._session.reset()
                self._listener = None

        if listener is not None:
            if progress.is_complete:
                listener.on_calibration_complete(
                    progress.success, progress.baseline_magnitude, progress.baseline_variance
                )
            else:
                listener.on_calibration_progress(
                    progress.fraction, progress.samples_collected, progress.seconds_remaining
                )
        return progress

    def cancel_calibration(self) -> Optional[CalibrationProgress]:
        with self._lock:
            if not self._session.is_active:
                return None
            progress = self._session.cancel()
            listener = self._listener
            self._session.reset()
            self._listener = None
        LOGGER.info("Calibration cancelled")
        if listener is not None:
            listener.on_calibration_complete(False, 0.0, 0.0)
        return progress

    def _apply_calibration(self, progress: CalibrationProgress) -> None:
        count = progress.samples_collected
        self._resting = BaselineStats(
            magnitude=progress.baseline_magnitude,
            band_ratio=self._resting.band_ratio,
            total_power=self._resting.total_power,
            magnitude_variance=progress.baseline_variance,
            sample_count=count,
        )
        self._resting_m2 = progress.baseline_variance * count
        self._calibration_complete = True
        self._calibration_timestamp_ms = int(self.wall_clock() * 1000)
        self._save()
        LOGGER.info(
            "Calibration complete: baseline magnitude %.4f ± %.4f",
            progress.baseline_magnitude, math.sqrt(progress.baseline_variance),
        )

    def is_calibrating(self) -> bool:
        with self._lock:
            return self._session.is_active

    def has_completed_calibration(self) -> bool:
        with self._lock:
            return self._calibration_complete

    def hours_since_calibration(self) -> int:
        """Whole hours since the last calibration, or -1 if never calibrated."""
        with self._lock:
            timestamp_ms = self._calibration_timestamp_ms
        if timestamp_ms == 0:
            return -1
        return int((self.wall_clock() * 1000 - timestamp_ms) // (1000 * 60 * 60))

    # ====================== DIAGNOSTICS ======================

    def get_baseline_stats(self, is_resting: bool) -> BaselineStats:
        with self._lock:
            return (self._resting if is_resting else self._active).copy()

    def is_baseline_ready(self, is_resting: bool) -> bool:
        with self._lock:
            return (self._resting if is_resting else self._active).is_valid()

    # ====================== PERSISTENCE ======================

    def flush(self) -> None:
        """Persist the current baseline regardless of the update cadence."""
        with self._lock:
            self._save()

    def reset_baseline(self) -> None:
        """Discard all statistics and the stored snapshot."""
        with self._lock:
            self._resting = BaselineStats.resting_defaults()
            self._active = BaselineStats.active_defaults()
            self._resting_m2 = 0.0
            self._active_m2 = 0.0
            self._dirty_updates = 0
            self._calibration_complete = False
            self._calibration_timestamp_ms = 0
            try:
                self.store.clear()
            except OSError as e:
                LOGGER.error("Failed to clear baseline store: %s", e)
        LOGGER.info("Baseline reset")

    def snapshot(self) -> BaselineSnapshot:
        with self._lock:
            return BaselineSnapshot(
                resting_magnitude=self._resting.magnitude,
                resting_band_ratio=self._resting.band_ratio,
                resting_total_power=self._resting.total_power,
                resting_magnitude_variance=self._resting.magnitude_variance,
                resting_sample_count=self._resting.sample_count,
                active_magnitude=self._active.magnitude,
                active_band_ratio=self._active.band_ratio,
                active_total_power=self._active.total_power,
                active_magnitude_variance=self._active.magnitude_variance,
                active_sample_count=self._active.sample_count,
                calibration_complete=self._calibration_complete,
                calibration_timestamp_ms=self._calibration_timestamp_ms,
                last_update_ms=self._last_update_ms,
            )

    def _save(self) -> None:
        snapshot = self.snapshot()
        self._dirty_updates = 0
        try:
            self.store.save(snapshot)
        except OSError as e:
            LOGGER.error("Failed to persist baseline: %s", e)
            return
        LOGGER.debug(
            "Baseline saved - resting: %.4f, active: %.4f",
            snapshot.resting_magnitude, snapshot.active_magnitude,
        )
        if self.on_baseline_saved:
            self.on_baseline_saved(snapshot)

    def _load(self) -> None:
        try:
            snapshot = self.store.load()
        except OSError as e:
            LOGGER.error("Failed to load baseline: %s", e)
            snapshot = None
        if snapshot is None:
            LOGGER.debug("No saved baseline - using population defaults")
            return

        self._resting = BaselineStats(
            magnitude=snapshot.resting_magnitude,
            band_ratio=snapshot.resting_band_ratio,
            total_power=snapshot.resting_total_power,
            magnitude_variance=snapshot.resting_magnitude_variance,
            sample_count=max(snapshot.resting_sample_count, 0),
        )
        self._active = BaselineStats(
            magnitude=snapshot.active_magnitude,
            band_ratio=snapshot.active_band_ratio,
            total_power=snapshot.active_total_power,
            magnitude_variance=snapshot.active_magnitude_variance,
            sample_count=max(snapshot.active_sample_count, 0),
        )
        self._resting_m2 = self._resting.magnitude_variance * self._resting.sample_count
        self._active_m2 = self._active.magnitude_variance * self._active.sample_count
        self._calibration_complete = snapshot.calibration_complete
        self._calibration_timestamp_ms = snapshot.calibration_timestamp_ms
        self._last_update_ms = snapshot.last_update_ms
        LOGGER.info(
            "Baseline loaded - resting: %.4f, active: %.4f",
            self._resting.magnitude, self._active.magnitude,
        )
