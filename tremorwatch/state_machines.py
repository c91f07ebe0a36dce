"""
Tremor State Machines

Implements the debounced state machines of the detection pipeline:
1. Episode smoothing (raw per-sample detections -> tremor episodes)
2. Resting-baseline calibration sessions

Episode transitions require sustained detections; brief gaps inside an
episode are bridged so transient sensor noise does not split it.
Both machines are driven by caller-supplied timestamps, never by the wall
clock, so they replay deterministically.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass
from typing import Optional, List
from collections import deque
import logging
import math

from .config import ConfigHolder


LOGGER = logging.getLogger(__name__)

EPISODE_STARTED = "EPISODE_STARTED"
EPISODE_ENDED = "EPISODE_ENDED"


# ---------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------

class EpisodeState(Enum):
    IDLE = "IDLE"
    IN_EPISODE = "IN_EPISODE"


class CalibrationState(Enum):
    NOT_ACTIVE = "NOT_ACTIVE"
    BASELINE_COLLECTION = "BASELINE_COLLECTION"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


# ---------------------------------------------------------------------
# EPISODE SMOOTHING STATE MACHINE
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class SmoothedDetection:
    is_tremor: bool
    confidence: float
    transition: Optional[str] = None   # EPISODE_STARTED / EPISODE_ENDED


@dataclass(frozen=True)
class EpisodeSnapshot:
    in_episode: bool
    consecutive_tremor_samples: int
    consecutive_non_tremor_samples: int
    episode_start_time_ns: int
    episode_sample_count: int


class EpisodeStateMachine:
    """
    Converts raw per-sample detections into debounced tremor episodes.

    IDLE → IN_EPISODE after min_episode_duration_samples consecutive raw
    detections. IN_EPISODE → IDLE only once the non-tremor run exceeds
    max_gap_samples; shorter gaps are bridged and reported as tremor.

    Confidence inside a confirmed episode is boosted (×1.3 for runs of at
    least twice the minimum, ×1.15 otherwise) and held at its last value
    through a bridged gap.
    """

    LONG_EPISODE_BOOST = 1.3
    CONFIRMED_EPISODE_BOOST = 1.15

    def __init__(self, config_holder: Optional[ConfigHolder] = None):
        self.config_holder = config_holder if config_holder is not None else ConfigHolder()

        self.state = EpisodeState.IDLE
        self.consecutive_tremor_samples = 0
        self.consecutive_non_tremor_samples = 0
        self.episode_start_time_ns = 0
        self.episode_sample_count = 0
        self.episode_count = 0

        self._held_confidence = 0.0
        self.history = deque(maxlen=100)

    @property
    def in_episode(self) -> bool:
        return self.state == EpisodeState.IN_EPISODE

    def update(self, raw_is_tremor: bool, raw_confidence: float, timestamp_ns: int) -> SmoothedDetection:
        """
        Feed one raw detection.

        Args:
            raw_is_tremor: Post-filtered detection for this sample
            raw_confidence: Post-filtered confidence for this sample
            timestamp_ns: Monotonic sample timestamp

        Returns:
            SmoothedDetection with the transition that occurred, if any
        """
        config = self.config_holder.get()
        min_samples = config.min_episode_duration_samples
        max_gap = config.max_gap_samples
        transition = None

        if not math.isfinite(raw_confidence):
            raw_confidence = 0.0

        # -----------------------------
        # Counters and transitions
        # -----------------------------
        if raw_is_tremor:
            self.consecutive_tremor_samples += 1
            self.consecutive_non_tremor_samples = 0

            if self.state == EpisodeState.IDLE:
                if self.consecutive_tremor_samples >= min_samples:
                    self._start_episode(timestamp_ns)
                    transition = EPISODE_STARTED
            else:
                self.episode_sample_count += 1
        else:
            self.consecutive_non_tremor_samples += 1

            if self.state == EpisodeState.IDLE:
                # An idle run must be unbroken to count towards a start
                self.consecutive_tremor_samples = 0
            elif self.consecutive_non_tremor_samples > max_gap:
                self._end_episode(timestamp_ns)
                transition = EPISODE_ENDED

        # -----------------------------
        # Smoothed output
        # -----------------------------
        if self.state == EpisodeState.IN_EPISODE:
            is_tremor = raw_is_tremor or self.consecutive_non_tremor_samples <= max_gap
        else:
            is_tremor = raw_is_tremor and self.consecutive_tremor_samples >= min_samples

        if self.state == EpisodeState.IN_EPISODE and not raw_is_tremor:
            # Bridged gap
            confidence = self._held_confidence
        elif self.state == EpisodeState.IN_EPISODE and self.consecutive_tremor_samples >= min_samples * 2:
            confidence = raw_confidence * self.LONG_EPISODE_BOOST
        elif self.state == EpisodeState.IN_EPISODE and self.consecutive_tremor_samples >= min_samples:
            confidence = raw_confidence * self.CONFIRMED_EPISODE_BOOST
        else:
            confidence = raw_confidence
        confidence = min(max(confidence, 0.0), 1.0)

        if self.state == EpisodeState.IN_EPISODE:
            self._held_confidence = confidence

        return SmoothedDetection(is_tremor=is_tremor, confidence=confidence, transition=transition)

    def _start_episode(self, timestamp_ns: int) -> None:
        self.state = EpisodeState.IN_EPISODE
        self.episode_start_time_ns = timestamp_ns
        self.episode_sample_count = self.consecutive_tremor_samples
        self.episode_count += 1
        self.history.append({
            "time_ns": timestamp_ns,
            "event": EPISODE_STARTED,
            "samples": self.consecutive_tremor_samples,
        })
        LOGGER.info("Tremor episode started (%d consecutive samples)", self.consecutive_tremor_samples)

    def _end_episode(self, timestamp_ns: int) -> None:
        duration = self.episode_duration_seconds(timestamp_ns)
        self.history.append({
            "time_ns": timestamp_ns,
            "event": EPISODE_ENDED,
            "duration": duration,
            "samples": self.episode_sample_count,
        })
        LOGGER.info("Tremor episode ended (%.1fs, %d tremor samples)", duration, self.episode_sample_count)

        self.state = EpisodeState.IDLE
        self.consecutive_tremor_samples = 0
        self.episode_start_time_ns = 0
        self.episode_sample_count = 0
        self._held_confidence = 0.0

    def episode_duration_seconds(self, now_ns: int) -> float:
        """Seconds since the current episode started (0 when idle)."""
        if self.state != EpisodeState.IN_EPISODE:
            return 0.0
        return max(now_ns - self.episode_start_time_ns, 0) / 1e9

    def snapshot(self) -> EpisodeSnapshot:
        return EpisodeSnapshot(
            in_episode=self.in_episode,
            consecutive_tremor_samples=self.consecutive_tremor_samples,
            consecutive_non_tremor_samples=self.consecutive_non_tremor_samples,
            episode_start_time_ns=self.episode_start_time_ns,
            episode_sample_count=self.episode_sample_count,
        )

    def reset(self):
        self.state = EpisodeState.IDLE
        self.consecutive_tremor_samples = 0
        self.consecutive_non_tremor_samples = 0
        self.episode_start_time_ns = 0
        self.episode_sample_count = 0
        self._held_confidence = 0.0
        self.history.clear()


# ---------------------------------------------------------------------
# CALIBRATION SESSION STATE MACHINE
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CalibrationProgress:
    """Progress report returned after every calibration sample."""
    fraction: float                # 0-1, by elapsed time
    samples_collected: int
    seconds_remaining: int
    is_complete: bool = False
    success: bool = False
    baseline_magnitude: float = 0.0
    baseline_variance: float = 0.0


class CalibrationSession:
    """
    Collects resting magnitudes for a fixed duration.

    The session completes once both the duration and the sample floor are
    met. If the duration elapses first the session fails; the caller decides
    what to do with a completed session's mean and variance.
    """

    DURATION_SECONDS = 30.0
    SAMPLES_REQUIRED = 30

    def __init__(self, duration_seconds: float = DURATION_SECONDS, samples_required: int = SAMPLES_REQUIRED):
        self.duration_seconds = duration_seconds
        self.samples_required = samples_required

        self.state = CalibrationState.NOT_ACTIVE
        self.state_entered_at = 0.0
        self.samples: List[float] = []
        self.message = ""

    @property
    def is_active(self) -> bool:
        return self.state == CalibrationState.BASELINE_COLLECTION

    def start(self, now: float) -> bool:
        if self.is_active:
            return False

        self.state = CalibrationState.BASELINE_COLLECTION
        self.state_entered_at = now
        self.samples.clear()
        self.message = ""
        return True

    def update(self, magnitude: float, now: float) -> CalibrationProgress:
        """
        Add one resting magnitude.

        Non-finite magnitudes are not collected but still advance the clock.
        """
        if not self.is_active:
            return self._final_progress()

        if math.isfinite(magnitude):
            self.samples.append(magnitude)

        elapsed = max(now - self.state_entered_at, 0.0)
        if elapsed >= self.duration_seconds:
            if len(self.samples) >= self.samples_required:
                self._validate()
            else:
                self._fail(f"Not enough samples ({len(self.samples)}/{self.samples_required})")
            return self._final_progress()

        return CalibrationProgress(
            fraction=min(elapsed / self.duration_seconds, 1.0),
            samples_collected=len(self.samples),
            seconds_remaining=max(int(math.ceil(self.duration_seconds - elapsed)), 0),
        )

    def cancel(self) -> CalibrationProgress:
        if self.is_active:
            self._fail("Calibration cancelled")
        return self._final_progress()

    @property
    def mean(self) -> float:
        if self.state != CalibrationState.COMPLETE:
            return 0.0
        return sum(self.samples) / len(self.samples)

    @property
    def variance(self) -> float:
        """Population variance of the collected samples."""
        if self.state != CalibrationState.COMPLETE:
            return 0.0
        mean = self.mean
        return sum((x - mean) ** 2 for x in self.samples) / len(self.samples)

    def _validate(self):
        self.state = CalibrationState.COMPLETE
        self.message = f"Calibration successful (n={len(self.samples)})"

    def _fail(self, msg: str):
        self.state = CalibrationState.FAILED
        self.message = msg
        LOGGER.warning("Calibration failed: %s", msg)

    def _final_progress(self) -> CalibrationProgress:
        success = self.state == CalibrationState.COMPLETE
        return CalibrationProgress(
            fraction=1.0 if success else 0.0,
            samples_collected=len(self.samples),
            seconds_remaining=0,
            is_complete=self.state in (CalibrationState.COMPLETE, CalibrationState.FAILED),
            success=success,
            baseline_magnitude=self.mean,
            baseline_variance=self.variance,
        )

    def reset(self):
        self.state = CalibrationState.NOT_ACTIVE
        self.samples.clear()
        self.message = ""
