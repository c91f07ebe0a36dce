"""
Data source abstraction, synthetic source and analysis windows.

Defines the interface for motion sensor sources and provides a synthetic
implementation for testing and development. Hardware-backed sources should
inherit from the DataSource class.
"""

from abc import ABC, abstractmethod
from collections import deque
import math
import time
from typing import Optional

import numpy as np

from .models import MotionSample, SensorReading, SensorType


class DataSource(ABC):
    """
    Abstract base class for motion data sources.

    All sources (synthetic or hardware) should inherit from this class
    and implement read() and close().
    """

    @abstractmethod
    def read(self) -> SensorReading:
        """
        Read a single synchronized sensor reading.

        Returns:
            SensorReading with monotonic timestamp and available streams.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release resources (close connections, stop threads, etc.)."""
        pass


class MockDataSource(DataSource):
    """
    Synthetic wrist-motion source.

    Simulates a wrist-worn IMU:
    - Gyroscope: slow rotation bias on the x axis plus a sinusoidal tremor
      component while the tremor schedule is active
    - Accelerometer: near-constant linear acceleration (gravity removed)
    - Optional Gaussian noise on every axis

    Timestamps advance by exactly one sample interval per read.
    """

    SAMPLE_RATE = 50.0  # Hz

    def __init__(
        self,
        sample_rate: float = SAMPLE_RATE,
        tremor_frequency: float = 4.8,      # Hz
        tremor_amplitude: float = 0.4,      # rad/s
        gyro_bias: float = 0.6,             # rad/s on the tremor axis
        tremor_start: float = 0.0,          # seconds
        tremor_duration: Optional[float] = None,  # None = never stops
        accel_level: float = 0.05,          # m/s²
        noise_level: float = 0.0,           # std dev, applied to both streams
        seed: Optional[int] = None,
        start_wall_clock_ms: Optional[int] = None,
    ):
        """
        Initialize synthetic source.

        Args:
            sample_rate: Sampling frequency in Hz
            tremor_frequency: Frequency of the simulated tremor
            tremor_amplitude: Peak amplitude of the tremor oscillation
            gyro_bias: Constant angular rate the tremor rides on
            tremor_start: Seconds after start when the tremor begins
            tremor_duration: Seconds the tremor lasts (None for indefinite)
            accel_level: Constant linear acceleration on the x axis
            noise_level: Standard deviation of additive Gaussian noise
            seed: Seed for the noise generator
            start_wall_clock_ms: Epoch ms of the first sample (default: now)
        """
        self.sample_rate = sample_rate
        self.sample_interval = 1.0 / sample_rate
        self.tremor_frequency = tremor_frequency
        self.tremor_amplitude = tremor_amplitude
        self.gyro_bias = gyro_bias
        self.tremor_start = tremor_start
        self.tremor_duration = tremor_duration
        self.accel_level = accel_level
        self.noise_level = noise_level

        self._rng = np.random.default_rng(seed)
        self._index = 0
        self._start_wall_ms = (
            start_wall_clock_ms if start_wall_clock_ms is not None else int(time.time() * 1000)
        )

    def tremor_active(self, t: float) -> bool:
        """Whether the simulated tremor is present at time t (seconds)."""
        if t < self.tremor_start:
            return False
        if self.tremor_duration is None:
            return True
        return t < self.tremor_start + self.tremor_duration

    def read(self) -> SensorReading:
        """Generate the next synthetic reading."""
        t = self._index * self.sample_interval
        self._index += 1

        timestamp_ns = int(round(t * 1e9))
        wall_ms = self._start_wall_ms + int(round(t * 1000))

        gyro = np.array([self.gyro_bias, 0.0, 0.0])
        if self.tremor_active(t):
            gyro[0] += self.tremor_amplitude * math.sin(2 * math.pi * self.tremor_frequency * t)
        accel = np.array([self.accel_level, 0.0, 0.0])

        if self.noise_level > 0:
            gyro += self._rng.normal(0, self.noise_level, 3)
            accel += self._rng.normal(0, self.noise_level, 3)

        return SensorReading(
            timestamp_ns=timestamp_ns,
            gyro=MotionSample(
                timestamp_ns=timestamp_ns,
                x=float(gyro[0]), y=float(gyro[1]), z=float(gyro[2]),
                sensor=SensorType.GYROSCOPE,
                wall_clock_ms=wall_ms,
            ),
            accel=MotionSample(
                timestamp_ns=timestamp_ns,
                x=float(accel[0]), y=float(accel[1]), z=float(accel[2]),
                sensor=SensorType.ACCELEROMETER,
                wall_clock_ms=wall_ms,
            ),
        )

    def close(self) -> None:
        """Clean up (no-op for synthetic source)."""
        pass


class AnalysisWindow:
    """
    Fixed-capacity sliding window of magnitude scalars.

    Maintains the most recent samples of one sensor stream for spectral
    analysis; the oldest sample is evicted on overflow.
    """

    def __init__(self, capacity: int):
        """
        Initialize window.

        Args:
            capacity: Maximum number of samples held (a power of two for
                full use by the FFT)
        """
        if capacity <= 0:
            raise ValueError("Window capacity must be positive")
        self.capacity = capacity
        self._buffer: deque[float] = deque(maxlen=capacity)

    @property
    def size(self) -> int:
        """Current number of samples in window."""
        return len(self._buffer)

    @property
    def is_full(self) -> bool:
        """Whether window has reached capacity."""
        return self.size >= self.capacity

    def add(self, value: float) -> None:
        """Append a sample, evicting the oldest when full."""
        self._buffer.append(value)

    def values(self) -> np.ndarray:
        """Window contents, oldest first."""
        return np.fromiter(self._buffer, dtype=float, count=len(self._buffer))

    def variance(self) -> float:
        """Population variance of the window (0 for fewer than 2 samples)."""
        if self.size < 2:
            return 0.0
        return float(np.var(self.values()))

    def rms_amplitude(self) -> float:
        """RMS deviation of the window about its mean."""
        if self.size < 2:
            return 0.0
        return math.sqrt(self.variance())

    def clear(self) -> None:
        """Remove all samples."""
        self._buffer.clear()

    def __len__(self) -> int:
        return self.size
