import numpy as np
import pytest

from tremorwatch.config import ConfigHolder, DetectionConfig
from tremorwatch.data.models import MotionSample, SensorType


SAMPLE_RATE = 50.0


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sine_window(frequency, amplitude=0.4, offset=0.6, n=64, sample_rate=SAMPLE_RATE):
    t = np.arange(n) / sample_rate
    return offset + amplitude * np.sin(2 * np.pi * frequency * t)


def gyro_sample(index, x, sample_rate=SAMPLE_RATE):
    timestamp_ns = int(round(index / sample_rate * 1e9))
    return MotionSample(timestamp_ns=timestamp_ns, x=x, y=0.0, z=0.0,
                        sensor=SensorType.GYROSCOPE, wall_clock_ms=1_700_000_000_000 + index * 20)


def accel_sample(index, x, sample_rate=SAMPLE_RATE):
    timestamp_ns = int(round(index / sample_rate * 1e9))
    return MotionSample(timestamp_ns=timestamp_ns, x=x, y=0.0, z=0.0,
                        sensor=SensorType.ACCELEROMETER, wall_clock_ms=1_700_000_000_000 + index * 20)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def holder():
    return ConfigHolder(DetectionConfig())
