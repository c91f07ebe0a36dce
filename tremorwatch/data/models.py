"""
Data models and types for the tremor monitoring pipeline.

Defines the data structures passed between the sensor layer, the detection
stages, and the record consumers.
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from pathlib import Path
from typing import Optional, Union
import json
import math

import numpy as np


class SensorType(Enum):
    """Motion sensor streams."""
    GYROSCOPE = "gyroscope"          # angular velocity, rad/s
    ACCELEROMETER = "accelerometer"  # linear acceleration (gravity removed), m/s²


@dataclass(frozen=True)
class MotionSample:
    """
    Single tri-axis motion sensor reading.

    Timestamps come from a monotonic clock (nanoseconds); wall clock time
    is carried alongside for absolute record timestamps.
    """
    timestamp_ns: int
    x: float
    y: float
    z: float
    sensor: SensorType = SensorType.GYROSCOPE
    wall_clock_ms: int = 0

    @property
    def vector(self) -> np.ndarray:
        """Axis values as numpy array."""
        return np.array([self.x, self.y, self.z])

    @property
    def magnitude(self) -> float:
        """Euclidean norm of the axis values."""
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)


@dataclass(frozen=True)
class SensorReading:
    """
    Combined sensor reading at a single time point.

    Either stream may be absent when sensors report at different rates.
    """
    timestamp_ns: int
    gyro: Optional[MotionSample] = None
    accel: Optional[MotionSample] = None


@dataclass(frozen=True)
class SpectralResult:
    """
    Result of one spectral analysis of a magnitude window.

    Produced once per analysis invocation and read-only downstream.
    """
    dominant_frequency_hz: float   # peak frequency inside the selected band
    tremor_band_power: float       # summed power inside the selected band
    total_power: float             # summed power over the one-sided spectrum
    max_power_in_band: float       # power at the dominant frequency
    is_tremor: bool
    confidence: float              # 0-1

    @classmethod
    def neutral(cls) -> "SpectralResult":
        """Null result used for windows that cannot be analyzed."""
        return cls(0.0, 0.0, 0.0, 0.0, False, 0.0)

    @property
    def band_ratio(self) -> float:
        """Fraction of total power inside the tremor band."""
        return self.tremor_band_power / self.total_power if self.total_power > 0 else 0.0

    @property
    def peak_prominence(self) -> float:
        """Share of band power concentrated in the dominant bin."""
        return self.max_power_in_band / self.tremor_band_power if self.tremor_band_power > 0 else 0.0


@dataclass(frozen=True)
class TremorRecord:
    """
    Final annotated output for one accepted gyroscope sample.

    Aggregates raw axis values, spectral features, the smoothed detection,
    severity, baseline multiplier and tremor-type classification.
    """
    # === Timing ===
    timestamp_ns: int                # monotonic sensor timestamp
    wall_clock_ms: int               # epoch milliseconds

    # === Raw Motion ===
    x: float
    y: float
    z: float
    magnitude: float                 # gyroscope magnitude (rad/s)
    accel_magnitude: float           # latest accelerometer magnitude (m/s²)

    # === Detection ===
    is_tremor: bool
    confidence: float                # 0-1, advisory when is_tremor is False
    in_episode: bool = False

    # === Spectral Features ===
    dominant_frequency: float = 0.0
    tremor_band_power: float = 0.0
    total_power: float = 0.0
    band_ratio: float = 0.0
    peak_prominence: float = 0.0

    # === Scoring ===
    severity: float = 0.0            # 0-10
    severity_level: str = "none"
    baseline_multiplier: float = 1.0

    # === Classification ===
    tremor_type: str = "none"
    tremor_type_confidence: float = 0.0
    secondary_type: Optional[str] = None
    is_resting_state: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self, path: Optional[Union[Path, str]] = None) -> str:
        """
        Serialize to JSON.

        Args:
            path: If provided, write to file. Otherwise return string.
        """
        json_str = json.dumps(self.to_dict(), indent=2)

        if path:
            Path(path).write_text(json_str)

        return json_str

    @classmethod
    def from_dict(cls, data: dict) -> "TremorRecord":
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, json_str: str) -> "TremorRecord":
        """Deserialize from JSON string."""
        return cls.from_dict(json.loads(json_str))
