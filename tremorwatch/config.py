"""
Detection configuration.

Defines the immutable settings object used by every stage of the tremor
pipeline, the built-in presets, and the holder that publishes the active
configuration to concurrent readers.

A configuration is validated once, at construction. Updates never mutate an
existing object: a new object is built (and validated) and the holder swaps
its reference, so a reader sees either the old or the new settings in full.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, asdict, fields, replace as dc_replace
from typing import Dict, Optional


LOGGER = logging.getLogger(__name__)

CURRENT_VERSION = 1
MAX_CONFIG_JSON_LENGTH = 100_000
MAX_BAND_FREQUENCY_HZ = 20.0
WEIGHT_SUM_TOLERANCE = 1e-6


class ConfigValidationError(ValueError):
    """Raised when a detection configuration violates its invariants."""


@dataclass(frozen=True)
class DetectionConfig:
    """
    Thresholds and weights for tremor detection.

    Frequencies in Hz, powers in the units of the one-sided power spectrum
    produced by the spectral analyzer.

    min_band_ratio, low_tremor_threshold and high_activity_threshold are
    validated and persisted with a profile but not read by any detection
    stage, so a preset's min_band_ratio override changes nothing at
    runtime. Detection uses the resting and active band ratio floors.
    """
    # === Profile Metadata ===
    profile_name: str = "Default"
    profile_description: str = "Standard tremor detection settings"
    version: int = CURRENT_VERSION

    # === Frequency Detection ===
    resting_band_low_hz: float = 4.0      # resting tremor: 4-6 Hz
    resting_band_high_hz: float = 6.0
    active_band_low_hz: float = 4.0       # postural/kinetic: 4-12 Hz
    active_band_high_hz: float = 12.0
    min_frequency_hz: float = 4.0         # below this is drift / voluntary motion

    # === Power Thresholds ===
    min_tremor_power: float = 0.001
    resting_power_threshold: float = 10.0  # total power below this = resting

    # === Band Ratio Thresholds ===
    min_band_ratio: float = 0.04
    resting_min_band_ratio: float = 0.05
    active_min_band_ratio: float = 0.10

    # === Severity Settings ===
    severity_floor: float = 0.005
    high_energy_severity_threshold: float = 1.0
    high_energy_band_ratio_threshold: float = 0.04

    # === Temporal Smoothing ===
    min_episode_duration_samples: int = 3
    max_gap_samples: int = 2

    # === Confidence Calculation ===
    confidence_threshold: float = 0.35
    calibrated_confidence_threshold: float = 0.30
    band_ratio_weight: float = 0.30
    peak_prominence_weight: float = 0.15
    frequency_validation_weight: float = 0.25
    activity_weight: float = 0.30

    # === Movement Classification ===
    low_tremor_threshold: float = 0.3
    high_activity_threshold: float = 5.0

    def __post_init__(self):
        """Validate logical consistency of all parameters."""
        _require(isinstance(self.profile_name, str), "profile_name", "Profile name must be a string")
        _require(bool(self.profile_name.strip()), "profile_name", "Profile name cannot be blank")
        _require(self.version > 0, "version", "Version must be positive")

        # Frequency bands
        for prefix in ("resting", "active"):
            low = getattr(self, f"{prefix}_band_low_hz")
            high = getattr(self, f"{prefix}_band_high_hz")
            _require(low > 0, f"{prefix}_band_low_hz",
                     f"{prefix.capitalize()} band low Hz must be positive")
            _require(low < high, f"{prefix}_band_low_hz",
                     f"{prefix.capitalize()} band low ({low} Hz) must be less than high ({high} Hz)")
            _require(high <= MAX_BAND_FREQUENCY_HZ, f"{prefix}_band_high_hz",
                     f"Frequency bands should be <= {MAX_BAND_FREQUENCY_HZ} Hz")
        _require(self.min_frequency_hz > 0, "min_frequency_hz", "Minimum frequency must be positive")

        # Power
        _require(self.min_tremor_power >= 0, "min_tremor_power",
                 "Minimum tremor power must be non-negative")
        _require(self.resting_power_threshold >= 0, "resting_power_threshold",
                 "Resting power threshold must be non-negative")

        # Ratios
        for name in ("min_band_ratio", "resting_min_band_ratio", "active_min_band_ratio",
                     "high_energy_band_ratio_threshold"):
            _require(0.0 <= getattr(self, name) <= 1.0, name, f"{name} must be in range [0, 1]")

        # Severity
        _require(self.severity_floor >= 0, "severity_floor", "Severity floor must be non-negative")
        _require(self.high_energy_severity_threshold > 0, "high_energy_severity_threshold",
                 "High energy threshold must be positive")

        # Temporal
        _require(self.min_episode_duration_samples > 0, "min_episode_duration_samples",
                 "Minimum episode duration must be positive")
        _require(self.max_gap_samples >= 0, "max_gap_samples", "Max gap samples must be non-negative")

        # Confidence
        for name in ("confidence_threshold", "calibrated_confidence_threshold"):
            _require(0.0 <= getattr(self, name) <= 1.0, name, f"{name} must be in range [0, 1]")
        weights = self.confidence_weights
        for name, value in weights.items():
            _require(value >= 0, name, f"{name} must be non-negative")
        total = sum(weights.values())
        _require(abs(total - 1.0) <= WEIGHT_SUM_TOLERANCE, "activity_weight",
                 f"Confidence weights must sum to 1.0 (got {total:.4f})")

        # Movement classification
        _require(self.low_tremor_threshold >= 0, "low_tremor_threshold",
                 "Low tremor threshold must be non-negative")
        _require(self.high_activity_threshold > self.low_tremor_threshold, "high_activity_threshold",
                 "High activity threshold must be greater than low tremor threshold")

    @property
    def confidence_weights(self) -> Dict[str, float]:
        """The four confidence weights by field name."""
        return {
            "band_ratio_weight": self.band_ratio_weight,
            "peak_prominence_weight": self.peak_prominence_weight,
            "frequency_validation_weight": self.frequency_validation_weight,
            "activity_weight": self.activity_weight,
        }

    def band_for(self, is_resting: bool) -> tuple:
        """Return (low, high) of the band used for the given activity state."""
        if is_resting:
            return self.resting_band_low_hz, self.resting_band_high_hz
        return self.active_band_low_hz, self.active_band_high_hz

    def replace(self, **changes) -> "DetectionConfig":
        """Return a validated copy with the given fields changed."""
        return dc_replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        """Serialize to a pretty-printed JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionConfig":
        """
        Build a config from a dict, ignoring unknown keys.

        Raises:
            ConfigValidationError: if any value is out of range
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        config = cls(**values)
        if config.version != CURRENT_VERSION:
            LOGGER.warning("Migrating config '%s' from version %s to %s",
                           config.profile_name, config.version, CURRENT_VERSION)
            config = config.replace(version=CURRENT_VERSION)
        return config

    @classmethod
    def from_json(cls, json_str: str) -> "DetectionConfig":
        """
        Parse from a JSON string with input sanitization.

        Raises:
            ConfigValidationError: if the JSON is blank, too large, malformed,
                or describes an invalid config
        """
        if not json_str or not json_str.strip():
            raise ConfigValidationError("Config JSON cannot be blank")
        if len(json_str) >= MAX_CONFIG_JSON_LENGTH:
            raise ConfigValidationError(
                f"Config JSON too large ({len(json_str)} bytes). Max {MAX_CONFIG_JSON_LENGTH}."
            )
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Invalid config JSON format: {e}") from e
        if not isinstance(data, dict):
            raise ConfigValidationError("Config JSON must be an object")
        try:
            return cls.from_dict(data)
        except (TypeError, AttributeError) as e:
            raise ConfigValidationError(f"Invalid config field type: {e}") from e


def _require(condition: bool, field_name: str, message: str) -> None:
    if not condition:
        raise ConfigValidationError(f"{field_name}: {message}")


def validate_json(json_str: str) -> bool:
    """Check whether a JSON string parses into a valid config."""
    try:
        DetectionConfig.from_json(json_str)
    except ConfigValidationError:
        return False
    return True


PRESETS: Dict[str, DetectionConfig] = {
    "Default": DetectionConfig(),

    "Custom": DetectionConfig(
        profile_name="Custom",
        profile_description="Starting point for creating your own custom settings",
    ),

    "Sensitive": DetectionConfig(
        profile_name="Sensitive",
        profile_description="Lower thresholds for detecting subtle tremors. May increase false positives.",
        min_band_ratio=0.02,
        severity_floor=0.002,
        confidence_threshold=0.25,
        min_episode_duration_samples=2,
    ),

    "Strict": DetectionConfig(
        profile_name="Strict",
        profile_description="Higher thresholds to reduce false positives. May miss subtle tremors.",
        min_band_ratio=0.08,
        severity_floor=0.01,
        confidence_threshold=0.50,
        min_episode_duration_samples=5,
    ),

    "Resting Tremor": DetectionConfig(
        profile_name="Resting Tremor",
        profile_description="Optimized for 4-6 Hz resting tremor",
        resting_band_high_hz=6.5,
        active_band_high_hz=8.0,
        resting_min_band_ratio=0.04,
    ),

    "Action Tremor": DetectionConfig(
        profile_name="Action Tremor",
        profile_description="Optimized for 5-8 Hz action tremor",
        resting_band_low_hz=5.0,
        resting_band_high_hz=8.0,
        active_band_low_hz=5.0,
        active_band_high_hz=10.0,
    ),
}


class ConfigHolder:
    """
    Publishes the active DetectionConfig.

    Readers call get() and work with the returned snapshot for the rest of
    their computation. Writers are serialized; the reference swap itself is
    a single assignment, so readers never take the lock.
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self._config = config if config is not None else DetectionConfig()
        self._write_lock = threading.Lock()

    def get(self) -> DetectionConfig:
        return self._config

    def set(self, config: DetectionConfig) -> DetectionConfig:
        """
        Replace the active config.

        Returns:
            The previously active config.
        """
        if not isinstance(config, DetectionConfig):
            raise ConfigValidationError(
                f"Expected DetectionConfig, got {type(config).__name__}"
            )
        with self._write_lock:
            previous = self._config
            self._config = config
        LOGGER.info("Detection config updated: %s", config.profile_name)
        return previous
