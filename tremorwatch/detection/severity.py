"""
Clinical tremor severity scoring.

Severity is the product of five factors, gated by detection confidence:
1. Base severity from oscillation magnitude (logarithmic)
2. Frequency weighting (peak at 5 Hz for resting tremor)
3. Band ratio quality (purer tremor signal scores higher)
4. Episode duration (sustained tremor is more significant)
5. Deviation from the personal baseline

Scale 0-10:
- 0-0.5: none
- 0.5-1.5: minimal
- 1.5-3: mild
- 3-5: moderate
- 5-7: moderate-severe
- 7-10: severe
"""

from enum import Enum
import math


MAX_SEVERITY = 10.0
MAX_BASE_SEVERITY = 8.0          # cap before the other factors apply
MAGNITUDE_SCALE_FACTOR = 2.0
MIN_MAGNITUDE = 0.01             # rad/s, below this no tremor is scored

# Frequency weighting
RESTING_PEAK_HZ = 5.0
ACTION_PEAK_HZ = 7.0

# Band ratio quality
HIGH_QUALITY_BAND_RATIO = 0.15
MEDIUM_QUALITY_BAND_RATIO = 0.08
LOW_QUALITY_BAND_RATIO = 0.04

# Duration (seconds)
SUSTAINED_TREMOR_DURATION = 10.0
MODERATE_DURATION = 5.0
BRIEF_DURATION = 3.0


class SeverityLevel(Enum):
    NONE = "none"
    MINIMAL = "minimal"
    MILD = "mild"
    MODERATE = "moderate"
    MODERATE_SEVERE = "moderate_severe"
    SEVERE = "severe"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def min_value(self) -> float:
        return _LEVEL_RANGES[self][0]

    @property
    def max_value(self) -> float:
        return _LEVEL_RANGES[self][1]


_DISPLAY_NAMES = {
    SeverityLevel.NONE: "None",
    SeverityLevel.MINIMAL: "Minimal",
    SeverityLevel.MILD: "Mild",
    SeverityLevel.MODERATE: "Moderate",
    SeverityLevel.MODERATE_SEVERE: "Moderate-Severe",
    SeverityLevel.SEVERE: "Severe",
}

_LEVEL_RANGES = {
    SeverityLevel.NONE: (0.0, 0.5),
    SeverityLevel.MINIMAL: (0.5, 1.5),
    SeverityLevel.MILD: (1.5, 3.0),
    SeverityLevel.MODERATE: (3.0, 5.0),
    SeverityLevel.MODERATE_SEVERE: (5.0, 7.0),
    SeverityLevel.SEVERE: (7.0, 10.0),
}


def calculate_severity(
    magnitude: float,
    dominant_frequency: float,
    band_ratio: float,
    confidence: float,
    episode_duration: float = 0.0,
    baseline_multiplier: float = 1.0,
) -> float:
    """
    Calculate a clinical severity score.

    Args:
        magnitude: Tremor oscillation magnitude (rad/s)
        dominant_frequency: Dominant frequency from spectral analysis (Hz)
        band_ratio: Fraction of power inside the tremor band
        confidence: Detection confidence (0-1)
        episode_duration: Seconds into the current episode (0 if none)
        baseline_multiplier: Magnitude relative to personal baseline

    Returns:
        Severity in [0, 10]; 0 for non-finite input
    """
    inputs = (magnitude, dominant_frequency, band_ratio, confidence, episode_duration, baseline_multiplier)
    if not all(math.isfinite(v) for v in inputs):
        return 0.0

    raw = (
        _base_severity(magnitude)
        * _frequency_weight(dominant_frequency)
        * _quality_factor(band_ratio)
        * _duration_factor(episode_duration)
        * _baseline_boost(baseline_multiplier)
    )

    # Low confidence reduces severity, never below 30%
    confidence_gate = min(max(confidence * 1.5, 0.3), 1.0)

    return min(max(raw * confidence_gate, 0.0), MAX_SEVERITY)


def classify_severity(severity: float) -> SeverityLevel:
    if not math.isfinite(severity) or severity < 0.5:
        return SeverityLevel.NONE
    if severity < 1.5:
        return SeverityLevel.MINIMAL
    if severity < 3.0:
        return SeverityLevel.MILD
    if severity < 5.0:
        return SeverityLevel.MODERATE
    if severity < 7.0:
        return SeverityLevel.MODERATE_SEVERE
    return SeverityLevel.SEVERE


def normalized_severity(severity: float) -> float:
    """Severity scaled to [0, 1] for display."""
    if not math.isfinite(severity):
        return 0.0
    return min(max(severity / MAX_SEVERITY, 0.0), 1.0)


def _base_severity(magnitude: float) -> float:
    # ~0.1 rad/s -> 1.4, ~1.0 rad/s -> 4.8
    if magnitude <= MIN_MAGNITUDE:
        return 0.0
    return min(MAGNITUDE_SCALE_FACTOR * math.log(1 + magnitude * 10), MAX_BASE_SEVERITY)


def _frequency_weight(frequency: float) -> float:
    if 4.0 <= frequency <= 6.0:
        deviation = frequency - RESTING_PEAK_HZ
        return 1.0 + 0.5 * math.exp(-deviation * deviation / 2)
    if 6.0 <= frequency <= 8.0:
        deviation = frequency - ACTION_PEAK_HZ
        return 1.0 + 0.3 * math.exp(-deviation * deviation / 2)
    if 8.0 <= frequency <= 12.0:
        return 0.8   # physiological
    if 2.0 <= frequency <= 4.0:
        return 0.5
    return 0.3


def _quality_factor(band_ratio: float) -> float:
    if band_ratio >= HIGH_QUALITY_BAND_RATIO:
        return 1.0 + min(band_ratio * 3, 0.5)
    if band_ratio >= MEDIUM_QUALITY_BAND_RATIO:
        return 0.8 + (band_ratio - MEDIUM_QUALITY_BAND_RATIO) * 5
    if band_ratio >= LOW_QUALITY_BAND_RATIO:
        return 0.6 + (band_ratio - LOW_QUALITY_BAND_RATIO) * 10
    return 0.5


def _duration_factor(duration_seconds: float) -> float:
    if duration_seconds >= SUSTAINED_TREMOR_DURATION:
        return 1.5
    if duration_seconds >= MODERATE_DURATION:
        return 1.2
    if duration_seconds >= BRIEF_DURATION:
        return 1.0
    if duration_seconds > 0:
        return 0.8
    return 1.0   # not in an episode


def _baseline_boost(baseline_multiplier: float) -> float:
    if baseline_multiplier >= 3.0:
        return 1.3
    if baseline_multiplier >= 2.0:
        return 1.15
    if baseline_multiplier >= 1.5:
        return 1.05
    return 1.0
