"""
FFT-based tremor frequency analysis.

Pathological tremor characteristics:
- resting tremor: 4-6 Hz (narrow band, analyzed while the arm is at rest)
- postural/kinetic/action tremor: 4-12 Hz (broad band, analyzed while active)
- physiological tremor: 8-12 Hz, low power, filtered by band-ratio and
  confidence requirements

The analyzer works on a window of sensor magnitudes (gyroscope or
accelerometer), so the same code serves both streams.
"""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging
import math

import numpy as np

from ..config import ConfigHolder, DetectionConfig
from ..data.models import SpectralResult


LOGGER = logging.getLogger(__name__)

MIN_WINDOW_SIZE = 16

# High-energy movement filter: total power is mapped to a rough severity
# estimate, capped, before comparison with the configured threshold.
HIGH_ENERGY_POWER_REFERENCE = 50.0
MAX_ESTIMATED_SEVERITY = 5.0

# Frequency sub-ranges graded by the frequency-validation confidence term
ACTION_RANGE_HZ = (6.0, 8.0)
PHYSIOLOGICAL_RANGE_HZ = (8.0, 12.0)
BORDERLINE_LOW_HZ = 3.0


@dataclass(frozen=True)
class AdaptiveThresholds:
    """
    Personalized detection thresholds.

    Supplied by the baseline tracker once the wearer has a valid baseline;
    each field overrides the matching value of the active config.
    """
    severity_floor: float
    min_band_ratio: float
    confidence_threshold: float
    is_personalized: bool = False


def hann_window(n: int) -> np.ndarray:
    """Symmetric raised-cosine window of length n."""
    if n == 1:
        return np.ones(1)
    i = np.arange(n)
    return 0.5 * (1 - np.cos(2 * np.pi * i / (n - 1)))


def fft(samples: np.ndarray) -> np.ndarray:
    """
    Radix-2 decimation-in-time FFT (recursive Cooley-Tukey).

    Args:
        samples: Real or complex samples; length must be a power of two

    Returns:
        Complex spectrum of the same length
    """
    x = np.asarray(samples, dtype=complex)
    n = x.size
    if n == 0 or n & (n - 1):
        raise ValueError(f"FFT length must be a power of two, got {n}")
    if n == 1:
        return x.copy()

    even = fft(x[0::2])
    odd = fft(x[1::2])

    k = np.arange(n // 2)
    twiddled = np.exp(-2j * np.pi * k / n) * odd
    return np.concatenate([even + twiddled, even - twiddled])


def power_spectrum(samples: np.ndarray) -> np.ndarray:
    """One-sided power spectrum |X_k|² / N for k < N/2."""
    n = len(samples)
    spectrum = fft(samples)[: n // 2]
    return (spectrum.real ** 2 + spectrum.imag ** 2) / n


def _clamp_unit(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, 0.0), 1.0)


class SpectralAnalyzer:
    """
    Spectral tremor detector for a single magnitude window.

    Activity-aware band selection:
    - Resting analysis uses the configured resting band (default 4-6 Hz)
    - Active analysis uses the configured active band (default 4-12 Hz)

    The active DetectionConfig is read once per call from the shared holder,
    so a config swap takes effect on the next analysis.
    """

    def __init__(self, sample_rate: float = 50.0, config_holder: Optional[ConfigHolder] = None):
        """
        Initialize analyzer.

        Args:
            sample_rate: Sampling rate of the analyzed windows (Hz)
            config_holder: Source of the active config (private default if None)
        """
        if sample_rate <= 0:
            raise ValueError("Sample rate must be positive")
        self.sample_rate = sample_rate
        self.config_holder = config_holder if config_holder is not None else ConfigHolder()

    def analyze(
        self,
        window: Sequence[float],
        is_resting: bool = False,
        adaptive_thresholds: Optional[AdaptiveThresholds] = None,
    ) -> SpectralResult:
        """
        Analyze a window of sensor magnitudes.

        Args:
            window: Magnitude samples, oldest first (at least 16)
            is_resting: Whether the arm is at rest (selects the resting band)
            adaptive_thresholds: Optional personalized thresholds

        Returns:
            SpectralResult; the neutral result for short or non-finite input
        """
        config = self.config_holder.get()

        try:
            samples = np.asarray(window, dtype=float)
        except (TypeError, ValueError):
            return SpectralResult.neutral()
        if samples.ndim != 1 or samples.size < MIN_WINDOW_SIZE:
            return SpectralResult.neutral()
        if not np.all(np.isfinite(samples)):
            LOGGER.debug("Skipping analysis of window with non-finite samples")
            return SpectralResult.neutral()

        # Largest power of two that fits
        n = 1 << (samples.size.bit_length() - 1)
        samples = samples[:n]

        with np.errstate(over="ignore", invalid="ignore"):
            power = power_spectrum(samples * hann_window(n))
        total_power = float(power.sum())
        if not math.isfinite(total_power):
            LOGGER.debug("Skipping analysis of window whose power overflows")
            return SpectralResult.neutral()

        resolution = self.sample_rate / n
        freqs = np.arange(n // 2) * resolution

        band_low, band_high = config.band_for(is_resting)
        in_band = (freqs >= band_low) & (freqs <= band_high)
        band_powers = power[in_band]
        tremor_band_power = float(band_powers.sum())

        max_power = 0.0
        dominant_freq = 0.0
        if band_powers.size and band_powers.max() > 0:
            peak = int(np.argmax(band_powers))
            max_power = float(band_powers[peak])
            dominant_freq = float(freqs[in_band][peak])

        band_ratio = tremor_band_power / total_power if total_power > 0 else 0.0
        peak_prominence = max_power / tremor_band_power if tremor_band_power > 0 else 0.0

        confidence = self._confidence(config, band_ratio, peak_prominence, dominant_freq, total_power)

        is_tremor = self._is_tremor(
            config,
            adaptive_thresholds,
            band_low=band_low,
            band_high=band_high,
            tremor_band_power=tremor_band_power,
            total_power=total_power,
            band_ratio=band_ratio,
            dominant_freq=dominant_freq,
            confidence=confidence,
        )

        return SpectralResult(
            dominant_frequency_hz=dominant_freq,
            tremor_band_power=tremor_band_power,
            total_power=total_power,
            max_power_in_band=max_power,
            is_tremor=is_tremor,
            confidence=_clamp_unit(confidence),
        )

    @staticmethod
    def _confidence(
        config: DetectionConfig,
        band_ratio: float,
        peak_prominence: float,
        dominant_freq: float,
        total_power: float,
    ) -> float:
        confidence = 0.0

        # Band ratio: continuous scaling, saturating at its weight
        confidence += min(max(band_ratio * 3.0, 0.0), config.band_ratio_weight)

        # Peak prominence
        confidence += min(max(peak_prominence * 0.5, 0.0), config.peak_prominence_weight)

        # Frequency validation: resting range gets the full weight
        max_freq_weight = config.frequency_validation_weight
        if config.resting_band_low_hz <= dominant_freq <= config.resting_band_high_hz:
            confidence += max_freq_weight
        elif ACTION_RANGE_HZ[0] <= dominant_freq <= ACTION_RANGE_HZ[1]:
            confidence += max_freq_weight * 0.8
        elif PHYSIOLOGICAL_RANGE_HZ[0] <= dominant_freq <= PHYSIOLOGICAL_RANGE_HZ[1]:
            confidence += max_freq_weight * 0.4
        elif BORDERLINE_LOW_HZ <= dominant_freq <= config.min_frequency_hz:
            confidence += max_freq_weight * 0.2

        # Total power as activity discriminator; high activity gets nothing
        if total_power < config.resting_power_threshold:
            confidence += config.activity_weight
        elif total_power < config.resting_power_threshold * 2:
            confidence += config.activity_weight * 0.5

        return confidence

    @staticmethod
    def _is_tremor(
        config: DetectionConfig,
        adaptive_thresholds: Optional[AdaptiveThresholds],
        *,
        band_low: float,
        band_high: float,
        tremor_band_power: float,
        total_power: float,
        band_ratio: float,
        dominant_freq: float,
        confidence: float,
    ) -> bool:
        is_resting_state = total_power < config.resting_power_threshold

        if adaptive_thresholds is not None:
            min_band_ratio = adaptive_thresholds.min_band_ratio
            confidence_threshold = adaptive_thresholds.confidence_threshold
        else:
            min_band_ratio = (
                config.resting_min_band_ratio if is_resting_state else config.active_min_band_ratio
            )
            confidence_threshold = config.confidence_threshold

        has_minimum_power = tremor_band_power > config.min_tremor_power
        meets_frequency_threshold = dominant_freq >= config.min_frequency_hz
        meets_band_ratio = band_ratio >= min_band_ratio
        within_band = band_low <= dominant_freq <= band_high

        # Vigorous voluntary movement: lots of energy, little of it in band
        estimated_severity = 0.0
        if total_power > HIGH_ENERGY_POWER_REFERENCE:
            estimated_severity = min(total_power / HIGH_ENERGY_POWER_REFERENCE, MAX_ESTIMATED_SEVERITY)
        is_high_energy_low_ratio = (
            estimated_severity > config.high_energy_severity_threshold
            and band_ratio < config.high_energy_band_ratio_threshold
        )

        return (
            has_minimum_power
            and meets_frequency_threshold
            and meets_band_ratio
            and within_band
            and not is_high_energy_low_ratio
            and confidence > confidence_threshold
        )
