import math

import numpy as np
import pytest

from conftest import SAMPLE_RATE, sine_window
from tremorwatch.config import ConfigHolder, DetectionConfig
from tremorwatch.detection.spectral import (
    AdaptiveThresholds,
    SpectralAnalyzer,
    fft,
    hann_window,
    power_spectrum,
)


RESOLUTION = SAMPLE_RATE / 64


@pytest.fixture
def analyzer():
    return SpectralAnalyzer(SAMPLE_RATE, ConfigHolder(DetectionConfig()))


def test_fft_matches_reference_transform():
    rng = np.random.default_rng(7)
    x = rng.normal(size=64)
    np.testing.assert_allclose(fft(x), np.fft.fft(x), atol=1e-9)


def test_fft_rejects_non_power_of_two():
    with pytest.raises(ValueError):
        fft(np.ones(48))


def test_hann_window_is_symmetric_with_zero_endpoints():
    w = hann_window(64)
    assert w[0] == pytest.approx(0.0)
    assert w[-1] == pytest.approx(0.0)
    np.testing.assert_allclose(w, w[::-1], atol=1e-12)


def test_power_spectrum_is_one_sided():
    assert len(power_spectrum(np.ones(64))) == 32


def test_short_window_is_neutral(analyzer):
    result = analyzer.analyze(sine_window(5.0, n=15))
    assert result.is_tremor is False
    assert result.confidence == 0.0
    assert result.dominant_frequency_hz == 0.0
    assert result.total_power == 0.0


def test_non_finite_window_is_neutral(analyzer):
    window = sine_window(5.0)
    window[10] = math.nan
    result = analyzer.analyze(window)
    assert result.is_tremor is False
    assert result.confidence == 0.0


@pytest.mark.parametrize("frequency", [4.5, 5.0, 6.3, 7.0, 9.0, 11.0])
def test_sinusoid_recovered_within_one_bin(analyzer, frequency):
    result = analyzer.analyze(sine_window(frequency), is_resting=False)
    assert abs(result.dominant_frequency_hz - frequency) <= RESOLUTION


def test_resting_tremor_detected(analyzer):
    result = analyzer.analyze(sine_window(4.8), is_resting=True)
    assert result.is_tremor is True
    assert result.dominant_frequency_hz == pytest.approx(4.6875)
    assert result.total_power < 10.0
    assert result.band_ratio > 0.05
    assert result.confidence == pytest.approx(1.0)


def test_frequency_outside_resting_band_not_detected_at_rest(analyzer):
    result = analyzer.analyze(sine_window(9.0), is_resting=True)
    assert result.is_tremor is False
    assert 4.0 <= result.dominant_frequency_hz <= 6.0 or result.dominant_frequency_hz == 0.0


def test_low_frequency_movement_not_tremor(analyzer):
    result = analyzer.analyze(sine_window(1.5, amplitude=2.0), is_resting=False)
    assert result.is_tremor is False


def test_vigorous_movement_not_tremor(analyzer):
    t = np.arange(64) / SAMPLE_RATE
    window = 3.0 + 10.0 * np.sin(2 * np.pi * 1.0 * t) + 0.2 * np.sin(2 * np.pi * 5.0 * t)
    result = analyzer.analyze(window, is_resting=False)
    assert result.total_power > 50.0
    assert result.is_tremor is False


def test_long_window_truncated_to_power_of_two(analyzer):
    result = analyzer.analyze(sine_window(5.0, n=100), is_resting=True)
    assert result.is_tremor is True
    # 64-point resolution
    assert result.dominant_frequency_hz == pytest.approx(round(5.0 / RESOLUTION) * RESOLUTION)


def test_adaptive_thresholds_override_config(analyzer):
    strict = AdaptiveThresholds(severity_floor=0.05, min_band_ratio=0.9, confidence_threshold=0.3)
    assert analyzer.analyze(sine_window(4.8), True, strict).is_tremor is False

    lenient = AdaptiveThresholds(severity_floor=0.05, min_band_ratio=0.03, confidence_threshold=0.3)
    assert analyzer.analyze(sine_window(4.8), True, lenient).is_tremor is True


def test_config_swap_visible_on_next_call():
    holder = ConfigHolder(DetectionConfig())
    analyzer = SpectralAnalyzer(SAMPLE_RATE, holder)
    assert analyzer.analyze(sine_window(4.8), is_resting=True).is_tremor is True

    holder.set(DetectionConfig(resting_band_low_hz=8.0, resting_band_high_hz=12.0))
    assert analyzer.analyze(sine_window(4.8), is_resting=True).is_tremor is False


def test_general_band_ratio_floor_not_used_by_detection():
    default = SpectralAnalyzer(SAMPLE_RATE, ConfigHolder(DetectionConfig()))
    raised = SpectralAnalyzer(SAMPLE_RATE, ConfigHolder(DetectionConfig(min_band_ratio=0.9)))
    for is_resting in (True, False):
        assert raised.analyze(sine_window(4.8), is_resting) == default.analyze(sine_window(4.8), is_resting)


def test_confidence_bounded_for_random_windows(analyzer):
    rng = np.random.default_rng(42)
    for _ in range(200):
        n = int(rng.integers(16, 130))
        window = rng.normal(rng.uniform(0, 3), rng.uniform(0.01, 5), size=n)
        for is_resting in (True, False):
            result = analyzer.analyze(window, is_resting)
            assert 0.0 <= result.confidence <= 1.0
            assert result.total_power >= 0.0
            assert 0.0 <= result.band_ratio <= 1.0 + 1e-9


def test_huge_finite_window_is_neutral(analyzer):
    window = 1e200 * sine_window(4.8)
    for is_resting in (True, False):
        result = analyzer.analyze(window, is_resting)
        assert result.confidence == 0.0
        assert result.is_tremor is False
        assert math.isfinite(result.total_power)


def test_constant_window_has_no_tremor(analyzer):
    result = analyzer.analyze(np.full(64, 0.05))
    assert result.is_tremor is False
