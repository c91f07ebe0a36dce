import math

import numpy as np
import pytest

from tremorwatch.detection.severity import (
    SeverityLevel,
    calculate_severity,
    classify_severity,
    normalized_severity,
)


def test_reference_score():
    score = calculate_severity(0.28, 5.0, 0.2, 1.0)
    assert score == pytest.approx(2 * math.log(3.8) * 1.5 * 1.5)


def test_below_minimum_magnitude_is_zero():
    assert calculate_severity(0.01, 5.0, 0.3, 1.0) == 0.0
    assert calculate_severity(0.0, 5.0, 0.3, 1.0, episode_duration=20.0) == 0.0


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
def test_non_finite_input_is_zero(bad):
    assert calculate_severity(bad, 5.0, 0.2, 1.0) == 0.0
    assert calculate_severity(0.5, bad, 0.2, 1.0) == 0.0
    assert calculate_severity(0.5, 5.0, 0.2, 1.0, baseline_multiplier=bad) == 0.0


def test_low_confidence_gated_not_zeroed():
    full = calculate_severity(0.5, 5.0, 0.2, 1.0)
    low = calculate_severity(0.5, 5.0, 0.2, 0.0)
    assert low == pytest.approx(full * 0.3)


def test_sustained_episode_scores_higher():
    brief = calculate_severity(0.28, 5.0, 0.2, 1.0, episode_duration=1.0)
    moderate = calculate_severity(0.28, 5.0, 0.2, 1.0, episode_duration=6.0)
    sustained = calculate_severity(0.28, 5.0, 0.2, 1.0, episode_duration=12.0)
    assert brief < moderate < sustained


def test_resting_frequency_weighted_above_physiological():
    assert calculate_severity(0.5, 5.0, 0.2, 1.0) > calculate_severity(0.5, 10.0, 0.2, 1.0)
    assert calculate_severity(0.5, 10.0, 0.2, 1.0) > calculate_severity(0.5, 1.0, 0.2, 1.0)


def test_baseline_boost():
    plain = calculate_severity(0.28, 5.0, 0.2, 1.0)
    assert plain * 1.3 < 10.0
    assert calculate_severity(0.28, 5.0, 0.2, 1.0, baseline_multiplier=3.5) == pytest.approx(plain * 1.3)
    assert calculate_severity(0.28, 5.0, 0.2, 1.0, baseline_multiplier=2.5) == pytest.approx(plain * 1.15)


def test_score_bounded():
    rng = np.random.default_rng(3)
    for _ in range(500):
        score = calculate_severity(
            magnitude=float(rng.uniform(0, 50)),
            dominant_frequency=float(rng.uniform(0, 20)),
            band_ratio=float(rng.uniform(0, 1)),
            confidence=float(rng.uniform(0, 1)),
            episode_duration=float(rng.uniform(0, 30)),
            baseline_multiplier=float(rng.uniform(0, 10)),
        )
        assert 0.0 <= score <= 10.0
    assert calculate_severity(1e9, 5.0, 1.0, 1.0, 60.0, 10.0) == 10.0


@pytest.mark.parametrize("score,level", [
    (0.0, SeverityLevel.NONE),
    (0.49, SeverityLevel.NONE),
    (0.5, SeverityLevel.MINIMAL),
    (1.5, SeverityLevel.MILD),
    (3.0, SeverityLevel.MODERATE),
    (5.0, SeverityLevel.MODERATE_SEVERE),
    (7.0, SeverityLevel.SEVERE),
    (10.0, SeverityLevel.SEVERE),
    (math.nan, SeverityLevel.NONE),
])
def test_classify_severity(score, level):
    assert classify_severity(score) == level


def test_level_metadata():
    assert SeverityLevel.MODERATE_SEVERE.display_name == "Moderate-Severe"
    assert SeverityLevel.MILD.min_value == 1.5
    assert SeverityLevel.MILD.max_value == 3.0


def test_normalized_severity():
    assert normalized_severity(5.0) == 0.5
    assert normalized_severity(12.0) == 1.0
    assert normalized_severity(-1.0) == 0.0
    assert normalized_severity(math.nan) == 0.0
