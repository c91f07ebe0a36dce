import pytest

from tremorwatch.detection.classifier import (
    TremorType,
    classify,
    extract_features,
    get_clinical_interpretation,
    get_type_label,
)


def test_resting_tremor():
    result = classify(dominant_frequency=5.0, total_power=5.0, band_ratio=0.1, confidence=1.0)
    assert result.primary_type == TremorType.RESTING
    assert result.confidence == pytest.approx(0.82)
    assert result.secondary_type is None
    assert result.is_resting


def test_uncertain_resting_tremor_suggests_essential():
    result = classify(4.2, 5.0, 0.0, 0.0)
    assert result.primary_type == TremorType.RESTING
    assert result.confidence == pytest.approx(0.5)
    assert result.secondary_type == TremorType.ESSENTIAL


def test_physiological_tremor():
    result = classify(10.0, 20.0, 0.1, 0.8)
    assert result.primary_type == TremorType.PHYSIOLOGICAL
    assert result.confidence == 0.6


def test_essential_tremor():
    result = classify(6.5, 20.0, 0.2, 1.0)
    assert result.primary_type == TremorType.ESSENTIAL
    assert result.confidence == pytest.approx(0.8)
    assert result.secondary_type is None
    assert not result.is_resting

    low = classify(5.5, 20.0, 0.2, 1.0)
    assert low.secondary_type == TremorType.POSTURAL


def test_postural_tremor():
    result = classify(10.0, 20.0, 0.2, 0.8)
    assert result.primary_type == TremorType.POSTURAL
    assert result.confidence == pytest.approx(0.56)


def test_kinetic_tremor_from_power_or_accelerometer():
    by_power = classify(4.0, 60.0, 0.05, 0.8)
    assert by_power.primary_type == TremorType.KINETIC
    assert by_power.confidence == pytest.approx(0.64)

    by_accel = classify(4.0, 20.0, 0.05, 0.8, secondary_magnitude=3.0)
    assert by_accel.primary_type == TremorType.KINETIC


def test_mixed_tremor():
    result = classify(7.0, 5.0, 0.2, 0.9)
    assert result.primary_type == TremorType.MIXED
    assert result.confidence == 0.4


def test_unclassifiable_in_range():
    result = classify(3.5, 5.0, 0.2, 0.9)
    assert result.primary_type == TremorType.UNKNOWN
    assert result.confidence == 0.2


@pytest.mark.parametrize("frequency", [0.0, 2.9, 15.1, 25.0])
def test_out_of_range_frequency(frequency):
    result = classify(frequency, 5.0, 0.2, 0.9)
    assert result.primary_type == TremorType.UNKNOWN
    assert result.confidence == 0.0


def test_classification_is_deterministic():
    args = (5.2, 4.0, 0.3, 0.7, 0.1)
    assert classify(*args) == classify(*args)


def test_features():
    features = extract_features(5.0, 55.0, 0.1, 0.5)
    assert not features.is_resting
    assert features.is_high_activity


def test_labels():
    assert get_type_label(classify(5.0, 5.0, 0.1, 1.0)) == "Resting"
    assert get_type_label(classify(7.0, 5.0, 0.2, 0.9)) == "Mixed?"
    assert "5.0Hz" in get_clinical_interpretation(classify(5.0, 5.0, 0.1, 1.0))
    assert TremorType.ESSENTIAL.description
