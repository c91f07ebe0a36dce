import json

import pytest

from tremorwatch.config import (
    PRESETS,
    ConfigHolder,
    ConfigValidationError,
    DetectionConfig,
    validate_json,
)


def test_default_config_is_valid():
    config = DetectionConfig()
    assert config.profile_name == "Default"
    assert sum(config.confidence_weights.values()) == pytest.approx(1.0)
    assert config.band_for(True) == (4.0, 6.0)
    assert config.band_for(False) == (4.0, 12.0)


@pytest.mark.parametrize("name", sorted(PRESETS))
def test_presets_are_valid(name):
    preset = PRESETS[name]
    assert isinstance(preset, DetectionConfig)
    assert DetectionConfig.from_json(preset.to_json()) == preset


@pytest.mark.parametrize("changes", [
    {"profile_name": "  "},
    {"version": 0},
    {"resting_band_low_hz": 6.0, "resting_band_high_hz": 6.0},
    {"active_band_low_hz": 0.0},
    {"active_band_high_hz": 25.0},
    {"min_frequency_hz": 0.0},
    {"min_tremor_power": -0.1},
    {"min_band_ratio": 1.5},
    {"severity_floor": -1.0},
    {"high_energy_severity_threshold": 0.0},
    {"min_episode_duration_samples": 0},
    {"max_gap_samples": -1},
    {"confidence_threshold": 1.2},
    {"band_ratio_weight": 0.5},
    {"high_activity_threshold": 0.1},
])
def test_invalid_values_rejected(changes):
    with pytest.raises(ConfigValidationError):
        DetectionConfig(**changes)


def test_replace_validates():
    config = DetectionConfig()
    assert config.replace(max_gap_samples=0).max_gap_samples == 0
    with pytest.raises(ConfigValidationError):
        config.replace(activity_weight=0.9)


def test_weights_may_be_rebalanced():
    config = DetectionConfig(band_ratio_weight=0.4, activity_weight=0.2)
    assert sum(config.confidence_weights.values()) == pytest.approx(1.0)


def test_json_round_trip():
    config = DetectionConfig(profile_name="Evening", max_gap_samples=4, confidence_threshold=0.4)
    assert DetectionConfig.from_json(config.to_json()) == config


def test_unknown_keys_ignored():
    data = DetectionConfig().to_dict()
    data["legacy_field"] = 12
    assert DetectionConfig.from_json(json.dumps(data)) == DetectionConfig()


def test_older_version_migrated():
    data = DetectionConfig(profile_name="Old").to_dict()
    data["version"] = 7
    config = DetectionConfig.from_dict(data)
    assert config.version == 1
    assert config.profile_name == "Old"


@pytest.mark.parametrize("text", ["", "   ", "{not json", "[1, 2]", "x" * 100_000])
def test_from_json_rejects_bad_input(text):
    with pytest.raises(ConfigValidationError):
        DetectionConfig.from_json(text)


def test_from_json_rejects_wrong_field_types():
    with pytest.raises(ConfigValidationError):
        DetectionConfig.from_json('{"min_episode_duration_samples": "three"}')


@pytest.mark.parametrize("name", [5, None, ["Default"]])
def test_non_string_profile_name_rejected(name):
    text = json.dumps({"profile_name": name})
    with pytest.raises(ConfigValidationError):
        DetectionConfig.from_json(text)
    assert not validate_json(text)


def test_validate_json():
    assert validate_json(DetectionConfig().to_json())
    assert not validate_json('{"max_gap_samples": -3}')
    assert not validate_json("")


def test_holder_swap_returns_previous():
    holder = ConfigHolder()
    first = holder.get()
    strict = PRESETS["Strict"]

    previous = holder.set(strict)

    assert previous is first
    assert holder.get() is strict


def test_holder_rejects_non_config():
    holder = ConfigHolder()
    with pytest.raises(ConfigValidationError):
        holder.set({"profile_name": "Default"})
    assert holder.get() == DetectionConfig()
