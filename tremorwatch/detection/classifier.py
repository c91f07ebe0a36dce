"""
Rule-based tremor type classification.

Classifies a detected tremor from its dominant frequency, activity state
and signal quality:
- RESTING: at rest, 4-6 Hz
- PHYSIOLOGICAL: 8-12 Hz with a low band ratio
- ESSENTIAL: action tremor, 5-8 Hz while active
- POSTURAL: holding position, 4-12 Hz
- KINETIC: during vigorous movement, 3-12 Hz
- MIXED: at rest but at a higher-than-resting frequency
- UNKNOWN: anything else

Each rule is a pure function of a ClassificationFeatures tuple; the first
rule that matches wins.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, NamedTuple, Optional


RESTING_POWER_THRESHOLD = 10.0
HIGH_ACTIVITY_POWER_THRESHOLD = 50.0
HIGH_ACTIVITY_SECONDARY_MAGNITUDE = 2.0

MIN_TREMOR_FREQUENCY = 3.0
MAX_TREMOR_FREQUENCY = 15.0

HIGH_CONFIDENCE_THRESHOLD = 0.7
MEDIUM_CONFIDENCE_THRESHOLD = 0.5


class TremorType(Enum):
    RESTING = "resting"
    POSTURAL = "postural"
    KINETIC = "kinetic"
    ESSENTIAL = "essential"
    PHYSIOLOGICAL = "physiological"
    MIXED = "mixed"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    TremorType.RESTING: "Present at rest, typical of resting tremor (4-6 Hz)",
    TremorType.POSTURAL: "Present when holding position (4-12 Hz)",
    TremorType.KINETIC: "Present during movement",
    TremorType.ESSENTIAL: "Action tremor, often bilateral (5-8 Hz)",
    TremorType.PHYSIOLOGICAL: "Normal enhanced tremor (8-12 Hz)",
    TremorType.MIXED: "Features of multiple tremor types",
    TremorType.UNKNOWN: "Insufficient data for classification",
}


class ClassificationFeatures(NamedTuple):
    frequency: float
    total_power: float
    band_ratio: float
    confidence: float
    is_resting: bool
    is_high_activity: bool


@dataclass(frozen=True)
class ClassificationResult:
    primary_type: TremorType
    confidence: float                       # 0-1
    secondary_type: Optional[TremorType]    # plausible alternative
    frequency_hz: float
    is_resting: bool
    reasoning: str


def extract_features(
    dominant_frequency: float,
    total_power: float,
    band_ratio: float,
    confidence: float,
    secondary_magnitude: float = 0.0,
) -> ClassificationFeatures:
    return ClassificationFeatures(
        frequency=dominant_frequency,
        total_power=total_power,
        band_ratio=band_ratio,
        confidence=confidence,
        is_resting=total_power < RESTING_POWER_THRESHOLD,
        is_high_activity=(
            total_power > HIGH_ACTIVITY_POWER_THRESHOLD
            or secondary_magnitude > HIGH_ACTIVITY_SECONDARY_MAGNITUDE
        ),
    )


def classify(
    dominant_frequency: float,
    total_power: float,
    band_ratio: float,
    confidence: float,
    secondary_magnitude: float = 0.0,
) -> ClassificationResult:
    """
    Classify a detected tremor.

    Args:
        dominant_frequency: Dominant frequency from spectral analysis (Hz)
        total_power: Total spectral power (activity level)
        band_ratio: Fraction of power in the tremor band
        confidence: Detection confidence (0-1)
        secondary_magnitude: Accelerometer magnitude, for activity detection

    Returns:
        ClassificationResult; deterministic for identical inputs
    """
    features = extract_features(dominant_frequency, total_power, band_ratio, confidence, secondary_magnitude)

    if not MIN_TREMOR_FREQUENCY <= features.frequency <= MAX_TREMOR_FREQUENCY:
        return ClassificationResult(
            primary_type=TremorType.UNKNOWN,
            confidence=0.0,
            secondary_type=None,
            frequency_hz=features.frequency,
            is_resting=features.is_resting,
            reasoning=f"Frequency {features.frequency}Hz outside tremor range (3-15 Hz)",
        )

    for rule in RULES:
        result = rule(features)
        if result is not None:
            return result
    return _unknown(features)


# ---------------------------------------------------------------------
# RULES
# ---------------------------------------------------------------------

def _resting(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if not (f.is_resting and 4.0 <= f.frequency <= 6.0):
        return None

    confidence = _resting_confidence(f)
    return ClassificationResult(
        primary_type=TremorType.RESTING,
        confidence=confidence,
        secondary_type=TremorType.ESSENTIAL if confidence < HIGH_CONFIDENCE_THRESHOLD else None,
        frequency_hz=f.frequency,
        is_resting=True,
        reasoning=f"Resting tremor at {f.frequency:.1f}Hz - consistent with resting pattern",
    )


def _physiological(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if not (8.0 <= f.frequency <= 12.0 and f.band_ratio < 0.15):
        return None

    return ClassificationResult(
        primary_type=TremorType.PHYSIOLOGICAL,
        confidence=0.6,
        secondary_type=TremorType.ESSENTIAL,
        frequency_hz=f.frequency,
        is_resting=f.is_resting,
        reasoning=f"High frequency ({f.frequency:.1f}Hz) with low band ratio - likely physiological",
    )


def _essential(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if f.is_resting or not 5.0 <= f.frequency <= 8.0:
        return None

    return ClassificationResult(
        primary_type=TremorType.ESSENTIAL,
        confidence=_essential_confidence(f),
        secondary_type=TremorType.POSTURAL if f.frequency <= 6.0 else None,
        frequency_hz=f.frequency,
        is_resting=False,
        reasoning=f"Action tremor at {f.frequency:.1f}Hz - consistent with action tremor",
    )


def _postural(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if f.is_resting or f.is_high_activity or not 4.0 <= f.frequency <= 12.0:
        return None

    return ClassificationResult(
        primary_type=TremorType.POSTURAL,
        confidence=_clamp(0.5 + f.band_ratio * 0.3),
        secondary_type=TremorType.ESSENTIAL,
        frequency_hz=f.frequency,
        is_resting=False,
        reasoning=f"Tremor during postural hold at {f.frequency:.1f}Hz",
    )


def _kinetic(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if not (f.is_high_activity and 3.0 <= f.frequency <= 12.0):
        return None

    return ClassificationResult(
        primary_type=TremorType.KINETIC,
        confidence=_clamp(0.4 + f.confidence * 0.3),
        secondary_type=TremorType.ESSENTIAL,
        frequency_hz=f.frequency,
        is_resting=False,
        reasoning=f"Tremor during active movement at {f.frequency:.1f}Hz",
    )


def _mixed(f: ClassificationFeatures) -> Optional[ClassificationResult]:
    if not (f.is_resting and 6.0 <= f.frequency <= 12.0):
        return None

    return ClassificationResult(
        primary_type=TremorType.MIXED,
        confidence=0.4,
        secondary_type=TremorType.ESSENTIAL,
        frequency_hz=f.frequency,
        is_resting=True,
        reasoning=f"Resting tremor at {f.frequency:.1f}Hz - atypical frequency for pure resting",
    )


def _unknown(f: ClassificationFeatures) -> ClassificationResult:
    return ClassificationResult(
        primary_type=TremorType.UNKNOWN,
        confidence=0.2,
        secondary_type=None,
        frequency_hz=f.frequency,
        is_resting=f.is_resting,
        reasoning=f"Unable to classify: freq={f.frequency:.1f}Hz, resting={f.is_resting}",
    )


RULES: List[Callable[[ClassificationFeatures], Optional[ClassificationResult]]] = [
    _resting,
    _physiological,
    _essential,
    _postural,
    _kinetic,
    _mixed,
]


# ---------------------------------------------------------------------
# CONFIDENCE
# ---------------------------------------------------------------------

def _resting_confidence(f: ClassificationFeatures) -> float:
    confidence = 0.0

    # 4.5-5.5 Hz is the classic resting range
    if 4.5 <= f.frequency <= 5.5:
        confidence += 0.35
    elif 4.0 <= f.frequency <= 6.0:
        confidence += 0.25
    else:
        confidence += 0.1

    if f.is_resting:
        confidence += 0.25

    confidence += min(f.band_ratio * 0.2, 0.2)
    confidence += f.confidence * 0.2

    return _clamp(confidence)


def _essential_confidence(f: ClassificationFeatures) -> float:
    confidence = 0.0

    if 5.0 <= f.frequency <= 8.0:
        confidence += 0.3
    elif 4.0 <= f.frequency <= 12.0:
        confidence += 0.2
    else:
        confidence += 0.1

    # Action tremor is not present at rest
    if not f.is_resting:
        confidence += 0.25

    confidence += min(f.band_ratio * 0.25, 0.25)
    confidence += f.confidence * 0.2

    return _clamp(confidence)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


# ---------------------------------------------------------------------
# DISPLAY
# ---------------------------------------------------------------------

def get_type_label(result: ClassificationResult) -> str:
    """Short label; uncertain classifications are marked with '?'."""
    if result.confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
        return result.primary_type.display_name
    return f"{result.primary_type.display_name}?"


def get_clinical_interpretation(result: ClassificationResult) -> str:
    freq = f"{result.frequency_hz:.1f}"
    interpretations = {
        TremorType.RESTING: (
            f"Resting tremor at {freq}Hz. This pattern is characteristic of resting tremor. "
            "Track if it diminishes during voluntary movement."
        ),
        TremorType.ESSENTIAL: (
            f"Action tremor at {freq}Hz. This pattern is consistent with action tremor. "
            "Often bilateral and may worsen with stress or caffeine."
        ),
        TremorType.POSTURAL: (
            "Postural tremor detected while holding position. "
            "Common in action tremor and enhanced physiological tremor."
        ),
        TremorType.KINETIC: (
            "Tremor detected during movement. "
            "May indicate cerebellar involvement or action tremor component."
        ),
        TremorType.PHYSIOLOGICAL: (
            f"High-frequency tremor ({freq}Hz) with low intensity. Likely enhanced physiological tremor. "
            "Often related to fatigue, anxiety, or caffeine."
        ),
        TremorType.MIXED: (
            "Tremor with mixed characteristics. Pattern doesn't fit a single tremor type clearly."
        ),
        TremorType.UNKNOWN: (
            "Unable to classify this tremor pattern. May need more data or clearer signal."
        ),
    }
    return interpretations[result.primary_type]
