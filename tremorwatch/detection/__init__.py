"""Spectral analysis, baselining, severity scoring and classification."""

from .spectral import SpectralAnalyzer, AdaptiveThresholds, fft, hann_window
from .baseline import BaselineTracker, BaselineStats, BaselineEvaluation
from .severity import SeverityLevel, calculate_severity, classify_severity, normalized_severity
from .classifier import TremorType, ClassificationResult, classify, get_type_label, get_clinical_interpretation

__all__ = [
    "SpectralAnalyzer",
    "AdaptiveThresholds",
    "fft",
    "hann_window",
    "BaselineTracker",
    "BaselineStats",
    "BaselineEvaluation",
    "SeverityLevel",
    "calculate_severity",
    "classify_severity",
    "normalized_severity",
    "TremorType",
    "ClassificationResult",
    "classify",
    "get_type_label",
    "get_clinical_interpretation",
]
