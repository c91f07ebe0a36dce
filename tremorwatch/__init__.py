"""
Wrist tremor monitoring core.

Detects pathological tremor in wrist motion, scores its clinical severity,
labels its type, and adapts detection thresholds to the wearer's baseline.
"""

from .config import ConfigHolder, ConfigValidationError, DetectionConfig, PRESETS
from .monitor import TremorMonitoringEngine, create_mock_engine

__version__ = "0.1.0"

__all__ = [
    "ConfigHolder",
    "ConfigValidationError",
    "DetectionConfig",
    "PRESETS",
    "TremorMonitoringEngine",
    "create_mock_engine",
]
