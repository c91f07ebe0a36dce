"""Data models, sources and persistence layer."""

from .models import (
    SensorType,
    MotionSample,
    SensorReading,
    SpectralResult,
    TremorRecord,
)
from .source import DataSource, MockDataSource, AnalysisWindow
from .records import RecordBatch, SessionSummary
from .storage import BaselineSnapshot, BaselineStore, InMemoryBaselineStore, JsonFileBaselineStore

__all__ = [
    "SensorType",
    "MotionSample",
    "SensorReading",
    "SpectralResult",
    "TremorRecord",
    "DataSource",
    "MockDataSource",
    "AnalysisWindow",
    "RecordBatch",
    "SessionSummary",
    "BaselineSnapshot",
    "BaselineStore",
    "InMemoryBaselineStore",
    "JsonFileBaselineStore",
]
