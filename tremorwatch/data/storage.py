"""
Baseline persistence.

Stores per-activity-state baseline statistics plus the calibration flag so a
personal baseline survives restarts. The tracker only depends on the
BaselineStore interface; the JSON file store is the default durable backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional, Union
import json
import logging
import math


LOGGER = logging.getLogger(__name__)


@dataclass
class BaselineSnapshot:
    """
    Persisted baseline layout.

    One block of statistics per activity state, plus calibration status.
    """
    # === Resting State ===
    resting_magnitude: float
    resting_band_ratio: float
    resting_total_power: float
    resting_magnitude_variance: float
    resting_sample_count: int

    # === Active State ===
    active_magnitude: float
    active_band_ratio: float
    active_total_power: float
    active_magnitude_variance: float
    active_sample_count: int

    # === Calibration ===
    calibration_complete: bool = False
    calibration_timestamp_ms: int = 0   # epoch ms, 0 if never calibrated
    last_update_ms: int = 0

    def __post_init__(self):
        # Coerce numbers to the declared type, reject anything else
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is bool:
                if not isinstance(value, bool):
                    raise ValueError(f"{f.name} must be a boolean, got {value!r}")
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{f.name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ValueError(f"{f.name} must be finite, got {value!r}")
            if f.type is int:
                if value != int(value):
                    raise ValueError(f"{f.name} must be a whole number, got {value!r}")
                value = int(value)
            else:
                value = float(value)
            setattr(self, f.name, value)

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "BaselineSnapshot":
        """Deserialize from JSON string."""
        return cls(**json.loads(json_str))


class BaselineStore(ABC):
    """Interface for durable baseline storage."""

    @abstractmethod
    def load(self) -> Optional[BaselineSnapshot]:
        """Return the stored snapshot, or None when nothing was saved."""
        pass

    @abstractmethod
    def save(self, snapshot: BaselineSnapshot) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryBaselineStore(BaselineStore):
    """Volatile store, used when no durable location is configured."""

    def __init__(self, snapshot: Optional[BaselineSnapshot] = None):
        self._snapshot = snapshot
        self.save_count = 0

    def load(self) -> Optional[BaselineSnapshot]:
        return self._snapshot

    def save(self, snapshot: BaselineSnapshot) -> None:
        self._snapshot = snapshot
        self.save_count += 1

    def clear(self) -> None:
        self._snapshot = None


class JsonFileBaselineStore(BaselineStore):
    """
    Baseline store backed by a single JSON file.

    Writes go to a temporary sibling file that is then renamed over the
    target, so a crash mid-write leaves the previous snapshot intact.
    """

    def __init__(self, path: Union[Path, str]):
        self.path = Path(path)

    def load(self) -> Optional[BaselineSnapshot]:
        if not self.path.exists():
            return None
        try:
            return BaselineSnapshot.from_json(self.path.read_text())
        except (ValueError, TypeError) as e:
            LOGGER.warning("Ignoring unreadable baseline file %s: %s", self.path, e)
            return None

    def save(self, snapshot: BaselineSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(snapshot.to_json())
        tmp_path.replace(self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
