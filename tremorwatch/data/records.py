"""
Record batches, session summaries and tabular export.

Emitted TremorRecords are handed to downstream consumers in batches;
session summaries aggregate a list of records the way a daily report
would, and pandas provides flat-file export.
"""

from collections import Counter
from dataclasses import dataclass, asdict, field, fields
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union
import json

import pandas as pd

from .models import TremorRecord


RECORD_COLUMNS = [f.name for f in fields(TremorRecord)]


@dataclass
class RecordBatch:
    """
    Group of records handed off together.

    A batch is the unit of transfer to external consumers (upload queue,
    local storage).
    """
    batch_id: str
    created_ms: int                         # epoch milliseconds
    records: List[TremorRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def to_json(self, path: Optional[Union[Path, str]] = None) -> str:
        """
        Serialize to JSON.

        Args:
            path: If provided, write to file. Otherwise return string.
        """
        data = {
            "batch_id": self.batch_id,
            "created_ms": self.created_ms,
            "records": [r.to_dict() for r in self.records],
        }
        json_str = json.dumps(data, indent=2)

        if path:
            Path(path).write_text(json_str)

        return json_str

    @classmethod
    def from_json(cls, json_str: str) -> "RecordBatch":
        """Deserialize from JSON string."""
        data = json.loads(json_str)
        return cls(
            batch_id=data["batch_id"],
            created_ms=data["created_ms"],
            records=[TremorRecord.from_dict(r) for r in data.get("records", [])],
        )


@dataclass
class SessionSummary:
    """
    Summary statistics over a run of records.
    """
    # === Coverage ===
    start_ms: int
    end_ms: int
    duration_seconds: float
    total_samples: int

    # === Detection ===
    tremor_samples: int = 0
    tremor_fraction: float = 0.0
    episode_count: int = 0

    # === Severity ===
    mean_severity: float = 0.0              # over tremor samples
    max_severity: float = 0.0

    # === Classification ===
    dominant_type: Optional[str] = None
    mean_frequency: float = 0.0             # Hz, over tremor samples

    def to_json(self, path: Optional[Union[Path, str]] = None) -> str:
        """Serialize to JSON."""
        json_str = json.dumps(asdict(self), indent=2)

        if path:
            Path(path).write_text(json_str)

        return json_str

    @classmethod
    def from_records(cls, records: List[TremorRecord]) -> "SessionSummary":
        """
        Create a summary from a list of records.

        Args:
            records: Records in emission order

        Returns:
            SessionSummary with computed statistics
        """
        if not records:
            raise ValueError("Cannot create summary from empty records")

        tremor = [r for r in records if r.is_tremor]

        # Episodes: rising edges of the in_episode flag
        episodes = 0
        previous = False
        for r in records:
            if r.in_episode and not previous:
                episodes += 1
            previous = r.in_episode

        severities = [r.severity for r in tremor]
        types = Counter(r.tremor_type for r in tremor if r.tremor_type != "none")
        frequencies = [r.dominant_frequency for r in tremor if r.dominant_frequency > 0]

        return cls(
            start_ms=records[0].wall_clock_ms,
            end_ms=records[-1].wall_clock_ms,
            duration_seconds=(records[-1].timestamp_ns - records[0].timestamp_ns) / 1e9,
            total_samples=len(records),
            tremor_samples=len(tremor),
            tremor_fraction=len(tremor) / len(records),
            episode_count=episodes,
            mean_severity=sum(severities) / len(severities) if severities else 0.0,
            max_severity=max(severities) if severities else 0.0,
            dominant_type=types.most_common(1)[0][0] if types else None,
            mean_frequency=sum(frequencies) / len(frequencies) if frequencies else 0.0,
        )


def create_batch_id(timestamp_ms: int) -> str:
    """Create unique ID for a record batch from an epoch-ms timestamp."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000)
    return f"batch_{dt.strftime('%Y%m%d_%H%M%S')}_{timestamp_ms % 1000:03d}"


def records_to_dataframe(records: List[TremorRecord]) -> pd.DataFrame:
    """One row per record, one column per record field."""
    return pd.DataFrame([r.to_dict() for r in records], columns=RECORD_COLUMNS)


def export_csv(records: List[TremorRecord], path: Union[Path, str]) -> Path:
    """
    Write records to a CSV file.

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    records_to_dataframe(records).to_csv(path, index=False)
    return path
