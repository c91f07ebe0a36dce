"""
Event Logging Module
Structured logging of tremor monitoring events (episodes, calibration, config)
"""

import json
import logging
import os
from collections import deque
from datetime import datetime, date
from typing import Dict, List, Optional
from enum import Enum

import numpy as np


LOGGER = logging.getLogger(__name__)


class EventType(Enum):
    """Event type classifications"""
    EPISODE_STARTED = "episode_started"
    EPISODE_ENDED = "episode_ended"
    CALIBRATION_STARTED = "calibration_started"
    CALIBRATION_COMPLETED = "calibration_completed"
    CALIBRATION_FAILED = "calibration_failed"
    CONFIG_UPDATED = "config_updated"
    BASELINE_SAVED = "baseline_saved"
    SYSTEM_ALERT = "system_alert"


def _empty_daily_metrics() -> Dict:
    return {
        'date': date.today().isoformat(),
        'episodes': {
            'count': 0,
            'total_duration': 0.0,
            'max_severity': 0.0,
            'severities': [],
            'types': {}
        },
        'calibrations': {
            'completed': 0,
            'failed': 0
        },
        'system_alerts': {
            'count': 0,
            'types': {}
        }
    }


class EventLogger:
    """
    Manages event logging with JSON output and aggregation

    Features:
    - Per-event JSON records (when a log directory is given)
    - Daily aggregation
    - In-memory event buffer
    """

    def __init__(self, log_directory: Optional[str] = None, buffer_size: int = 100):
        """
        Initialize event logger

        Args:
            log_directory: Directory for JSON log files (None keeps events in memory only)
            buffer_size: Number of recent events to keep in memory
        """
        self.log_directory = log_directory
        self.buffer_size = buffer_size

        if log_directory is not None:
            os.makedirs(log_directory, exist_ok=True)

        self.event_buffer = deque(maxlen=buffer_size)
        self.daily_metrics = _empty_daily_metrics()
        self.event_counter = 0
        self.current_date = date.today()

    def log_episode_started(self, timestamp: float, confidence: float, **kwargs) -> Dict:
        """
        Log the start of a tremor episode

        Args:
            timestamp: Epoch seconds
            confidence: Smoothed detection confidence at start
        """
        event = self._build_event(EventType.EPISODE_STARTED, timestamp)
        event['detection'] = {'confidence': round(confidence, 3)}
        event['additional_data'] = kwargs

        self._add_event(event)
        return event

    def log_episode_ended(self,
                          timestamp: float,
                          duration: float,
                          sample_count: int,
                          max_severity: float = 0.0,
                          tremor_type: Optional[str] = None,
                          **kwargs) -> Dict:
        """
        Log the end of a tremor episode

        Args:
            timestamp: Epoch seconds
            duration: Episode duration (seconds)
            sample_count: Tremor samples in the episode
            max_severity: Highest severity scored during the episode
            tremor_type: Dominant tremor type of the episode

        Returns:
            Event record dictionary
        """
        event = self._build_event(EventType.EPISODE_ENDED, timestamp)
        event['episode'] = {
            'duration': round(duration, 2),
            'sample_count': sample_count,
            'max_severity': round(max_severity, 2),
            'tremor_type': tremor_type
        }
        event['additional_data'] = kwargs

        self._add_event(event)
        self._update_episode_metrics(duration, max_severity, tremor_type)
        return event

    def log_calibration(self,
                        timestamp: float,
                        success: bool,
                        baseline_magnitude: float = 0.0,
                        baseline_variance: float = 0.0,
                        **kwargs) -> Dict:
        """Log a finished calibration session"""
        event_type = EventType.CALIBRATION_COMPLETED if success else EventType.CALIBRATION_FAILED
        event = self._build_event(event_type, timestamp)
        event['calibration'] = {
            'success': success,
            'baseline_magnitude': round(baseline_magnitude, 4),
            'baseline_variance': round(baseline_variance, 6)
        }
        event['additional_data'] = kwargs

        self._add_event(event)
        if success:
            self.daily_metrics['calibrations']['completed'] += 1
        else:
            self.daily_metrics['calibrations']['failed'] += 1
        return event

    def log_system_alert(self, timestamp: float, alert_type: str, level: str, message: str, **kwargs) -> Dict:
        """
        Log a pipeline health alert (dropped records, sensor clock faults)

        Args:
            timestamp: Epoch seconds
            alert_type: Short machine-readable key, e.g. 'buffer_overflow'
            level: 'info', 'warning' or 'error'
            message: Human-readable description
        """
        event = self._build_event(EventType.SYSTEM_ALERT, timestamp)
        event['alert'] = {'type': alert_type, 'level': level, 'message': message}
        event['additional_data'] = kwargs

        self._add_event(event)
        alerts = self.daily_metrics['system_alerts']
        alerts['count'] += 1
        alerts['types'][alert_type] = alerts['types'].get(alert_type, 0) + 1
        return event

    def log_event(self, event_type: EventType, timestamp: float, **kwargs) -> Dict:
        """
        Log a generic event by type

        Args:
            event_type: EventType enum value
            timestamp: Event timestamp
            **kwargs: Additional event-specific data

        Returns:
            Event record dictionary
        """
        event = self._build_event(event_type, timestamp)
        event['data'] = kwargs

        self._add_event(event)
        return event

    def _build_event(self, event_type: EventType, timestamp: float) -> Dict:
        return {
            'event_id': self._get_next_id(),
            'event_type': event_type.value,
            'timestamp': timestamp,
            'datetime': datetime.fromtimestamp(timestamp).isoformat()
        }

    def _add_event(self, event: Dict) -> None:
        self._check_daily_reset()
        self.event_buffer.append(event)

        if self.log_directory is not None:
            self._save_event_to_disk(event)

    def _save_event_to_disk(self, event: Dict) -> None:
        timestamp = datetime.fromtimestamp(event['timestamp'])
        filename = f"{timestamp.strftime('%Y%m%d_%H%M%S')}_{event['event_id']}_{event['event_type']}.json"
        filepath = os.path.join(self.log_directory, filename)

        try:
            with open(filepath, 'w') as f:
                json.dump(event, f, indent=2)
        except (OSError, TypeError) as e:
            LOGGER.error("Error saving event to disk: %s", e)

    def _get_next_id(self) -> int:
        self.event_counter += 1
        return self.event_counter

    def _check_daily_reset(self) -> None:
        """Roll daily metrics over at midnight"""
        today = date.today()

        if today != self.current_date:
            self.save_daily_metrics()
            self.daily_metrics = _empty_daily_metrics()
            self.current_date = today

    def save_daily_metrics(self) -> Optional[str]:
        """
        Save daily metrics to disk

        Returns:
            Path of the written file, or None without a log directory
        """
        if self.log_directory is None:
            return None

        filename = f"daily_metrics_{self.daily_metrics['date']}.json"
        filepath = os.path.join(self.log_directory, filename)
        metrics = self.get_daily_metrics()
        del metrics['episodes']['severities']  # Don't save full list

        try:
            with open(filepath, 'w') as f:
                json.dump(metrics, f, indent=2)
        except OSError as e:
            LOGGER.error("Error saving daily metrics: %s", e)
            return None
        return filepath

    def _update_episode_metrics(self, duration: float, max_severity: float, tremor_type: Optional[str]) -> None:
        episodes = self.daily_metrics['episodes']
        episodes['count'] += 1
        episodes['total_duration'] += duration
        episodes['max_severity'] = max(episodes['max_severity'], max_severity)
        episodes['severities'].append(max_severity)

        if tremor_type:
            episodes['types'][tremor_type] = episodes['types'].get(tremor_type, 0) + 1

    def get_recent_events(self, n: int = 10, event_type: Optional[EventType] = None) -> List[Dict]:
        """The newest n buffered events, oldest first, optionally of one type"""
        wanted = event_type.value if event_type else None
        events = [e for e in self.event_buffer if wanted is None or e['event_type'] == wanted]
        return events[-n:]

    def get_daily_metrics(self) -> Dict:
        """
        Get current daily metrics

        Returns:
            Dictionary of daily aggregated metrics
        """
        metrics = json.loads(json.dumps(self.daily_metrics))

        severities = metrics['episodes']['severities']
        metrics['episodes']['avg_severity'] = float(np.mean(severities)) if severities else 0.0

        return metrics

    def clear_buffer(self) -> None:
        """Clear in-memory event buffer"""
        self.event_buffer.clear()
