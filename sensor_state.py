"""
In-memory state behind the sensor dashboard.

- SnapshotStore keeps the latest full sensor reading (cards read from it)
- RollingWindow keeps the last N (timestamp, value) points of the charted metric
- MetricSelector holds the charted metric and clears the window on every selection
- Derivation turns each new snapshot into the corrected value for chart and card

Everything here is mutated from a single thread (the Streamlit script run), one
snapshot at a time, so no locking is done.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, NamedTuple, Optional, Tuple

import pandas as pd

import dashboard_config as cfg

# ----------------------------- Metrics ----------------------------- #

# Picker order
METRICS: Tuple[str, ...] = ("temp", "humidity", "pressure", "altitude", "x", "y", "z")

METRIC_LABELS: Dict[str, str] = {
    "temp": "Temperature (°C)",
    "humidity": "Humidity (%)",
    "pressure": "Pressure (Pa)",
    "x": "X Acceleration (m/s²)",
    "y": "Y Acceleration (m/s²)",
    "z": "Z Acceleration (m/s²)",
    "altitude": "Altitude (m)",
}

METRIC_OPTIONS: Dict[str, str] = {
    "temp": "Temperature",
    "humidity": "Humidity",
    "pressure": "Pressure",
    "altitude": "Altitude",
    "x": "X Acceleration",
    "y": "Y Acceleration",
    "z": "Z Acceleration",
}

# (card title, metric, unit) in display order
CARD_LAYOUT: Tuple[Tuple[str, str, str], ...] = (
    ("Temperature", "temp", "°C"),
    ("Humidity", "humidity", "%"),
    ("Air Pressure", "pressure", "Pa"),
    ("X-axis", "x", "m/s²"),
    ("Y-axis", "y", "m/s²"),
    ("Z-axis", "z", "m/s²"),
    ("Altitude", "altitude", "m"),
)

Snapshot = Dict[str, Any]


class InvalidMetricError(ValueError):
    """Raised when a metric id outside METRICS is selected."""


class MissingMetricError(KeyError):
    """Raised when a pushed snapshot lacks the field of the active metric."""


def default_snapshot() -> Snapshot:
    return {metric: 0 for metric in METRICS}


def corrected_value(metric: str, raw: Any) -> Any:
    """Apply the display correction; only altitude is offset."""
    if metric == "altitude":
        return raw + cfg.ALTITUDE_OFFSET_M
    return raw


def now_local() -> datetime:
    return datetime.now(timezone.utc).astimezone()


# ----------------------------- Snapshot store ----------------------------- #

class SnapshotStore:
    """Holds the most recent full snapshot; every set replaces it wholesale."""

    def __init__(self) -> None:
        self._snapshot: Optional[Snapshot] = None

    def set(self, snapshot: Mapping[str, Any]) -> None:
        self._snapshot = dict(snapshot)

    def get(self) -> Snapshot:
        if self._snapshot is None:
            return default_snapshot()
        return dict(self._snapshot)

    @property
    def has_data(self) -> bool:
        return self._snapshot is not None

    def value(self, metric: str) -> Any:
        """Raw value of ``metric``; absent fields read as 0."""
        if self._snapshot is None:
            return 0
        return self._snapshot.get(metric, 0)


# ----------------------------- Rolling window ----------------------------- #

class SamplePoint(NamedTuple):
    timestamp: datetime
    value: Any


class RollingWindow:
    """Two parallel bounded deques (timestamps, values), oldest first.

    Appending to a full window drops exactly the oldest point.
    """

    def __init__(self, capacity: int = cfg.WINDOW_SIZE) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = int(capacity)
        self._timestamps: Deque[datetime] = deque(maxlen=self._capacity)
        self._values: Deque[Any] = deque(maxlen=self._capacity)
        self._revision = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def revision(self) -> int:
        """Bumped on every append and clear."""
        return self._revision

    def __len__(self) -> int:
        return len(self._values)

    def append(self, timestamp: datetime, value: Any) -> None:
        self._timestamps.append(timestamp)
        self._values.append(value)
        self._revision += 1

    def clear(self) -> None:
        self._timestamps.clear()
        self._values.clear()
        self._revision += 1

    def points(self) -> Tuple[SamplePoint, ...]:
        return tuple(SamplePoint(t, v) for t, v in zip(self._timestamps, self._values))

    def timestamps(self) -> List[datetime]:
        return list(self._timestamps)

    def values(self) -> List[Any]:
        return list(self._values)

    def labels(self) -> List[str]:
        """Local time-of-day strings used as the chart's x-axis."""
        return [t.strftime("%H:%M:%S") for t in self._timestamps]

    def series(self, label: str) -> Dict[str, Any]:
        return {"label": label, "timestamps": self.labels(), "values": self.values()}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"timestamp": self.timestamps(), "value": self.values()})


# ----------------------------- Metric selection ----------------------------- #

class MetricSelector:
    """Which single metric is charted. Every select() empties the window."""

    def __init__(self, window: RollingWindow, initial: str = cfg.DEFAULT_METRIC) -> None:
        _check_metric(initial)
        self._window = window
        self._active = initial

    def active(self) -> str:
        return self._active

    def select(self, metric: str) -> None:
        _check_metric(metric)
        self._active = metric
        self._window.clear()


def _check_metric(metric: str) -> None:
    if metric not in METRICS:
        raise InvalidMetricError(f"unknown metric {metric!r}; expected one of {', '.join(METRICS)}")


# ----------------------------- Derivation ----------------------------- #

@dataclass(frozen=True)
class DerivedValue:
    metric: str
    timestamp: datetime
    chart_value: Any
    display_value: Any


class Derivation:
    """Computes the charted value of each snapshot and appends it to the window."""

    def __init__(self, window: RollingWindow, clock: Callable[[], datetime] = now_local) -> None:
        self._window = window
        self._clock = clock

    def on_snapshot(self, snapshot: Mapping[str, Any], active_metric: str) -> DerivedValue:
        try:
            raw = snapshot[active_metric]
        except KeyError:
            raise MissingMetricError(active_metric) from None
        value = corrected_value(active_metric, raw)
        timestamp = self._clock()
        self._window.append(timestamp, value)
        return DerivedValue(active_metric, timestamp, value, value)


# ----------------------------- Rendering descriptions ----------------------------- #

@dataclass(frozen=True)
class CardReading:
    title: str
    metric: str
    value: Any
    unit: str


@dataclass(frozen=True)
class ChartSpec:
    label: str
    window_size: int = cfg.WINDOW_SIZE
    tick_format: str = ".2f"
    visible: bool = False


def _card_value(metric: str, raw: Any) -> Any:
    try:
        return corrected_value(metric, raw)
    except TypeError:
        # Non-numeric upstream value: show it as received
        return raw


def card_readings(store: SnapshotStore) -> List[CardReading]:
    """The seven readouts for the cards, altitude corrected."""
    return [
        CardReading(title, metric, _card_value(metric, store.value(metric)), unit)
        for title, metric, unit in CARD_LAYOUT
    ]


def chart_spec(metric: str, window: RollingWindow, visible: bool) -> ChartSpec:
    return ChartSpec(label=METRIC_LABELS[metric], window_size=window.capacity, visible=visible)
