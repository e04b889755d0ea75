from __future__ import annotations

from datetime import datetime, timedelta

import pytest

import dashboard_config as cfg
from sensor_state import (
    METRICS,
    Derivation,
    InvalidMetricError,
    MetricSelector,
    MissingMetricError,
    RollingWindow,
    SnapshotStore,
    card_readings,
    chart_spec,
    corrected_value,
)

T0 = datetime(2024, 5, 1, 12, 0, 0)


def _ticking_clock(start: datetime = T0):
    state = {"t": start}

    def clock() -> datetime:
        now = state["t"]
        state["t"] = now + timedelta(seconds=1)
        return now

    return clock


def test_store_defaults_to_zero_snapshot() -> None:
    store = SnapshotStore()
    assert not store.has_data
    assert store.get() == {metric: 0 for metric in METRICS}


def test_store_replaces_without_merging() -> None:
    store = SnapshotStore()
    store.set({"temp": 10, "humidity": 40})
    store.set({"temp": 12})

    assert store.has_data
    assert store.get() == {"temp": 12}
    assert store.value("humidity") == 0


def test_store_get_is_a_copy() -> None:
    store = SnapshotStore()
    payload = {"temp": 1}
    store.set(payload)
    payload["temp"] = 99
    store.get()["temp"] = 50
    assert store.get() == {"temp": 1}


def test_window_keeps_arrival_order() -> None:
    window = RollingWindow(capacity=5)
    for i, value in enumerate([10, 12, 9]):
        window.append(T0 + timedelta(seconds=i), value)
    assert window.values() == [10, 12, 9]
    assert [p.value for p in window.points()] == [10, 12, 9]


def test_window_evicts_oldest_when_full() -> None:
    window = RollingWindow(capacity=20)
    for i in range(1, 23):
        window.append(T0 + timedelta(seconds=i), i)

    assert len(window) == 20
    assert window.values() == list(range(3, 23))
    assert window.points()[0].timestamp == T0 + timedelta(seconds=3)


def test_window_21st_point_drops_only_the_first() -> None:
    window = RollingWindow(capacity=20)
    for i in range(1, 21):
        window.append(T0, i)
    window.append(T0, 21)
    assert window.values() == list(range(2, 22))


def test_window_clear_and_series() -> None:
    window = RollingWindow(capacity=3)
    window.append(datetime(2024, 5, 1, 8, 30, 15), 1.5)
    assert window.series("Temperature (°C)") == {
        "label": "Temperature (°C)",
        "timestamps": ["08:30:15"],
        "values": [1.5],
    }
    frame = window.to_frame()
    assert list(frame.columns) == ["timestamp", "value"]
    assert frame["value"].tolist() == [1.5]

    window.clear()
    assert len(window) == 0
    assert window.points() == ()
    assert window.to_frame().empty


def test_window_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RollingWindow(capacity=0)


def test_selecting_metric_clears_window() -> None:
    window = RollingWindow()
    selector = MetricSelector(window)
    assert selector.active() == cfg.DEFAULT_METRIC
    window.append(T0, 1)
    window.append(T0, 2)

    selector.select("humidity")
    assert selector.active() == "humidity"
    assert len(window) == 0


def test_reselecting_same_metric_still_clears_window() -> None:
    window = RollingWindow()
    selector = MetricSelector(window, "temp")
    window.append(T0, 1)
    selector.select("temp")
    assert len(window) == 0


def test_invalid_metric_is_rejected_and_state_kept() -> None:
    window = RollingWindow()
    selector = MetricSelector(window, "pressure")
    window.append(T0, 1)

    with pytest.raises(InvalidMetricError):
        selector.select("speed")
    assert isinstance(InvalidMetricError("x"), ValueError)
    assert selector.active() == "pressure"
    assert len(window) == 1

    with pytest.raises(InvalidMetricError):
        MetricSelector(window, "wind")


@pytest.mark.parametrize("metric", [m for m in METRICS if m != "altitude"])
def test_only_altitude_is_corrected(metric: str) -> None:
    assert corrected_value(metric, 3.25) == 3.25


def test_altitude_offset() -> None:
    assert cfg.ALTITUDE_OFFSET_M == 2160
    assert corrected_value("altitude", 100) == 2260


def test_derivation_appends_each_snapshot() -> None:
    window = RollingWindow()
    derivation = Derivation(window, clock=_ticking_clock())
    for value in (10, 12, 9):
        derived = derivation.on_snapshot({"temp": value, "altitude": 5}, "temp")
        assert derived.chart_value == value
        assert derived.display_value == value
    assert window.values() == [10, 12, 9]
    assert window.timestamps() == [T0, T0 + timedelta(seconds=1), T0 + timedelta(seconds=2)]


def test_derivation_altitude_scenario() -> None:
    window = RollingWindow()
    derived = Derivation(window, clock=_ticking_clock()).on_snapshot({"altitude": 100}, "altitude")
    assert derived.display_value == 2260
    assert derived.chart_value == 2260
    assert window.points() == ((T0, 2260),)


def test_derivation_missing_field_raises_and_appends_nothing() -> None:
    window = RollingWindow()
    derivation = Derivation(window)
    with pytest.raises(MissingMetricError):
        derivation.on_snapshot({"temp": 1}, "humidity")
    assert len(window) == 0


def test_card_readings_apply_altitude_offset() -> None:
    store = SnapshotStore()
    readings = {r.metric: r for r in card_readings(store)}
    assert readings["temp"].value == 0
    assert readings["altitude"].value == 2160

    store.set({"temp": 21.5, "humidity": 40, "pressure": 101000, "x": 0.1, "y": -0.2, "z": 9.8, "altitude": 100})
    readings = card_readings(store)
    assert [r.title for r in readings] == [
        "Temperature", "Humidity", "Air Pressure", "X-axis", "Y-axis", "Z-axis", "Altitude",
    ]
    by_metric = {r.metric: r for r in readings}
    assert by_metric["temp"].value == 21.5
    assert by_metric["temp"].unit == "°C"
    assert by_metric["altitude"].value == 2260
    assert by_metric["altitude"].unit == "m"


def test_chart_spec() -> None:
    spec = chart_spec("altitude", RollingWindow(), visible=True)
    assert spec.label == "Altitude (m)"
    assert spec.window_size == 20
    assert spec.tick_format == ".2f"
    assert spec.visible is True


@pytest.mark.parametrize("raw", [None, "n/a"])
def test_card_readings_show_non_numeric_altitude_as_received(raw: object) -> None:
    store = SnapshotStore()
    store.set({"altitude": raw, "temp": 1})
    readings = {r.metric: r for r in card_readings(store)}
    assert readings["altitude"].value == raw
    assert readings["temp"].value == 1


def test_derivation_non_numeric_altitude_raises_type_error() -> None:
    window = RollingWindow()
    with pytest.raises(TypeError):
        Derivation(window).on_snapshot({"altitude": None}, "altitude")
    assert len(window) == 0


def test_window_revision_tracks_changes() -> None:
    window = RollingWindow(capacity=2)
    assert window.revision == 0
    window.append(T0, 1)
    window.append(T0, 2)
    window.append(T0, 3)
    assert window.revision == 3
    window.clear()
    assert window.revision == 4
    window.values()
    assert window.revision == 4
