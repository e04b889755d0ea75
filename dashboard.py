"""
Streamlit live sensor dashboard (Mock feed by default, WebSocket-ready)

Features
- Cards with the latest temperature, humidity, pressure, 3-axis acceleration and altitude
- Show/Hide Graph toggle and a picker for the one metric to chart
- Rolling chart of the last 20 samples of the selected metric; switching metric restarts it
- Altitude is shown and charted with the calibration offset from dashboard_config

Run locally
  pip install -e .
  streamlit run dashboard.py

Notes
- Default mode is **Mock** (random-walk sensor snapshots).
- WebSocket mode: set TELEMETRY_DATA_SOURCE=WebSocket and TELEMETRY_WS_URL=ws://... ; messages
  are JSON snapshots, bare or wrapped as {"path": "sensor", "data": {...}}.
"""
from __future__ import annotations

import logging
import sys
import time
from typing import Optional

import plotly.express as px
import streamlit as st
from streamlit_autorefresh import st_autorefresh

import dashboard_config as cfg
from sensor_feed import DriverState, SubscriptionDriver, build_source
from sensor_state import (
    METRIC_OPTIONS,
    METRICS,
    ChartSpec,
    Derivation,
    MetricSelector,
    RollingWindow,
    SnapshotStore,
    card_readings,
    chart_spec,
)

ACCELERATION_METRICS = ("x", "y", "z")
LINE_COLOR = "rgb(75, 192, 192)"
GRID_COLOR = "#444444"


def setup_terminal_logging() -> None:
    # Root logger so sensor_feed / sensor_state records show up too
    logger = logging.getLogger()
    if not logger.handlers:
        logger.setLevel(cfg.LOG_LEVEL)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        logger.addHandler(handler)


setup_terminal_logging()
log = logging.getLogger("sensor_dashboard")

# ----------------------------- Streamlit App ----------------------------- #

st.set_page_config(page_title="Sensor Dashboard", layout="wide")

# Session state bootstrap; the objects survive reruns
ss = st.session_state
if "driver" not in ss:
    ss.window = RollingWindow(cfg.WINDOW_SIZE)
    ss.store = SnapshotStore()
    ss.selector = MetricSelector(ss.window, cfg.DEFAULT_METRIC)
    ss.source = build_source(cfg.DATA_SOURCE, cfg.WS_URL)
    ss.driver = SubscriptionDriver(
        ss.source, ss.store, ss.selector, Derivation(ss.window), path=cfg.SENSOR_PATH
    )
    log.info("Dashboard session started with %s source", cfg.DATA_SOURCE)
ss.setdefault("show_graph", cfg.SHOW_GRAPH_DEFAULT)

if ss.driver.state is DriverState.IDLE:
    ss.driver.start()

# Auto-rerun while page is open (uses config)
if not cfg.SMOOTH_UPDATES:
    st_autorefresh(interval=cfg.REFRESH_MS, key="_autorefresh")


def toggle_graph() -> None:
    ss.show_graph = not ss.show_graph


def change_metric() -> None:
    ss.selector.select(ss.metric_picker)
    log.info("Charting %s", ss.metric_picker)


# ----------------------------- Rendering ----------------------------- #

def render_cards() -> None:
    readings = card_readings(ss.store)
    simple = [r for r in readings if r.metric not in ACCELERATION_METRICS]
    accel = [r for r in readings if r.metric in ACCELERATION_METRICS]
    cols = st.columns(len(simple) + 1)
    # Acceleration card sits before Altitude
    for col, reading in zip(cols[:-2] + cols[-1:], simple):
        with col:
            st.metric(reading.title, f"{reading.value} {reading.unit}")
    with cols[-2]:
        st.markdown("**Acceleration**")
        for reading in accel:
            st.metric(f"{reading.title} ({reading.unit})", reading.value)


def render_chart(window: RollingWindow, spec: ChartSpec) -> None:
    frame = window.to_frame()
    if frame.empty:
        st.info("Waiting for data…")
        return
    fig = px.line(frame, x="timestamp", y="value", markers=True, height=400)
    fig.update_traces(name=spec.label, showlegend=True, line=dict(color=LINE_COLOR))
    fig.update_layout(
        yaxis=dict(title=None, tickformat=spec.tick_format, showgrid=True, gridcolor=GRID_COLOR),
        xaxis=dict(title=None, tickformat="%H:%M:%S", showgrid=True, gridcolor=GRID_COLOR),
        legend=dict(orientation="h", yanchor="bottom", y=1.02),
        uirevision="keep",  # preserve zoom/viewport
        transition=dict(duration=0),
    )
    # One chart per window revision; keys stay unique within a script run
    st.plotly_chart(fig, use_container_width=True, key=f"metric-chart-{window.revision}")


# Controls
ctrl_cols = st.columns([1, 2])
with ctrl_cols[0]:
    st.button(
        "Hide Graph" if ss.show_graph else "Show Graph",
        on_click=toggle_graph,
        use_container_width=True,
        key="graph_toggle",
    )
with ctrl_cols[1]:
    st.selectbox(
        "Metric",
        options=list(METRICS),
        index=METRICS.index(ss.selector.active()),
        format_func=METRIC_OPTIONS.get,
        on_change=change_metric,
        key="metric_picker",
        label_visibility="collapsed",
    )

cards_placeholder = st.empty()
chart_placeholder = st.empty()


def render_all(last_revision: Optional[int] = None) -> int:
    """Redraw cards, and the chart only when the window changed since ``last_revision``."""
    with cards_placeholder.container():
        render_cards()
    revision = ss.window.revision
    if not ss.show_graph:
        chart_placeholder.empty()
    elif revision != last_revision:
        with chart_placeholder.container():
            render_chart(ss.window, chart_spec(ss.selector.active(), ss.window, ss.show_graph))
    return revision


# ----------------------------- Ingest + display ----------------------------- #

ss.source.dispatch_pending(cfg.MAX_DISPATCH_PER_PULL)
rendered = render_all()

if cfg.SMOOTH_UPDATES:
    end_time = time.time() + cfg.SMOOTH_BURST_SECONDS
    sleep_s = max(0.05, cfg.REFRESH_MS / 1000.0)
    while time.time() < end_time:
        if ss.source.dispatch_pending(cfg.MAX_DISPATCH_PER_PULL):
            rendered = render_all(rendered)
        time.sleep(sleep_s)
    # continue updating seamlessly
    st.rerun()
