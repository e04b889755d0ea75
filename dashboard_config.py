# Central configuration for the sensor dashboard
# Adjust these settings as needed; the page only exposes the chart toggle and metric picker.
import os

# Data source: "Mock" or "WebSocket"
DATA_SOURCE = os.getenv("TELEMETRY_DATA_SOURCE", "Mock")

# WebSocket URL used when DATA_SOURCE == "WebSocket"
WS_URL = os.getenv("TELEMETRY_WS_URL", "ws://localhost:8000/stream")

# Path of the sensor node on the push source
SENSOR_PATH = "sensor"

# Auto-refresh interval in milliseconds (used when smooth updates are disabled)
REFRESH_MS = 1000

# Number of points kept in the chart window
WINDOW_SIZE = 20

# Calibration offset added to the raw altitude on both cards and chart
ALTITUDE_OFFSET_M = 1324 + 836

# Metric charted on first load
DEFAULT_METRIC = "temp"

# Chart visibility on first load
SHOW_GRAPH_DEFAULT = False

# Smooth update settings to minimize redraw flicker
# When True, cards and chart update in-place in a short local loop without page reruns
SMOOTH_UPDATES = True
# How long each smooth update burst should run (seconds)
SMOOTH_BURST_SECONDS = 8
## Mock ingestion interval in seconds
INGEST_INTERVAL_S = 1.0
# Maximum queued messages dispatched per pull
MAX_DISPATCH_PER_PULL = 100

LOG_LEVEL = os.getenv("TELEMETRY_LOG_LEVEL", "INFO")
