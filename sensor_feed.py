"""
Push sources for sensor snapshots and the driver that feeds them into the state.

Sources never call listeners from their own threads: the WebSocket client only
queues decoded messages, and ``dispatch_pending()`` hands them to listeners on
the caller's thread (the Streamlit script run), in arrival order.
"""
from __future__ import annotations

import enum
import json
import logging
import math
import random
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Protocol, Tuple

from websocket import WebSocketApp

import dashboard_config as cfg
from sensor_state import (
    Derivation,
    DerivedValue,
    MetricSelector,
    MissingMetricError,
    SnapshotStore,
)

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]
SnapshotCallback = Callable[[Dict[str, Any], DerivedValue], None]


class PushSource(Protocol):
    def subscribe(self, path: str, listener: Listener) -> Callable[[], None]: ...

    def dispatch_pending(self, max_messages: int = cfg.MAX_DISPATCH_PER_PULL) -> int: ...

    def close(self) -> None: ...


def _normalize_path(path: str) -> str:
    return str(path).strip("/")


class _ListenerRegistry:
    """Path-keyed listener bookkeeping shared by the sources."""

    def __init__(self) -> None:
        self._listeners: Dict[int, Tuple[str, Listener]] = {}
        self._next_token = 0

    def subscribe(self, path: str, listener: Listener) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        first = not self._listeners
        self._listeners[token] = (_normalize_path(path), listener)
        if first:
            self._on_first_listener()

        def unsubscribe() -> None:
            if self._listeners.pop(token, None) is not None and not self._listeners:
                self._on_last_listener()

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _deliver(self, path: str, data: Any) -> None:
        path = _normalize_path(path)
        # Copy: a listener may unsubscribe while we iterate
        for token, (listen_path, listener) in list(self._listeners.items()):
            if listen_path == path and token in self._listeners:
                listener(data)

    def _on_first_listener(self) -> None:
        pass

    def _on_last_listener(self) -> None:
        pass


# ----------------------------- Mock data generator ----------------------------- #

def mock_payload(last: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Generate a sensor snapshot that drifts a little from ``last``."""
    base_temp = 22.0
    base_humidity = 45.0
    base_pressure = 101325.0

    # Small random walks to look alive
    def jitt(v: float, spread: float) -> float:
        return v + random.uniform(-spread, spread)

    if last:
        temp = jitt(float(last.get("temp", base_temp)), 0.2)
        humidity = min(100.0, max(0.0, jitt(float(last.get("humidity", base_humidity)), 0.5)))
        pressure = jitt(float(last.get("pressure", base_pressure)), 8.0)
    else:
        temp = jitt(base_temp, 1.0)
        humidity = jitt(base_humidity, 2.0)
        pressure = jitt(base_pressure, 50.0)

    # Barometric altitude relative to standard sea-level pressure
    altitude = 44330.0 * (1.0 - math.pow(pressure / base_pressure, 1.0 / 5.255))

    return {
        "temp": round(temp, 2),
        "humidity": round(humidity, 2),
        "pressure": round(pressure, 1),
        "x": round(random.gauss(0.0, 0.05), 3),
        "y": round(random.gauss(0.0, 0.05), 3),
        "z": round(random.gauss(9.81, 0.05), 3),
        "altitude": round(altitude, 2),
    }


class MockSource(_ListenerRegistry):
    """Emits one mock snapshot per ``interval_s`` to listeners of ``path``."""

    def __init__(
        self,
        path: str = cfg.SENSOR_PATH,
        interval_s: float = cfg.INGEST_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.path = _normalize_path(path)
        self.interval_s = max(0.0, float(interval_s))
        self._clock = clock
        self._last_emit: Optional[float] = None
        self.last_payload: Optional[Dict[str, Any]] = None

    def dispatch_pending(self, max_messages: int = cfg.MAX_DISPATCH_PER_PULL) -> int:
        if max_messages <= 0:
            return 0
        now = self._clock()
        if self._last_emit is not None and now - self._last_emit < self.interval_s:
            return 0
        self._last_emit = now
        payload = mock_payload(self.last_payload)
        self.last_payload = payload
        self._deliver(self.path, payload)
        return 1

    def close(self) -> None:
        self._listeners.clear()


# ----------------------------- WebSocket client ----------------------------- #

class WebSocketSource(_ListenerRegistry):
    """websocket-client feed; connects on first subscribe, closes after the last unsubscribe.

    Messages are JSON, either a bare snapshot (routed to ``default_path``) or an
    envelope ``{"path": ..., "data": ...}``.
    """

    def __init__(self, url: str, default_path: str = cfg.SENSOR_PATH, max_queue: int = 10000) -> None:
        super().__init__()
        self.url = url
        self.default_path = _normalize_path(default_path)
        self.queue: Deque[Tuple[float, str, Any]] = deque(maxlen=max_queue)
        # One stop event per run loop; a loop told to stop never picks up a later start
        self._stop = threading.Event()
        self._stop.set()
        self._thread: threading.Thread | None = None
        self._ws: WebSocketApp | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive() and not self._stop.is_set():
                return
            self._stop = stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(stop,), name="sensor-ws", daemon=True)
        self._thread.start()
        logger.info("WebSocket source connecting to %s", self.url)

    def close(self) -> None:
        with self._lock:
            self._stop.set()
            ws = self._ws
        if ws is not None:
            ws.close()
        self.queue.clear()

    def dispatch_pending(self, max_messages: int = cfg.MAX_DISPATCH_PER_PULL) -> int:
        pulls = 0
        while self.queue and pulls < max_messages:
            _ts, path, data = self.queue.popleft()
            self._deliver(path, data)
            pulls += 1
        return pulls

    def _on_first_listener(self) -> None:
        self.start()

    def _on_last_listener(self) -> None:
        self.close()

    def _on_message(self, ws: Any, message: str) -> None:
        if ws is not None and ws is not self._ws:
            return  # superseded connection
        try:
            data = json.loads(message)
        except (TypeError, ValueError) as exc:
            logger.warning("Dropping undecodable message: %s", exc)
            return
        if isinstance(data, dict) and "path" in data and "data" in data:
            path, data = _normalize_path(data["path"]), data["data"]
        else:
            path = self.default_path
        self.queue.append((time.time(), path, data))

    def _on_error(self, _ws: Any, error: Exception) -> None:
        logger.warning("WebSocket error on %s: %s", self.url, error)

    def _run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            ws: WebSocketApp | None = None
            try:
                ws = WebSocketApp(self.url, on_message=self._on_message, on_error=self._on_error)
                with self._lock:
                    # close() may have run before _ws was published
                    if stop.is_set():
                        break
                    self._ws = ws
                ws.run_forever(ping_interval=20, ping_timeout=10)
            except Exception:
                logger.exception("WebSocket connection to %s failed", self.url)
            finally:
                with self._lock:
                    if ws is not None and self._ws is ws:
                        self._ws = None
            stop.wait(1.0)
        logger.info("WebSocket source for %s stopped", self.url)


def build_source(kind: str = cfg.DATA_SOURCE, url: str = cfg.WS_URL) -> PushSource:
    if kind == "Mock":
        return MockSource()
    if kind == "WebSocket":
        return WebSocketSource(url)
    raise ValueError(f"unknown data source {kind!r}; expected 'Mock' or 'WebSocket'")


# ----------------------------- Subscription driver ----------------------------- #

class DriverState(enum.Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"


class SubscriptionDriver:
    """Owns the single subscription and applies each snapshot to store and window.

    The active metric is read from the selector at delivery time, so a metric
    change never needs a new subscription.
    """

    def __init__(
        self,
        source: PushSource,
        store: SnapshotStore,
        selector: MetricSelector,
        derivation: Derivation,
        path: str = cfg.SENSOR_PATH,
    ) -> None:
        self.source = source
        self.store = store
        self.selector = selector
        self.derivation = derivation
        self.path = path
        self._state = DriverState.IDLE
        self._generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._on_snapshot: Optional[SnapshotCallback] = None

    @property
    def state(self) -> DriverState:
        return self._state

    def start(self, on_snapshot: Optional[SnapshotCallback] = None) -> None:
        if self._state is DriverState.SUBSCRIBED:
            self.stop()
        self._generation += 1
        generation = self._generation
        self._on_snapshot = on_snapshot

        def deliver(payload: Any) -> None:
            if generation != self._generation:
                return
            self._apply(payload)

        self._unsubscribe = self.source.subscribe(self.path, deliver)
        self._state = DriverState.SUBSCRIBED
        logger.info("Subscribed to %r", self.path)

    def stop(self) -> None:
        if self._state is DriverState.IDLE:
            return
        self._generation += 1
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        self._on_snapshot = None
        self._state = DriverState.IDLE
        if unsubscribe is not None:
            unsubscribe()
        logger.info("Unsubscribed from %r", self.path)

    def _apply(self, payload: Any) -> None:
        if not payload:
            logger.debug("Ignoring empty payload on %r", self.path)
            return
        if not isinstance(payload, Mapping):
            logger.warning("Ignoring non-object payload on %r: %s", self.path, type(payload).__name__)
            return
        self.store.set(payload)
        metric = self.selector.active()
        try:
            derived = self.derivation.on_snapshot(payload, metric)
        except MissingMetricError:
            logger.warning("Snapshot on %r has no %r field; sample dropped", self.path, metric)
            return
        except TypeError:
            logger.warning("Snapshot on %r has non-numeric %r=%r; sample dropped", self.path, metric, payload[metric])
            return
        logger.debug("%s -> %s", metric, derived.chart_value)
        if self._on_snapshot is not None:
            self._on_snapshot(payload, derived)
