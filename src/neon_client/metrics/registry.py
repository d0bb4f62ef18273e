"""Prometheus metrics registry for device connections and streams."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

_STATES: Final = ("disconnected", "connecting", "connected", "reconnecting", "error")

# Connection lifecycle
neon_connection_state: Final = Gauge(  # type: ignore[assignment]
    "neon_connection_state",
    "Current connection state (1 for the active state, 0 otherwise)",
    ["device_id", "state"],
)

neon_handshake_total: Final = Counter(  # type: ignore[assignment]
    "neon_handshake_total",
    "Total status handshakes",
    ["device_id", "outcome"],
)

neon_reconnection_total: Final = Counter(  # type: ignore[assignment]
    "neon_reconnection_total",
    "Total reconnection attempts",
    ["device_id", "outcome"],
)

# Request/response API
neon_api_request_total: Final = Counter(  # type: ignore[assignment]
    "neon_api_request_total",
    "Total device API requests",
    ["device_id", "operation", "outcome"],
)

neon_api_request_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "neon_api_request_latency_seconds",
    "Device API request latency in seconds",
    ["device_id", "operation"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

# Push streams
neon_stream_open_total: Final = Counter(  # type: ignore[assignment]
    "neon_stream_open_total",
    "Total push-channels opened for data streams",
    ["device_id", "stream"],
)

neon_stream_close_total: Final = Counter(  # type: ignore[assignment]
    "neon_stream_close_total",
    "Total push-channels closed for data streams",
    ["device_id", "stream", "reason"],
)

neon_stream_subscribers: Final = Gauge(  # type: ignore[assignment]
    "neon_stream_subscribers",
    "Current subscribers across all data streams",
    ["device_id"],
)

neon_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "neon_decode_errors_total",
    "Total push-channel frames that failed to decode",
    ["device_id", "channel"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_connection_state(device_id: str, state: str) -> None:
    """Set the gauge to 1 for ``state`` and 0 for every other state."""
    for s in _STATES:
        neon_connection_state.labels(device_id=device_id, state=s).set(1 if s == state else 0)  # type: ignore[no-untyped-call]


def record_handshake(device_id: str, outcome: str) -> None:
    """Record a status handshake."""
    neon_handshake_total.labels(device_id=device_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_reconnection(device_id: str, outcome: str) -> None:
    """Record a reconnection attempt."""
    neon_reconnection_total.labels(device_id=device_id, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_api_request(device_id: str, operation: str, outcome: str, latency_seconds: float) -> None:
    """Record one API request and its latency."""
    neon_api_request_total.labels(device_id=device_id, operation=operation, outcome=outcome).inc()  # type: ignore[no-untyped-call]
    neon_api_request_latency_seconds.labels(device_id=device_id, operation=operation).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_stream_open(device_id: str, stream: str) -> None:
    """Record a data-stream push-channel open."""
    neon_stream_open_total.labels(device_id=device_id, stream=stream).inc()  # type: ignore[no-untyped-call]


def record_stream_close(device_id: str, stream: str, reason: str) -> None:
    """Record a data-stream push-channel close."""
    neon_stream_close_total.labels(device_id=device_id, stream=stream, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_stream_subscribers(device_id: str, count: int) -> None:
    """Record the current subscriber count."""
    neon_stream_subscribers.labels(device_id=device_id).set(count)  # type: ignore[no-untyped-call]


def record_decode_error(device_id: str, channel: str) -> None:
    """Record a frame decode failure."""
    neon_decode_errors_total.labels(device_id=device_id, channel=channel).inc()  # type: ignore[no-untyped-call]
