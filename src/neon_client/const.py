"""Constants and environment-driven settings for the Neon client."""

from __future__ import annotations

import os
from typing import Final

from neon_client import __version__

__all__ = [
    "API_PATHS",
    "BATTERY_CRITICAL_PERCENT",
    "BATTERY_LOW_PERCENT",
    "DEFAULT_BUFFER_SIZE",
    "DEFAULT_CONNECTION_TIMEOUT",
    "DEFAULT_DISCOVERY_TIMEOUT",
    "DEFAULT_MAX_RECONNECT_ATTEMPTS",
    "DEFAULT_PORT",
    "DEFAULT_RECONNECT_INTERVAL",
    "DEFAULT_REQUEST_TIMEOUT",
    "DEVICE_CAPABILITIES",
    "INVISIBLE_NAME_PREFIX",
    "MDNS_SERVICE_TYPE",
    "NEON_DEBUG",
    "NEON_LOG_FORMAT",
    "NEON_LOG_HUMAN_OUTPUT",
    "NEON_LOG_JSON_FILE",
    "NEON_METRICS_ENABLED",
    "NEON_METRICS_PORT",
    "NEON_NAME_PREFIX",
    "NEON_PERF_THRESHOLD_MS",
    "NEON_PERF_TRACKING",
    "NEON_VERSION",
    "POLL_INTERVAL",
    "PORT_RANGE",
    "SYNC_TOLERANCE",
    "WS_PATHS",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", "on", "o")
NEON_VERSION: str = __version__


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.casefold() in YES_ANSWER


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


NEON_DEBUG: bool = _env_flag("NEON_DEBUG")
NEON_LOG_FORMAT: str = os.environ.get("NEON_LOG_FORMAT", "human").casefold()
_json_file = os.environ.get("NEON_LOG_JSON_FILE")
NEON_LOG_JSON_FILE: str | None = _json_file if _json_file else None
NEON_LOG_HUMAN_OUTPUT: str = os.environ.get("NEON_LOG_HUMAN_OUTPUT", "stderr")
NEON_PERF_TRACKING: bool = _env_flag("NEON_PERF_TRACKING")
NEON_PERF_THRESHOLD_MS: int = _env_int("NEON_PERF_THRESHOLD_MS", 500)
NEON_METRICS_ENABLED: bool = _env_flag("NEON_METRICS_ENABLED")
NEON_METRICS_PORT: int = _env_int("NEON_METRICS_PORT", 9400)

# Device HTTP API
API_PATHS: Final = {
    "status": "/api/status",
    "recording": "/api/recording",
    "calibration": "/api/calibration",
    "settings": "/api/settings",
}

# Device push-channel API
WS_PATHS: Final = {
    "status": "/api/status",
    "gaze": "/api/gaze",
}

DEFAULT_PORT: Final = 8080
PORT_RANGE: Final = (1, 65535)

# All durations in seconds
DEFAULT_CONNECTION_TIMEOUT: Final = 5.0
DEFAULT_REQUEST_TIMEOUT: Final = 3.0
DEFAULT_RECONNECT_INTERVAL: Final = 1.0
DEFAULT_MAX_RECONNECT_ATTEMPTS: Final = 10
DEFAULT_DISCOVERY_TIMEOUT: Final = 10.0
DEFAULT_BUFFER_SIZE: Final = 1000
POLL_INTERVAL: Final = 0.01
SYNC_TOLERANCE: Final = 0.05

BATTERY_LOW_PERCENT: Final = 20
BATTERY_CRITICAL_PERCENT: Final = 10

# mDNS advertisement
MDNS_SERVICE_TYPE: Final = "_http._tcp.local."
NEON_NAME_PREFIX: Final = "Neon monitor"
INVISIBLE_NAME_PREFIX: Final = "PI monitor"

DEVICE_CAPABILITIES: Final[dict[str, dict[str, int | bool]]] = {
    "Neon": {
        "max_gaze_rate": 200,
        "max_video_rate": 30,
        "has_imu": True,
        "has_world_camera": True,
        "has_eye_cameras": True,
        "has_pupil_diameter": True,
        "has_eye_state_3d": True,
        "supports_calibration_free": True,
    },
    "Invisible": {
        "max_gaze_rate": 200,
        "max_video_rate": 30,
        "has_imu": True,
        "has_world_camera": True,
        "has_eye_cameras": False,
        "has_pupil_diameter": False,
        "has_eye_state_3d": False,
        "supports_calibration_free": False,
    },
}
