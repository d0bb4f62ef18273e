"""Asyncio client for Pupil Labs Neon and Invisible eye trackers."""

from __future__ import annotations

__version__ = "0.1.0"

from neon_client.client import connect, discover
from neon_client.connection import Connection
from neon_client.errors import (
    ApiError,
    CalibrationError,
    DataError,
    DeviceError,
    ErrorCode,
    ErrorKind,
    GeneralError,
    NeonConnectionError,
    NeonError,
    NeonTimeoutError,
    RecordingError,
    StreamError,
)
from neon_client.models import (
    ConnectionOptions,
    ConnectionState,
    DeviceDescriptor,
    DeviceModel,
    GazeSample,
)
from neon_client.simple import SimpleDevice, connect_to_device, discover_one_device

__all__ = [
    "ApiError",
    "CalibrationError",
    "Connection",
    "ConnectionOptions",
    "ConnectionState",
    "DataError",
    "DeviceDescriptor",
    "DeviceError",
    "DeviceModel",
    "ErrorCode",
    "ErrorKind",
    "GazeSample",
    "GeneralError",
    "NeonConnectionError",
    "NeonError",
    "NeonTimeoutError",
    "RecordingError",
    "SimpleDevice",
    "StreamError",
    "__version__",
    "connect",
    "connect_to_device",
    "discover",
    "discover_one_device",
]
