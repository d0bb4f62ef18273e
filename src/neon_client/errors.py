"""Error taxonomy for the Neon client.

Every failure surfaced by the library is a :class:`NeonError` subclass carrying a
stable machine code, a human message, a read-only details mapping and the time
it was created. Whether an error is recoverable is a static property of its
code, not of the call site.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum, StrEnum
from types import MappingProxyType
from typing import ClassVar, override

__all__ = [
    "ApiError",
    "CalibrationError",
    "DataError",
    "DeviceError",
    "ErrorCode",
    "ErrorKind",
    "GeneralError",
    "NeonConnectionError",
    "NeonError",
    "NeonTimeoutError",
    "RecordingError",
    "StreamError",
    "api_error_for_status",
    "get_recovery_suggestion",
    "is_recoverable",
]


class ErrorKind(Enum):
    """Closed set of error categories."""

    CONNECTION = "connection"
    DEVICE = "device"
    STREAM = "stream"
    RECORDING = "recording"
    CALIBRATION = "calibration"
    API = "api"
    DATA = "data"
    TIMEOUT = "timeout"
    GENERAL = "general"


class ErrorCode(StrEnum):
    """Stable machine-readable error codes."""

    # Connection
    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_LOST = "CONNECTION_LOST"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    MAX_RECONNECT_EXCEEDED = "MAX_RECONNECT_EXCEEDED"

    # Device
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    DEVICE_BUSY = "DEVICE_BUSY"
    DEVICE_NOT_WORN = "DEVICE_NOT_WORN"
    DEVICE_LOW_BATTERY = "DEVICE_LOW_BATTERY"
    DEVICE_NOT_CONNECTED = "DEVICE_NOT_CONNECTED"

    # Stream
    STREAM_START_FAILED = "STREAM_START_FAILED"
    STREAM_INTERRUPTED = "STREAM_INTERRUPTED"
    STREAM_DECODE_ERROR = "STREAM_DECODE_ERROR"
    STREAM_NOT_AVAILABLE = "STREAM_NOT_AVAILABLE"

    # Recording
    RECORDING_START_FAILED = "RECORDING_START_FAILED"
    RECORDING_STOP_FAILED = "RECORDING_STOP_FAILED"
    RECORDING_STORAGE_FULL = "RECORDING_STORAGE_FULL"

    # Calibration
    CALIBRATION_FAILED = "CALIBRATION_FAILED"
    CALIBRATION_POOR_QUALITY = "CALIBRATION_POOR_QUALITY"
    CALIBRATION_INSUFFICIENT_DATA = "CALIBRATION_INSUFFICIENT_DATA"

    # API
    API_REQUEST_FAILED = "API_REQUEST_FAILED"
    API_INVALID_RESPONSE = "API_INVALID_RESPONSE"
    API_UNAUTHORIZED = "API_UNAUTHORIZED"
    API_RATE_LIMITED = "API_RATE_LIMITED"

    # Data
    INVALID_DATA_FORMAT = "INVALID_DATA_FORMAT"
    DATA_VALIDATION_FAILED = "DATA_VALIDATION_FAILED"

    # General
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    OPERATION_CANCELLED = "OPERATION_CANCELLED"
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_RECOVERABLE_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.CONNECTION_LOST,
        ErrorCode.CONNECTION_TIMEOUT,
        ErrorCode.STREAM_INTERRUPTED,
        ErrorCode.DEVICE_NOT_WORN,
        ErrorCode.DEVICE_LOW_BATTERY,
        ErrorCode.API_RATE_LIMITED,
        ErrorCode.OPERATION_CANCELLED,
        ErrorCode.OPERATION_TIMEOUT,
    }
)

_SUGGESTIONS: Mapping[ErrorCode, str] = MappingProxyType(
    {
        ErrorCode.CONNECTION_FAILED: "Check the device is powered on and on the same network",
        ErrorCode.CONNECTION_TIMEOUT: "Verify network connectivity and firewall settings",
        ErrorCode.CONNECTION_LOST: "The client reconnects automatically when auto_reconnect is enabled",
        ErrorCode.INVALID_ADDRESS: "Verify the device address, e.g. 192.168.1.20:8080",
        ErrorCode.MAX_RECONNECT_EXCEEDED: "Call connect() again once the device is reachable",
        ErrorCode.DEVICE_NOT_FOUND: "Ensure the device is on the network and discoverable",
        ErrorCode.DEVICE_BUSY: "Close other applications using the device",
        ErrorCode.DEVICE_NOT_WORN: "Put on the device to enable eye tracking",
        ErrorCode.DEVICE_LOW_BATTERY: "Charge the device to continue",
        ErrorCode.DEVICE_NOT_CONNECTED: "Call connect() before starting streams",
        ErrorCode.STREAM_START_FAILED: "Check network bandwidth and device status",
        ErrorCode.STREAM_INTERRUPTED: "Subscribe to the stream again to resume",
        ErrorCode.STREAM_DECODE_ERROR: "Check the device firmware version",
        ErrorCode.STREAM_NOT_AVAILABLE: "Enable the stream in the device settings",
        ErrorCode.RECORDING_START_FAILED: "Check device storage and permissions",
        ErrorCode.RECORDING_STOP_FAILED: "Try stopping the recording from the device directly",
        ErrorCode.RECORDING_STORAGE_FULL: "Free up space on the device",
        ErrorCode.CALIBRATION_FAILED: "Ensure good lighting and a stable head position",
        ErrorCode.CALIBRATION_POOR_QUALITY: "Repeat calibration in better conditions",
        ErrorCode.CALIBRATION_INSUFFICIENT_DATA: "Complete all calibration points",
        ErrorCode.API_REQUEST_FAILED: "Check the network connection and API endpoint",
        ErrorCode.API_INVALID_RESPONSE: "Verify API version compatibility",
        ErrorCode.API_UNAUTHORIZED: "Check device access permissions",
        ErrorCode.API_RATE_LIMITED: "Reduce request frequency",
        ErrorCode.INVALID_DATA_FORMAT: "Check the data format",
        ErrorCode.DATA_VALIDATION_FAILED: "Verify the data meets the documented ranges",
        ErrorCode.NOT_IMPLEMENTED: "Feature not available in this environment",
        ErrorCode.INVALID_PARAMETER: "Check parameter types and ranges",
        ErrorCode.OPERATION_CANCELLED: "The operation was cancelled",
        ErrorCode.OPERATION_TIMEOUT: "Retry with a longer timeout",
        ErrorCode.UNKNOWN_ERROR: "Check the logs for more information",
    }
)


def is_recoverable(code: ErrorCode) -> bool:
    return code in _RECOVERABLE_CODES


def get_recovery_suggestion(code: ErrorCode) -> str:
    return _SUGGESTIONS.get(code, "An unexpected error occurred")


class NeonError(Exception):
    """Base class for every error raised or emitted by the client.

    Attributes:
        kind: Error category
        message: Human-readable description
        code: Machine-readable code
        details: Read-only structured context (operation, url, status, cause ...)
        timestamp: UTC creation time

    """

    kind: ClassVar[ErrorKind] = ErrorKind.GENERAL
    default_code: ClassVar[ErrorCode] = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        self.message: str = message
        self.code: ErrorCode = code or self.default_code
        self.details: Mapping[str, object] = MappingProxyType(dict(details or {}))
        self.timestamp: datetime = datetime.now(UTC)
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        return is_recoverable(self.code)

    @property
    def suggestion(self) -> str:
        return get_recovery_suggestion(self.code)

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "code": self.code.value,
            "message": self.message,
            "details": dict(self.details),
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
        }

    @override
    def __setattr__(self, name: str, value: object) -> None:
        if name in self.__dict__ and name in {"message", "code", "details", "timestamp"}:
            msg = f"{type(self).__name__}.{name} is read-only"
            raise AttributeError(msg)
        super().__setattr__(name, value)

    @override
    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    @override
    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class NeonConnectionError(NeonError):
    """Handshake or channel failure, connection loss, reconnect exhaustion.

    Named to avoid shadowing the built-in ``ConnectionError``.
    """

    kind = ErrorKind.CONNECTION
    default_code = ErrorCode.CONNECTION_FAILED


class DeviceError(NeonError):
    kind = ErrorKind.DEVICE
    default_code = ErrorCode.DEVICE_NOT_FOUND


class StreamError(NeonError):
    kind = ErrorKind.STREAM
    default_code = ErrorCode.STREAM_START_FAILED


class RecordingError(NeonError):
    kind = ErrorKind.RECORDING
    default_code = ErrorCode.RECORDING_START_FAILED


class CalibrationError(NeonError):
    kind = ErrorKind.CALIBRATION
    default_code = ErrorCode.CALIBRATION_FAILED


class ApiError(NeonError):
    """HTTP request failure; ``details`` carries ``url`` and, if known, ``status``."""

    kind = ErrorKind.API
    default_code = ErrorCode.API_REQUEST_FAILED

    @property
    def status(self) -> int | None:
        status = self.details.get("status")
        return status if isinstance(status, int) else None

    @property
    def url(self) -> str | None:
        url = self.details.get("url")
        return url if isinstance(url, str) else None


class DataError(NeonError):
    kind = ErrorKind.DATA
    default_code = ErrorCode.INVALID_DATA_FORMAT


class NeonTimeoutError(NeonError):
    """An operation did not finish within its deadline."""

    kind = ErrorKind.TIMEOUT
    default_code = ErrorCode.OPERATION_TIMEOUT


class GeneralError(NeonError):
    kind = ErrorKind.GENERAL
    default_code = ErrorCode.UNKNOWN_ERROR


def api_error_for_status(status: int, url: str, operation: str, reason: str | None = None) -> ApiError:
    """Build the :class:`ApiError` for a non-2xx HTTP response."""
    if status in (401, 403):
        code = ErrorCode.API_UNAUTHORIZED
    elif status == 429:
        code = ErrorCode.API_RATE_LIMITED
    else:
        code = ErrorCode.API_REQUEST_FAILED
    message = f"API request failed: {status}" + (f" {reason}" if reason else "")
    return ApiError(message, code, {"operation": operation, "status": status, "url": url})
