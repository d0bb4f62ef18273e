"""Data models shared by the connection core, the façade and discovery."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum, StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from neon_client.const import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CONNECTION_TIMEOUT,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEVICE_CAPABILITIES,
)
from neon_client.errors import ErrorCode, GeneralError

__all__ = [
    "ConnectionOptions",
    "ConnectionState",
    "DeviceDescriptor",
    "DeviceModel",
    "GazeSample",
]


class ConnectionState(Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class DeviceModel(StrEnum):
    NEON = "Neon"
    INVISIBLE = "Invisible"
    UNKNOWN = "Unknown"


class DeviceDescriptor(BaseModel):
    """Identity and network location of one device.

    Field names are snake_case in Python and camelCase on the wire
    (``batteryLevel``, ``isWorn`` ...). Keys the device reports that are not
    modelled here (``isRecording``, ``timestamp`` ...) are kept as extras.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str
    name: str
    model: DeviceModel = DeviceModel.UNKNOWN
    serial_number: str | None = None
    firmware_version: str | None = None
    battery_level: int | None = Field(default=None, ge=0, le=100)
    is_charging: bool = False
    is_worn: bool = False
    ip_address: str
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    txt_record: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_address(cls, host: str, port: int = DEFAULT_PORT) -> Self:
        """Synthetic descriptor for a device reached by address instead of discovery."""
        return cls(
            id=f"{host}:{port}",
            name=f"Device at {host}:{port}",
            model=DeviceModel.UNKNOWN,
            ip_address=host,
            port=port,
        )

    @property
    def base_url(self) -> str:
        return f"http://{self.ip_address}:{self.port}"

    @property
    def ws_url(self) -> str:
        return f"ws://{self.ip_address}:{self.port}"

    @property
    def capabilities(self) -> dict[str, int | bool]:
        return dict(DEVICE_CAPABILITIES.get(self.model.value, {}))

    def merged(self, status: Mapping[str, object]) -> DeviceDescriptor:
        """Return a new descriptor with ``status`` laid over this one.

        Raises:
            pydantic.ValidationError: If the merged data is not a valid descriptor.

        """
        data: dict[str, Any] = self.model_dump(by_alias=True)
        data.update(status)
        return DeviceDescriptor.model_validate(data)

    def snapshot(self) -> DeviceDescriptor:
        return self.model_copy(deep=True)


class GazeSample(BaseModel):
    """One decoded frame of the gaze push-channel.

    ``x`` and ``y`` are normalized scene-camera coordinates, ``timestamp`` is in
    Unix seconds. Additional keys sent by the device are preserved.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    x: float
    y: float
    timestamp: float
    confidence: float = 1.0
    worn: bool = True

    def is_valid(self) -> bool:
        return 0.0 <= self.x <= 1.0 and 0.0 <= self.y <= 1.0 and 0.0 <= self.confidence <= 1.0


class ConnectionOptions(BaseModel):
    """Tunables for one :class:`~neon_client.connection.Connection` (seconds)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout: float = Field(default=DEFAULT_CONNECTION_TIMEOUT, gt=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    auto_reconnect: bool = True
    reconnect_interval: float = Field(default=DEFAULT_RECONNECT_INTERVAL, ge=0)
    max_reconnect_attempts: int = Field(default=DEFAULT_MAX_RECONNECT_ATTEMPTS, ge=0)
    buffer_size: int = Field(default=DEFAULT_BUFFER_SIZE, ge=1)

    @classmethod
    def build(cls, options: ConnectionOptions | None = None, **overrides: object) -> ConnectionOptions:
        """Combine an optional base model with keyword overrides.

        Raises:
            GeneralError: INVALID_PARAMETER if a value is out of range or unknown.

        """
        data: dict[str, object] = options.model_dump() if options else {}
        data.update(overrides)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid connection options: {e.error_count()} error(s)"
            raise GeneralError(
                msg,
                ErrorCode.INVALID_PARAMETER,
                {"operation": "connection_options", "errors": e.errors(include_url=False)},
            ) from e
