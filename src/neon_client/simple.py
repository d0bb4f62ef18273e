"""Pull-based access to a device: ``await device.receive_gaze_datum()``.

Wraps a :class:`~neon_client.connection.Connection` and buffers its gaze stream
in a :class:`~neon_client.buffer.RingBuffer`, so callers ask for the next sample
instead of registering callbacks.
"""

from __future__ import annotations

import asyncio
import time
from types import TracebackType
from typing import Any, Self

from neon_client.buffer import RingBuffer
from neon_client.client import connect
from neon_client.connection import Connection
from neon_client.const import DEFAULT_DISCOVERY_TIMEOUT, POLL_INTERVAL
from neon_client.discovery import Discovery, discover_first_device
from neon_client.errors import DeviceError, ErrorCode, NeonTimeoutError
from neon_client.logging_abstraction import get_logger
from neon_client.models import ConnectionOptions, DeviceDescriptor, GazeSample
from neon_client.observable import Subscription
from neon_client.transport.types import Transport

__all__ = [
    "SimpleDevice",
    "connect_to_device",
    "discover_one_device",
]

logger = get_logger(__name__)


class SimpleDevice:
    """Poll-with-timeout façade over one connection.

    The gaze stream starts on the first :meth:`receive_gaze_datum` call. Samples
    that arrive faster than they are read overwrite the oldest unread ones once
    ``buffer_size`` are held.
    """

    def __init__(self, connection: Connection, buffer_size: int | None = None) -> None:
        self.connection: Connection = connection
        self._gaze_buffer: RingBuffer[GazeSample] = RingBuffer(buffer_size or connection.options.buffer_size)
        self._gaze_subscription: Subscription | None = None

    @property
    def info(self) -> DeviceDescriptor:
        return self.connection.info

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def streaming(self) -> bool:
        return self._gaze_subscription is not None and not self._gaze_subscription.closed

    @property
    def buffered(self) -> int:
        return len(self._gaze_buffer)

    def _start_gaze_streaming(self) -> None:
        if self.streaming:
            return
        logger.debug("Starting gaze stream", extra={"device_id": self.info.id})
        self._gaze_subscription = self.connection.create_gaze_stream().subscribe(
            on_next=self._gaze_buffer.push,
            on_error=self._on_gaze_error,
        )

    def _on_gaze_error(self, err: BaseException) -> None:
        # The next receive_gaze_datum() call re-subscribes.
        logger.warning("Gaze stream error: %s", err, extra={"device_id": self.info.id})

    async def receive_gaze_datum(self, timeout: float = 1.0) -> GazeSample:
        """Return the oldest buffered gaze sample, waiting up to ``timeout`` seconds.

        Raises:
            NeonTimeoutError: OPERATION_TIMEOUT if nothing arrives in time.

        """
        self._start_gaze_streaming()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if self._gaze_buffer:
                return self._gaze_buffer.pop()
            if loop.time() >= deadline:
                raise NeonTimeoutError(
                    "Timeout waiting for gaze data",
                    ErrorCode.OPERATION_TIMEOUT,
                    {"operation": "receive_gaze_datum", "timeout": timeout},
                )
            await asyncio.sleep(min(POLL_INTERVAL, max(deadline - loop.time(), 0)))

    async def get_status(self) -> dict[str, Any]:
        return await self.connection.get_status()

    async def start_recording(self, recording_id: str | None = None) -> dict[str, Any]:
        return await self.connection.start_recording(recording_id or f"recording_{int(time.time() * 1000)}")

    async def stop_recording(self) -> dict[str, Any]:
        return await self.connection.stop_recording()

    async def get_recording_status(self) -> dict[str, Any]:
        return await self.connection.get_recording_status()

    async def start_calibration(self) -> dict[str, Any]:
        return await self.connection.start_calibration()

    async def stop_calibration(self) -> dict[str, Any]:
        return await self.connection.stop_calibration()

    async def get_calibration_status(self) -> dict[str, Any]:
        return await self.connection.get_calibration_status()

    async def close(self) -> None:
        """Stop the gaze stream, drop buffered samples and close the connection."""
        if self._gaze_subscription is not None:
            self._gaze_subscription.unsubscribe()
            self._gaze_subscription = None
        self._gaze_buffer.clear()
        await self.connection.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"SimpleDevice({self.connection!r}, buffered={self.buffered})"


async def connect_to_device(
    address: str,
    options: ConnectionOptions | None = None,
    transport: Transport | None = None,
    **overrides: object,
) -> SimpleDevice:
    """Connect to ``"host[:port]"`` and wrap the connection."""
    return SimpleDevice(await connect(address, options, transport, **overrides))


async def discover_one_device(
    max_search_duration: float = DEFAULT_DISCOVERY_TIMEOUT,
    discovery: Discovery | None = None,
    options: ConnectionOptions | None = None,
    transport: Transport | None = None,
    **overrides: object,
) -> SimpleDevice:
    """Connect to the first device found on the network.

    Raises:
        DeviceError: DEVICE_NOT_FOUND if nothing answers within ``max_search_duration``.

    """
    descriptor = await discover_first_device(max_search_duration, discovery)
    if descriptor is None:
        raise DeviceError(
            "No device found within timeout",
            ErrorCode.DEVICE_NOT_FOUND,
            {"operation": "discover_one_device", "timeout": max_search_duration},
        )
    connection = Connection(descriptor, transport, options, **overrides)
    try:
        await connection.connect()
    except BaseException:
        await connection.close()
        raise
    return SimpleDevice(connection)
