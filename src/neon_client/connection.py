"""Device connection lifecycle: handshake, status channel, reconnect, API calls, streams.

A :class:`Connection` owns one device. ``connect()`` fetches the status
endpoint, merges it into the descriptor and opens the status push-channel.
If that channel drops while connected and ``auto_reconnect`` is on, a single
background task retries at a fixed interval until it succeeds or the attempt
ceiling is hit, at which point the connection parks in ``ERROR``.

**Ordering**: every state change happens under ``_state_lock``. Network I/O runs
with the lock released; a connect attempt re-checks a generation counter
(bumped by ``disconnect()``) before committing ``CONNECTED``, so a disconnect
issued mid-handshake always wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any, Self

from pydantic import ValidationError

from neon_client import metrics
from neon_client.const import (
    API_PATHS,
    BATTERY_CRITICAL_PERCENT,
    BATTERY_LOW_PERCENT,
    NEON_METRICS_ENABLED,
    NEON_METRICS_PORT,
    WS_PATHS,
)
from neon_client.correlation import correlation_context
from neon_client.errors import (
    ApiError,
    CalibrationError,
    DataError,
    DeviceError,
    ErrorCode,
    NeonConnectionError,
    NeonTimeoutError,
    RecordingError,
    StreamError,
    api_error_for_status,
)
from neon_client.events import (
    BatteryLowEvent,
    ConnectedEvent,
    ConnectingEvent,
    ConnectionEvent,
    DisconnectedEvent,
    ErrorEvent,
    EventEmitter,
    Listener,
    ReconnectingEvent,
    StatusUpdateEvent,
    StreamStartedEvent,
    StreamStoppedEvent,
    WornChangedEvent,
)
from neon_client.logging_abstraction import get_logger
from neon_client.models import ConnectionOptions, ConnectionState, DeviceDescriptor, GazeSample
from neon_client.multiplexer import StreamMultiplexer
from neon_client.observable import Observable
from neon_client.transport.aiohttp_transport import AiohttpTransport
from neon_client.transport.retry_policy import RetryPolicy, with_timeout
from neon_client.transport.types import Channel, Transport, TransportError

__all__ = ["Connection"]

logger = get_logger(__name__)

type JSONObject = dict[str, Any]


class Connection:
    """One device's network lifecycle plus its request/response and stream API.

    Example:
        async with Connection(DeviceDescriptor.from_address("192.168.1.20")) as conn:
            status = await conn.get_status()
            async for sample in conn.create_gaze_stream():
                ...

    """

    def __init__(
        self,
        descriptor: DeviceDescriptor,
        transport: Transport | None = None,
        options: ConnectionOptions | None = None,
        **overrides: object,
    ) -> None:
        """Initialize a disconnected connection.

        Args:
            descriptor: Device to talk to; the connection keeps a private copy.
            transport: HTTP/push-channel implementation (defaults to aiohttp, owned
                by this connection and closed by :meth:`close`).
            options: Base options; ``overrides`` are applied on top.

        Raises:
            GeneralError: INVALID_PARAMETER if the options do not validate.

        """
        self.options: ConnectionOptions = ConnectionOptions.build(options, **overrides)
        self._descriptor: DeviceDescriptor = descriptor.snapshot()
        self._owns_transport: bool = transport is None
        self._transport: Transport = transport if transport is not None else AiohttpTransport()
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._state_lock: asyncio.Lock = asyncio.Lock()
        self._generation: int = 0
        self._events: EventEmitter = EventEmitter()
        self._reconnect_policy: RetryPolicy = RetryPolicy.fixed(self.options.reconnect_interval)
        self._reconnect_attempts: int = 0
        self._connect_task: asyncio.Task[None] | None = None
        self.reconnect_task: asyncio.Task[None] | None = None
        self._status_channel: Channel | None = None
        self._status_task: asyncio.Task[None] | None = None
        self._streams: StreamMultiplexer = StreamMultiplexer(
            self._transport,
            device_id=self._descriptor.id,
            open_timeout=self.options.timeout,
            on_started=lambda key: self._emit(StreamStartedEvent(key)),
            on_stopped=lambda key, reason: self._emit(StreamStoppedEvent(key, reason)),
        )
        if NEON_METRICS_ENABLED:
            metrics.start_metrics_server(NEON_METRICS_PORT)
        metrics.record_connection_state(self._descriptor.id, self._state.value)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def info(self) -> DeviceDescriptor:
        """Snapshot of the descriptor; later status updates do not affect it."""
        return self._descriptor.snapshot()

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def streams(self) -> StreamMultiplexer:
        return self._streams

    def __repr__(self) -> str:
        return f"Connection({self._descriptor.ip_address}:{self._descriptor.port}, state={self._state.value})"

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on[E](self, event_type: type[E], listener: Listener[E]) -> Callable[[], None]:
        """Register ``listener`` for ``event_type``; returns an unsubscribe function."""
        return self._events.on(event_type, listener)

    def once[E](self, event_type: type[E], listener: Listener[E]) -> Callable[[], None]:
        return self._events.once(event_type, listener)

    def off[E](self, event_type: type[E], listener: Listener[E]) -> bool:
        return self._events.off(event_type, listener)

    def on_any(self, listener: Listener[ConnectionEvent]) -> Callable[[], None]:
        return self._events.on_any(listener)

    def _emit(self, event: ConnectionEvent) -> None:
        self._events.emit(event)

    def _set_state(self, state: ConnectionState) -> None:
        """Must be called with ``_state_lock`` held."""
        if state is self._state:
            return
        logger.debug(
            "State transition",
            extra={"device_id": self._descriptor.id, "from": self._state.value, "to": state.value},
        )
        self._state = state
        metrics.record_connection_state(self._descriptor.id, state.value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Handshake and open the status channel. No-op when already connected.

        Concurrent callers share one in-flight attempt.

        Raises:
            NeonConnectionError: Handshake or channel open failed. The connection is
                left in ``ERROR`` and, with ``auto_reconnect``, a background retry
                is already scheduled.

        """
        async with self._state_lock:
            if self._state is ConnectionState.CONNECTED:
                logger.debug("connect() while connected, nothing to do", extra={"device_id": self._descriptor.id})
                return
            task = self._start_connect_attempt(from_reconnect=False)
        await asyncio.shield(task)

    def _start_connect_attempt(self, from_reconnect: bool) -> asyncio.Task[None]:
        """Return the in-flight attempt or start a new one. Requires ``_state_lock``."""
        if self._connect_task is None or self._connect_task.done():
            if self._state is not ConnectionState.RECONNECTING:
                self._set_state(ConnectionState.CONNECTING)
            self._connect_task = asyncio.create_task(
                self._connect_attempt(self._generation, from_reconnect),
                name=f"neon-connect-{self._descriptor.id}",
            )
        return self._connect_task

    async def _connect_attempt(self, generation: int, from_reconnect: bool) -> None:
        host, port = self._descriptor.ip_address, self._descriptor.port
        device_id = self._descriptor.id
        with correlation_context(prefix="reconnect" if from_reconnect else "connect"):
            if not from_reconnect:
                self._emit(ConnectingEvent(host, port))
            logger.info("→ Connecting to device", extra={"host": host, "port": port, "device_id": device_id})
            channel: Channel | None = None
            try:
                status = await self._handshake()
                channel = await self._open_status_channel()
            except NeonConnectionError as err:
                metrics.record_handshake(device_id, "failure")
                await self._handle_connect_failure(generation, err, from_reconnect)
                raise

            async with self._state_lock:
                superseded = generation != self._generation
                if not superseded:
                    self._descriptor = status
                    self._status_channel = channel
                    self._reconnect_attempts = 0
                    self._set_state(ConnectionState.CONNECTED)
                    self._status_task = asyncio.create_task(
                        self._read_status(channel, generation),
                        name=f"neon-status-{device_id}",
                    )
                    reconnect_task = self.reconnect_task
                    if not from_reconnect and reconnect_task is not None:
                        # A manual connect() won the race against the retry loop.
                        _ = reconnect_task.cancel()
                        self.reconnect_task = None
                    elif from_reconnect:
                        # The loop exits after this attempt; a later close starts a new one.
                        self.reconnect_task = None

            if superseded:
                logger.info("Connect finished after disconnect, discarding", extra={"device_id": device_id})
                await self._close_channel(channel)
                return

            metrics.record_handshake(device_id, "success")
            logger.info(
                "✓ Connected",
                extra={"host": host, "port": port, "device_id": device_id, "battery_level": status.battery_level},
            )
            self._emit(ConnectedEvent(self.info))

    async def _handshake(self) -> DeviceDescriptor:
        """GET the status endpoint and merge it into a copy of the descriptor."""
        url = self._descriptor.base_url + API_PATHS["status"]
        try:
            status = await self._request_json("handshake", "GET", url, timeout=self.options.timeout)
            return self._descriptor.merged(status)
        except NeonTimeoutError as e:
            raise NeonConnectionError(
                f"Timed out connecting to {url}",
                ErrorCode.CONNECTION_TIMEOUT,
                {"operation": "handshake", "url": url, "timeout": self.options.timeout},
            ) from e
        except ApiError as e:
            raise NeonConnectionError(
                f"Handshake failed: {e.message}",
                ErrorCode.CONNECTION_FAILED,
                {"operation": "handshake", "url": url, "status": e.status, "cause": e.to_dict()},
            ) from e
        except ValidationError as e:
            raise NeonConnectionError(
                "Handshake returned an invalid device status",
                ErrorCode.CONNECTION_FAILED,
                {"operation": "handshake", "url": url, "cause": str(e)},
            ) from e

    async def _open_status_channel(self) -> Channel:
        url = self._descriptor.ws_url + WS_PATHS["status"]
        timeout = self.options.timeout
        try:
            return await with_timeout(
                self._transport.open_channel(url, timeout=timeout),
                timeout,
                "Timed out opening status channel",
                "open_status_channel",
            )
        except NeonTimeoutError as e:
            raise NeonConnectionError(
                f"Timed out opening status channel {url}",
                ErrorCode.CONNECTION_TIMEOUT,
                {"operation": "open_status_channel", "url": url, "timeout": timeout},
            ) from e
        except (TransportError, OSError) as e:
            raise NeonConnectionError(
                f"Status channel connection failed: {e}",
                ErrorCode.CONNECTION_FAILED,
                {"operation": "open_status_channel", "url": url, "cause": str(e)},
            ) from e

    async def _handle_connect_failure(self, generation: int, err: NeonConnectionError, from_reconnect: bool) -> None:
        async with self._state_lock:
            if generation != self._generation:
                logger.debug("Connect failed after disconnect", extra={"device_id": self._descriptor.id})
                return
            self._set_state(ConnectionState.ERROR)
        logger.warning(
            "✗ Connect failed: %s",
            err.message,
            extra={"device_id": self._descriptor.id, "code": err.code.value},
        )
        self._emit(ErrorEvent(err))
        if self.options.auto_reconnect and not from_reconnect:
            self._trigger_reconnect("connect_failed")

    def _trigger_reconnect(self, reason: str) -> None:
        """Start the retry loop unless one is already running."""
        if self.reconnect_task is None or self.reconnect_task.done():
            logger.info("Triggering reconnection", extra={"device_id": self._descriptor.id, "reason": reason})
            self.reconnect_task = asyncio.create_task(
                self._reconnect_loop(self._generation, reason),
                name=f"neon-reconnect-{self._descriptor.id}",
            )
        else:
            logger.debug("Reconnection already in progress", extra={"reason": reason})

    async def _reconnect_loop(self, generation: int, reason: str) -> None:
        device_id = self._descriptor.id
        max_attempts = self.options.max_reconnect_attempts
        with correlation_context(prefix="reconnect"):
            logger.info("→ Starting reconnection", extra={"device_id": device_id, "reason": reason})
            while True:
                async with self._state_lock:
                    if generation != self._generation or self._state is ConnectionState.CONNECTED:
                        return
                    if self._reconnect_attempts >= max_attempts:
                        self._set_state(ConnectionState.ERROR)
                        exhausted = True
                    else:
                        self._set_state(ConnectionState.RECONNECTING)
                        self._reconnect_attempts += 1
                        exhausted = False
                    attempt = self._reconnect_attempts

                if exhausted:
                    metrics.record_reconnection(device_id, "exhausted")
                    logger.error(
                        "✗ Reconnection failed",
                        extra={"device_id": device_id, "reason": reason, "attempts": attempt},
                    )
                    self._emit(
                        ErrorEvent(
                            NeonConnectionError(
                                "Maximum reconnection attempts exceeded",
                                ErrorCode.MAX_RECONNECT_EXCEEDED,
                                {"operation": "reconnect", "attempts": attempt, "max_attempts": max_attempts},
                            ),
                        ),
                    )
                    return

                logger.info(
                    "Reconnect attempt %d/%d",
                    attempt,
                    max_attempts,
                    extra={"device_id": device_id, "attempt": attempt},
                )
                self._emit(ReconnectingEvent(attempt, max_attempts))
                await asyncio.sleep(self._reconnect_policy.get_delay(attempt - 1))

                async with self._state_lock:
                    if generation != self._generation or self._state is ConnectionState.CONNECTED:
                        return
                    task = self._start_connect_attempt(from_reconnect=True)
                try:
                    await asyncio.shield(task)
                except NeonConnectionError:
                    metrics.record_reconnection(device_id, "failure")
                    continue
                metrics.record_reconnection(device_id, "success")
                logger.info("✓ Reconnection successful", extra={"device_id": device_id, "attempt": attempt})
                return

    async def disconnect(self) -> None:
        """Close every channel, complete every stream and park in ``DISCONNECTED``.

        Safe from any state, including during a connect attempt or a reconnect
        wait; neither will produce further events afterwards.
        """
        with correlation_context(prefix="disconnect"):
            logger.info("→ Disconnecting", extra={"device_id": self._descriptor.id})
            async with self._state_lock:
                self._generation += 1
                self._set_state(ConnectionState.DISCONNECTED)
                reconnect_task, self.reconnect_task = self.reconnect_task, None
                status_task, self._status_task = self._status_task, None
                channel, self._status_channel = self._status_channel, None

            current = asyncio.current_task()
            for task in (reconnect_task, status_task):
                if task is not None and task is not current and not task.done():
                    _ = task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

            await self._close_channel(channel)
            await self._streams.close_all()
            self._emit(DisconnectedEvent())
            logger.info("✓ Disconnect complete", extra={"device_id": self._descriptor.id})

    async def close(self) -> None:
        """Disconnect and release the transport if this connection created it."""
        await self.disconnect()
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _close_channel(self, channel: Channel | None) -> None:
        if channel is None or channel.closed:
            return
        try:
            await channel.close()
        except (TransportError, OSError) as e:
            logger.warning("Error closing channel: %s", e, extra={"device_id": self._descriptor.id})

    # ------------------------------------------------------------------
    # Status channel
    # ------------------------------------------------------------------

    async def _read_status(self, channel: Channel, generation: int) -> None:
        try:
            while True:
                raw = await channel.receive()
                if raw is None:
                    break
                self._handle_status_message(raw)
        except (TransportError, OSError) as e:
            logger.warning("Status channel error: %s", e, extra={"device_id": self._descriptor.id})
        await self._on_status_closed(generation)

    def _handle_status_message(self, raw: str) -> None:
        try:
            status = json.loads(raw)
        except json.JSONDecodeError as e:
            metrics.record_decode_error(self._descriptor.id, "status")
            self._emit(
                ErrorEvent(
                    StreamError(
                        "Failed to parse status message",
                        ErrorCode.INVALID_DATA_FORMAT,
                        {"operation": "status_update", "cause": str(e)},
                    ),
                ),
            )
            return
        if not isinstance(status, dict):
            metrics.record_decode_error(self._descriptor.id, "status")
            self._emit(
                ErrorEvent(
                    StreamError(
                        "Status message is not a JSON object",
                        ErrorCode.INVALID_DATA_FORMAT,
                        {"operation": "status_update", "type": type(status).__name__},
                    ),
                ),
            )
            return

        previous = self._descriptor
        try:
            self._descriptor = previous.merged(status)
        except ValidationError as e:
            metrics.record_decode_error(self._descriptor.id, "status")
            self._emit(
                ErrorEvent(
                    DataError(
                        "Status message failed validation",
                        ErrorCode.DATA_VALIDATION_FAILED,
                        {"operation": "status_update", "cause": str(e)},
                    ),
                ),
            )
            return

        logger.debug("Status update", extra={"device_id": self._descriptor.id, "keys": sorted(status)})
        self._emit(StatusUpdateEvent(status, self.info))
        self._emit_derived_events(previous, self._descriptor)

    def _emit_derived_events(self, previous: DeviceDescriptor, current: DeviceDescriptor) -> None:
        if current.is_worn != previous.is_worn:
            self._emit(WornChangedEvent(current.is_worn))
        level, before = current.battery_level, previous.battery_level
        if level is None or level == before:
            return
        if level < BATTERY_CRITICAL_PERCENT and (before is None or before >= BATTERY_CRITICAL_PERCENT):
            self._emit(BatteryLowEvent(level, critical=True))
        elif level < BATTERY_LOW_PERCENT and (before is None or before >= BATTERY_LOW_PERCENT):
            self._emit(BatteryLowEvent(level))

    async def _on_status_closed(self, generation: int) -> None:
        async with self._state_lock:
            if generation != self._generation or self._state is not ConnectionState.CONNECTED:
                return
            self._status_channel = None
            self._status_task = None
            self._set_state(ConnectionState.RECONNECTING if self.options.auto_reconnect else ConnectionState.ERROR)
        logger.warning("Status channel closed while connected", extra={"device_id": self._descriptor.id})
        if self.options.auto_reconnect:
            self._trigger_reconnect("status_channel_closed")
            return
        self._emit(
            ErrorEvent(
                NeonConnectionError(
                    "Connection to device lost",
                    ErrorCode.CONNECTION_LOST,
                    {"operation": "status_channel", "device_id": self._descriptor.id},
                ),
            ),
        )

    # ------------------------------------------------------------------
    # Request/response API
    # ------------------------------------------------------------------

    def _require_connected(self, operation: str) -> None:
        if self._state is not ConnectionState.CONNECTED:
            msg = f"Operation '{operation}' requires a connected device"
            raise DeviceError(
                msg,
                ErrorCode.DEVICE_NOT_CONNECTED,
                {"operation": operation, "state": self._state.value},
            )

    async def _request_json(
        self,
        operation: str,
        method: str,
        url: str,
        body: JSONObject | None = None,
        timeout: float | None = None,
    ) -> JSONObject:
        timeout = timeout if timeout is not None else self.options.request_timeout
        device_id = self._descriptor.id
        start = time.perf_counter()
        outcome = "error"
        try:
            try:
                response = await with_timeout(
                    self._transport.request(method, url, json=body, timeout=timeout),
                    timeout,
                    f"{operation} timed out after {timeout}s",
                    operation,
                )
            except NeonTimeoutError:
                outcome = "timeout"
                raise
            except (TransportError, OSError) as e:
                raise ApiError(
                    f"API request failed: {e}",
                    ErrorCode.API_REQUEST_FAILED,
                    {"operation": operation, "url": url, "cause": str(e)},
                ) from e
            if not response.ok:
                raise api_error_for_status(response.status, url, operation, response.reason)
            if not isinstance(response.body, dict):
                raise ApiError(
                    "Device returned an invalid JSON response",
                    ErrorCode.API_INVALID_RESPONSE,
                    {"operation": operation, "status": response.status, "url": url},
                )
            outcome = "success"
            return response.body
        finally:
            metrics.record_api_request(device_id, operation, outcome, time.perf_counter() - start)

    async def _api(self, operation: str, method: str, path: str, body: JSONObject | None = None) -> JSONObject:
        self._require_connected(operation)
        return await self._request_json(operation, method, self._descriptor.base_url + path, body)

    async def _control(
        self,
        operation: str,
        path: str,
        body: JSONObject,
        error_type: type[RecordingError] | type[CalibrationError],
        code: ErrorCode,
    ) -> JSONObject:
        try:
            return await self._api(operation, "POST", path, body)
        except (ApiError, NeonTimeoutError) as e:
            raise error_type(
                f"{operation.replace('_', ' ').capitalize()} failed: {e.message}",
                code,
                {"operation": operation, "cause": e.to_dict()},
            ) from e

    async def get_status(self) -> JSONObject:
        return await self._api("get_status", "GET", API_PATHS["status"])

    async def get_settings(self) -> JSONObject:
        return await self._api("get_settings", "GET", API_PATHS["settings"])

    async def start_recording(self, recording_id: str) -> JSONObject:
        return await self._control(
            "start_recording",
            API_PATHS["recording"],
            {"action": "start", "recording_id": recording_id},
            RecordingError,
            ErrorCode.RECORDING_START_FAILED,
        )

    async def stop_recording(self) -> JSONObject:
        return await self._control(
            "stop_recording",
            API_PATHS["recording"],
            {"action": "stop"},
            RecordingError,
            ErrorCode.RECORDING_STOP_FAILED,
        )

    async def get_recording_status(self) -> JSONObject:
        return await self._api("get_recording_status", "GET", API_PATHS["recording"])

    async def start_calibration(self) -> JSONObject:
        return await self._control(
            "start_calibration",
            API_PATHS["calibration"],
            {"action": "start"},
            CalibrationError,
            ErrorCode.CALIBRATION_FAILED,
        )

    async def stop_calibration(self) -> JSONObject:
        return await self._control(
            "stop_calibration",
            API_PATHS["calibration"],
            {"action": "stop"},
            CalibrationError,
            ErrorCode.CALIBRATION_FAILED,
        )

    async def get_calibration_status(self) -> JSONObject:
        return await self._api("get_calibration_status", "GET", API_PATHS["calibration"])

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def create_gaze_stream(self, config: JSONObject | None = None) -> Observable[GazeSample]:
        """Gaze samples shared by every subscriber with an equal ``config``.

        The push-channel opens on first subscribe and closes after the last
        unsubscribe. Subscribing while not connected fails the subscriber at once
        with DEVICE_NOT_CONNECTED.
        """
        key = "gaze_" + json.dumps(config or {}, sort_keys=True, default=str)
        return self._streams.stream(
            key,
            self._descriptor.ws_url + WS_PATHS["gaze"],
            GazeSample.model_validate_json,
            lambda: self._state is ConnectionState.CONNECTED,
        )
