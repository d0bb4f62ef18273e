"""End-to-end tests of the aiohttp transport against an in-process fake device."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from neon_client.client import connect
from neon_client.connection import Connection
from neon_client.errors import ApiError, ErrorCode, NeonConnectionError, RecordingError, StreamError
from neon_client.events import StatusUpdateEvent
from neon_client.models import GazeSample
from neon_client.transport import AiohttpTransport, TransportError
from tests.helpers.expectations import expect_error_code
from tests.helpers.fakes import wait_until

pytestmark = pytest.mark.integration


class FakeDevice:
    """Minimal companion-device HTTP and WebSocket API."""

    def __init__(self) -> None:
        self.status: dict[str, object] = {"batteryLevel": 85, "isWorn": True, "serialNumber": "NEON-1"}
        self.status_sockets: list[web.WebSocketResponse] = []
        self.gaze_sockets: list[web.WebSocketResponse] = []
        self.recording_requests: list[dict[str, object]] = []
        self.app = web.Application()
        self.app.router.add_get("/api/status", self.handle_status)
        self.app.router.add_get("/api/gaze", self.handle_gaze)
        self.app.router.add_post("/api/recording", self.handle_recording)
        self.app.router.add_get("/api/settings", self.handle_settings)

    async def _serve_socket(self, request: web.Request, sockets: list[web.WebSocketResponse]) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        _ = await ws.prepare(request)
        sockets.append(ws)
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                break
        return ws

    async def handle_status(self, request: web.Request) -> web.StreamResponse:
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return await self._serve_socket(request, self.status_sockets)
        return web.json_response(self.status)

    async def handle_gaze(self, request: web.Request) -> web.StreamResponse:
        return await self._serve_socket(request, self.gaze_sockets)

    async def handle_recording(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.recording_requests.append(body)
        if body.get("recording_id") == "full":
            return web.json_response({"error": "storage full"}, status=507)
        return web.json_response({"ok": True, "action": body["action"]})

    async def handle_settings(self, request: web.Request) -> web.Response:
        return web.Response(text="not json", content_type="text/plain")


@pytest_asyncio.fixture
async def device() -> AsyncGenerator[tuple[FakeDevice, TestServer]]:
    fake = FakeDevice()
    server = TestServer(fake.app, host="127.0.0.1")
    await server.start_server()
    yield fake, server
    await server.close()


@pytest_asyncio.fixture
async def live(device: tuple[FakeDevice, TestServer]) -> AsyncGenerator[tuple[FakeDevice, Connection]]:
    fake, server = device
    conn = await connect(f"127.0.0.1:{server.port}", auto_reconnect=False, timeout=2.0)
    yield fake, conn
    await conn.close()


class TestHandshake:
    """Tests for connecting over real HTTP and WebSocket."""

    @pytest.mark.asyncio
    async def test_connect_and_status_push(self, live: tuple[FakeDevice, Connection]):
        fake, conn = live
        updates: list[StatusUpdateEvent] = []
        _ = conn.on(StatusUpdateEvent, updates.append)

        assert conn.connected
        assert conn.info.battery_level == 85
        assert conn.info.serial_number == "NEON-1"
        await wait_until(lambda: bool(fake.status_sockets))

        await fake.status_sockets[0].send_json({"batteryLevel": 80})
        await wait_until(lambda: bool(updates))

        assert conn.info.battery_level == 80

    @pytest.mark.asyncio
    async def test_refused_connection(self, unused_tcp_port: int):
        _ = await expect_error_code(
            connect(f"127.0.0.1:{unused_tcp_port}", auto_reconnect=False, timeout=1.0),
            NeonConnectionError,
            ErrorCode.CONNECTION_FAILED,
        )


class TestRequests:
    """Tests for request/response calls."""

    @pytest.mark.asyncio
    async def test_recording_round_trip(self, live: tuple[FakeDevice, Connection]):
        fake, conn = live

        result = await conn.start_recording("session_7")

        assert result == {"ok": True, "action": "start"}
        assert fake.recording_requests == [{"action": "start", "recording_id": "session_7"}]

    @pytest.mark.asyncio
    async def test_error_status(self, live: tuple[FakeDevice, Connection]):
        _, conn = live

        err = await expect_error_code(conn.start_recording("full"), RecordingError, ErrorCode.RECORDING_START_FAILED)

        cause = err.__cause__
        assert isinstance(cause, ApiError)
        assert cause.status == 507

    @pytest.mark.asyncio
    async def test_non_json_body(self, live: tuple[FakeDevice, Connection]):
        _, conn = live

        _ = await expect_error_code(conn.get_settings(), ApiError, ErrorCode.API_INVALID_RESPONSE)


class TestGazeStream:
    """Tests for the gaze push-channel."""

    @pytest.mark.asyncio
    async def test_samples_and_interruption(self, live: tuple[FakeDevice, Connection]):
        fake, conn = live
        samples: list[GazeSample] = []
        errors: list[BaseException] = []
        _ = conn.create_gaze_stream().subscribe(samples.append, errors.append)
        await wait_until(lambda: bool(fake.gaze_sockets))

        ws = fake.gaze_sockets[0]
        await ws.send_json({"x": 0.3, "y": 0.7, "timestamp": 100.0})
        await ws.send_bytes(b'{"x": 0.4, "y": 0.6, "timestamp": 100.005}')
        await wait_until(lambda: len(samples) == 2)
        _ = await ws.close()
        await wait_until(lambda: bool(errors))

        assert [s.timestamp for s in samples] == [100.0, 100.005]
        assert isinstance(errors[0], StreamError)
        assert errors[0].code is ErrorCode.STREAM_INTERRUPTED
        assert conn.connected

    @pytest.mark.asyncio
    async def test_unsubscribe_closes_socket(self, live: tuple[FakeDevice, Connection]):
        fake, conn = live
        sub = conn.create_gaze_stream().subscribe()
        await wait_until(lambda: bool(fake.gaze_sockets))

        sub.unsubscribe()
        await wait_until(lambda: fake.gaze_sockets[0].closed)


class TestTransportDirect:
    """Tests for AiohttpTransport without a connection on top."""

    @pytest.mark.asyncio
    async def test_request_and_channel(self, device: tuple[FakeDevice, TestServer]):
        fake, server = device
        transport = AiohttpTransport()
        base = f"127.0.0.1:{server.port}"
        try:
            response = await transport.request("GET", f"http://{base}/api/status", timeout=2.0)
            assert response.ok
            assert response.body == fake.status

            channel = await transport.open_channel(f"ws://{base}/api/status", timeout=2.0)
            await wait_until(lambda: bool(fake.status_sockets))
            await fake.status_sockets[0].send_str("hello")
            assert await asyncio.wait_for(channel.receive(), timeout=2.0) == "hello"
            await channel.close()
            assert channel.closed
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_channel_to_missing_path(self, device: tuple[FakeDevice, TestServer]):
        _, server = device
        transport = AiohttpTransport()
        try:
            with pytest.raises(TransportError):
                _ = await transport.open_channel(f"ws://127.0.0.1:{server.port}/api/nope", timeout=2.0)
        finally:
            await transport.close()
