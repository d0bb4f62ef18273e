"""In-memory transport, channel and discovery used to drive the client in tests."""

from __future__ import annotations

import asyncio
import json
from collections import Counter, defaultdict
from collections.abc import Callable
from urllib.parse import urlsplit

from neon_client.models import DeviceDescriptor
from neon_client.transport.types import HttpResponse

DEFAULT_STATUS: dict[str, object] = {"batteryLevel": 85, "isWorn": True}


class FakeChannel:
    """Push-channel fed by the test through :meth:`push` and :meth:`drop`."""

    def __init__(self, url: str) -> None:
        self.url = url
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, message: object) -> None:
        """Deliver one frame; non-strings are JSON-encoded."""
        self._queue.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the device closing the channel."""
        self._queue.put_nowait(None)

    async def receive(self) -> str | None:
        if self._closed:
            return None
        item = await self._queue.get()
        if item is None:
            self._closed = True
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        self._queue.put_nowait(None)


class FakeTransport:
    """Transport double with scripted HTTP responses and counted channel opens."""

    def __init__(self, status: dict[str, object] | None = None) -> None:
        self.status: dict[str, object] = dict(DEFAULT_STATUS if status is None else status)
        self.responses: dict[tuple[str, str], HttpResponse | BaseException] = {}
        self.channel_errors: dict[str, BaseException] = {}
        self.requests: list[tuple[str, str, object]] = []
        self.open_calls: Counter[str] = Counter()
        self.channels: defaultdict[str, list[FakeChannel]] = defaultdict(list)
        self.request_gate: asyncio.Event | None = None
        self.hang_paths: set[str] = set()
        self.drop_on_open: set[str] = set()
        self.closed = False

    def respond(self, method: str, path: str, body: object = None, status: int = 200) -> None:
        self.responses[(method, path)] = HttpResponse(status=status, url=path, body=body, reason=None)

    def fail(self, method: str, path: str, error: BaseException) -> None:
        self.responses[(method, path)] = error

    def clear(self, method: str, path: str) -> None:
        _ = self.responses.pop((method, path), None)

    def last_channel(self, path: str) -> FakeChannel:
        return self.channels[path][-1]

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: object | None = None,
        timeout: float,
    ) -> HttpResponse:
        path = urlsplit(url).path
        self.requests.append((method, url, json))
        if self.request_gate is not None:
            _ = await self.request_gate.wait()
        if path in self.hang_paths:
            _ = await asyncio.Event().wait()
        scripted = self.responses.get((method, path))
        if isinstance(scripted, BaseException):
            raise scripted
        if scripted is not None:
            return HttpResponse(status=scripted.status, url=url, body=scripted.body, reason=scripted.reason)
        if method == "GET" and path == "/api/status":
            return HttpResponse(status=200, url=url, body=dict(self.status))
        return HttpResponse(status=404, url=url, body=None, reason="Not Found")

    async def open_channel(self, url: str, *, timeout: float) -> FakeChannel:
        path = urlsplit(url).path
        self.open_calls[path] += 1
        error = self.channel_errors.get(path)
        if error is not None:
            raise error
        channel = FakeChannel(url)
        if path in self.drop_on_open:
            self.drop_on_open.discard(path)
            channel.drop()
        self.channels[path].append(channel)
        return channel

    async def close(self) -> None:
        self.closed = True


class FakeDiscovery:
    """Discovery double that announces a fixed list of devices on start."""

    def __init__(self, devices: list[DeviceDescriptor] | None = None, delay: float = 0.0) -> None:
        self._devices = devices or []
        self._delay = delay
        self.started = False
        self.stopped = False
        self._task: asyncio.Task[None] | None = None

    @property
    def devices(self) -> list[DeviceDescriptor]:
        return list(self._devices)

    async def start(
        self,
        on_device: Callable[[DeviceDescriptor], object],
        on_device_lost: Callable[[str], object] | None = None,
    ) -> None:
        self.started = True

        async def announce() -> None:
            await asyncio.sleep(self._delay)
            for device in self._devices:
                _ = on_device(device)

        self._task = asyncio.create_task(announce())

    async def stop(self) -> None:
        self.stopped = True
        if self._task is not None:
            _ = self._task.cancel()


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            message = "condition not met before timeout"
            raise AssertionError(message)
        await asyncio.sleep(0.005)
