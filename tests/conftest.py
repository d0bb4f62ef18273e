"""Shared fixtures for the Neon client tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from neon_client.connection import Connection
from neon_client.events import ConnectionEvent
from neon_client.models import DeviceDescriptor
from tests.helpers.fakes import FakeTransport


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Transport double answering GET /api/status with ``{"batteryLevel": 85, "isWorn": True}``."""
    return FakeTransport()


@pytest.fixture
def descriptor() -> DeviceDescriptor:
    return DeviceDescriptor.from_address("127.0.0.1", 8081)


@pytest.fixture
def make_connection(
    fake_transport: FakeTransport,
    descriptor: DeviceDescriptor,
) -> Callable[..., Connection]:
    """Build connections on the fake transport; reconnect is off unless asked for."""

    def _make(**overrides: object) -> Connection:
        options: dict[str, object] = {"auto_reconnect": False, "reconnect_interval": 0.01, "timeout": 0.5}
        options.update(overrides)
        return Connection(descriptor, fake_transport, **options)

    return _make


@pytest_asyncio.fixture
async def connection(make_connection: Callable[..., Connection]) -> AsyncGenerator[Connection]:
    """A connection that is already CONNECTED; disconnected on teardown."""
    conn = make_connection()
    await conn.connect()
    yield conn
    await conn.disconnect()


@pytest.fixture
def record_events() -> Callable[[Connection], list[ConnectionEvent]]:
    """Attach an ``on_any`` recorder to a connection and return its event list."""

    def _record(conn: Connection) -> list[ConnectionEvent]:
        events: list[ConnectionEvent] = []
        _ = conn.on_any(events.append)
        return events

    return _record
