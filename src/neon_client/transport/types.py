"""Transport capability consumed by the connection core.

The core never talks to sockets directly: it is handed a :class:`Transport`
that can issue one-shot HTTP requests and open push-channels. Production code
uses :class:`~neon_client.transport.aiohttp_transport.AiohttpTransport`; tests
inject in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

__all__ = [
    "Channel",
    "HttpResponse",
    "Transport",
    "TransportError",
]


class TransportError(Exception):
    """Network-level failure reported by a transport implementation.

    Attributes:
        url: URL of the failed request or channel

    """

    def __init__(self, message: str, url: str) -> None:
        self.url: str = url
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Result of :meth:`Transport.request`.

    Attributes:
        status: HTTP status code
        url: Requested URL
        body: Decoded JSON body, or None if the body was empty or not JSON
        reason: HTTP reason phrase, when the server sent one

    """

    status: int
    url: str
    body: object | None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@runtime_checkable
class Channel(Protocol):
    """One open push-channel (e.g. a WebSocket)."""

    url: str

    @property
    def closed(self) -> bool: ...

    async def receive(self) -> str | None:
        """Wait for the next text frame; None once the channel has closed."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class Transport(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        json: object | None = None,
        timeout: float,
    ) -> HttpResponse:
        """Perform one HTTP request.

        Raises:
            TransportError: On network failure.
            TimeoutError: If ``timeout`` seconds pass without a response.

        """
        ...

    async def open_channel(self, url: str, *, timeout: float) -> Channel:
        """Open a push-channel.

        Raises:
            TransportError: On handshake failure.
            TimeoutError: If the channel is not open within ``timeout`` seconds.

        """
        ...

    async def close(self) -> None: ...
