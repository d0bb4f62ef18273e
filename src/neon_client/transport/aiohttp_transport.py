"""Default :class:`~neon_client.transport.types.Transport` backed by aiohttp.

HTTP requests and WebSocket push-channels share one ``aiohttp.ClientSession``
that is created on first use and owned by the transport.
"""

from __future__ import annotations

import asyncio
import json
from typing import override

import aiohttp

from neon_client.const import NEON_VERSION
from neon_client.instrumentation import timed_async
from neon_client.logging_abstraction import get_logger
from neon_client.transport.types import Channel, HttpResponse, TransportError

__all__ = ["AiohttpChannel", "AiohttpTransport"]

logger = get_logger(__name__)

_END_OF_CHANNEL = frozenset({aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR})


class AiohttpChannel(Channel):
    """A push-channel over an aiohttp WebSocket."""

    def __init__(self, url: str, ws: aiohttp.ClientWebSocketResponse) -> None:
        self.url: str = url
        self._ws: aiohttp.ClientWebSocketResponse = ws

    @property
    @override
    def closed(self) -> bool:
        return self._ws.closed

    @override
    async def receive(self) -> str | None:
        while not self._ws.closed:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return str(msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return bytes(msg.data).decode("utf-8", errors="replace")
            if msg.type in _END_OF_CHANNEL:
                if msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(
                        "Push-channel error",
                        extra={"url": self.url, "error": str(self._ws.exception())},
                    )
                break
        return None

    @override
    async def close(self) -> None:
        if not self._ws.closed:
            _ = await self._ws.close()

    def __repr__(self) -> str:
        status = "closed" if self.closed else "open"
        return f"AiohttpChannel({self.url}, {status})"


class AiohttpTransport:
    """HTTP + WebSocket transport for the device API."""

    def __init__(self, session: aiohttp.ClientSession | None = None) -> None:
        """Initialize the transport.

        Args:
            session: Externally owned session to reuse. When omitted the transport
                creates its own on first use and closes it in :meth:`close`.

        """
        self._session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            logger.debug("Creating aiohttp ClientSession")
            self._session = aiohttp.ClientSession(headers={"User-Agent": f"neon-realtime-client/{NEON_VERSION}"})
            self._owns_session = True
        return self._session

    @timed_async("http_request")
    async def request(
        self,
        method: str,
        url: str,
        *,
        json: object | None = None,
        timeout: float,
    ) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                json=json,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                text = await resp.text()
                return HttpResponse(
                    status=resp.status,
                    url=url,
                    body=_decode_json(text),
                    reason=resp.reason,
                )
        except aiohttp.ClientError as e:
            msg = f"{method} {url} failed: {e}"
            raise TransportError(msg, url) from e

    @timed_async("open_channel")
    async def open_channel(self, url: str, *, timeout: float) -> AiohttpChannel:
        session = self._get_session()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url, autoping=True), timeout=timeout)
        except aiohttp.ClientError as e:
            msg = f"WebSocket connection to {url} failed: {e}"
            raise TransportError(msg, url) from e
        logger.debug("Push-channel open", extra={"url": url})
        return AiohttpChannel(url, ws)

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            logger.debug("Closing aiohttp ClientSession")
            await self._session.close()
        self._session = None

    def __repr__(self) -> str:
        return f"AiohttpTransport(owns_session={self._owns_session})"


def _decode_json(text: str) -> object | None:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
