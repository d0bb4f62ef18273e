"""At most one push-channel per stream key, shared by every subscriber of that key."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field

from neon_client.errors import ErrorCode, NeonError, NeonTimeoutError, StreamError
from neon_client.logging_abstraction import get_logger
from neon_client.metrics import (
    record_decode_error,
    record_stream_close,
    record_stream_open,
    record_stream_subscribers,
)
from neon_client.observable import Observable, Subscriber
from neon_client.transport.retry_policy import with_timeout
from neon_client.transport.types import Channel, Transport, TransportError

__all__ = ["StreamMultiplexer"]

logger = get_logger(__name__)


@dataclass(eq=False)
class _StreamEntry:
    key: str
    url: str
    decode: Callable[[str], object]
    subscribers: list[Subscriber[object]] = field(default_factory=list)
    channel: Channel | None = None
    task: asyncio.Task[None] | None = None
    terminated: bool = False


class StreamMultiplexer:
    """Shares one underlying push-channel per key across N subscribers.

    The channel is opened when the first subscriber attaches and closed when
    the last one detaches. If the channel closes or a frame fails to decode
    while subscribers remain, every subscriber of that key gets a terminal
    :class:`StreamError` and the entry is dropped; nothing is re-opened
    automatically.
    """

    def __init__(
        self,
        transport: Transport,
        device_id: str,
        open_timeout: float,
        on_started: Callable[[str], None] | None = None,
        on_stopped: Callable[[str, str], None] | None = None,
    ) -> None:
        self._transport = transport
        self._device_id = device_id
        self._open_timeout = open_timeout
        self._on_started = on_started
        self._on_stopped = on_stopped
        self._entries: dict[str, _StreamEntry] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def keys(self) -> list[str]:
        return list(self._entries)

    def subscriber_count(self, key: str | None = None) -> int:
        if key is not None:
            entry = self._entries.get(key)
            return len(entry.subscribers) if entry else 0
        return sum(len(e.subscribers) for e in self._entries.values())

    def stream[T](
        self,
        key: str,
        url: str,
        decode: Callable[[str], T],
        is_ready: Callable[[], bool],
    ) -> Observable[T]:
        """Return a cold observable bound to ``key``.

        Args:
            key: Deduplication key; equal keys share one channel.
            url: Push-channel URL opened for the first subscriber.
            decode: Turns one raw frame into a value; ``ValueError`` ends the stream.
            is_ready: Checked on each subscribe; False yields an immediate
                DEVICE_NOT_CONNECTED stream error without opening anything.

        """

        def subscribe(subscriber: Subscriber[T]) -> Callable[[], None] | None:
            if not is_ready():
                subscriber.error(
                    StreamError("Device not connected", ErrorCode.DEVICE_NOT_CONNECTED, {"stream": key}),
                )
                return None
            entry = self._attach(key, url, decode, subscriber)  # type: ignore[arg-type]
            return lambda: self._detach(entry, subscriber)  # type: ignore[arg-type]

        return Observable(subscribe)

    def _attach(
        self,
        key: str,
        url: str,
        decode: Callable[[str], object],
        subscriber: Subscriber[object],
    ) -> _StreamEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _StreamEntry(key=key, url=url, decode=decode)
            self._entries[key] = entry
            entry.task = asyncio.create_task(self._run(entry), name=f"neon-stream-{key}")
            self._tasks.add(entry.task)
            entry.task.add_done_callback(self._tasks.discard)
            logger.debug("Stream entry created", extra={"stream": key, "url": url})
        entry.subscribers.append(subscriber)
        record_stream_subscribers(self._device_id, self.subscriber_count())
        logger.debug(
            "Subscriber attached",
            extra={"stream": key, "subscribers": len(entry.subscribers)},
        )
        return entry

    def _detach(self, entry: _StreamEntry, subscriber: Subscriber[object]) -> None:
        if subscriber in entry.subscribers:
            entry.subscribers.remove(subscriber)
        record_stream_subscribers(self._device_id, self.subscriber_count())
        if entry.terminated or entry.subscribers:
            return
        logger.debug("Last subscriber detached, closing stream", extra={"stream": entry.key})
        self._release(entry)
        if entry.task is not None:
            _ = entry.task.cancel()

    def _release(self, entry: _StreamEntry) -> None:
        entry.terminated = True
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def _fail(self, entry: _StreamEntry, error: NeonError) -> None:
        self._release(entry)
        subscribers, entry.subscribers = entry.subscribers, []
        logger.warning(
            "Stream terminated: %s",
            error.message,
            extra={"stream": entry.key, "code": error.code.value, "subscribers": len(subscribers)},
        )
        for subscriber in subscribers:
            subscriber.error(error)
        record_stream_subscribers(self._device_id, self.subscriber_count())

    async def _run(self, entry: _StreamEntry) -> None:
        reason = "unsubscribed"
        try:
            try:
                entry.channel = await with_timeout(
                    self._transport.open_channel(entry.url, timeout=self._open_timeout),
                    self._open_timeout,
                    "Timed out opening stream",
                    "open_stream",
                )
            except (TransportError, NeonTimeoutError, OSError) as e:
                reason = "open_failed"
                self._fail(
                    entry,
                    StreamError(
                        f"Failed to start stream: {e}",
                        ErrorCode.STREAM_START_FAILED,
                        {"operation": "open_stream", "stream": entry.key, "url": entry.url, "cause": str(e)},
                    ),
                )
                return

            record_stream_open(self._device_id, entry.key)
            if self._on_started:
                self._on_started(entry.key)

            while True:
                raw = await entry.channel.receive()
                if raw is None:
                    break
                try:
                    value = entry.decode(raw)
                except ValueError as e:
                    reason = "decode_error"
                    record_decode_error(self._device_id, entry.key)
                    self._fail(
                        entry,
                        StreamError(
                            "Failed to decode stream frame",
                            ErrorCode.STREAM_DECODE_ERROR,
                            {"operation": "decode_frame", "stream": entry.key, "cause": str(e)},
                        ),
                    )
                    return
                for subscriber in list(entry.subscribers):
                    subscriber.next(value)

            if not entry.terminated:
                reason = "interrupted"
                self._fail(
                    entry,
                    StreamError(
                        "Stream closed unexpectedly",
                        ErrorCode.STREAM_INTERRUPTED,
                        {"operation": "receive", "stream": entry.key, "url": entry.url},
                    ),
                )
        finally:
            await self._close_channel(entry, reason)

    async def _close_channel(self, entry: _StreamEntry, reason: str) -> None:
        channel, entry.channel = entry.channel, None
        if channel is None:
            return
        if not channel.closed:
            try:
                await channel.close()
            except (TransportError, OSError) as e:
                logger.warning("Error closing stream channel: %s", e, extra={"stream": entry.key})
        record_stream_close(self._device_id, entry.key, reason)
        logger.debug("Stream channel closed", extra={"stream": entry.key, "reason": reason})
        if self._on_stopped:
            self._on_stopped(entry.key, reason)

    async def wait_idle(self) -> None:
        """Wait until every stopping stream task has finished."""
        tasks = [t for t in self._tasks if t.done() or t.cancelling()]
        if tasks:
            _ = await asyncio.gather(*tasks, return_exceptions=True)

    async def close_all(self) -> None:
        """Complete every subscriber and close every channel."""
        entries = list(self._entries.values())
        for entry in entries:
            self._release(entry)
            subscribers, entry.subscribers = entry.subscribers, []
            for subscriber in subscribers:
                subscriber.complete()
            if entry.task is not None:
                _ = entry.task.cancel()
        record_stream_subscribers(self._device_id, 0)
        tasks = [e.task for e in entries if e.task is not None]
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
