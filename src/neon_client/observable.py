"""Cold observable streams.

An :class:`Observable` wraps a subscribe function. Each call to
:meth:`Observable.subscribe` runs that function with a fresh
:class:`Subscriber`; the function may return a teardown callable that runs
exactly once, when the subscriber unsubscribes or the stream terminates.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Callable
from typing import override

from neon_client.logging_abstraction import get_logger

__all__ = [
    "Observable",
    "Subscriber",
    "Subscription",
]

logger = get_logger(__name__)

type Teardown = Callable[[], None]
type SubscribeFn[T] = Callable[[Subscriber[T]], Teardown | None]

DEFAULT_ITER_BUFFER = 1000


class Subscriber[T]:
    """Delivery side of one subscription.

    After :meth:`error` or :meth:`complete` the subscriber is closed and further
    notifications are ignored. Observer callbacks that raise are logged.
    """

    def __init__(
        self,
        on_next: Callable[[T], object] | None = None,
        on_error: Callable[[BaseException], object] | None = None,
        on_complete: Callable[[], object] | None = None,
    ) -> None:
        self._on_next = on_next
        self._on_error = on_error
        self._on_complete = on_complete
        self._teardown: Teardown | None = None
        self._closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    def next(self, value: T) -> None:
        if self._closed or self._on_next is None:
            return
        try:
            _ = self._on_next(value)
        except Exception:
            logger.exception("Stream observer failed in on_next")

    def error(self, err: BaseException) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_error is not None:
            try:
                _ = self._on_error(err)
            except Exception:
                logger.exception("Stream observer failed in on_error")
        else:
            logger.warning("Unhandled stream error: %s", err, extra={"error_type": type(err).__name__})
        self._run_teardown()

    def complete(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_complete is not None:
            try:
                _ = self._on_complete()
            except Exception:
                logger.exception("Stream observer failed in on_complete")
        self._run_teardown()

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._run_teardown()

    def _set_teardown(self, teardown: Teardown | None) -> None:
        if teardown is None:
            return
        if self._closed:
            # Terminated synchronously inside the subscribe function.
            teardown()
            return
        self._teardown = teardown

    def _run_teardown(self) -> None:
        teardown, self._teardown = self._teardown, None
        if teardown is not None:
            try:
                teardown()
            except Exception:
                logger.exception("Stream teardown failed")


class Subscription:
    """Handle returned by :meth:`Observable.subscribe`."""

    def __init__(self, subscriber: Subscriber[object]) -> None:
        self._subscriber = subscriber

    @property
    def closed(self) -> bool:
        return self._subscriber.closed

    def unsubscribe(self) -> None:
        self._subscriber.unsubscribe()

    @override
    def __repr__(self) -> str:
        return f"Subscription(closed={self.closed})"


class Observable[T]:
    """Lazy push sequence; nothing happens until someone subscribes."""

    def __init__(self, subscribe_fn: SubscribeFn[T], iter_buffer: int = DEFAULT_ITER_BUFFER) -> None:
        self._subscribe_fn = subscribe_fn
        self._iter_buffer = iter_buffer

    def subscribe(
        self,
        on_next: Callable[[T], object] | None = None,
        on_error: Callable[[BaseException], object] | None = None,
        on_complete: Callable[[], object] | None = None,
    ) -> Subscription:
        subscriber: Subscriber[T] = Subscriber(on_next, on_error, on_complete)
        try:
            teardown = self._subscribe_fn(subscriber)
        except Exception as e:
            subscriber.error(e)
            teardown = None
        subscriber._set_teardown(teardown)
        return Subscription(subscriber)  # type: ignore[arg-type]

    def __aiter__(self) -> AsyncIterator[T]:
        """Iterate with ``async for``.

        Values are buffered (oldest dropped past ``iter_buffer``) while the loop
        body runs. A terminal error is raised from the iterator; completion ends
        the loop. Leaving the loop early unsubscribes.
        """
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        items: deque[T] = deque(maxlen=self._iter_buffer)
        ready = asyncio.Event()
        outcome: list[BaseException | None] = []

        def on_next(value: T) -> None:
            items.append(value)
            ready.set()

        def on_error(err: BaseException) -> None:
            outcome.append(err)
            ready.set()

        def on_complete() -> None:
            outcome.append(None)
            ready.set()

        subscription = self.subscribe(on_next, on_error, on_complete)
        try:
            while True:
                while items:
                    yield items.popleft()
                if outcome:
                    if outcome[0] is not None:
                        raise outcome[0]
                    return
                ready.clear()
                _ = await ready.wait()
        finally:
            subscription.unsubscribe()
