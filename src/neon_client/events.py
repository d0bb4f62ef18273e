"""Typed lifecycle events and the emitter that dispatches them.

Each event is a frozen dataclass. Listeners register for one event class
(``on(ConnectedEvent, cb)``) or for every event (``on_any(cb)``). Registration
returns an unsubscribe function. Listener failures are logged and never reach
the emitter's caller, so a misbehaving listener cannot break a reader task or a
state transition.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, cast

from neon_client.errors import NeonError
from neon_client.logging_abstraction import get_logger
from neon_client.models import DeviceDescriptor

__all__ = [
    "BatteryLowEvent",
    "ConnectedEvent",
    "ConnectingEvent",
    "ConnectionEvent",
    "DisconnectedEvent",
    "ErrorEvent",
    "EventEmitter",
    "Listener",
    "ReconnectingEvent",
    "StatusUpdateEvent",
    "StreamStartedEvent",
    "StreamStoppedEvent",
    "WornChangedEvent",
]

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ConnectingEvent:
    host: str
    port: int


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    descriptor: DeviceDescriptor


@dataclass(frozen=True, slots=True)
class DisconnectedEvent:
    pass


@dataclass(frozen=True, slots=True)
class ReconnectingEvent:
    attempt: int
    max_attempts: int


@dataclass(frozen=True, slots=True)
class StatusUpdateEvent:
    """A status push-message was merged into the descriptor.

    ``status`` is the raw message; ``descriptor`` is a snapshot taken after the merge.
    """

    status: dict[str, Any]
    descriptor: DeviceDescriptor


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    error: NeonError


@dataclass(frozen=True, slots=True)
class WornChangedEvent:
    worn: bool


@dataclass(frozen=True, slots=True)
class BatteryLowEvent:
    level: int
    critical: bool = False


@dataclass(frozen=True, slots=True)
class StreamStartedEvent:
    key: str


@dataclass(frozen=True, slots=True)
class StreamStoppedEvent:
    key: str
    reason: str = "unsubscribed"


type ConnectionEvent = (
    ConnectingEvent
    | ConnectedEvent
    | DisconnectedEvent
    | ReconnectingEvent
    | StatusUpdateEvent
    | ErrorEvent
    | WornChangedEvent
    | BatteryLowEvent
    | StreamStartedEvent
    | StreamStoppedEvent
)

type Listener[E] = Callable[[E], object]


@dataclass(slots=True, eq=False)
class _Registration:
    listener: Callable[[Any], object]
    once: bool = False


@dataclass
class EventEmitter:
    """Synchronous fan-out of :data:`ConnectionEvent` values.

    Coroutine listeners are scheduled as tasks on the running loop; the emitter
    keeps a reference until they finish and logs their failures.
    """

    _listeners: dict[type, list[_Registration]] = field(default_factory=dict)
    _any_listeners: list[_Registration] = field(default_factory=list)
    _pending: set[asyncio.Task[object]] = field(default_factory=set)

    def on[E](self, event_type: type[E], listener: Listener[E]) -> Callable[[], None]:
        registration = _Registration(listener)
        self._listeners.setdefault(event_type, []).append(registration)
        return lambda: self._remove(event_type, registration)

    def once[E](self, event_type: type[E], listener: Listener[E]) -> Callable[[], None]:
        registration = _Registration(listener, once=True)
        self._listeners.setdefault(event_type, []).append(registration)
        return lambda: self._remove(event_type, registration)

    def on_any(self, listener: Listener[ConnectionEvent]) -> Callable[[], None]:
        registration = _Registration(listener)
        self._any_listeners.append(registration)
        return lambda: self._remove(None, registration)

    def off[E](self, event_type: type[E], listener: Listener[E]) -> bool:
        """Remove the first registration of ``listener`` for ``event_type``."""
        for registration in self._listeners.get(event_type, []):
            if registration.listener == listener:
                self._remove(event_type, registration)
                return True
        return False

    def listener_count(self, event_type: type | None = None) -> int:
        if event_type is None:
            return len(self._any_listeners) + sum(len(regs) for regs in self._listeners.values())
        return len(self._listeners.get(event_type, []))

    def clear(self) -> None:
        self._listeners.clear()
        self._any_listeners.clear()

    def emit(self, event: ConnectionEvent) -> None:
        registrations = [*self._listeners.get(type(event), []), *self._any_listeners]
        for registration in registrations:
            if registration.once:
                self._remove(type(event), registration)
            self._call(registration.listener, event)

    def _remove(self, event_type: type | None, registration: _Registration) -> None:
        registrations = self._any_listeners if event_type is None else self._listeners.get(event_type, [])
        if registration in registrations:
            registrations.remove(registration)

    def _call(self, listener: Callable[[Any], object], event: ConnectionEvent) -> None:
        event_name = type(event).__name__
        try:
            result = listener(event)
        except Exception:
            logger.exception("Event listener failed", extra={"event": event_name, "listener": repr(listener)})
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(cast(Awaitable[object], result))
            self._pending.add(task)
            task.add_done_callback(lambda t: self._listener_done(t, event_name))

    def _listener_done(self, task: asyncio.Task[object], event_name: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Async event listener failed: %s",
                exc,
                extra={"event": event_name, "error_type": type(exc).__name__},
            )
