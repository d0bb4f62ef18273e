"""Fixed-capacity FIFO that drops the oldest entry on overflow."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator

from neon_client.errors import ErrorCode, GeneralError

__all__ = ["RingBuffer"]


class RingBuffer[T]:
    """Bounded FIFO.

    ``push`` never blocks: once ``capacity`` items are held, each push evicts the
    oldest unread item. ``len(buf) <= buf.capacity`` at all times.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            msg = f"RingBuffer capacity must be >= 1, got {capacity}"
            raise GeneralError(msg, ErrorCode.INVALID_PARAMETER, {"capacity": capacity})
        self._items: deque[T] = deque(maxlen=capacity)
        self.dropped: int = 0

    @property
    def capacity(self) -> int:
        maxlen = self._items.maxlen
        assert maxlen is not None
        return maxlen

    @property
    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def push(self, item: T) -> None:
        if self.is_full:
            self.dropped += 1
        self._items.append(item)

    def pop(self) -> T:
        """Remove and return the oldest item.

        Raises:
            IndexError: If the buffer is empty.

        """
        return self._items.popleft()

    def peek_last(self) -> T | None:
        return self._items[-1] if self._items else None

    def drain(self) -> list[T]:
        items = list(self._items)
        self._items.clear()
        return items

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))
