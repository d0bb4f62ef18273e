"""Unit tests for cold observables."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from neon_client.observable import Observable, Subscriber


class TestSubscribe:
    """Tests for Observable.subscribe."""

    def test_teardown_runs_once(self):
        """Test teardown runs on unsubscribe and never again."""
        teardown = MagicMock()
        source: Observable[int] = Observable(lambda _subscriber: teardown)

        subscription = source.subscribe()
        subscription.unsubscribe()
        subscription.unsubscribe()

        teardown.assert_called_once()
        assert subscription.closed

    def test_values_and_completion(self):
        def produce(subscriber: Subscriber[int]) -> None:
            subscriber.next(1)
            subscriber.next(2)
            subscriber.complete()
            subscriber.next(3)

        values: list[int] = []
        on_complete = MagicMock()

        subscription = Observable(produce).subscribe(values.append, on_complete=on_complete)

        assert values == [1, 2]
        on_complete.assert_called_once_with()
        assert subscription.closed

    def test_synchronous_error_runs_teardown(self):
        """Test a teardown returned after an immediate error still runs."""
        teardown = MagicMock()

        def fail(subscriber: Subscriber[int]):
            subscriber.error(ValueError("bad"))
            return teardown

        errors: list[BaseException] = []
        _ = Observable(fail).subscribe(on_error=errors.append)

        assert [str(e) for e in errors] == ["bad"]
        teardown.assert_called_once()

    def test_subscribe_fn_exception_becomes_error(self):
        def explode(_subscriber: Subscriber[int]) -> None:
            raise RuntimeError("subscribe failed")

        errors: list[BaseException] = []
        subscription = Observable(explode).subscribe(on_error=errors.append)

        assert isinstance(errors[0], RuntimeError)
        assert subscription.closed

    def test_raising_observer_is_contained(self):
        def produce(subscriber: Subscriber[int]) -> None:
            subscriber.next(1)
            subscriber.next(2)

        seen: list[int] = []

        def on_next(value: int) -> None:
            seen.append(value)
            if value == 1:
                raise RuntimeError("observer bug")

        _ = Observable(produce).subscribe(on_next)

        assert seen == [1, 2]

    def test_each_subscribe_runs_the_source(self):
        subscribe_fn = MagicMock(return_value=None)
        source: Observable[int] = Observable(subscribe_fn)

        _ = source.subscribe()
        _ = source.subscribe()

        assert subscribe_fn.call_count == 2


class TestAsyncIteration:
    """Tests for ``async for`` over an observable."""

    @pytest.mark.asyncio
    async def test_iterates_until_complete(self):
        def produce(subscriber: Subscriber[int]) -> None:
            loop = asyncio.get_running_loop()
            for i in range(3):
                loop.call_soon(subscriber.next, i)
            loop.call_soon(subscriber.complete)

        assert [v async for v in Observable(produce)] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_raises_terminal_error_after_buffered_values(self):
        def produce(subscriber: Subscriber[int]) -> None:
            subscriber.next(1)
            subscriber.error(LookupError("gone"))

        received: list[int] = []
        with pytest.raises(LookupError):
            async for value in Observable(produce):
                received.append(value)

        assert received == [1]

    @pytest.mark.asyncio
    async def test_buffer_drops_oldest(self):
        def produce(subscriber: Subscriber[int]) -> None:
            for i in range(5):
                subscriber.next(i)
            subscriber.complete()

        assert [v async for v in Observable(produce, iter_buffer=2)] == [3, 4]
