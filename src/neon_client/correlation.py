"""Correlation ids for grouping the log lines of one lifecycle operation.

A connect attempt, a reconnect cycle and a stream's reader loop each run in
their own correlation scope. The id lives in a :mod:`contextvars` variable, so
tasks spawned inside a scope inherit it.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "neon_correlation_id",
    default=None,
)


def generate_correlation_id(prefix: str | None = None) -> str:
    """Return a new id; ``prefix`` (e.g. ``"connect"``) is prepended when given."""
    token = uuid.uuid4().hex
    return f"{prefix}-{token}" if prefix else token


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    prefix: str | None = None,
) -> Generator[str]:
    """Run a block under ``correlation_id`` (generated if omitted).

    The previous id is restored on exit.

    Example:
        with correlation_context(prefix="reconnect") as corr_id:
            logger.info("Reconnecting")  # tagged with corr_id

    """
    if correlation_id is None:
        correlation_id = generate_correlation_id(prefix)
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


def ensure_correlation_id(prefix: str | None = None) -> str:
    """Return the current id, creating one for task entry points that have none."""
    current = get_correlation_id()
    if current is None:
        current = generate_correlation_id(prefix)
        set_correlation_id(current)
    return current
