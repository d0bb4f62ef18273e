from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple, Protocol

from neon_client.const import DEFAULT_PORT, PORT_RANGE, SYNC_TOLERANCE
from neon_client.errors import ErrorCode, NeonConnectionError


class Address(NamedTuple):
    host: str
    port: int


class _Timestamped(Protocol):
    @property
    def timestamp(self) -> float: ...


def parse_address(address: str, default_port: int = DEFAULT_PORT) -> Address:
    """Parse ``"host"`` or ``"host:port"``.

    Args:
        address: Hostname or IPv4 address, optionally followed by ``:port``.
        default_port: Port used when ``address`` has none.

    Returns:
        The parsed host and port.

    Raises:
        NeonConnectionError: INVALID_ADDRESS for an empty host, a non-numeric or
            out-of-range port, or more than one ``:`` separator.

    """
    if not isinstance(address, str) or not address.strip():
        msg = "Invalid address: must be a non-empty string"
        raise NeonConnectionError(msg, ErrorCode.INVALID_ADDRESS, {"address": address})

    parts = address.strip().split(":")
    if len(parts) > 2:
        msg = f"Invalid address format: {address}"
        raise NeonConnectionError(msg, ErrorCode.INVALID_ADDRESS, {"address": address})

    host = parts[0].strip()
    if not host:
        msg = f"Invalid address: missing host in {address!r}"
        raise NeonConnectionError(msg, ErrorCode.INVALID_ADDRESS, {"address": address})
    if len(parts) == 1:
        return Address(host, default_port)

    port_text = parts[1].strip()
    if not port_text.isdigit() or not PORT_RANGE[0] <= int(port_text) <= PORT_RANGE[1]:
        msg = f"Invalid port number: {parts[1]!r} (expected {PORT_RANGE[0]}-{PORT_RANGE[1]})"
        raise NeonConnectionError(msg, ErrorCode.INVALID_ADDRESS, {"address": address, "port": parts[1]})
    return Address(host, int(port_text))


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(max(value, minimum), maximum)


def timestamps_match(t1: float, t2: float, tolerance: float = SYNC_TOLERANCE) -> bool:
    return abs(t1 - t2) <= tolerance


def find_closest_timestamp[T: _Timestamped](
    target: float,
    items: Sequence[T],
    tolerance: float = SYNC_TOLERANCE,
) -> T | None:
    """Binary-search ``items`` (sorted by ``timestamp``) for the entry nearest ``target``.

    Returns None if nothing lies within ``tolerance`` seconds.
    """
    low, high = 0, len(items) - 1
    closest: T | None = None
    best = float("inf")
    while low <= high:
        mid = (low + high) // 2
        diff = abs(items[mid].timestamp - target)
        if diff < best and diff <= tolerance:
            best = diff
            closest = items[mid]
        if items[mid].timestamp < target:
            low = mid + 1
        else:
            high = mid - 1
    return closest
