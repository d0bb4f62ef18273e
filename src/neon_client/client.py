"""Library entry points: connect by address, discover on the network."""

from __future__ import annotations

from neon_client.connection import Connection
from neon_client.const import DEFAULT_DISCOVERY_TIMEOUT
from neon_client.discovery import Discovery, discover_devices
from neon_client.logging_abstraction import get_logger
from neon_client.models import ConnectionOptions, DeviceDescriptor
from neon_client.transport.types import Transport
from neon_client.utils import parse_address

__all__ = ["connect", "discover"]

logger = get_logger(__name__)


async def connect(
    address: str,
    options: ConnectionOptions | None = None,
    transport: Transport | None = None,
    **overrides: object,
) -> Connection:
    """Connect to the device at ``"host[:port]"`` and return the live connection.

    Example:
        conn = await connect("192.168.1.20:8080", auto_reconnect=False)

    Raises:
        NeonConnectionError: INVALID_ADDRESS for a malformed address, otherwise
            the handshake failure.
        GeneralError: INVALID_PARAMETER for bad options.

    """
    host, port = parse_address(address)
    connection = Connection(DeviceDescriptor.from_address(host, port), transport, options, **overrides)
    logger.debug("Connecting by address", extra={"host": host, "port": port})
    try:
        await connection.connect()
    except BaseException:
        await connection.close()
        raise
    return connection


async def discover(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    discovery: Discovery | None = None,
) -> list[DeviceDescriptor]:
    """Return every device that advertised itself within ``timeout`` seconds."""
    return await discover_devices(timeout, discovery)
