"""mDNS discovery of Neon / Invisible companion devices.

Devices advertise an ``_http._tcp`` service named like
``"PI monitor:<device name>:<hardware id>"`` (``"Neon monitor:..."`` on newer
firmware). Discovery is optional: the address-based connect path never needs
it, and callers that cannot browse mDNS can pass :class:`UnavailableDiscovery`.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol, cast, runtime_checkable

from zeroconf import ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from neon_client.const import (
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_PORT,
    INVISIBLE_NAME_PREFIX,
    MDNS_SERVICE_TYPE,
    NEON_NAME_PREFIX,
)
from neon_client.errors import DeviceError, ErrorCode
from neon_client.logging_abstraction import get_logger
from neon_client.models import DeviceDescriptor, DeviceModel

__all__ = [
    "DeviceFoundCallback",
    "DeviceLostCallback",
    "Discovery",
    "UnavailableDiscovery",
    "ZeroconfDiscovery",
    "descriptor_from_service",
    "discover_devices",
    "discover_first_device",
    "is_device_service",
    "wait_for_device",
]

logger = get_logger(__name__)

type DeviceFoundCallback = Callable[[DeviceDescriptor], object]
type DeviceLostCallback = Callable[[str], object]

# Service info lookup timeout (milliseconds, as zeroconf expects)
_SERVICE_INFO_TIMEOUT_MS = 3000


@runtime_checkable
class Discovery(Protocol):
    """Source of device descriptors.

    ``on_device`` fires once per responder (again if its record changes);
    ``on_device_lost`` fires with the device id when a responder goes away.
    """

    @property
    def devices(self) -> list[DeviceDescriptor]: ...

    async def start(
        self,
        on_device: DeviceFoundCallback,
        on_device_lost: DeviceLostCallback | None = None,
    ) -> None: ...

    async def stop(self) -> None: ...


def is_device_service(name: str) -> bool:
    """Whether an advertised service name belongs to a Neon or Invisible device."""
    return NEON_NAME_PREFIX in name or INVISIBLE_NAME_PREFIX in name


def _decode_txt(properties: Mapping[bytes | str, bytes | str | None]) -> dict[str, str]:
    txt: dict[str, str] = {}
    for key, value in properties.items():
        k = key.decode("utf-8", errors="replace") if isinstance(key, bytes) else key
        if value is None:
            txt[k] = ""
        else:
            txt[k] = value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
    return txt


def descriptor_from_service(
    name: str,
    addresses: list[str],
    port: int | None,
    properties: Mapping[bytes | str, bytes | str | None] | None = None,
    host: str | None = None,
) -> DeviceDescriptor:
    """Build a descriptor from one resolved advertisement.

    The id comes from the TXT ``id`` key when present, otherwise the service
    name. The model is Neon when the name mentions it, Invisible otherwise.

    Raises:
        DeviceError: DEVICE_NOT_FOUND if the record carries no address.

    """
    txt = _decode_txt(properties or {})
    address = addresses[0] if addresses else host
    if not address:
        msg = f"Service {name!r} has no resolvable address"
        raise DeviceError(msg, ErrorCode.DEVICE_NOT_FOUND, {"service": name})
    return DeviceDescriptor(
        id=txt.get("id") or name,
        name=name,
        model=DeviceModel.NEON if "Neon" in name else DeviceModel.INVISIBLE,
        ip_address=address,
        port=port or DEFAULT_PORT,
        txt_record=txt,
    )


async def _invoke(callback: Callable[..., object], *args: object) -> None:
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            _ = await cast(Awaitable[object], result)
    except Exception:
        logger.exception("Discovery callback failed", extra={"callback": repr(callback)})


class ZeroconfDiscovery:
    """Browses the local network with python-zeroconf."""

    def __init__(self, service_type: str = MDNS_SERVICE_TYPE, aiozc: AsyncZeroconf | None = None) -> None:
        """Initialize the browser.

        Args:
            service_type: Fully qualified mDNS service type to browse.
            aiozc: Shared zeroconf instance; one is created (and closed on stop)
                when omitted.

        """
        self.service_type: str = service_type
        self._aiozc: AsyncZeroconf | None = aiozc
        self._owns_zeroconf: bool = aiozc is None
        self._browser: AsyncServiceBrowser | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_device: DeviceFoundCallback | None = None
        self._on_device_lost: DeviceLostCallback | None = None
        self._known: dict[str, DeviceDescriptor] = {}
        self._ids_by_service: dict[str, str] = {}
        self._pending: set[concurrent.futures.Future[None]] = set()

    @property
    def devices(self) -> list[DeviceDescriptor]:
        return list(self._known.values())

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def start(
        self,
        on_device: DeviceFoundCallback,
        on_device_lost: DeviceLostCallback | None = None,
    ) -> None:
        """Begin browsing.

        Raises:
            DeviceError: DEVICE_NOT_FOUND if the mDNS socket cannot be opened.

        """
        if self._browser is not None:
            return
        self._on_device = on_device
        self._on_device_lost = on_device_lost
        self._loop = asyncio.get_running_loop()
        self._known.clear()
        self._ids_by_service.clear()
        try:
            if self._aiozc is None:
                self._aiozc = AsyncZeroconf()
            self._browser = AsyncServiceBrowser(
                self._aiozc.zeroconf,
                self.service_type,
                handlers=[self._on_service_state_change],
            )
        except OSError as e:
            raise DeviceError(
                "Failed to start device discovery",
                ErrorCode.DEVICE_NOT_FOUND,
                {"operation": "discovery_start", "cause": str(e)},
            ) from e
        logger.info("Discovery started", extra={"service_type": self.service_type})

    async def stop(self) -> None:
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        for future in list(self._pending):
            _ = future.cancel()
        self._pending.clear()
        if self._owns_zeroconf and self._aiozc is not None:
            await self._aiozc.async_close()
            self._aiozc = None
        self._on_device = None
        self._on_device_lost = None
        logger.info("Discovery stopped", extra={"devices": len(self._known)})

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if self._loop is None:
            return
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            coro = self._handle_service_added(zeroconf, service_type, name)
        elif state_change is ServiceStateChange.Removed:
            coro = self._handle_service_removed(name)
        else:
            return
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _display_name(self, name: str) -> str:
        return name.removesuffix("." + self.service_type)

    async def _handle_service_added(self, zeroconf: Zeroconf, service_type: str, name: str) -> None:
        display_name = self._display_name(name)
        if not is_device_service(display_name):
            return
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, _SERVICE_INFO_TIMEOUT_MS):
            logger.warning("No service info available", extra={"service": name})
            return
        try:
            device = descriptor_from_service(
                display_name,
                info.parsed_addresses(),
                info.port,
                info.properties,
                info.server,
            )
        except DeviceError as e:
            logger.warning("Ignoring advertisement: %s", e.message, extra={"service": name})
            return

        previous = self._known.get(device.id)
        self._known[device.id] = device
        self._ids_by_service[name] = device.id
        if previous is not None and (previous.ip_address, previous.port) == (device.ip_address, device.port):
            return
        logger.info(
            "Device discovered",
            extra={"device_id": device.id, "model": device.model.value, "host": device.ip_address, "port": device.port},
        )
        if self._on_device is not None:
            await _invoke(self._on_device, device)

    async def _handle_service_removed(self, name: str) -> None:
        device_id = self._ids_by_service.pop(name, None)
        if device_id is None or self._known.pop(device_id, None) is None:
            return
        logger.info("Device lost", extra={"device_id": device_id})
        if self._on_device_lost is not None:
            await _invoke(self._on_device_lost, device_id)


class UnavailableDiscovery:
    """Stand-in for environments without mDNS; every start fails."""

    @property
    def devices(self) -> list[DeviceDescriptor]:
        return []

    async def start(
        self,
        on_device: DeviceFoundCallback,
        on_device_lost: DeviceLostCallback | None = None,
    ) -> None:
        raise DeviceError(
            "Discovery is not available in this environment",
            ErrorCode.NOT_IMPLEMENTED,
            {"operation": "discovery_start"},
        )

    async def stop(self) -> None:
        return None


async def discover_devices(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    discovery: Discovery | None = None,
) -> list[DeviceDescriptor]:
    """Browse for ``timeout`` seconds and return every device seen (deduplicated by id)."""
    discovery = discovery if discovery is not None else ZeroconfDiscovery()
    found: dict[str, DeviceDescriptor] = {}

    def on_device(device: DeviceDescriptor) -> None:
        found[device.id] = device

    await discovery.start(on_device)
    try:
        await asyncio.sleep(timeout)
    finally:
        await discovery.stop()
    logger.debug("Discovery finished", extra={"devices": len(found), "timeout": timeout})
    return list(found.values())


async def _first_matching(
    predicate: Callable[[DeviceDescriptor], bool],
    timeout: float,
    discovery: Discovery | None,
) -> DeviceDescriptor | None:
    discovery = discovery if discovery is not None else ZeroconfDiscovery()
    future: asyncio.Future[DeviceDescriptor] = asyncio.get_running_loop().create_future()

    def on_device(device: DeviceDescriptor) -> None:
        if not future.done() and predicate(device):
            future.set_result(device)

    await discovery.start(on_device)
    try:
        return await asyncio.wait_for(future, timeout=timeout)
    except TimeoutError:
        return None
    finally:
        await discovery.stop()


async def discover_first_device(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    discovery: Discovery | None = None,
) -> DeviceDescriptor | None:
    """Return the first device that answers within ``timeout``, or None."""
    return await _first_matching(lambda _: True, timeout, discovery)


async def wait_for_device(
    device_id: str,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    discovery: Discovery | None = None,
) -> DeviceDescriptor:
    """Wait for the device with ``device_id`` to appear.

    Raises:
        DeviceError: DEVICE_NOT_FOUND if it does not show up within ``timeout``.

    """
    device = await _first_matching(lambda d: d.id == device_id, timeout, discovery)
    if device is None:
        msg = f"Device {device_id} not found within timeout"
        raise DeviceError(msg, ErrorCode.DEVICE_NOT_FOUND, {"device_id": device_id, "timeout": timeout})
    return device
