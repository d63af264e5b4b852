"""Find CineSync relays on the local network via mDNS."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from types import TracebackType
from typing import TYPE_CHECKING, Self, cast

from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

from cinesync.utils import create_task

if TYPE_CHECKING:
    from zeroconf import ServiceListener, Zeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_cinesync-relay._tcp.local."
ROOMS_PATH = "/rooms"


@dataclass(frozen=True, slots=True)
class DiscoveredRelay:
    """A relay advertisement resolved to a connectable URL."""

    name: str
    url: str


def build_relay_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Base WebSocket URL of a relay, from its address and TXT ``path``."""
    raw = properties.get(b"path")
    path = raw.decode("utf-8", "ignore").strip("/") if isinstance(raw, bytes) else ""
    host = f"[{host}]" if ":" in host else host
    return f"ws://{host}:{port}/{path or ROOMS_PATH.strip('/')}"


def room_url(base_url: str, room_id: str) -> str:
    """WebSocket URL of ``room_id`` on the relay at ``base_url``."""
    base = base_url.rstrip("/")
    if not base.endswith(ROOMS_PATH):
        base += ROOMS_PATH
    return f"{base}/{room_id}"


class RelayBrowser:
    """Collects relay advertisements while used as an async context manager.

    Usage::

        async with RelayBrowser() as browser:
            url = await browser.first()
    """

    def __init__(self) -> None:
        self._zeroconf: AsyncZeroconf | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._relays: dict[str, DiscoveredRelay] = {}
        self._found = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def relays(self) -> list[DiscoveredRelay]:
        return sorted(self._relays.values(), key=lambda relay: relay.name)

    async def __aenter__(self) -> Self:
        self._zeroconf = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", self)
            )
        except Exception:
            await self._zeroconf.async_close()
            self._zeroconf = None
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf is not None:
            await self._zeroconf.async_close()
            self._zeroconf = None

    async def first(self) -> str:
        """Wait until a relay is known and return its URL."""
        await self._found.wait()
        return self.relays[0].url

    # ServiceListener interface, invoked on the event loop

    def add_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        self._schedule_resolve(service_type, name)

    def update_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        self._schedule_resolve(service_type, name)

    def remove_service(self, zc: Zeroconf, service_type: str, name: str) -> None:
        if self._relays.pop(name, None) is not None:
            logger.debug("Relay %s went away", name)
        if not self._relays:
            self._found.clear()

    def _schedule_resolve(self, service_type: str, name: str) -> None:
        task = create_task(self._resolve(service_type, name), name="cinesync-relay-resolve")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _resolve(self, service_type: str, name: str) -> None:
        if self._zeroconf is None:
            return
        info = await self._zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None or not info.parsed_addresses():
            return
        url = build_relay_url(info.parsed_addresses()[0], info.port, info.properties)
        self._relays[name] = DiscoveredRelay(name=name.removesuffix(f".{service_type}"), url=url)
        logger.debug("Found relay %s at %s", name, url)
        self._found.set()


async def discover_relays(discovery_time: float = 3.0) -> list[DiscoveredRelay]:
    """Browse for ``discovery_time`` seconds and return every relay seen."""
    async with RelayBrowser() as browser:
        await asyncio.sleep(discovery_time)
        return browser.relays
