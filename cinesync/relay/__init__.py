"""CineSync relay application."""

from __future__ import annotations

import asyncio
import errno
import logging
import signal
import socket
from contextlib import suppress
from dataclasses import dataclass

import qrcode
from aiohttp import web
from zeroconf.asyncio import AsyncServiceInfo, AsyncZeroconf

from cinesync.discovery import SERVICE_TYPE
from cinesync.utils import get_local_ip

from .client import RelayChannel
from .server import ROOMS_PATH, RelayServer

__all__ = ["RelayChannel", "RelayConfig", "RelayServer", "find_free_port", "run_relay"]

logger = logging.getLogger(__name__)


def print_qr_code(url: str) -> None:
    """Print a QR code to the console."""
    qr = qrcode.QRCode(
        error_correction=qrcode.ERROR_CORRECT_L,
        box_size=1,
        border=1,
    )
    qr.add_data(url)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


@dataclass
class RelayConfig:
    """Configuration for the serve command."""

    port: int = 8931
    name: str = "CineSync Relay"
    advertise: bool = True


def find_free_port(port: int, max_attempts: int = 10) -> int:
    """Return the first bindable port starting at ``port``."""
    for attempt in range(max_attempts):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("", port))
                return port
        except OSError as e:
            if e.errno == errno.EADDRINUSE and attempt < max_attempts - 1:
                port += 1
            else:
                raise
    raise OSError(f"Could not find available port after {max_attempts} attempts")


async def _advertise(name: str, host: str, port: int) -> tuple[AsyncZeroconf, AsyncServiceInfo]:
    info = AsyncServiceInfo(
        SERVICE_TYPE,
        f"{name}.{SERVICE_TYPE}",
        addresses=[socket.inet_aton(host)],
        port=port,
        properties={"path": ROOMS_PATH},
        server=f"{socket.gethostname()}.local.",
    )
    zeroconf = AsyncZeroconf()
    await zeroconf.async_register_service(info)
    logger.info("Advertising relay %r via mDNS (%s)", name, SERVICE_TYPE)
    return zeroconf, info


async def run_relay(config: RelayConfig) -> int:
    """Run the relay until interrupted."""
    event_loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            event_loop.add_signal_handler(sig, handle_signal)

    port = find_free_port(config.port)
    relay = RelayServer(config.name)
    runner = web.AppRunner(relay.create_app())
    await runner.setup()
    site = web.TCPSite(runner, port=port)
    await site.start()

    local_ip = get_local_ip()
    url = f"ws://{local_ip}:{port}{ROOMS_PATH}"
    print(f"\nRelay running at {url}/<room>")
    if local_ip == "localhost":
        print("Unable to print QR code because no LAN IP available\n")
    else:
        print()
        print_qr_code(url)
        print()
        print("Scan the QR code to get the relay address")
    print(f"Join with: cinesync join <room> --url {url}")
    print("Press Ctrl+C to quit\n")

    advertised: tuple[AsyncZeroconf, AsyncServiceInfo] | None = None
    if config.advertise and local_ip != "localhost":
        try:
            advertised = await _advertise(config.name, local_ip, port)
        except OSError as e:
            logger.warning("mDNS advertisement failed: %s", e)

    try:
        await shutdown.wait()
    finally:
        if advertised is not None:
            zeroconf, info = advertised
            with suppress(Exception):
                await zeroconf.async_unregister_service(info)
            await zeroconf.async_close()
        await runner.cleanup()

    return 0
