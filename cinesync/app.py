"""Core application logic for the CineSync viewer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass

from aiohttp import ClientError

from cinesync.discovery import RelayBrowser, room_url
from cinesync.keyboard import keyboard_loop
from cinesync.media import VirtualPlayhead
from cinesync.relay import RelayChannel
from cinesync.settings import SettingsManager, get_settings_manager
from cinesync.sync import SyncEngine, SyncState, SyncTiming
from cinesync.transport import RoomFullError
from cinesync.ui import CineSyncUI
from cinesync.utils import create_task, default_peer_name
from cinesync.walkie import WalkieTalkie, resolve_device

logger = logging.getLogger(__name__)

UI_REFRESH_SECONDS = 0.25


class ConnectionManager:
    """Manages reconnection with exponential backoff."""

    def __init__(
        self,
        keyboard_task: asyncio.Task[None],
        max_backoff: float = 300.0,
    ) -> None:
        """Initialize the connection manager."""
        self._keyboard_task = keyboard_task
        self._error_backoff = 1.0
        self._max_backoff = max_backoff

    async def sleep_interruptible(self, duration: float) -> bool:
        """Sleep with keyboard interrupt support.

        Returns True if interrupted by keyboard, False if completed normally.
        """
        remaining = duration
        while remaining > 0 and not self._keyboard_task.done():
            await asyncio.sleep(min(0.5, remaining))
            remaining -= 0.5
        return self._keyboard_task.done()

    def reset_backoff(self) -> None:
        """Reset backoff to initial value after successful connection."""
        self._error_backoff = 1.0

    def get_error_backoff(self) -> float:
        """Get the current error backoff duration."""
        return self._error_backoff

    def increase_backoff(self) -> None:
        """Increase the backoff duration for the next retry."""
        self._error_backoff = min(self._error_backoff * 2, self._max_backoff)

    async def handle_error_backoff(self, print_event: Callable[[str], None]) -> bool:
        """Sleep for the current backoff, then double it.

        Returns True if interrupted by keyboard, False if completed normally.
        """
        print_event(f"Connection error, retrying in {self._error_backoff:.0f}s...")
        interrupted = await self.sleep_interruptible(self._error_backoff)
        self.increase_backoff()
        return interrupted


async def connection_loop(
    engine: SyncEngine,
    relay_url: str,
    room: str,
    name: str | None,
    keyboard_task: asyncio.Task[None],
    print_event: Callable[[str], None],
    connection_manager: ConnectionManager,
    ui: CineSyncUI | None = None,
    on_connected: Callable[[RelayChannel], None] | None = None,
) -> None:
    """
    Run the connection loop with automatic reconnection on disconnect.

    Each successful connection re-attaches the engine, which bootstraps from
    the other viewer again. Errors back off exponentially up to five minutes.

    Args:
        engine: Sync engine to attach to each connection.
        relay_url: Base WebSocket URL of the relay.
        room: Room to join.
        name: Display name reported to the relay.
        keyboard_task: Keyboard input task to monitor.
        print_event: Function to print events.
        connection_manager: Connection manager for reconnection logic.
        ui: Optional UI instance.
        on_connected: Called after each successful attach.
    """
    manager = connection_manager
    url = room_url(relay_url, room)

    while not keyboard_task.done():
        channel = RelayChannel(url, name=name)
        try:
            await channel.connect()
            print_event(f"Joined room {room} as {channel.peer_id}")
            if ui is not None:
                ui.set_connected(relay_url, room, channel.peer_id)
                ui.set_members(channel.members)
                channel.add_presence_listener(ui.set_members)
            else:
                channel.add_presence_listener(
                    lambda members: print_event(f"Viewers in room: {', '.join(members)}")
                )
            manager.reset_backoff()

            disconnect_event = asyncio.Event()
            channel.add_disconnect_listener(disconnect_event.set)
            engine.attach(channel)
            if on_connected is not None:
                on_connected(channel)

            disconnect_task = asyncio.create_task(disconnect_event.wait())
            try:
                done, _ = await asyncio.wait(
                    {keyboard_task, disconnect_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                disconnect_task.cancel()
            engine.detach()
            if keyboard_task in done:
                break

            logger.info("Connection lost")
            print_event("Connection lost, reconnecting...")
            if ui is not None:
                ui.set_disconnected("Connection lost, reconnecting...")
            if await manager.sleep_interruptible(manager.get_error_backoff()):
                break

        except RoomFullError:
            print_event(f"Room {room} is full")
            if ui is not None:
                ui.set_disconnected(f"Room {room} is full")
            if await manager.handle_error_backoff(print_event):
                break
        except (TimeoutError, OSError, ClientError) as e:
            # ConnectionError is an OSError
            logger.debug(
                "Connection error (%s), retrying in %.0fs",
                type(e).__name__,
                manager.get_error_backoff(),
            )
            if ui is not None:
                ui.set_disconnected(
                    f"Cannot reach relay, retrying in {manager.get_error_backoff():.0f}s"
                )
            if await manager.handle_error_backoff(print_event):
                break
        except Exception:
            logger.exception("Unexpected error during connection")
            print_event("Unexpected error occurred")
            if await manager.handle_error_backoff(print_event):
                break
        finally:
            if engine.transport is channel:
                engine.detach()
            await channel.disconnect()


@dataclass
class AppConfig:
    """Configuration for the CineSync viewer."""

    room: str
    url: str | None = None
    name: str | None = None
    video_url: str | None = None
    audio_device: str | None = None
    voice: bool = True
    log_level: str = "INFO"
    headless: bool = False


class CineSyncApp:
    """Main CineSync viewer application."""

    def __init__(self, config: AppConfig) -> None:
        """Initialize the application."""
        self._config = config
        self._ui: CineSyncUI | None = None
        self._settings: SettingsManager | None = None
        self._engine: SyncEngine | None = None
        self._media: VirtualPlayhead | None = None
        self._walkie: WalkieTalkie | None = None
        self._video_url_pending = config.video_url

    def _print_event(self, message: str) -> None:
        """Print an event message."""
        if self._ui is not None:
            self._ui.set_notice(message)
        else:
            print(message, flush=True)  # noqa: T201

    async def _resolve_relay_url(self) -> str | None:
        if self._config.url is not None:
            return self._config.url
        logger.info("Waiting for mDNS discovery of a CineSync relay...")
        print("Searching for a CineSync relay...", flush=True)  # noqa: T201
        try:
            async with RelayBrowser() as browser:
                return await browser.first()
        except asyncio.CancelledError:
            return None

    async def run(self) -> int:
        """Run the application."""
        config = self._config
        interactive = sys.stdin.isatty() and not config.headless

        # With the UI, only show WARNING and above unless explicitly set to DEBUG
        if interactive and config.log_level != "DEBUG":
            logging.basicConfig(level=logging.WARNING)
        else:
            logging.basicConfig(level=getattr(logging, config.log_level))

        self._settings = settings = await get_settings_manager()
        name = config.name or settings.display_name or default_peer_name()
        if config.name is not None:
            settings.update(display_name=config.name)

        device = None
        if config.voice and config.audio_device is not None:
            try:
                device = resolve_device(config.audio_device)
            except ValueError as e:
                logger.error("Audio device error: %s", e)
                return 1

        relay_url = await self._resolve_relay_url()
        if relay_url is None:
            return 1
        settings.update(last_relay_url=relay_url)

        loop = asyncio.get_running_loop()
        self._media = media = VirtualPlayhead(loop)
        self._walkie = walkie = WalkieTalkie(
            input_device=device, output_device=device, enabled=config.voice, loop=loop
        )
        self._engine = engine = SyncEngine(
            media,
            timing=SyncTiming(duck_volume=settings.duck_volume),
            voice_sink=walkie.sink,
            voice_available=walkie.capture_available,
            user_volume=settings.player_volume,
            loop=loop,
        )
        walkie.bind(engine)
        engine.add_media_error_listener(
            lambda err: self._print_event(f"Playback blocked: {err}")
        )

        if interactive:
            self._ui = CineSyncUI()
            self._ui.start()
            engine.add_state_listener(self._ui.set_sync_state)
        else:
            engine.add_state_listener(lambda state: self._print_event(f"Sync: {state.value}"))

        refresh_task = create_task(self._refresh_loop(), name="cinesync-ui-refresh")
        try:
            if interactive:
                keyboard_task = asyncio.create_task(
                    keyboard_loop(engine, walkie, settings, self._ui, self._print_event)
                )
            else:
                keyboard_task = asyncio.create_task(asyncio.Event().wait())

            def signal_handler() -> None:
                logger.debug("Received interrupt signal, shutting down...")
                keyboard_task.cancel()

            # Signal handlers aren't supported on this platform (e.g., Windows)
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(signal.SIGINT, signal_handler)
                loop.add_signal_handler(signal.SIGTERM, signal_handler)

            try:
                await connection_loop(
                    engine,
                    relay_url,
                    config.room,
                    name,
                    keyboard_task,
                    self._print_event,
                    ConnectionManager(keyboard_task),
                    self._ui,
                    self._on_connected,
                )
            except asyncio.CancelledError:
                logger.debug("Connection loop cancelled")
            finally:
                with contextlib.suppress(NotImplementedError):
                    loop.remove_signal_handler(signal.SIGINT)
                    loop.remove_signal_handler(signal.SIGTERM)
                keyboard_task.cancel()
        finally:
            refresh_task.cancel()
            await walkie.close()
            engine.close()
            media.close()
            if self._ui is not None:
                self._ui.stop()
            await settings.flush()

        return 0

    def _on_connected(self, _channel: RelayChannel) -> None:
        """Share the video URL from the command line once."""
        url = self._video_url_pending
        if url is None or self._engine is None:
            return
        self._video_url_pending = None
        self._engine.change_url(url)
        if self._settings is not None:
            self._settings.update(last_video_url=url)

    async def _refresh_loop(self) -> None:
        """Mirror engine state into the UI."""
        while True:
            ui = self._ui
            engine = self._engine
            media = self._media
            if ui is not None and engine is not None and media is not None:
                playing = engine.state is SyncState.PLAYING and not media.paused
                ui.set_playback(media.url, engine.position, playing=playing)
                ui.set_volume(engine.user_volume, engine.output_volume, ducked=engine.voice.ducked)
                if self._walkie is not None:
                    ui.set_voice(
                        available=self._walkie.capture_available,
                        talking=self._walkie.talking,
                        receiving=self._walkie.playing,
                        remaining=self._walkie.talk_remaining,
                    )
            await asyncio.sleep(UI_REFRESH_SECONDS)
