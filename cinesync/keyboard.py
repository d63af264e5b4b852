"""Keyboard input handling for CineSync."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING

import readchar

from cinesync.sync import SyncState

if TYPE_CHECKING:
    from cinesync.settings import SettingsManager
    from cinesync.sync import SyncEngine
    from cinesync.ui import CineSyncUI
    from cinesync.walkie import WalkieTalkie

logger = logging.getLogger(__name__)

SEEK_STEP_SECONDS = 10.0
VOLUME_STEP = 5


class CommandHandler:
    """Handles keyboard commands."""

    def __init__(
        self,
        engine: SyncEngine,
        walkie: WalkieTalkie | None = None,
        settings: SettingsManager | None = None,
        ui: CineSyncUI | None = None,
        print_event: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the command handler."""
        self._engine = engine
        self._walkie = walkie
        self._settings = settings
        self._ui = ui
        self._print_event = print_event or (lambda _: None)

    def toggle_play_pause(self) -> None:
        """Toggle between play and pause."""
        engine = self._engine
        if engine.state is SyncState.PLAYING and not engine.media.paused:
            engine.request_pause()
        elif not engine.request_play():
            self._print_event("Sync in progress, try again")

    def seek_relative(self, delta: float) -> None:
        """Seek by ``delta`` seconds and negotiate the new position."""
        target = self._engine.position + delta
        if not self._engine.request_seek(target):
            self._print_event("Sync in progress, try again")

    def change_volume(self, delta: int) -> None:
        """Adjust the video volume by delta."""
        target = max(0, min(100, self._engine.user_volume + delta))
        self._engine.set_user_volume(target)
        if self._settings is not None:
            self._settings.update(player_volume=target)
        self._print_event(f"Volume: {target}%")

    def toggle_talk(self) -> None:
        """Start or stop push-to-talk."""
        if self._walkie is None or not self._walkie.capture_available:
            self._print_event("Voice unavailable")
            return
        talking = self._walkie.toggle_talk()
        self._print_event("Talking..." if talking else "Stopped talking")

    def open_url_input(self) -> None:
        """Open the URL input panel."""
        if self._ui is not None:
            self._ui.show_url_input()

    def close_url_input(self) -> None:
        if self._ui is not None:
            self._ui.hide_url_input()

    def apply_url_input(self) -> None:
        """Share the entered URL with the room."""
        if self._ui is None:
            return
        url = (self._ui.state.url_input or "").strip()
        self._ui.hide_url_input()
        if not url:
            return
        self._engine.change_url(url)
        if self._settings is not None:
            self._settings.update(last_video_url=url)
        self._print_event(f"Video: {url}")


async def keyboard_loop(
    engine: SyncEngine,
    walkie: WalkieTalkie | None = None,
    settings: SettingsManager | None = None,
    ui: CineSyncUI | None = None,
    print_event: Callable[[str], None] | None = None,
) -> None:
    """Run the keyboard input loop.

    Args:
        engine: Sync engine receiving the viewer's commands.
        walkie: Optional walkie-talkie for push-to-talk.
        settings: Optional settings manager persisting volume and URL.
        ui: Optional UI instance.
        print_event: Function to print events.
    """
    handler = CommandHandler(engine, walkie, settings, ui, print_event)

    # Key dispatch table: key -> (highlight_name, action)
    shortcuts: dict[str, tuple[str, Callable[[], None]]] = {
        " ": ("space", handler.toggle_play_pause),
        "t": ("talk", handler.toggle_talk),
        "u": ("url", handler.open_url_input),
        readchar.key.LEFT: ("back", lambda: handler.seek_relative(-SEEK_STEP_SECONDS)),
        readchar.key.RIGHT: ("forward", lambda: handler.seek_relative(SEEK_STEP_SECONDS)),
        readchar.key.UP: ("up", lambda: handler.change_volume(VOLUME_STEP)),
        readchar.key.DOWN: ("down", lambda: handler.change_volume(-VOLUME_STEP)),
    }

    if not sys.stdin.isatty():
        logger.info("Running as daemon without interactive input")
        await asyncio.Event().wait()
        return

    loop = asyncio.get_running_loop()

    while True:
        try:
            # Run blocking readkey in executor to not block the event loop
            key = await loop.run_in_executor(None, readchar.readkey)
        except (asyncio.CancelledError, KeyboardInterrupt):
            break

        # Handle Ctrl+C
        if key == "\x03":
            break

        # URL input mode captures every key
        if ui is not None and ui.is_url_input_visible():
            if key in ("\r", "\n", readchar.key.ENTER):
                ui.highlight_shortcut("url-enter")
                handler.apply_url_input()
            elif key == readchar.key.ESC:
                ui.highlight_shortcut("url-cancel")
                handler.close_url_input()
            elif not key.startswith("\x1b"):
                ui.edit_url_input(key)
            continue

        if key in ("q", "Q"):
            if ui:
                ui.highlight_shortcut("quit")
            break

        action = shortcuts.get(key) or shortcuts.get(key.lower())
        if action:
            highlight_name, action_handler = action
            if ui:
                ui.highlight_shortcut(highlight_name)
            action_handler()
            continue

        # Ignore unhandled escape sequences
        if key.startswith("\x1b"):
            continue
