"""Settings persistence for CineSync.

This module provides persistent storage for viewer settings. Settings are
automatically loaded from disk and saved with debouncing.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class _UndefinedType:
    """Singleton for undefined/not-passed values."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _UndefinedType()

# Debounce delay for saving settings
SAVE_DEBOUNCE_SECONDS = 10.0

SETTINGS_FILENAME = "settings.json"


@dataclass
class Settings:
    """All persistent settings for CineSync."""

    player_volume: int = 80
    duck_volume: int = 20
    display_name: str | None = None
    last_relay_url: str | None = None
    last_video_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create settings from a dictionary."""
        return cls(
            player_volume=_clamp(data.get("player_volume", 80)),
            duck_volume=_clamp(data.get("duck_volume", 20)),
            display_name=data.get("display_name"),
            last_relay_url=data.get("last_relay_url"),
            last_video_url=data.get("last_video_url"),
        )


def _clamp(volume: Any) -> int:
    try:
        return max(0, min(100, int(volume)))
    except (TypeError, ValueError):
        return 0


class SettingsManager:
    """Manages settings with debounced disk persistence.

    Changes are saved after a quiet period, or immediately on flush().
    """

    def __init__(self, settings_file: Path) -> None:
        """Initialize the settings manager.

        Args:
            settings_file: Path to the settings file.
        """
        self._settings_file = settings_file
        self._settings = Settings()
        self._debounce_save_handle: asyncio.TimerHandle | None = None

    @property
    def settings_file(self) -> Path:
        return self._settings_file

    async def load(self) -> None:
        """Load settings from disk."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._load)

    @property
    def player_volume(self) -> int:
        """Get the video volume (0-100)."""
        return self._settings.player_volume

    @property
    def duck_volume(self) -> int:
        """Get the volume used while a voice message plays (0-100)."""
        return self._settings.duck_volume

    @property
    def display_name(self) -> str | None:
        return self._settings.display_name

    @property
    def last_relay_url(self) -> str | None:
        """Get the last joined relay URL."""
        return self._settings.last_relay_url

    @property
    def last_video_url(self) -> str | None:
        return self._settings.last_video_url

    @property
    def save_pending(self) -> bool:
        return self._debounce_save_handle is not None

    def update(
        self,
        *,
        player_volume: int | _UndefinedType = UNDEFINED,
        duck_volume: int | _UndefinedType = UNDEFINED,
        display_name: str | None | _UndefinedType = UNDEFINED,
        last_relay_url: str | None | _UndefinedType = UNDEFINED,
        last_video_url: str | None | _UndefinedType = UNDEFINED,
    ) -> None:
        """Update settings fields. Only changed fields trigger a save.

        Args:
            player_volume: New video volume (0-100), or UNDEFINED to keep current.
            duck_volume: New ducked volume (0-100), or UNDEFINED to keep current.
            display_name: New display name, or UNDEFINED to keep current.
            last_relay_url: New last relay URL, or UNDEFINED to keep current.
            last_video_url: New last video URL, or UNDEFINED to keep current.
        """
        changed = False

        # Volumes are clamped before comparison
        volumes = {"player_volume": player_volume, "duck_volume": duck_volume}
        for name, value in volumes.items():
            if not isinstance(value, _UndefinedType):
                value = _clamp(value)
                if getattr(self._settings, name) != value:
                    setattr(self._settings, name, value)
                    changed = True

        fields = {
            "display_name": display_name,
            "last_relay_url": last_relay_url,
            "last_video_url": last_video_url,
        }
        for name, value in fields.items():
            if not isinstance(value, _UndefinedType):
                if getattr(self._settings, name) != value:
                    setattr(self._settings, name, value)
                    changed = True

        if changed:
            self._schedule_save()

    async def flush(self) -> None:
        """Immediately save any pending changes to disk."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()
            self._debounce_save_handle = None
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._save)

    def _schedule_save(self) -> None:
        """Schedule a debounced save operation."""
        if self._debounce_save_handle is not None:
            self._debounce_save_handle.cancel()

        loop = asyncio.get_running_loop()
        self._debounce_save_handle = loop.call_later(
            SAVE_DEBOUNCE_SECONDS, self._debounced_save, loop
        )

    def _debounced_save(self, loop: asyncio.AbstractEventLoop) -> None:
        """Called by the timer to save settings in executor."""
        self._debounce_save_handle = None
        loop.run_in_executor(None, self._save)

    def _load(self) -> None:
        """Load settings from the settings file (blocking I/O)."""
        if not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return

        try:
            data = json.loads(self._settings_file.read_text())
            if not isinstance(data, dict):
                raise ValueError("settings must be a JSON object")
            self._settings = Settings.from_dict(data)
            logger.info(
                "Loaded settings from %s: volume=%d%%, duck=%d%%",
                self._settings_file,
                self._settings.player_volume,
                self._settings.duck_volume,
            )
        except (ValueError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)

    def _save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self._settings.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)


async def get_settings_manager(config_dir: Path | str | None = None) -> SettingsManager:
    """Create and load a settings manager.

    This should only be called once at startup. Pass the returned instance
    to components that need it.

    Args:
        config_dir: Optional directory to store settings. Defaults to ~/.config/cinesync.

    Returns:
        A new SettingsManager instance with settings loaded from disk.
    """
    if config_dir is None:
        config_dir = Path.home() / ".config" / "cinesync"
    elif isinstance(config_dir, str):
        config_dir = Path(config_dir)
    manager = SettingsManager(config_dir / SETTINGS_FILENAME)
    await manager.load()
    return manager
