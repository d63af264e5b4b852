"""Multi-listener registries for channel and media callbacks.

Both transports and media surfaces expose ``add_*_listener`` methods that
return an unsubscribe callable. These managers hold the registered callbacks
and dispatch to all of them, isolating failures so one broken listener cannot
stop the others from running.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# Type aliases for listener signatures
EventListener = Callable[[dict[str, Any]], None]
PresenceListener = Callable[[list[str]], None]
DisconnectListener = Callable[[], None]
PlayListener = Callable[[], None]
PauseListener = Callable[[], None]
SeekListener = Callable[[float], None]
ReadyListener = Callable[[], None]


def _remover(listeners: list[Any], listener: Any) -> Callable[[], None]:
    """Build an idempotent unsubscribe function."""

    def unsubscribe() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unsubscribe


class ChannelListenerManager:
    """Manages channel event, presence and disconnect listeners."""

    def __init__(self) -> None:
        """Initialize the listener manager."""
        self._event_listeners: defaultdict[str, list[EventListener]] = defaultdict(list)
        self._presence_listeners: list[PresenceListener] = []
        self._disconnect_listeners: list[DisconnectListener] = []

    def add_event_listener(self, event: str, listener: EventListener) -> Callable[[], None]:
        """Add a listener for a named event. Returns unsubscribe function."""
        listeners = self._event_listeners[event]
        listeners.append(listener)
        return _remover(listeners, listener)

    def add_presence_listener(self, listener: PresenceListener) -> Callable[[], None]:
        """Add a roster listener. Returns unsubscribe function."""
        self._presence_listeners.append(listener)
        return _remover(self._presence_listeners, listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        """Add a disconnect listener. Returns unsubscribe function."""
        self._disconnect_listeners.append(listener)
        return _remover(self._disconnect_listeners, listener)

    def listener_count(self, event: str) -> int:
        """Return how many listeners are bound to ``event``."""
        return len(self._event_listeners.get(event, ()))

    def dispatch_event(self, event: str, data: dict[str, Any]) -> None:
        """Deliver ``data`` to every listener bound to ``event``."""
        # Copy so listeners may unsubscribe while being dispatched
        for listener in list(self._event_listeners.get(event, ())):
            try:
                listener(data)
            except Exception:
                logger.exception("Error in %s listener", event)

    def dispatch_presence(self, members: list[str]) -> None:
        """Deliver the current roster to presence listeners."""
        for listener in list(self._presence_listeners):
            try:
                listener(list(members))
            except Exception:
                logger.exception("Error in presence listener")

    def dispatch_disconnect(self) -> None:
        """Notify disconnect listeners."""
        for listener in list(self._disconnect_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in disconnect listener")


class MediaListenerManager:
    """Manages play, pause, seek and ready listeners for a media surface."""

    def __init__(self) -> None:
        """Initialize the listener manager."""
        self._play_listeners: list[PlayListener] = []
        self._pause_listeners: list[PauseListener] = []
        self._seek_listeners: list[SeekListener] = []
        self._ready_listeners: list[ReadyListener] = []

    def add_play_listener(self, listener: PlayListener) -> Callable[[], None]:
        """Add a play listener. Returns unsubscribe function."""
        self._play_listeners.append(listener)
        return _remover(self._play_listeners, listener)

    def add_pause_listener(self, listener: PauseListener) -> Callable[[], None]:
        """Add a pause listener. Returns unsubscribe function."""
        self._pause_listeners.append(listener)
        return _remover(self._pause_listeners, listener)

    def add_seek_listener(self, listener: SeekListener) -> Callable[[], None]:
        """Add a seek listener. Returns unsubscribe function."""
        self._seek_listeners.append(listener)
        return _remover(self._seek_listeners, listener)

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]:
        """Add a ready listener. Returns unsubscribe function."""
        self._ready_listeners.append(listener)
        return _remover(self._ready_listeners, listener)

    def emit_play(self) -> None:
        for listener in list(self._play_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in play listener")

    def emit_pause(self) -> None:
        for listener in list(self._pause_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in pause listener")

    def emit_seek(self, seconds: float) -> None:
        for listener in list(self._seek_listeners):
            try:
                listener(seconds)
            except Exception:
                logger.exception("Error in seek listener")

    def emit_ready(self) -> None:
        for listener in list(self._ready_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Error in ready listener")


class EngineListenerManager:
    """Manages sync state and media error listeners of the engine."""

    def __init__(self) -> None:
        """Initialize the listener manager."""
        self._state_listeners: list[Callable[[Any], None]] = []
        self._media_error_listeners: list[Callable[[Exception], None]] = []

    def add_state_listener(self, listener: Callable[[Any], None]) -> Callable[[], None]:
        """Add a sync state listener. Returns unsubscribe function."""
        self._state_listeners.append(listener)
        return _remover(self._state_listeners, listener)

    def add_media_error_listener(
        self, listener: Callable[[Exception], None]
    ) -> Callable[[], None]:
        """Add a media error listener. Returns unsubscribe function."""
        self._media_error_listeners.append(listener)
        return _remover(self._media_error_listeners, listener)

    def emit_state(self, state: Any) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Error in state listener")

    def emit_media_error(self, error: Exception) -> None:
        for listener in list(self._media_error_listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("Error in media error listener")
