"""Media surface protocol and a clock-driven virtual playhead.

The sync engine never touches a real video element. It drives anything that
implements :class:`MediaSurface`: the same play/pause/seek/readiness/rate
primitives an HTML video element offers, plus listener registration for the
events such an element emits.

:class:`VirtualPlayhead` is the surface used by the terminal client. It keeps
a position derived from the event loop clock and the playback rate, emits
events for programmatic changes the way a video element does, and simulates
buffering after loads and seeks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Final, Protocol

from cinesync.listeners import (
    MediaListenerManager,
    PauseListener,
    PlayListener,
    ReadyListener,
    SeekListener,
)

logger = logging.getLogger(__name__)


class PlaybackRejectedError(RuntimeError):
    """The surface refused to start playback (for example autoplay policy)."""


class MediaSurface(Protocol):
    """Playback primitives consumed by the sync engine."""

    @property
    def paused(self) -> bool:
        """Whether the surface is currently paused."""
        ...

    def current_time(self) -> float:
        """Current playback position in seconds."""
        ...

    def seek_to(self, seconds: float) -> None:
        """Jump to ``seconds``. Emits a seek event."""
        ...

    def play(self) -> None:
        """Start playback. Emits a play event if it was paused.

        Raises:
            PlaybackRejectedError: If playback is not allowed.
        """
        ...

    def pause(self) -> None:
        """Pause playback. Emits a pause event if it was playing."""
        ...

    def is_ready(self) -> bool:
        """Whether enough data is buffered to play from the current position."""
        ...

    def set_playback_rate(self, rate: float) -> None: ...

    def set_volume(self, volume: int) -> None: ...

    def load(self, url: str) -> None:
        """Switch the source. Resets position to 0 and pauses, without events."""
        ...

    def add_play_listener(self, listener: PlayListener) -> Callable[[], None]: ...

    def add_pause_listener(self, listener: PauseListener) -> Callable[[], None]: ...

    def add_seek_listener(self, listener: SeekListener) -> Callable[[], None]: ...

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]: ...


class VirtualPlayhead:
    """Clock-driven media surface.

    Position advances with loop time multiplied by the playback rate while
    playing. After ``load()`` or ``seek_to()`` the playhead reports not-ready
    for ``buffer_delay`` seconds, then fires ready listeners.
    """

    _MAX_VOLUME: Final[int] = 100

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        buffer_delay: float = 0.25,
        duration: float | None = None,
        autoplay_allowed: bool = True,
    ) -> None:
        """Initialize the playhead.

        Args:
            loop: Event loop providing the clock. Defaults to the running loop.
            buffer_delay: Simulated buffering time after loads and seeks.
            duration: Optional media length; the position is clamped to it.
            autoplay_allowed: When False, ``play()`` raises PlaybackRejectedError.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._buffer_delay = max(0.0, buffer_delay)
        self._duration = duration
        self.autoplay_allowed = autoplay_allowed
        self._listeners = MediaListenerManager()

        self._url = ""
        self._paused = True
        self._rate = 1.0
        self._volume = self._MAX_VOLUME
        self._anchor_position = 0.0
        self._anchor_time = self._loop.time()
        self._ready = True
        self._ready_handle: asyncio.TimerHandle | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def playback_rate(self) -> float:
        return self._rate

    @property
    def volume(self) -> int:
        """Current output volume (0-100)."""
        return self._volume

    def current_time(self) -> float:
        position = self._anchor_position
        if not self._paused:
            position += (self._loop.time() - self._anchor_time) * self._rate
        if self._duration is not None:
            position = min(position, self._duration)
        return max(0.0, position)

    def _reanchor(self, position: float | None = None) -> None:
        self._anchor_position = self.current_time() if position is None else max(0.0, position)
        self._anchor_time = self._loop.time()

    def seek_to(self, seconds: float) -> None:
        self._reanchor(seconds)
        self._start_buffering()
        self._listeners.emit_seek(self._anchor_position)

    def play(self) -> None:
        if not self.autoplay_allowed:
            raise PlaybackRejectedError("Playback requires a user gesture")
        if not self._paused:
            return
        self._reanchor()
        self._paused = False
        self._listeners.emit_play()

    def pause(self) -> None:
        if self._paused:
            return
        self._reanchor()
        self._paused = True
        self._listeners.emit_pause()

    def is_ready(self) -> bool:
        return self._ready

    def set_playback_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError("Playback rate must be positive")
        self._reanchor()
        self._rate = rate

    def set_volume(self, volume: int) -> None:
        self._volume = max(0, min(self._MAX_VOLUME, int(volume)))

    def load(self, url: str) -> None:
        self._url = url
        self._paused = True
        self._rate = 1.0
        self._reanchor(0.0)
        if url:
            self._start_buffering()
        else:
            self._cancel_buffering()
            self._ready = True
        logger.debug("Loaded media source %r", url)

    def add_play_listener(self, listener: PlayListener) -> Callable[[], None]:
        return self._listeners.add_play_listener(listener)

    def add_pause_listener(self, listener: PauseListener) -> Callable[[], None]:
        return self._listeners.add_pause_listener(listener)

    def add_seek_listener(self, listener: SeekListener) -> Callable[[], None]:
        return self._listeners.add_seek_listener(listener)

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]:
        return self._listeners.add_ready_listener(listener)

    def _start_buffering(self) -> None:
        self._cancel_buffering()
        if self._buffer_delay == 0:
            self._ready = True
            return
        self._ready = False
        self._ready_handle = self._loop.call_later(self._buffer_delay, self._buffered)

    def _cancel_buffering(self) -> None:
        if self._ready_handle is not None:
            self._ready_handle.cancel()
            self._ready_handle = None

    def _buffered(self) -> None:
        self._ready_handle = None
        self._ready = True
        self._listeners.emit_ready()

    def close(self) -> None:
        """Cancel pending buffering timers."""
        self._cancel_buffering()
