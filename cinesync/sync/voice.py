"""Voice arbitration: pause and duck playback around walkie-talkie messages."""

from __future__ import annotations

import asyncio
import base64
import logging
import math
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from cinesync.protocol import VoiceAudio
from cinesync.sync.session import SyncState
from cinesync.utils import create_task

if TYPE_CHECKING:
    from cinesync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

VoiceSink = Callable[[VoiceAudio], Awaitable[None]]
"""Plays a received voice message and returns when playback has ended."""


class VoiceArbiter:
    """Override playback state while voice is active and restore it afterwards.

    Never takes the sync lock. A voice interruption that starts while a
    handshake is in flight abandons the handshake.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        sink: VoiceSink | None = None,
        available: bool = False,
        user_volume: int = 80,
    ) -> None:
        self._engine = engine
        self._sink = sink
        self.available = available
        """Whether this peer can capture voice. When False local voice is a no-op."""
        self._user_volume = _clamp_volume(user_volume)

        self._local_active = False
        self._local_was_playing = False
        self._local_paused_at = 0.0
        self._resume_handle: asyncio.TimerHandle | None = None

        self._remote_active = 0
        self._remote_was_playing = False
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def local_active(self) -> bool:
        return self._local_active

    @property
    def remote_active(self) -> int:
        """Number of received voice messages currently playing."""
        return self._remote_active

    @property
    def ducked(self) -> bool:
        return self._remote_active > 0

    @property
    def user_volume(self) -> int:
        return self._user_volume

    @property
    def output_volume(self) -> int:
        """Volume the media surface should currently play at."""
        if self.ducked:
            return min(self._user_volume, self._engine.timing.duck_volume)
        return self._user_volume

    @property
    def resume_pending(self) -> bool:
        return self._resume_handle is not None

    def set_user_volume(self, volume: int) -> None:
        """Set the user's volume. Applied at once unless ducked."""
        self._user_volume = _clamp_volume(volume)
        self.apply_volume()

    def apply_volume(self) -> None:
        self._engine.media.set_volume(self.output_volume)

    # ---- local voice ---------------------------------------------------

    def begin_local(self) -> None:
        if not self.available:
            logger.debug("Voice capture unavailable, ignoring voice start")
            return
        if self._local_active:
            return
        engine = self._engine
        self._cancel_resume()
        self._local_active = True
        self._local_was_playing = engine.playback.playing or engine.session.state in (
            SyncState.REQUESTING,
            SyncState.WAITING_ACK,
        )
        self._local_paused_at = engine.loop.time()
        logger.info("Voice started, pausing playback (was playing: %s)", self._local_was_playing)
        engine.handshake.abort("voice activity")
        engine.handshake.request_pause()

    def end_local(self, duration: float | None) -> None:
        """Finish local voice and schedule the resume.

        A finite, non-negative ``duration`` resumes exactly that long after the
        pause; anything else resumes at once.
        """
        if not self.available or not self._local_active:
            return
        self._local_active = False
        if not self._local_was_playing:
            logger.info("Voice ended, playback was paused before")
            return

        if duration is not None and math.isfinite(duration) and duration >= 0:
            delay = max(0.0, self._local_paused_at + duration - self._engine.loop.time())
            logger.info("Voice ended, resuming in %.2fs", delay)
            self._resume_handle = self._engine.loop.call_later(delay, self._resume_local)
        else:
            logger.info("Voice ended, resuming now")
            self._resume_local()

    def _resume_local(self) -> None:
        self._resume_handle = None
        self._local_was_playing = False
        self._engine.handshake.request_play()

    def _cancel_resume(self) -> None:
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    def send(self, audio: bytes, duration: float | None = None) -> bool:
        """Broadcast an encoded voice message.

        Returns:
            False if the message was not sent (too large or not connected).
        """
        engine = self._engine
        message = VoiceAudio(
            audio=base64.b64encode(audio).decode("ascii"),
            sender_id=engine.identity,
            duration=duration,
        )
        return engine.send(message)

    # ---- remote voice --------------------------------------------------

    def handle_remote(self, voice: VoiceAudio) -> None:
        if self._sink is None:
            logger.debug("No voice output, ignoring voice message from %s", voice.sender_id)
            return

        engine = self._engine
        if self._remote_active == 0:
            self._remote_was_playing = engine.playback.playing
        self._remote_active += 1
        logger.info("Voice message from %s, ducking playback", voice.sender_id)

        engine.handshake.abort("remote voice")
        if engine.playback.playing or not engine.media.paused:
            engine.pause_media()
            engine.playback.playing = False
            engine.set_state(SyncState.PAUSED)
        self.apply_volume()

        task = create_task(
            self._play(self._sink, voice), loop=engine.loop, name="cinesync-voice-playback"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _play(self, sink: VoiceSink, voice: VoiceAudio) -> None:
        try:
            await sink(voice)
        except Exception:
            logger.exception("Voice playback failed")
        finally:
            self._finish_remote()

    def _finish_remote(self) -> None:
        self._remote_active = max(0, self._remote_active - 1)
        if self._remote_active:
            return
        engine = self._engine
        self.apply_volume()
        logger.info("Voice message finished, volume restored to %d", self._user_volume)

        was_playing = self._remote_was_playing
        self._remote_was_playing = False
        if was_playing and not engine.session.lock_held and not self._local_active:
            engine.playback.playing = True
            engine.set_state(SyncState.PLAYING)
            engine.play_media()

    def close(self) -> None:
        """Cancel the pending resume and any voice playback in progress."""
        self._cancel_resume()
        self._remote_was_playing = False
        for task in list(self._tasks):
            task.cancel()


def _clamp_volume(volume: int) -> int:
    return max(0, min(100, int(volume)))
