"""Synchronization engine tying the media surface to the channel transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from cinesync.listeners import EngineListenerManager
from cinesync.media import MediaSurface, PlaybackRejectedError
from cinesync.protocol import (
    ChannelEvent,
    Payload,
    ProtocolError,
    UrlChange,
    parse_payload,
)
from cinesync.sync.bootstrap import StateBootstrap
from cinesync.sync.drift import DriftCorrector
from cinesync.sync.gate import DebounceGate
from cinesync.sync.handshake import HandshakeCoordinator
from cinesync.sync.session import PlaybackState, SyncSession, SyncState, SyncTiming
from cinesync.sync.voice import VoiceArbiter, VoiceSink
from cinesync.transport import ChannelTransport

logger = logging.getLogger(__name__)

_LOCAL_IDENTITY = "local"


class SyncEngine:
    """Keeps one peer's media surface in step with the other peer.

    The engine owns the session state and delegates to its components:
    :class:`DebounceGate` for local media events, :class:`HandshakeCoordinator`
    for play/seek/pause/url, :class:`DriftCorrector` while playing,
    :class:`StateBootstrap` on attach and :class:`VoiceArbiter` for voice.

    Inbound payloads are validated here; malformed ones and ones sent by this
    peer never reach the components.
    """

    def __init__(
        self,
        media: MediaSurface,
        *,
        timing: SyncTiming | None = None,
        voice_sink: VoiceSink | None = None,
        voice_available: bool = False,
        user_volume: int = 80,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            media: Surface to drive.
            timing: Protocol constants. Defaults to :class:`SyncTiming`.
            voice_sink: Coroutine function playing received voice messages.
                Without one, received voice is ignored.
            voice_available: Whether local voice capture works.
            user_volume: Initial video volume (0-100).
            loop: Event loop for timers. Defaults to the running loop.
        """
        self.loop = loop or asyncio.get_running_loop()
        self.media = media
        self.timing = timing or SyncTiming()
        self.session = SyncSession()
        self.playback = PlaybackState()
        self._transport: ChannelTransport | None = None
        self._listeners = EngineListenerManager()

        self.gate = DebounceGate(self.loop, self.timing.debounce, self._is_locked)
        self.handshake = HandshakeCoordinator(self)
        self.drift = DriftCorrector(self)
        self.bootstrap = StateBootstrap(self)
        self.voice = VoiceArbiter(
            self, sink=voice_sink, available=voice_available, user_volume=user_volume
        )

        self._media_unsubscribers = [
            media.add_play_listener(self._on_local_play),
            media.add_pause_listener(self._on_local_pause),
            media.add_seek_listener(self._on_local_seek),
            media.add_ready_listener(self.handshake.on_media_ready),
        ]
        self._channel_unsubscribers: list[Callable[[], None]] = []
        self.voice.apply_volume()

    # ---- properties ----------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self.session.state

    @property
    def transport(self) -> ChannelTransport | None:
        return self._transport

    @property
    def peer_id(self) -> str | None:
        """Identity assigned by the attached transport."""
        return self._transport.peer_id if self._transport is not None else None

    @property
    def identity(self) -> str:
        """Identity used in outgoing payloads."""
        return self.peer_id or _LOCAL_IDENTITY

    @property
    def position(self) -> float:
        return self.media.current_time()

    @property
    def user_volume(self) -> int:
        return self.voice.user_volume

    @property
    def output_volume(self) -> int:
        return self.voice.output_volume

    def _is_locked(self) -> bool:
        return self.session.lock_held

    # ---- listeners -----------------------------------------------------

    def add_state_listener(self, listener: Callable[[SyncState], None]) -> Callable[[], None]:
        """Add a sync state listener. Returns unsubscribe function."""
        return self._listeners.add_state_listener(listener)

    def add_media_error_listener(
        self, listener: Callable[[Exception], None]
    ) -> Callable[[], None]:
        """Add a listener for media failures such as rejected playback."""
        return self._listeners.add_media_error_listener(listener)

    # ---- transport -----------------------------------------------------

    def attach(self, transport: ChannelTransport) -> None:
        """Bind to a connected transport and request the room state."""
        if self._transport is not None:
            self.detach()
        self._transport = transport
        logger.info("Attached to channel as %s", transport.peer_id)

        handlers: dict[ChannelEvent, Callable[[Any], None]] = {
            ChannelEvent.SYNC_REQUEST: self.handshake.handle_request,
            ChannelEvent.SYNC_ACK: self.handshake.handle_ack,
            ChannelEvent.SYNC_GO: self.handshake.handle_go,
            ChannelEvent.PAUSE: self.handshake.handle_pause,
            ChannelEvent.URL: self._on_remote_url,
            ChannelEvent.STATE_REQUEST: self.bootstrap.handle_request,
            ChannelEvent.STATE_RESPONSE: self.bootstrap.handle_response,
            ChannelEvent.TIME_CHECK: self.drift.handle_time_check,
            ChannelEvent.VOICE_AUDIO: self.voice.handle_remote,
        }
        for event, handler in handlers.items():
            self._channel_unsubscribers.append(
                transport.on_event(event, self._bind(event, handler))
            )
        self.bootstrap.request()

    def detach(self) -> None:
        """Unbind from the transport. Handshake timers still run to completion."""
        for unsubscribe in self._channel_unsubscribers:
            unsubscribe()
        self._channel_unsubscribers.clear()
        if self._transport is not None:
            logger.info("Detached from channel")
        self._transport = None
        self.gate.cancel()
        self.bootstrap.cancel()

    def _bind(
        self, event: ChannelEvent, handler: Callable[[Any], None]
    ) -> Callable[[dict[str, Any]], None]:
        def on_event(data: dict[str, Any]) -> None:
            try:
                payload = parse_payload(event, data)
            except ProtocolError as err:
                logger.debug("Dropping malformed %s: %s", event.value, err)
                return
            if payload.origin is not None and payload.origin == self.peer_id:
                logger.debug("Dropping own %s", event.value)
                return
            handler(payload)

        return on_event

    def send(self, payload: Payload) -> bool:
        """Broadcast a payload. Returns False if it could not be sent."""
        transport = self._transport
        if transport is None or not transport.connected:
            logger.debug("Not connected, dropping %s", payload.EVENT.value)
            return False
        try:
            transport.send(payload.EVENT, payload.to_dict())
        except ProtocolError as err:
            logger.warning("Cannot send %s: %s", payload.EVENT.value, err)
            return False
        return True

    # ---- state ---------------------------------------------------------

    def set_state(self, state: SyncState) -> None:
        previous = self.session.state
        if state is previous:
            return
        self.session.state = state
        logger.info("Sync state %s -> %s", previous.value, state.value)
        if state is SyncState.PLAYING:
            self.drift.start()
        else:
            self.drift.stop()
        self._listeners.emit_state(state)

    # ---- echo-guarded surface mutators ---------------------------------

    def play_media(self) -> None:
        if self.media.paused:
            self.gate.mark_remote_echo()
        try:
            self.media.play()
        except PlaybackRejectedError as err:
            self.gate.clear_remote_echo()
            logger.warning("Media refused to play: %s", err)
            self._listeners.emit_media_error(err)

    def pause_media(self) -> None:
        if not self.media.paused:
            self.gate.mark_remote_echo()
            self.media.pause()

    def seek_media(self, seconds: float) -> None:
        self.gate.mark_remote_echo()
        self.media.seek_to(seconds)

    # ---- local media events --------------------------------------------

    def _on_local_play(self) -> None:
        self.gate.submit("play", self.handshake.request_play)

    def _on_local_pause(self) -> None:
        self.gate.submit("pause", self.handshake.request_pause)

    def _on_local_seek(self, seconds: float) -> None:
        self.gate.submit("seek", lambda: self.handshake.request_seek(seconds))

    def _on_remote_url(self, change: UrlChange) -> None:
        self.bootstrap.cancel()
        self.handshake.handle_url(change)

    # ---- user actions --------------------------------------------------

    def request_play(self) -> bool:
        """Start synchronized playback from the current position."""
        if self.session.state is SyncState.PLAYING and not self.media.paused:
            logger.debug("Already playing")
            return False
        self.gate.cancel()
        return self.handshake.request_play()

    def request_pause(self) -> None:
        self.gate.cancel()
        self.handshake.request_pause()

    def request_seek(self, seconds: float) -> bool:
        """Seek locally and negotiate the new position with the peer."""
        seconds = max(0.0, seconds)
        if self.session.lock_held:
            logger.info("Sync locked, ignoring seek to %.2f", seconds)
            return False
        self.gate.cancel()
        self.seek_media(seconds)
        return self.handshake.request_seek(seconds)

    def change_url(self, url: str) -> None:
        self.gate.cancel()
        self.bootstrap.cancel()
        self.handshake.change_url(url)

    def begin_voice_activity(self) -> None:
        """Pause for a local voice message."""
        self.voice.begin_local()

    def end_voice_activity(self, duration: float | None = None) -> None:
        """End a local voice message; resume after ``duration`` seconds."""
        self.voice.end_local(duration)

    def send_voice_audio(self, audio: bytes, duration: float | None = None) -> bool:
        return self.voice.send(audio, duration)

    def set_user_volume(self, volume: int) -> None:
        self.voice.set_user_volume(volume)

    def close(self) -> None:
        """Detach and cancel every timer."""
        self.detach()
        self.handshake.close()
        self.drift.close()
        self.voice.close()
        for unsubscribe in self._media_unsubscribers:
            unsubscribe()
        self._media_unsubscribers.clear()
