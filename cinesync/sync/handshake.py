r"""Request/ack/go handshake for play and seek, plus pause and URL changes.

Initiator play::

    idle/paused -> requesting --sync-ack--> playing   (sends sync-go)
                             \--ack timeout--> playing (alone)

    playing --late sync-ack--> playing (sends sync-go again)

Responder::

    idle/paused -> syncing --ready--> waiting-ack --sync-go--> playing
                                 \               \--go timeout--> playing
                                  \--seek request--> paused

An initiator always ends up playing, so a responder whose go never arrives
plays too and leaves any offset to drift correction. The sync lock is held
from issuing or accepting a request until one of the terminal transitions
above. Pause needs no handshake and URL changes reset everything.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from cinesync.protocol import (
    Pause,
    SyncAck,
    SyncGo,
    SyncRequest,
    SyncRequestType,
    UrlChange,
)
from cinesync.sync.session import PendingTarget, SyncState

if TYPE_CHECKING:
    from cinesync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

_TIME_EPSILON = 1e-6


def _same_time(a: float, b: float) -> bool:
    return abs(a - b) <= _TIME_EPSILON


class HandshakeCoordinator:
    """Runs the play/seek handshake on behalf of a :class:`SyncEngine`."""

    def __init__(self, engine: SyncEngine) -> None:
        self._engine = engine
        self._initiated: SyncRequestType | None = None
        self._responding: SyncRequest | None = None
        self._settled = False
        self._ready_deadline = 0.0

        self._ack_handle: asyncio.TimerHandle | None = None
        self._go_handle: asyncio.TimerHandle | None = None
        self._ready_handle: asyncio.TimerHandle | None = None

    @property
    def in_flight(self) -> bool:
        """Whether a handshake (ours or the peer's) is in progress."""
        return self._initiated is not None or self._responding is not None

    @property
    def initiated(self) -> SyncRequestType | None:
        """Type of the request this peer is waiting on, if any."""
        return self._initiated

    # ---- local intent --------------------------------------------------

    def request_play(self, target: float | None = None) -> bool:
        """Start a play handshake at ``target`` (default: current position).

        Returns:
            False if another sync holds the lock.
        """
        if self._engine.session.lock_held:
            logger.info("Sync locked, ignoring play request")
            return False
        time = self._engine.media.current_time() if target is None else target
        self._initiate(SyncRequestType.PLAY, time)
        return True

    def request_seek(self, seconds: float) -> bool:
        """Negotiate a seek to ``seconds``.

        While the surface is playing this is a play handshake at the new time;
        while paused it is a seek handshake that commits the paused position.
        """
        if self._engine.session.lock_held:
            logger.info("Sync locked, ignoring seek to %.2f", seconds)
            return False
        if self._engine.media.paused:
            self._initiate(SyncRequestType.SEEK, seconds)
        else:
            self._initiate(SyncRequestType.PLAY, seconds)
        return True

    def _initiate(self, request_type: SyncRequestType, time: float) -> None:
        engine = self._engine
        engine.session.acquire(PendingTarget(time=time, initiator_id=engine.identity))
        self._initiated = request_type
        logger.info("Requesting %s at %.2f", request_type.value, time)
        engine.set_state(
            SyncState.REQUESTING if request_type is SyncRequestType.PLAY else SyncState.SYNCING
        )
        engine.send(SyncRequest(type=request_type, time=time, initiator=engine.identity))
        self._ack_handle = engine.loop.call_later(
            engine.timing.ack_timeout, self._on_ack_timeout
        )

    def _on_ack_timeout(self) -> None:
        self._ack_handle = None
        target = self._engine.session.pending_target
        if self._initiated is None or target is None:
            return
        logger.warning(
            "No sync-ack within %.1fs, proceeding alone", self._engine.timing.ack_timeout
        )
        if self._initiated is SyncRequestType.PLAY:
            self._commit_play(target.time)
        else:
            self._commit_paused(target.time)

    def request_pause(self) -> None:
        """Pause locally and tell the peer. No handshake and no lock."""
        engine = self._engine
        self.abort("local pause")
        engine.pause_media()
        time = engine.media.current_time()
        engine.playback.playing = False
        engine.playback.time = time
        logger.info("Pausing at %.2f", time)
        engine.send(Pause(time=time))
        engine.set_state(SyncState.PAUSED)

    def change_url(self, url: str) -> None:
        """Switch the shared video and tell the peer."""
        logger.info("Changing video to %r", url)
        self._engine.send(UrlChange(url=url))
        self._reset_to(url)

    # ---- remote events -------------------------------------------------

    def handle_request(self, request: SyncRequest) -> None:
        engine = self._engine
        if engine.session.lock_held:
            logger.info(
                "Already processing sync, ignoring %s request from %s",
                request.type.value,
                request.initiator,
            )
            return

        logger.info(
            "Peer %s requested %s at %.2f", request.initiator, request.type.value, request.time
        )
        engine.session.acquire(PendingTarget(time=request.time, initiator_id=request.initiator))
        self._responding = request
        engine.gate.cancel()
        engine.set_state(SyncState.SYNCING)
        engine.pause_media()
        engine.seek_media(request.time)

        self._settled = False
        self._ready_deadline = (
            engine.loop.time() + engine.timing.ready_settle + engine.timing.ready_timeout
        )
        self._ready_handle = engine.loop.call_later(engine.timing.ready_settle, self._poll_ready)

    def _poll_ready(self) -> None:
        self._ready_handle = None
        if self._responding is None:
            return
        self._settled = True
        engine = self._engine
        if engine.media.is_ready():
            self._send_ack()
        elif engine.loop.time() >= self._ready_deadline:
            logger.warning(
                "Media not ready after %.1fs, acknowledging anyway", engine.timing.ready_timeout
            )
            self._send_ack()
        else:
            self._ready_handle = engine.loop.call_later(engine.timing.ready_poll, self._poll_ready)

    def on_media_ready(self) -> None:
        """Short-circuit the readiness poll once the settle delay has passed."""
        if self._responding is not None and self._settled and self._ready_handle is not None:
            self._send_ack()

    def _send_ack(self) -> None:
        request = self._responding
        if request is None or self._engine.session.state is not SyncState.SYNCING:
            return
        self._cancel_ready()
        engine = self._engine
        logger.info("Ready at %.2f, sending sync-ack", request.time)
        engine.send(SyncAck(time=request.time, responder=engine.identity))

        if request.type is SyncRequestType.PLAY:
            engine.set_state(SyncState.WAITING_ACK)
            self._go_handle = engine.loop.call_later(engine.timing.go_timeout, self._on_go_timeout)
        else:
            self._commit_paused(request.time)

    def _on_go_timeout(self) -> None:
        self._go_handle = None
        request = self._responding
        if request is None or self._engine.session.state is not SyncState.WAITING_ACK:
            return
        logger.warning(
            "No sync-go within %.1fs, playing anyway", self._engine.timing.go_timeout
        )
        self._commit_play(request.time)

    def handle_ack(self, ack: SyncAck) -> None:
        engine = self._engine
        target = engine.session.pending_target
        if self._initiated is None or target is None:
            if engine.session.state is SyncState.PLAYING and not engine.session.lock_held:
                # We went ahead alone; release the peer still waiting for go
                logger.info("Late sync-ack from %s, sending sync-go", ack.responder)
                engine.send(SyncGo(time=ack.time))
            else:
                logger.debug("Ignoring stale sync-ack from %s", ack.responder)
            return
        if not _same_time(ack.time, target.time):
            logger.debug("Ignoring sync-ack for %.2f, waiting on %.2f", ack.time, target.time)
            return

        logger.info("Received sync-ack from %s", ack.responder)
        if self._initiated is SyncRequestType.PLAY:
            self._engine.send(SyncGo(time=target.time))
            self._commit_play(target.time)
        else:
            self._commit_paused(target.time)

    def handle_go(self, go: SyncGo) -> None:
        if self._responding is None or self._engine.session.state is not SyncState.WAITING_ACK:
            logger.debug("Ignoring sync-go outside waiting-ack")
            return
        if not _same_time(go.time, self._responding.time):
            logger.debug("Ignoring sync-go for %.2f", go.time)
            return
        logger.info("Received sync-go, playing")
        self._commit_play(go.time)

    def handle_pause(self, pause: Pause) -> None:
        engine = self._engine
        logger.info("Peer paused at %.2f", pause.time)
        self.abort("remote pause")
        engine.pause_media()
        engine.playback.playing = False
        engine.playback.time = engine.media.current_time()
        engine.set_state(SyncState.PAUSED)

    def handle_url(self, change: UrlChange) -> None:
        engine = self._engine
        if change.url == engine.playback.url and engine.session.state is SyncState.IDLE:
            logger.debug("Ignoring duplicate url %r", change.url)
            return
        logger.info("Peer changed video to %r", change.url)
        self._reset_to(change.url)

    # ---- transitions ---------------------------------------------------

    def _commit_play(self, time: float) -> None:
        engine = self._engine
        self._finish()
        engine.playback.playing = True
        engine.playback.time = time
        engine.session.release()
        engine.set_state(SyncState.PLAYING)
        engine.play_media()

    def _commit_paused(self, time: float) -> None:
        engine = self._engine
        self._finish()
        engine.playback.playing = False
        engine.playback.time = time
        engine.session.release()
        engine.set_state(SyncState.PAUSED)

    def _reset_to(self, url: str) -> None:
        engine = self._engine
        self._finish()
        engine.gate.cancel()
        engine.session.release()
        engine.playback.url = url
        engine.playback.playing = False
        engine.playback.time = 0.0
        engine.set_state(SyncState.IDLE)
        engine.media.load(url)

    def abort(self, reason: str) -> None:
        """Abandon any in-flight handshake and release its lock."""
        if not self.in_flight:
            return
        logger.info("Abandoning handshake: %s", reason)
        self._finish()
        self._engine.session.release()

    def _finish(self) -> None:
        self._cancel_timers()
        self._initiated = None
        self._responding = None
        self._settled = False

    def _cancel_ready(self) -> None:
        if self._ready_handle is not None:
            self._ready_handle.cancel()
            self._ready_handle = None

    def _cancel_timers(self) -> None:
        for handle in (self._ack_handle, self._go_handle, self._ready_handle):
            if handle is not None:
                handle.cancel()
        self._ack_handle = self._go_handle = self._ready_handle = None

    def close(self) -> None:
        """Cancel timers without touching the session."""
        self._finish()
