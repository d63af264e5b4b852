"""Late-joiner state exchange."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cinesync.protocol import StateRequest, StateResponse
from cinesync.sync.session import SyncState

if TYPE_CHECKING:
    from cinesync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class StateBootstrap:
    """Ask the room for its state on attach and answer peers that ask.

    Only the first response addressed to us after a request is applied, and a
    URL change in the meantime makes the snapshot obsolete.
    """

    def __init__(self, engine: SyncEngine) -> None:
        self._engine = engine
        self._awaiting = False

    @property
    def awaiting(self) -> bool:
        """Whether a state request is outstanding."""
        return self._awaiting

    def request(self) -> None:
        engine = self._engine
        logger.info("Requesting current state from room")
        self._awaiting = True
        engine.send(StateRequest(requester_id=engine.identity))

    def cancel(self) -> None:
        self._awaiting = False

    def handle_request(self, request: StateRequest) -> None:
        engine = self._engine
        logger.info("Sending state to %s", request.requester_id)
        engine.send(
            StateResponse(
                url=engine.playback.url,
                is_playing=engine.playback.playing,
                time=engine.media.current_time(),
                responder_id=engine.identity,
                target_id=request.requester_id,
            )
        )

    def handle_response(self, response: StateResponse) -> None:
        engine = self._engine
        if response.target_id != engine.peer_id:
            logger.debug("Ignoring state-response addressed to %s", response.target_id)
            return
        if not self._awaiting:
            logger.debug("Ignoring unsolicited state-response from %s", response.responder_id)
            return
        if engine.session.lock_held:
            logger.debug("Sync in progress, ignoring state-response")
            return

        self._awaiting = False
        logger.info(
            "Adopting state from %s: url=%r playing=%s time=%.2f",
            response.responder_id,
            response.url,
            response.is_playing,
            response.time,
        )
        playback = engine.playback
        if response.url and response.url != playback.url:
            playback.url = response.url
            engine.media.load(response.url)
        if response.time > 0:
            engine.seek_media(response.time)
        playback.time = response.time
        playback.playing = response.is_playing

        if response.is_playing:
            engine.set_state(SyncState.PLAYING)
            engine.play_media()
        else:
            engine.pause_media()
            engine.set_state(SyncState.PAUSED)
