"""Periodic time exchange and drift correction while playing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from cinesync.protocol import TimeCheck
from cinesync.sync.session import SyncState, SyncTiming

if TYPE_CHECKING:
    from cinesync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


class DriftAction(Enum):
    """Correction chosen for a drift sample."""

    NONE = "none"
    SOFT = "soft"
    HARD = "hard"


@dataclass(frozen=True, slots=True)
class DriftSample:
    """One comparison of the peer's reported position against ours."""

    remote_time: float
    local_time: float

    @property
    def delta(self) -> float:
        """Positive when the peer is ahead."""
        return self.remote_time - self.local_time


def classify_drift(delta: float, timing: SyncTiming) -> DriftAction:
    """Pick the correction for a signed drift ``delta``."""
    magnitude = abs(delta)
    if magnitude < timing.micro_drift:
        return DriftAction.NONE
    if magnitude <= timing.hard_drift:
        return DriftAction.SOFT
    return DriftAction.HARD


class DriftCorrector:
    """Leaderless drift correction.

    Both peers broadcast their position every period and nudge themselves
    toward the other's. Small drift is ignored, moderate drift is closed with
    a temporary playback rate change, large drift with a reseek.
    """

    def __init__(self, engine: SyncEngine) -> None:
        self._engine = engine
        self._period_handle: asyncio.TimerHandle | None = None
        self._soft_handle: asyncio.TimerHandle | None = None
        self._settle_handle: asyncio.TimerHandle | None = None

    @property
    def running(self) -> bool:
        return self._period_handle is not None

    @property
    def correcting(self) -> bool:
        """Whether a soft rate correction is active."""
        return self._soft_handle is not None

    def start(self) -> None:
        if self.running:
            return
        logger.debug("Starting drift checks")
        self._schedule_tick()

    def stop(self) -> None:
        """Stop periodic checks and restore the normal playback rate."""
        if self._period_handle is not None:
            self._period_handle.cancel()
            self._period_handle = None
            logger.debug("Stopped drift checks")
        self._end_soft_correction()

    def _schedule_tick(self) -> None:
        self._period_handle = self._engine.loop.call_later(
            self._engine.timing.drift_period, self._tick
        )

    def _tick(self) -> None:
        self._schedule_tick()
        engine = self._engine
        if engine.session.lock_held:
            return
        engine.send(TimeCheck(time=engine.media.current_time(), sender=engine.identity))

    def handle_time_check(self, check: TimeCheck) -> None:
        engine = self._engine
        if engine.session.state is not SyncState.PLAYING or engine.session.lock_held:
            logger.debug("Ignoring time-check from %s while not in sync", check.sender)
            return

        sample = DriftSample(remote_time=check.time, local_time=engine.media.current_time())
        action = classify_drift(sample.delta, engine.timing)
        if action is DriftAction.SOFT:
            self._soft_correct(sample)
        elif action is DriftAction.HARD:
            self._hard_correct(sample)

    def _soft_correct(self, sample: DriftSample) -> None:
        timing = self._engine.timing
        rate = timing.soft_rate_ahead if sample.delta > 0 else timing.soft_rate_behind
        logger.info("Soft sync, drift %.2fs, rate %.2f", sample.delta, rate)
        if self._soft_handle is not None:
            self._soft_handle.cancel()
        self._engine.media.set_playback_rate(rate)
        self._soft_handle = self._engine.loop.call_later(
            timing.soft_window, self._end_soft_correction
        )

    def _end_soft_correction(self) -> None:
        if self._soft_handle is None:
            return
        self._soft_handle.cancel()
        self._soft_handle = None
        self._engine.media.set_playback_rate(1.0)

    def _hard_correct(self, sample: DriftSample) -> None:
        engine = self._engine
        logger.info("Hard seek correction, drift %.2fs", sample.delta)
        self._end_soft_correction()
        engine.session.lock_held = True
        engine.seek_media(sample.remote_time)
        self._settle_handle = engine.loop.call_later(
            engine.timing.hard_settle, self._release_after_seek
        )

    def _release_after_seek(self) -> None:
        self._settle_handle = None
        session = self._engine.session
        # A handshake accepted meanwhile owns the lock now
        if session.pending_target is None:
            session.lock_held = False

    def close(self) -> None:
        """Cancel every timer, including a pending settle release."""
        self.stop()
        if self._settle_handle is not None:
            self._settle_handle.cancel()
            self._settle_handle = None
