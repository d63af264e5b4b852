"""Per-peer session model: playback state, sync state and protocol timing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SyncState(Enum):
    """Handshake state of the local peer."""

    IDLE = "idle"
    REQUESTING = "requesting"
    WAITING_ACK = "waiting-ack"
    SYNCING = "syncing"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class PlaybackState:
    """Local copy of the shared video state."""

    url: str = ""
    playing: bool = False
    time: float = 0.0


@dataclass(frozen=True, slots=True)
class PendingTarget:
    """Target of an in-flight handshake."""

    time: float
    initiator_id: str


@dataclass
class SyncSession:
    """Handshake bookkeeping owned by a single engine.

    Holds at most one pending target. The lock is held from issuing or
    accepting a request until the handshake reaches a terminal state.
    """

    state: SyncState = SyncState.IDLE
    pending_target: PendingTarget | None = None
    lock_held: bool = False

    def acquire(self, target: PendingTarget) -> None:
        """Take the lock for ``target``."""
        self.lock_held = True
        self.pending_target = target

    def release(self) -> None:
        """Drop the lock and any pending target."""
        self.lock_held = False
        self.pending_target = None


@dataclass(frozen=True)
class SyncTiming:
    """Protocol constants. Durations are in seconds."""

    debounce: float = 0.2
    """Quiet window before a local media event becomes protocol traffic."""

    ack_timeout: float = 3.0
    """How long an initiator waits for ``sync-ack`` before committing alone."""

    go_timeout: float = 3.0
    """How long a responder waits for ``sync-go`` before committing play anyway."""

    ready_settle: float = 0.1
    ready_poll: float = 0.05
    ready_timeout: float = 10.0

    drift_period: float = 2.0
    micro_drift: float = 0.3
    hard_drift: float = 1.5
    soft_rate_ahead: float = 1.05
    soft_rate_behind: float = 0.95
    soft_window: float = 1.5
    hard_settle: float = 0.5

    duck_volume: int = 20
    """Video volume (0-100) while a remote voice message plays."""

    def __post_init__(self) -> None:
        if not 0 <= self.micro_drift <= self.hard_drift:
            raise ValueError("micro_drift must be between 0 and hard_drift")
        if self.soft_rate_ahead <= 0 or self.soft_rate_behind <= 0:
            raise ValueError("Soft correction rates must be positive")
        if not 0 <= self.duck_volume <= 100:
            raise ValueError("duck_volume must be between 0 and 100")

