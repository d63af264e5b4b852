"""Playback synchronization and voice arbitration."""

from cinesync.sync.drift import DriftAction, DriftSample, classify_drift
from cinesync.sync.engine import SyncEngine
from cinesync.sync.session import PendingTarget, PlaybackState, SyncSession, SyncState, SyncTiming
from cinesync.sync.voice import VoiceSink

__all__ = [
    "DriftAction",
    "DriftSample",
    "PendingTarget",
    "PlaybackState",
    "SyncEngine",
    "SyncSession",
    "SyncState",
    "SyncTiming",
    "VoiceSink",
    "classify_drift",
]
