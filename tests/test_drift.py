import asyncio

import pytest

from cinesync.sync import DriftAction, SyncState, classify_drift
from cinesync.sync.session import SyncTiming


@pytest.mark.parametrize(
    ("delta", "action"),
    [
        (0.0, DriftAction.NONE),
        (0.29, DriftAction.NONE),
        (-0.29, DriftAction.NONE),
        (0.3, DriftAction.SOFT),
        (-1.0, DriftAction.SOFT),
        (1.5, DriftAction.SOFT),
        (1.51, DriftAction.HARD),
        (-2.0, DriftAction.HARD),
    ],
)
def test_classify_drift(delta, action):
    assert classify_drift(delta, SyncTiming()) is action


def test_timing_rejects_inverted_thresholds():
    with pytest.raises(ValueError):
        SyncTiming(micro_drift=2.0, hard_drift=1.0)


def _playing(make_engine):
    engine, media, transport = make_engine()
    media.paused = False
    media.time = 10.0
    engine.playback.playing = True
    engine.set_state(SyncState.PLAYING)
    return engine, media, transport


@pytest.mark.asyncio
async def test_micro_drift_never_changes_rate(make_engine):
    engine, media, transport = _playing(make_engine)

    for remote in (10.1, 9.8, 10.29, 9.71):
        transport.receive("time-check", {"time": remote, "sender": "peer-b"})
        await asyncio.sleep(0.01)

    assert media.rates == []
    assert media.seeks == []


@pytest.mark.asyncio
async def test_soft_correction_speeds_up_then_restores(make_engine):
    engine, media, transport = _playing(make_engine)

    transport.receive("time-check", {"time": 11.0, "sender": "peer-b"})
    assert media.rate == engine.timing.soft_rate_ahead
    assert engine.drift.correcting is True

    await asyncio.sleep(engine.timing.soft_window * 2)
    assert media.rate == 1.0
    assert engine.drift.correcting is False


@pytest.mark.asyncio
async def test_soft_correction_slows_down_when_ahead(make_engine):
    engine, media, transport = _playing(make_engine)

    transport.receive("time-check", {"time": 9.0, "sender": "peer-b"})

    assert media.rate == engine.timing.soft_rate_behind
    assert media.seeks == []


@pytest.mark.asyncio
async def test_hard_drift_reseeks_once_and_releases_lock(make_engine):
    engine, media, transport = _playing(make_engine)

    transport.receive("time-check", {"time": 12.0, "sender": "peer-b"})
    assert media.seeks == [12.0]
    assert engine.session.lock_held is True

    # Checks arriving during the settle window are ignored
    transport.receive("time-check", {"time": 20.0, "sender": "peer-b"})
    assert media.seeks == [12.0]

    await asyncio.sleep(engine.timing.hard_settle * 1.5)
    assert engine.session.lock_held is False
    assert media.seeks == [12.0]
    await asyncio.sleep(engine.timing.debounce * 2)
    assert transport.sent_events("sync-request") == []


@pytest.mark.asyncio
async def test_time_checks_ignored_when_not_playing(make_engine):
    engine, media, transport = make_engine()
    media.time = 10.0

    transport.receive("time-check", {"time": 30.0, "sender": "peer-b"})

    assert media.seeks == []
    assert media.rates == []


@pytest.mark.asyncio
async def test_time_checks_broadcast_only_while_playing(make_engine):
    engine, media, transport = _playing(make_engine)

    await asyncio.sleep(engine.timing.drift_period * 2.5)
    checks = transport.sent_events("time-check")
    assert len(checks) >= 2
    assert checks[0] == {"time": 10.0, "sender": "peer-a"}

    engine.request_pause()
    transport.clear()
    await asyncio.sleep(engine.timing.drift_period * 2)
    assert transport.sent_events("time-check") == []
    assert engine.drift.running is False


@pytest.mark.asyncio
async def test_stopping_resets_rate_of_active_correction(make_engine):
    engine, media, transport = _playing(make_engine)
    transport.receive("time-check", {"time": 11.0, "sender": "peer-b"})

    engine.request_pause()

    assert media.rate == 1.0
    assert engine.drift.correcting is False
