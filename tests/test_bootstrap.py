import asyncio

import pytest

from cinesync.media import VirtualPlayhead
from cinesync.sync import SyncEngine, SyncState
from cinesync.transport import LocalHub


def _response(**overrides) -> dict:
    data = {
        "url": "https://example.com/movie.mp4",
        "isPlaying": True,
        "time": 95.0,
        "responderId": "peer-b",
        "targetId": "peer-a",
    }
    data.update(overrides)
    return data


@pytest.mark.asyncio
async def test_attach_requests_room_state(make_engine):
    engine, _media, transport = make_engine(attach=False)

    engine.attach(transport)

    assert transport.sent_events("state-request") == [{"requesterId": "peer-a"}]
    assert engine.bootstrap.awaiting is True


@pytest.mark.asyncio
async def test_response_is_adopted_without_handshake(make_engine):
    engine, media, transport = make_engine()
    engine.bootstrap.request()
    transport.clear()

    transport.receive("state-response", _response())

    assert media.loads == ["https://example.com/movie.mp4"]
    assert media.seeks == [95.0]
    assert media.paused is False
    assert engine.state is SyncState.PLAYING
    assert engine.playback.playing is True
    await asyncio.sleep(engine.timing.debounce * 3)
    assert transport.sent_events("sync-request") == []


@pytest.mark.asyncio
async def test_paused_response_stays_paused(make_engine):
    engine, media, transport = make_engine()
    engine.bootstrap.request()

    transport.receive("state-response", _response(isPlaying=False, time=0))

    assert media.seeks == []
    assert media.paused is True
    assert engine.state is SyncState.PAUSED


@pytest.mark.asyncio
async def test_only_first_addressed_response_applies(make_engine):
    engine, media, transport = make_engine()
    engine.bootstrap.request()

    transport.receive("state-response", _response(targetId="peer-c"))
    assert media.loads == []

    transport.receive("state-response", _response())
    transport.receive("state-response", _response(url="https://example.com/other.mp4"))
    assert media.loads == ["https://example.com/movie.mp4"]


@pytest.mark.asyncio
async def test_response_ignored_while_locked(make_engine):
    engine, media, transport = make_engine()
    engine.bootstrap.request()
    engine.request_play()

    transport.receive("state-response", _response())

    assert media.loads == []
    assert engine.state is SyncState.REQUESTING


@pytest.mark.asyncio
async def test_url_change_cancels_pending_bootstrap(make_engine):
    engine, media, transport = make_engine()
    engine.bootstrap.request()

    transport.receive("url", {"url": "https://example.com/new.mp4"})
    transport.receive("state-response", _response())

    assert media.loads == ["https://example.com/new.mp4"]
    assert engine.bootstrap.awaiting is False


@pytest.mark.asyncio
async def test_state_request_is_answered(make_engine):
    engine, media, transport = make_engine()
    engine.playback.url = "https://example.com/movie.mp4"
    engine.playback.playing = True
    media.time = 61.0

    transport.receive("state-request", {"requesterId": "peer-b"})

    assert transport.sent_events("state-response") == [
        {
            "url": "https://example.com/movie.mp4",
            "isPlaying": True,
            "time": 61.0,
            "responderId": "peer-a",
            "targetId": "peer-b",
        }
    ]


@pytest.mark.asyncio
async def test_late_joiner_converges(fast_timing, wait_until):
    hub = LocalHub()
    media_a = VirtualPlayhead(buffer_delay=0.02)
    a = SyncEngine(media_a, timing=fast_timing)
    a.attach(hub.connect("peer-a"))
    a.change_url("https://example.com/movie.mp4")
    media_a.seek_to(40.0)
    a.request_play()
    await wait_until(lambda: a.state is SyncState.PLAYING, timeout=1.0)

    media_b = VirtualPlayhead(buffer_delay=0.02)
    b = SyncEngine(media_b, timing=fast_timing)
    channel_b = hub.connect("peer-b")
    b.attach(channel_b)
    await wait_until(lambda: b.state is SyncState.PLAYING, timeout=1.0)

    assert media_b.url == "https://example.com/movie.mp4"
    assert not media_b.paused
    assert abs(media_a.current_time() - media_b.current_time()) < 0.3
    assert [name for name, _ in channel_b.sent if name == "sync-request"] == []
    a.close()
    b.close()
