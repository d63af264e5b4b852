import asyncio

import pytest

from cinesync.media import PlaybackRejectedError, VirtualPlayhead


def _record(playhead: VirtualPlayhead) -> list[tuple]:
    events: list[tuple] = []
    playhead.add_play_listener(lambda: events.append(("play",)))
    playhead.add_pause_listener(lambda: events.append(("pause",)))
    playhead.add_seek_listener(lambda seconds: events.append(("seek", seconds)))
    playhead.add_ready_listener(lambda: events.append(("ready",)))
    return events


@pytest.mark.asyncio
async def test_play_and_pause_emit_only_on_change():
    playhead = VirtualPlayhead(buffer_delay=0)
    events = _record(playhead)

    playhead.play()
    playhead.play()
    playhead.pause()
    playhead.pause()

    assert events == [("play",), ("pause",)]


@pytest.mark.asyncio
async def test_position_follows_clock_and_rate():
    playhead = VirtualPlayhead(buffer_delay=0)
    playhead.play()
    await asyncio.sleep(0.1)
    first = playhead.current_time()
    assert first == pytest.approx(0.1, abs=0.05)

    playhead.set_playback_rate(2.0)
    await asyncio.sleep(0.1)
    assert playhead.current_time() - first == pytest.approx(0.2, abs=0.07)

    playhead.pause()
    frozen = playhead.current_time()
    await asyncio.sleep(0.05)
    assert playhead.current_time() == frozen


@pytest.mark.asyncio
async def test_seek_always_emits_and_buffers():
    playhead = VirtualPlayhead(buffer_delay=0.05)
    events = _record(playhead)

    playhead.seek_to(30.0)
    playhead.seek_to(30.0)

    assert events == [("seek", 30.0), ("seek", 30.0)]
    assert playhead.is_ready() is False
    await asyncio.sleep(0.1)
    assert playhead.is_ready() is True
    assert events[-1] == ("ready",)
    assert events.count(("ready",)) == 1


@pytest.mark.asyncio
async def test_load_resets_without_events():
    playhead = VirtualPlayhead(buffer_delay=0.02)
    playhead.play()
    playhead.seek_to(12.0)
    events = _record(playhead)

    playhead.load("https://example.com/movie.mp4")

    assert playhead.url == "https://example.com/movie.mp4"
    assert playhead.paused is True
    assert playhead.current_time() == 0.0
    assert events == []
    await asyncio.sleep(0.05)
    assert events == [("ready",)]


@pytest.mark.asyncio
async def test_autoplay_rejection():
    playhead = VirtualPlayhead(autoplay_allowed=False)

    with pytest.raises(PlaybackRejectedError):
        playhead.play()
    assert playhead.paused is True


@pytest.mark.asyncio
async def test_volume_is_clamped_and_position_bounded():
    playhead = VirtualPlayhead(buffer_delay=0, duration=5.0)

    playhead.set_volume(150)
    assert playhead.volume == 100
    playhead.set_volume(-3)
    assert playhead.volume == 0

    playhead.seek_to(9.0)
    assert playhead.current_time() == 5.0
    with pytest.raises(ValueError):
        playhead.set_playback_rate(0)
