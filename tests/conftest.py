"""Shared fakes and factories for the sync engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest

from cinesync.listeners import (
    ChannelListenerManager,
    DisconnectListener,
    EventListener,
    MediaListenerManager,
    PauseListener,
    PlayListener,
    PresenceListener,
    ReadyListener,
    SeekListener,
)
from cinesync.media import PlaybackRejectedError
from cinesync.protocol import ChannelEvent, encode_message
from cinesync.sync import SyncEngine, SyncTiming
from cinesync.sync.voice import VoiceSink

FAST_TIMING = SyncTiming(
    debounce=0.02,
    ack_timeout=0.2,
    go_timeout=0.2,
    ready_settle=0.01,
    ready_poll=0.01,
    ready_timeout=0.3,
    drift_period=0.1,
    soft_window=0.15,
    hard_settle=0.1,
)


class FakeMediaSurface:
    """Media surface with a position that only moves when told to.

    Mutators emit the same events a video element would and record every
    call so tests can count them.
    """

    def __init__(self) -> None:
        self._listeners = MediaListenerManager()
        self.paused = True
        self.time = 0.0
        self.ready = True
        self.rate = 1.0
        self.volume = 100
        self.url = ""
        self.reject_play = False
        self.plays = 0
        self.pauses = 0
        self.seeks: list[float] = []
        self.rates: list[float] = []
        self.loads: list[str] = []

    def current_time(self) -> float:
        return self.time

    def seek_to(self, seconds: float) -> None:
        self.time = seconds
        self.seeks.append(seconds)
        self._listeners.emit_seek(seconds)

    def play(self) -> None:
        if self.reject_play:
            raise PlaybackRejectedError("blocked")
        if not self.paused:
            return
        self.paused = False
        self.plays += 1
        self._listeners.emit_play()

    def pause(self) -> None:
        if self.paused:
            return
        self.paused = True
        self.pauses += 1
        self._listeners.emit_pause()

    def is_ready(self) -> bool:
        return self.ready

    def set_playback_rate(self, rate: float) -> None:
        self.rate = rate
        self.rates.append(rate)

    def set_volume(self, volume: int) -> None:
        self.volume = volume

    def load(self, url: str) -> None:
        self.url = url
        self.loads.append(url)
        self.paused = True
        self.time = 0.0

    def add_play_listener(self, listener: PlayListener) -> Callable[[], None]:
        return self._listeners.add_play_listener(listener)

    def add_pause_listener(self, listener: PauseListener) -> Callable[[], None]:
        return self._listeners.add_pause_listener(listener)

    def add_seek_listener(self, listener: SeekListener) -> Callable[[], None]:
        return self._listeners.add_seek_listener(listener)

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]:
        return self._listeners.add_ready_listener(listener)

    def emit_ready(self) -> None:
        self._listeners.emit_ready()


class FakeTransport:
    """Channel transport that records sends and delivers inbound events inline."""

    def __init__(self, peer_id: str = "peer-a", members: list[str] | None = None) -> None:
        self.peer_id = peer_id
        self.connected = True
        self.members = members if members is not None else [peer_id, "peer-b"]
        self.listeners = ChannelListenerManager()
        self.sent: list[tuple[str, dict[str, Any]]] = []

    def send(self, event: ChannelEvent | str, data: dict[str, Any]) -> None:
        name = event.value if isinstance(event, ChannelEvent) else event
        encode_message(name, data)
        self.sent.append((name, data))

    def on_event(self, event: ChannelEvent | str, handler: EventListener) -> Callable[[], None]:
        name = event.value if isinstance(event, ChannelEvent) else event
        return self.listeners.add_event_listener(name, handler)

    def add_presence_listener(self, listener: PresenceListener) -> Callable[[], None]:
        return self.listeners.add_presence_listener(listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        return self.listeners.add_disconnect_listener(listener)

    def receive(self, event: str, data: dict[str, Any]) -> None:
        self.listeners.dispatch_event(event, data)

    def sent_events(self, event: str) -> list[dict[str, Any]]:
        return [data for name, data in self.sent if name == event]

    def clear(self) -> None:
        self.sent.clear()


EngineFactory = Callable[..., tuple[SyncEngine, FakeMediaSurface, FakeTransport]]


@pytest.fixture
def make_engine() -> EngineFactory:
    """Build an attached engine on fakes. Call from inside a running loop."""

    def factory(
        *,
        timing: SyncTiming = FAST_TIMING,
        voice_sink: VoiceSink | None = None,
        voice_available: bool = False,
        user_volume: int = 80,
        attach: bool = True,
    ) -> tuple[SyncEngine, FakeMediaSurface, FakeTransport]:
        media = FakeMediaSurface()
        transport = FakeTransport()
        engine = SyncEngine(
            media,
            timing=timing,
            voice_sink=voice_sink,
            voice_available=voice_available,
            user_volume=user_volume,
        )
        if attach:
            engine.attach(transport)
            transport.clear()
        return engine, media, transport

    return factory


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds or fail after ``timeout`` seconds."""
    return _wait_until


@pytest.fixture
def fast_timing() -> SyncTiming:
    """Protocol timing shrunk so timer-driven tests finish quickly."""
    return FAST_TIMING
