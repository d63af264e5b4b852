import json
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from aiohttp import ClientSession
from aiohttp.test_utils import TestServer as RelayTestServer

from cinesync.media import VirtualPlayhead
from cinesync.relay import RelayChannel, RelayServer
from cinesync.sync import SyncEngine, SyncState
from cinesync.transport import RoomFullError


@pytest_asyncio.fixture
async def relay() -> AsyncIterator[tuple[RelayServer, RelayTestServer]]:
    server = RelayServer("Test Relay")
    async with RelayTestServer(server.create_app()) as test_server:
        yield server, test_server


def _room(test_server: RelayTestServer, room: str = "movie") -> str:
    return str(test_server.make_url(f"/rooms/{room}"))


@pytest.mark.asyncio
async def test_two_peers_join_and_exchange_events(relay, wait_until):
    _server, test_server = relay
    a = RelayChannel(_room(test_server), name="alice")
    b = RelayChannel(_room(test_server), name="bob")
    received = {"a": [], "b": []}
    a.on_event("pause", received["a"].append)
    b.on_event("pause", received["b"].append)

    await a.connect()
    await b.connect()
    try:
        await wait_until(lambda: len(a.members) == 2)
        assert a.peer_id != b.peer_id
        assert sorted(a.members) == sorted(b.members)

        a.send("pause", {"time": 42.5})
        await wait_until(lambda: received["b"] != [])

        assert received["b"] == [{"time": 42.5}]
        assert received["a"] == []
    finally:
        await a.disconnect()
        await b.disconnect()


@pytest.mark.asyncio
async def test_third_peer_is_refused(relay):
    _server, test_server = relay
    a = RelayChannel(_room(test_server))
    b = RelayChannel(_room(test_server))
    c = RelayChannel(_room(test_server))
    await a.connect()
    await b.connect()
    try:
        with pytest.raises(RoomFullError):
            await c.connect()
        assert c.connected is False
    finally:
        await a.disconnect()
        await b.disconnect()


@pytest.mark.asyncio
async def test_departure_updates_presence_and_empties_room(relay, wait_until):
    server, test_server = relay
    a = RelayChannel(_room(test_server))
    b = RelayChannel(_room(test_server))
    rosters = []
    a.add_presence_listener(rosters.append)
    await a.connect()
    await b.connect()
    await wait_until(lambda: len(a.members) == 2)

    await b.disconnect()
    await wait_until(lambda: a.members == [a.peer_id])
    assert rosters[-1] == [a.peer_id]

    await a.disconnect()
    await wait_until(lambda: "movie" not in server.rooms)


@pytest.mark.asyncio
async def test_invalid_frames_get_error_replies(relay):
    _server, test_server = relay
    async with ClientSession() as session:
        async with session.ws_connect(_room(test_server)) as ws:
            welcome = json.loads(await ws.receive_str(timeout=2))
            assert welcome["event"] == "welcome"
            assert welcome["data"]["members"] == [welcome["data"]["peerId"]]

            for frame in ("not json", "[]", '{"event":"dance","data":{}}', '{"event":"pause"}'):
                await ws.send_str(frame)
                reply = json.loads(await ws.receive_str(timeout=2))
                assert reply["event"] == "error"

            await ws.send_str(json.dumps({"event": "pause", "data": {"pad": "x" * 20_000}}))
            reply = json.loads(await ws.receive_str(timeout=2))
            assert reply["event"] == "error"
            assert "exceeds" in reply["data"]["message"]


@pytest.mark.asyncio
async def test_index_lists_rooms(relay, wait_until):
    server, test_server = relay
    a = RelayChannel(_room(test_server, "lobby"))
    await a.connect()
    try:
        async with ClientSession() as session:
            async with session.get(test_server.make_url("/")) as response:
                body = await response.json()
        assert body == {"service": "cinesync-relay", "name": "Test Relay", "rooms": {"lobby": 1}}
    finally:
        await a.disconnect()
    await wait_until(lambda: server.rooms == {})


@pytest.mark.asyncio
async def test_engines_start_together_over_relay(relay, fast_timing, wait_until):
    _server, test_server = relay
    channel_a = RelayChannel(_room(test_server))
    channel_b = RelayChannel(_room(test_server))
    await channel_a.connect()
    await channel_b.connect()
    media_a = VirtualPlayhead(buffer_delay=0.02)
    media_b = VirtualPlayhead(buffer_delay=0.02)
    a = SyncEngine(media_a, timing=fast_timing)
    b = SyncEngine(media_b, timing=fast_timing)
    a.attach(channel_a)
    b.attach(channel_b)
    try:
        a.change_url("https://example.com/movie.mp4")
        await wait_until(lambda: media_b.url == "https://example.com/movie.mp4")

        assert a.request_play() is True
        await wait_until(
            lambda: a.state is SyncState.PLAYING and b.state is SyncState.PLAYING, timeout=3.0
        )

        assert not media_a.paused
        assert not media_b.paused
        assert abs(media_a.current_time() - media_b.current_time()) < 0.3
    finally:
        a.close()
        b.close()
        await channel_a.disconnect()
        await channel_b.disconnect()
