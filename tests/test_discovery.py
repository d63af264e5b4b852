import asyncio

import pytest

from cinesync.discovery import SERVICE_TYPE, RelayBrowser, build_relay_url, room_url


class _StubInfo:
    def __init__(self, address: str, port: int, properties: dict) -> None:
        self.port = port
        self.properties = properties
        self._address = address

    def parsed_addresses(self) -> list[str]:
        return [self._address]


class _StubZeroconf:
    def __init__(self, infos: dict) -> None:
        self.infos = infos

    async def async_get_service_info(self, service_type: str, name: str):
        return self.infos.get(name)


@pytest.mark.parametrize(
    ("host", "properties", "url"),
    [
        ("192.168.1.5", {b"path": b"/rooms"}, "ws://192.168.1.5:8931/rooms"),
        ("192.168.1.5", {b"path": b"custom/"}, "ws://192.168.1.5:8931/custom"),
        ("192.168.1.5", {}, "ws://192.168.1.5:8931/rooms"),
        ("fe80::1", {b"path": None}, "ws://[fe80::1]:8931/rooms"),
    ],
)
def test_build_relay_url(host, properties, url):
    assert build_relay_url(host, 8931, properties) == url


def test_room_url_appends_rooms_path_once():
    assert room_url("ws://host:8931", "movie") == "ws://host:8931/rooms/movie"
    assert room_url("ws://host:8931/rooms/", "movie") == "ws://host:8931/rooms/movie"


@pytest.mark.asyncio
async def test_browser_tracks_advertisements():
    name = f"Living Room.{SERVICE_TYPE}"
    browser = RelayBrowser()
    browser._zeroconf = _StubZeroconf(  # noqa: SLF001
        {name: _StubInfo("10.0.0.2", 9000, {b"path": b"/rooms"})}
    )

    browser.add_service(None, SERVICE_TYPE, name)
    url = await asyncio.wait_for(browser.first(), timeout=1.0)

    assert url == "ws://10.0.0.2:9000/rooms"
    assert [relay.name for relay in browser.relays] == ["Living Room"]

    browser.remove_service(None, SERVICE_TYPE, name)
    assert browser.relays == []


@pytest.mark.asyncio
async def test_unresolvable_service_is_skipped():
    browser = RelayBrowser()
    browser._zeroconf = _StubZeroconf({})  # noqa: SLF001

    browser.add_service(None, SERVICE_TYPE, f"Ghost.{SERVICE_TYPE}")
    await asyncio.sleep(0.01)

    assert browser.relays == []
    with pytest.raises(TimeoutError):
        await asyncio.wait_for(browser.first(), timeout=0.05)
