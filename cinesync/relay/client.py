"""WebSocket client for the CineSync relay."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from cinesync.listeners import (
    ChannelListenerManager,
    DisconnectListener,
    EventListener,
    PresenceListener,
)
from cinesync.protocol import ChannelEvent, encode_message
from cinesync.transport import RoomFullError, event_name
from cinesync.utils import create_task

logger = logging.getLogger(__name__)


class RelayChannel:
    """Channel transport backed by a relay room.

    ``send`` only queues; a writer task drains the queue onto the socket and a
    reader task dispatches inbound events. Disconnect listeners fire once when
    the socket goes away for any reason.
    """

    def __init__(
        self,
        url: str,
        *,
        name: str | None = None,
        session: ClientSession | None = None,
        welcome_timeout: float = 10.0,
    ) -> None:
        """Initialize the channel.

        Args:
            url: WebSocket URL of the room, e.g. ``ws://host:8931/rooms/movie``.
            name: Display name reported to the relay.
            session: Optional aiohttp session. One is created (and owned) if omitted.
            welcome_timeout: Seconds to wait for the relay welcome.
        """
        self._url = url
        self._name = name
        self._session = session
        self._owns_session = session is None
        self._welcome_timeout = welcome_timeout

        self.listeners = ChannelListenerManager()
        self._ws: ClientWebSocketResponse | None = None
        self._peer_id: str | None = None
        self._members: list[str] = []
        self._connected = False
        self._welcome: asyncio.Future[None] | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def peer_id(self) -> str | None:
        return self._peer_id

    @property
    def connected(self) -> bool:
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def members(self) -> list[str]:
        return list(self._members)

    async def connect(self) -> None:
        """Connect and wait for the relay welcome.

        Raises:
            RoomFullError: If the room already has two members.
            TimeoutError: If no welcome arrives in time.
        """
        if self.connected:
            logger.debug("Already connected")
            return
        if self._session is None:
            self._session = ClientSession()

        params = {"name": self._name} if self._name else None
        logger.info("Connecting to relay at %s", self._url)
        self._ws = await self._session.ws_connect(self._url, params=params, heartbeat=30)

        loop = asyncio.get_running_loop()
        self._welcome = loop.create_future()
        self._reader_task = create_task(self._reader_loop(), name="cinesync-relay-reader")
        try:
            await asyncio.wait_for(self._welcome, timeout=self._welcome_timeout)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for relay welcome") from err
        except (RoomFullError, ConnectionError):
            await self.disconnect()
            raise

        self._writer_task = create_task(self._writer_loop(), name="cinesync-relay-writer")
        logger.info("Joined room as %s (members: %s)", self._peer_id, ", ".join(self._members))

    def send(self, event: ChannelEvent | str, data: dict[str, Any]) -> None:
        """Queue an event for the other members.

        Raises:
            ProtocolError: If the encoded message exceeds the size limit.
        """
        name = event_name(event)
        if not self.connected:
            logger.warning("Cannot send %s, not connected", name)
            return
        self._outbox.put_nowait(encode_message(name, data))

    def on_event(self, event: ChannelEvent | str, handler: EventListener) -> Callable[[], None]:
        return self.listeners.add_event_listener(event_name(event), handler)

    def add_presence_listener(self, listener: PresenceListener) -> Callable[[], None]:
        return self.listeners.add_presence_listener(listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        return self.listeners.add_disconnect_listener(listener)

    async def _writer_loop(self) -> None:
        while True:
            text = await self._outbox.get()
            ws = self._ws
            if ws is None or ws.closed:
                return
            try:
                await ws.send_str(text)
            except ConnectionResetError as err:
                logger.warning("Relay connection lost while sending: %s", err)
                return

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                self._handle_ws_message(msg)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Relay reader encountered an error")
        finally:
            if self._welcome is not None and not self._welcome.done():
                self._welcome.set_exception(ConnectionError("Relay closed the connection"))
            if self._connected:
                await self.disconnect()

    def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is WSMsgType.TEXT:
            self._handle_text(msg.data)
        elif msg.type is WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception() if self._ws else "unknown")

    def _handle_text(self, text: str) -> None:
        try:
            frame = json.loads(text)
        except ValueError:
            logger.debug("Dropping non-JSON frame from relay")
            return
        if not isinstance(frame, dict):
            return
        event = frame.get("event")
        data = frame.get("data")
        if not isinstance(event, str) or not isinstance(data, dict):
            logger.debug("Dropping malformed frame from relay")
            return

        match event:
            case "welcome":
                self._peer_id = data.get("peerId")
                self._update_members(data)
                self._connected = True
                if self._welcome is not None and not self._welcome.done():
                    self._welcome.set_result(None)
            case "member-added" | "member-removed":
                self._update_members(data)
            case "room-full":
                logger.warning("Room is full")
                if self._welcome is not None and not self._welcome.done():
                    self._welcome.set_exception(RoomFullError("Room is full"))
            case "error":
                logger.warning("Relay rejected a message: %s", data.get("message"))
            case _:
                self.listeners.dispatch_event(event, data)

    def _update_members(self, data: dict[str, Any]) -> None:
        members = data.get("members")
        if isinstance(members, list):
            self._members = [m for m in members if isinstance(m, str)]
            self.listeners.dispatch_presence(self._members)

    async def disconnect(self) -> None:
        """Close the connection and release resources."""
        was_connected = self._connected
        self._connected = False
        current_task = asyncio.current_task()

        for task in (self._writer_task, self._reader_task):
            if task is not None and task is not current_task:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._writer_task = None
        self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        self._members = []
        self._outbox = asyncio.Queue()

        if was_connected:
            logger.info("Disconnected from relay")
            self.listeners.dispatch_disconnect()

