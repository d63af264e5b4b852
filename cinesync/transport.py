"""Channel transport protocol and an in-process hub.

A channel transport is a small pub/sub primitive shared by the peers of a
room: fire-and-forget ``send``, per-event handler registration, a presence
roster and a transport-assigned peer identity. Delivery is asynchronous and
unordered across event names; handlers must cope with loss and duplicates.

:class:`LocalHub` connects peers living in the same process. It is used for
loopback sessions and tests; the WebSocket relay lives in
:mod:`cinesync.relay`.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Callable
from typing import Any, Protocol

from cinesync.listeners import (
    ChannelListenerManager,
    DisconnectListener,
    EventListener,
    PresenceListener,
)
from cinesync.protocol import ChannelEvent, encode_message

logger = logging.getLogger(__name__)

MAX_ROOM_MEMBERS = 2


class ChannelTransport(Protocol):
    """Pub/sub channel consumed by the sync engine."""

    @property
    def peer_id(self) -> str | None:
        """Identity assigned by the transport, None until connected."""
        ...

    @property
    def connected(self) -> bool: ...

    @property
    def members(self) -> list[str]:
        """Current presence roster, including this peer."""
        ...

    def send(self, event: ChannelEvent | str, data: dict[str, Any]) -> None:
        """Broadcast an event to the other members. Never blocks."""
        ...

    def on_event(self, event: ChannelEvent | str, handler: EventListener) -> Callable[[], None]:
        """Register a handler for ``event``. Returns unsubscribe function."""
        ...

    def add_presence_listener(self, listener: PresenceListener) -> Callable[[], None]: ...

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]: ...


def event_name(event: ChannelEvent | str) -> str:
    """Normalise an event to its wire name."""
    return event.value if isinstance(event, ChannelEvent) else event


class RoomFullError(RuntimeError):
    """Raised when joining a room that already has two members."""


class LocalHub:
    """In-process room shared by :class:`LocalChannel` instances.

    Deliveries are scheduled with ``call_soon`` so a sender never observes its
    message being handled inside its own ``send`` call.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        echo: bool = False,
        max_members: int = MAX_ROOM_MEMBERS,
    ) -> None:
        """Initialize the hub.

        Args:
            loop: Event loop used for deliveries. Defaults to the running loop.
            echo: Also deliver each message back to its sender.
            max_members: Room capacity.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._echo = echo
        self._max_members = max_members
        self._channels: dict[str, LocalChannel] = {}
        self.drop_filter: Callable[[str, str, dict[str, Any]], bool] | None = None
        """Optional ``(sender_id, event, data) -> bool``; True drops the message."""

    @property
    def members(self) -> list[str]:
        return list(self._channels)

    def connect(self, peer_id: str | None = None) -> LocalChannel:
        """Join the room and return the member's channel.

        Raises:
            RoomFullError: If the room is at capacity.
        """
        if len(self._channels) >= self._max_members:
            raise RoomFullError("Room is full")
        channel = LocalChannel(self, peer_id or f"peer-{uuid.uuid4().hex[:8]}")
        self._channels[channel.peer_id] = channel
        self._announce_presence()
        return channel

    def _leave(self, channel: LocalChannel) -> None:
        if self._channels.pop(channel.peer_id, None) is not None:
            self._announce_presence()

    def _announce_presence(self) -> None:
        members = self.members
        for channel in list(self._channels.values()):
            self._loop.call_soon(channel.listeners.dispatch_presence, members)

    def _publish(self, sender: LocalChannel, event: str, data: dict[str, Any]) -> None:
        if self.drop_filter is not None and self.drop_filter(sender.peer_id, event, data):
            logger.debug("Dropping %s from %s", event, sender.peer_id)
            return
        for channel in list(self._channels.values()):
            if channel is sender and not self._echo:
                continue
            # Each receiver gets its own copy, as it would after a network hop
            self._loop.call_soon(channel.deliver, event, copy.deepcopy(data))


class LocalChannel:
    """A member's handle on a :class:`LocalHub` room."""

    def __init__(self, hub: LocalHub, peer_id: str) -> None:
        self._hub = hub
        self._peer_id = peer_id
        self._connected = True
        self.listeners = ChannelListenerManager()
        self.sent: list[tuple[str, dict[str, Any]]] = []

    @property
    def peer_id(self) -> str:
        return self._peer_id

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def members(self) -> list[str]:
        return self._hub.members if self._connected else []

    def send(self, event: ChannelEvent | str, data: dict[str, Any]) -> None:
        name = event_name(event)
        if not self._connected:
            logger.warning("Cannot send %s, channel is closed", name)
            return
        # Enforces the message size limit the same way the relay does
        encode_message(name, data)
        self.sent.append((name, data))
        self._hub._publish(self, name, data)  # noqa: SLF001

    def on_event(self, event: ChannelEvent | str, handler: EventListener) -> Callable[[], None]:
        return self.listeners.add_event_listener(event_name(event), handler)

    def add_presence_listener(self, listener: PresenceListener) -> Callable[[], None]:
        return self.listeners.add_presence_listener(listener)

    def add_disconnect_listener(self, listener: DisconnectListener) -> Callable[[], None]:
        return self.listeners.add_disconnect_listener(listener)

    def deliver(self, event: str, data: dict[str, Any]) -> None:
        """Hand an inbound message to the registered handlers."""
        if self._connected:
            self.listeners.dispatch_event(event, data)

    def close(self) -> None:
        """Leave the room and notify disconnect listeners."""
        if not self._connected:
            return
        self._connected = False
        self._hub._leave(self)  # noqa: SLF001
        self.listeners.dispatch_disconnect()
