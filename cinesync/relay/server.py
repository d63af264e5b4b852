"""aiohttp WebSocket relay for two-peer rooms."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from cinesync.protocol import MAX_MESSAGE_BYTES, ChannelEvent
from cinesync.transport import MAX_ROOM_MEMBERS

logger = logging.getLogger(__name__)

ROOMS_PATH = "/rooms"
RELAYED_EVENTS = frozenset(event.value for event in ChannelEvent)

# Control events sent by the relay itself
WELCOME = "welcome"
MEMBER_ADDED = "member-added"
MEMBER_REMOVED = "member-removed"
ROOM_FULL = "room-full"
ERROR = "error"


def control_frame(event: str, data: dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": data}, separators=(",", ":"))


@dataclass
class RelayMember:
    """A peer connected to a room."""

    peer_id: str
    ws: web.WebSocketResponse
    name: str | None = None


@dataclass
class Room:
    """A relay room with its connected members."""

    room_id: str
    members: dict[str, RelayMember] = field(default_factory=dict)

    @property
    def member_ids(self) -> list[str]:
        return list(self.members)

    def others(self, peer_id: str) -> list[RelayMember]:
        return [member for member_id, member in self.members.items() if member_id != peer_id]


class RelayServer:
    """Forwards channel events between the members of a room.

    The relay does not interpret payloads beyond the frame shape: a known
    event name, an object ``data`` and the message size limit. Frames are
    forwarded verbatim to the other members only.
    """

    def __init__(self, name: str = "CineSync Relay", *, max_members: int = MAX_ROOM_MEMBERS) -> None:
        self.name = name
        self._max_members = max_members
        self._rooms: dict[str, Room] = {}

    @property
    def rooms(self) -> dict[str, Room]:
        return self._rooms

    def create_app(self) -> web.Application:
        """Create the aiohttp application serving the relay."""
        app = web.Application()
        app.router.add_get("/", self._handle_index)
        app.router.add_get(ROOMS_PATH + "/{room_id:[A-Za-z0-9_.-]{1,64}}", self._handle_room)
        app.on_shutdown.append(self._on_shutdown)
        return app

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "service": "cinesync-relay",
                "name": self.name,
                "rooms": {room_id: len(room.members) for room_id, room in self._rooms.items()},
            }
        )

    async def _handle_room(self, request: web.Request) -> web.WebSocketResponse:
        room_id = request.match_info["room_id"]
        # Oversized frames are rejected in _relay_frame rather than killing the socket
        ws = web.WebSocketResponse(heartbeat=30, max_msg_size=MAX_MESSAGE_BYTES * 4)
        await ws.prepare(request)

        room = self._rooms.setdefault(room_id, Room(room_id))
        if len(room.members) >= self._max_members:
            logger.info("Room %s is full, rejecting connection", room_id)
            await ws.send_str(control_frame(ROOM_FULL, {"roomId": room_id}))
            await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"room-full")
            return ws

        member = RelayMember(
            peer_id=f"peer-{uuid.uuid4().hex[:8]}",
            ws=ws,
            name=request.query.get("name"),
        )
        room.members[member.peer_id] = member
        logger.info("%s (%s) joined room %s", member.peer_id, member.name or "anonymous", room_id)

        try:
            await ws.send_str(
                control_frame(WELCOME, {"peerId": member.peer_id, "members": room.member_ids})
            )
            await self._broadcast(
                room,
                member.peer_id,
                control_frame(MEMBER_ADDED, {"peerId": member.peer_id, "members": room.member_ids}),
            )

            async for msg in ws:
                if msg.type is WSMsgType.TEXT:
                    await self._relay_frame(room, member, msg.data)
                elif msg.type is WSMsgType.ERROR:
                    logger.warning("WebSocket error from %s: %s", member.peer_id, ws.exception())
        finally:
            room.members.pop(member.peer_id, None)
            logger.info("%s left room %s", member.peer_id, room_id)
            if room.members:
                await self._broadcast(
                    room,
                    member.peer_id,
                    control_frame(
                        MEMBER_REMOVED, {"peerId": member.peer_id, "members": room.member_ids}
                    ),
                )
            elif self._rooms.get(room_id) is room:
                del self._rooms[room_id]

        return ws

    async def _relay_frame(self, room: Room, sender: RelayMember, text: str) -> None:
        if len(text.encode("utf-8")) > MAX_MESSAGE_BYTES:
            await self._reject(sender, f"message exceeds {MAX_MESSAGE_BYTES} bytes")
            return
        try:
            frame = json.loads(text)
        except ValueError:
            await self._reject(sender, "invalid JSON")
            return
        if not isinstance(frame, dict):
            await self._reject(sender, "frame must be an object")
            return
        event = frame.get("event")
        if event not in RELAYED_EVENTS:
            await self._reject(sender, f"unknown event {event!r}")
            return
        if not isinstance(frame.get("data"), dict):
            await self._reject(sender, "data must be an object")
            return
        await self._broadcast(room, sender.peer_id, text)

    async def _reject(self, member: RelayMember, reason: str) -> None:
        logger.debug("Rejected frame from %s: %s", member.peer_id, reason)
        await self._send(member, control_frame(ERROR, {"message": reason}))

    async def _broadcast(self, room: Room, sender_id: str, text: str) -> None:
        for member in room.others(sender_id):
            await self._send(member, text)

    async def _send(self, member: RelayMember, text: str) -> None:
        if member.ws.closed:
            return
        try:
            await member.ws.send_str(text)
        except ConnectionResetError:
            logger.debug("Connection to %s reset while sending", member.peer_id)

    async def _on_shutdown(self, _app: web.Application) -> None:
        for room in list(self._rooms.values()):
            for member in list(room.members.values()):
                await member.ws.close(code=WSCloseCode.GOING_AWAY, message=b"relay shutdown")
