"""Channel event vocabulary and payload validation.

Every event exchanged over the room channel has a closed payload type. Inbound
payloads are untrusted: :func:`parse_payload` validates their shape and raises
:class:`ProtocolError` for anything malformed so handlers never see raw dicts.
Wire keys are camelCase; Python attributes are snake_case.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

MAX_MESSAGE_BYTES = 10_240
"""Largest JSON-encoded message accepted by senders and the relay."""


class ProtocolError(ValueError):
    """Raised when a channel payload does not match its event's schema."""


class ChannelEvent(Enum):
    """Logical event names carried by the channel."""

    SYNC_REQUEST = "sync-request"
    SYNC_ACK = "sync-ack"
    SYNC_GO = "sync-go"
    PAUSE = "pause"
    URL = "url"
    STATE_REQUEST = "state-request"
    STATE_RESPONSE = "state-response"
    TIME_CHECK = "time-check"
    VOICE_AUDIO = "voice-audio"


class SyncRequestType(Enum):
    """Kind of transition a sync request negotiates."""

    PLAY = "play"
    SEEK = "seek"


def _require_time(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    # bool is an int subclass and never a valid position
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ProtocolError(f"'{key}' must be a number")
    value = float(value)
    if not math.isfinite(value) or value < 0:
        raise ProtocolError(f"'{key}' must be a finite, non-negative number")
    return value


def _require_id(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"'{key}' must be a non-empty string")
    return value


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string")
    return value


def _require_bool(data: dict[str, Any], key: str) -> bool:
    value = data.get(key)
    if not isinstance(value, bool):
        raise ProtocolError(f"'{key}' must be a boolean")
    return value


@dataclass(frozen=True, slots=True)
class SyncRequest:
    """Ask the peer to buffer at ``time`` before a play or seek commits."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.SYNC_REQUEST

    type: SyncRequestType
    time: float
    initiator: str

    @property
    def origin(self) -> str | None:
        return self.initiator

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "time": self.time, "initiator": self.initiator}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncRequest:
        try:
            request_type = SyncRequestType(data.get("type"))
        except ValueError as err:
            raise ProtocolError("'type' must be 'play' or 'seek'") from err
        return cls(
            type=request_type,
            time=_require_time(data, "time"),
            initiator=_require_id(data, "initiator"),
        )


@dataclass(frozen=True, slots=True)
class SyncAck:
    """Responder is buffered and ready at ``time``."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.SYNC_ACK

    time: float
    responder: str

    @property
    def origin(self) -> str | None:
        return self.responder

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "responder": self.responder}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncAck:
        return cls(time=_require_time(data, "time"), responder=_require_id(data, "responder"))


@dataclass(frozen=True, slots=True)
class SyncGo:
    """Both peers are ready, start playing."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.SYNC_GO

    time: float

    @property
    def origin(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncGo:
        return cls(time=_require_time(data, "time"))


@dataclass(frozen=True, slots=True)
class Pause:
    """Peer paused at ``time``."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.PAUSE

    time: float

    @property
    def origin(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pause:
        return cls(time=_require_time(data, "time"))


@dataclass(frozen=True, slots=True)
class UrlChange:
    """Peer switched the shared video."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.URL

    url: str

    @property
    def origin(self) -> str | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UrlChange:
        return cls(url=_require_str(data, "url"))


@dataclass(frozen=True, slots=True)
class StateRequest:
    """A late joiner asks for the current shared state."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.STATE_REQUEST

    requester_id: str

    @property
    def origin(self) -> str | None:
        return self.requester_id

    def to_dict(self) -> dict[str, Any]:
        return {"requesterId": self.requester_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateRequest:
        return cls(requester_id=_require_id(data, "requesterId"))


@dataclass(frozen=True, slots=True)
class StateResponse:
    """Snapshot of a peer's playback state, addressed to ``target_id``."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.STATE_RESPONSE

    url: str
    is_playing: bool
    time: float
    responder_id: str
    target_id: str

    @property
    def origin(self) -> str | None:
        return self.responder_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "isPlaying": self.is_playing,
            "time": self.time,
            "responderId": self.responder_id,
            "targetId": self.target_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateResponse:
        return cls(
            url=_require_str(data, "url"),
            is_playing=_require_bool(data, "isPlaying"),
            time=_require_time(data, "time"),
            responder_id=_require_id(data, "responderId"),
            target_id=_require_id(data, "targetId"),
        )


@dataclass(frozen=True, slots=True)
class TimeCheck:
    """Periodic playback position report used for drift correction."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.TIME_CHECK

    time: float
    sender: str

    @property
    def origin(self) -> str | None:
        return self.sender

    def to_dict(self) -> dict[str, Any]:
        return {"time": self.time, "sender": self.sender}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeCheck:
        return cls(time=_require_time(data, "time"), sender=_require_id(data, "sender"))


@dataclass(frozen=True, slots=True)
class VoiceAudio:
    """A short push-to-talk recording, base64 encoded."""

    EVENT: ClassVar[ChannelEvent] = ChannelEvent.VOICE_AUDIO

    audio: str
    sender_id: str
    duration: float | None = None

    @property
    def origin(self) -> str | None:
        return self.sender_id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"audio": self.audio, "senderId": self.sender_id}
        if self.duration is not None:
            data["duration"] = self.duration
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VoiceAudio:
        audio = _require_str(data, "audio")
        if not audio:
            raise ProtocolError("'audio' must not be empty")
        duration = _require_time(data, "duration") if data.get("duration") is not None else None
        return cls(audio=audio, sender_id=_require_id(data, "senderId"), duration=duration)


Payload = (
    SyncRequest
    | SyncAck
    | SyncGo
    | Pause
    | UrlChange
    | StateRequest
    | StateResponse
    | TimeCheck
    | VoiceAudio
)

PAYLOAD_TYPES: dict[ChannelEvent, type[Payload]] = {
    ChannelEvent.SYNC_REQUEST: SyncRequest,
    ChannelEvent.SYNC_ACK: SyncAck,
    ChannelEvent.SYNC_GO: SyncGo,
    ChannelEvent.PAUSE: Pause,
    ChannelEvent.URL: UrlChange,
    ChannelEvent.STATE_REQUEST: StateRequest,
    ChannelEvent.STATE_RESPONSE: StateResponse,
    ChannelEvent.TIME_CHECK: TimeCheck,
    ChannelEvent.VOICE_AUDIO: VoiceAudio,
}


def parse_payload(event: ChannelEvent | str, data: Any) -> Payload:
    """Validate raw channel data for ``event`` and return the typed payload.

    Raises:
        ProtocolError: If the event is unknown or the data is malformed.
    """
    try:
        channel_event = ChannelEvent(event)
    except ValueError as err:
        raise ProtocolError(f"Unknown event {event!r}") from err
    if not isinstance(data, dict):
        raise ProtocolError(f"{channel_event.value} payload must be an object")
    return PAYLOAD_TYPES[channel_event].from_dict(data)


def encode_message(event: ChannelEvent | str, data: dict[str, Any]) -> str:
    """Encode an event frame as JSON, enforcing the message size limit.

    Raises:
        ProtocolError: If the encoded frame exceeds ``MAX_MESSAGE_BYTES``.
    """
    name = event.value if isinstance(event, ChannelEvent) else event
    text = json.dumps({"event": name, "data": data}, separators=(",", ":"))
    size = len(text.encode("utf-8"))
    if size > MAX_MESSAGE_BYTES:
        raise ProtocolError(f"{name} message is {size} bytes, limit is {MAX_MESSAGE_BYTES}")
    return text
