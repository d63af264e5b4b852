import json

import pytest

from cinesync.protocol import (
    MAX_MESSAGE_BYTES,
    ChannelEvent,
    ProtocolError,
    StateResponse,
    SyncRequest,
    SyncRequestType,
    VoiceAudio,
    encode_message,
    parse_payload,
)


def test_parse_sync_request():
    payload = parse_payload("sync-request", {"type": "seek", "time": 12, "initiator": "peer-a"})

    assert isinstance(payload, SyncRequest)
    assert payload.type is SyncRequestType.SEEK
    assert payload.time == 12.0
    assert payload.origin == "peer-a"


def test_state_response_uses_camel_case_keys():
    response = StateResponse(
        url="movie.mp4", is_playing=True, time=3.5, responder_id="peer-a", target_id="peer-b"
    )

    assert response.to_dict() == {
        "url": "movie.mp4",
        "isPlaying": True,
        "time": 3.5,
        "responderId": "peer-a",
        "targetId": "peer-b",
    }
    assert parse_payload(ChannelEvent.STATE_RESPONSE, response.to_dict()) == response


@pytest.mark.parametrize(
    ("event", "data"),
    [
        ("sync-request", {"type": "rewind", "time": 1, "initiator": "a"}),
        ("sync-request", {"type": "play", "time": -1, "initiator": "a"}),
        ("sync-request", {"type": "play", "time": 1}),
        ("sync-ack", {"time": True, "responder": "a"}),
        ("sync-ack", {"time": float("nan"), "responder": "a"}),
        ("pause", {"time": "12"}),
        ("url", {"url": 5}),
        ("state-response", {"url": "", "isPlaying": "yes", "time": 0, "responderId": "a", "targetId": "b"}),
        ("voice-audio", {"audio": "", "senderId": "a"}),
        ("unknown-event", {}),
        ("pause", ["not", "an", "object"]),
    ],
)
def test_malformed_payloads_are_rejected(event, data):
    with pytest.raises(ProtocolError):
        parse_payload(event, data)


def test_voice_audio_duration_is_optional():
    voice = VoiceAudio(audio="AAAA", sender_id="peer-a")

    assert "duration" not in voice.to_dict()
    parsed = parse_payload("voice-audio", {"audio": "AAAA", "senderId": "peer-a", "duration": 1.5})
    assert parsed.duration == 1.5


def test_encode_message_produces_compact_frame():
    text = encode_message(ChannelEvent.PAUSE, {"time": 4.0})

    assert json.loads(text) == {"event": "pause", "data": {"time": 4.0}}
    assert " " not in text


def test_encode_message_enforces_size_limit():
    data = {"audio": "A" * MAX_MESSAGE_BYTES, "senderId": "peer-a"}

    with pytest.raises(ProtocolError):
        encode_message(ChannelEvent.VOICE_AUDIO, data)
