import numpy as np
import pytest

from cinesync.codec import (
    CAPTURE_SAMPLE_RATE,
    PLAYBACK_SAMPLE_RATE,
    VoiceCodecError,
    decode_to_pcm,
    encode_for_message,
    encode_opus,
    message_fits,
)
from cinesync.protocol import MAX_MESSAGE_BYTES


def _tone(seconds: float, frequency: float = 440.0) -> bytes:
    t = np.arange(int(CAPTURE_SAMPLE_RATE * seconds)) / CAPTURE_SAMPLE_RATE
    samples = (np.sin(2 * np.pi * frequency * t) * 8000).astype(np.int16)
    return samples.tobytes()


def test_opus_recording_decodes_at_playback_rate():
    encoded = encode_opus(_tone(1.0))

    assert encoded[:4] == b"OggS"
    samples = decode_to_pcm(encoded)
    assert samples.dtype == np.int16
    # Allow for encoder padding and priming samples
    assert abs(samples.size - PLAYBACK_SAMPLE_RATE) < PLAYBACK_SAMPLE_RATE * 0.1
    assert np.abs(samples).max() > 1000


def test_empty_recording_is_rejected():
    with pytest.raises(VoiceCodecError):
        encode_opus(b"")


def test_garbage_does_not_decode():
    with pytest.raises(VoiceCodecError):
        decode_to_pcm(b"definitely not ogg")


def test_short_recording_fits_a_message():
    encoded = encode_for_message(_tone(1.5), "peer-a", 1.5)

    assert encoded is not None
    assert message_fits(encoded, "peer-a", 1.5)


def test_message_fits_limit():
    assert message_fits(b"\x00" * 100, "peer-a", 1.0)
    assert not message_fits(b"\x00" * MAX_MESSAGE_BYTES, "peer-a", 1.0)
