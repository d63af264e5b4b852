"""Opus/Ogg encoding and decoding of walkie-talkie recordings."""

from __future__ import annotations

import base64
import io
import logging
from typing import Final

import av
import numpy as np
from av.container import InputContainer, OutputContainer

from cinesync.protocol import ProtocolError, VoiceAudio, encode_message

logger = logging.getLogger(__name__)

CAPTURE_SAMPLE_RATE: Final[int] = 16_000
"""Microphone sample rate; libopus accepts it natively."""

PLAYBACK_SAMPLE_RATE: Final[int] = 48_000

AUDIO_BITRATE: Final[int] = 24_000

FALLBACK_BITRATES: Final[tuple[int, ...]] = (AUDIO_BITRATE, 16_000, 12_000)
"""Bitrates tried in order until an encoded message fits the size limit."""


class VoiceCodecError(Exception):
    """Raised when a recording cannot be encoded or decoded."""


def encode_opus(
    pcm: bytes, *, sample_rate: int = CAPTURE_SAMPLE_RATE, bitrate: int = AUDIO_BITRATE
) -> bytes:
    """Encode mono int16 PCM to Opus in an Ogg container.

    Args:
        pcm: Little-endian signed 16-bit mono samples.
        sample_rate: Sample rate of ``pcm``.
        bitrate: Target bitrate in bits per second.

    Returns:
        The encoded Ogg file.
    """
    samples = np.frombuffer(pcm, dtype=np.int16)
    if samples.size == 0:
        raise VoiceCodecError("Recording is empty")

    buffer = io.BytesIO()
    try:
        with av.open(buffer, mode="w", format="ogg") as container:
            assert isinstance(container, OutputContainer)
            stream = container.add_stream("libopus", rate=sample_rate)
            stream.codec_context.layout = "mono"
            stream.codec_context.bit_rate = bitrate

            frame = av.AudioFrame.from_ndarray(
                samples.reshape(1, -1), format="s16", layout="mono"
            )
            frame.sample_rate = sample_rate
            for packet in stream.encode(frame):
                container.mux(packet)
            for packet in stream.encode(None):
                container.mux(packet)
    except av.FFmpegError as e:
        raise VoiceCodecError(f"Opus encode failed: {e}") from e
    return buffer.getvalue()


def decode_to_pcm(data: bytes, *, sample_rate: int = PLAYBACK_SAMPLE_RATE) -> np.ndarray:
    """Decode an encoded recording to mono int16 samples at ``sample_rate``."""
    container: InputContainer | None = None
    try:
        container = av.open(io.BytesIO(data))  # type: ignore[assignment]
        assert isinstance(container, InputContainer)
        resampler = av.AudioResampler(format="s16", layout="mono", rate=sample_rate)
        chunks: list[np.ndarray] = []

        for frame in container.decode(audio=0):
            for resampled in resampler.resample(frame):
                chunks.append(resampled.to_ndarray().reshape(-1))
        for resampled in resampler.resample(None):
            chunks.append(resampled.to_ndarray().reshape(-1))
    except av.FFmpegError as e:
        raise VoiceCodecError(f"Voice decode failed: {e}") from e
    finally:
        if container is not None:
            container.close()

    if not chunks:
        return np.zeros(0, dtype=np.int16)
    return np.concatenate(chunks).astype(np.int16, copy=False)


def message_fits(audio: bytes, sender_id: str, duration: float | None) -> bool:
    """Whether a voice-audio message carrying ``audio`` fits the size limit."""
    message = VoiceAudio(
        audio=base64.b64encode(audio).decode("ascii"), sender_id=sender_id, duration=duration
    )
    try:
        encode_message(message.EVENT, message.to_dict())
    except ProtocolError:
        return False
    return True


def encode_for_message(pcm: bytes, sender_id: str, duration: float | None) -> bytes | None:
    """Encode ``pcm`` at the highest bitrate whose message fits the size limit.

    Returns:
        The encoded recording, or None if it does not fit at any bitrate.
    """
    for bitrate in FALLBACK_BITRATES:
        encoded = encode_opus(pcm, bitrate=bitrate)
        if message_fits(encoded, sender_id, duration):
            if bitrate != AUDIO_BITRATE:
                logger.debug("Voice message re-encoded at %d bps to fit", bitrate)
            return encoded
    logger.warning("Voice recording of %d bytes does not fit in a message", len(pcm))
    return None
