"""Walkie-talkie capture and playback on local audio devices.

Recording happens in sessions of at most three seconds. While the talk key is
held, sessions are chained; each finished session is encoded and broadcast as
one voice message, never faster than one message per second. Received voice
messages are decoded and played at full volume, and playback end is reported
back to the sync engine so it can restore the video.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import numpy as np
import sounddevice

from cinesync.codec import (
    CAPTURE_SAMPLE_RATE,
    PLAYBACK_SAMPLE_RATE,
    VoiceCodecError,
    decode_to_pcm,
    encode_for_message,
)
from cinesync.utils import create_task

if TYPE_CHECKING:
    from cinesync.protocol import VoiceAudio
    from cinesync.sync.engine import SyncEngine
    from cinesync.sync.voice import VoiceSink

logger = logging.getLogger(__name__)

MAX_RECORD_SECONDS: Final[float] = 3.0
SEND_COOLDOWN_SECONDS: Final[float] = 1.0


@dataclass(slots=True)
class AudioDevice:
    """Represents an audio device usable for voice.

    Attributes:
        index: Device index used for selection.
        name: Human-readable device name.
        input_channels: Number of input channels supported.
        output_channels: Number of output channels supported.
        is_default_input: Whether this is the system default input device.
        is_default_output: Whether this is the system default output device.
    """

    index: int
    name: str
    input_channels: int
    output_channels: int
    is_default_input: bool
    is_default_output: bool


def query_devices() -> list[AudioDevice]:
    """Query all audio devices with input or output channels."""
    devices = sounddevice.query_devices()
    default_input, default_output = (int(i) for i in sounddevice.default.device)

    result: list[AudioDevice] = []
    for i in range(len(devices)):
        dev = devices[i]
        if dev["max_input_channels"] > 0 or dev["max_output_channels"] > 0:
            result.append(
                AudioDevice(
                    index=i,
                    name=str(dev["name"]),
                    input_channels=int(dev["max_input_channels"]),
                    output_channels=int(dev["max_output_channels"]),
                    is_default_input=(i == default_input),
                    is_default_output=(i == default_output),
                )
            )
    return result


def resolve_device(spec: str | None) -> int | None:
    """Resolve a device index or name prefix to an index.

    Raises:
        ValueError: If no device matches.
    """
    if spec is None:
        return None
    if spec.isdigit():
        return int(spec)
    lowered = spec.lower()
    for device in query_devices():
        if device.name.lower().startswith(lowered):
            return device.index
    raise ValueError(f"No audio device matches {spec!r}")


def _device_available(device: int | None, kind: str) -> bool:
    try:
        sounddevice.query_devices(device, kind=kind)
    except (ValueError, sounddevice.PortAudioError) as e:
        logger.info("No %s audio device: %s", kind, e)
        return False
    return True


class VoiceRecorder:
    """Records microphone audio in bounded sessions.

    The sounddevice callback runs on the audio thread and only hands raw
    blocks to the event loop, where sessions are cut.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_session: Callable[[bytes, float], None],
        *,
        device: int | None = None,
        max_seconds: float = MAX_RECORD_SECONDS,
    ) -> None:
        self._loop = loop
        self._on_session = on_session
        self._device = device
        self._max_seconds = max_seconds
        self._stream: sounddevice.RawInputStream | None = None
        self._blocks: list[bytes] = []
        self._session_handle: asyncio.TimerHandle | None = None
        self._session_started = 0.0

    @property
    def recording(self) -> bool:
        return self._stream is not None

    @property
    def session_remaining(self) -> float:
        """Seconds left before the current session is cut, 0 when idle."""
        if self._stream is None:
            return 0.0
        elapsed = self._loop.time() - self._session_started
        return max(0.0, self._max_seconds - elapsed)

    def start(self) -> None:
        """Open the microphone and start the first session."""
        if self._stream is not None:
            return
        stream = sounddevice.RawInputStream(
            samplerate=CAPTURE_SAMPLE_RATE,
            channels=1,
            dtype="int16",
            callback=self._audio_callback,
            device=self._device,
        )
        stream.start()
        self._stream = stream
        self._arm_session()
        logger.debug("Microphone opened")

    def stop(self) -> None:
        """Close the microphone and deliver the last partial session."""
        if self._stream is None:
            return
        if self._session_handle is not None:
            self._session_handle.cancel()
            self._session_handle = None
        stream = self._stream
        self._stream = None
        try:
            stream.stop()
            stream.close()
        except sounddevice.PortAudioError:
            logger.exception("Failed to close audio input stream")
        # Blocks handed over by the audio thread are queued ahead of this
        self._loop.call_soon(self._deliver)

    def _audio_callback(self, indata: Any, _frames: int, _time: Any, status: Any) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        self._loop.call_soon_threadsafe(self._add_block, bytes(indata))

    def _add_block(self, block: bytes) -> None:
        self._blocks.append(block)

    def _arm_session(self) -> None:
        self._session_started = self._loop.time()
        self._session_handle = self._loop.call_later(self._max_seconds, self._end_session)

    def _end_session(self) -> None:
        self._session_handle = None
        logger.debug("Recording session reached %.1fs, starting a new one", self._max_seconds)
        self._deliver()
        if self._stream is not None:
            self._arm_session()

    def _deliver(self) -> None:
        blocks, self._blocks = self._blocks, []
        pcm = b"".join(blocks)
        if not pcm:
            return
        duration = len(pcm) / 2 / CAPTURE_SAMPLE_RATE
        self._on_session(pcm, duration)


class WalkieTalkie:
    """Push-to-talk voice bound to a :class:`SyncEngine`.

    Capability is probed on construction: without an input device the engine
    treats local voice as unavailable, and without an output device received
    voice is ignored.
    """

    def __init__(
        self,
        *,
        input_device: int | None = None,
        output_device: int | None = None,
        enabled: bool = True,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._output_device = output_device
        self.capture_available = enabled and _device_available(input_device, "input")
        self.playback_available = enabled and _device_available(output_device, "output")

        self._engine: SyncEngine | None = None
        self._recorder = VoiceRecorder(self._loop, self._on_session, device=input_device)
        self._talk_started = 0.0
        self._last_send = float("-inf")
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._playing = 0

    @property
    def talking(self) -> bool:
        return self._recorder.recording

    @property
    def talk_remaining(self) -> float:
        """Seconds left in the current recording session, 0 when not talking."""
        return self._recorder.session_remaining

    @property
    def playing(self) -> bool:
        """Whether a received voice message is playing."""
        return self._playing > 0

    def bind(self, engine: SyncEngine) -> None:
        self._engine = engine

    @property
    def sink(self) -> VoiceSink | None:
        """Coroutine function for the engine's voice sink, if playback works."""
        return self.play_voice if self.playback_available else None

    def toggle_talk(self) -> bool:
        """Start or stop talking. Returns True while talking."""
        if self.talking:
            self.stop_talk()
        else:
            self.start_talk()
        return self.talking

    def start_talk(self) -> bool:
        engine = self._engine
        if engine is None or not self.capture_available:
            logger.info("Voice capture unavailable")
            return False
        if self.talking:
            return True
        try:
            self._recorder.start()
        except sounddevice.PortAudioError as e:
            logger.warning("Could not open microphone: %s", e)
            return False
        self._talk_started = self._loop.time()
        engine.begin_voice_activity()
        logger.info("Talking...")
        return True

    def stop_talk(self) -> None:
        if not self.talking:
            return
        self._recorder.stop()
        duration = self._loop.time() - self._talk_started
        logger.info("Stopped talking after %.1fs", duration)
        if self._engine is not None:
            self._engine.end_voice_activity(duration)

    def _on_session(self, pcm: bytes, duration: float) -> None:
        task = create_task(self._send_session(pcm, duration), name="cinesync-voice-send")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send_session(self, pcm: bytes, duration: float) -> None:
        engine = self._engine
        if engine is None:
            return
        # Sessions go out in order, spaced by the send cooldown
        async with self._send_lock:
            try:
                encoded = await self._loop.run_in_executor(
                    None, encode_for_message, pcm, engine.identity, duration
                )
            except VoiceCodecError as e:
                logger.warning("Could not encode voice: %s", e)
                return
            if encoded is None:
                return
            wait = self._last_send + SEND_COOLDOWN_SECONDS - self._loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            if engine.send_voice_audio(encoded, duration):
                self._last_send = self._loop.time()
                logger.debug("Sent %d bytes of voice (%.1fs)", len(encoded), duration)

    async def play_voice(self, voice: VoiceAudio) -> None:
        """Decode and play a received voice message. Returns when playback ends."""
        try:
            data = base64.b64decode(voice.audio, validate=True)
            samples = await self._loop.run_in_executor(None, decode_to_pcm, data)
        except (binascii.Error, VoiceCodecError) as e:
            logger.warning("Could not decode voice from %s: %s", voice.sender_id, e)
            return
        if samples.size == 0:
            return

        self._playing += 1
        try:
            await self._play_samples(samples)
        except sounddevice.PortAudioError as e:
            logger.warning("Voice playback failed: %s", e)
        finally:
            self._playing -= 1

    async def _play_samples(self, samples: np.ndarray) -> None:
        loop = self._loop
        done: asyncio.Future[None] = loop.create_future()
        pcm = samples.astype(np.int16, copy=False).tobytes()
        position = 0

        def callback(outdata: Any, frames: int, _time: Any, _status: Any) -> None:
            nonlocal position
            wanted = frames * 2
            chunk = pcm[position : position + wanted]
            position += len(chunk)
            outdata[: len(chunk)] = chunk
            if len(chunk) < wanted:
                outdata[len(chunk) :] = b"\x00" * (wanted - len(chunk))
                raise sounddevice.CallbackStop

        def finished() -> None:
            loop.call_soon_threadsafe(_resolve)

        def _resolve() -> None:
            if not done.done():
                done.set_result(None)

        stream = sounddevice.RawOutputStream(
            samplerate=PLAYBACK_SAMPLE_RATE,
            channels=1,
            dtype="int16",
            callback=callback,
            finished_callback=finished,
            device=self._output_device,
        )
        with stream:
            await done

    async def close(self) -> None:
        self.stop_talk()
        for task in list(self._tasks):
            task.cancel()
