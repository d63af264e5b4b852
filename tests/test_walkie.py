import asyncio
import threading

import pytest

try:
    from cinesync.walkie import VoiceRecorder
except OSError:
    pytest.skip("PortAudio is not installed", allow_module_level=True)

BLOCK = b"\x01\x00" * 160


class _StubStream:
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        pass


def _feed_from_audio_thread(recorder: VoiceRecorder, block: bytes) -> None:
    thread = threading.Thread(
        target=recorder._audio_callback,  # noqa: SLF001
        args=(memoryview(block), len(block) // 2, None, None),
    )
    thread.start()
    thread.join()


@pytest.mark.asyncio
async def test_audio_thread_hands_blocks_to_loop():
    sessions = []
    recorder = VoiceRecorder(asyncio.get_running_loop(), lambda *s: sessions.append(s))

    _feed_from_audio_thread(recorder, BLOCK)
    assert recorder._blocks == []  # noqa: SLF001

    await asyncio.sleep(0)
    recorder._end_session()  # noqa: SLF001

    assert sessions == [(BLOCK, pytest.approx(0.01))]


@pytest.mark.asyncio
async def test_stop_keeps_blocks_still_in_flight():
    sessions = []
    recorder = VoiceRecorder(asyncio.get_running_loop(), lambda *s: sessions.append(s))
    stream = _StubStream()
    recorder._stream = stream  # noqa: SLF001

    _feed_from_audio_thread(recorder, BLOCK)
    recorder.stop()
    assert stream.stopped is True
    assert recorder.recording is False

    await asyncio.sleep(0)

    assert sessions == [(BLOCK, pytest.approx(0.01))]


@pytest.mark.asyncio
async def test_session_remaining_counts_down():
    loop = asyncio.get_running_loop()
    recorder = VoiceRecorder(loop, lambda *s: None, max_seconds=3.0)
    assert recorder.session_remaining == 0.0

    recorder._stream = _StubStream()  # noqa: SLF001
    recorder._session_started = loop.time() - 1.0  # noqa: SLF001

    assert 1.9 < recorder.session_remaining <= 2.0
