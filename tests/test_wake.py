"""Tests for wake phrase matching and the phrase listener."""

from __future__ import annotations

import asyncio
import struct
from unittest.mock import AsyncMock, patch

import pytest
from mirror.assistant.config import WyomingEndpoint
from mirror.kiosk.config import MicConfig
from mirror.kiosk.wake import WakePhraseListener, normalize_phrase, split_wake_phrase

pytestmark = pytest.mark.anyio

PHRASES = ("Hey Mirror", "OK Mirror")


def _chunk(amplitude: int, samples: int = 480) -> bytes:
    return struct.pack(f"<{samples}h", *([amplitude] * samples))


class FakeStream:
    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = list(chunks)
        self.start = AsyncMock()
        self.stop = AsyncMock()

    async def read_chunk(self) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        return _chunk(0)


@pytest.fixture
def mic():
    return MicConfig(command=["arecord"], rate=16000, width=2, channels=1, chunk_ms=30)


def _listener(stream, mic, **overrides) -> WakePhraseListener:
    options = {"listen_seconds": 1.0, "rms_floor": 300, "silence_ms": 60}
    options.update(overrides)
    return WakePhraseListener(stream, mic, WyomingEndpoint(host="localhost", port=10300), PHRASES, **options)


class TestNormalizePhrase:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Hey, Mirror!", "hey mirror"),
            ("  OK   mirror ", "ok mirror"),
            ("What’s up", "whats up"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, text, expected):
        assert normalize_phrase(text) == expected


class TestSplitWakePhrase:
    def test_phrase_with_command(self):
        assert split_wake_phrase("Hey, Mirror. What's the weather like?", PHRASES) == (
            "Hey Mirror",
            "What's the weather like",
        )

    def test_phrase_alone(self):
        assert split_wake_phrase("ok mirror", PHRASES) == ("OK Mirror", "")

    def test_phrase_mid_sentence(self):
        assert split_wake_phrase("um hey mirror set an alarm", PHRASES) == ("Hey Mirror", "set an alarm")

    def test_first_configured_phrase_wins(self):
        assert split_wake_phrase("OK mirror hey mirror", PHRASES) == ("Hey Mirror", "")

    def test_no_partial_word_match(self):
        assert split_wake_phrase("hey mirrors are shiny", PHRASES) is None

    def test_no_match(self):
        assert split_wake_phrase("tell me the forecast", PHRASES) is None
        assert split_wake_phrase("", PHRASES) is None


class TestRecordPhrase:
    async def test_silence_returns_none(self, mic):
        stream = FakeStream([])
        assert await _listener(stream, mic).record_phrase() is None

    async def test_stops_after_trailing_silence(self, mic):
        loud = _chunk(2000)
        stream = FakeStream([_chunk(0), loud, loud, _chunk(0), _chunk(0), loud])
        audio = await _listener(stream, mic).record_phrase()
        # leading silence dropped; two loud chunks plus two chunks of trailing silence
        assert audio == loud + loud + _chunk(0) + _chunk(0)
        assert stream.chunks == [loud]


class TestTranscribePhrase:
    async def test_returns_stripped_text(self, mic):
        stream = FakeStream([_chunk(2000)])
        with patch("mirror.kiosk.wake.transcribe_audio", AsyncMock(return_value="  Hey Mirror  ")) as transcribe:
            assert await _listener(stream, mic).transcribe_phrase() == "Hey Mirror"
        pcm = transcribe.call_args.args[0]
        assert (pcm.rate, pcm.width, pcm.channels) == (16000, 2, 1)

    async def test_service_unavailable(self, mic, mock_logger):
        stream = FakeStream([_chunk(2000)])
        with (
            patch("mirror.kiosk.wake.transcribe_audio", AsyncMock(side_effect=ConnectionRefusedError("refused"))),
            patch("mirror.kiosk.wake.asyncio.sleep", AsyncMock()),
        ):
            assert await _listener(stream, mic, logger=mock_logger).transcribe_phrase() is None
        mock_logger.warning.assert_called_once()


class TestWaitForWake:
    async def test_returns_match(self, mic):
        stream = FakeStream([_chunk(2000)] * 3)
        transcripts = AsyncMock(side_effect=["good morning", "hey mirror what time is it"])
        listener = _listener(stream, mic)
        with patch.object(listener, "transcribe_phrase", transcripts):
            result = await listener.wait_for_wake(lambda: True, asyncio.Event())
        assert result == ("Hey Mirror", "what time is it")
        stream.start.assert_awaited_once()

    async def test_stop_event(self, mic):
        stop = asyncio.Event()
        stop.set()
        assert await _listener(FakeStream([]), mic).wait_for_wake(lambda: True, stop) is None

    async def test_ignores_phrases_while_disarmed(self, mic):
        armed = iter([True, False, True, True])
        transcripts = AsyncMock(side_effect=["hey mirror", "ok mirror"])
        listener = _listener(FakeStream([]), mic)
        with patch.object(listener, "transcribe_phrase", transcripts):
            result = await listener.wait_for_wake(lambda: next(armed), asyncio.Event())
        assert result == ("OK Mirror", "")
