"""Tests for the kiosk voice session state machine."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from mirror.kiosk.audio import CaptureError
from mirror.kiosk.transport import AudioReply, TransportError
from mirror.kiosk.voice_session import (
    STATUS_LISTENING,
    STATUS_MIC_ERROR,
    STATUS_NOT_CAUGHT,
    STATUS_PROCESSING,
    STATUS_REQUEST_ERROR,
    STATUS_RESPONSE_RECEIVED,
    VoiceSession,
    VoiceSessionState,
)

pytestmark = pytest.mark.anyio

CAPTURE = 0.05
REARM = 0.05
ERROR_DISPLAY = 0.05


async def _until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def client():
    client = Mock()
    client.process_audio = AsyncMock(
        return_value=AudioReply(transcription="set an alarm", response="Alarm set for 7:30.", audio=b"RIFF-reply")
    )
    client.process_text = AsyncMock(return_value="Added to your to-do list: milk")
    return client


@pytest.fixture
def recorder():
    recorder = Mock()
    recorder.start = AsyncMock()
    recorder.stop = AsyncMock(return_value=b"RIFF-capture")
    return recorder


@pytest.fixture
def player():
    player = Mock()
    player.play_wav = AsyncMock()
    return player


@pytest.fixture
def speaker():
    speaker = Mock()
    speaker.speak = AsyncMock()
    return speaker


@pytest.fixture
def session_factory(client, recorder, player, speaker):
    sessions: list[VoiceSession] = []
    statuses: list[str] = []
    states: list[VoiceSessionState] = []
    responses: list[str] = []

    def _create(**overrides) -> VoiceSession:
        options = {
            "client": client,
            "recorder": recorder,
            "player": player,
            "speaker": speaker,
            "capture_seconds": CAPTURE,
            "rearm_delay": REARM,
            "error_display_seconds": ERROR_DISPLAY,
            "on_status": statuses.append,
            "on_state": states.append,
            "on_response": responses.append,
        }
        options.update(overrides)
        session = VoiceSession(**options)
        session.statuses = statuses  # type: ignore[attr-defined]
        session.states = states  # type: ignore[attr-defined]
        session.responses = responses  # type: ignore[attr-defined]
        sessions.append(session)
        return session

    yield _create


@pytest.fixture
async def session(session_factory):
    session = session_factory()
    yield session
    await session.close()


class TestWake:
    async def test_wake_enters_listening_and_disarms(self, session):
        assert session.wake() is True
        assert session.state is VoiceSessionState.LISTENING
        assert session.status == STATUS_LISTENING
        assert session.armed is False

    async def test_second_wake_is_ignored(self, session):
        session.wake()
        assert session.wake() is False
        assert session.states == [VoiceSessionState.LISTENING]

    async def test_arm_capture_requires_listening(self, session, recorder):
        assert session.arm_capture() is False
        recorder.start.assert_not_awaited()


class TestAudioCapture:
    async def test_full_cycle(self, session, client, recorder, player):
        assert session.push_to_talk() is True
        await _until(lambda: session.state is VoiceSessionState.IDLE)

        recorder.start.assert_awaited_once()
        recorder.stop.assert_awaited_once()
        client.process_audio.assert_awaited_once_with(b"RIFF-capture")
        player.play_wav.assert_awaited_once_with(b"RIFF-reply")
        assert session.states == [
            VoiceSessionState.LISTENING,
            VoiceSessionState.CAPTURING,
            VoiceSessionState.UPLOADING,
            VoiceSessionState.SPEAKING,
            VoiceSessionState.IDLE,
        ]
        assert STATUS_PROCESSING in session.statuses
        assert session.status == STATUS_RESPONSE_RECEIVED
        assert session.responses == ["Alarm set for 7:30."]

    async def test_wake_ignored_while_busy(self, session):
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.CAPTURING)
        assert session.wake() is False
        assert session.push_to_talk() is False
        assert session.state is VoiceSessionState.CAPTURING

    async def test_single_capture_per_window(self, session, recorder, client):
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.CAPTURING)
        session.arm_capture()
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        assert recorder.start.await_count == 1
        assert client.process_audio.await_count == 1

    async def test_arm_capture_twice_starts_one_capture(self, session, recorder, client):
        session.wake()
        assert session.arm_capture() is True
        assert session.state is VoiceSessionState.CAPTURING
        assert session.arm_capture() is False
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        assert recorder.start.await_count == 1
        assert client.process_audio.await_count == 1

    async def test_phrase_refused_while_capture_starting(self, session, recorder, client):
        session.wake()
        session.arm_capture()
        assert session.deliver_phrase("add milk") is False
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        client.process_text.assert_not_awaited()
        recorder.stop.assert_awaited_once()
        client.process_audio.assert_awaited_once_with(b"RIFF-capture")

    async def test_rearms_after_idle(self, session):
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        assert session.armed is False
        assert session.wake() is False
        await _until(lambda: session.armed)
        assert session.wake() is True

    async def test_reply_without_audio_skips_playback(self, session, client, player):
        client.process_audio.return_value = AudioReply(transcription="hi", response="Hello.", audio=b"")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        player.play_wav.assert_not_awaited()
        assert session.responses == ["Hello."]

    async def test_playback_failure_still_returns_to_idle(self, session, player):
        player.play_wav.side_effect = RuntimeError("aplay missing")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.IDLE)


class TestFailures:
    async def test_upload_failure_shows_error_then_recovers(self, session, client):
        client.process_audio.side_effect = TransportError("connection refused")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.ERROR)
        assert session.status == STATUS_REQUEST_ERROR
        assert session.armed is True
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        assert session.responses == []

    async def test_wake_allowed_from_error(self, session, client):
        client.process_audio.side_effect = TransportError("connection refused")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.ERROR)
        assert session.wake() is True
        assert session.state is VoiceSessionState.LISTENING
        await asyncio.sleep(ERROR_DISPLAY * 2)
        assert session.state is VoiceSessionState.LISTENING

    async def test_microphone_failure(self, session, recorder, client):
        recorder.start.side_effect = CaptureError("no device")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.ERROR)
        assert session.status == STATUS_MIC_ERROR
        client.process_audio.assert_not_awaited()

    async def test_capture_stop_failure(self, session, recorder, client):
        recorder.stop.side_effect = CaptureError("no audio captured")
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.ERROR)
        assert session.status == STATUS_MIC_ERROR
        client.process_audio.assert_not_awaited()


class TestTextPhrases:
    async def test_phrase_goes_straight_to_upload(self, session, client, speaker, recorder):
        session.wake()
        assert session.deliver_phrase("add to my to-do list milk") is True
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        client.process_text.assert_awaited_once_with("add to my to-do list milk")
        speaker.speak.assert_awaited_once_with("Added to your to-do list: milk")
        recorder.start.assert_not_awaited()
        assert "Processing: add to my to-do list milk" in session.statuses
        assert VoiceSessionState.CAPTURING not in session.states

    async def test_second_phrase_is_refused(self, session, client):
        session.wake()
        assert session.deliver_phrase("add milk") is True
        assert session.state is VoiceSessionState.UPLOADING
        assert session.deliver_phrase("add eggs") is False
        assert session.arm_capture() is False
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        client.process_text.assert_awaited_once_with("add milk")

    async def test_empty_phrase(self, session, client):
        session.wake()
        session.deliver_phrase("   ")
        assert session.status == STATUS_NOT_CAUGHT
        assert session.state is VoiceSessionState.IDLE
        client.process_text.assert_not_awaited()

    async def test_phrase_ignored_when_not_listening(self, session, client):
        assert session.deliver_phrase("hello") is False
        client.process_text.assert_not_awaited()

    async def test_without_speaker(self, session_factory, client):
        session = session_factory(speaker=None)
        session.wake()
        session.deliver_phrase("hello")
        await _until(lambda: session.state is VoiceSessionState.IDLE)
        assert session.responses == ["Added to your to-do list: milk"]
        await session.close()

    async def test_text_failure(self, session, client):
        client.process_text.side_effect = TransportError("HTTP 500")
        session.wake()
        session.deliver_phrase("hello")
        await _until(lambda: session.state is VoiceSessionState.ERROR)
        assert session.status == STATUS_REQUEST_ERROR


class TestPushAndClose:
    async def test_show_push_does_not_change_state(self, session):
        session.show_push("what time is it", "It is noon.")
        assert session.responses == ["It is noon."]
        assert session.state is VoiceSessionState.IDLE

    async def test_close_mid_capture_stops_recorder(self, session_factory, recorder):
        session = session_factory(capture_seconds=10.0)
        session.push_to_talk()
        await _until(lambda: session.state is VoiceSessionState.CAPTURING and recorder.start.await_count == 1)
        await asyncio.sleep(0)
        await session.close()
        recorder.stop.assert_awaited_once()
