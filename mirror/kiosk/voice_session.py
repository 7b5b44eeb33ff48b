"""
Voice session state machine

One session per kiosk. Transitions:

    Idle --wake--> Listening --capture armed--> Capturing --window--> Uploading
    Listening --phrase delivered--> Uploading (text input mode)
    Uploading --reply--> Speaking --playback done--> Idle
    Uploading --transport failure--> Error --display timeout--> Idle

Wake detection is disarmed whenever the session leaves Idle and re-armed a
short delay after it returns. The session owns at most one pending timer
(capture window, error display or re-arm) and one in-flight work task;
scheduling a timer cancels the one it supersedes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from enum import Enum
from typing import Any, Protocol

from .audio import CaptureError
from .transport import AudioReply, TransportError

LOGGER = logging.getLogger("mirror-kiosk.session")

STATUS_LISTENING = "Listening..."
STATUS_PROCESSING = "Processing..."
STATUS_NOT_CAUGHT = "Sorry, I didn't catch that."
STATUS_RESPONSE_RECEIVED = "Response received"
STATUS_REQUEST_ERROR = "Error processing request"
STATUS_MIC_ERROR = "Error accessing microphone"


class VoiceSessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    CAPTURING = "capturing"
    UPLOADING = "uploading"
    SPEAKING = "speaking"
    ERROR = "error"


BUSY_STATES = frozenset({VoiceSessionState.CAPTURING, VoiceSessionState.UPLOADING, VoiceSessionState.SPEAKING})


class AssistantTransport(Protocol):
    async def process_audio(self, wav: bytes) -> AudioReply: ...

    async def process_text(self, text: str) -> str: ...


class Recorder(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> bytes: ...


class Player(Protocol):
    async def play_wav(self, data: bytes) -> None: ...


class Speaker(Protocol):
    async def speak(self, text: str) -> None: ...


class VoiceSession:
    def __init__(
        self,
        *,
        client: AssistantTransport,
        recorder: Recorder,
        player: Player,
        speaker: Speaker | None = None,
        capture_seconds: float = 5.0,
        rearm_delay: float = 1.0,
        error_display_seconds: float = 3.0,
        on_status: Callable[[str], None] | None = None,
        on_state: Callable[[VoiceSessionState], None] | None = None,
        on_response: Callable[[str], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.recorder = recorder
        self.player = player
        self.speaker = speaker
        self.capture_seconds = capture_seconds
        self.rearm_delay = rearm_delay
        self.error_display_seconds = error_display_seconds
        self._on_status = on_status
        self._on_state = on_state
        self._on_response = on_response
        self.logger = logger or LOGGER
        self._state = VoiceSessionState.IDLE
        self._armed = True
        self._status = ""
        self._timer: asyncio.Task | None = None
        self._work: asyncio.Task | None = None
        self._recording = False

    @property
    def state(self) -> VoiceSessionState:
        return self._state

    @property
    def status(self) -> str:
        return self._status

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def accepting_wake(self) -> bool:
        return self._armed and self._state in (VoiceSessionState.IDLE, VoiceSessionState.ERROR)

    def wake(self) -> bool:
        """Handle a wake phrase; ignored unless the session is idle and armed."""
        if not self.accepting_wake:
            self.logger.debug("[session] Ignoring wake event in state %s (armed=%s)", self._state.value, self._armed)
            return False
        self._cancel_timer()
        self._armed = False
        self._set_state(VoiceSessionState.LISTENING)
        self._set_status(STATUS_LISTENING)
        return True

    def arm_capture(self) -> bool:
        if self._state is not VoiceSessionState.LISTENING or self._busy:
            return False
        self._set_state(VoiceSessionState.CAPTURING)
        return self._start_work(self._begin_capture)

    def push_to_talk(self) -> bool:
        if not self.wake():
            return False
        return self.arm_capture()

    def deliver_phrase(self, text: str | None) -> bool:
        """Hand a recognized phrase to the session while it is listening."""
        if self._state is not VoiceSessionState.LISTENING or self._busy:
            return False
        phrase = (text or "").strip()
        if not phrase:
            self._set_status(STATUS_NOT_CAUGHT)
            self._go_idle()
            return True
        self._set_state(VoiceSessionState.UPLOADING)
        return self._start_work(lambda: self._upload_text(phrase))

    def show_push(self, command: str, response: str) -> None:
        """Display a response produced for any session on the push channel."""
        self.logger.debug("[session] Push response for %r", command)
        self._emit_response(response)

    async def close(self) -> None:
        self._cancel_timer()
        work = self._work
        self._work = None
        if work and not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await work
        await self._stop_recorder()

    async def _begin_capture(self) -> None:
        self._set_state(VoiceSessionState.CAPTURING)
        try:
            await self.recorder.start()
        except CaptureError as exc:
            self.logger.warning("[session] Microphone unavailable: %s", exc)
            self._fail(STATUS_MIC_ERROR)
            return
        self._recording = True
        self._schedule(self.capture_seconds, self._end_capture)

    def _end_capture(self) -> None:
        if self._state is VoiceSessionState.CAPTURING:
            self._start_work(self._upload_capture)

    async def _upload_capture(self) -> None:
        self._recording = False
        try:
            wav = await self.recorder.stop()
        except CaptureError as exc:
            self.logger.warning("[session] Capture failed: %s", exc)
            self._fail(STATUS_MIC_ERROR)
            return
        self._set_state(VoiceSessionState.UPLOADING)
        self._set_status(STATUS_PROCESSING)
        try:
            reply = await self.client.process_audio(wav)
        except TransportError as exc:
            self.logger.warning("[session] Upload failed: %s", exc)
            self._fail(STATUS_REQUEST_ERROR)
            return
        self.logger.info("[session] Heard %r -> %r", reply.transcription, reply.response)
        await self._respond(reply.response, self.player.play_wav(reply.audio) if reply.audio else None)

    async def _upload_text(self, phrase: str) -> None:
        self._set_state(VoiceSessionState.UPLOADING)
        self._set_status(f"Processing: {phrase}")
        try:
            response = await self.client.process_text(phrase)
        except TransportError as exc:
            self.logger.warning("[session] Request failed: %s", exc)
            self._fail(STATUS_REQUEST_ERROR)
            return
        self.logger.info("[session] %r -> %r", phrase, response)
        await self._respond(response, self.speaker.speak(response) if self.speaker else None)

    async def _respond(self, response: str, playback: Awaitable[None] | None) -> None:
        self._emit_response(response)
        self._set_status(STATUS_RESPONSE_RECEIVED)
        self._set_state(VoiceSessionState.SPEAKING)
        if playback is not None:
            try:
                await playback
            except asyncio.CancelledError:
                raise
            except Exception:
                self.logger.exception("[session] Playback failed")
        self._go_idle()

    def _go_idle(self) -> None:
        self._set_state(VoiceSessionState.IDLE)
        self._armed = False
        self._schedule(self.rearm_delay, self._rearm)

    def _rearm(self) -> None:
        self._armed = True
        self.logger.debug("[session] Wake detection re-armed")

    def _fail(self, status: str) -> None:
        self._set_state(VoiceSessionState.ERROR)
        self._set_status(status)
        self._armed = True
        self._schedule(self.error_display_seconds, self._recover)

    def _recover(self) -> None:
        if self._state is VoiceSessionState.ERROR:
            self._go_idle()

    async def _stop_recorder(self) -> None:
        if not self._recording:
            return
        self._recording = False
        with contextlib.suppress(CaptureError):
            await self.recorder.stop()

    @property
    def _busy(self) -> bool:
        return self._work is not None and not self._work.done() and self._work is not asyncio.current_task()

    def _start_work(self, factory: Callable[[], Coroutine[Any, Any, None]]) -> bool:
        """Start the next step unless another one is still in flight."""
        if self._busy:
            self.logger.debug("[session] Work already in flight; ignoring request")
            return False
        self._work = asyncio.create_task(factory(), name="mirror-kiosk-session")
        return True

    def _schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._fire(delay, callback), name="mirror-kiosk-session-timer")

    async def _fire(self, delay: float, callback: Callable[[], None]) -> None:
        await asyncio.sleep(delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        callback()

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _set_state(self, state: VoiceSessionState) -> None:
        if state is self._state:
            return
        self.logger.debug("[session] %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state:
            self._on_state(state)

    def _set_status(self, status: str) -> None:
        self._status = status
        if self._on_status:
            self._on_status(status)

    def _emit_response(self, response: str) -> None:
        if self._on_response:
            self._on_response(response)
