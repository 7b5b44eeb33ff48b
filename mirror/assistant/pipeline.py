"""Command pipeline: transcript in, spoken response and broadcast out."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from mirror.utils import PcmAudio, unwrap_wav

from .handlers import ActionRequest, HandlerRegistry
from .memory import ConversationMemory, ConversationTurn
from .resolver import IntentResolver, Resolution
from .wyoming import SpeechError

LOGGER = logging.getLogger("mirror-assistant.pipeline")


class SpeechService(Protocol):
    async def transcribe(self, pcm: PcmAudio) -> str: ...

    async def synthesize(self, text: str) -> bytes: ...


class ResponsePublisher(Protocol):
    @property
    def connected_clients(self) -> int: ...

    def publish_response(self, command: str, response: str) -> None: ...


@dataclass(frozen=True)
class PipelineResult:
    transcript: str
    response_text: str
    spoken_audio: bytes | None = None


@dataclass
class RunTracker:
    source: str
    start: float = field(default_factory=time.monotonic)
    stage_start: float = field(default_factory=time.monotonic)
    current_stage: str | None = None
    stage_durations: dict[str, int] = field(default_factory=dict)

    def begin_stage(self, stage: str) -> None:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
        self.current_stage = stage
        self.stage_start = now

    def finalize(self, status: str) -> dict[str, object]:
        now = time.monotonic()
        if self.current_stage:
            self.stage_durations[self.current_stage] = int((now - self.stage_start) * 1000)
            self.current_stage = None
        return {
            "source": self.source,
            "status": status,
            "total_ms": int((now - self.start) * 1000),
            "stages": self.stage_durations,
        }


class CommandPipeline:
    """Resolves, dispatches, speaks and broadcasts one command at a time per caller.

    Concurrent requests may overlap; only the shared state
    (``last_processed_command`` and the conversation memory) is serialized, and
    the lock is never held across a speech or completion call.
    """

    def __init__(
        self,
        *,
        resolver: IntentResolver,
        registry: HandlerRegistry,
        speech: SpeechService,
        broadcaster: ResponsePublisher,
        memory: ConversationMemory | None = None,
        log_transcripts: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.resolver = resolver
        self.registry = registry
        self.speech = speech
        self.broadcaster = broadcaster
        self.memory = memory or ConversationMemory()
        self.log_transcripts = log_transcripts
        self.logger = logger or LOGGER
        self._lock = asyncio.Lock()
        self._last_processed_command = ""

    @property
    def last_processed_command(self) -> str:
        return self._last_processed_command

    def status(self) -> dict[str, Any]:
        return {
            "status": "OK",
            "connectedClients": self.broadcaster.connected_clients,
            "lastProcessedCommand": self._last_processed_command,
        }

    async def process_audio(self, audio_bytes: bytes) -> PipelineResult:
        tracker = RunTracker("audio")
        tracker.begin_stage("decode")
        try:
            pcm = unwrap_wav(audio_bytes)
        except ValueError as exc:
            self._log_run(tracker, "error")
            raise SpeechError(f"Unreadable audio payload: {exc}") from exc
        tracker.begin_stage("stt")
        try:
            transcript = await self.speech.transcribe(pcm)
        except SpeechError:
            self._log_run(tracker, "error")
            raise
        self._log_run(tracker, "transcribed")
        return await self.handle(transcript)

    async def handle(self, transcript: str, *, speak: bool = True) -> PipelineResult:
        tracker = RunTracker("audio" if speak else "text")
        if self.log_transcripts:
            self.logger.info("[pipeline] Transcript: %s", transcript)
        uses_memory = self.resolver.uses_memory

        tracker.begin_stage("record")
        async with self._lock:
            self._last_processed_command = transcript
            if uses_memory:
                self.memory.append(ConversationTurn("user", transcript))
                history = self.memory.snapshot()
            else:
                history = ()

        # From here a cancelled run (HTTP request timeout) keeps the user turn
        # without an answer, the same outcome as an engine failure.
        tracker.begin_stage("resolve")
        resolution = await self.resolver.resolve(transcript, history)

        tracker.begin_stage("dispatch")
        response_text = self._dispatch(resolution)
        if self.log_transcripts:
            self.logger.info("[pipeline] Response: %s", response_text)

        spoken_audio: bytes | None = None
        if speak:
            tracker.begin_stage("tts")
            try:
                spoken_audio = await self.speech.synthesize(response_text)
            except SpeechError:
                self._log_run(tracker, "error")
                raise

        if uses_memory:
            tracker.begin_stage("remember")
            async with self._lock:
                self.memory.append(ConversationTurn("assistant", response_text))

        tracker.begin_stage("broadcast")
        self._broadcast(transcript, response_text)
        self._log_run(tracker, "success")
        return PipelineResult(transcript=transcript, response_text=response_text, spoken_audio=spoken_audio)

    def _dispatch(self, resolution: Resolution) -> str:
        if resolution.reply:
            return resolution.reply
        try:
            return self.registry.dispatch(resolution.action)
        except Exception:
            self.logger.exception("[pipeline] Handler for %s failed", resolution.action.intent.value)
            return self.registry.dispatch(ActionRequest.unknown())

    def _broadcast(self, command: str, response: str) -> None:
        try:
            self.broadcaster.publish_response(command, response)
        except Exception:
            self.logger.warning("[pipeline] Failed to broadcast response", exc_info=True)

    def _log_run(self, tracker: RunTracker, status: str) -> None:
        self.logger.debug("[pipeline] Run %s", tracker.finalize(status))
