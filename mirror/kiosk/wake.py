"""Wake phrase spotting over local Wyoming transcription."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence

from mirror.assistant.config import WyomingEndpoint
from mirror.assistant.wyoming import transcribe_audio
from mirror.utils import PcmAudio

from .audio import ArecordStream, CaptureError, compute_rms
from .config import MicConfig

LOGGER = logging.getLogger("mirror-kiosk.wake")


def normalize_phrase(text: str | None) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    lowered = (text or "").strip().lower()
    if not lowered:
        return ""
    lowered = lowered.replace("’", "'")
    lowered = re.sub(r"[^\w\s']", " ", lowered)
    lowered = lowered.replace("'", "")
    return re.sub(r"\s+", " ", lowered).strip()


def _phrase_pattern(phrase: str) -> re.Pattern[str] | None:
    words = normalize_phrase(phrase).split()
    if not words:
        return None
    return re.compile(r"\b" + r"[\W_]+".join(re.escape(word) for word in words) + r"\b", re.IGNORECASE)


def split_wake_phrase(transcript: str | None, phrases: Sequence[str]) -> tuple[str, str] | None:
    """Find the first configured wake phrase in a transcript.

    Returns the matched phrase and whatever was said after it, or None.
    """
    if not transcript:
        return None
    for phrase in phrases:
        pattern = _phrase_pattern(phrase)
        if pattern is None:
            continue
        match = pattern.search(transcript)
        if match:
            remainder = transcript[match.end() :].strip(" \t,.!?;:")
            return phrase, remainder
    return None


class WakePhraseListener:
    def __init__(
        self,
        stream: ArecordStream,
        mic: MicConfig,
        endpoint: WyomingEndpoint,
        phrases: Sequence[str],
        *,
        listen_seconds: float = 2.5,
        rms_floor: int = 300,
        silence_ms: int = 600,
        language: str | None = None,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.stream = stream
        self.mic = mic
        self.endpoint = endpoint
        self.phrases = tuple(phrases)
        self.listen_seconds = listen_seconds
        self.rms_floor = rms_floor
        self.silence_ms = silence_ms
        self.language = language
        self.timeout = timeout
        self.logger = logger or LOGGER

    async def record_phrase(self, max_seconds: float | None = None) -> bytes | None:
        """Record until trailing silence; None when nothing rose above the floor."""
        chunk_ms = self.mic.chunk_ms
        max_duration = self.listen_seconds if max_seconds is None else max_seconds
        max_chunks = int(max(1, (max_duration * 1000) / chunk_ms))
        silence_chunks = int(max(1, self.silence_ms / chunk_ms))
        buffer = bytearray()
        heard = False
        silence_run = 0
        for _ in range(max_chunks):
            chunk = await self.stream.read_chunk()
            if compute_rms(chunk, self.mic.width) < self.rms_floor:
                if not heard:
                    continue
                silence_run += 1
                buffer.extend(chunk)
                if silence_run >= silence_chunks:
                    break
                continue
            heard = True
            silence_run = 0
            buffer.extend(chunk)
        return bytes(buffer) if heard else None

    async def transcribe_phrase(self, max_seconds: float | None = None) -> str | None:
        audio = await self.record_phrase(max_seconds)
        if audio is None:
            return None
        pcm = PcmAudio(audio=audio, rate=self.mic.rate, width=self.mic.width, channels=self.mic.channels)
        try:
            text = await transcribe_audio(
                pcm,
                endpoint=self.endpoint,
                chunk_ms=self.mic.chunk_ms,
                language=self.language,
                timeout=self.timeout,
                logger=self.logger,
            )
        except (OSError, TimeoutError) as exc:
            self.logger.warning("[wake] Transcription unavailable: %s", exc)
            await asyncio.sleep(1.0)
            return None
        return (text or "").strip() or None

    async def wait_for_wake(self, is_armed: Callable[[], bool], stop_event: asyncio.Event) -> tuple[str, str] | None:
        """Listen until a wake phrase is heard while armed, or until stopped."""
        await self.stream.start()
        while not stop_event.is_set():
            if not is_armed():
                await asyncio.sleep(0.1)
                continue
            try:
                text = await self.transcribe_phrase()
            except CaptureError as exc:
                self.logger.warning("[wake] Microphone read failed: %s", exc)
                await self.stream.stop()
                await asyncio.sleep(1.0)
                await self.stream.start()
                continue
            if not text or not is_armed():
                continue
            self.logger.debug("[wake] Heard %r", text)
            match = split_wake_phrase(text, self.phrases)
            if match:
                self.logger.info("[wake] Wake phrase detected: %s", match[0])
                return match
        return None
