"""Speech-to-text and text-to-speech over Wyoming services."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from wyoming.asr import Transcribe, Transcript
from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.tts import Synthesize, SynthesizeVoice

from mirror.utils import PcmAudio, await_with_timeout, chunk_bytes, wrap_wav

from .config import SpeechConfig, WyomingEndpoint

LoggerLike = logging.Logger | None


class SpeechError(RuntimeError):
    """Transcription or synthesis failed."""


async def transcribe_audio(
    pcm: PcmAudio,
    *,
    endpoint: WyomingEndpoint,
    chunk_ms: int = 30,
    language: str | None = None,
    model: str | None = None,
    timeout: float | None = None,
    logger: LoggerLike = None,
) -> str | None:
    """Send PCM audio to a Wyoming STT endpoint and return the transcript text."""

    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    requested_model = model or endpoint.model
    bytes_per_chunk = max(1, int(pcm.rate * (chunk_ms / 1000)) * pcm.width * pcm.channels)
    try:
        await await_with_timeout(
            client.write_event(Transcribe(name=requested_model, language=language).event()),
            timeout,
        )
        await await_with_timeout(
            client.write_event(AudioStart(rate=pcm.rate, width=pcm.width, channels=pcm.channels).event()),
            timeout,
        )
        for chunk in chunk_bytes(pcm.audio, bytes_per_chunk):
            await await_with_timeout(
                client.write_event(
                    AudioChunk(rate=pcm.rate, width=pcm.width, channels=pcm.channels, audio=chunk).event()
                ),
                timeout,
            )
        await await_with_timeout(client.write_event(AudioStop().event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                if logger:
                    logger.debug("Wyoming STT connection closed before transcript returned")
                return None
            if Transcript.is_type(event.type):
                return Transcript.from_event(event).text
    finally:
        await client.disconnect()


async def synthesize_audio(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> PcmAudio | None:
    """Synthesize speech via Wyoming TTS and collect the PCM frames."""

    audio_format: AudioStart | None = None
    buffer = bytearray()
    async for event in _tts_event_stream(text, endpoint=endpoint, voice_name=voice_name, timeout=timeout):
        if AudioStart.is_type(event.type):
            audio_format = AudioStart.from_event(event)
        elif AudioChunk.is_type(event.type):
            chunk = AudioChunk.from_event(event)
            if audio_format is None:
                audio_format = AudioStart(rate=chunk.rate, width=chunk.width, channels=chunk.channels)
            buffer.extend(chunk.audio)
        elif AudioStop.is_type(event.type):
            break
    if audio_format is None:
        return None
    return PcmAudio(
        audio=bytes(buffer),
        rate=audio_format.rate,
        width=audio_format.width,
        channels=audio_format.channels,
    )


async def _tts_event_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator[object]:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    try:
        await await_with_timeout(client.write_event(Synthesize(text=text, voice=voice).event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                break
            yield event
            if AudioStop.is_type(event.type):
                break
    finally:
        await client.disconnect()


class WyomingSpeech:
    """Speech capability backed by Wyoming faster-whisper and Piper services."""

    def __init__(self, config: SpeechConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("mirror-assistant.speech")

    async def transcribe(self, pcm: PcmAudio) -> str:
        try:
            text = await transcribe_audio(
                pcm,
                endpoint=self.config.stt_endpoint,
                chunk_ms=self.config.chunk_ms,
                language=self.config.language,
                timeout=self.config.timeout,
                logger=self.logger,
            )
        except (OSError, TimeoutError) as exc:
            raise SpeechError(f"Transcription failed: {exc}") from exc
        if text is None:
            raise SpeechError("Speech service closed before returning a transcript")
        return text.strip()

    async def synthesize(self, text: str) -> bytes:
        try:
            pcm = await synthesize_audio(
                text,
                endpoint=self.config.tts_endpoint,
                voice_name=self.config.tts_voice,
                timeout=self.config.timeout,
            )
        except (OSError, TimeoutError) as exc:
            raise SpeechError(f"Synthesis failed: {exc}") from exc
        if pcm is None:
            raise SpeechError("Speech service returned no audio")
        return wrap_wav(pcm.audio, rate=pcm.rate, width=pcm.width, channels=pcm.channels)
