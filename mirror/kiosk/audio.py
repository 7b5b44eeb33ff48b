"""Microphone capture and speaker playback for the kiosk."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import os
import shutil
import sys
from array import array
from asyncio.subprocess import Process

from mirror.assistant.config import WyomingEndpoint
from mirror.assistant.wyoming import synthesize_audio
from mirror.utils import chunk_bytes, unwrap_wav, wrap_wav

from .config import MicConfig

LOGGER = logging.getLogger("mirror-kiosk.audio")


class CaptureError(RuntimeError):
    """The microphone could not be opened or stopped delivering audio."""


def compute_rms(chunk: bytes, sample_width: int) -> int:
    """Compute RMS (Root Mean Square) for an audio chunk."""
    if not chunk or sample_width <= 0:
        return 0
    frames = len(chunk) // sample_width
    if frames <= 0:
        return 0
    trimmed = chunk[: frames * sample_width]
    typecode = {1: "b", 2: "h", 4: "i"}.get(sample_width)
    if typecode:
        samples = array(typecode)
        samples.frombytes(trimmed)
        if sample_width > 1 and sys.byteorder != "little":
            samples.byteswap()
        total = math.fsum(value * value for value in samples)
    else:
        total = 0.0
        for i in range(0, len(trimmed), sample_width):
            sample = int.from_bytes(trimmed[i : i + sample_width], "little", signed=True)
            total += sample * sample
    return int(math.sqrt(total / frames))


class ArecordStream:
    """Capture PCM audio by shelling out to ``arecord`` (ALSA).

    Reads are serialized so the wake listener and the capture window can share
    one microphone process.
    """

    def __init__(
        self,
        command: list[str],
        bytes_per_chunk: int,
        logger: logging.Logger | None = None,
    ) -> None:
        self.command = command
        self.bytes_per_chunk = bytes_per_chunk
        self._proc: Process | None = None
        self._read_lock = asyncio.Lock()
        self._logger = logger or LOGGER

    @property
    def running(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        if self._proc:
            return
        self._logger.debug("[audio] Starting microphone capture: %s", " ".join(self.command))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CaptureError(f"Unable to start microphone: {exc}") from exc

    async def read_chunk(self) -> bytes:
        async with self._read_lock:
            proc = self._proc
            if not proc or not proc.stdout:
                raise CaptureError("Microphone stream is not running")
            try:
                return await proc.stdout.readexactly(self.bytes_per_chunk)
            except asyncio.IncompleteReadError as exc:
                stderr = ""
                if proc.stderr:
                    with contextlib.suppress(OSError, ValueError):
                        stderr = (await proc.stderr.read()).decode("utf-8", errors="ignore").strip()
                message = "Microphone stream ended unexpectedly"
                if stderr:
                    message = f"{message} ({stderr})"
                raise CaptureError(message) from exc

    async def stop(self) -> None:
        if not self._proc:
            return
        self._logger.debug("[audio] Stopping microphone capture")
        proc = self._proc
        self._proc = None
        if proc.stdout:
            proc.stdout.feed_eof()
        if proc.stderr:
            proc.stderr.feed_eof()
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=2)


class WindowRecorder:
    """Buffer microphone audio between ``start()`` and ``stop()``."""

    def __init__(self, stream: ArecordStream, mic: MicConfig, logger: logging.Logger | None = None) -> None:
        self.stream = stream
        self.mic = mic
        self._logger = logger or LOGGER
        self._buffer = bytearray()
        self._task: asyncio.Task | None = None
        self._failure: CaptureError | None = None

    async def start(self) -> None:
        if self._task:
            return
        await self.stream.start()
        self._buffer.clear()
        self._failure = None
        self._task = asyncio.create_task(self._collect(), name="mirror-kiosk-capture")

    async def stop(self) -> bytes:
        task = self._task
        self._task = None
        if task is None:
            raise CaptureError("Recording was not started")
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        if self._failure and not self._buffer:
            raise self._failure
        return wrap_wav(bytes(self._buffer), rate=self.mic.rate, width=self.mic.width, channels=self.mic.channels)

    async def _collect(self) -> None:
        try:
            while True:
                self._buffer.extend(await self.stream.read_chunk())
        except CaptureError as exc:
            self._logger.warning("[audio] Capture interrupted: %s", exc)
            self._failure = exc


class AplaySink:
    """Play PCM audio via ``aplay``/``pw-play``/``paplay``."""

    def __init__(self, binary: str | None = None, logger: logging.Logger | None = None) -> None:
        env_override = os.environ.get("MIRROR_KIOSK_AUDIO_PLAYER")
        if binary is None and env_override:
            binary = env_override
        self.binary = binary or "auto"
        self._proc: Process | None = None
        self._logger = logger or LOGGER

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        player = _determine_player(self.binary, self._logger)
        try:
            cmd = _build_command_for_player(player, rate, width, channels)
        except ValueError as exc:
            self._logger.warning("[audio] Player %s cannot handle width=%s (%s); falling back to aplay", player, width, exc)
            cmd = _build_aplay_command(rate, width, channels)
        self._logger.debug("[audio] Starting playback: %s", " ".join(cmd))
        self._proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )

    async def write(self, chunk: bytes) -> None:
        if not self._proc or not self._proc.stdin:
            raise RuntimeError("Playback is not active")
        try:
            self._proc.stdin.write(chunk)
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        if not self._proc:
            return
        proc = self._proc
        self._proc = None
        if proc.stdin:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=30)

    async def play_wav(self, data: bytes) -> None:
        """Play a WAV (or raw 16 kHz PCM) payload to completion."""
        pcm = unwrap_wav(data)
        if not pcm.audio:
            return
        await self.start(pcm.rate, pcm.width, pcm.channels)
        try:
            for chunk in chunk_bytes(pcm.audio, 4096):
                await self.write(chunk)
        finally:
            await self.stop()


class WyomingSpeaker:
    """Speak text locally through Piper, used by the text input mode."""

    def __init__(
        self,
        endpoint: WyomingEndpoint,
        sink: AplaySink,
        *,
        voice_name: str | None = None,
        timeout: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.sink = sink
        self.voice_name = voice_name
        self.timeout = timeout
        self._logger = logger or LOGGER

    async def speak(self, text: str) -> None:
        pcm = await synthesize_audio(text, endpoint=self.endpoint, voice_name=self.voice_name, timeout=self.timeout)
        if pcm is None:
            self._logger.warning("[audio] Speech service returned no audio")
            return
        await self.sink.play_wav(wrap_wav(pcm.audio, rate=pcm.rate, width=pcm.width, channels=pcm.channels))


def _alsa_format(width: int) -> str:
    return {
        1: "U8",
        2: "S16_LE",
        3: "S24_LE",
        4: "S32_LE",
    }.get(width, "S16_LE")


def _supported_player(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


def _build_pw_play_command(rate: int, width: int, channels: int) -> list[str]:
    fmt = {1: "s8", 2: "s16", 4: "s32"}.get(width)
    if not fmt:
        raise ValueError(f"pw-play has no format for width={width}")
    return ["pw-play", "--raw", "--rate", str(rate), "--channels", str(channels), "--format", fmt, "-"]


def _build_paplay_command(rate: int, width: int, channels: int) -> list[str]:
    fmt = {1: "s8", 2: "s16le", 3: "s24le", 4: "s32le"}.get(width, "s16le")
    return ["paplay", "--raw", "--rate", str(rate), "--channels", str(channels), f"--format={fmt}", "-"]


def _build_aplay_command(rate: int, width: int, channels: int) -> list[str]:
    return ["aplay", "-q", "-t", "raw", "-f", _alsa_format(width), "-c", str(channels), "-r", str(rate), "-"]


def _build_command_for_player(player: str, rate: int, width: int, channels: int) -> list[str]:
    if player == "pw-play":
        return _build_pw_play_command(rate, width, channels)
    if player == "paplay":
        return _build_paplay_command(rate, width, channels)
    return _build_aplay_command(rate, width, channels)


def _determine_player(preferred: str, logger: logging.Logger) -> str:
    if preferred != "auto":
        if _supported_player(preferred):
            return preferred
        logger.warning("[audio] Requested audio player '%s' not found; falling back to auto-detection", preferred)
    for candidate in ("pw-play", "paplay", "aplay"):
        if _supported_player(candidate):
            return candidate
    return "aplay"
