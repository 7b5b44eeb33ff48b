"""
Shared utility functions for parsing and data manipulation

Provides common helpers for:
- String parsing: Environment variable conversion (parse_bool, parse_int, parse_float, split_csv)
- Async utilities: Timeout wrappers, byte chunking
- Audio containers: Wrapping raw PCM in a WAV header and unwrapping it again

These utilities are used by both the assistant server and the kiosk client.
"""

from __future__ import annotations

import asyncio
import io
import wave
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Any


def parse_bool(value: str | None, default: bool = False) -> bool:
    """Interpret env-style booleans."""
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_int(value: str | None, default: int) -> int:
    """Best-effort int parser with fallback."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: str | None, default: float) -> float:
    """Best-effort float parser with fallback."""
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def split_csv(value: str | None) -> list[str]:
    """Split comma-separated strings into trimmed tokens."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


async def await_with_timeout(awaitable: Awaitable[Any], timeout: float | None) -> Any:
    """Await a coroutine with an optional timeout."""
    if timeout is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=timeout)


def chunk_bytes(data: bytes, size: int) -> Iterable[bytes]:
    """Yield fixed-size chunks from a byte buffer."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(data), size):
        end = min(start + size, len(data))
        yield data[start:end]


@dataclass(frozen=True)
class PcmAudio:
    """Raw PCM frames plus the format needed to interpret them."""

    audio: bytes
    rate: int
    width: int
    channels: int


def wrap_wav(audio: bytes, *, rate: int, width: int, channels: int) -> bytes:
    """Wrap raw PCM frames in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as writer:
        writer.setnchannels(channels)
        writer.setsampwidth(width)
        writer.setframerate(rate)
        writer.writeframes(audio)
    return buffer.getvalue()


def unwrap_wav(data: bytes, *, default_rate: int = 16000, default_width: int = 2, default_channels: int = 1) -> PcmAudio:
    """Return the PCM payload of a WAV body.

    Bodies without a RIFF header are treated as raw PCM in the default format.
    Raises ``ValueError`` when a RIFF header is present but unreadable.
    """
    if not data.startswith(b"RIFF"):
        return PcmAudio(audio=data, rate=default_rate, width=default_width, channels=default_channels)
    try:
        with wave.open(io.BytesIO(data), "rb") as reader:
            frames = reader.readframes(reader.getnframes())
            return PcmAudio(
                audio=frames,
                rate=reader.getframerate(),
                width=reader.getsampwidth(),
                channels=reader.getnchannels(),
            )
    except (wave.Error, EOFError) as exc:
        raise ValueError(f"Invalid WAV payload: {exc}") from exc
