"""Configuration for the kiosk client.

Values come from an optional JSON file (camelCase keys, ``MIRROR_KIOSK_CONFIG``)
with ``MIRROR_KIOSK_*`` environment variables taking precedence. Intervals in
the file are milliseconds and are stored here as seconds.
"""

from __future__ import annotations

import json
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from mirror.assistant.config import WyomingEndpoint
from mirror.utils import parse_bool, parse_float, parse_int, split_csv

INPUT_MODES = {"audio", "text"}
DEFAULT_WAKE_PHRASES = ("Hey Mirror", "OK Mirror")
DEFAULT_MIC_COMMAND = "arecord -q -t raw -f S16_LE -c 1 -r 16000 -"

# camelCase file key -> environment override
_ENV_KEYS = {
    "serverUrl": "MIRROR_KIOSK_SERVER_URL",
    "pushUrl": "MIRROR_KIOSK_PUSH_URL",
    "updateInterval": "MIRROR_KIOSK_UPDATE_INTERVAL",
    "retryDelay": "MIRROR_KIOSK_RETRY_DELAY",
    "maxRetries": "MIRROR_KIOSK_MAX_RETRIES",
    "wakePhrases": "MIRROR_KIOSK_WAKE_PHRASES",
    "voiceActivationEnabled": "MIRROR_KIOSK_VOICE_ACTIVATION",
    "debugMode": "MIRROR_KIOSK_DEBUG",
    "inputMode": "MIRROR_KIOSK_INPUT_MODE",
    "captureSeconds": "MIRROR_KIOSK_CAPTURE_SECONDS",
    "useCustomVoice": "MIRROR_KIOSK_USE_CUSTOM_VOICE",
    "customVoiceName": "MIRROR_KIOSK_CUSTOM_VOICE_NAME",
}


@dataclass(frozen=True)
class MicConfig:
    command: list[str]
    rate: int
    width: int
    channels: int
    chunk_ms: int

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.rate * (self.chunk_ms / 1000))
        return samples * self.width * self.channels


@dataclass(frozen=True)
class KioskConfig:
    server_url: str
    push_url: str
    update_interval: float
    retry_delay: float
    max_retries: int
    wake_phrases: tuple[str, ...]
    voice_activation_enabled: bool
    debug_mode: bool
    input_mode: Literal["audio", "text"]
    capture_seconds: float
    use_custom_voice: bool
    custom_voice_name: str | None
    mic: MicConfig
    wake_listen_seconds: float
    wake_rms_floor: int
    rearm_delay: float
    error_display_seconds: float
    request_timeout: float
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    speech_timeout: float

    @property
    def tts_voice(self) -> str | None:
        return self.custom_voice_name if self.use_custom_voice else None

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> KioskConfig:
        source = env if env is not None else os.environ
        path = source.get("MIRROR_KIOSK_CONFIG")
        values = load_config_file(Path(path)) if path else {}
        return KioskConfig.from_mapping(values, env=source)

    @staticmethod
    def from_mapping(values: Mapping[str, Any], env: Mapping[str, str] | None = None) -> KioskConfig:
        source = env if env is not None else {}

        def setting(key: str) -> str | None:
            override = source.get(_ENV_KEYS[key])
            if override is not None:
                return override
            return _as_text(values.get(key))

        server_url = (setting("serverUrl") or "http://localhost:3000").rstrip("/")
        wake_raw = values.get("wakePhrases")
        if source.get(_ENV_KEYS["wakePhrases"]) is not None or not isinstance(wake_raw, list):
            wake_phrases = tuple(split_csv(setting("wakePhrases")))
        else:
            wake_phrases = tuple(str(phrase).strip() for phrase in wake_raw if str(phrase).strip())

        mic = MicConfig(
            command=shlex.split(source.get("MIRROR_KIOSK_MIC_CMD", DEFAULT_MIC_COMMAND)),
            rate=parse_int(source.get("MIRROR_KIOSK_MIC_RATE"), 16000),
            width=parse_int(source.get("MIRROR_KIOSK_MIC_WIDTH"), 2),
            channels=parse_int(source.get("MIRROR_KIOSK_MIC_CHANNELS"), 1),
            chunk_ms=parse_int(source.get("MIRROR_KIOSK_MIC_CHUNK_MS"), 30),
        )

        input_mode = (setting("inputMode") or "audio").strip().lower()
        if input_mode not in INPUT_MODES:
            input_mode = "audio"

        return KioskConfig(
            server_url=server_url,
            push_url=(setting("pushUrl") or _default_push_url(server_url)).rstrip("/"),
            update_interval=_millis(setting("updateInterval"), 10000),
            retry_delay=_millis(setting("retryDelay"), 2500),
            max_retries=max(0, parse_int(setting("maxRetries"), 5)),
            wake_phrases=wake_phrases or DEFAULT_WAKE_PHRASES,
            voice_activation_enabled=parse_bool(setting("voiceActivationEnabled"), True),
            debug_mode=parse_bool(setting("debugMode"), False),
            input_mode=input_mode,  # type: ignore[arg-type]
            capture_seconds=max(0.5, parse_float(setting("captureSeconds"), 5.0)),
            use_custom_voice=parse_bool(setting("useCustomVoice"), False),
            custom_voice_name=(setting("customVoiceName") or "").strip() or None,
            mic=mic,
            wake_listen_seconds=max(0.5, parse_float(source.get("MIRROR_KIOSK_WAKE_LISTEN_SECONDS"), 2.5)),
            wake_rms_floor=max(0, parse_int(source.get("MIRROR_KIOSK_WAKE_RMS_FLOOR"), 300)),
            rearm_delay=max(0.0, parse_float(source.get("MIRROR_KIOSK_REARM_DELAY"), 1.0)),
            error_display_seconds=max(0.0, parse_float(source.get("MIRROR_KIOSK_ERROR_SECONDS"), 3.0)),
            request_timeout=max(1.0, parse_float(source.get("MIRROR_KIOSK_REQUEST_TIMEOUT"), 30.0)),
            stt_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
            ),
            tts_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            ),
            speech_timeout=max(1.0, parse_float(source.get("MIRROR_KIOSK_SPEECH_TIMEOUT"), 30.0)),
        )


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a camelCase JSON config file; a missing file yields an empty mapping."""
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid kiosk config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Kiosk config {path} must contain a JSON object")
    return data


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(str(item) for item in value)
    return str(value)


def _millis(value: str | None, default_ms: int) -> float:
    return max(0.0, parse_float(value, float(default_ms))) / 1000.0


def _default_push_url(server_url: str) -> str:
    scheme, sep, rest = server_url.partition("://")
    if not sep:
        return "ws://localhost:3001"
    host = rest.split("/", 1)[0].rsplit(":", 1)[0]
    ws_scheme = "wss" if scheme == "https" else "ws"
    return f"{ws_scheme}://{host}:3001"
