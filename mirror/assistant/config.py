"""Configuration helpers for the Mirror voice assistant server."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from mirror.utils import parse_bool, parse_float, parse_int, split_csv

INTENT_STRATEGIES = {"classifier", "function_calling"}
DEFAULT_MAX_AUDIO_BYTES = 50 * 1024 * 1024


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class SpeechConfig:
    stt_endpoint: WyomingEndpoint
    tts_endpoint: WyomingEndpoint
    tts_voice: str | None
    language: str | None
    timeout: float
    default_rate: int = 16000
    default_width: int = 2
    default_channels: int = 1
    chunk_ms: int = 30

    @property
    def bytes_per_chunk(self) -> int:
        samples = int(self.default_rate * (self.chunk_ms / 1000))
        return samples * self.default_width * self.default_channels


@dataclass(frozen=True)
class LLMConfig:
    system_prompt: str
    openai_model: str
    openai_api_key: str | None
    openai_base_url: str
    openai_timeout: int


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class HttpConfig:
    bind_address: str
    port: int
    push_port: int
    allowed_origins: tuple[str, ...]
    max_audio_bytes: int
    request_timeout: float


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    intent_strategy: Literal["classifier", "function_calling"]
    memory_turns: int
    log_transcripts: bool
    http: HttpConfig
    speech: SpeechConfig
    llm: LLMConfig
    mqtt: MqttConfig

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AssistantConfig:
        source = env or os.environ
        hostname = source.get("MIRROR_HOSTNAME") or socket.gethostname()

        http = HttpConfig(
            bind_address=source.get("MIRROR_BIND_ADDRESS", "0.0.0.0"),
            port=parse_int(source.get("PORT"), 3000),
            push_port=parse_int(source.get("MIRROR_PUSH_PORT"), 3001),
            allowed_origins=tuple(split_csv(source.get("MIRROR_ALLOWED_ORIGINS"))) or ("*",),
            max_audio_bytes=max(1, parse_int(source.get("MIRROR_MAX_AUDIO_BYTES"), DEFAULT_MAX_AUDIO_BYTES)),
            request_timeout=max(1.0, parse_float(source.get("MIRROR_REQUEST_TIMEOUT_SECONDS"), 60.0)),
        )

        speech = SpeechConfig(
            stt_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_WHISPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_WHISPER_PORT"), 10300),
                model=_strip_or_none(source.get("MIRROR_STT_MODEL")),
            ),
            tts_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            ),
            tts_voice=_strip_or_none(source.get("MIRROR_TTS_VOICE")),
            language=_strip_or_none(source.get("MIRROR_LANGUAGE")),
            timeout=max(1.0, parse_float(source.get("MIRROR_SPEECH_TIMEOUT_SECONDS"), 30.0)),
        )

        system_prompt = source.get("MIRROR_SYSTEM_PROMPT", "").strip()
        prompt_file = source.get("MIRROR_SYSTEM_PROMPT_FILE")
        if not system_prompt and prompt_file:
            candidate = Path(prompt_file)
            if candidate.is_file():
                system_prompt = candidate.read_text(encoding="utf-8").strip()
        if not system_prompt:
            system_prompt = DEFAULT_SYSTEM_PROMPT

        llm = LLMConfig(
            system_prompt=system_prompt,
            openai_model=source.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_api_key=_strip_or_none(source.get("OPENAI_API_KEY")),
            openai_base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_timeout=parse_int(source.get("OPENAI_TIMEOUT_SECONDS"), 30),
        )

        topic_base = source.get("MIRROR_TOPIC_BASE") or f"mirror/{hostname}/assistant"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        return AssistantConfig(
            hostname=hostname,
            intent_strategy=_normalize_choice(
                source.get("MIRROR_INTENT_STRATEGY"),
                INTENT_STRATEGIES,
                "classifier",
            ),
            memory_turns=max(1, parse_int(source.get("MIRROR_MEMORY_TURNS"), 10)),
            log_transcripts=parse_bool(source.get("MIRROR_LOG_TRANSCRIPTS"), True),
            http=http,
            speech=speech,
            llm=llm,
            mqtt=mqtt,
        )


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant for a smart mirror. Provide concise and relevant responses. "
    "Use the available functions when appropriate."
)


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower().replace("-", "_")
    if lowered in allowed:
        return lowered
    return default
