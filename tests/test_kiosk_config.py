"""Tests for mirror.kiosk.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from mirror.kiosk.config import DEFAULT_WAKE_PHRASES, KioskConfig, _default_push_url, load_config_file


class TestDefaults:
    def test_empty_mapping(self) -> None:
        config = KioskConfig.from_mapping({})
        assert config.server_url == "http://localhost:3000"
        assert config.push_url == "ws://localhost:3001"
        assert config.update_interval == 10.0
        assert config.retry_delay == 2.5
        assert config.max_retries == 5
        assert config.wake_phrases == DEFAULT_WAKE_PHRASES
        assert config.voice_activation_enabled is True
        assert config.input_mode == "audio"
        assert config.capture_seconds == 5.0
        assert config.tts_voice is None
        assert config.mic.bytes_per_chunk == 960


class TestFileValues:
    def test_camel_case_keys(self) -> None:
        config = KioskConfig.from_mapping(
            {
                "serverUrl": "http://mirror.local:3000/",
                "updateInterval": 5000,
                "retryDelay": 1000,
                "maxRetries": 3,
                "wakePhrases": ["Hello Glass", " "],
                "voiceActivationEnabled": False,
                "debugMode": True,
                "inputMode": "TEXT",
                "useCustomVoice": True,
                "customVoiceName": "en_GB-alan-low",
            }
        )
        assert config.server_url == "http://mirror.local:3000"
        assert config.push_url == "ws://mirror.local:3001"
        assert config.update_interval == 5.0
        assert config.retry_delay == 1.0
        assert config.max_retries == 3
        assert config.wake_phrases == ("Hello Glass",)
        assert config.voice_activation_enabled is False
        assert config.debug_mode is True
        assert config.input_mode == "text"
        assert config.tts_voice == "en_GB-alan-low"

    def test_unknown_input_mode_falls_back(self) -> None:
        assert KioskConfig.from_mapping({"inputMode": "telepathy"}).input_mode == "audio"

    def test_custom_voice_requires_flag(self) -> None:
        config = KioskConfig.from_mapping({"customVoiceName": "en_GB-alan-low"})
        assert config.tts_voice is None


class TestEnvironmentOverrides:
    def test_env_wins_over_file(self) -> None:
        config = KioskConfig.from_mapping(
            {"serverUrl": "http://file.local:3000", "maxRetries": 2, "wakePhrases": ["Hey Mirror"]},
            env={
                "MIRROR_KIOSK_SERVER_URL": "https://env.local",
                "MIRROR_KIOSK_MAX_RETRIES": "9",
                "MIRROR_KIOSK_WAKE_PHRASES": "Computer, Mirror Mirror",
            },
        )
        assert config.server_url == "https://env.local"
        assert config.push_url == "wss://env.local:3001"
        assert config.max_retries == 9
        assert config.wake_phrases == ("Computer", "Mirror Mirror")

    def test_from_env_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "kiosk.json"
        path.write_text(json.dumps({"serverUrl": "http://hall.local:3000", "captureSeconds": 3}), encoding="utf-8")
        config = KioskConfig.from_env({"MIRROR_KIOSK_CONFIG": str(path)})
        assert config.server_url == "http://hall.local:3000"
        assert config.capture_seconds == 3.0

    def test_mic_command(self) -> None:
        config = KioskConfig.from_mapping({}, env={"MIRROR_KIOSK_MIC_CMD": "arecord -D hw:1 -f S16_LE -"})
        assert config.mic.command == ["arecord", "-D", "hw:1", "-f", "S16_LE", "-"]


class TestLoadConfigFile:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_config_file(tmp_path / "absent.json") == {}

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "kiosk.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config_file(path)

    def test_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "kiosk.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config_file(path)


@pytest.mark.parametrize(
    ("server_url", "expected"),
    [
        ("http://localhost:3000", "ws://localhost:3001"),
        ("https://mirror.example.com/api", "wss://mirror.example.com:3001"),
        ("mirror.local", "ws://localhost:3001"),
    ],
)
def test_default_push_url(server_url, expected) -> None:
    assert _default_push_url(server_url) == expected
