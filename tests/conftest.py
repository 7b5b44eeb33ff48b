"""Shared test fixtures and configuration for the mirror assistant test suite.

This module provides reusable fixtures for common test scenarios including:
- MQTT configuration and client mocking
- LLM configuration
- Speech and broadcast fakes for the command pipeline
- Seeded randomness for the weather handler
"""

from __future__ import annotations

import logging
import random
from typing import Any
from unittest.mock import AsyncMock, Mock

import paho.mqtt.client as mqtt
import pytest
from mirror.assistant.config import HttpConfig, LLMConfig, MqttConfig

# ============================================================================
# Pytest Configuration
# ============================================================================


@pytest.fixture(scope="session")
def anyio_backend():
    """Configure anyio backend for async tests."""
    return "asyncio"


# ============================================================================
# Logging Fixtures
# ============================================================================


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns a Mock with spec=logging.Logger to ensure only valid
    logger methods can be called.
    """
    return Mock(spec=logging.Logger)


# ============================================================================
# MQTT Fixtures
# ============================================================================


@pytest.fixture
def mqtt_config():
    """Create a basic MQTT configuration for testing."""
    return MqttConfig(
        host="localhost",
        port=1883,
        topic_base="mirror/test/assistant",
        username=None,
        password=None,
        tls_enabled=False,
        ca_cert=None,
        cert=None,
        key=None,
    )


@pytest.fixture
def mqtt_config_with_tls():
    """Create MQTT configuration with TLS encryption enabled."""
    return MqttConfig(
        host="localhost",
        port=8883,
        topic_base="mirror/test/assistant",
        username="mqtt_user",
        password="mqtt_pass",
        tls_enabled=True,
        ca_cert="/path/to/ca.crt",
        cert="/path/to/client.crt",
        key="/path/to/client.key",
    )


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho MQTT client."""
    client = Mock(spec=mqtt.Client)
    client.connect = Mock()
    client.disconnect = Mock()
    message_info = Mock(spec=mqtt.MQTTMessageInfo)
    message_info.rc = mqtt.MQTT_ERR_SUCCESS
    client.publish = Mock(return_value=message_info)
    client.loop_start = Mock()
    client.loop_stop = Mock()
    client.is_connected = Mock(return_value=True)
    return client


# ============================================================================
# LLM Fixtures
# ============================================================================


@pytest.fixture
def make_llm_config():
    """Factory fixture for creating LLM configs with custom overrides.

    Usage:
        config = make_llm_config(openai_api_key=None)
    """

    def _create_config(**overrides: Any) -> LLMConfig:
        defaults = {
            "system_prompt": "You are a helpful assistant for a smart mirror.",
            "openai_model": "gpt-4o-mini",
            "openai_api_key": "test_key",
            "openai_base_url": "https://api.openai.com/v1",
            "openai_timeout": 30,
        }
        defaults.update(overrides)
        return LLMConfig(**defaults)  # type: ignore[arg-type]

    return _create_config


# ============================================================================
# Pipeline Fixtures
# ============================================================================


@pytest.fixture
def seeded_rng():
    return random.Random(1234)


@pytest.fixture
def fake_speech():
    """Speech capability returning fixed transcripts and audio."""
    speech = Mock()
    speech.transcribe = AsyncMock(return_value="what is the weather like")
    speech.synthesize = AsyncMock(return_value=b"RIFF-fake-audio")
    return speech


@pytest.fixture
def fake_broadcaster():
    broadcaster = Mock()
    broadcaster.connected_clients = 0
    broadcaster.publish_response = Mock()
    return broadcaster


@pytest.fixture
def http_config():
    """Loopback HTTP config on an ephemeral port."""
    return HttpConfig(
        bind_address="127.0.0.1",
        port=0,
        push_port=0,
        allowed_origins=("*",),
        max_audio_bytes=1024,
        request_timeout=5.0,
    )


# ============================================================================
# Async Test Utilities
# ============================================================================


@pytest.fixture
def async_timeout():
    """Provide a reasonable timeout for async tests."""
    return 5.0
