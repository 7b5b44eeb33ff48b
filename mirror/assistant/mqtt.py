"""MQTT mirror for push-channel events.

Every event fanned out to WebSocket sessions is also published to
``{topic_base}/{event}`` so home automation can react to completed commands.
The assistant announces itself on ``{topic_base}/availability`` (retained
``online``/``offline``, with a last will for unclean exits).
"""

from __future__ import annotations

import logging
import ssl
import threading
from typing import Any

import paho.mqtt.client as mqtt

from .broadcast import encode_event
from .config import MqttConfig

LOGGER = logging.getLogger("mirror-assistant.mqtt")

AVAILABILITY_ONLINE = "online"
AVAILABILITY_OFFLINE = "offline"


class EventMirror:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or LOGGER
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    @property
    def availability_topic(self) -> str:
        return f"{self.config.topic_base}/availability"

    def event_topic(self, event: str) -> str:
        return f"{self.config.topic_base}/{event}"

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; event mirroring disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = self._build_client()
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return
            client.loop_start()
            self._client = client

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"mirror-assistant-{self.config.topic_base.replace('/', '-')}",
            clean_session=True,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(
                ca_certs=self.config.ca_cert,
                certfile=self.config.cert,
                keyfile=self.config.key,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )
        client.will_set(self.availability_topic, AVAILABILITY_OFFLINE, qos=1, retain=True)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        return client

    def _on_connect(self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any) -> None:
        if getattr(reason_code, "is_failure", False):
            self._logger.warning("[mqtt] Broker refused connection: %s", reason_code)
            return
        self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)
        # re-announced on every reconnect since the broker fires the will on drop
        client.publish(self.availability_topic, AVAILABILITY_ONLINE, qos=1, retain=True)

    def _on_disconnect(self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _props: Any) -> None:
        self._logger.info("[mqtt] Disconnected from broker (%s)", reason_code)

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client is None:
            return
        try:
            client.publish(self.availability_topic, AVAILABILITY_OFFLINE, qos=1, retain=True)
        except (OSError, ValueError) as exc:
            self._logger.debug("[mqtt] Could not announce offline: %s", exc)
        client.loop_stop()
        client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            return bool(client.is_connected())
        except Exception:
            return False

    def publish_event(self, event: str, data: dict[str, Any]) -> None:
        """Publish one push-channel event; a no-op while disconnected."""
        client = self._client
        if client is None:
            return
        info = client.publish(self.event_topic(event), payload=encode_event(event, data), qos=0, retain=False)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Publish of %s queued with rc=%s", event, info.rc)
