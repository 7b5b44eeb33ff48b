"""Kiosk-side clients for the assistant's HTTP routes and push channel."""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

LOGGER = logging.getLogger("mirror-kiosk.transport")

ResponseCallback = Callable[[str, str], None]


class TransportError(RuntimeError):
    """The assistant server could not be reached or answered with an error."""


@dataclass(frozen=True)
class AudioReply:
    transcription: str
    response: str
    audio: bytes


class AssistantClient:
    """Thin async wrapper over the assistant HTTP routes."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.logger = logger or LOGGER
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            trust_env=False,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def get_status(self) -> dict[str, Any]:
        payload = await self._request("GET", "/status")
        if not isinstance(payload, dict) or "status" not in payload:
            raise TransportError("Status response missing status field")
        return payload

    async def process_audio(self, wav: bytes) -> AudioReply:
        payload = await self._request(
            "POST",
            "/process-audio",
            content=wav,
            headers={"Content-Type": "audio/wav"},
        )
        if not isinstance(payload, dict):
            raise TransportError("Unexpected /process-audio payload")
        try:
            audio = base64.b64decode(payload.get("audioContent") or "", validate=True)
        except (binascii.Error, ValueError) as exc:
            raise TransportError("Response audio is not valid base64") from exc
        return AudioReply(
            transcription=str(payload.get("transcription") or ""),
            response=str(payload.get("response") or ""),
            audio=audio,
        )

    async def process_text(self, text: str) -> str:
        payload = await self._request("POST", "/process", json={"text": text})
        if not isinstance(payload, dict) or not isinstance(payload.get("response"), str):
            raise TransportError("Unexpected /process payload")
        return payload["response"]

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise TransportError(f"Failed to contact assistant: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(f"Assistant error {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError("Assistant returned invalid JSON") from exc


def parse_server_response(message: str | bytes) -> tuple[str, str] | None:
    """Return ``(command, response)`` for a server_response event, else None."""
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        payload = json.loads(message)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or payload.get("event") != "server_response":
        return None
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    return str(data.get("command") or ""), str(data.get("response") or "")


class PushListener:
    """Follow the server_response push channel, reconnecting as needed."""

    def __init__(
        self,
        url: str,
        on_response: ResponseCallback,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.url = url
        self.on_response = on_response
        self.logger = logger or LOGGER
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="mirror-kiosk-push")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        async for connection in connect(self.url):
            self.logger.info("[push] Connected to %s", self.url)
            try:
                async for message in connection:
                    self.handle_message(message)
            except ConnectionClosed:
                self.logger.info("[push] Push channel closed; reconnecting")
                continue

    def handle_message(self, message: str | bytes) -> None:
        event = parse_server_response(message)
        if event is None:
            self.logger.debug("[push] Ignoring message: %r", message)
            return
        command, response = event
        try:
            self.on_response(command, response)
        except Exception:
            self.logger.exception("[push] Response callback failed")
