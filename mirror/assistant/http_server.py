"""HTTP surface for kiosk clients."""

from __future__ import annotations

import asyncio
import base64
import concurrent.futures
import json
import logging
import threading
from collections.abc import Coroutine
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .config import HttpConfig
from .pipeline import CommandPipeline, PipelineResult

LOGGER = logging.getLogger("mirror-assistant.http")

AUDIO_ERROR_MESSAGE = "Error processing audio"
TEXT_ERROR_MESSAGE = "Error processing request"


class AssistantHttpServer:
    """Serve the pipeline behind a threaded HTTP server.

    Request threads hand work to the event loop that owns the pipeline and
    block on the result, so pipeline state is only ever touched from that loop.
    """

    def __init__(
        self,
        *,
        pipeline: CommandPipeline,
        config: HttpConfig,
        loop: asyncio.AbstractEventLoop,
        logger: logging.Logger | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.config = config
        self.loop = loop
        self.logger = logger or LOGGER
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def server_address(self) -> tuple[str, int] | None:
        if not self._server:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if self._server:
            return
        handler_cls = self._build_handler()
        try:
            server = ThreadingHTTPServer((self.config.bind_address, self.config.port), handler_cls)
        except OSError as exc:  # pragma: no cover - dependant on environment
            self.logger.error("[http] Failed to bind %s:%s (%s)", self.config.bind_address, self.config.port, exc)
            raise
        server.daemon_threads = True
        self._server = server
        thread = threading.Thread(target=server.serve_forever, name="mirror-assistant-http", daemon=True)
        thread.start()
        self._thread = thread
        host, port = self.server_address or (self.config.bind_address, self.config.port)
        origins = ", ".join(self.config.allowed_origins)
        self.logger.info("[http] Serving on http://%s:%s (allowed origins: %s)", host, port, origins)

    def stop(self) -> None:
        server = self._server
        if not server:
            return
        self.logger.info("[http] Shutting down")
        server.shutdown()
        server.server_close()
        if self._thread:
            self._thread.join(timeout=2)
        self._server = None
        self._thread = None

    def run_on_loop(self, coro: Coroutine[Any, Any, PipelineResult]) -> PipelineResult:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout=self.config.request_timeout)
        except concurrent.futures.TimeoutError:
            # cancels the run on the loop; a user turn already recorded stays unanswered
            future.cancel()
            raise

    def _build_handler(self):
        outer = self

        class AssistantRequestHandler(BaseHTTPRequestHandler):
            def log_message(self, _format, *_args):  # noqa: D401
                return

            def _set_common_headers(self) -> None:
                origin = self.headers.get("Origin")
                allowed_origin = outer._allowed_origin(origin)
                if allowed_origin:
                    self.send_header("Access-Control-Allow-Origin", allowed_origin)
                    if allowed_origin != "*":
                        self.send_header("Vary", "Origin")
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
                self.send_header("Access-Control-Allow-Headers", "Accept, Content-Type")
                self.send_header("Cache-Control", "no-store, max-age=0")

            def _send_json(self, status: HTTPStatus, payload: dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self._set_common_headers()
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def do_OPTIONS(self) -> None:  # noqa: N802
                self.send_response(HTTPStatus.NO_CONTENT)
                self._set_common_headers()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                if path == "/status":
                    self._send_json(HTTPStatus.OK, outer.pipeline.status())
                else:
                    self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not Found"})

            def do_POST(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                if path == "/process-audio":
                    self._handle_process_audio()
                elif path == "/process":
                    self._handle_process_text()
                else:
                    self._send_json(HTTPStatus.NOT_FOUND, {"error": "Not Found"})

            def _content_length(self) -> int:
                try:
                    return max(0, int(self.headers.get("Content-Length", 0)))
                except ValueError:
                    return 0

            def _handle_process_audio(self) -> None:
                length = self._content_length()
                if length > outer.config.max_audio_bytes:
                    outer.logger.warning("[http] Rejecting %d byte audio upload", length)
                    self.close_connection = True
                    self._send_json(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, {"error": "Audio payload too large"})
                    return
                if length <= 0:
                    self._send_json(HTTPStatus.BAD_REQUEST, {"error": "No audio file provided"})
                    return
                audio = self.rfile.read(length)
                try:
                    result = outer.run_on_loop(outer.pipeline.process_audio(audio))
                except Exception:
                    outer.logger.exception("[http] Error processing audio")
                    self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": AUDIO_ERROR_MESSAGE})
                    return
                audio_content = base64.b64encode(result.spoken_audio or b"").decode("ascii")
                self._send_json(
                    HTTPStatus.OK,
                    {
                        "transcription": result.transcript,
                        "response": result.response_text,
                        "audioContent": audio_content,
                    },
                )

            def _handle_process_text(self) -> None:
                try:
                    data = self._read_json()
                except ValueError as exc:
                    outer.logger.info("[http] Invalid /process request: %s", exc)
                    self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Invalid JSON"})
                    return
                text = data.get("text") if isinstance(data, dict) else None
                if not isinstance(text, str) or not text.strip():
                    self._send_json(HTTPStatus.BAD_REQUEST, {"error": "Missing text"})
                    return
                try:
                    result = outer.run_on_loop(outer.pipeline.handle(text.strip(), speak=False))
                except Exception:
                    outer.logger.exception("[http] Error processing text command")
                    self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": TEXT_ERROR_MESSAGE})
                    return
                self._send_json(HTTPStatus.OK, {"response": result.response_text})

            def _read_json(self) -> Any:
                length = self._content_length()
                if length <= 0:
                    raise ValueError("Empty body")
                if length > outer.config.max_audio_bytes:
                    raise ValueError("Body too large")
                body = self.rfile.read(length)
                try:
                    return json.loads(body.decode("utf-8"))
                except UnicodeDecodeError as exc:
                    raise ValueError("Body is not UTF-8") from exc

        return AssistantRequestHandler

    def _allowed_origin(self, origin: str | None) -> str | None:
        allowed = self.config.allowed_origins
        if not allowed or allowed == ("*",):
            return "*"
        if origin and origin in allowed:
            return origin
        return None
