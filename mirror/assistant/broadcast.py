"""
Push channel for completed pipeline runs

Every connected kiosk session receives a ``server_response`` event after each
command. Delivery is best effort:

- Per-session FIFO queue with a single writer, so events from one publisher
  arrive in order
- At-most-once: a full queue or a closed socket drops the event, nothing is
  replayed on reconnect
- Publishing never blocks or raises; failures are logged

Events are also mirrored to MQTT (``{topic_base}/{event}``) when a broker is
configured.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

if TYPE_CHECKING:
    from .mqtt import EventMirror

LOGGER = logging.getLogger("mirror-assistant.push")

SERVER_RESPONSE_EVENT = "server_response"
SESSION_QUEUE_SIZE = 32


def encode_event(event: str, data: dict[str, Any]) -> str:
    return json.dumps({"event": event, "data": data})


class _Session:
    def __init__(self, connection: ServerConnection) -> None:
        self.connection = connection
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=SESSION_QUEUE_SIZE)

    @property
    def label(self) -> str:
        address = getattr(self.connection, "remote_address", None)
        return str(address) if address else "session"


class SessionBroadcaster:
    """Fans events out to connected WebSocket sessions."""

    def __init__(
        self,
        *,
        mqtt: EventMirror | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.logger = logger or LOGGER
        self._sessions: set[_Session] = set()
        self._server: Server | None = None

    @property
    def connected_clients(self) -> int:
        return len(self._sessions)

    async def start(self, host: str, port: int) -> None:
        if self._server:
            return
        self._server = await serve(self.handle_connection, host, port)
        self.logger.info("[push] Serving push channel on ws://%s:%s", host, port)

    async def stop(self) -> None:
        server = self._server
        self._server = None
        if server is None:
            return
        server.close()
        await server.wait_closed()

    async def handle_connection(self, connection: ServerConnection) -> None:
        session = _Session(connection)
        self._sessions.add(session)
        self.logger.info("[push] New client connected (%s); %d connected", session.label, self.connected_clients)
        closed = asyncio.ensure_future(connection.wait_closed())
        try:
            while not closed.done():
                getter = asyncio.ensure_future(session.queue.get())
                done, _pending = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await getter
                    break
                await connection.send(getter.result())
        except ConnectionClosed:
            pass
        finally:
            self._sessions.discard(session)
            if not closed.done():
                closed.cancel()
            self.logger.info("[push] Client disconnected (%s); %d connected", session.label, self.connected_clients)

    def publish(self, event: str, data: dict[str, Any]) -> None:
        """Queue an event for every session; never raises."""
        message = encode_event(event, data)
        for session in list(self._sessions):
            try:
                session.queue.put_nowait(message)
            except asyncio.QueueFull:
                self.logger.warning("[push] Dropping %s for slow client %s", event, session.label)
        if self.mqtt:
            try:
                self.mqtt.publish_event(event, data)
            except Exception:
                self.logger.warning("[push] MQTT mirror publish failed", exc_info=True)

    def publish_response(self, command: str, response: str) -> None:
        self.publish(SERVER_RESPONSE_EVENT, {"command": command, "response": response})
