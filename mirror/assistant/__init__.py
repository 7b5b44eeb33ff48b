"""
Server side of the mirror voice assistant

Turns kiosk uploads into spoken answers:

- Intent resolution: naive Bayes classifier or LLM function calling
- Handlers: weather, alarm, reminder and to-do responses plus a fallback
- Conversation memory: bounded turn log for the function-calling strategy
- Speech: Wyoming faster-whisper transcription and Piper synthesis
- Surfaces: threaded HTTP routes, WebSocket push channel, optional MQTT mirror

Key modules:
- config: Configuration management from environment variables
- pipeline: Command pipeline owning shared state
- resolver: Strategy selection for intent resolution
- http_server: /status, /process-audio and /process routes
- broadcast: server_response fan-out to connected sessions
"""

from __future__ import annotations

__all__ = [
    "config",
    "classifier",
    "handlers",
    "memory",
    "resolver",
    "pipeline",
    "http_server",
    "broadcast",
]
