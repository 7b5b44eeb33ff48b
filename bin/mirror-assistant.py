#!/usr/bin/env python3
"""Mirror voice assistant server daemon."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
import threading
from typing import Any

from mirror.assistant.broadcast import SessionBroadcaster
from mirror.assistant.config import AssistantConfig
from mirror.assistant.handlers import HandlerRegistry
from mirror.assistant.http_server import AssistantHttpServer
from mirror.assistant.llm import build_completion_engine
from mirror.assistant.memory import ConversationMemory
from mirror.assistant.mqtt import EventMirror
from mirror.assistant.pipeline import CommandPipeline
from mirror.assistant.resolver import build_intent_resolver
from mirror.assistant.wyoming import WyomingSpeech

LOGGER = logging.getLogger("mirror-assistant")


class MirrorAssistant:
    def __init__(self, config: AssistantConfig) -> None:
        self.config = config
        self.mqtt = EventMirror(config.mqtt, logger=LOGGER)
        self.broadcaster = SessionBroadcaster(mqtt=self.mqtt)
        self.registry = HandlerRegistry()
        engine = build_completion_engine(config.llm) if config.intent_strategy == "function_calling" else None
        self.resolver = build_intent_resolver(config, self.registry, engine=engine)
        self.pipeline = CommandPipeline(
            resolver=self.resolver,
            registry=self.registry,
            speech=WyomingSpeech(config.speech),
            broadcaster=self.broadcaster,
            memory=ConversationMemory(config.llm.system_prompt, limit=config.memory_turns),
            log_transcripts=config.log_transcripts,
        )
        self.http: AssistantHttpServer | None = None
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self.mqtt.connect()
        await self.broadcaster.start(self.config.http.bind_address, self.config.http.push_port)
        self.http = AssistantHttpServer(pipeline=self.pipeline, config=self.config.http, loop=loop)
        self.http.start()
        LOGGER.info(
            "Mirror assistant ready (strategy: %s, port %s, push port %s)",
            self.config.intent_strategy,
            self.config.http.port,
            self.config.http.push_port,
        )
        await self._shutdown.wait()

    async def shutdown(self) -> None:
        self._shutdown.set()
        if self.http:
            await asyncio.to_thread(self.http.stop)
        await self.broadcaster.stop()
        self.mqtt.disconnect()


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    LOGGER.error("Unhandled async error: %s", context.get("message"), exc_info=exc)


def _install_fault_handlers(loop: asyncio.AbstractEventLoop) -> None:
    loop.set_exception_handler(_handle_loop_exception)

    def _excepthook(exc_type, exc, tb) -> None:
        LOGGER.critical("Uncaught exception", exc_info=(exc_type, exc, tb))

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        LOGGER.error(
            "Uncaught exception in thread %s",
            args.thread.name if args.thread else "?",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _excepthook
    threading.excepthook = _thread_excepthook


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AssistantConfig.from_env()
    assistant = MirrorAssistant(config)

    loop = asyncio.get_running_loop()
    _install_fault_handlers(loop)
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(assistant.run())
    stop_task = asyncio.create_task(stop_event.wait())
    done, _pending = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    await assistant.shutdown()
    stop_task.cancel()
    if run_task in done:
        run_task.result()
    else:
        run_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await run_task


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception:
        LOGGER.critical("Mirror assistant terminated by an unrecoverable error", exc_info=True)
        sys.exit(1)
