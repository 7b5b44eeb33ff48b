#!/usr/bin/env python3
"""Mirror kiosk daemon: wake phrase, capture, upload, playback."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from mirror.kiosk.audio import AplaySink, ArecordStream, WindowRecorder, WyomingSpeaker
from mirror.kiosk.config import KioskConfig
from mirror.kiosk.supervisor import ConnectionSupervisor
from mirror.kiosk.transport import AssistantClient, PushListener
from mirror.kiosk.voice_session import VoiceSession, VoiceSessionState
from mirror.kiosk.wake import WakePhraseListener

LOGGER = logging.getLogger("mirror-kiosk")

READY_NOTICE = "Voice Assistant is ready."


class MirrorKiosk:
    def __init__(self, config: KioskConfig) -> None:
        self.config = config
        self.mic = ArecordStream(config.mic.command, config.mic.bytes_per_chunk, LOGGER)
        self.player = AplaySink(logger=LOGGER)
        self.client = AssistantClient(config.server_url, timeout=config.request_timeout)
        self.session = VoiceSession(
            client=self.client,
            recorder=WindowRecorder(self.mic, config.mic),
            player=self.player,
            speaker=WyomingSpeaker(
                config.tts_endpoint,
                self.player,
                voice_name=config.tts_voice,
                timeout=config.speech_timeout,
            ),
            capture_seconds=config.capture_seconds,
            rearm_delay=config.rearm_delay,
            error_display_seconds=config.error_display_seconds,
            on_status=self._show_status,
            on_response=self._show_response,
        )
        self.supervisor = ConnectionSupervisor(
            self.client.get_status,
            update_interval=config.update_interval,
            retry_delay=config.retry_delay,
            max_retries=config.max_retries,
            on_status=self._show_status,
        )
        self.push = PushListener(config.push_url, self.session.show_push)
        self.wake_listener = WakePhraseListener(
            self.mic,
            config.mic,
            config.stt_endpoint,
            config.wake_phrases,
            listen_seconds=config.wake_listen_seconds,
            rms_floor=config.wake_rms_floor,
            timeout=config.speech_timeout,
        )
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        self._show_status("Initializing...")
        self.supervisor.start()
        self.push.start()
        LOGGER.info(READY_NOTICE)
        if not self.config.voice_activation_enabled:
            LOGGER.info("Voice activation disabled; waiting for shutdown")
            await self._shutdown.wait()
            return
        phrases = ", ".join(self.config.wake_phrases)
        LOGGER.info("Listening for wake phrases: %s (input mode: %s)", phrases, self.config.input_mode)
        while not self._shutdown.is_set():
            match = await self.wake_listener.wait_for_wake(lambda: self.session.accepting_wake, self._shutdown)
            if match is None:
                continue
            _phrase, remainder = match
            if not self.session.wake():
                continue
            if self.config.input_mode == "audio":
                self.session.arm_capture()
            elif remainder:
                self.session.deliver_phrase(remainder)
            else:
                text = await self.wake_listener.transcribe_phrase(self.config.capture_seconds)
                self.session.deliver_phrase(text)
            await self._wait_until_settled()

    async def _wait_until_settled(self) -> None:
        while not self._shutdown.is_set() and self.session.state not in (
            VoiceSessionState.IDLE,
            VoiceSessionState.ERROR,
        ):
            await asyncio.sleep(0.1)

    async def shutdown(self) -> None:
        self._shutdown.set()
        await self.session.close()
        await self.supervisor.stop()
        await self.push.stop()
        await self.mic.stop()
        await self.player.stop()
        await self.client.close()

    def _show_status(self, status: str) -> None:
        LOGGER.info("[display] %s", status)

    def _show_response(self, response: str) -> None:
        LOGGER.info("[display] Response: %s", response)


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    config = KioskConfig.from_env()
    level = logging.DEBUG if config.debug_mode else getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level)
    kiosk = MirrorKiosk(config)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)
    # push-to-talk
    loop.add_signal_handler(signal.SIGUSR1, kiosk.session.push_to_talk)

    run_task = asyncio.create_task(kiosk.run())
    stop_task = asyncio.create_task(stop_event.wait())
    done, _pending = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    await kiosk.shutdown()
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
        LOGGER.critical("Mirror kiosk terminated by an unrecoverable error", exc_info=True)
        sys.exit(1)
