"""Health polling with bounded retries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .transport import TransportError

LOGGER = logging.getLogger("mirror-kiosk.supervisor")

STATUS_CONNECTION_ERROR = "Connection Error"
STATUS_GIVEN_UP = "Max retries reached. Please check server."


class ConnectionState(str, Enum):
    POLLING = "polling"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    GIVEN_UP = "given_up"


@dataclass
class RetryState:
    count: int = 0
    max: int = 5

    @property
    def exhausted(self) -> bool:
        return self.count >= self.max


class ConnectionSupervisor:
    """Poll ``GET /status`` and escalate repeated failures to a terminal state.

    Healthy polls run every ``update_interval``. Each failure schedules a
    single retry after ``retry_delay``; once ``max_retries`` consecutive polls
    have failed the supervisor stops until ``reset()`` is called.
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[dict[str, Any]]],
        *,
        update_interval: float,
        retry_delay: float,
        max_retries: int,
        on_status: Callable[[str], None] | None = None,
        on_state: Callable[[ConnectionState], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._poll = poll
        self.update_interval = update_interval
        self.retry_delay = retry_delay
        self.retry = RetryState(max=max(0, max_retries))
        self._on_status = on_status
        self._on_state = on_state
        self.logger = logger or LOGGER
        self._state = ConnectionState.POLLING
        self._timer: asyncio.Task | None = None
        self._stopped = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    def start(self) -> None:
        """Begin polling immediately."""
        if self._state is ConnectionState.GIVEN_UP:
            return
        self._stopped = False
        self._schedule(0.0)

    def reset(self) -> None:
        """Leave the terminal state and start over with a fresh retry budget."""
        self.retry.count = 0
        self._stopped = False
        self._set_state(ConnectionState.POLLING)
        self._schedule(0.0)

    async def stop(self) -> None:
        """Cancel the pending timer, including a poll already in flight."""
        self._stopped = True
        timer = self._timer
        self._timer = None
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    async def poll_once(self) -> None:
        try:
            payload = await self._poll()
        except TransportError as exc:
            self._record_failure(exc)
            return
        except Exception as exc:
            self.logger.exception("[supervisor] Unexpected status poll error")
            self._record_failure(exc)
            return
        self.retry.count = 0
        self._set_state(ConnectionState.HEALTHY)
        self._set_status(f"Connected: {payload.get('status')}")
        self._schedule(self.update_interval)

    def _record_failure(self, exc: Exception) -> None:
        self.retry.count += 1
        self.logger.warning("[supervisor] Status poll failed (%d/%d): %s", self.retry.count, self.retry.max, exc)
        if self.retry.exhausted:
            self._cancel_timer()
            self._set_state(ConnectionState.GIVEN_UP)
            self._set_status(STATUS_GIVEN_UP)
            return
        self._set_state(ConnectionState.DEGRADED)
        self._set_status(STATUS_CONNECTION_ERROR)
        self._schedule(self.retry_delay)

    def _schedule(self, delay: float) -> None:
        self._cancel_timer()
        if self._stopped:
            return
        self._timer = asyncio.create_task(self._fire(delay), name="mirror-kiosk-supervisor")

    async def _fire(self, delay: float) -> None:
        # stays registered as the timer while polling so stop() can cancel it
        await asyncio.sleep(delay)
        await self.poll_once()

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self.logger.debug("[supervisor] %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state:
            self._on_state(state)

    def _set_status(self, status: str) -> None:
        if self._on_status:
            self._on_status(status)
