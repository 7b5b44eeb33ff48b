"""Bounded conversation log used by the function-calling resolver."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Literal

Role = Literal["user", "assistant", "system"]
DEFAULT_TURN_LIMIT = 10


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ConversationMemory:
    """Ordered turn log holding at most ``limit`` non-system turns.

    The system turn is kept outside the bounded history so it is never
    evicted and always leads the snapshot. Not thread-safe; the owning
    pipeline serializes access.
    """

    def __init__(self, system_prompt: str | None = None, limit: int = DEFAULT_TURN_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("Conversation memory limit must be positive")
        self.limit = limit
        self._system: ConversationTurn | None = None
        self._history: deque[ConversationTurn] = deque(maxlen=limit)
        if system_prompt:
            self._system = ConversationTurn("system", system_prompt)

    def __len__(self) -> int:
        return len(self._history) + (1 if self._system else 0)

    @property
    def system_turn(self) -> ConversationTurn | None:
        return self._system

    def append(self, turn: ConversationTurn) -> None:
        if turn.role == "system":
            self._system = turn
            return
        # deque(maxlen) drops from the left, oldest first.
        self._history.append(turn)

    def snapshot(self) -> tuple[ConversationTurn, ...]:
        if self._system is None:
            return tuple(self._history)
        return (self._system, *self._history)

    def to_messages(self) -> list[dict[str, str]]:
        return [turn.to_message() for turn in self.snapshot()]
