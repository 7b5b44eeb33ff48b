"""
Action handlers for resolved voice commands

Each intent maps to one handler that turns its arguments into a spoken
response. Handlers are mock business logic: they confirm what was asked and
never touch shared state.

Handlers:
- weather: Random condition and temperature (injectable random source)
- alarm: Confirms the requested time, or asks again when none was heard
- reminder: Confirms the reminder text
- todo: Confirms the to-do item
- fallback: Fixed apology for anything unresolved

The registry also publishes the function schemas offered to the completion
engine, so classifier dispatch and function-call dispatch share one table.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

LOGGER = logging.getLogger("mirror-assistant.handlers")

FALLBACK_RESPONSE = "I'm not sure how to help with that. Can you please rephrase?"
ALARM_TIME_MISSING_RESPONSE = "I couldn't understand the time. Please try again."
WEATHER_CONDITIONS = ("sunny", "cloudy", "rainy", "snowy")
WEATHER_MIN_TEMPERATURE = 10
WEATHER_MAX_TEMPERATURE = 40


class Intent(str, Enum):
    WEATHER = "weather"
    ALARM = "alarm"
    REMINDER = "reminder"
    TODO = "todo"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ActionRequest:
    intent: Intent
    arguments: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    @classmethod
    def unknown(cls) -> ActionRequest:
        return cls(Intent.UNKNOWN)


Handler = Callable[[Mapping[str, str]], str]


@dataclass(frozen=True)
class HandlerSpec:
    intent: Intent
    function_name: str
    description: str
    handler: Handler
    parameters: Mapping[str, str] = field(default_factory=dict)

    @property
    def required(self) -> tuple[str, ...]:
        return tuple(self.parameters)

    def to_function_schema(self) -> dict[str, Any]:
        properties = {name: {"type": "string", "description": desc} for name, desc in self.parameters.items()}
        return {
            "name": self.function_name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": list(self.required),
            },
        }


def _argument(arguments: Mapping[str, str], name: str) -> str:
    value = arguments.get(name)
    if value is None:
        return ""
    return str(value)


def weather_response(rng: random.Random) -> str:
    condition = rng.choice(WEATHER_CONDITIONS)
    temperature = rng.randrange(WEATHER_MIN_TEMPERATURE, WEATHER_MAX_TEMPERATURE)
    return f"The weather is currently {condition} with a temperature of {temperature}°C."


def set_alarm(arguments: Mapping[str, str]) -> str:
    time_text = _argument(arguments, "time")
    if not time_text.strip():
        return ALARM_TIME_MISSING_RESPONSE
    return f"Alarm set for {time_text}."


def set_reminder(arguments: Mapping[str, str]) -> str:
    return f"Reminder set: {_argument(arguments, 'text')}"


def add_todo(arguments: Mapping[str, str]) -> str:
    return f"Added to your to-do list: {_argument(arguments, 'item')}"


class HandlerRegistry:
    """Fixed table of intent handlers plus the fallback."""

    def __init__(self, rng: random.Random | None = None, logger: logging.Logger | None = None) -> None:
        self._rng = rng or random.Random()
        self.logger = logger or LOGGER
        specs = (
            HandlerSpec(
                intent=Intent.WEATHER,
                function_name="getWeatherResponse",
                description="Get the current weather conditions",
                handler=lambda _arguments: weather_response(self._rng),
            ),
            HandlerSpec(
                intent=Intent.ALARM,
                function_name="setAlarm",
                description="Set an alarm for a specific time",
                handler=set_alarm,
                parameters={"time": "The time to set the alarm for, in HH:MM format"},
            ),
            HandlerSpec(
                intent=Intent.REMINDER,
                function_name="setReminder",
                description="Set a reminder with specific text",
                handler=set_reminder,
                parameters={"text": "The text of the reminder"},
            ),
            HandlerSpec(
                intent=Intent.TODO,
                function_name="addTodo",
                description="Add an item to the to-do list",
                handler=add_todo,
                parameters={"item": "The item to add to the to-do list"},
            ),
        )
        self._by_intent = {spec.intent: spec for spec in specs}
        self._by_function = {spec.function_name: spec for spec in specs}

    @property
    def intents(self) -> tuple[Intent, ...]:
        return tuple(self._by_intent)

    def function_schemas(self) -> list[dict[str, Any]]:
        return [spec.to_function_schema() for spec in self._by_intent.values()]

    def action_for_function(self, name: str | None, arguments: Mapping[str, Any] | None) -> ActionRequest:
        """Map a completion-engine function call onto an action request."""
        spec = self._by_function.get(name or "")
        if spec is None:
            self.logger.info("[handlers] Unknown function requested: %s", name)
            return ActionRequest.unknown()
        raw = arguments or {}
        typed = {key: str(raw[key]) for key in spec.parameters if raw.get(key) is not None}
        return ActionRequest(spec.intent, typed)

    def dispatch(self, action: ActionRequest) -> str:
        spec = self._by_intent.get(action.intent)
        if spec is None:
            return FALLBACK_RESPONSE
        return spec.handler(action.arguments)
