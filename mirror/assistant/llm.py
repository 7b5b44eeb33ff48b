"""Completion engine abstractions with function calling."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import LLMConfig


class CompletionError(RuntimeError):
    """The completion engine failed or returned an unusable payload."""


@dataclass(frozen=True)
class FunctionCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionResult:
    text: str | None = None
    function_call: FunctionCall | None = None


class CompletionEngine:
    async def complete(
        self,
        messages: Sequence[dict[str, str]],
        functions: Iterable[dict[str, Any]],
    ) -> CompletionResult:
        raise NotImplementedError


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise CompletionError(f"Malformed function arguments: {raw!r}") from exc
    if not isinstance(parsed, dict):
        raise CompletionError("Function arguments must be a JSON object")
    return parsed


def _parse_completion(body: str) -> CompletionResult:
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as exc:
        raise CompletionError("LLM response is not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise CompletionError("LLM response is not a JSON object")
    choices = parsed.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise CompletionError("LLM response missing choices")
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        raise CompletionError("LLM response missing message")

    call_block: dict[str, Any] | None = None
    tool_calls = message.get("tool_calls")
    if isinstance(tool_calls, list) and tool_calls:
        first = tool_calls[0]
        if isinstance(first, dict) and isinstance(first.get("function"), dict):
            call_block = first["function"]
    elif isinstance(message.get("function_call"), dict):
        call_block = message["function_call"]

    if call_block is not None:
        name = call_block.get("name")
        if not isinstance(name, str) or not name:
            raise CompletionError("Function call missing name")
        return CompletionResult(function_call=FunctionCall(name=name, arguments=_parse_arguments(call_block.get("arguments"))))

    content = message.get("content")
    if not isinstance(content, str) or not content.strip():
        raise CompletionError("LLM response missing content")
    return CompletionResult(text=content.strip())


class OpenAIChatEngine(CompletionEngine):
    """Call OpenAI-compatible chat completion endpoints with tool definitions."""

    def __init__(self, config: LLMConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)

    async def complete(
        self,
        messages: Sequence[dict[str, str]],
        functions: Iterable[dict[str, Any]],
    ) -> CompletionResult:
        payload = self._build_payload(messages, list(functions))
        try:
            body = await asyncio.to_thread(self._call_api, payload)
        except CompletionError:
            raise
        except Exception as exc:
            raise CompletionError(f"LLM call failed: {exc}") from exc
        return _parse_completion(body)

    def _build_payload(self, messages: Sequence[dict[str, str]], functions: list[dict[str, Any]]) -> dict:
        payload: dict[str, Any] = {
            "model": self.config.openai_model,
            "messages": [dict(message) for message in messages],
            "temperature": 0.3,
            "max_tokens": 400,
        }
        if functions:
            payload["tools"] = [{"type": "function", "function": schema} for schema in functions]
            payload["tool_choice"] = "auto"
        return payload

    def _call_api(self, payload: dict) -> str:
        if not self.config.openai_api_key:
            raise CompletionError("OPENAI_API_KEY is not set")

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url=f"{self.config.openai_base_url.rstrip('/')}/chat/completions",
            data=data,
            headers={
                "Authorization": f"Bearer {self.config.openai_api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.config.openai_timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise CompletionError(f"OpenAI HTTP error: {exc.code}") from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise CompletionError(f"OpenAI request failed: {exc}") from exc


def build_completion_engine(config: LLMConfig, logger: logging.Logger | None = None) -> CompletionEngine:
    return OpenAIChatEngine(config, logger)
