"""Tests for intent resolution strategies."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from mirror.assistant.handlers import HandlerRegistry, Intent
from mirror.assistant.llm import CompletionError, CompletionResult, FunctionCall
from mirror.assistant.memory import ConversationTurn
from mirror.assistant.resolver import (
    ClassifierResolver,
    FunctionCallingResolver,
    build_intent_resolver,
)

pytestmark = pytest.mark.anyio


def _engine(result=None, error=None):
    engine = SimpleNamespace()
    engine.complete = AsyncMock(return_value=result, side_effect=error)
    return engine


class TestClassifierResolver:
    async def test_resolves_without_memory(self):
        resolver = ClassifierResolver()
        assert resolver.uses_memory is False
        resolution = await resolver.resolve("wake me up at 7:30", ())
        assert resolution.action.intent is Intent.ALARM
        assert dict(resolution.action.arguments) == {"time": "7:30"}
        assert resolution.reply is None


class TestFunctionCallingResolver:
    async def test_function_call_maps_to_handler(self):
        engine = _engine(CompletionResult(function_call=FunctionCall("addTodo", {"item": "milk"})))
        resolver = FunctionCallingResolver(engine, HandlerRegistry())
        resolution = await resolver.resolve("add milk", ())
        assert resolution.action.intent is Intent.TODO
        assert dict(resolution.action.arguments) == {"item": "milk"}
        assert resolution.reply is None

    async def test_text_reply_is_verbatim(self):
        engine = _engine(CompletionResult(text="Hello! How can I help?"))
        resolution = await FunctionCallingResolver(engine, HandlerRegistry()).resolve("hi", ())
        assert resolution.action.intent is Intent.UNKNOWN
        assert resolution.reply == "Hello! How can I help?"

    async def test_engine_failure_is_unknown(self, mock_logger):
        engine = _engine(error=CompletionError("timed out"))
        resolver = FunctionCallingResolver(engine, HandlerRegistry(), logger=mock_logger)
        resolution = await resolver.resolve("what's up", ())
        assert resolution.action.intent is Intent.UNKNOWN
        assert resolution.reply is None
        mock_logger.warning.assert_called_once()

    async def test_unknown_function_is_unknown(self):
        engine = _engine(CompletionResult(function_call=FunctionCall("launchRocket", {})))
        resolution = await FunctionCallingResolver(engine, HandlerRegistry()).resolve("launch", ())
        assert resolution.action.intent is Intent.UNKNOWN

    async def test_sends_history_and_schemas(self):
        engine = _engine(CompletionResult(text="ok"))
        registry = HandlerRegistry()
        history = (
            ConversationTurn("system", "be brief"),
            ConversationTurn("user", "hello"),
        )
        await FunctionCallingResolver(engine, registry).resolve("hello", history)
        messages, functions = engine.complete.call_args.args
        assert messages == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ]
        assert [schema["name"] for schema in functions] == [schema["name"] for schema in registry.function_schemas()]

    async def test_appends_user_turn_missing_from_history(self):
        engine = _engine(CompletionResult(text="ok"))
        await FunctionCallingResolver(engine, HandlerRegistry()).resolve("new question", ())
        messages, _functions = engine.complete.call_args.args
        assert messages == [{"role": "user", "content": "new question"}]


class TestBuildIntentResolver:
    def test_classifier_default(self):
        config = SimpleNamespace(intent_strategy="classifier")
        assert isinstance(build_intent_resolver(config, HandlerRegistry()), ClassifierResolver)

    def test_function_calling(self):
        config = SimpleNamespace(intent_strategy="function_calling")
        resolver = build_intent_resolver(config, HandlerRegistry(), engine=_engine())
        assert isinstance(resolver, FunctionCallingResolver)
        assert resolver.uses_memory is True

    def test_function_calling_requires_engine(self):
        config = SimpleNamespace(intent_strategy="function_calling")
        with pytest.raises(ValueError):
            build_intent_resolver(config, HandlerRegistry())
