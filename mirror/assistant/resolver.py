"""
Intent resolution strategies

Two interchangeable ways to turn a transcript into an action:

- ClassifierResolver: naive Bayes over a seed corpus plus rule-based slot
  extraction. Stateless; ignores conversation memory.
- FunctionCallingResolver: hands the conversation to the completion engine
  together with the handler function schemas. A plain-text answer is spoken
  verbatim; a function call is mapped onto the matching handler.

Both resolve against the same HandlerRegistry, so the pipeline never needs to
know which strategy is active. Neither raises for unresolvable input: failures
collapse to the unknown intent and the fallback handler.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from .classifier import NaiveBayesClassifier, classify_transcript, train_intent_classifier
from .config import AssistantConfig
from .handlers import ActionRequest, HandlerRegistry
from .llm import CompletionEngine, CompletionError
from .memory import ConversationTurn

LOGGER = logging.getLogger("mirror-assistant.resolver")


@dataclass(frozen=True)
class Resolution:
    action: ActionRequest
    reply: str | None = None


class IntentResolver:
    uses_memory = False

    async def resolve(self, transcript: str, history: Sequence[ConversationTurn]) -> Resolution:
        raise NotImplementedError


class ClassifierResolver(IntentResolver):
    def __init__(self, classifier: NaiveBayesClassifier | None = None, logger: logging.Logger | None = None) -> None:
        self.classifier = classifier or train_intent_classifier()
        self.logger = logger or LOGGER

    async def resolve(self, transcript: str, history: Sequence[ConversationTurn]) -> Resolution:
        action = classify_transcript(self.classifier, transcript)
        self.logger.debug("[resolver] Classified %r as %s %s", transcript, action.intent.value, dict(action.arguments))
        return Resolution(action)


class FunctionCallingResolver(IntentResolver):
    uses_memory = True

    def __init__(
        self,
        engine: CompletionEngine,
        registry: HandlerRegistry,
        logger: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.logger = logger or LOGGER

    async def resolve(self, transcript: str, history: Sequence[ConversationTurn]) -> Resolution:
        messages = [turn.to_message() for turn in history]
        if not messages or messages[-1] != {"role": "user", "content": transcript}:
            messages.append({"role": "user", "content": transcript})
        try:
            result = await self.engine.complete(messages, self.registry.function_schemas())
        except CompletionError as exc:
            self.logger.warning("[resolver] Completion engine failed: %s", exc)
            return Resolution(ActionRequest.unknown())
        if result.function_call is not None:
            call = result.function_call
            self.logger.debug("[resolver] Function call %s(%s)", call.name, call.arguments)
            return Resolution(self.registry.action_for_function(call.name, call.arguments))
        if result.text:
            return Resolution(ActionRequest.unknown(), reply=result.text)
        return Resolution(ActionRequest.unknown())


def build_intent_resolver(
    config: AssistantConfig,
    registry: HandlerRegistry,
    engine: CompletionEngine | None = None,
    logger: logging.Logger | None = None,
) -> IntentResolver:
    if config.intent_strategy == "function_calling":
        if engine is None:
            raise ValueError("Function-calling strategy requires a completion engine")
        return FunctionCallingResolver(engine, registry, logger)
    return ClassifierResolver(logger=logger)
