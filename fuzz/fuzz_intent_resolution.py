import random
import sys

import atheris

with atheris.instrument_imports():
    from mirror.assistant.classifier import classify_transcript, train_intent_classifier
    from mirror.assistant.handlers import HandlerRegistry
    from mirror.kiosk.transport import parse_server_response
    from mirror.kiosk.wake import split_wake_phrase

CLASSIFIER = train_intent_classifier()
REGISTRY = HandlerRegistry(rng=random.Random(0))
WAKE_PHRASES = ("Hey Mirror", "OK Mirror")


def TestOneInput(data: bytes) -> None:
    """Every transcript must resolve to a handler reply without raising."""
    transcript = data.decode("utf-8", errors="ignore")

    action = classify_transcript(CLASSIFIER, transcript)
    reply = REGISTRY.dispatch(action)
    assert isinstance(reply, str) and reply

    split_wake_phrase(transcript, WAKE_PHRASES)
    parse_server_response(data)


def main() -> None:
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
