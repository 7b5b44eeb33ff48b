"""
Offline intent classification for voice transcripts

Provides the statistical half of intent resolution:
- Tokenizer: lowercase word split that keeps clock times ("7:30") intact
- Naive Bayes: multinomial token likelihoods with Laplace smoothing
- Seed corpus: a handful of example utterances per intent
- Argument extraction: rule-based slot filling per intent

Ties between labels go to the label trained first. A transcript sharing no
token with the training vocabulary is reported as unknown.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Iterable, Sequence

from .handlers import ActionRequest, Intent

_TOKEN_PATTERN = re.compile(r"\d{1,2}:\d{2}|[a-z0-9]+")
_TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}$")

SEED_CORPUS: tuple[tuple[str, Intent], ...] = (
    ("what is the weather like", Intent.WEATHER),
    ("tell me the forecast", Intent.WEATHER),
    ("what's the temperature", Intent.WEATHER),
    ("set an alarm", Intent.ALARM),
    ("wake me up at", Intent.ALARM),
    ("remind me to", Intent.REMINDER),
    ("don't forget to", Intent.REMINDER),
    ("add to my to-do list", Intent.TODO),
    ("put on my todo list", Intent.TODO),
)


def tokenize(text: str | None) -> list[str]:
    """Split a transcript into lowercase word tokens."""
    return _TOKEN_PATTERN.findall((text or "").lower())


class NaiveBayesClassifier:
    """Multinomial naive Bayes over word tokens."""

    def __init__(self, smoothing: float = 1.0) -> None:
        self.smoothing = smoothing
        self._doc_counts: dict[str, int] = {}
        self._token_counts: dict[str, Counter[str]] = {}
        self._vocabulary: set[str] = set()

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(self._doc_counts)

    @property
    def vocabulary(self) -> frozenset[str]:
        return frozenset(self._vocabulary)

    def add_document(self, tokens: Iterable[str], label: str) -> None:
        tokens = list(tokens)
        self._doc_counts[label] = self._doc_counts.get(label, 0) + 1
        self._token_counts.setdefault(label, Counter()).update(tokens)
        self._vocabulary.update(tokens)

    def scores(self, tokens: Sequence[str]) -> dict[str, float]:
        """Return the log-probability score of every trained label."""
        known = [token for token in tokens if token in self._vocabulary]
        total_docs = sum(self._doc_counts.values())
        vocab_size = len(self._vocabulary)
        result: dict[str, float] = {}
        for label, doc_count in self._doc_counts.items():
            counts = self._token_counts[label]
            denominator = sum(counts.values()) + self.smoothing * vocab_size
            score = math.log(doc_count / total_docs)
            for token in known:
                score += math.log((counts[token] + self.smoothing) / denominator)
            result[label] = score
        return result

    def classify(self, tokens: Sequence[str]) -> str | None:
        if not self._doc_counts or not any(token in self._vocabulary for token in tokens):
            return None
        best_label: str | None = None
        best_score = -math.inf
        for label, score in self.scores(tokens).items():
            if score > best_score:
                best_label = label
                best_score = score
        return best_label


def train_intent_classifier(corpus: Iterable[tuple[str, Intent]] = SEED_CORPUS) -> NaiveBayesClassifier:
    classifier = NaiveBayesClassifier()
    for utterance, intent in corpus:
        classifier.add_document(tokenize(utterance), intent.value)
    return classifier


def _tokens_after(tokens: Sequence[str], marker: str) -> str:
    # First occurrence only: "add milk to my list" slices after "to".
    try:
        index = tokens.index(marker)
    except ValueError:
        return ""
    return " ".join(tokens[index + 1 :])


def extract_arguments(intent: Intent, tokens: Sequence[str]) -> dict[str, str]:
    """Fill the handler arguments for ``intent`` from transcript tokens."""
    if intent is Intent.ALARM:
        for token in tokens:
            if _TIME_PATTERN.match(token):
                return {"time": token}
        return {}
    if intent is Intent.REMINDER:
        return {"text": _tokens_after(tokens, "to")}
    if intent is Intent.TODO:
        return {"item": _tokens_after(tokens, "list")}
    return {}


def classify_transcript(classifier: NaiveBayesClassifier, transcript: str) -> ActionRequest:
    tokens = tokenize(transcript)
    label = classifier.classify(tokens)
    if label is None:
        return ActionRequest.unknown()
    try:
        intent = Intent(label)
    except ValueError:
        return ActionRequest.unknown()
    return ActionRequest(intent, extract_arguments(intent, tokens))
