"""Sentiment and escalation signals derived from customer messages.

The keyword policy is deliberately simple. Callers depend on SignalDetector,
so a model-backed detector can replace it without touching the workers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

Sentiment = Literal["positive", "negative", "neutral"]

DEFAULT_POSITIVE_WORDS = (
    "thank",
    "thanks",
    "great",
    "good",
    "love",
    "happy",
    "perfect",
    "awesome",
    "excellent",
    "ok",
)

DEFAULT_NEGATIVE_WORDS = (
    "disappointed",
    "bad",
    "terrible",
    "awful",
    "slow",
    "late",
    "expensive",
    "angry",
    "broken",
    "not happy",
)

DEFAULT_ESCALATION_WORDS = ("human", "manager", "complaint")


class SignalDetector(Protocol):
    """Classifies a single customer message."""

    def sentiment(self, text: str) -> Sentiment:
        ...

    def needs_human(self, text: str) -> bool:
        ...

    def is_question(self, text: str) -> bool:
        ...


@dataclass(frozen=True)
class KeywordSignalDetector:
    """Keyword-presence policy (case-insensitive substring match)."""

    positive_words: tuple[str, ...] = DEFAULT_POSITIVE_WORDS
    negative_words: tuple[str, ...] = DEFAULT_NEGATIVE_WORDS
    escalation_words: tuple[str, ...] = DEFAULT_ESCALATION_WORDS

    def sentiment(self, text: str) -> Sentiment:
        lowered = text.lower()
        positive = sum(1 for word in self.positive_words if word in lowered)
        negative = sum(1 for word in self.negative_words if word in lowered)
        if positive > negative:
            return "positive"
        if negative > positive:
            return "negative"
        return "neutral"

    def needs_human(self, text: str) -> bool:
        lowered = text.lower()
        return any(word in lowered for word in self.escalation_words)

    def is_question(self, text: str) -> bool:
        return "?" in text
