"""Pairwise similarity between drift observations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet

from arch_drift.core.models import Observation

CATEGORY_WEIGHT = 0.4
SEVERITY_WEIGHT = 0.3
TEXT_WEIGHT = 0.3

# Credit by absolute severity rank distance.
SEVERITY_PARTIALS = {0: 0.3, 1: 0.15, 2: 0.05}

MIN_TOKEN_LENGTH = 4

_WORD_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> FrozenSet[str]:
    """Lower-cased alphanumeric words longer than three characters."""
    return frozenset(word for word in _WORD_RE.findall(text.lower()) if len(word) >= MIN_TOKEN_LENGTH)


def _normalized_text(observation: Observation) -> str:
    return " ".join(_WORD_RE.findall(observation.text.lower()))


def category_score(a: Observation, b: Observation) -> float:
    return CATEGORY_WEIGHT if a.category.strip().lower() == b.category.strip().lower() else 0.0


def severity_score(a: Observation, b: Observation) -> float:
    return SEVERITY_PARTIALS.get(abs(a.severity.rank - b.severity.rank), 0.0)


def text_score(a: Observation, b: Observation) -> float:
    tokens_a = tokenize(a.text)
    tokens_b = tokenize(b.text)
    union = tokens_a | tokens_b
    if not union:
        if _normalized_text(a) == _normalized_text(b):
            return TEXT_WEIGHT
        return 0.0
    return TEXT_WEIGHT * len(tokens_a & tokens_b) / len(union)


def similarity(a: Observation, b: Observation) -> float:
    score = category_score(a, b) + severity_score(a, b) + text_score(a, b)
    return min(1.0, max(0.0, score))


@dataclass(frozen=True)
class SimilarityScorer:
    """Callable wrapper so analyzers can take the scorer as a dependency."""

    def score(self, a: Observation, b: Observation) -> float:
        return similarity(a, b)

    def __call__(self, a: Observation, b: Observation) -> float:
        return similarity(a, b)
