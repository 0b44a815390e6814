"""Feature extraction for drift detection."""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.models import TEMPORAL_FEATURES, FeatureVector, Observation
from arch_drift.core.temporal import EPSILON, TemporalAnalyzer

TEXTUAL_FEATURES = (
    "lexical_diversity",
    "text_length",
    "keyword_density",
    "tech_term_count",
    "sentiment_score",
    "readability_score",
)

STRUCTURAL_FEATURES = (
    "category_cardinality",
    "severity_skew",
    "category_frequency",
    "severity_level",
    "complexity_score",
    "directory_depth",
)

TECH_KEYWORDS = (
    "react", "vue", "angular", "typescript", "javascript", "rust", "python",
    "java", "go", "kotlin", "docker", "kubernetes", "aws", "gcp", "azure",
    "postgres", "mysql", "mongodb", "redis", "elasticsearch",
)

TECH_TERMS = (
    "api", "database", "service", "component", "module", "library", "framework",
    "architecture", "pattern", "interface", "protocol", "algorithm", "optimization",
    "performance", "scalability", "security",
)

POSITIVE_WORDS = ("good", "great", "excellent", "improve", "better", "optimal")
NEGATIVE_WORDS = ("bad", "poor", "terrible", "problem", "issue", "bug", "error")

SEVERITY_COMPLEXITY = {"low": 0.2, "medium": 0.4, "high": 0.7, "critical": 1.0}
CATEGORY_COMPLEXITY = {
    "new_technology": 0.8,
    "pattern_violation": 0.6,
    "configuration": 0.3,
    "conflicting_technology": 0.9,
    "deprecated_technology": 0.7,
    "missing_component": 0.8,
    "security": 1.0,
    "performance": 0.7,
    "database": 0.6,
    "infrastructure": 0.8,
    "framework": 0.7,
    "other": 0.2,
}
DEFAULT_CATEGORY_COMPLEXITY = 0.2

MAX_WORDS_PER_SENTENCE = 20.0

_WORD_RE = re.compile(r"[a-z0-9]+")
_SENTENCE_RE = re.compile(r"[.!?]+")


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def _category_key(category: str) -> str:
    return category.strip().lower().replace("-", "_").replace(" ", "_")


@dataclass
class FeatureExtractor:
    """
    Turns an observation into a fixed-shape FeatureVector.

    The extractor holds the session's corpus; ``extract`` reads a snapshot of
    it and never mutates anything. Feature groups switched off in the config
    are left out of the vector entirely.
    """

    corpus: HistoricalCorpus
    config: DriftConfig = field(default_factory=DriftConfig)
    analyzer: TemporalAnalyzer = field(default_factory=TemporalAnalyzer)

    @property
    def feature_names(self) -> Tuple[str, ...]:
        names: List[str] = []
        if self.config.enable_temporal:
            names.extend(TEMPORAL_FEATURES)
        if self.config.enable_textual:
            names.extend(TEXTUAL_FEATURES)
        if self.config.enable_structural:
            names.extend(STRUCTURAL_FEATURES)
        return tuple(names)

    def extract(self, observation: Observation, corpus: Optional[Sequence[Observation]] = None) -> FeatureVector:
        history = self.corpus.snapshot() if corpus is None else tuple(corpus)
        values: Dict[str, float] = {}

        if self.config.enable_temporal:
            temporal = self.analyzer.analyze(observation, history, self.config.temporal_window_days)
            values.update(temporal.as_dict())
        if self.config.enable_textual:
            values.update(self.textual_features(observation))
        if self.config.enable_structural:
            values.update(self.structural_features(observation, history))

        return FeatureVector(observation.id, values)

    def build_training_vectors(self, corpus: Optional[Sequence[Observation]] = None) -> List[FeatureVector]:
        """Extract every entry against the entries that precede it."""
        entries = self.corpus.snapshot() if corpus is None else tuple(corpus)
        return [self.extract(entry, entries[:index]) for index, entry in enumerate(entries)]

    @staticmethod
    def textual_features(observation: Observation) -> Dict[str, float]:
        text = observation.text
        words = _words(text)
        total = len(words)
        counts = Counter(words)

        keyword_hits = sum(counts[keyword] for keyword in TECH_KEYWORDS)
        tech_terms = sum(counts[term] for term in TECH_TERMS)
        positive = sum(counts[word] for word in POSITIVE_WORDS)
        negative = sum(counts[word] for word in NEGATIVE_WORDS)

        sentences = [s for s in _SENTENCE_RE.split(text) if _words(s)]
        if total:
            avg_sentence = total / max(len(sentences), 1)
            readability = (MAX_WORDS_PER_SENTENCE - min(avg_sentence, MAX_WORDS_PER_SENTENCE)) / MAX_WORDS_PER_SENTENCE
        else:
            readability = 0.0

        return {
            "lexical_diversity": len(counts) / total if total else 0.0,
            "text_length": float(total),
            "keyword_density": keyword_hits / total if total else 0.0,
            "tech_term_count": float(tech_terms),
            "sentiment_score": (positive - negative) / (positive + negative) if positive + negative else 0.0,
            "readability_score": readability,
        }

    @staticmethod
    def structural_features(observation: Observation, history: Sequence[Observation]) -> Dict[str, float]:
        target_category = _category_key(observation.category)
        categories = Counter(_category_key(entry.category) for entry in history)

        ranks = [entry.severity.rank for entry in history] + [observation.severity.rank]

        if history:
            category_frequency = categories[target_category] / len(history)
        else:
            category_frequency = 0.5

        return {
            "category_cardinality": float(len(set(categories) | {target_category})),
            "severity_skew": _skewness(ranks),
            "category_frequency": category_frequency,
            "severity_level": observation.severity.rank / 3.0,
            "complexity_score": complexity_score(observation),
            "directory_depth": _directory_depth(observation),
        }


def complexity_score(observation: Observation) -> float:
    score = SEVERITY_COMPLEXITY[observation.severity.value]
    score += CATEGORY_COMPLEXITY.get(_category_key(observation.category), DEFAULT_CATEGORY_COMPLEXITY)
    score += min(len(observation.description) / 500.0, 0.5)
    return min(score / 2.5, 1.0)


def _skewness(values: Sequence[float]) -> float:
    n = len(values)
    if n < 3:
        return 0.0
    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / n
    if variance < EPSILON:
        return 0.0
    third = sum((v - mean) ** 3 for v in values) / n
    return third / math.pow(variance, 1.5)


def _directory_depth(observation: Observation) -> float:
    if observation.location is None or not observation.location.file_path:
        return 0.0
    parts = [p for p in PurePosixPath(observation.location.file_path.replace("\\", "/")).parts if p not in ("/", ".")]
    return float(max(len(parts) - 1, 0))
