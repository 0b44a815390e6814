"""Time-pattern features for an observation relative to its history."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Sequence, Tuple

import numpy as np

from arch_drift.core.models import Observation, TemporalFeatureSet
from arch_drift.core.similarity import SimilarityScorer

EPSILON = 1e-9
DEFAULT_RELEVANCE_FLOOR = 0.5
SECONDS_PER_DAY = 86400.0


def _days_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / SECONDS_PER_DAY)


def _quarter_index(ts: datetime) -> int:
    return ts.year * 4 + (ts.month - 1) // 3


@dataclass
class TemporalAnalyzer:
    scorer: SimilarityScorer = field(default_factory=SimilarityScorer)
    relevance_floor: float = DEFAULT_RELEVANCE_FLOOR

    def analyze(
        self,
        target: Observation,
        corpus: Sequence[Observation],
        window_days: int,
    ) -> TemporalFeatureSet:
        reference = target.timestamp
        history = [entry for entry in corpus if entry.timestamp <= reference and entry.id != target.id]
        if not history:
            return TemporalFeatureSet()

        similar = [
            (index, entry)
            for index, entry in enumerate(history)
            if self.scorer.score(target, entry) > self.relevance_floor
        ]
        window = max(float(window_days), EPSILON)
        window_start = reference - timedelta(days=window_days)

        in_window = [entry for entry in history if window_start <= entry.timestamp]
        drift_velocity = len(in_window) / window

        if not similar:
            return TemporalFeatureSet(drift_velocity=drift_velocity)

        similar_in_window = [entry for _, entry in similar if window_start <= entry.timestamp]
        frequency_per_week = len(similar_in_window) / (window / 7.0)

        latest_index, latest = max(similar, key=lambda item: (item[1].timestamp, item[0]))
        days_since_last = _days_between(latest.timestamp, reference)

        return TemporalFeatureSet(
            days_since_last=days_since_last,
            frequency_per_week=frequency_per_week,
            seasonal_pattern_strength=self._seasonal_strength(similar, history, reference),
            drift_velocity=drift_velocity,
            temporal_clustering_score=self._clustering_score(similar),
            recency_factor=self._recency(latest_index, len(history)),
        )

    @staticmethod
    def _seasonal_strength(
        similar: List[Tuple[int, Observation]],
        history: Sequence[Observation],
        reference: datetime,
    ) -> float:
        first_quarter = min(_quarter_index(entry.timestamp) for entry in history)
        last_quarter = _quarter_index(reference)
        counts = np.zeros(last_quarter - first_quarter + 1, dtype=float)
        for _, entry in similar:
            counts[_quarter_index(entry.timestamp) - first_quarter] += 1.0
        if counts.size < 2:
            return 0.0
        strength = float(counts.var()) / (float(counts.mean()) + 1.0)
        return min(1.0, max(0.0, strength))

    @staticmethod
    def _clustering_score(similar: List[Tuple[int, Observation]]) -> float:
        if len(similar) < 2:
            return 0.0
        stamps = sorted(entry.timestamp for _, entry in similar)
        gaps = np.array([_days_between(a, b) for a, b in zip(stamps, stamps[1:])], dtype=float)
        coefficient_of_variation = float(gaps.std()) / (float(gaps.mean()) + EPSILON)
        return min(1.0, max(0.0, 1.0 - coefficient_of_variation))

    @staticmethod
    def _recency(index: int, size: int) -> float:
        if size <= 1:
            return 1.0
        return index / (size - 1)
