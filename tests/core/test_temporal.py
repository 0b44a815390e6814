from __future__ import annotations

import math

import pytest

from arch_drift.core.temporal import TemporalAnalyzer


def test_empty_corpus_returns_sentinels(make_observation) -> None:
    features = TemporalAnalyzer().analyze(make_observation("target"), [], window_days=30)

    assert math.isinf(features.days_since_last)
    assert features.frequency_per_week == 0.0
    assert features.drift_velocity == 0.0
    assert features.temporal_clustering_score == 0.0
    assert features.recency_factor == 0.0


def test_five_similar_entries_over_ten_days(make_observation) -> None:
    corpus = [make_observation(f"db-{i}", days=i * 2.5) for i in range(5)]  # days 0..10
    target = make_observation("target", days=11)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=30)

    assert features.days_since_last == pytest.approx(1.0)
    assert features.frequency_per_week == pytest.approx(5 / (30 / 7))
    assert features.drift_velocity == pytest.approx(5 / 30)
    # evenly spaced gaps have zero variation
    assert features.temporal_clustering_score == pytest.approx(1.0)
    assert features.recency_factor == pytest.approx(1.0)


def test_dissimilar_entries_count_only_towards_velocity(make_observation) -> None:
    corpus = [
        make_observation(f"fw-{i}", category="framework", severity="low", title="Upgrade router", description="", days=i)
        for i in range(3)
    ]
    target = make_observation("target", severity="critical", days=5)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=10)

    assert math.isinf(features.days_since_last)
    assert features.frequency_per_week == 0.0
    assert features.drift_velocity == pytest.approx(3 / 10)


def test_entries_after_target_are_ignored(make_observation) -> None:
    corpus = [make_observation("past", days=0), make_observation("future", days=20)]
    target = make_observation("target", days=4)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=30)

    assert features.days_since_last == pytest.approx(4.0)
    assert features.recency_factor == pytest.approx(1.0)


def test_window_excludes_old_entries(make_observation) -> None:
    corpus = [make_observation("old", days=-100), make_observation("recent", days=-2)]
    target = make_observation("target", days=0)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=30)

    assert features.frequency_per_week == pytest.approx(1 / (30 / 7))
    assert features.drift_velocity == pytest.approx(1 / 30)


def test_recency_reflects_position_of_latest_similar_entry(make_observation) -> None:
    corpus = [
        make_observation("similar", days=0),
        make_observation("other-1", category="framework", severity="low", title="Router", description="", days=1),
        make_observation("other-2", category="framework", severity="low", title="Router", description="", days=2),
    ]
    target = make_observation("target", days=3)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=30)

    assert features.recency_factor == pytest.approx(0.0)


def test_irregular_gaps_lower_clustering_score(make_observation) -> None:
    corpus = [make_observation(f"db-{i}", days=d) for i, d in enumerate([0, 0.5, 1.0, 20.0])]
    target = make_observation("target", days=21)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=60)

    assert 0.0 <= features.temporal_clustering_score < 0.5


def test_seasonal_strength_is_bounded(make_observation) -> None:
    corpus = [make_observation(f"q1-{i}", days=-300 + i) for i in range(12)]
    corpus += [make_observation("q4", days=-5)]
    target = make_observation("target", days=0)

    features = TemporalAnalyzer().analyze(target, corpus, window_days=30)

    assert 0.0 < features.seasonal_pattern_strength <= 1.0
