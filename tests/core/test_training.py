from __future__ import annotations

import logging
import time

import pytest

from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.drift_features import FeatureExtractor
from arch_drift.core.errors import InsufficientData
from arch_drift.core.models import FeatureVector, Verdict
from arch_drift.core.training import DetectionMetrics, TrainingPipeline


def _renamed(vector: FeatureVector, name: str) -> FeatureVector:
    return FeatureVector(name, vector.values)


@pytest.fixture
def config() -> DriftConfig:
    return DriftConfig(model_kind="statistical", retrain_after_feedback=3)


@pytest.fixture
def vectors(baseline_vectors, config):
    return baseline_vectors(config, count=20)


def test_fit_requires_minimum_samples(config, vectors) -> None:
    pipeline = TrainingPipeline(config)

    with pytest.raises(InsufficientData) as excinfo:
        pipeline.fit(vectors[:5])

    assert excinfo.value.required == config.min_training_samples
    assert excinfo.value.actual == 5
    assert pipeline.state is None


def test_fit_rejects_misaligned_labels(config, vectors) -> None:
    with pytest.raises(ValueError):
        TrainingPipeline(config).fit(vectors, labels=[False])


def test_fit_publishes_new_state(config, vectors) -> None:
    pipeline = TrainingPipeline(config)

    first = pipeline.fit(vectors)
    second = pipeline.retrain()

    assert first.version == 1
    assert second.version == 2
    assert pipeline.state is second
    assert first.feature_names == vectors[0].names
    assert len(pipeline.history) == 2


def test_drift_labelled_samples_are_not_fitted_as_normal(config, vectors) -> None:
    pipeline = TrainingPipeline(config)
    labels = [True] * 5 + [None] * (len(vectors) - 5)

    pipeline.fit(vectors, labels=labels)

    metrics = pipeline.history[-1]
    assert metrics.sample_count == len(vectors)
    assert metrics.fitted_count == len(vectors) - 5
    assert metrics.positive_count == 5


def test_window_is_capped_oldest_first(baseline_vectors) -> None:
    config = DriftConfig(model_kind="statistical", max_training_samples=12)
    vectors = baseline_vectors(config, count=12)
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)

    for index in range(3):
        pipeline.record(f"dr-{index}", _renamed(vectors[index], f"obs-{index}"), is_drift=False)

    ids = [sample.sample_id for sample in pipeline.samples()]
    assert pipeline.sample_count == 12
    assert ids[:2] == ["base-3", "base-4"]
    assert ids[-3:] == ["dr-0", "dr-1", "dr-2"]


def test_feedback_for_unknown_result_is_ignored(config, vectors) -> None:
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)

    assert pipeline.submit_feedback("dr-missing", Verdict.CONFIRMED) is False
    assert pipeline.pending_feedback == 0


def test_false_positive_relabels_and_decays_weight(config, vectors) -> None:
    pipeline = TrainingPipeline(config.model_copy(update={"online_learning": False}))
    pipeline.fit(vectors)
    pipeline.record("dr-1", vectors[0], is_drift=True)

    assert pipeline.submit_feedback("dr-1", Verdict.FALSE_POSITIVE)
    sample = {s.sample_id: s for s in pipeline.samples()}["dr-1"]
    assert sample.label is False
    assert sample.weight == pytest.approx(0.5)

    pipeline.submit_feedback("dr-1", "false_positive")
    sample = {s.sample_id: s for s in pipeline.samples()}["dr-1"]
    assert sample.weight == pytest.approx(0.25)


def test_false_positive_weight_has_a_floor(vectors) -> None:
    config = DriftConfig(model_kind="statistical", online_learning=False, min_sample_weight=0.3)
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)
    pipeline.record("dr-1", vectors[0], is_drift=True)

    for _ in range(4):
        pipeline.submit_feedback("dr-1", Verdict.FALSE_POSITIVE)

    sample = {s.sample_id: s for s in pipeline.samples()}["dr-1"]
    assert sample.weight == pytest.approx(0.3)


def test_confirmed_and_missed_mark_drift(config, vectors) -> None:
    pipeline = TrainingPipeline(config.model_copy(update={"online_learning": False}))
    pipeline.fit(vectors)
    pipeline.record("dr-1", vectors[0], is_drift=True)
    pipeline.record("dr-2", vectors[1], is_drift=False)

    pipeline.submit_feedback("dr-1", Verdict.CONFIRMED)
    pipeline.submit_feedback("dr-2", Verdict.MISSED)

    labels = {s.sample_id: s.label for s in pipeline.samples()}
    assert labels["dr-1"] is True
    assert labels["dr-2"] is True
    assert pipeline.metrics.true_positives == 1
    assert pipeline.metrics.false_negatives == 1


def test_retrains_after_feedback_threshold(config, vectors) -> None:
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)
    for index in range(3):
        pipeline.record(f"dr-{index}", _renamed(vectors[index], f"obs-{index}"), is_drift=True)

    pipeline.submit_feedback("dr-0", Verdict.FALSE_POSITIVE)
    pipeline.submit_feedback("dr-1", Verdict.FALSE_POSITIVE)
    assert pipeline.state.version == 1
    assert pipeline.pending_feedback == 2

    pipeline.submit_feedback("dr-2", Verdict.FALSE_POSITIVE)

    assert pipeline.state.version == 2
    assert pipeline.pending_feedback == 0
    assert pipeline.history[-1].fitted_count == len(vectors) + 3


def test_feedback_retrain_keeps_old_model_when_data_runs_short(caplog, vectors) -> None:
    config = DriftConfig(model_kind="statistical", retrain_after_feedback=1, min_training_samples=10)
    pipeline = TrainingPipeline(config)
    state = pipeline.fit(vectors[:10])

    with caplog.at_level(logging.WARNING, logger="arch_drift.core.training"):
        assert pipeline.submit_feedback("base-0", Verdict.CONFIRMED)

    assert pipeline.state is state
    assert "keeping model v1" in caplog.text


def test_scheduled_retrain(vectors) -> None:
    config = DriftConfig(model_kind="statistical", retrain_interval_seconds=10.0)
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)
    later = time.monotonic() + 60.0

    assert pipeline.maybe_retrain(later) is None  # nothing new since the fit

    pipeline.record("dr-1", vectors[0], is_drift=False)
    assert pipeline.maybe_retrain(time.monotonic()) is None
    assert pipeline.maybe_retrain(later).version == 2


def test_scheduled_retrain_disabled_by_default(config, vectors) -> None:
    pipeline = TrainingPipeline(config)
    pipeline.fit(vectors)
    pipeline.record("dr-1", vectors[0], is_drift=False)

    assert pipeline.maybe_retrain(time.monotonic() + 3600) is None


def test_fit_corpus_bootstraps_from_history(config, baseline_observations) -> None:
    corpus = HistoricalCorpus(observations=baseline_observations)
    pipeline = TrainingPipeline(config)

    state = pipeline.fit_corpus(corpus, FeatureExtractor(corpus, config))

    assert state.version == 1
    assert len(state.samples) == len(baseline_observations)


def test_detection_metrics() -> None:
    metrics = DetectionMetrics(
        total_detections=20,
        drift_detections=8,
        degraded_detections=2,
        true_positives=6,
        false_positives=2,
        false_negatives=1,
        confidence_sum=9.0,
        processing_seconds_sum=2.0,
    )

    assert metrics.precision == pytest.approx(0.75)
    assert metrics.recall == pytest.approx(6 / 7)
    assert metrics.f1_score == pytest.approx(2 * 0.75 * (6 / 7) / (0.75 + 6 / 7))
    assert metrics.true_negatives == 9
    assert metrics.accuracy == pytest.approx(15 / 18)
    assert metrics.average_confidence == pytest.approx(0.5)
    assert metrics.average_processing_seconds == pytest.approx(0.1)


def test_empty_detection_metrics_are_zero() -> None:
    metrics = DetectionMetrics()
    assert metrics.to_dict()["precision"] == 0.0
    assert metrics.accuracy == 0.0
