from __future__ import annotations

import pytest

from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.drift_analyzer import CancellationToken, DetectionSession, detect
from arch_drift.core.errors import DetectionCancelled
from arch_drift.core.explanation import ExplanationGenerator
from arch_drift.core.models import Verdict, severity_counts


def _trained_session(config, baseline_vectors) -> DetectionSession:
    session = DetectionSession(config)
    session.train(baseline_vectors(config))
    return session


def _prior_database_changes(make_observation):
    # five similar database changes spread over ten days
    return [make_observation(f"db-{i}", days=i * 2.5) for i in range(5)]


def test_empty_input_returns_empty_list(quiet_config, baseline_vectors) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    assert session.detect([]) == []


def test_recurring_database_changes_are_flagged(quiet_config, baseline_vectors, make_observation) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    session.corpus.extend(_prior_database_changes(make_observation))

    [result] = session.detect([make_observation("new-db", days=11)])

    assert not result.degraded
    assert result.features["frequency_per_week"] > 0
    assert result.features["days_since_last"] < 10
    assert result.confidence > 0.7
    assert result.is_drift
    assert "5 prior database-related changes" in result.explanation
    assert result.factors[0].kind == "temporal"
    assert result.suggested_action
    assert set(result.model_scores) == {"isolation", "boundary", "density", "statistical"}


def test_structural_only_observation_without_history(make_observation, baseline_vectors) -> None:
    config = DriftConfig(
        enable_temporal=False,
        enable_textual=False,
        record_observations=False,
        online_learning=False,
    )
    session = _trained_session(config, baseline_vectors)

    [result] = session.detect([make_observation("lonely", severity="critical")])

    assert not result.degraded
    assert 0.0 <= result.anomaly_score <= 1.0
    assert 0.0 <= result.confidence <= 1.0
    assert result.features.names == (
        "category_cardinality",
        "severity_skew",
        "category_frequency",
        "severity_level",
        "complexity_score",
        "directory_depth",
    )
    assert result.explanation


def test_structural_only_without_any_model_degrades(make_observation) -> None:
    config = DriftConfig(enable_temporal=False, enable_textual=False)

    [result] = detect([make_observation("lonely")], corpus=[], config=config)

    assert result.degraded
    assert result.failure_kind == "model_not_trained"
    assert result.is_drift is False
    assert "model_not_trained" in result.explanation


def test_results_preserve_input_order(quiet_config, baseline_vectors, make_observation) -> None:
    observations = [make_observation(f"o{i}", days=i) for i in range(6)]
    for workers in (1, 3):
        config = quiet_config.model_copy(update={"worker_count": workers})
        session = _trained_session(config, baseline_vectors)

        results = session.detect(observations)

        assert [r.observation.id for r in results] == [o.id for o in observations]
        assert len({r.id for r in results}) == len(observations)


def test_threshold_is_inclusive_and_monotonic(quiet_config, baseline_vectors, make_observation) -> None:
    observation = make_observation("sample")
    reference = _trained_session(quiet_config, baseline_vectors).detect([observation])[0]

    flags = []
    for threshold in (0.0, 0.25, 0.5, 0.75, 1.0):
        config = quiet_config.model_copy(update={"confidence_threshold": threshold})
        result = _trained_session(config, baseline_vectors).detect([observation])[0]
        assert result.confidence == pytest.approx(reference.confidence)
        assert result.is_drift == (result.confidence >= threshold)
        flags.append(result.is_drift)
    assert flags == sorted(flags, reverse=True)

    at_boundary = quiet_config.model_copy(update={"confidence_threshold": reference.confidence})
    assert _trained_session(at_boundary, baseline_vectors).detect([observation])[0].is_drift


def test_invalid_observation_degrades_without_aborting_batch(quiet_config, baseline_vectors, make_observation) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    observations = [make_observation("ok-1"), make_observation("broken", title=""), make_observation("ok-2")]

    results = session.detect(observations)

    assert [r.degraded for r in results] == [False, True, False]
    assert results[1].failure_kind == "invalid_observation"
    assert results[1].is_drift is False
    assert session.metrics.degraded_detections == 1


def test_feature_mismatch_degrades(quiet_config, baseline_vectors, make_observation) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    session.config.enable_textual = False

    [result] = session.detect([make_observation("a")])

    assert result.degraded
    assert result.failure_kind == "feature_mismatch"
    assert result.model_version == 1


def test_untrained_session_degrades(quiet_config, make_observation) -> None:
    [result] = DetectionSession(quiet_config).detect([make_observation("a")])
    assert result.failure_kind == "model_not_trained"


def test_scoring_budget_exceeded_degrades(baseline_vectors, make_observation) -> None:
    config = DriftConfig(record_observations=False, online_learning=False, scoring_timeout_seconds=1e-9)
    session = _trained_session(config, baseline_vectors)

    [result] = session.detect([make_observation("slow")])

    assert result.degraded
    assert result.failure_kind == "timeout"


def test_detect_bootstraps_from_corpus(baseline_observations, make_observation) -> None:
    results = detect([make_observation("a", days=10)], corpus=baseline_observations)

    assert len(results) == 1
    assert not results[0].degraded
    assert results[0].model_version == 1


def test_detected_observations_join_the_corpus(baseline_vectors, make_observation) -> None:
    config = DriftConfig(online_learning=False)
    session = _trained_session(config, baseline_vectors)

    session.detect([make_observation("a"), make_observation("b", days=1)])

    assert [o.id for o in session.corpus] == ["a", "b"]
    assert session.training.sample_count == 42
    assert session.metrics.total_detections == 2


def test_pre_cancelled_detection_emits_nothing(quiet_config, baseline_vectors, make_observation) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(DetectionCancelled) as excinfo:
        session.detect([make_observation("a"), make_observation("b")], cancel=token)

    assert excinfo.value.completed == []
    assert session.metrics.total_detections == 0


def test_cancellation_keeps_completed_results(quiet_config, baseline_vectors, make_observation) -> None:
    token = CancellationToken()

    class CancelAfterFirst(ExplanationGenerator):
        def explain(self, *args, **kwargs):
            token.cancel()
            return super().explain(*args, **kwargs)

    session = _trained_session(quiet_config, baseline_vectors)
    session.orchestrator.explainer = CancelAfterFirst()

    with pytest.raises(DetectionCancelled) as excinfo:
        session.detect([make_observation(f"o{i}") for i in range(4)], cancel=token)

    assert [r.observation.id for r in excinfo.value.completed] == ["o0"]
    assert not excinfo.value.completed[0].degraded


def test_false_positive_feedback_lowers_score(baseline_vectors, make_observation) -> None:
    config = DriftConfig(confidence_threshold=0.0, record_observations=False, retrain_after_feedback=10)
    session = _trained_session(config, baseline_vectors)

    def pool_change(index: int):
        return make_observation(
            f"pool-{index}",
            description=f"Introduce a postgres database connection pool for shard {index}.",
        )

    before = session.detect([pool_change(100)])[0]
    flagged = session.detect([pool_change(i) for i in range(10)])
    assert all(result.is_drift for result in flagged)

    for result in flagged:
        assert session.submit_feedback(result.id, Verdict.FALSE_POSITIVE)

    assert session.state.version == 2
    after = session.detect([pool_change(101)])[0]
    assert after.anomaly_score < before.anomaly_score


def test_unknown_feedback_returns_false(quiet_config, baseline_vectors) -> None:
    session = _trained_session(quiet_config, baseline_vectors)
    assert session.submit_feedback("dr-nope", "confirmed") is False


def test_detect_with_adopted_state(quiet_config, baseline_vectors, make_observation) -> None:
    trained = _trained_session(quiet_config, baseline_vectors)

    results = detect([make_observation("a")], corpus=HistoricalCorpus(), config=quiet_config, model_state=trained.state)

    assert results[0].model_version == trained.state.version
    assert not results[0].degraded


def test_batch_members_share_one_corpus_snapshot(baseline_vectors, make_observation) -> None:
    config = DriftConfig(online_learning=False)
    session = _trained_session(config, baseline_vectors)
    session.corpus.extend(_prior_database_changes(make_observation))

    first, second = session.detect([make_observation("x1", days=11), make_observation("x2", days=11)])

    assert dict(first.features.values) == dict(second.features.values)
    assert first.confidence == second.confidence
    assert [o.id for o in session.corpus][-2:] == ["x1", "x2"]


def test_parallel_and_sequential_batches_agree(baseline_vectors, make_observation) -> None:
    batch = [make_observation(f"b{i}", days=11 + i * 0.5) for i in range(6)]
    confidences = []
    corpora = []
    for workers in (1, 3):
        config = DriftConfig(online_learning=False, worker_count=workers)
        session = _trained_session(config, baseline_vectors)
        session.corpus.extend(_prior_database_changes(make_observation))
        confidences.append([r.confidence for r in session.detect(batch)])
        corpora.append([o.id for o in session.corpus])

    assert confidences[0] == pytest.approx(confidences[1])
    assert corpora[0] == corpora[1]


def test_cancelled_batch_records_nothing(baseline_vectors, make_observation) -> None:
    config = DriftConfig(online_learning=False)
    session = _trained_session(config, baseline_vectors)
    samples_before = session.training.sample_count
    token = CancellationToken()

    class CancelWhileExplaining(ExplanationGenerator):
        def explain(self, *args, **kwargs):
            token.cancel()
            return super().explain(*args, **kwargs)

    session.orchestrator.explainer = CancelWhileExplaining()

    with pytest.raises(DetectionCancelled) as excinfo:
        session.detect([make_observation("only")], cancel=token)

    assert [r.observation.id for r in excinfo.value.completed] == ["only"]
    assert len(session.corpus) == 0
    assert session.training.sample_count == samples_before
    assert session.metrics.total_detections == 0


def test_cancel_after_commit_reports_it() -> None:
    token = CancellationToken()
    applied = []

    assert token.commit(lambda: applied.append(1)) is True
    assert token.cancel() is False
    assert token.commit(lambda: applied.append(2)) is False
    assert applied == [1]


def test_severity_counts_only_count_drift(quiet_config, baseline_vectors, make_observation) -> None:
    config = quiet_config.model_copy(update={"confidence_threshold": 0.0})
    session = _trained_session(config, baseline_vectors)
    results = session.detect([make_observation("a", severity="high"), make_observation("b", severity="low", title="")])

    assert severity_counts(results) == {"low": 0, "medium": 0, "high": 1, "critical": 0}
