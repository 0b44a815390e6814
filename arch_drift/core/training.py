"""Training and online-learning pipeline for the anomaly models."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from arch_drift.core.anomaly_models import AnomalyModel, EnsembleModel, create_model
from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.drift_features import FeatureExtractor
from arch_drift.core.errors import InsufficientData
from arch_drift.core.models import CombinationStrategy, FeatureVector, ModelKind, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingSample:
    sample_id: str
    features: FeatureVector
    label: Optional[bool] = None  # None means unlabeled history
    weight: float = 1.0


@dataclass(frozen=True)
class ModelState:
    """Immutable snapshot of a fitted model and the samples it was fitted on."""

    version: int
    model_kind: ModelKind
    feature_names: Tuple[str, ...]
    model: AnomalyModel
    samples: Tuple[TrainingSample, ...]
    trained_at: datetime
    ensemble_weights: Dict[str, float] = field(default_factory=dict)


@dataclass
class TrainingMetrics:
    version: int
    sample_count: int
    fitted_count: int
    positive_count: int
    negative_count: int
    duration_seconds: float
    trained_at: datetime


@dataclass
class DetectionMetrics:
    total_detections: int = 0
    drift_detections: int = 0
    degraded_detections: int = 0
    true_positives: int = 0
    false_positives: int = 0
    false_negatives: int = 0
    confidence_sum: float = 0.0
    processing_seconds_sum: float = 0.0

    @property
    def true_negatives(self) -> int:
        scored_clean = self.total_detections - self.drift_detections - self.degraded_detections
        return max(scored_clean - self.false_negatives, 0)

    @property
    def precision(self) -> float:
        denominator = self.true_positives + self.false_positives
        return self.true_positives / denominator if denominator else 0.0

    @property
    def recall(self) -> float:
        denominator = self.true_positives + self.false_negatives
        return self.true_positives / denominator if denominator else 0.0

    @property
    def f1_score(self) -> float:
        p, r = self.precision, self.recall
        return 2 * p * r / (p + r) if p + r else 0.0

    @property
    def accuracy(self) -> float:
        judged = self.true_positives + self.false_positives + self.false_negatives + self.true_negatives
        return (self.true_positives + self.true_negatives) / judged if judged else 0.0

    @property
    def average_confidence(self) -> float:
        scored = self.total_detections - self.degraded_detections
        return self.confidence_sum / scored if scored else 0.0

    @property
    def average_processing_seconds(self) -> float:
        return self.processing_seconds_sum / self.total_detections if self.total_detections else 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_detections": self.total_detections,
            "drift_detections": self.drift_detections,
            "degraded_detections": self.degraded_detections,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "accuracy": self.accuracy,
            "average_confidence": self.average_confidence,
            "average_processing_seconds": self.average_processing_seconds,
        }


class TrainingPipeline:
    """
    Owns the training sample window and publishes fitted ModelState snapshots.

    Readers take ``pipeline.state`` and score against that object without
    locking. Every write (fit, record, feedback, retrain) runs under a single
    lock and, when it refits, swaps in a brand-new ModelState.
    """

    def __init__(self, config: Optional[DriftConfig] = None):
        self.config = config or DriftConfig()
        self._lock = threading.RLock()
        self._metrics_lock = threading.Lock()
        self._samples: "OrderedDict[str, TrainingSample]" = OrderedDict()
        self._state: Optional[ModelState] = None
        self._version = 0
        self._pending_feedback = 0
        self._samples_since_fit = 0
        self._last_trained_at: Optional[float] = None
        self.history: List[TrainingMetrics] = []
        self.metrics = DetectionMetrics()

    @property
    def state(self) -> Optional[ModelState]:
        return self._state

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def pending_feedback(self) -> int:
        return self._pending_feedback

    def samples(self) -> Tuple[TrainingSample, ...]:
        with self._lock:
            return tuple(self._samples.values())

    def fit(
        self,
        vectors: Sequence[FeatureVector],
        labels: Optional[Sequence[Optional[bool]]] = None,
        weights: Optional[Sequence[float]] = None,
    ) -> ModelState:
        """Replace the sample window with ``vectors`` and train a fresh model."""
        if len(vectors) < self.config.min_training_samples:
            raise InsufficientData(self.config.min_training_samples, len(vectors))
        if labels is not None and len(labels) != len(vectors):
            raise ValueError("labels must align with vectors")
        if weights is not None and len(weights) != len(vectors):
            raise ValueError("weights must align with vectors")

        samples = [
            TrainingSample(
                sample_id=vector.observation_id or f"sample-{index}",
                features=vector,
                label=None if labels is None else labels[index],
                weight=1.0 if weights is None else float(weights[index]),
            )
            for index, vector in enumerate(vectors)
        ]
        with self._lock:
            self._samples = OrderedDict()
            for sample in samples:
                self._samples[sample.sample_id] = sample
            self._trim_window()
            return self._train_locked()

    def fit_corpus(self, corpus: HistoricalCorpus, extractor: FeatureExtractor) -> ModelState:
        vectors = extractor.build_training_vectors(corpus.snapshot())
        logger.info(f"Bootstrapping model from {len(vectors)} corpus observations")
        return self.fit(vectors)

    def restore(self, samples: Sequence[TrainingSample], version: int, ensemble_weights: Optional[Dict[str, float]] = None) -> ModelState:
        """Refit from persisted samples. Fitting is seeded, so scores match the saved model."""
        with self._lock:
            self._samples = OrderedDict((sample.sample_id, sample) for sample in samples)
            self._version = max(version - 1, 0)
            return self._train_locked(fixed_weights=ensemble_weights)

    def adopt(self, state: ModelState) -> None:
        """Use an already fitted state as-is; its samples become the window."""
        with self._lock:
            self._samples = OrderedDict((sample.sample_id, sample) for sample in state.samples)
            self._trim_window()
            self._version = state.version
            self._state = state
            self._last_trained_at = time.monotonic()

    def record(self, result_id: str, vector: FeatureVector, is_drift: bool) -> None:
        """Add a scored observation to the window with its provisional label."""
        with self._lock:
            self._samples[result_id] = TrainingSample(result_id, vector, label=bool(is_drift))
            self._samples.move_to_end(result_id)
            self._samples_since_fit += 1
            self._trim_window()

    def submit_feedback(self, result_id: str, verdict: Verdict) -> bool:
        verdict = Verdict(verdict)
        with self._lock:
            sample = self._samples.get(result_id)
            if sample is None:
                logger.warning(f"Feedback for unknown result {result_id} ignored")
                return False

            if verdict is Verdict.FALSE_POSITIVE:
                weight = max(sample.weight * self.config.false_positive_weight_decay, self.config.min_sample_weight)
                self._samples[result_id] = replace(sample, label=False, weight=weight)
            else:
                self._samples[result_id] = replace(sample, label=True)
            self._count_feedback(verdict)
            self._pending_feedback += 1
            logger.debug(f"Feedback {verdict.value} applied to {result_id} ({self._pending_feedback} pending)")

            if self.config.online_learning and self._pending_feedback >= self.config.retrain_after_feedback:
                logger.info(f"Retraining after {self._pending_feedback} feedback events")
                try:
                    self._train_locked()
                except InsufficientData as exc:
                    logger.warning(f"Feedback retrain skipped, keeping model v{self._version}: {exc}")
            return True

    def retrain(self) -> ModelState:
        with self._lock:
            return self._train_locked()

    def maybe_retrain(self, now: Optional[float] = None) -> Optional[ModelState]:
        """Retrain when the configured interval has elapsed and new samples arrived."""
        interval = self.config.retrain_interval_seconds
        if interval <= 0 or self._last_trained_at is None:
            return None
        now = time.monotonic() if now is None else now
        if now - self._last_trained_at < interval:
            return None
        if not self._samples_since_fit and not self._pending_feedback:
            return None
        logger.info("Scheduled retraining triggered")
        return self.retrain()

    def note_detection(self, is_drift: bool, degraded: bool, confidence: float, elapsed: float) -> None:
        with self._metrics_lock:
            m = self.metrics
            m.total_detections += 1
            m.processing_seconds_sum += elapsed
            if degraded:
                m.degraded_detections += 1
                return
            m.confidence_sum += confidence
            if is_drift:
                m.drift_detections += 1

    def _count_feedback(self, verdict: Verdict) -> None:
        with self._metrics_lock:
            if verdict is Verdict.CONFIRMED:
                self.metrics.true_positives += 1
            elif verdict is Verdict.FALSE_POSITIVE:
                self.metrics.false_positives += 1
            else:
                self.metrics.false_negatives += 1

    def _trim_window(self) -> None:
        overflow = len(self._samples) - self.config.max_training_samples
        for _ in range(max(overflow, 0)):
            self._samples.popitem(last=False)

    def _train_locked(self, fixed_weights: Optional[Dict[str, float]] = None) -> ModelState:
        started = time.perf_counter()
        samples = tuple(self._samples.values())
        normal = [s for s in samples if s.label is not True]
        if len(normal) < self.config.min_training_samples:
            raise InsufficientData(self.config.min_training_samples, len(normal))

        model = create_model(self.config.model_kind, self.config)
        model.fit([s.features for s in normal], [s.weight for s in normal])

        ensemble_weights: Dict[str, float] = {}
        if isinstance(model, EnsembleModel):
            if fixed_weights:
                model.weights.update(fixed_weights)
            elif self.config.combination_strategy is CombinationStrategy.LEARNED:
                labeled = [s for s in samples if s.label is not None]
                if labeled:
                    model.learn_weights(
                        [s.features for s in labeled],
                        [bool(s.label) for s in labeled],
                        [s.weight for s in labeled],
                    )
            ensemble_weights = dict(model.weights)

        self._version += 1
        state = ModelState(
            version=self._version,
            model_kind=self.config.model_kind,
            feature_names=tuple(model.feature_names),
            model=model,
            samples=samples,
            trained_at=datetime.now(timezone.utc),
            ensemble_weights=ensemble_weights,
        )
        self._state = state
        self._pending_feedback = 0
        self._samples_since_fit = 0
        self._last_trained_at = time.monotonic()

        positives = sum(1 for s in samples if s.label is True)
        metrics = TrainingMetrics(
            version=state.version,
            sample_count=len(samples),
            fitted_count=len(normal),
            positive_count=positives,
            negative_count=len(samples) - positives,
            duration_seconds=time.perf_counter() - started,
            trained_at=state.trained_at,
        )
        self.history.append(metrics)
        logger.info(
            f"Trained {state.model_kind.value} model v{state.version} on {len(normal)} of {len(samples)} samples "
            f"in {metrics.duration_seconds:.2f}s"
        )
        return state
