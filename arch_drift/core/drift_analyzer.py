"""High-level drift detection orchestration."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from arch_drift.core.anomaly_models import agreement_of
from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.drift_features import FeatureExtractor
from arch_drift.core.errors import (
    DetectionCancelled,
    DriftEngineError,
    InsufficientData,
    ModelNotTrained,
    ScoringTimeout,
)
from arch_drift.core.explanation import ExplanationGenerator, suggest_action
from arch_drift.core.models import DriftResult, FeatureVector, Observation, Verdict
from arch_drift.core.persistence import load_session, save_session
from arch_drift.core.training import DetectionMetrics, ModelState, TrainingPipeline

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and running detections.

    A batch applies its side effects through ``commit``, which holds the same
    lock as ``cancel``; a batch is either cancelled or committed, never both.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._committed = False

    def cancel(self) -> bool:
        """Cancel; returns False when a batch already committed under this token."""
        with self._lock:
            self._event.set()
            return not self._committed

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        if self._event.is_set():
            raise DetectionCancelled()

    def commit(self, apply: Callable[[], None]) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            apply()
            self._committed = True
            return True


def new_result_id() -> str:
    return f"dr-{uuid.uuid4().hex[:16]}"


def _confidence(score: float, agreement: float) -> float:
    # exponent shrinks as agreement grows, so confidence never drops with more agreement
    return float(min(1.0, max(0.0, score)) ** (1.0 / (1.0 + agreement)))


@dataclass
class DriftOrchestrator:
    extractor: FeatureExtractor
    training: TrainingPipeline
    explainer: ExplanationGenerator = field(default_factory=ExplanationGenerator)
    config: DriftConfig = field(default_factory=DriftConfig)

    def detect(
        self,
        observations: Sequence[Observation],
        cancel: Optional[CancellationToken] = None,
    ) -> List[DriftResult]:
        """
        Score each observation, preserving input order.

        Every observation in the batch sees the same model state and the same
        corpus snapshot. Training samples, metrics and corpus inserts are
        applied once the whole batch is scored; a cancelled batch applies none.
        """
        if not observations:
            return []
        state = self.training.state
        history = self.extractor.corpus.snapshot()
        if self.config.worker_count > 1 and len(observations) > 1:
            scored = self._detect_parallel(observations, state, history, cancel)
        else:
            scored = []
            for observation in observations:
                try:
                    scored.append(self._run_one(observation, cancel, state, history))
                except DetectionCancelled:
                    logger.info(f"Detection cancelled after {len(scored)} of {len(observations)} observations")
                    raise DetectionCancelled([result for result, _ in scored])

        results = [result for result, _ in scored]
        self._commit(scored, cancel)
        return results

    def _detect_parallel(
        self,
        observations: Sequence[Observation],
        state: Optional[ModelState],
        history: Sequence[Observation],
        cancel: Optional[CancellationToken],
    ) -> List[Tuple[DriftResult, float]]:
        scored: List[Tuple[DriftResult, float]] = []
        with ThreadPoolExecutor(max_workers=self.config.worker_count, thread_name_prefix="drift-score") as pool:
            futures = [pool.submit(self._run_one, obs, cancel, state, history) for obs in observations]
            for future in futures:
                try:
                    scored.append(future.result())
                except DetectionCancelled:
                    for pending in futures:
                        pending.cancel()
                    logger.info(f"Detection cancelled after {len(scored)} of {len(observations)} observations")
                    raise DetectionCancelled([result for result, _ in scored])
        return scored

    def detect_one(
        self,
        observation: Observation,
        cancel: Optional[CancellationToken] = None,
        state: Optional[ModelState] = None,
        result_id: Optional[str] = None,
    ) -> DriftResult:
        """Score and record a single observation against the current corpus."""
        scored = self._run_one(observation, cancel, state, self.extractor.corpus.snapshot(), result_id)
        self._commit([scored], cancel)
        return scored[0]

    def _run_one(
        self,
        observation: Observation,
        cancel: Optional[CancellationToken],
        state: Optional[ModelState],
        history: Sequence[Observation],
        result_id: Optional[str] = None,
    ) -> Tuple[DriftResult, float]:
        """
        Run one observation through extract, score, threshold and explain.

        Engine failures come back as degraded results. Only cancellation
        escapes, and it never leaves a partial result behind.
        """
        result_id = result_id or new_result_id()
        state = state or self.training.state
        started = time.monotonic()
        deadline = started + self.config.scoring_timeout_seconds

        def checkpoint() -> None:
            if cancel is not None:
                cancel.check()
            if time.monotonic() > deadline:
                raise ScoringTimeout(self.config.scoring_timeout_seconds)

        vector: Optional[FeatureVector] = None
        try:
            observation.validate()
            if state is None:
                raise ModelNotTrained()
            vector = self.extractor.extract(observation, history)
            checkpoint()
            result = self._score(result_id, observation, vector, state, checkpoint)
        except DetectionCancelled:
            raise
        except DriftEngineError as exc:
            logger.warning(f"Degraded result for {observation.id}: {exc.kind}: {exc}")
            result = DriftResult.failed(
                result_id, observation, exc.kind, str(exc),
                model_version=state.version if state else 0,
                features=vector,
            )
        except Exception as exc:
            logger.error(f"Unexpected failure scoring {observation.id}", exc_info=True)
            result = DriftResult.failed(
                result_id, observation, "internal_error", f"{type(exc).__name__}: {exc}",
                model_version=state.version if state else 0,
                features=vector,
            )
        return result, time.monotonic() - started

    def _score(
        self,
        result_id: str,
        observation: Observation,
        vector: FeatureVector,
        state: ModelState,
        checkpoint: Callable[[], None],
    ) -> DriftResult:
        score = state.model.score(vector, checkpoint)
        agreement = agreement_of(score)
        confidence = _confidence(score.score, agreement)
        is_drift = confidence >= self.config.confidence_threshold

        member_scores = getattr(score, "member_scores", None)
        if member_scores:
            model_scores = {name: s.score for name, s in member_scores.items()}
        else:
            model_scores = {score.kind.value: score.score}

        checkpoint()
        explanation = self.explainer.explain(
            model_scores,
            vector,
            observation=observation,
            window_days=self.config.temporal_window_days,
            contributions=score.contributions,
        )
        logger.debug(f"{observation.id}: score={score.score:.3f} agreement={agreement:.2f} confidence={confidence:.3f}")
        return DriftResult(
            id=result_id,
            observation=observation,
            anomaly_score=score.score,
            model_scores=model_scores,
            confidence=confidence,
            is_drift=is_drift,
            explanation=explanation.text,
            factors=explanation.factors,
            suggested_action=suggest_action(observation) if is_drift else observation.suggested_action,
            features=vector,
            model_version=state.version,
        )

    def _commit(self, scored: Sequence[Tuple[DriftResult, float]], cancel: Optional[CancellationToken]) -> None:
        def apply() -> None:
            for result, elapsed in scored:
                self.training.note_detection(result.is_drift, result.degraded, result.confidence, elapsed)
                if not result.degraded and result.features is not None:
                    self.training.record(result.id, result.features, result.is_drift)
            if self.config.record_observations:
                self.extractor.corpus.extend(result.observation for result, _ in scored if not result.degraded)

        if cancel is None:
            apply()
        elif not cancel.commit(apply):
            logger.info(f"Detection cancelled before {len(scored)} results were recorded")
            raise DetectionCancelled([result for result, _ in scored])


class DetectionSession:
    """
    Caller-owned detection session.

    Bundles the corpus, feature extractor, training pipeline and orchestrator
    so that no module-level state is shared between sessions.
    """

    def __init__(self, config: Optional[DriftConfig] = None, corpus: Optional[HistoricalCorpus] = None):
        self.config = config or DriftConfig()
        self.corpus = corpus if corpus is not None else HistoricalCorpus(cap=self.config.max_corpus_size)
        self.extractor = FeatureExtractor(self.corpus, self.config)
        self.training = TrainingPipeline(self.config)
        self.explainer = ExplanationGenerator()
        self.orchestrator = DriftOrchestrator(self.extractor, self.training, self.explainer, self.config)

    @property
    def state(self) -> Optional[ModelState]:
        return self.training.state

    @property
    def metrics(self) -> DetectionMetrics:
        return self.training.metrics

    def train(
        self,
        vectors: Optional[Sequence[FeatureVector]] = None,
        labels: Optional[Sequence[Optional[bool]]] = None,
        weights: Optional[Sequence[float]] = None,
    ) -> ModelState:
        """Fit on explicit vectors, or bootstrap from the corpus when none are given."""
        if vectors is None:
            return self.training.fit_corpus(self.corpus, self.extractor)
        return self.training.fit(vectors, labels, weights)

    def detect(
        self,
        observations: Sequence[Observation],
        cancel: Optional[CancellationToken] = None,
    ) -> List[DriftResult]:
        return self.orchestrator.detect(observations, cancel)

    def submit_feedback(self, result_id: str, verdict: Union[Verdict, str]) -> bool:
        return self.training.submit_feedback(result_id, Verdict(verdict))

    def maybe_retrain(self) -> Optional[ModelState]:
        return self.training.maybe_retrain()

    def save(self, directory: Union[str, Path]) -> None:
        save_session(self, directory)

    def load(self, directory: Union[str, Path]) -> None:
        load_session(self, directory)


def detect(
    observations: Sequence[Observation],
    corpus: Union[HistoricalCorpus, Iterable[Observation], None],
    config: Optional[DriftConfig] = None,
    model_state: Optional[ModelState] = None,
) -> List[DriftResult]:
    """
    One-shot batch detection.

    Without a ``model_state`` the model is bootstrapped from ``corpus``. When
    the corpus is too small to train on, every observation comes back as a
    degraded ``model_not_trained`` result.
    """
    config = config or DriftConfig()
    if isinstance(corpus, HistoricalCorpus):
        history = corpus
    else:
        history = HistoricalCorpus(cap=config.max_corpus_size, observations=corpus or ())

    session = DetectionSession(config, history)
    if model_state is not None:
        session.training.adopt(model_state)
    else:
        try:
            session.train()
        except InsufficientData as exc:
            logger.warning(f"Cannot bootstrap a model from the corpus: {exc}")
    return session.detect(observations)
