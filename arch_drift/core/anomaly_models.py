"""Anomaly scoring models: isolation, boundary, density, statistical and their ensemble."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Protocol, Sequence, Tuple

import numpy as np
from sklearn.ensemble import IsolationForest
from sklearn.neighbors import LocalOutlierFactor
from sklearn.svm import OneClassSVM

from arch_drift.core.config import DriftConfig
from arch_drift.core.errors import FeatureMismatch, ModelNotTrained
from arch_drift.core.models import CombinationStrategy, FeatureVector, ModelKind

INFINITE_CAP_DAYS = 365.0
MIN_SCALE = 0.05
MIN_LEARNED_WEIGHT = 0.05
AGREEMENT_CUTOFF = 0.5

Checkpoint = Optional[Callable[[], None]]

logger = logging.getLogger(__name__)


@dataclass
class ModelScore:
    kind: ModelKind
    score: float  # normalized to [0, 1], higher is more anomalous
    raw: float
    explanation: str
    contributions: Dict[str, float] = field(default_factory=dict)


@dataclass
class EnsembleScore(ModelScore):
    member_scores: Dict[str, ModelScore] = field(default_factory=dict)
    agreement: float = 0.0


def agreement_of(score: ModelScore) -> float:
    """Fraction of models that consider the vector anomalous."""
    if isinstance(score, EnsembleScore):
        return score.agreement
    return 1.0 if score.score >= AGREEMENT_CUTOFF else 0.0


def _clip01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return float(min(1.0, max(0.0, value)))


def _sigmoid(value: float) -> float:
    if value >= 0:
        return 1.0 / (1.0 + math.exp(-value))
    exp_value = math.exp(value)
    return exp_value / (1.0 + exp_value)


class FeatureSpace:
    """Fixed feature ordering plus the location/scale learned at fit time."""

    def __init__(self, names: Sequence[str], mean: np.ndarray, scale: np.ndarray):
        self.names: Tuple[str, ...] = tuple(names)
        self.mean = mean
        self.scale = scale

    @classmethod
    def fit(cls, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> "FeatureSpace":
        if not vectors:
            raise ValueError("cannot fit a feature space on zero vectors")
        names = vectors[0].names
        raw = np.vstack([cls._raw_row(names, v) for v in vectors])
        weights = None if sample_weight is None else np.asarray(sample_weight, dtype=float)
        mean = np.average(raw, axis=0, weights=weights)
        variance = np.average((raw - mean) ** 2, axis=0, weights=weights)
        scale = np.maximum(np.sqrt(variance), MIN_SCALE)
        return cls(names, mean, scale)

    @staticmethod
    def _raw_row(names: Sequence[str], vector: FeatureVector) -> np.ndarray:
        missing = [name for name in names if name not in vector]
        if missing:
            raise FeatureMismatch(missing)
        row = np.array([vector[name] for name in names], dtype=float)
        row[np.isinf(row)] = INFINITE_CAP_DAYS
        return np.nan_to_num(row, nan=0.0)

    def row(self, vector: FeatureVector) -> np.ndarray:
        return (self._raw_row(self.names, vector) - self.mean) / self.scale

    def matrix(self, vectors: Sequence[FeatureVector]) -> np.ndarray:
        return np.vstack([self.row(v) for v in vectors])

    def contributions(self, row: np.ndarray) -> Dict[str, float]:
        return {name: float(abs(z)) for name, z in zip(self.names, row)}


class AnomalyModel(Protocol):
    kind: ModelKind

    @property
    def is_fitted(self) -> bool: ...

    @property
    def feature_names(self) -> Tuple[str, ...]: ...

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None: ...

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> ModelScore: ...


class _SpaceModel:
    kind: ModelKind

    def __init__(self) -> None:
        self.space: Optional[FeatureSpace] = None

    @property
    def is_fitted(self) -> bool:
        return self.space is not None

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return self.space.names if self.space else ()

    def _prepare(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]]) -> np.ndarray:
        if len(vectors) < 2:
            raise ValueError(f"{self.kind.value} model needs at least two training vectors")
        self.space = FeatureSpace.fit(vectors, sample_weight)
        return self.space.matrix(vectors)

    def _row(self, vector: FeatureVector) -> np.ndarray:
        if self.space is None:
            raise ModelNotTrained(f"{self.kind.value} model has not been fitted")
        return self.space.row(vector)


class IsolationModel(_SpaceModel):
    kind = ModelKind.ISOLATION

    def __init__(self, n_estimators: int = 150, random_state: int = 42):
        super().__init__()
        self.n_estimators = n_estimators
        self.random_state = random_state
        self._forest: Optional[IsolationForest] = None

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None:
        matrix = self._prepare(vectors, sample_weight)
        self._forest = IsolationForest(n_estimators=self.n_estimators, random_state=self.random_state)
        self._forest.fit(matrix, sample_weight=sample_weight)

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> ModelScore:
        row = self._row(vector)
        # score_samples is the negated isolation score 2^(-E[h]/c(n))
        raw = float(-self._forest.score_samples(row.reshape(1, -1))[0])
        normalized = _clip01(raw)
        return ModelScore(
            kind=self.kind,
            score=normalized,
            raw=raw,
            explanation=f"isolation path score {normalized:.2f}",
            contributions=self.space.contributions(row),
        )


class BoundaryModel(_SpaceModel):
    kind = ModelKind.BOUNDARY

    def __init__(self, nu: float = 0.1):
        super().__init__()
        self.nu = nu
        self._svm: Optional[OneClassSVM] = None
        self._spread = 1.0

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None:
        matrix = self._prepare(vectors, sample_weight)
        self._svm = OneClassSVM(kernel="rbf", gamma="scale", nu=self.nu)
        self._svm.fit(matrix, sample_weight=sample_weight)
        self._spread = max(float(np.std(self._svm.decision_function(matrix))), 1e-3)

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> ModelScore:
        row = self._row(vector)
        # positive raw means outside the learned boundary
        raw = float(-self._svm.decision_function(row.reshape(1, -1))[0])
        normalized = _clip01(_sigmoid(raw / self._spread))
        side = "outside" if raw > 0 else "inside"
        return ModelScore(
            kind=self.kind,
            score=normalized,
            raw=raw,
            explanation=f"{side} the learned boundary (distance {abs(raw):.3f})",
            contributions=self.space.contributions(row),
        )


class DensityModel(_SpaceModel):
    """Local outlier factor in novelty mode. Sample weights are not supported by LOF and are ignored."""

    kind = ModelKind.DENSITY

    def __init__(self, n_neighbors: int = 20):
        super().__init__()
        self.n_neighbors = n_neighbors
        self._lof: Optional[LocalOutlierFactor] = None

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None:
        matrix = self._prepare(vectors, sample_weight)
        neighbors = max(1, min(self.n_neighbors, len(vectors) - 1))
        self._lof = LocalOutlierFactor(n_neighbors=neighbors, novelty=True)
        self._lof.fit(matrix)

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> ModelScore:
        row = self._row(vector)
        raw = float(-self._lof.score_samples(row.reshape(1, -1))[0])
        normalized = _clip01(1.0 - 1.0 / raw) if raw > 0 else 0.0
        return ModelScore(
            kind=self.kind,
            score=normalized,
            raw=raw,
            explanation=f"local density ratio {raw:.2f} against its neighbours",
            contributions=self.space.contributions(row),
        )


class StatisticalModel(_SpaceModel):
    kind = ModelKind.STATISTICAL

    def __init__(self, threshold: float = 2.0, feature_weights: Optional[Mapping[str, float]] = None):
        super().__init__()
        self.threshold = threshold
        self.feature_weights = dict(feature_weights or {})

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None:
        self._prepare(vectors, sample_weight)

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> ModelScore:
        row = self._row(vector)
        weights = np.array([self.feature_weights.get(name, 1.0) for name in self.space.names], dtype=float)
        weighted = np.abs(row) * weights
        total_weight = float(weights.sum()) or 1.0
        average = float(weighted.sum()) / total_weight
        peak = float(weighted.max()) if weighted.size else 0.0
        raw = (average + peak) / 2.0
        normalized = _clip01(raw / (raw + self.threshold))
        return ModelScore(
            kind=self.kind,
            score=normalized,
            raw=raw,
            explanation=f"mean |z| {average:.2f}, peak |z| {peak:.2f}",
            contributions=self.space.contributions(row),
        )


class EnsembleModel:
    """Runs its member models and combines their normalized scores."""

    kind = ModelKind.ENSEMBLE

    def __init__(
        self,
        members: Mapping[ModelKind, AnomalyModel],
        strategy: CombinationStrategy = CombinationStrategy.MEAN,
        weights: Optional[Mapping[str, float]] = None,
    ):
        if not members:
            raise ValueError("ensemble needs at least one member model")
        self.members: Dict[ModelKind, AnomalyModel] = dict(members)
        self.strategy = strategy
        self.weights: Dict[str, float] = {kind.value: 1.0 for kind in self.members}
        if weights:
            self.weights.update({k: float(v) for k, v in weights.items() if k in self.weights})

    @property
    def is_fitted(self) -> bool:
        return all(model.is_fitted for model in self.members.values())

    @property
    def feature_names(self) -> Tuple[str, ...]:
        first = next(iter(self.members.values()))
        return first.feature_names

    def fit(self, vectors: Sequence[FeatureVector], sample_weight: Optional[Sequence[float]] = None) -> None:
        for model in self.members.values():
            model.fit(vectors, sample_weight)

    def learn_weights(
        self,
        vectors: Sequence[FeatureVector],
        labels: Sequence[bool],
        sample_weight: Optional[Sequence[float]] = None,
    ) -> Dict[str, float]:
        """Weight each member by how well it separates drift from normal samples."""
        labels_arr = np.asarray(labels, dtype=bool)
        weights_arr = np.ones(len(labels_arr)) if sample_weight is None else np.asarray(sample_weight, dtype=float)
        if labels_arr.all() or not labels_arr.any():
            self.weights = {kind.value: 1.0 for kind in self.members}
            logger.debug("Only one label class present, using equal ensemble weights")
            return dict(self.weights)

        learned: Dict[str, float] = {}
        for kind, model in self.members.items():
            scores = np.array([model.score(vector).score for vector in vectors], dtype=float)
            drift_mean = np.average(scores[labels_arr], weights=weights_arr[labels_arr])
            normal_mean = np.average(scores[~labels_arr], weights=weights_arr[~labels_arr])
            learned[kind.value] = max(float(drift_mean - normal_mean), MIN_LEARNED_WEIGHT)
        self.weights = learned
        logger.info(f"Learned ensemble weights: {learned}")
        return dict(learned)

    def score(self, vector: FeatureVector, checkpoint: Checkpoint = None) -> EnsembleScore:
        if not self.is_fitted:
            raise ModelNotTrained("ensemble members have not been fitted")
        member_scores: Dict[str, ModelScore] = {}
        for kind, model in self.members.items():
            if checkpoint is not None:
                checkpoint()
            member_scores[kind.value] = model.score(vector, checkpoint)

        combined = self._combine(member_scores)
        flagged = sum(1 for s in member_scores.values() if s.score >= AGREEMENT_CUTOFF)
        agreement = flagged / len(member_scores)
        contributions = next(iter(member_scores.values())).contributions

        return EnsembleScore(
            kind=self.kind,
            score=combined,
            raw=combined,
            explanation=f"{flagged} of {len(member_scores)} models flag this observation ({self.strategy.value} combination)",
            contributions=contributions,
            member_scores=member_scores,
            agreement=agreement,
        )

    def _combine(self, member_scores: Mapping[str, ModelScore]) -> float:
        if self.strategy is CombinationStrategy.MEAN:
            return _clip01(sum(s.score for s in member_scores.values()) / len(member_scores))
        total_weight = sum(self.weights.get(name, 0.0) for name in member_scores)
        if total_weight <= 0:
            return _clip01(sum(s.score for s in member_scores.values()) / len(member_scores))
        weighted = sum(self.weights.get(name, 0.0) * s.score for name, s in member_scores.items())
        return _clip01(weighted / total_weight)


def create_model(kind: ModelKind, config: Optional[DriftConfig] = None) -> AnomalyModel:
    config = config or DriftConfig()
    kind = ModelKind(kind)
    if kind is ModelKind.ISOLATION:
        return IsolationModel(n_estimators=config.isolation_estimators, random_state=config.random_seed)
    if kind is ModelKind.BOUNDARY:
        return BoundaryModel(nu=config.boundary_nu)
    if kind is ModelKind.DENSITY:
        return DensityModel(n_neighbors=config.density_neighbors)
    if kind is ModelKind.STATISTICAL:
        return StatisticalModel(threshold=config.statistical_threshold)

    members = {member: create_model(member, config) for member in config.ensemble_members()}
    weights = config.model_weights if config.combination_strategy is not CombinationStrategy.MEAN else None
    return EnsembleModel(members, strategy=config.combination_strategy, weights=weights)
