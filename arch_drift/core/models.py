"""Data models for drift observations, feature vectors and detection results."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from arch_drift.core.errors import InvalidObservation

INFINITE_DAYS = math.inf


class ModelKind(str, Enum):
    ISOLATION = "isolation"
    BOUNDARY = "boundary"
    DENSITY = "density"
    STATISTICAL = "statistical"
    ENSEMBLE = "ensemble"


class CombinationStrategy(str, Enum):
    MEAN = "mean"
    WEIGHTED = "weighted"
    LEARNED = "learned"


class Backpressure(str, Enum):
    DROP_OLDEST = "drop_oldest"
    BLOCK = "block"


class Verdict(str, Enum):
    CONFIRMED = "confirmed"  # true positive
    FALSE_POSITIVE = "false_positive"
    MISSED = "missed"  # false negative


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    def __lt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: "Severity") -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, Severity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise InvalidObservation(f"unknown severity: {value!r}") from exc


_SEVERITY_ORDER = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)


@dataclass(frozen=True)
class SourceLocation:
    file_path: str
    line: Optional[int] = None
    column: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"file_path": self.file_path, "line": self.line, "column": self.column}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SourceLocation":
        return cls(
            file_path=str(data.get("file_path", "")),
            line=data.get("line"),
            column=data.get("column"),
        )


@dataclass(frozen=True)
class Observation:
    """A candidate drift item: one architectural change under evaluation."""

    id: str
    timestamp: datetime
    category: str
    severity: Severity
    title: str
    description: str = ""
    location: Optional[SourceLocation] = None
    tags: Tuple[str, ...] = ()
    technology: Optional[str] = None
    suggested_action: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.severity, Severity):
            object.__setattr__(self, "severity", Severity.parse(self.severity))
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags or ()))

    def validate(self) -> None:
        if not self.id or not str(self.id).strip():
            raise InvalidObservation("observation id is required")
        if not self.category or not self.category.strip():
            raise InvalidObservation(f"observation {self.id} has no category")
        if not self.title or not self.title.strip():
            raise InvalidObservation(f"observation {self.id} has no title")
        if not isinstance(self.timestamp, datetime):
            raise InvalidObservation(f"observation {self.id} has no timestamp")
        if self.timestamp.tzinfo is None:
            raise InvalidObservation(f"observation {self.id} timestamp must be timezone-aware")

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "location": self.location.to_dict() if self.location else None,
            "tags": list(self.tags),
            "technology": self.technology,
            "suggested_action": self.suggested_action,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Observation":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=timezone.utc)
        location = data.get("location")
        return cls(
            id=str(data.get("id", "")),
            timestamp=timestamp,
            category=str(data.get("category", "")),
            severity=Severity.parse(data.get("severity", "medium")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "") or ""),
            location=SourceLocation.from_dict(location) if location else None,
            tags=tuple(data.get("tags") or ()),
            technology=data.get("technology"),
            suggested_action=data.get("suggested_action"),
        )


TEMPORAL_FEATURES = (
    "days_since_last",
    "frequency_per_week",
    "seasonal_pattern_strength",
    "drift_velocity",
    "temporal_clustering_score",
    "recency_factor",
)


@dataclass(frozen=True)
class TemporalFeatureSet:
    days_since_last: float = INFINITE_DAYS
    frequency_per_week: float = 0.0
    seasonal_pattern_strength: float = 0.0
    drift_velocity: float = 0.0
    temporal_clustering_score: float = 0.0
    recency_factor: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {name: float(getattr(self, name)) for name in TEMPORAL_FEATURES}


class FeatureVector:
    """Immutable, ordered mapping of feature name to value for one observation."""

    __slots__ = ("_observation_id", "_values")

    def __init__(self, observation_id: str, values: Mapping[str, float]) -> None:
        self._observation_id = observation_id
        self._values = MappingProxyType({name: float(value) for name, value in values.items()})

    @property
    def observation_id(self) -> str:
        return self._observation_id

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._values.keys())

    @property
    def values(self) -> Mapping[str, float]:
        return self._values

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        return self._values.get(name, default)

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return self._observation_id == other._observation_id and dict(self._values) == dict(other._values)

    def __hash__(self) -> int:
        return hash((self._observation_id, tuple(self._values.items())))

    def __repr__(self) -> str:
        return f"FeatureVector({self._observation_id!r}, {dict(self._values)!r})"

    def as_dict(self) -> Dict[str, float]:
        return dict(self._values)

    def subset(self, names: Iterable[str]) -> "FeatureVector":
        return FeatureVector(self._observation_id, {name: self._values[name] for name in names if name in self._values})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "observation_id": self._observation_id,
            "values": {k: (None if math.isinf(v) else v) for k, v in self._values.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureVector":
        values = {k: (INFINITE_DAYS if v is None else float(v)) for k, v in (data.get("values") or {}).items()}
        return cls(str(data.get("observation_id", "")), values)


@dataclass(frozen=True)
class ExplanationFactor:
    kind: str  # temporal | feature | model
    name: str
    weight: float
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "name": self.name, "weight": self.weight, "message": self.message}


@dataclass(frozen=True)
class DriftResult:
    id: str
    observation: Observation
    anomaly_score: float
    confidence: float
    is_drift: bool
    explanation: str
    model_scores: Mapping[str, float] = field(default_factory=dict)
    factors: Tuple[ExplanationFactor, ...] = ()
    suggested_action: Optional[str] = None
    features: Optional[FeatureVector] = None
    model_version: int = 0
    degraded: bool = False
    failure_kind: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def failed(
        cls,
        result_id: str,
        observation: Observation,
        failure_kind: str,
        message: str,
        model_version: int = 0,
        features: Optional[FeatureVector] = None,
    ) -> "DriftResult":
        """Build a degraded result that records why scoring did not happen."""
        return cls(
            id=result_id,
            observation=observation,
            anomaly_score=0.0,
            confidence=0.0,
            is_drift=False,
            explanation=f"detection degraded ({failure_kind}): {message}",
            features=features,
            model_version=model_version,
            degraded=True,
            failure_kind=failure_kind,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "observation": self.observation.to_dict(),
            "anomaly_score": self.anomaly_score,
            "model_scores": dict(self.model_scores),
            "confidence": self.confidence,
            "is_drift": self.is_drift,
            "explanation": self.explanation,
            "factors": [factor.to_dict() for factor in self.factors],
            "suggested_action": self.suggested_action,
            "features": self.features.to_dict() if self.features else None,
            "model_version": self.model_version,
            "degraded": self.degraded,
            "failure_kind": self.failure_kind,
            "created_at": self.created_at.isoformat(),
        }


def severity_counts(results: Iterable[DriftResult]) -> Dict[str, int]:
    counts: Dict[str, int] = {severity.value: 0 for severity in _SEVERITY_ORDER}
    for result in results:
        if result.is_drift:
            counts[result.observation.severity.value] += 1
    return counts
