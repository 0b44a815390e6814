"""
Drift detection engine core.

Feature extraction (temporal, textual, structural), the anomaly model
ensemble, training with online feedback, and the orchestration that turns
observations into explained DriftResults.
"""

# Import core data models
from .models import (
    Backpressure,
    CombinationStrategy,
    DriftResult,
    ExplanationFactor,
    FeatureVector,
    ModelKind,
    Observation,
    Severity,
    SourceLocation,
    TemporalFeatureSet,
    Verdict,
)
from .errors import (
    DetectionCancelled,
    DriftEngineError,
    FeatureMismatch,
    IncompatibleVersion,
    InsufficientData,
    InvalidObservation,
    ModelNotTrained,
    ScoringTimeout,
)
from .config import DriftConfig, load_config
from .corpus import HistoricalCorpus
from .similarity import SimilarityScorer, similarity
from .temporal import TemporalAnalyzer
from .drift_features import FeatureExtractor
from .anomaly_models import (
    BoundaryModel,
    DensityModel,
    EnsembleModel,
    IsolationModel,
    StatisticalModel,
    create_model,
)
from .training import DetectionMetrics, ModelState, TrainingMetrics, TrainingPipeline
from .explanation import Explanation, ExplanationGenerator
from .drift_analyzer import CancellationToken, DetectionSession, DriftOrchestrator, detect
from .patterns import DEFAULT_PATTERNS, DetectionPattern, ObservationBuilder

__all__ = [
    "Backpressure",
    "BoundaryModel",
    "CancellationToken",
    "CombinationStrategy",
    "DEFAULT_PATTERNS",
    "DensityModel",
    "DetectionCancelled",
    "DetectionMetrics",
    "DetectionPattern",
    "DetectionSession",
    "DriftConfig",
    "DriftEngineError",
    "DriftOrchestrator",
    "DriftResult",
    "EnsembleModel",
    "Explanation",
    "ExplanationFactor",
    "ExplanationGenerator",
    "FeatureExtractor",
    "FeatureMismatch",
    "FeatureVector",
    "HistoricalCorpus",
    "IncompatibleVersion",
    "InsufficientData",
    "InvalidObservation",
    "IsolationModel",
    "ModelKind",
    "ModelNotTrained",
    "ModelState",
    "Observation",
    "ObservationBuilder",
    "ScoringTimeout",
    "Severity",
    "SimilarityScorer",
    "SourceLocation",
    "StatisticalModel",
    "TemporalAnalyzer",
    "TemporalFeatureSet",
    "TrainingMetrics",
    "TrainingPipeline",
    "Verdict",
    "create_model",
    "detect",
    "load_config",
    "similarity",
]
