import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from arch_drift.core.drift_config import (
    DEFAULT_BACKPRESSURE,
    DEFAULT_BOUNDARY_NU,
    DEFAULT_CACHE_MAX_ENTRIES,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_COMBINATION_STRATEGY,
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_DENSITY_NEIGHBORS,
    DEFAULT_ENABLE_STRUCTURAL,
    DEFAULT_ENABLE_TEMPORAL,
    DEFAULT_ENABLE_TEXTUAL,
    DEFAULT_ENABLED_MODELS,
    DEFAULT_FALSE_POSITIVE_WEIGHT_DECAY,
    DEFAULT_IGNORED_PATTERNS,
    DEFAULT_ISOLATION_ESTIMATORS,
    DEFAULT_MAX_CORPUS_SIZE,
    DEFAULT_MAX_TRAINING_SAMPLES,
    DEFAULT_MIN_SAMPLE_WEIGHT,
    DEFAULT_MIN_TRAINING_SAMPLES,
    DEFAULT_MODEL_KIND,
    DEFAULT_MODEL_WEIGHTS,
    DEFAULT_ONLINE_LEARNING,
    DEFAULT_QUEUE_MAXSIZE,
    DEFAULT_RANDOM_SEED,
    DEFAULT_RECORD_OBSERVATIONS,
    DEFAULT_RETRAIN_AFTER_FEEDBACK,
    DEFAULT_RETRAIN_INTERVAL_SECONDS,
    DEFAULT_SCORING_TIMEOUT_SECONDS,
    DEFAULT_STATISTICAL_THRESHOLD,
    DEFAULT_STATUS_INTERVAL_SECONDS,
    DEFAULT_TEMPORAL_WINDOW_DAYS,
    DEFAULT_USE_FILE_OBSERVER,
    DEFAULT_WATCH_EXTENSIONS,
    DEFAULT_WORKER_COUNT,
)
from arch_drift.core.models import Backpressure, CombinationStrategy, ModelKind

DEFAULT_CONFIG_PATH = "archdrift.config.yaml"

logger = logging.getLogger(__name__)


class DriftConfig(BaseModel):
    """
    Configuration consumed by the detection engine.

    The engine never reads files or the environment itself; callers build a
    ``DriftConfig`` (directly or through :func:`load_config`) and pass it in.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True, protected_namespaces=())

    # Models
    model_kind: ModelKind = ModelKind(DEFAULT_MODEL_KIND)
    enabled_models: List[ModelKind] = Field(
        default_factory=lambda: [ModelKind(name) for name in DEFAULT_ENABLED_MODELS]
    )
    combination_strategy: CombinationStrategy = CombinationStrategy(DEFAULT_COMBINATION_STRATEGY)
    model_weights: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_MODEL_WEIGHTS))
    random_seed: int = DEFAULT_RANDOM_SEED
    isolation_estimators: int = Field(default=DEFAULT_ISOLATION_ESTIMATORS, ge=1)
    boundary_nu: float = Field(default=DEFAULT_BOUNDARY_NU, gt=0.0, le=1.0)
    density_neighbors: int = Field(default=DEFAULT_DENSITY_NEIGHBORS, ge=1)
    statistical_threshold: float = Field(default=DEFAULT_STATISTICAL_THRESHOLD, gt=0.0)

    # Detection
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0.0, le=1.0)
    record_observations: bool = DEFAULT_RECORD_OBSERVATIONS
    worker_count: int = Field(default=DEFAULT_WORKER_COUNT, ge=1)
    scoring_timeout_seconds: float = Field(default=DEFAULT_SCORING_TIMEOUT_SECONDS, gt=0.0)

    # Features
    enable_temporal: bool = DEFAULT_ENABLE_TEMPORAL
    enable_textual: bool = DEFAULT_ENABLE_TEXTUAL
    enable_structural: bool = DEFAULT_ENABLE_STRUCTURAL
    temporal_window_days: int = Field(default=DEFAULT_TEMPORAL_WINDOW_DAYS, ge=1)

    # Corpus and training
    max_corpus_size: int = Field(default=DEFAULT_MAX_CORPUS_SIZE, ge=1)
    max_training_samples: int = Field(default=DEFAULT_MAX_TRAINING_SAMPLES, ge=1)
    min_training_samples: int = Field(default=DEFAULT_MIN_TRAINING_SAMPLES, ge=2)
    online_learning: bool = DEFAULT_ONLINE_LEARNING
    retrain_after_feedback: int = Field(default=DEFAULT_RETRAIN_AFTER_FEEDBACK, ge=1)
    retrain_interval_seconds: float = Field(default=DEFAULT_RETRAIN_INTERVAL_SECONDS, ge=0.0)
    false_positive_weight_decay: float = Field(default=DEFAULT_FALSE_POSITIVE_WEIGHT_DECAY, gt=0.0, le=1.0)
    min_sample_weight: float = Field(default=DEFAULT_MIN_SAMPLE_WEIGHT, gt=0.0, le=1.0)

    # Realtime
    debounce_seconds: float = Field(default=DEFAULT_DEBOUNCE_SECONDS, ge=0.0)
    cache_ttl_seconds: float = Field(default=DEFAULT_CACHE_TTL_SECONDS, gt=0.0)
    cache_max_entries: int = Field(default=DEFAULT_CACHE_MAX_ENTRIES, ge=1)
    queue_maxsize: int = Field(default=DEFAULT_QUEUE_MAXSIZE, ge=1)
    backpressure: Backpressure = Backpressure(DEFAULT_BACKPRESSURE)
    status_interval_seconds: float = Field(default=DEFAULT_STATUS_INTERVAL_SECONDS, gt=0.0)
    watch_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_WATCH_EXTENSIONS))
    ignored_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_PATTERNS))
    use_file_observer: bool = DEFAULT_USE_FILE_OBSERVER

    def ensemble_members(self) -> List[ModelKind]:
        members = [kind for kind in self.enabled_models if kind is not ModelKind.ENSEMBLE]
        # preserve order, drop duplicates
        return list(dict.fromkeys(members))

    def weight_for(self, kind: ModelKind) -> float:
        return float(self.model_weights.get(kind.value, 1.0))


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> DriftConfig:
    """
    Load configuration from a YAML file and overrides.

    Priority:
    1. Overrides (values that are not None)
    2. Config file (explicit path, or ``archdrift.config.yaml`` in the cwd)
    3. Default values

    Args:
        config_path: Path to the YAML config file.
        overrides: Mapping of field names to override values.

    Returns:
        DriftConfig: The resolved, validated configuration.
    """
    config_data: Dict[str, Any] = {}

    target_path = Path(config_path if config_path else DEFAULT_CONFIG_PATH)
    if target_path.exists() and target_path.is_file():
        with open(target_path, "r", encoding="utf-8") as f:
            file_data = yaml.safe_load(f)
        if file_data:
            if not isinstance(file_data, dict):
                raise ValueError(f"Config file {target_path} must contain a mapping, got {type(file_data).__name__}")
            config_data.update(file_data)
        logger.info(f"Loaded configuration from {target_path}")
    elif config_path:
        logger.warning(f"Config file not found at explicit path: {config_path}")
    else:
        logger.debug(f"No config file found at {DEFAULT_CONFIG_PATH}, using defaults.")

    if overrides:
        for key, value in overrides.items():
            if value is not None:
                config_data[key] = value

    return DriftConfig(**config_data)
