"""JSON persistence for the historical corpus and trained model state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.errors import IncompatibleVersion
from arch_drift.core.models import FeatureVector, ModelKind
from arch_drift.core.training import ModelState, TrainingPipeline, TrainingSample

if TYPE_CHECKING:
    from arch_drift.core.drift_analyzer import DetectionSession

CORPUS_FORMAT = "arch-drift-corpus"
CORPUS_VERSION = 1
STATE_FORMAT = "arch-drift-model-state"
STATE_VERSION = 2  # v1 stored bare feature vectors without labels or weights

CORPUS_FILE = "corpus.json"
STATE_FILE = "model_state.json"

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


def _check_envelope(data: Any, expected_format: str, supported: int, what: str) -> int:
    if not isinstance(data, dict) or data.get("format") != expected_format:
        found = data.get("format") if isinstance(data, dict) else type(data).__name__
        raise IncompatibleVersion(found, supported, what=what)
    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1 or version > supported:
        raise IncompatibleVersion(version, supported, what=what)
    return version


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    tmp_path.replace(path)


def corpus_to_dict(corpus: HistoricalCorpus) -> Dict[str, Any]:
    return {"format": CORPUS_FORMAT, "version": CORPUS_VERSION, **corpus.to_dict()}


def corpus_from_dict(data: Any, cap: Optional[int] = None) -> HistoricalCorpus:
    _check_envelope(data, CORPUS_FORMAT, CORPUS_VERSION, "corpus")
    return HistoricalCorpus.from_dict(data, cap=cap)


def save_corpus(corpus: HistoricalCorpus, path: PathLike) -> None:
    _write_json(Path(path), corpus_to_dict(corpus))
    logger.info(f"Saved corpus with {len(corpus)} observations to {path}")


def load_corpus(path: PathLike, cap: Optional[int] = None) -> HistoricalCorpus:
    corpus = corpus_from_dict(_read_json(Path(path)), cap=cap)
    logger.info(f"Loaded corpus with {len(corpus)} observations from {path}")
    return corpus


def _sample_to_dict(sample: TrainingSample) -> Dict[str, Any]:
    return {
        "sample_id": sample.sample_id,
        "label": sample.label,
        "weight": sample.weight,
        "features": sample.features.to_dict(),
    }


def state_to_dict(state: ModelState) -> Dict[str, Any]:
    """
    Serialize a model state.

    Fitted estimators are not stored. The samples, their weights and the
    ensemble weights are, and refitting them with the seeded estimators
    reproduces the same scores.
    """
    return {
        "format": STATE_FORMAT,
        "version": STATE_VERSION,
        "model_version": state.version,
        "model_kind": state.model_kind.value,
        "feature_names": list(state.feature_names),
        "trained_at": state.trained_at.isoformat(),
        "ensemble_weights": dict(state.ensemble_weights),
        "samples": [_sample_to_dict(sample) for sample in state.samples],
    }


def _migrate_v1(data: Dict[str, Any]) -> Dict[str, Any]:
    migrated = dict(data)
    migrated["samples"] = [
        {"sample_id": vector.get("observation_id") or f"sample-{index}", "label": None, "weight": 1.0, "features": vector}
        for index, vector in enumerate(data.get("vectors", []))
    ]
    migrated.setdefault("ensemble_weights", {})
    migrated["version"] = STATE_VERSION
    logger.info(f"Migrated model state from format v1 ({len(migrated['samples'])} samples)")
    return migrated


def samples_from_dict(data: Any) -> List[TrainingSample]:
    version = _check_envelope(data, STATE_FORMAT, STATE_VERSION, "model state")
    if version == 1:
        data = _migrate_v1(data)
    return [
        TrainingSample(
            sample_id=str(item["sample_id"]),
            features=FeatureVector.from_dict(item["features"]),
            label=item.get("label"),
            weight=float(item.get("weight", 1.0)),
        )
        for item in data.get("samples", [])
    ]


def state_from_dict(data: Any, config: Optional[DriftConfig] = None) -> ModelState:
    samples = samples_from_dict(data)
    config = config or DriftConfig()
    stored_kind = ModelKind(data.get("model_kind", config.model_kind.value))
    if stored_kind is not config.model_kind:
        config = config.model_copy(update={"model_kind": stored_kind})
    pipeline = TrainingPipeline(config)
    return pipeline.restore(samples, int(data.get("model_version", 1)), data.get("ensemble_weights") or None)


def save_model_state(state: ModelState, path: PathLike) -> None:
    _write_json(Path(path), state_to_dict(state))
    logger.info(f"Saved model state v{state.version} to {path}")


def load_model_state(path: PathLike, config: Optional[DriftConfig] = None) -> ModelState:
    return state_from_dict(_read_json(Path(path)), config)


def save_session(session: "DetectionSession", directory: PathLike) -> None:
    target = Path(directory)
    save_corpus(session.corpus, target / CORPUS_FILE)
    if session.state is not None:
        save_model_state(session.state, target / STATE_FILE)


def load_session(session: "DetectionSession", directory: PathLike) -> None:
    """Load corpus and model state into an existing session; errors propagate to the caller."""
    source = Path(directory)
    corpus_path = source / CORPUS_FILE
    state_path = source / STATE_FILE

    if corpus_path.exists():
        loaded = load_corpus(corpus_path, cap=session.corpus.cap)
        session.corpus.clear()
        session.corpus.extend(loaded.snapshot())

    if state_path.exists():
        data = _read_json(state_path)
        samples = samples_from_dict(data)
        stored_kind = data.get("model_kind")
        if stored_kind and stored_kind != session.config.model_kind.value:
            logger.warning(
                f"Stored model kind {stored_kind} differs from configured {session.config.model_kind.value}; "
                "refitting with the configured kind"
            )
        session.training.restore(samples, int(data.get("model_version", 1)), data.get("ensemble_weights") or None)
    logger.info(f"Loaded session state from {source}")
