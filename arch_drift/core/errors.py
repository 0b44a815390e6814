"""Error taxonomy for the drift detection engine."""

from __future__ import annotations

from typing import Iterable, List, Optional


class DriftEngineError(Exception):
    """Base class for all engine errors."""

    kind = "error"


class ModelNotTrained(DriftEngineError):
    kind = "model_not_trained"

    def __init__(self, message: str = "model has not been trained") -> None:
        super().__init__(message)


class FeatureMismatch(DriftEngineError):
    kind = "feature_mismatch"

    def __init__(self, missing: Iterable[str], message: Optional[str] = None) -> None:
        self.missing: List[str] = sorted(missing)
        super().__init__(message or f"feature vector is missing trained features: {', '.join(self.missing)}")


class InsufficientData(DriftEngineError):
    kind = "insufficient_data"

    def __init__(self, required: int, actual: int) -> None:
        self.required = required
        self.actual = actual
        super().__init__(f"need at least {required} training samples, got {actual}")


class IncompatibleVersion(DriftEngineError):
    kind = "incompatible_version"

    def __init__(self, found: object, supported: int, what: str = "state") -> None:
        self.found = found
        self.supported = supported
        super().__init__(f"cannot load {what} format version {found!r} (supported up to {supported})")


class ScoringTimeout(DriftEngineError):
    kind = "timeout"

    def __init__(self, budget_seconds: float) -> None:
        self.budget_seconds = budget_seconds
        super().__init__(f"scoring exceeded its {budget_seconds:.2f}s budget")


class InvalidObservation(DriftEngineError):
    kind = "invalid_observation"


class DetectionCancelled(DriftEngineError):
    """Raised when a cancellation flag is observed between processing steps.

    ``completed`` holds the results finished before cancellation was seen.
    """

    kind = "cancelled"

    def __init__(self, completed: Optional[list] = None) -> None:
        self.completed = list(completed or [])
        super().__init__("detection cancelled")
