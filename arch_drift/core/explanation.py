"""Human-readable rationale for drift results."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from arch_drift.core.models import ExplanationFactor, FeatureVector, Observation, Severity

FALLBACK_TEXT = "anomaly detected, no dominant factor"

MODEL_FLAG_CUTOFF = 0.5
DEVIATION_Z_CUTOFF = 2.0
RECURRING_CUTOFF = 0.5
BURST_CUTOFF = 0.7

# ties in weight rank temporal context first, then feature deviations, then model votes
KIND_ORDER = {"temporal": 0, "feature": 1, "model": 2}

CATEGORY_ACTIONS = {
    "database": "Confirm the datastore choice against the recorded data architecture decision, or record a new decision.",
    "framework": "Check the framework against the approved stack and document the exception if it is intentional.",
    "cloud": "Review the provider change with the infrastructure owners and update the deployment decision record.",
    "authentication": "Have the security owners review the authentication change before merging.",
    "infrastructure": "Align the container or orchestration change with the recorded infrastructure decisions.",
    "messaging": "Verify the messaging system matches the integration decision record.",
    "monitoring": "Confirm the observability tooling matches the agreed monitoring stack.",
    "security": "Escalate to the security owners and record the outcome as a decision.",
}
DEFAULT_ACTION = "Review the change against existing architecture decisions and record a new decision if it is intentional."

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Explanation:
    text: str
    factors: Tuple[ExplanationFactor, ...] = field(default_factory=tuple)


def _humanize(name: str) -> str:
    return name.replace("_", " ")


def suggest_action(observation: Observation) -> str:
    if observation.suggested_action:
        return observation.suggested_action
    action = CATEGORY_ACTIONS.get(observation.category.strip().lower(), DEFAULT_ACTION)
    if observation.severity >= Severity.HIGH:
        return f"Block until reviewed: {action}"
    return action


@dataclass
class ExplanationGenerator:
    max_factors: int = 5

    def explain(
        self,
        model_scores: Mapping[str, float],
        features: Optional[FeatureVector],
        observation: Optional[Observation] = None,
        window_days: int = 30,
        contributions: Optional[Mapping[str, float]] = None,
    ) -> Explanation:
        try:
            factors = self._collect(model_scores, features, observation, window_days, contributions or {})
        except Exception:
            logger.debug("Explanation generation failed, using fallback", exc_info=True)
            factors = []

        factors.sort(key=lambda f: (-f.weight, KIND_ORDER.get(f.kind, len(KIND_ORDER)), f.name))
        factors = factors[: self.max_factors]
        if not factors:
            return Explanation(FALLBACK_TEXT, ())
        return Explanation("; ".join(f.message for f in factors), tuple(factors))

    def _collect(
        self,
        model_scores: Mapping[str, float],
        features: Optional[FeatureVector],
        observation: Optional[Observation],
        window_days: int,
        contributions: Mapping[str, float],
    ) -> List[ExplanationFactor]:
        factors: List[ExplanationFactor] = []
        if features is not None:
            factors.extend(self._temporal_factors(features, observation, window_days))
        for name in sorted(contributions):
            z = contributions[name]
            if z >= DEVIATION_Z_CUTOFF and math.isfinite(z):
                factors.append(
                    ExplanationFactor("feature", name, min(1.0, z / 5.0), f"unusual {_humanize(name)} (z={z:.1f})")
                )
        for name in sorted(model_scores):
            score = model_scores[name]
            if score >= MODEL_FLAG_CUTOFF:
                factors.append(
                    ExplanationFactor("model", name, score, f"{name} model flags this as anomalous ({score:.2f})")
                )
        return factors

    @staticmethod
    def _temporal_factors(
        features: FeatureVector,
        observation: Optional[Observation],
        window_days: int,
    ) -> List[ExplanationFactor]:
        factors: List[ExplanationFactor] = []
        frequency = features.get("frequency_per_week")
        days_since = features.get("days_since_last")
        if frequency and days_since is not None and math.isfinite(days_since):
            count = int(round(frequency * window_days / 7.0))
            if count > 0:
                span = max(1, int(math.ceil(days_since))) if count == 1 else window_days
                label = f"{observation.category}-related " if observation is not None else ""
                plural = "change" if count == 1 else "changes"
                factors.append(
                    ExplanationFactor(
                        "temporal",
                        "frequency_per_week",
                        min(1.0, 0.5 + 0.1 * count),
                        f"high similarity to {count} prior {label}{plural} in the last {span} days",
                    )
                )

        seasonal = features.get("seasonal_pattern_strength") or 0.0
        if seasonal >= RECURRING_CUTOFF:
            factors.append(
                ExplanationFactor(
                    "temporal",
                    "seasonal_pattern_strength",
                    seasonal,
                    f"recurring pattern across quarters (strength {seasonal:.2f})",
                )
            )

        clustering = features.get("temporal_clustering_score") or 0.0
        velocity = features.get("drift_velocity") or 0.0
        if clustering >= BURST_CUTOFF and velocity > 0:
            factors.append(
                ExplanationFactor(
                    "temporal",
                    "temporal_clustering_score",
                    clustering,
                    f"burst of changes ({velocity:.2f} per day)",
                )
            )
        return factors
