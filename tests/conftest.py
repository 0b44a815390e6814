"""Shared builders for drift engine tests."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest

from arch_drift.core.config import DriftConfig
from arch_drift.core.corpus import HistoricalCorpus
from arch_drift.core.drift_features import FeatureExtractor
from arch_drift.core.models import FeatureVector, Observation, Severity, SourceLocation

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

BASELINE_TOPICS = [
    ("framework", "low", "Bump frontend router version", "Routine upgrade of the router package for the web client."),
    ("configuration", "low", "Tune logging verbosity", "Lower the default log level in staging settings."),
    ("performance", "medium", "Cache rendered templates", "Memoize template rendering for the dashboard pages."),
    ("pattern_violation", "medium", "Inline helper in controller", "Controller now formats dates itself instead of the shared helper."),
    ("configuration", "medium", "Rename environment variables", "Consistent prefix for deployment settings."),
    ("framework", "medium", "Adopt new form validation hooks", "Form components switch to the validation hooks shipped upstream."),
    ("other", "low", "Reorganise test fixtures", "Fixtures moved next to the suites that use them."),
    ("performance", "low", "Batch notification emails", "Send notification emails in groups of fifty."),
]

SCOPES = ["the api layer", "a helper module", "the build scripts", "several tests", "the admin views"]


def build_observation(
    obs_id: str,
    category: str = "database",
    severity: str = "medium",
    title: str = "Add PostgreSQL connection pool",
    description: str = "Introduce a postgres database connection pool for the service.",
    days: float = 0.0,
    file_path: str = "src/storage/pool.py",
    tags=(),
) -> Observation:
    return Observation(
        id=obs_id,
        timestamp=BASE_TIME + timedelta(days=days),
        category=category,
        severity=Severity.parse(severity),
        title=title,
        description=description,
        location=SourceLocation(file_path=file_path) if file_path else None,
        tags=tuple(tags),
    )


def build_baseline(count: int = 40) -> List[Observation]:
    observations = []
    for index in range(count):
        category, severity, title, description = BASELINE_TOPICS[index % len(BASELINE_TOPICS)]
        scope = SCOPES[index % len(SCOPES)]
        observations.append(
            build_observation(
                f"base-{index}",
                category=category,
                severity=severity,
                title=f"{title} round {index}",
                description=f"{description} Change {index} touches {scope}." + " Follow-up noted." * (index % 3),
                days=-200 + index * 3,
                file_path="/".join(["src"] + ["pkg"] * (index % 4) + [f"module_{index}.py"]),
            )
        )
    return observations


def build_baseline_vectors(config: DriftConfig, count: int = 40) -> List[FeatureVector]:
    """Vectors for the baseline observations, each extracted without any history."""
    extractor = FeatureExtractor(HistoricalCorpus(), config)
    return [extractor.extract(obs, ()) for obs in build_baseline(count)]


@pytest.fixture
def make_observation() -> Callable[..., Observation]:
    return build_observation


@pytest.fixture
def baseline_observations() -> List[Observation]:
    return build_baseline()


@pytest.fixture
def baseline_vectors() -> Callable[..., List[FeatureVector]]:
    return build_baseline_vectors


@pytest.fixture
def quiet_config() -> DriftConfig:
    """Config that keeps scoring side-effect free: no corpus writes, no automatic retraining."""
    return DriftConfig(record_observations=False, online_learning=False, use_file_observer=False)
