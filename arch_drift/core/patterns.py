"""Built-in technology detection patterns and the file-to-observation builder."""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Pattern, Sequence, Tuple

from arch_drift.core.models import Observation, Severity, SourceLocation

SOURCE_GLOBS = ("*.rs", "*.js", "*.ts", "*.py")
MESSAGING_GLOBS = ("*.rs", "*.js", "*.ts", "*.py", "*.java")
MANIFEST_GLOBS = ("Cargo.toml", "requirements*.txt", "pyproject.toml", "package.json")


@dataclass(frozen=True)
class DetectionPattern:
    name: str
    file_globs: Tuple[str, ...]
    content_pattern: str
    category: str
    technology: str
    severity: Severity = Severity.MEDIUM
    _compiled: Optional[Pattern] = field(default=None, init=False, repr=False, compare=False)

    @property
    def key(self) -> str:
        return re.sub(r"[^a-z0-9]+", "-", self.name.lower()).strip("-")

    @property
    def regex(self) -> Pattern:
        if self._compiled is None:
            object.__setattr__(self, "_compiled", re.compile(self.content_pattern))
        return self._compiled

    def matches_file(self, path: str) -> bool:
        name = Path(path).name
        return any(fnmatch.fnmatch(name, glob) for glob in self.file_globs)


DEFAULT_PATTERNS: Tuple[DetectionPattern, ...] = (
    DetectionPattern("PostgreSQL Database", MANIFEST_GLOBS, r"(postgres|psycopg|diesel.*postgres)", "database", "postgresql", Severity.HIGH),
    DetectionPattern("MySQL Database", MANIFEST_GLOBS, r"(mysql|diesel.*mysql)", "database", "mysql", Severity.HIGH),
    DetectionPattern("SQLite Database", MANIFEST_GLOBS, r"(sqlite|rusqlite)", "database", "sqlite", Severity.HIGH),
    DetectionPattern("MongoDB Database", MANIFEST_GLOBS, r"(mongodb|pymongo|bson)", "database", "mongodb", Severity.HIGH),
    DetectionPattern("Redis Cache", MANIFEST_GLOBS, r"(redis|darkredis)", "database", "redis", Severity.HIGH),
    DetectionPattern("Axum Web Framework", ("Cargo.toml",), r"axum\s*=", "framework", "axum"),
    DetectionPattern("Actix Web Framework", ("Cargo.toml",), r"actix-web\s*=", "framework", "actix-web"),
    DetectionPattern("React Framework", ("package.json",), r'"react"\s*:', "framework", "react"),
    DetectionPattern("Vue.js Framework", ("package.json",), r'"vue"\s*:', "framework", "vue"),
    DetectionPattern("Angular Framework", ("package.json",), r'"@angular/core"\s*:', "framework", "angular"),
    DetectionPattern("Express.js Framework", ("package.json",), r'"express"\s*:', "framework", "express"),
    DetectionPattern("Next.js Framework", ("package.json",), r'"next"\s*:', "framework", "nextjs"),
    DetectionPattern("Django Framework", ("requirements*.txt", "pyproject.toml"), r"[Dd]jango", "framework", "django"),
    DetectionPattern("Flask Framework", ("requirements*.txt", "pyproject.toml"), r"[Ff]lask", "framework", "flask"),
    DetectionPattern("FastAPI Framework", ("requirements*.txt", "pyproject.toml"), r"fastapi", "framework", "fastapi"),
    DetectionPattern("AWS Provider", ("*.tf",), r'provider\s+"aws"', "cloud", "aws", Severity.HIGH),
    DetectionPattern("Azure Provider", ("*.tf",), r'provider\s+"azurerm"', "cloud", "azure", Severity.HIGH),
    DetectionPattern("Google Cloud Provider", ("*.tf",), r'provider\s+"google"', "cloud", "gcp", Severity.HIGH),
    DetectionPattern("JWT Authentication", SOURCE_GLOBS, r"(jsonwebtoken|jwt|JWT)", "authentication", "jwt", Severity.HIGH),
    DetectionPattern("OAuth Implementation", SOURCE_GLOBS, r"(oauth|OAuth|passport)", "authentication", "oauth", Severity.HIGH),
    DetectionPattern("Docker Usage", ("Dockerfile", "*.dockerfile"), r"^FROM\s+", "infrastructure", "docker"),
    DetectionPattern("Kubernetes Deployment", ("*.yaml", "*.yml"), r"apiVersion:\s*(apps/v1|v1)", "infrastructure", "kubernetes"),
    DetectionPattern("RabbitMQ", MESSAGING_GLOBS, r"(rabbitmq|amqp)", "messaging", "rabbitmq"),
    DetectionPattern("Apache Kafka", MESSAGING_GLOBS, r"(kafka|rdkafka)", "messaging", "kafka"),
    DetectionPattern("Prometheus Metrics", SOURCE_GLOBS, r"prometheus", "monitoring", "prometheus", Severity.LOW),
    DetectionPattern("OpenTelemetry", SOURCE_GLOBS, r"opentelemetry", "monitoring", "opentelemetry", Severity.LOW),
)


@dataclass
class ObservationBuilder:
    """Turns the content of a changed file into observations, one per matching pattern."""

    patterns: Sequence[DetectionPattern] = DEFAULT_PATTERNS

    def build(self, path: str, content: str, timestamp: Optional[datetime] = None) -> List[Observation]:
        timestamp = timestamp or datetime.now(timezone.utc)
        stamp = int(timestamp.timestamp() * 1000)
        lines = content.splitlines()
        observations: List[Observation] = []

        for pattern in self.patterns:
            if not pattern.matches_file(path):
                continue
            for line_number, line in enumerate(lines, start=1):
                match = pattern.regex.search(line)
                if not match:
                    continue
                observations.append(
                    Observation(
                        id=f"{pattern.key}:{path}:{stamp}",
                        timestamp=timestamp,
                        category=pattern.category,
                        severity=pattern.severity,
                        title=f"{pattern.name} detected in {Path(path).name}",
                        description=f"{pattern.technology} usage found: {line.strip()[:200]}",
                        location=SourceLocation(file_path=path, line=line_number, column=match.start() + 1),
                        tags=(pattern.technology, pattern.category),
                        technology=pattern.technology,
                    )
                )
                break
        return observations
