"""Bounded history of past observations used as the similarity reference set."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from arch_drift.core.drift_config import DEFAULT_MAX_CORPUS_SIZE
from arch_drift.core.models import Observation

logger = logging.getLogger(__name__)


class HistoricalCorpus:
    """
    Insertion-ordered, capped collection of observations.

    Writers serialize on a lock and publish a new immutable tuple; readers call
    :meth:`snapshot` and work from the tuple they got, so an in-flight scoring
    pass never sees a half-applied insertion. Once the cap is exceeded the
    oldest entries are evicted first.
    """

    def __init__(self, cap: int = DEFAULT_MAX_CORPUS_SIZE, observations: Optional[Iterable[Observation]] = None):
        if cap < 1:
            raise ValueError("corpus cap must be at least 1")
        self._cap = cap
        self._lock = threading.RLock()
        self._entries: Tuple[Observation, ...] = ()
        self._evicted = 0
        if observations:
            self.extend(observations)

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def evicted(self) -> int:
        return self._evicted

    def snapshot(self) -> Tuple[Observation, ...]:
        return self._entries

    def add(self, observation: Observation) -> None:
        self.extend([observation])

    def extend(self, observations: Iterable[Observation]) -> None:
        incoming = list(observations)
        if not incoming:
            return
        with self._lock:
            merged = self._entries + tuple(incoming)
            overflow = len(merged) - self._cap
            if overflow > 0:
                merged = merged[overflow:]
                self._evicted += overflow
                logger.debug(f"Corpus evicted {overflow} oldest observations (cap={self._cap})")
            self._entries = merged

    def clear(self) -> None:
        with self._lock:
            self._entries = ()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Observation]:
        return iter(self._entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cap": self._cap,
            "observations": [obs.to_dict() for obs in self._entries],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], cap: Optional[int] = None) -> "HistoricalCorpus":
        observations: List[Observation] = [Observation.from_dict(item) for item in data.get("observations", [])]
        return cls(cap=cap or int(data.get("cap", DEFAULT_MAX_CORPUS_SIZE)), observations=observations)
