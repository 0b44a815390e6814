"""Events emitted by the realtime pipeline and the bus that delivers them."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple, Union

from arch_drift.core.models import DriftResult

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DriftEvent:
    path: str
    result: DriftResult
    from_cache: bool = False
    emitted_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class StatusEvent:
    counts_by_severity: Dict[str, int]
    active_paths: int
    queue_depth: int
    dropped_jobs: int
    processed_jobs: int
    cache: Dict[str, float]
    emitted_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class PathErrorEvent:
    path: str
    error: str
    emitted_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class PathStateEvent:
    path: str
    previous: str
    current: str
    emitted_at: datetime = field(default_factory=_now)


PipelineEvent = Union[DriftEvent, StatusEvent, PathErrorEvent, PathStateEvent]
Subscriber = Callable[[PipelineEvent], None]


@dataclass(frozen=True)
class Subscription:
    id: int
    event_types: Optional[tuple] = None

    def accepts(self, event: PipelineEvent) -> bool:
        return self.event_types is None or isinstance(event, self.event_types)


class EventBus:
    """
    Push-based fan-out of pipeline events.

    Callbacks run synchronously in the publisher's context. A failing
    subscriber is logged and skipped so it cannot break delivery to others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._callbacks: Dict[int, tuple] = {}

    def subscribe(self, callback: Subscriber, event_types: Optional[tuple] = None) -> Subscription:
        subscription = Subscription(next(self._ids), tuple(event_types) if event_types else None)
        with self._lock:
            self._callbacks[subscription.id] = (subscription, callback)
        return subscription

    def subscribe_queue(
        self,
        event_types: Optional[tuple] = None,
        maxsize: int = 0,
    ) -> Tuple[Subscription, asyncio.Queue]:
        """Deliver events into an asyncio.Queue; must be called from the loop that consumes it."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

        def _enqueue(event: PipelineEvent) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping {type(event).__name__}")

        return self.subscribe(_enqueue, event_types), queue

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            return self._callbacks.pop(subscription.id, None) is not None

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    def publish(self, event: PipelineEvent) -> int:
        with self._lock:
            targets: List[tuple] = list(self._callbacks.values())
        delivered = 0
        for subscription, callback in targets:
            if not subscription.accepts(event):
                continue
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.error(f"Subscriber {subscription.id} failed handling {type(event).__name__}", exc_info=True)
        return delivered
