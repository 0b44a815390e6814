"""Realtime pipeline: watch files, debounce changes, score them and publish events."""

from .cache import CacheEntry, CacheStats, ResultCache, fingerprint
from .events import DriftEvent, EventBus, PathErrorEvent, PathStateEvent, StatusEvent, Subscription
from .watcher import PathState, PathWatch, WatcherHandler
from .pipeline import RealtimePipeline, WatchHandle

__all__ = [
    "CacheEntry",
    "CacheStats",
    "DriftEvent",
    "EventBus",
    "PathErrorEvent",
    "PathState",
    "PathStateEvent",
    "PathWatch",
    "RealtimePipeline",
    "ResultCache",
    "StatusEvent",
    "Subscription",
    "WatchHandle",
    "WatcherHandler",
    "fingerprint",
]
