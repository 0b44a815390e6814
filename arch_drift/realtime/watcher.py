"""Per-path change state machine and the watchdog bridge that feeds it."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, Optional

from watchdog.events import FileSystemEventHandler

if TYPE_CHECKING:
    from arch_drift.realtime.pipeline import RealtimePipeline

logger = logging.getLogger(__name__)


class PathState(Enum):
    """Lifecycle of one watched path."""
    IDLE = "idle"
    PENDING = "pending"
    EXTRACTING = "extracting"
    SCORING = "scoring"
    EMITTING = "emitting"
    STOPPED = "stopped"


ALLOWED_TRANSITIONS: Dict[PathState, FrozenSet[PathState]] = {
    PathState.IDLE: frozenset({PathState.PENDING, PathState.STOPPED}),
    # back to idle when backpressure drops the queued job
    PathState.PENDING: frozenset({PathState.EXTRACTING, PathState.IDLE, PathState.STOPPED}),
    # a cache hit goes straight from extracting to emitting
    PathState.EXTRACTING: frozenset({PathState.SCORING, PathState.EMITTING, PathState.STOPPED}),
    PathState.SCORING: frozenset({PathState.EMITTING, PathState.STOPPED}),
    PathState.EMITTING: frozenset({PathState.IDLE, PathState.PENDING, PathState.STOPPED}),
    PathState.STOPPED: frozenset(),
}


class InvalidTransition(RuntimeError):
    def __init__(self, path: str, current: PathState, target: PathState):
        super().__init__(f"{path}: cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


@dataclass
class PathWatch:
    path: str
    handle_id: int
    state: PathState = PathState.IDLE
    dirty: bool = False
    generation: int = 0
    changes_seen: int = 0
    queued: bool = False
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def busy(self) -> bool:
        return self.state in (PathState.EXTRACTING, PathState.SCORING, PathState.EMITTING)

    @property
    def stopped(self) -> bool:
        return self.state is PathState.STOPPED

    def transition(self, target: PathState) -> PathState:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(self.path, self.state, target)
        previous = self.state
        self.state = target
        logger.debug(f"{self.path}: {previous.value} -> {target.value}")
        return previous

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def stop(self) -> PathState:
        """Move to the terminal state from anywhere; in-flight work is discarded by generation check."""
        self.cancel_timer()
        previous = self.state
        self.state = PathState.STOPPED
        self.generation += 1
        self.dirty = False
        self.queued = False
        return previous


def _normalize(path: str) -> str:
    return Path(path).as_posix()


def is_watched_file(path: str, extensions: Iterable[str], ignored_patterns: Iterable[str]) -> bool:
    posix = _normalize(path)
    name = Path(posix).name
    # entries are suffixes, exact file names, or globs on the file name
    if not any(name == ext or posix.endswith(ext) or fnmatch.fnmatch(name, ext) for ext in extensions):
        return False
    return not any(fnmatch.fnmatch(posix, pattern) for pattern in ignored_patterns)


class WatcherHandler(FileSystemEventHandler):
    def __init__(self, pipeline: "RealtimePipeline"):
        self.pipeline = pipeline
        self.extensions = list(pipeline.config.watch_extensions)
        self.ignored_patterns = list(pipeline.config.ignored_patterns)

    def _forward(self, src_path: str) -> None:
        if not is_watched_file(src_path, self.extensions, self.ignored_patterns):
            logger.debug(f"Ignoring change to {src_path}")
            return
        self.pipeline.notify_change(src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self._forward(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._forward(event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self._forward(event.dest_path)
