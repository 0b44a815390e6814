"""Realtime drift detection: file changes in, DriftEvents out."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import watchdog.observers

from arch_drift.core.config import DriftConfig
from arch_drift.core.drift_analyzer import CancellationToken, DetectionSession, new_result_id
from arch_drift.core.errors import DetectionCancelled, ScoringTimeout
from arch_drift.core.models import Backpressure, DriftResult, Observation, severity_counts
from arch_drift.core.patterns import ObservationBuilder
from arch_drift.realtime.cache import ResultCache, fingerprint
from arch_drift.realtime.events import (
    DriftEvent,
    EventBus,
    PathErrorEvent,
    PathStateEvent,
    StatusEvent,
    Subscriber,
    Subscription,
)
from arch_drift.realtime.watcher import PathState, PathWatch, WatcherHandler, is_watched_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchHandle:
    id: int
    paths: Tuple[str, ...]
    directories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class _Job:
    path: str
    generation: int


@dataclass
class _HandleRecord:
    handle: WatchHandle
    observed: List[object] = field(default_factory=list)


def _normalize(path: str) -> str:
    return str(Path(path).resolve())


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")


def _consume_result(task: "asyncio.Future") -> None:
    # abandoned scoring tasks finish with DetectionCancelled nobody awaits
    if not task.cancelled():
        task.exception()


class RealtimePipeline:
    """
    Drives a DetectionSession from file-change notifications.

    Every watched file has its own PathWatch state machine. Debounce timers,
    the bounded job queue and the fixed worker tasks all live on one asyncio
    loop; scoring runs in a worker thread under a timeout so a slow model
    never stalls the loop.
    """

    def __init__(
        self,
        session: DetectionSession,
        config: Optional[DriftConfig] = None,
        builder: Optional[ObservationBuilder] = None,
        cache: Optional[ResultCache] = None,
        bus: Optional[EventBus] = None,
    ):
        self.session = session
        self.config = config or session.config
        self.builder = builder or ObservationBuilder()
        self.cache = cache or ResultCache(self.config.cache_ttl_seconds, self.config.cache_max_entries)
        self.bus = bus or EventBus()

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.queue: Optional[asyncio.Queue] = None
        self.workers: List[asyncio.Task] = []
        self.running = False

        self._watches: Dict[str, PathWatch] = {}
        self._handles: Dict[int, _HandleRecord] = {}
        self._handle_ids = itertools.count(1)
        self._observer = None
        self._status_task: Optional[asyncio.Task] = None
        self._active_tokens: set = set()
        self._blocked_puts: set = set()
        self._severity_counts: Counter = Counter(severity_counts(()))
        self.dropped_jobs = 0
        self.processed_jobs = 0

    # Lifecycle

    async def start(self) -> None:
        if self.running:
            return
        self.loop = asyncio.get_running_loop()
        self.queue = asyncio.Queue(maxsize=self.config.queue_maxsize)
        self.running = True
        for index in range(self.config.worker_count):
            self.workers.append(asyncio.create_task(self._worker(), name=f"drift-worker-{index}"))
        self._status_task = asyncio.create_task(self._status_loop(), name="drift-status")
        logger.info(f"Started realtime pipeline with {self.config.worker_count} workers")

    async def close(self) -> None:
        """Cancel the whole session; in-flight scoring exits at its next checkpoint."""
        if not self.running:
            return
        self.running = False
        for record in list(self._handles.values()):
            self.stop_watch(record.handle)
        for token in list(self._active_tokens):
            token.cancel()

        if self._observer is not None:
            observer = self._observer
            self._observer = None
            observer.stop()
            await asyncio.to_thread(observer.join)

        tasks = list(self.workers) + list(self._blocked_puts)
        if self._status_task is not None:
            tasks.append(self._status_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.workers = []
        self._status_task = None
        logger.info("Stopped realtime pipeline")

    async def __aenter__(self) -> "RealtimePipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Watches

    def start_watch(self, paths: Iterable[str]) -> WatchHandle:
        if not self.running:
            raise RuntimeError("pipeline is not running; call start() first")
        files: List[str] = []
        directories: List[str] = []
        for raw in paths:
            path = _normalize(raw)
            (directories if Path(path).is_dir() else files).append(path)

        handle = WatchHandle(next(self._handle_ids), tuple(files), tuple(directories))
        record = _HandleRecord(handle)
        self._handles[handle.id] = record
        for path in files:
            self._register(path, handle.id)

        if self.config.use_file_observer:
            self._observe(record)
        logger.info(f"Watching {len(files)} files and {len(directories)} directories (handle {handle.id})")
        return handle

    def stop_watch(self, handle: WatchHandle) -> None:
        record = self._handles.pop(handle.id, None)
        if record is None:
            return
        for path, watch in list(self._watches.items()):
            if watch.handle_id != handle.id:
                continue
            previous = watch.stop()
            self._publish_state(watch, previous)
            del self._watches[path]
        if self._observer is not None:
            for observed in record.observed:
                self._observer.unschedule(observed)
        logger.info(f"Stopped watch handle {handle.id}")

    def notify_change(self, path: str) -> None:
        """Report a change to ``path``. Safe to call from any thread."""
        loop = self.loop
        if loop is None or loop.is_closed() or not self.running:
            logger.debug(f"Ignoring change to {path}: pipeline not running")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._on_change(path)
        else:
            loop.call_soon_threadsafe(self._on_change, path)

    def watch_state(self, path: str) -> Optional[PathState]:
        watch = self._watches.get(_normalize(path))
        return watch.state if watch else None

    # Subscriptions and status

    def subscribe(self, callback: Subscriber, event_types: Optional[tuple] = None) -> Subscription:
        return self.bus.subscribe(callback, event_types)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.bus.unsubscribe(subscription)

    def status(self) -> StatusEvent:
        return StatusEvent(
            counts_by_severity=dict(self._severity_counts),
            active_paths=sum(1 for w in self._watches.values() if not w.stopped),
            queue_depth=self.queue.qsize() if self.queue is not None else 0,
            dropped_jobs=self.dropped_jobs,
            processed_jobs=self.processed_jobs,
            cache=self.cache.stats().to_dict(),
        )

    async def wait_idle(self, timeout: float = 5.0, poll_interval: float = 0.01) -> None:
        """Wait until no path has pending or in-flight work."""

        async def _poll() -> None:
            while True:
                queue_empty = self.queue is None or self.queue.empty()
                if queue_empty and all(w.state in (PathState.IDLE, PathState.STOPPED) for w in self._watches.values()):
                    return
                await asyncio.sleep(poll_interval)

        await asyncio.wait_for(_poll(), timeout=timeout)

    # Internals

    def _register(self, path: str, handle_id: int) -> PathWatch:
        existing = self._watches.get(path)
        if existing is not None and not existing.stopped:
            return existing
        watch = PathWatch(path=path, handle_id=handle_id)
        self._watches[path] = watch
        return watch

    def _observe(self, record: _HandleRecord) -> None:
        if self._observer is None:
            self._observer = watchdog.observers.Observer()
            self._observer.start()
        handler = WatcherHandler(self)
        targets = {str(Path(p).parent): False for p in record.handle.paths}
        targets.update({d: True for d in record.handle.directories})
        for directory, recursive in targets.items():
            record.observed.append(self._observer.schedule(handler, directory, recursive=recursive))

    def _lookup(self, path: str) -> Optional[PathWatch]:
        watch = self._watches.get(path)
        if watch is not None:
            return watch
        for record in self._handles.values():
            for directory in record.handle.directories:
                if path.startswith(directory.rstrip("/") + "/") and is_watched_file(
                    path, self.config.watch_extensions, self.config.ignored_patterns
                ):
                    return self._register(path, record.handle.id)
        return None

    def _on_change(self, raw_path: str) -> None:
        watch = self._lookup(_normalize(raw_path))
        if watch is None or watch.stopped:
            return
        watch.changes_seen += 1
        if watch.state is PathState.IDLE:
            self._transition(watch, PathState.PENDING)
            self._arm_debounce(watch)
        elif watch.state is PathState.PENDING:
            # once queued the timer is not re-armed; the job reads the file when it runs, so it
            # still sees this change
            if not watch.queued:
                self._arm_debounce(watch)
        elif watch.busy:
            watch.dirty = True

    def _arm_debounce(self, watch: PathWatch) -> None:
        watch.cancel_timer()
        watch.timer = self.loop.call_later(self.config.debounce_seconds, self._debounce_elapsed, watch)

    def _debounce_elapsed(self, watch: PathWatch) -> None:
        watch.timer = None
        if watch.state is not PathState.PENDING or self._watches.get(watch.path) is not watch:
            return
        self._enqueue(_Job(watch.path, watch.generation), watch)

    def _enqueue(self, job: _Job, watch: PathWatch) -> None:
        watch.queued = True
        try:
            self.queue.put_nowait(job)
            return
        except asyncio.QueueFull:
            pass

        if self.config.backpressure is Backpressure.BLOCK:
            logger.debug(f"Queue full, waiting to enqueue {job.path}")
            task = asyncio.ensure_future(self.queue.put(job))
            self._blocked_puts.add(task)
            task.add_done_callback(self._blocked_puts.discard)
            return

        dropped = self.queue.get_nowait()
        self.queue.task_done()
        self.dropped_jobs += 1
        logger.warning(f"Queue full, dropped oldest job for {dropped.path}")
        dropped_watch = self._watches.get(dropped.path)
        if dropped_watch is not None and dropped_watch.generation == dropped.generation:
            dropped_watch.queued = False
            if dropped_watch.state is PathState.PENDING:
                self._transition(dropped_watch, PathState.IDLE)
        self.queue.put_nowait(job)

    async def _worker(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self._process(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Worker failed processing {job.path}", exc_info=True)
                self._job_failed(job, exc)
            finally:
                self.queue.task_done()

    def _is_current(self, watch: PathWatch, job: _Job) -> bool:
        return not watch.stopped and watch.generation == job.generation and self._watches.get(watch.path) is watch

    async def _process(self, job: _Job) -> None:
        watch = self._watches.get(job.path)
        if watch is None or not self._is_current(watch, job) or watch.state is not PathState.PENDING:
            return
        watch.queued = False
        self._transition(watch, PathState.EXTRACTING)

        try:
            content = await asyncio.to_thread(_read_text, job.path)
        except OSError as exc:
            self._path_failed(watch, exc)
            return
        if not self._is_current(watch, job):
            return

        key = fingerprint(job.path, content)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {job.path}")
            self._transition(watch, PathState.EMITTING)
            self._emit(watch, cached.results, from_cache=True)
            self._finish(watch)
            return

        observations = self.builder.build(job.path, content)
        self._transition(watch, PathState.SCORING)
        try:
            results = await self._score(observations)
        except DetectionCancelled as exc:
            logger.debug(f"Scoring of {job.path} cancelled")
            if self._is_current(watch, job):
                self._path_failed(watch, exc)
            return
        if not self._is_current(watch, job):
            logger.debug(f"Discarding results for {job.path}: watch stopped during scoring")
            return
        if not any(result.degraded for result in results):
            self.cache.put(key, tuple(results))

        self._transition(watch, PathState.EMITTING)
        self._emit(watch, results, from_cache=False)
        self._finish(watch)

    async def _score(self, observations: Sequence[Observation]) -> List[DriftResult]:
        """
        Score a file's observations in a worker thread.

        Each observation has ``scoring_timeout_seconds`` inside the orchestrator;
        this outer guard covers the whole file. When it fires the job's token is
        cancelled, so the abandoned thread records nothing.
        """
        if not observations:
            return []
        budget = self.config.scoring_timeout_seconds * len(observations)
        token = CancellationToken()
        self._active_tokens.add(token)
        task = asyncio.ensure_future(asyncio.to_thread(self.session.detect, list(observations), token))
        task.add_done_callback(_consume_result)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=budget)
        except asyncio.TimeoutError:
            if not token.cancel():
                # results were recorded just before the deadline
                return await task
            timeout = ScoringTimeout(budget)
            logger.warning(f"Scoring exceeded {budget:.2f}s for {len(observations)} observations")
            version = self.session.state.version if self.session.state else 0
            return [
                DriftResult.failed(new_result_id(), obs, timeout.kind, str(timeout), model_version=version)
                for obs in observations
            ]
        finally:
            self._active_tokens.discard(token)

    def _emit(self, watch: PathWatch, results: Sequence[DriftResult], from_cache: bool) -> None:
        self.processed_jobs += 1
        if not from_cache:
            self._severity_counts.update(severity_counts(results))
        for result in results:
            self.bus.publish(DriftEvent(path=watch.path, result=result, from_cache=from_cache))

    def _finish(self, watch: PathWatch) -> None:
        if watch.stopped:
            return
        if watch.dirty:
            watch.dirty = False
            self._transition(watch, PathState.PENDING)
            self._arm_debounce(watch)
        else:
            self._transition(watch, PathState.IDLE)

    def _path_failed(self, watch: PathWatch, exc: Exception) -> None:
        logger.warning(f"Stopping watch on {watch.path}: {exc}")
        self.bus.publish(PathErrorEvent(path=watch.path, error=str(exc)))
        previous = watch.stop()
        self._publish_state(watch, previous)

    def _job_failed(self, job: _Job, exc: Exception) -> None:
        watch = self._watches.get(job.path)
        if watch is None or not self._is_current(watch, job):
            return
        self._path_failed(watch, exc)
        self.bus.publish(self.status())

    def _transition(self, watch: PathWatch, target: PathState) -> None:
        previous = watch.transition(target)
        self._publish_state(watch, previous)

    def _publish_state(self, watch: PathWatch, previous: PathState) -> None:
        if previous is not watch.state:
            self.bus.publish(PathStateEvent(path=watch.path, previous=previous.value, current=watch.state.value))

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.status_interval_seconds)
            try:
                await asyncio.to_thread(self.session.maybe_retrain)
            except Exception:
                logger.error("Scheduled retraining failed", exc_info=True)
            self.bus.publish(self.status())
