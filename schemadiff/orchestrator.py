"""
orchestrator
============

Run the schema loader and the diff engine across many target endpoints.

Flow
----
1. Load the base snapshot once, synchronously. Any failure here propagates:
   there is no partial run without a base.
2. Split the targets into batches of ``RunPolicy.batch_size``.
3. Feed each batch to a fixed pool of ``RunPolicy.workers`` threads through a
   task queue. Every worker loads its target, diffs it against the base
   snapshot and publishes exactly one :class:`RunResult` on the result queue.
   Exceptions are caught inside the worker and become failed results.
4. The calling thread is the only consumer of the result queue. It files each
   result under the target's position in the input list, so completion order
   never leaks into the output.
5. After the last batch, workers receive a stop sentinel and are joined within
   ``RunPolicy.shutdown_grace``. :func:`summarize` then aggregates the results.

Per-target timeout
------------------
A target that has no result ``RunPolicy.target_timeout`` seconds after a worker
picked it up is recorded as failed with :class:`~schemadiff.errors.TargetTimeoutError`.
The stuck worker is abandoned (it is a daemon thread) and a fresh worker takes
its slot. An abandoned worker exits as soon as its job returns; it never takes
another task and its late result is discarded. While it is stuck it no longer
counts toward ``RunPolicy.workers``; its hung I/O is bounded by the
connection's ``statement_timeout`` instead.

Progress
--------
Pass ``on_event`` to receive :class:`RunEvent` objects. The callback always runs
on the calling thread, never on a worker.
"""

from __future__ import annotations

import datetime as dt
import queue
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .differences import Difference, Severity
from .diffing import DiffFunction, diff_schemas
from .endpoints import DatabaseEndpoint
from .errors import ConfigError, TargetTimeoutError
from .models import SchemaSnapshot

DEFAULT_WORKERS = 8
DEFAULT_BATCH_SIZE = 10
DEFAULT_TARGET_TIMEOUT_SECONDS = 300.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 60.0

LoadFunction = Callable[[DatabaseEndpoint], SchemaSnapshot]


@dataclass(frozen=True)
class RunPolicy:
    """Concurrency and time limits for one run.

    Attributes:
        workers: Number of worker threads; at most this many targets are
            loaded and compared at the same time.
        batch_size: Targets enqueued per batch; a batch finishes before the
            next one starts.
        target_timeout: Seconds a single target may take once started;
            ``None`` waits forever.
        shutdown_grace: Seconds to wait for workers to exit at the end.
    """

    workers: int = DEFAULT_WORKERS
    batch_size: int = DEFAULT_BATCH_SIZE
    target_timeout: Optional[float] = DEFAULT_TARGET_TIMEOUT_SECONDS
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE_SECONDS

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigError(f"workers must be positive, got {self.workers}")
        if self.batch_size < 1:
            raise ConfigError(f"batch_size must be positive, got {self.batch_size}")
        if self.target_timeout is not None and self.target_timeout <= 0:
            raise ConfigError(f"target_timeout must be positive, got {self.target_timeout}")
        if self.shutdown_grace < 0:
            raise ConfigError(f"shutdown_grace must not be negative, got {self.shutdown_grace}")


@dataclass(frozen=True)
class RunResult:
    """Outcome of comparing one target against the base."""

    endpoint: DatabaseEndpoint
    success: bool
    differences: Tuple[Difference, ...] = ()
    error: Optional[BaseException] = None
    duration: float = 0.0

    @property
    def difference_count(self) -> int:
        return len(self.differences)

    @property
    def error_message(self) -> str:
        if self.error is None:
            return ""
        return f"{self.error.__class__.__name__}: {self.error}"


@dataclass(frozen=True)
class RunSummary:
    total: int
    success_count: int
    failure_count: int
    problem_targets: Tuple[RunResult, ...]
    failed_targets: Tuple[RunResult, ...]
    severity_counts: Dict[Severity, int]

    @property
    def difference_count(self) -> int:
        return sum(r.difference_count for r in self.problem_targets)


@dataclass(frozen=True)
class RunReport:
    """Everything a report sink needs about one run."""

    base: DatabaseEndpoint
    base_snapshot: SchemaSnapshot
    results: Tuple[RunResult, ...]
    summary: RunSummary
    started_at: dt.datetime
    finished_at: dt.datetime

    def by_target(self) -> Dict[str, RunResult]:
        """Results keyed by target endpoint name."""
        return {r.endpoint.name: r for r in self.results}


class EventKind(str, Enum):
    BASE_LOADED = "base_loaded"
    BATCH_STARTED = "batch_started"
    TARGET_STARTED = "target_started"
    TARGET_FINISHED = "target_finished"
    TARGET_FAILED = "target_failed"
    BATCH_FINISHED = "batch_finished"
    SHUTDOWN_TIMEOUT = "shutdown_timeout"
    RUN_FINISHED = "run_finished"


@dataclass(frozen=True)
class RunEvent:
    kind: EventKind
    endpoint: Optional[DatabaseEndpoint] = None
    result: Optional[RunResult] = None
    batch: int = 0
    batch_count: int = 0
    done: int = 0
    total: int = 0
    detail: str = ""


EventCallback = Callable[[RunEvent], None]


def summarize(results: Sequence[RunResult]) -> RunSummary:
    """Aggregate per-target results. Pure; the input is not modified.

    Problem targets are successful targets with at least one difference,
    ranked by difference count (descending), ties kept in input order.
    """
    succeeded = [r for r in results if r.success]
    failed = tuple(r for r in results if not r.success)
    problems = sorted((r for r in succeeded if r.difference_count > 0), key=lambda r: -r.difference_count)
    counts: Counter = Counter(d.severity for r in succeeded for d in r.differences)
    return RunSummary(
        total=len(results),
        success_count=len(succeeded),
        failure_count=len(failed),
        problem_targets=tuple(problems),
        failed_targets=failed,
        severity_counts={s: counts.get(s, 0) for s in Severity},
    )


def batches(items: Sequence, size: int) -> List[Sequence]:
    """Split *items* into consecutive chunks of at most *size*."""
    return [items[i : i + size] for i in range(0, len(items), size)]


def compare_target(
    base_snapshot: SchemaSnapshot,
    base: DatabaseEndpoint,
    target: DatabaseEndpoint,
    load: LoadFunction,
    diff: DiffFunction = diff_schemas,
) -> RunResult:
    """Load one target and diff it against the base snapshot.

    Never raises: any exception is returned as a failed :class:`RunResult`.
    """
    started = time.monotonic()
    try:
        target_snapshot = load(target)
        differences = tuple(diff(base_snapshot, target_snapshot, base, target))
    except Exception as exc:
        return RunResult(target, success=False, error=exc, duration=time.monotonic() - started)
    return RunResult(target, success=True, differences=differences, duration=time.monotonic() - started)


# ---- worker pool ----
_STOP = object()


@dataclass(frozen=True)
class _Message:
    index: int
    at: float
    result: Optional[RunResult] = None  # None: worker picked the task up
    worker: str = ""


class _WorkerPool:
    """Fixed-size thread pool: one task queue in, one result queue out.

    At most ``size`` workers take tasks at any time. :meth:`abandon` retires a
    stuck worker and starts its replacement.
    """

    def __init__(self, size: int, job: Callable[[DatabaseEndpoint], RunResult]) -> None:
        self._job = job
        self.tasks: "queue.Queue" = queue.Queue()
        self.results: "queue.Queue[_Message]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._spawned = 0
        self._lock = threading.Lock()
        self._current: Dict[str, int] = {}
        self._abandoned: Set[str] = set()
        for _ in range(size):
            self.spawn()

    def spawn(self) -> None:
        self._spawned += 1
        thread = threading.Thread(target=self._work, name=f"schemadiff-worker-{self._spawned}", daemon=True)
        self._threads.append(thread)
        thread.start()

    def _work(self) -> None:
        name = threading.current_thread().name
        while True:
            task = self.tasks.get()
            if task is _STOP:
                return
            index, endpoint = task
            with self._lock:
                self._current[name] = index
                self.results.put(_Message(index, time.monotonic(), worker=name))
            result = self._job(endpoint)
            with self._lock:
                del self._current[name]
                if name in self._abandoned:
                    return
                self.results.put(_Message(index, time.monotonic(), result, worker=name))

    def submit(self, index: int, endpoint: DatabaseEndpoint) -> None:
        self.tasks.put((index, endpoint))

    def abandon(self, worker: str, index: int) -> bool:
        """Retire *worker* if it is still running task *index* and start a replacement.

        Returns False when the worker already finished that task; its result
        is then on the result queue.
        """
        with self._lock:
            if self._current.get(worker) != index:
                return False
            self._abandoned.add(worker)
        self.spawn()
        return True

    def shutdown(self, grace: float) -> List[str]:
        """Stop idle workers; return the names of threads still alive after *grace*."""
        for _ in self._threads:
            self.tasks.put(_STOP)
        deadline = time.monotonic() + grace
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        return [t.name for t in self._threads if t.is_alive()]


class Orchestrator:
    """Compare one base endpoint against many targets.

    Most callers want :func:`run_comparison`; this class holds the state of
    a single run.
    """

    def __init__(
        self,
        base: DatabaseEndpoint,
        targets: Sequence[DatabaseEndpoint],
        load: LoadFunction,
        diff: DiffFunction = diff_schemas,
        policy: Optional[RunPolicy] = None,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.base = base
        self.targets = list(targets)
        self.load = load
        self.diff = diff
        self.policy = policy or RunPolicy()
        self._on_event = on_event

    def _emit(self, kind: EventKind, **kwargs) -> None:
        if self._on_event is not None:
            self._on_event(RunEvent(kind=kind, total=len(self.targets), **kwargs))

    def run(self) -> RunReport:
        started_at = dt.datetime.now(dt.timezone.utc)
        base_snapshot = self.load(self.base)
        self._emit(EventKind.BASE_LOADED, endpoint=self.base, detail=f"{len(base_snapshot.tables)} table(s)")

        results: Dict[int, RunResult] = {}
        if self.targets:
            self._run_targets(base_snapshot, results)

        ordered = tuple(results[i] for i in range(len(self.targets)))
        summary = summarize(ordered)
        self._emit(EventKind.RUN_FINISHED, done=len(ordered))
        return RunReport(
            base=self.base,
            base_snapshot=base_snapshot,
            results=ordered,
            summary=summary,
            started_at=started_at,
            finished_at=dt.datetime.now(dt.timezone.utc),
        )

    def _run_targets(self, base_snapshot: SchemaSnapshot, results: Dict[int, RunResult]) -> None:
        def job(target: DatabaseEndpoint) -> RunResult:
            return compare_target(base_snapshot, self.base, target, self.load, self.diff)

        workers = min(self.policy.workers, len(self.targets))
        pool = _WorkerPool(workers, job)
        indexed = list(enumerate(self.targets))
        chunks = batches(indexed, self.policy.batch_size)
        try:
            for number, chunk in enumerate(chunks, start=1):
                self._emit(EventKind.BATCH_STARTED, batch=number, batch_count=len(chunks), done=len(results))
                for index, endpoint in chunk:
                    pool.submit(index, endpoint)
                self._collect(pool, {index for index, _ in chunk}, results)
                self._emit(EventKind.BATCH_FINISHED, batch=number, batch_count=len(chunks), done=len(results))
        finally:
            stragglers = pool.shutdown(self.policy.shutdown_grace)
            if stragglers:
                self._emit(EventKind.SHUTDOWN_TIMEOUT, detail=", ".join(stragglers))

    def _collect(self, pool: _WorkerPool, pending: set, results: Dict[int, RunResult]) -> None:
        timeout = self.policy.target_timeout
        running: Dict[int, Tuple[float, str]] = {}  # index -> (started at, worker name)
        while pending:
            wait = None
            if timeout is not None:
                if running:
                    oldest = min(since for since, _ in running.values())
                    wait = max(0.0, oldest + timeout - time.monotonic())
                else:
                    wait = timeout
            try:
                message = pool.results.get(timeout=wait)
            except queue.Empty:
                self._expire(pool, pending, running, results)
                continue

            if message.index not in pending:
                continue  # late result of an expired target
            endpoint = self.targets[message.index]
            if message.result is None:
                running[message.index] = (message.at, message.worker)
                self._emit(EventKind.TARGET_STARTED, endpoint=endpoint, done=len(results))
                continue

            pending.discard(message.index)
            running.pop(message.index, None)
            results[message.index] = message.result
            kind = EventKind.TARGET_FINISHED if message.result.success else EventKind.TARGET_FAILED
            self._emit(kind, endpoint=endpoint, result=message.result, done=len(results))

    def _expire(
        self,
        pool: _WorkerPool,
        pending: set,
        running: Dict[int, Tuple[float, str]],
        results: Dict[int, RunResult],
    ) -> None:
        timeout = self.policy.target_timeout
        now = time.monotonic()
        for index, (since, worker) in sorted(running.items()):
            if now - since < timeout:
                continue
            if not pool.abandon(worker, index):
                continue  # finished at the deadline; the result is already queued
            endpoint = self.targets[index]
            error = TargetTimeoutError(f"{endpoint.display_name} produced no result within {timeout:g}s")
            result = RunResult(endpoint, success=False, error=error, duration=now - since)
            pending.discard(index)
            del running[index]
            results[index] = result
            self._emit(EventKind.TARGET_FAILED, endpoint=endpoint, result=result, done=len(results))


def run_comparison(
    base: DatabaseEndpoint,
    targets: Sequence[DatabaseEndpoint],
    load: LoadFunction,
    diff: DiffFunction = diff_schemas,
    policy: Optional[RunPolicy] = None,
    on_event: Optional[EventCallback] = None,
) -> RunReport:
    """Compare every target against the base endpoint.

    Parameters
    ----------
    base:
        Reference endpoint. Its snapshot is loaded first; a failure here
        aborts the run by propagating the loader's exception.
    targets:
        Endpoints to compare, in the order results are returned.
    load:
        Schema loader capability, e.g. ``PostgresSchemaLoader().load``.
        Called concurrently from worker threads.
    diff:
        Diff function; defaults to :func:`~schemadiff.diffing.diff_schemas`.
    policy:
        Worker count, batch size and time limits.
    on_event:
        Optional progress callback, invoked on the calling thread.

    Returns
    -------
    RunReport
        One :class:`RunResult` per target, in input order, plus the summary.
    """
    return Orchestrator(base, targets, load, diff=diff, policy=policy, on_event=on_event).run()
