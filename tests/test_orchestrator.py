"""Unit tests for the orchestrator (worker pool, timeouts, summary)."""

import threading
import time
from typing import Dict, List

import pytest

from conftest import customers_table, orders_table

from schemadiff.differences import Difference, DifferenceKind, Severity
from schemadiff.endpoints import DatabaseEndpoint
from schemadiff.errors import ConfigError, ConnectivityError, IntrospectionError, TargetTimeoutError
from schemadiff.models import SchemaSnapshot
from schemadiff.orchestrator import (
    EventKind,
    RunEvent,
    RunPolicy,
    RunResult,
    batches,
    compare_target,
    run_comparison,
    summarize,
)

BASE = DatabaseEndpoint(name="base", url="postgresql://db-base/app")


def _targets(count: int) -> List[DatabaseEndpoint]:
    return [DatabaseEndpoint(name=f"t{i}", url=f"postgresql://db-{i}/app") for i in range(1, count + 1)]


def _base_snapshot() -> SchemaSnapshot:
    return SchemaSnapshot.build([customers_table(), orders_table()])


class FakeLoader:
    """Thread-safe loader returning canned snapshots, optionally failing or blocking."""

    def __init__(self, snapshots: Dict[str, SchemaSnapshot], delay: float = 0.0) -> None:
        self.snapshots = snapshots
        self.delay = delay
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.calls: List[str] = []
        self.threads: Dict[str, str] = {}

    def load(self, endpoint: DatabaseEndpoint) -> SchemaSnapshot:
        with self.lock:
            self.calls.append(endpoint.name)
            self.threads[endpoint.name] = threading.current_thread().name
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            value = self.snapshots[endpoint.name]
            if isinstance(value, BaseException):
                raise value
            return value
        finally:
            with self.lock:
                self.active -= 1


class TestRunPolicy:
    def test_defaults(self) -> None:
        policy = RunPolicy()
        assert (policy.workers, policy.batch_size) == (8, 10)
        assert policy.target_timeout == 300.0
        assert policy.shutdown_grace == 60.0

    @pytest.mark.parametrize(
        "kwargs",
        [{"workers": 0}, {"batch_size": 0}, {"target_timeout": 0}, {"shutdown_grace": -1}],
    )
    def test_invalid(self, kwargs) -> None:
        with pytest.raises(ConfigError):
            RunPolicy(**kwargs)


def test_batches() -> None:
    assert batches(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
    assert batches([], 3) == []


def test_compare_target_never_raises() -> None:
    def load(endpoint: DatabaseEndpoint) -> SchemaSnapshot:
        raise IntrospectionError("schema 'public' not found")

    result = compare_target(_base_snapshot(), BASE, _targets(1)[0], load)
    assert result.success is False
    assert isinstance(result.error, IntrospectionError)
    assert result.error_message == "IntrospectionError: schema 'public' not found"


class TestIsolation:
    def test_twenty_targets_one_failure(self) -> None:
        """Target #7 fails; the other 19 results are complete and unaffected."""
        targets = _targets(20)
        drifted = SchemaSnapshot.build([customers_table()])
        snapshots: Dict[str, object] = {"base": _base_snapshot()}
        for i, target in enumerate(targets, start=1):
            snapshots[target.name] = drifted if i % 2 == 0 else _base_snapshot()
        snapshots["t7"] = ConnectivityError("cannot connect to t7(db-7:5432): connection refused")
        loader = FakeLoader(snapshots, delay=0.01)  # type: ignore[arg-type]

        report = run_comparison(BASE, targets, loader.load, policy=RunPolicy(workers=4, batch_size=5))

        assert [r.endpoint.name for r in report.results] == [t.name for t in targets]
        assert len(report.results) == 20
        failed = [r for r in report.results if not r.success]
        assert [r.endpoint.name for r in failed] == ["t7"]
        assert isinstance(failed[0].error, ConnectivityError)
        assert failed[0].differences == ()

        for i, result in enumerate(report.results, start=1):
            if i == 7:
                continue
            assert result.success
            if i % 2 == 0:
                assert [(d.kind, d.table) for d in result.differences] == [(DifferenceKind.MISSING_TABLE, "orders")]
                assert result.differences[0].target_name == result.endpoint.name
            else:
                assert result.differences == ()

        assert report.summary.success_count == 19
        assert report.summary.failure_count == 1

    def test_base_failure_propagates(self) -> None:
        loader = FakeLoader({"base": ConnectivityError("refused")})  # type: ignore[dict-item]
        events: List[RunEvent] = []
        with pytest.raises(ConnectivityError):
            run_comparison(BASE, _targets(3), loader.load, on_event=events.append)
        assert loader.calls == ["base"]
        assert events == []

    def test_no_targets(self) -> None:
        loader = FakeLoader({"base": _base_snapshot()})
        report = run_comparison(BASE, [], loader.load)
        assert report.results == ()
        assert report.summary.total == 0


class TestConcurrency:
    def test_worker_count_bounds_parallelism(self) -> None:
        targets = _targets(12)
        snapshots = {t.name: _base_snapshot() for t in targets}
        snapshots["base"] = _base_snapshot()
        loader = FakeLoader(snapshots, delay=0.05)

        run_comparison(BASE, targets, loader.load, policy=RunPolicy(workers=3, batch_size=12))

        assert 1 <= loader.peak <= 3
        worker_threads = {name for target, name in loader.threads.items() if target != "base"}
        assert all(name.startswith("schemadiff-worker-") for name in worker_threads)

    def test_batches_run_in_sequence(self) -> None:
        targets = _targets(5)
        snapshots = {t.name: _base_snapshot() for t in targets}
        snapshots["base"] = _base_snapshot()
        events: List[RunEvent] = []

        run_comparison(
            BASE, targets, FakeLoader(snapshots).load, policy=RunPolicy(workers=2, batch_size=2), on_event=events.append
        )

        batch_events = [(e.kind, e.batch) for e in events if e.kind in (EventKind.BATCH_STARTED, EventKind.BATCH_FINISHED)]
        assert batch_events == [
            (EventKind.BATCH_STARTED, 1),
            (EventKind.BATCH_FINISHED, 1),
            (EventKind.BATCH_STARTED, 2),
            (EventKind.BATCH_FINISHED, 2),
            (EventKind.BATCH_STARTED, 3),
            (EventKind.BATCH_FINISHED, 3),
        ]
        assert events[0].kind is EventKind.BASE_LOADED
        assert events[-1].kind is EventKind.RUN_FINISHED
        assert events[-1].done == 5

    def test_events_run_on_calling_thread(self) -> None:
        targets = _targets(6)
        snapshots = {t.name: _base_snapshot() for t in targets}
        snapshots["base"] = _base_snapshot()
        seen: List[str] = []

        run_comparison(
            BASE,
            targets,
            FakeLoader(snapshots, delay=0.01).load,
            policy=RunPolicy(workers=3),
            on_event=lambda e: seen.append(threading.current_thread().name),
        )

        assert seen
        assert set(seen) == {threading.current_thread().name}


class TestTimeout:
    def test_hung_target_fails_and_others_finish(self) -> None:
        release = threading.Event()
        targets = _targets(4)

        def load(endpoint: DatabaseEndpoint) -> SchemaSnapshot:
            if endpoint.name == "t2":
                release.wait(5)
            return _base_snapshot()

        events: List[RunEvent] = []
        try:
            report = run_comparison(
                BASE,
                targets,
                load,
                policy=RunPolicy(workers=2, batch_size=4, target_timeout=0.3, shutdown_grace=0.1),
                on_event=events.append,
            )
        finally:
            release.set()

        by_name = report.by_target()
        assert by_name["t2"].success is False
        assert isinstance(by_name["t2"].error, TargetTimeoutError)
        assert all(by_name[n].success for n in ("t1", "t3", "t4"))
        assert [r.endpoint.name for r in report.results] == ["t1", "t2", "t3", "t4"]
        assert any(e.kind is EventKind.SHUTDOWN_TIMEOUT for e in events)

    def test_worker_bound_holds_after_replacement(self) -> None:
        """A recovered worker does not rejoin the pool next to its replacement."""
        release = threading.Event()
        targets = _targets(8)
        lock = threading.Lock()
        active = 0
        peak = 0
        threads: Dict[str, str] = {}

        def load(endpoint: DatabaseEndpoint) -> SchemaSnapshot:
            nonlocal active, peak
            with lock:
                threads[endpoint.name] = threading.current_thread().name
            if endpoint.name == "t1":
                release.wait(5)
                return _base_snapshot()
            with lock:
                active += 1
                peak = max(peak, active)
            try:
                time.sleep(0.1)
                return _base_snapshot()
            finally:
                with lock:
                    active -= 1

        def on_event(event: RunEvent) -> None:
            # let the stuck target recover right after it is written off
            if event.kind is EventKind.TARGET_FAILED and event.endpoint is not None and event.endpoint.name == "t1":
                release.set()

        try:
            report = run_comparison(
                BASE,
                targets,
                load,
                policy=RunPolicy(workers=2, batch_size=8, target_timeout=0.3, shutdown_grace=1.0),
                on_event=on_event,
            )
        finally:
            release.set()

        assert isinstance(report.by_target()["t1"].error, TargetTimeoutError)
        assert report.summary.success_count == 7
        assert peak <= 2
        stuck_worker = threads["t1"]
        assert stuck_worker not in {name for target, name in threads.items() if target != "t1"}

    def test_no_timeout_waits(self) -> None:
        targets = _targets(2)
        snapshots = {t.name: _base_snapshot() for t in targets}
        snapshots["base"] = _base_snapshot()
        report = run_comparison(
            BASE, targets, FakeLoader(snapshots, delay=0.05).load, policy=RunPolicy(target_timeout=None)
        )
        assert report.summary.success_count == 2


class TestSummarize:
    def _result(self, name: str, diff_kinds: List[DifferenceKind], success: bool = True) -> RunResult:
        target = DatabaseEndpoint(name=name, url=f"postgresql://{name}/app")
        diffs = tuple(
            Difference(
                kind=kind,
                base_name="base",
                base_display_name="base",
                target_name=name,
                target_display_name=name,
                schema="public",
                target_schema="public",
                table="t",
                item=str(i),
                description="",
            )
            for i, kind in enumerate(diff_kinds)
        )
        error = None if success else ConnectivityError("refused")
        return RunResult(target, success=success, differences=diffs, error=error)

    def test_ranking_and_counts(self) -> None:
        results = [
            self._result("a", [DifferenceKind.EXTRA_TABLE]),
            self._result("b", []),
            self._result("c", [DifferenceKind.MISSING_TABLE, DifferenceKind.COLUMN_DIFF]),
            self._result("d", [DifferenceKind.EXTRA_INDEX]),
            self._result("e", [], success=False),
        ]
        summary = summarize(results)

        assert summary.total == 5
        assert (summary.success_count, summary.failure_count) == (4, 1)
        assert [r.endpoint.name for r in summary.problem_targets] == ["c", "a", "d"]
        assert [r.endpoint.name for r in summary.failed_targets] == ["e"]
        assert summary.difference_count == 4
        assert summary.severity_counts == {Severity.CRITICAL: 1, Severity.WARNING: 1, Severity.INFO: 2}

    def test_input_untouched(self) -> None:
        results = [self._result("a", []), self._result("b", [DifferenceKind.EXTRA_TABLE])]
        before = list(results)
        summarize(results)
        assert results == before
