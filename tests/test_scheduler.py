"""Tests for taskgraph.scheduler — schedule propagation on completion."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskgraph.scheduler import (
    PropagationEngine,
    earliest_start,
    edge_anchor,
)
from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, DependencyType, Task, TaskStatus

T = datetime(2025, 3, 5, 16, 0, tzinfo=timezone.utc)


# ── Helpers ─────────────────────────────────────────────────────────


def _done(id: str, completed_at: datetime = T, start: datetime | None = None, dependents: list[str] | None = None) -> Task:
    return Task(
        id=id,
        status=TaskStatus.COMPLETED,
        completed_at=completed_at,
        start_date=start,
        dependents=list(dependents or []),
    )


def _t(id: str, edges: list[DependencyEdge] | None = None, status: TaskStatus = TaskStatus.TODO, **fields) -> Task:
    return Task(id=id, status=status, dependencies=list(edges or []), **fields)


def _fs(target: str, lag: int = 0) -> DependencyEdge:
    return DependencyEdge(target, DependencyType.FINISH_TO_START, lag)


# ═══════════════════════════════════════════════════════════════════
#  Anchors
# ═══════════════════════════════════════════════════════════════════


class TestAnchors:
    """Per-edge anchors: finish for FS/FF, start for SS/SF."""

    def test_finish_anchor(self):
        pre = _done("A", start=T - timedelta(days=3))
        assert edge_anchor(_fs("A"), pre) == T

    def test_start_anchor(self):
        start = T - timedelta(days=3)
        pre = _done("A", start=start)
        assert edge_anchor(DependencyEdge("A", DependencyType.START_TO_START), pre) == start
        assert edge_anchor(DependencyEdge("A", DependencyType.START_TO_FINISH), pre) == start

    def test_start_anchor_falls_back_to_finish(self):
        assert edge_anchor(DependencyEdge("A", DependencyType.START_TO_START), _done("A")) == T

    def test_max_over_edges(self):
        a = _done("A", completed_at=T)
        b = _done("B", completed_at=T + timedelta(days=1))
        resolved = [(_fs("A", lag=3), a), (_fs("B", lag=0), b)]
        assert earliest_start(resolved) == T + timedelta(days=3)

    def test_latest_completion_mode_ignores_edge_type(self):
        a = _done("A", completed_at=T, start=T - timedelta(days=10))
        b = _done("B", completed_at=T + timedelta(days=1))
        resolved = [
            (DependencyEdge("A", DependencyType.START_TO_START, 0), a),
            (_fs("B", lag=0), b),
        ]
        assert earliest_start(resolved, "edge-type") == T + timedelta(days=1)
        assert earliest_start(resolved, "latest-completion") == T + timedelta(days=1)

        lagged = [(DependencyEdge("A", DependencyType.START_TO_START, 2), a), (_fs("B"), b)]
        assert earliest_start(lagged, "edge-type") == T + timedelta(days=1)
        assert earliest_start(lagged, "latest-completion") == T + timedelta(days=3)

    def test_no_edges(self):
        assert earliest_start([]) is None


# ═══════════════════════════════════════════════════════════════════
#  Propagation
# ═══════════════════════════════════════════════════════════════════


class TestPropagation:
    """propagate() walks the dependents of the completed task."""

    def test_finish_to_start_with_lag(self):
        """A (FS, lag 2) -> B: B starts at T + 2 days."""
        store = TaskStore([_done("A", dependents=["B"]), _t("B", [_fs("A", lag=2)])])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.updated == {"B": T + timedelta(days=2)}
        assert store.get("B").start_date == T + timedelta(days=2)

    def test_waits_for_all_prerequisites(self):
        """B also needs C: nothing moves until C completes too."""
        store = TaskStore([
            _done("A", dependents=["B"]),
            _t("C", dependents=["B"], status=TaskStatus.IN_PROGRESS),
            _t("B", [_fs("A", lag=2), _fs("C")]),
        ])
        engine = PropagationEngine(store)

        result = engine.propagate(store.get("A"))
        assert result.blocked == ["B"]
        assert store.get("B").start_date is None

        c = store.get("C")
        c.status = TaskStatus.COMPLETED
        c.completed_at = T + timedelta(days=4)
        store.put(c)
        result = engine.propagate(store.get("C"))
        assert result.updated == {"B": T + timedelta(days=4)}

    def test_does_not_change_dependent_status_or_cascade(self):
        """Completing A moves B's date; B's status and C stay untouched."""
        store = TaskStore([
            _done("A", dependents=["B"]),
            _t("B", [_fs("A", lag=1)], dependents=["C"], status=TaskStatus.COMPLETED,
               completed_at=T - timedelta(days=1)),
            _t("C", [_fs("B")]),
        ])
        PropagationEngine(store).propagate(store.get("A"))
        b = store.get("B")
        assert b.status == TaskStatus.COMPLETED
        assert b.start_date == T + timedelta(days=1)
        assert store.get("C").start_date is None

    def test_missing_dependent_skipped(self):
        """A dependent id that no longer resolves is skipped, others continue."""
        store = TaskStore([_done("A", dependents=["GONE", "B"]), _t("B", [_fs("A")])])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.failed == ["GONE"]
        assert result.updated == {"B": T}

    def test_missing_prerequisite_blocks(self):
        store = TaskStore([_done("A", dependents=["B"]), _t("B", [_fs("A"), _fs("GONE")])])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.blocked == ["B"]

    def test_stale_dependent_reference_ignored(self):
        """A lists B as dependent, but B dropped the edge: B is left alone."""
        store = TaskStore([_done("A", dependents=["B"]), _t("B")])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.blocked == ["B"]
        assert store.get("B").start_date is None

    def test_unchanged_start_not_rewritten(self):
        writes: list[str] = []
        store = TaskStore([_done("A", dependents=["B"]), _t("B", [_fs("A")], start_date=T)])
        engine = PropagationEngine(store, persist=lambda t: writes.append(t.id))
        result = engine.propagate(store.get("A"))
        assert result.unchanged == ["B"]
        assert writes == []

    def test_not_completed_source_is_noop(self):
        store = TaskStore([_t("A", dependents=["B"]), _t("B", [_fs("A")])])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.updated == {} and result.blocked == []

    def test_failing_persist_does_not_abort_pass(self):
        def persist(task: Task) -> None:
            if task.id == "B":
                raise OSError("disk full")
            store.put(task)

        store = TaskStore([
            _done("A", dependents=["B", "C"]),
            _t("B", [_fs("A")]),
            _t("C", [_fs("A", lag=1)]),
        ])
        result = PropagationEngine(store, persist=persist).propagate(store.get("A"))
        assert result.failed == ["B"]
        assert result.updated == {"C": T + timedelta(days=1)}

    def test_cycle_never_satisfiable(self):
        """B <-> C cycle: completing A cannot release either of them."""
        store = TaskStore([
            _done("A", dependents=["B"]),
            _t("B", [_fs("A"), _fs("C")], dependents=["C"]),
            _t("C", [_fs("B")], dependents=["B"]),
        ])
        result = PropagationEngine(store).propagate(store.get("A"))
        assert result.blocked == ["B"]


class TestOrderInsensitivity:
    """Dependents are independent: order and parallelism do not matter."""

    def _store(self, order: list[str]) -> TaskStore:
        tasks = [_done("A", dependents=order)]
        tasks += [_t(tid, [_fs("A", lag=i)]) for i, tid in enumerate(sorted(order))]
        return TaskStore(tasks)

    @pytest.mark.parametrize("workers", [1, 4])
    def test_same_outcome_any_order(self, workers):
        ids = [f"D{i}" for i in range(8)]
        forward = self._store(ids)
        backward = self._store(list(reversed(ids)))
        PropagationEngine(forward, max_workers=workers).propagate(forward.get("A"))
        PropagationEngine(backward, max_workers=workers).propagate(backward.get("A"))
        for tid in ids:
            assert forward.get(tid).start_date == backward.get(tid).start_date
        assert forward.get("D7").start_date == T + timedelta(days=7)
