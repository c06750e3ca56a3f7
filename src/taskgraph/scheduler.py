"""Schedule propagation: re-plan dependents when a prerequisite completes.

Usage::

    engine = PropagationEngine(store)
    result = engine.propagate(completed_task)   # after the Completed commit
    result.updated                               # {dependent_id: new_start}

Propagation is one level deep. Moving a dependent's start date is a plain
field update and never triggers another pass; only that dependent's own
completion does.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from taskgraph import log
from taskgraph.errors import NotFoundError, TaskGraphError
from taskgraph.graph import dependent_ids, resolve_dependencies
from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, Task, TaskStatus


class Outcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class PropagationResult:
    source_id: str
    updated: dict[str, datetime] = field(default_factory=dict)
    unchanged: list[str] = field(default_factory=list)
    blocked: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def record(self, task_id: str, outcome: Outcome, start: datetime | None) -> None:
        match outcome:
            case Outcome.UPDATED:
                assert start is not None
                self.updated[task_id] = start
            case Outcome.UNCHANGED:
                self.unchanged.append(task_id)
            case Outcome.BLOCKED:
                self.blocked.append(task_id)
            case Outcome.FAILED:
                self.failed.append(task_id)


def finish_anchor(task: Task) -> datetime | None:
    """When *task* finished: its completion stamp, else its last update."""
    return task.completed_at or task.updated_at


def edge_anchor(edge: DependencyEdge, prerequisite: Task) -> datetime | None:
    """Reference point of *edge*: finish for FS/FF, start for SS/SF."""
    if edge.type.anchors_on_finish:
        return finish_anchor(prerequisite)
    return prerequisite.start_date or finish_anchor(prerequisite)


def earliest_start(
    resolved: list[tuple[DependencyEdge, Task]],
    anchor_mode: str = "edge-type",
) -> datetime | None:
    """``max(anchor(e) + lag(e))`` over all edges, or ``None`` without anchors.

    ``latest-completion`` anchors every edge on the most recent completion
    among the prerequisites, whatever the edge type.
    """
    if not resolved:
        return None

    if anchor_mode == "latest-completion":
        finishes = [f for f in (finish_anchor(t) for _e, t in resolved) if f is not None]
        if not finishes:
            return None
        latest = max(finishes)
        return max(latest + timedelta(days=e.lag_days) for e, _t in resolved)

    candidates: list[datetime] = []
    for edge, prerequisite in resolved:
        anchor = edge_anchor(edge, prerequisite)
        if anchor is None:
            return None
        candidates.append(anchor + timedelta(days=edge.lag_days))
    return max(candidates)


class PropagationEngine:
    """Walks the dependents of a completed task and moves their start dates.

    *persist* writes a modified record back; the task service passes a
    callback that also refreshes derived fields. It must not propagate.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        anchor_mode: str = "edge-type",
        max_workers: int = 1,
        persist: Callable[[Task], None] | None = None,
    ) -> None:
        self._store = store
        self._anchor_mode = anchor_mode
        self._max_workers = max(1, max_workers)
        self._persist = persist or store.put

    def propagate(self, completed: Task) -> PropagationResult:
        result = PropagationResult(source_id=completed.id)
        if completed.status != TaskStatus.COMPLETED:
            log.debug(f"Task {completed.id}: not Completed, nothing to propagate")
            return result

        targets = list(dict.fromkeys(dependent_ids(completed)))
        if not targets:
            return result

        log.debug(f"Task {completed.id}: propagating to {len(targets)} dependent(s)")
        if self._max_workers > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(targets))) as pool:
                outcomes = list(pool.map(lambda tid: self._process_safely(completed.id, tid), targets))
        else:
            outcomes = [self._process_safely(completed.id, tid) for tid in targets]

        for tid, (outcome, start) in zip(targets, outcomes):
            result.record(tid, outcome, start)

        if result.updated:
            log.info(
                f"Task {completed.id} completed: rescheduled {len(result.updated)} dependent(s)"
            )
        return result

    # ── per-dependent ────────────────────────────────────────────

    def _process_safely(self, source_id: str, dependent_id: str) -> tuple[Outcome, datetime | None]:
        try:
            return self._process(source_id, dependent_id)
        except NotFoundError:
            log.warn(f"Dependent {dependent_id} no longer exists; skipped")
            return Outcome.FAILED, None
        except TaskGraphError as exc:
            log.warn(f"Dependent {dependent_id}: {exc}; skipped")
            return Outcome.FAILED, None
        except Exception as exc:  # one bad record must not stop the pass
            log.warn(f"Dependent {dependent_id}: unexpected {type(exc).__name__}: {exc}; skipped")
            return Outcome.FAILED, None

    def _process(self, source_id: str, dependent_id: str) -> tuple[Outcome, datetime | None]:
        with self._store.locked(dependent_id):
            dependent = self._store.get(dependent_id)
            if source_id not in dependent.dependency_ids():
                log.warn(f"Task {dependent_id} is listed as dependent of {source_id} but has no such edge")
                return Outcome.BLOCKED, None

            resolved: list[tuple[DependencyEdge, Task]] = []
            for edge, prerequisite in resolve_dependencies(dependent, self._store):
                if prerequisite is None:
                    log.debug(f"Task {dependent_id}: prerequisite {edge.target_id} missing")
                    return Outcome.BLOCKED, None
                if prerequisite.status != TaskStatus.COMPLETED:
                    log.debug(
                        f"Task {dependent_id}: waiting on {edge.target_id} ({prerequisite.status.value})"
                    )
                    return Outcome.BLOCKED, None
                resolved.append((edge, prerequisite))

            new_start = earliest_start(resolved, self._anchor_mode)
            if new_start is None:
                log.warn(f"Task {dependent_id}: prerequisites carry no usable dates; skipped")
                return Outcome.FAILED, None

            if dependent.start_date == new_start:
                return Outcome.UNCHANGED, new_start

            log.debug(f"Task {dependent_id}: start {dependent.start_date} -> {new_start}")
            dependent.start_date = new_start
            self._persist(dependent)
            return Outcome.UPDATED, new_start
