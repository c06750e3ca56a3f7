"""Task service: the mutation entry points and their explicit callbacks.

Every write goes through ``_persist``, which runs ``on_task_persisted``
(derived effort and default end date) before the record is stored. A status
change that lands on Completed calls ``on_task_completed`` after the commit,
which runs one propagation pass over the task's dependents.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from taskgraph import log
from taskgraph.config import Config
from taskgraph.errors import NotFoundError, TaskGraphError, ValidationError
from taskgraph.graph import reaches
from taskgraph.io_utils import as_utc
from taskgraph.scheduler import PropagationEngine, PropagationResult
from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, DependencyType, Task, TaskStatus
from taskgraph.tasks.status import apply_status
from taskgraph.tasks.validate import validate_edge
from taskgraph.timetrack import make_time_entry, refresh_logged_effort

# Fields callers may change through ``update_task``. Status, edges and time
# entries have dedicated operations; logged effort is derived.
UPDATABLE_FIELDS = frozenset({
    "title",
    "description",
    "priority",
    "team",
    "project_id",
    "assignee",
    "estimated_effort_hours",
    "completion_percent",
    "start_date",
    "end_date",
    "due_date",
})

_DELETE_RETRIES = 5

_DATE_FIELDS = ("start_date", "end_date", "due_date", "completed_at", "created_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskService:
    def __init__(
        self,
        store: TaskStore,
        cfg: Config | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.cfg = cfg or Config()
        self._clock = clock
        self.engine = PropagationEngine(
            store,
            anchor_mode=self.cfg.anchor_mode,
            max_workers=self.cfg.max_workers,
            persist=self._persist,
        )

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ── callbacks ────────────────────────────────────────────────

    def on_task_persisted(self, task: Task) -> Task:
        """Refresh derived fields on *task* in place before it is stored."""
        refresh_logged_effort(task, self.cfg.effort_precision)
        if task.end_date is None and task.start_date is not None:
            task.end_date = task.default_end_date()
        return task

    def on_task_completed(self, task: Task) -> PropagationResult:
        """Run one propagation pass for a task whose Completed status is committed."""
        try:
            return self.engine.propagate(task)
        except TaskGraphError as exc:
            log.warn(f"Propagation from {task.id} aborted: {exc}")
            return PropagationResult(source_id=task.id)

    def _persist(self, *tasks: Task) -> None:
        for task in tasks:
            self.on_task_persisted(task)
        self.store.put(*tasks)

    # ── task lifecycle ───────────────────────────────────────────

    def create_task(self, task: Task) -> Task:
        """Store a new task, linking any dependencies it declares."""
        task.check_fields()
        _normalize_dates(task)
        edges = self._normalize_edges(task.id, task.dependencies)
        now = self.now()
        task.created_at = task.created_at or now
        task.updated_at = now
        task.dependencies = []
        task.dependents = []
        if task.status == TaskStatus.COMPLETED and task.completed_at is None:
            task.completed_at = now

        ids = [task.id] + [e.target_id for e in edges]
        with self.store.locked(*ids):
            if task.id in self.store:
                raise ValidationError(f"Task {task.id} already exists")
            targets = self._load_targets(task, edges)
            self._link(task, edges, targets)
            self._persist(task, *targets.values())

        log.debug(f"Created task {task.id} with {len(edges)} dependency edge(s)")
        return self.store.get(task.id)

    def update_task(self, task_id: str, **changes: object) -> Task:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        with self.store.locked(task_id):
            task = self.store.get(task_id)
            for name, value in changes.items():
                setattr(task, name, value)
            _normalize_dates(task)
            task.check_fields()
            task.updated_at = self.now()
            self._persist(task)
        return self.store.get(task_id)

    def set_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        at: datetime | None = None,
    ) -> tuple[Task, PropagationResult | None]:
        """Change status; propagates when the task just became Completed."""
        when = at or self.now()
        with self.store.locked(task_id):
            task = self.store.get(task_id)
            became_completed = apply_status(task, status, when)
            self._persist(task)

        propagation = self.on_task_completed(task) if became_completed else None
        return self.store.get(task_id), propagation

    def complete_task(self, task_id: str, at: datetime | None = None) -> tuple[Task, PropagationResult | None]:
        return self.set_status(task_id, TaskStatus.COMPLETED, at)

    def log_time(
        self,
        task_id: str,
        user: str,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
    ) -> Task:
        """Append a time entry; rejected entries leave the task untouched."""
        entry = make_time_entry(user, start_time, end_time, description)
        with self.store.locked(task_id):
            task = self.store.get(task_id)
            task.time_entries.append(entry)
            task.updated_at = self.now()
            self._persist(task)
        return self.store.get(task_id)

    def delete_task(self, task_id: str) -> Task:
        """Remove a task and every edge that references it."""
        for _attempt in range(_DELETE_RETRIES):
            neighbours = self._neighbours(self.store.get(task_id))
            with self.store.locked(task_id, *neighbours):
                task = self.store.get(task_id)
                if self._neighbours(task) - neighbours:
                    # An edge was added while we were unlocked; lock the new set.
                    continue

                touched: list[Task] = []
                for nid in sorted(neighbours):
                    other = self.store.find(nid)
                    if other is None:
                        continue
                    before = (len(other.dependencies), len(other.dependents))
                    other.dependencies = [e for e in other.dependencies if e.target_id != task_id]
                    other.dependents = [d for d in other.dependents if d != task_id]
                    if (len(other.dependencies), len(other.dependents)) != before:
                        other.updated_at = self.now()
                        self.on_task_persisted(other)
                        touched.append(other)

                self.store.commit(touched, removed=[task_id])
                log.debug(f"Deleted task {task_id}; pruned edges on {len(touched)} task(s)")
                return task
        raise TaskGraphError(f"Task {task_id} kept changing while being deleted; try again")

    def _neighbours(self, task: Task) -> set[str]:
        """Every task that references *task* in either direction."""
        ids = set(task.dependency_ids()) | set(task.dependents)
        ids |= {
            t.id
            for t in self.store.select(
                lambda t: task.id in t.dependents or task.id in (e.target_id for e in t.dependencies)
            )
        }
        ids.discard(task.id)
        return ids

    # ── dependency mutations ─────────────────────────────────────

    def add_dependencies(
        self,
        task_id: str,
        edges: Iterable[DependencyEdge | dict[str, object]],
    ) -> Task:
        """Declare prerequisites for *task_id*.

        All edges are checked before anything is written: one bad edge rejects
        the whole call. Both ends of each edge are committed together.
        """
        normalized = self._normalize_edges(task_id, edges)
        if not normalized:
            return self.store.get(task_id)

        ids = [task_id] + [e.target_id for e in normalized]
        with self.store.locked(*ids):
            task = self.store.get(task_id)
            targets = self._load_targets(task, normalized)
            self._link(task, normalized, targets)
            task.updated_at = self.now()
            self._persist(task, *targets.values())

        log.debug(f"Task {task_id}: now depends on {', '.join(task.dependency_ids())}")
        return self.store.get(task_id)

    def remove_dependency(self, task_id: str, target_id: str) -> Task:
        """Drop every edge from *task_id* to *target_id*. Missing edges are a no-op."""
        with self.store.locked(task_id, target_id):
            task = self.store.get(task_id)
            target = self.store.find(target_id)

            kept = [e for e in task.dependencies if e.target_id != target_id]
            changed: list[Task] = []
            if len(kept) != len(task.dependencies):
                task.dependencies = kept
                task.updated_at = self.now()
                changed.append(task)
            if target is not None and task_id in target.dependents:
                target.dependents = [d for d in target.dependents if d != task_id]
                changed.append(target)

            if changed:
                self._persist(*changed)
            else:
                log.debug(f"Task {task_id}: no dependency on {target_id}; nothing to remove")
        return self.store.get(task_id)

    # ── helpers ──────────────────────────────────────────────────

    def _normalize_edges(
        self,
        task_id: str,
        edges: Iterable[DependencyEdge | dict[str, object]],
    ) -> list[DependencyEdge]:
        out: list[DependencyEdge] = []
        for raw in edges:
            edge = raw if isinstance(raw, DependencyEdge) else _edge_from_mapping(raw)
            validate_edge(task_id, edge)
            if self.cfg.dedupe_edges:
                out = [e for e in out if e.target_id != edge.target_id]
            out.append(edge)
        return out

    def _load_targets(self, task: Task, edges: list[DependencyEdge]) -> dict[str, Task]:
        targets: dict[str, Task] = {}
        for edge in edges:
            if edge.target_id in targets:
                continue
            target = self.store.find(edge.target_id)
            if target is None:
                raise NotFoundError(edge.target_id, role="dependency target")
            if self.cfg.reject_cycles and reaches(self.store, edge.target_id, task.id):
                raise ValidationError(
                    f"Dependency {task.id} -> {edge.target_id} would create a cycle"
                )
            targets[edge.target_id] = target
        return targets

    def _link(self, task: Task, edges: list[DependencyEdge], targets: dict[str, Task]) -> None:
        for edge in edges:
            existing = task.get_edge(edge.target_id) if self.cfg.dedupe_edges else None
            if existing is not None:
                existing.type = edge.type
                existing.lag_days = edge.lag_days
            else:
                task.dependencies.append(edge)
            target = targets[edge.target_id]
            if task.id not in target.dependents:
                target.dependents.append(task.id)


def _edge_from_mapping(raw: dict[str, object]) -> DependencyEdge:
    if not isinstance(raw, dict):
        raise ValidationError(f"Dependency must be a mapping (got {raw!r})")
    target = raw.get("target_id", raw.get("task", raw.get("targetTaskId", "")))
    lag = raw.get("lag_days", raw.get("lagDays", 0))
    return DependencyEdge(
        target_id=str(target or "").strip(),
        type=DependencyType.parse(raw.get("type")),  # type: ignore[arg-type]
        lag_days=lag,  # type: ignore[arg-type]
    )


def _normalize_dates(task: Task) -> None:
    """Store every timestamp as aware UTC; naive values are taken as UTC."""
    for name in _DATE_FIELDS:
        value = getattr(task, name)
        if isinstance(value, datetime):
            setattr(task, name, as_utc(value))
