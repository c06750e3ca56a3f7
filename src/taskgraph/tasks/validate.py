"""Edge validation, cycle detection and dependency-graph consistency repair."""

from __future__ import annotations

from collections.abc import Iterable

from taskgraph import log
from taskgraph.errors import InconsistencyError, ValidationError
from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, DependencyType, Task, TaskFile


def validate_edge(task_id: str, edge: DependencyEdge) -> None:
    """Raise ``ValidationError`` if *edge* cannot be declared by *task_id*."""
    if not edge.target_id or not str(edge.target_id).strip():
        raise ValidationError(f"Task {task_id}: dependency is missing its target task")
    if edge.target_id == task_id:
        raise ValidationError(f"Task {task_id} cannot depend on itself")
    if not isinstance(edge.type, DependencyType):
        raise ValidationError(f"Task {task_id}: unknown dependency type {edge.type!r}")
    if isinstance(edge.lag_days, bool) or not isinstance(edge.lag_days, int):
        raise ValidationError(
            f"Task {task_id}: lag for {edge.target_id} must be a whole number of days"
        )


# ── Cycle detection ──────────────────────────────────────────────────


def detect_cycles(tasks: Iterable[Task]) -> str:
    """Return a ``A -> B -> A`` description of the first cycle found, or ``""``."""
    deps = {t.id: [e.target_id for e in t.dependencies if e.target_id] for t in tasks}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {tid: WHITE for tid in deps}

    for root in deps:
        if color[root] != WHITE:
            continue
        path: list[str] = [root]
        stack: list[tuple[str, Iterable[str]]] = [(root, iter(deps[root]))]
        color[root] = GREY
        while stack:
            node, children = stack[-1]
            advanced = False
            for child in children:
                if child not in deps:
                    continue
                if color[child] == GREY:
                    start = path.index(child)
                    return " -> ".join(path[start:] + [child])
                if color[child] == WHITE:
                    color[child] = GREY
                    path.append(child)
                    stack.append((child, iter(deps[child])))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                path.pop()
                stack.pop()
    return ""


# ── Bidirectional consistency ────────────────────────────────────────


def check_consistency(store: TaskStore, *, strict: bool = False) -> list[str]:
    """List every place where ``dependencies`` and ``dependents`` disagree.

    With *strict*, any disagreement raises ``InconsistencyError`` instead.
    """
    tasks = {t.id: t for t in store.all()}
    issues: list[str] = []
    for task in tasks.values():
        for target in task.dependency_ids():
            other = tasks.get(target)
            if other is None:
                issues.append(f"{task.id} depends on missing task {target}")
            elif task.id not in other.dependents:
                issues.append(f"{target} is missing dependent {task.id}")
        for dep_id in task.dependents:
            other = tasks.get(dep_id)
            if other is None:
                issues.append(f"{task.id} lists missing dependent {dep_id}")
            elif task.id not in other.dependency_ids():
                issues.append(f"{task.id} lists {dep_id} as dependent, but {dep_id} does not depend on it")
    if strict and issues:
        raise InconsistencyError(issues)
    return issues


def repair(store: TaskStore) -> int:
    """Make the graph consistent again. Returns the number of fixes applied.

    ``dependencies`` is authoritative: dangling edges are pruned, stale
    dependents are dropped, and missing reverse references are added.
    """
    ids = set(store.ids())
    fixes = 0
    with store.locked(*ids):
        tasks = {tid: store.get(tid) for tid in ids}
        changed: set[str] = set()

        for task in tasks.values():
            kept = [e for e in task.dependencies if e.target_id in ids and e.target_id != task.id]
            if len(kept) != len(task.dependencies):
                fixes += len(task.dependencies) - len(kept)
                log.warn(f"Task {task.id}: pruned {len(task.dependencies) - len(kept)} dangling dependency edge(s)")
                task.dependencies = kept
                changed.add(task.id)

        expected: dict[str, list[str]] = {tid: [] for tid in ids}
        for task in tasks.values():
            for target in task.dependency_ids():
                if task.id not in expected[target]:
                    expected[target].append(task.id)

        for tid, task in tasks.items():
            want = expected[tid]
            # Keep existing order for the entries that stay valid.
            merged = [d for d in task.dependents if d in want]
            merged = list(dict.fromkeys(merged))
            merged += [d for d in want if d not in merged]
            if merged != task.dependents:
                fixes += len(set(task.dependents) ^ set(merged)) or 1
                log.warn(f"Task {tid}: dependents {_ids(task.dependents)} -> {_ids(merged)}")
                task.dependents = merged
                changed.add(tid)

        if changed:
            store.put(*(tasks[tid] for tid in changed))
    return fixes


def _ids(ids: list[str]) -> str:
    return ", ".join(ids) or "(none)"


# ── File-level validation ────────────────────────────────────────────


def validate(tf: TaskFile) -> list[str]:
    """Return a list of human-readable problems in *tf* (empty when valid)."""
    errors: list[str] = []
    seen: set[str] = set()
    project_ids = {p.id for p in tf.projects}

    for project in tf.projects:
        if project.start_date and project.end_date and project.end_date < project.start_date:
            errors.append(f"Project {project.id}: endDate is before startDate")

    for task in tf.tasks:
        if task.id in seen:
            errors.append(f"Duplicate task id: {task.id}")
        seen.add(task.id)
        try:
            task.check_fields()
        except ValidationError as exc:
            errors.append(str(exc))
        if task.project_id and project_ids and task.project_id not in project_ids:
            errors.append(f"Task {task.id}: unknown project {task.project_id}")
        targets = task.dependency_ids()
        dupes = sorted({t for t in targets if targets.count(t) > 1})
        if dupes:
            errors.append(f"Task {task.id}: duplicate dependencies on {', '.join(dupes)}")
        for edge in task.dependencies:
            try:
                validate_edge(task.id, edge)
            except ValidationError as exc:
                msg = str(exc)
                if msg not in errors:
                    errors.append(msg)
        if task.start_date and task.end_date and task.end_date < task.start_date:
            errors.append(f"Task {task.id}: endDate is before startDate")

    cycle = detect_cycles(tf.tasks)
    if cycle:
        errors.append(f"Dependency cycle (tasks in it can never start): {cycle}")

    return errors


def validate_and_report(tf: TaskFile) -> bool:
    """Log every problem in *tf*. Returns ``True`` when there were none."""
    errors = validate(tf)
    for err in errors:
        log.error(err)
    if not errors:
        log.success(f"{len(tf.tasks)} task(s) valid")
    return not errors
