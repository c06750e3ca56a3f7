"""Dependency graph accessor: resolve edges of a task against the store.

All walks operate on ids; records are resolved through the store on demand.
"""

from __future__ import annotations

from collections import deque

from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, Task, TaskStatus


def dependency_ids(task: Task) -> list[str]:
    """Ids of the prerequisites *task* declares, in declaration order."""
    return [e.target_id for e in task.dependencies if e.target_id]


def dependent_ids(task: Task) -> list[str]:
    """Ids of the tasks that declared a dependency on *task*."""
    return [d for d in task.dependents if d]


def resolve_dependencies(
    task: Task, store: TaskStore
) -> list[tuple[DependencyEdge, Task | None]]:
    """Pair each declared edge with its prerequisite (``None`` when missing)."""
    return [(edge, store.find(edge.target_id)) for edge in task.dependencies if edge.target_id]


def is_satisfiable(task: Task, store: TaskStore) -> bool:
    """``True`` when every declared prerequisite exists and is Completed."""
    return unmet_dependencies(task, store) == []


def unmet_dependencies(task: Task, store: TaskStore) -> list[str]:
    """Human-readable list of prerequisites blocking *task*."""
    blocked: list[str] = []
    for edge, dep in resolve_dependencies(task, store):
        if dep is None:
            blocked.append(f"{edge.target_id} (missing)")
        elif dep.status != TaskStatus.COMPLETED:
            blocked.append(f"{edge.target_id} ({dep.status.value})")
    return blocked


def reaches(store: TaskStore, start_id: str, goal_id: str) -> bool:
    """``True`` if *goal_id* is reachable from *start_id* along dependency edges."""
    if start_id == goal_id:
        return True
    seen = {start_id}
    queue = deque([start_id])
    while queue:
        current = store.find(queue.popleft())
        if current is None:
            continue
        for nxt in dependency_ids(current):
            if nxt == goal_id:
                return True
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    return False
