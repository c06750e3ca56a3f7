"""Task status lifecycle.

Todo -> In Progress -> Review -> {Needs Work -> In Progress, Completed}

Who may perform a transition is decided by the caller's authorization layer.
This module only records the resulting status and the fields that follow
from it.
"""

from __future__ import annotations

from datetime import datetime

from taskgraph import log
from taskgraph.io_utils import as_utc
from taskgraph.tasks.model import Task, TaskStatus

TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.REVIEW}),
    TaskStatus.REVIEW: frozenset({TaskStatus.NEEDS_WORK, TaskStatus.COMPLETED}),
    TaskStatus.NEEDS_WORK: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.COMPLETED: frozenset(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return ``True`` if *target* is a regular successor of *current*."""
    return target in TRANSITIONS[current]


def apply_status(task: Task, status: TaskStatus | str, at: datetime) -> bool:
    """Set *task*'s status in place. Returns ``True`` if it just became Completed.

    Off-lifecycle moves (e.g. Todo -> Completed, or leaving Completed) are
    applied as requested and logged.
    """
    target = TaskStatus.parse(status)
    at = as_utc(at)
    current = task.status
    if target == current:
        return False

    if not can_transition(current, target):
        log.debug(f"Task {task.id}: forced transition {current.value} -> {target.value}")

    task.status = target
    task.updated_at = at

    if target == TaskStatus.COMPLETED:
        task.completed_at = at
        task.completion_percent = 100
        return True

    if current == TaskStatus.COMPLETED:
        # Reopened: the old completion no longer anchors anything.
        task.completed_at = None
        if task.completion_percent == 100:
            task.completion_percent = 0
    return False
