"""Project analytics: distributions, per-assignee performance, timeline, due-soon scan."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

from taskgraph.io_utils import as_utc
from taskgraph.tasks.model import Task, TaskStatus
from taskgraph.timetrack import round_half_up


@dataclass
class ProjectSummary:
    total_tasks: int = 0
    status_distribution: dict[str, int] = field(default_factory=dict)
    priority_distribution: dict[str, int] = field(default_factory=dict)
    completion_rate: float = 0.0
    estimated_hours: float = 0.0
    logged_hours: float = 0.0


@dataclass
class AssigneePerformance:
    assignee: str
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0
    logged_hours: float = 0.0


def _rate(part: int, whole: int) -> float:
    return round_half_up(part / whole * 100, 2) if whole else 0.0


def project_summary(tasks: Iterable[Task]) -> ProjectSummary:
    task_list = list(tasks)
    statuses = Counter(t.status.value for t in task_list)
    completed = statuses.get(TaskStatus.COMPLETED.value, 0)
    return ProjectSummary(
        total_tasks=len(task_list),
        status_distribution=dict(statuses),
        priority_distribution=dict(Counter(t.priority for t in task_list)),
        completion_rate=_rate(completed, len(task_list)),
        estimated_hours=round_half_up(sum(t.estimated_effort_hours for t in task_list), 2),
        logged_hours=round_half_up(sum(t.logged_effort_hours for t in task_list), 2),
    )


def team_performance(tasks: Iterable[Task]) -> list[AssigneePerformance]:
    """One row per assignee (unassigned tasks are skipped), sorted by name."""
    rows: dict[str, AssigneePerformance] = {}
    for task in tasks:
        if not task.assignee:
            continue
        row = rows.setdefault(task.assignee, AssigneePerformance(assignee=task.assignee))
        row.total_tasks += 1
        if task.completed:
            row.completed_tasks += 1
        row.logged_hours += task.logged_effort_hours
    for row in rows.values():
        row.completion_rate = _rate(row.completed_tasks, row.total_tasks)
        row.logged_hours = round_half_up(row.logged_hours, 2)
    return [rows[name] for name in sorted(rows)]


def project_timeline(tasks: Iterable[Task]) -> list[Task]:
    """Tasks ordered by due date; undated tasks last, then by id."""
    return sorted(
        tasks,
        key=lambda t: (t.due_date is None, t.due_date or datetime.min, t.id),
    )


def tasks_due_soon(tasks: Iterable[Task], now: datetime, days: int = 2) -> list[Task]:
    """Open tasks due between *now* and the end of the day *days* ahead."""
    start = as_utc(now)
    horizon = datetime.combine(
        (start + timedelta(days=days)).date(), time.max, tzinfo=start.tzinfo
    )
    due = [
        t
        for t in tasks
        if t.due_date is not None
        and not t.completed
        and start <= as_utc(t.due_date) <= horizon
    ]
    return sorted(due, key=lambda t: (as_utc(t.due_date), t.id))  # type: ignore[arg-type]
