"""Load and save ``tasks.yaml``.

Layout::

    version: 1
    projects:
      - id: web
        name: Website relaunch
        startDate: 2025-03-03
        endDate: 2025-03-28
    tasks:
      - id: API-1
        title: Design API
        status: Completed
        estimatedEffortHours: 8
        dependencies:
          - task: DB-1
            type: FinishToStart
            lagDays: 2
        dependents: [UI-1]
        timeEntries:
          - user: ana
            startTime: 2025-03-04T09:00:00Z
            endTime: 2025-03-04T11:30:00Z
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from taskgraph.errors import ValidationError
from taskgraph.io_utils import (
    PathLike,
    format_datetime,
    parse_datetime,
    read_text,
    write_text_atomic,
)
from taskgraph.tasks.model import (
    DependencyEdge,
    DependencyType,
    Project,
    Task,
    TaskFile,
    TaskStatus,
    TimeEntry,
)
from taskgraph.timetrack import logged_hours, make_time_entry


def load_task_file(path: PathLike) -> TaskFile:
    """Read *path*; a missing file yields an empty ``TaskFile``."""
    p = Path(path)
    if not p.is_file():
        return TaskFile()
    try:
        data = yaml.safe_load(read_text(p)) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"{p}: invalid YAML ({exc})") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"{p}: expected a mapping at the top level")
    return task_file_from_dict(data)


def save_task_file(tf: TaskFile, path: PathLike) -> None:
    text = yaml.safe_dump(
        task_file_to_dict(tf),
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    write_text_atomic(path, text)


# ── dict <-> model ───────────────────────────────────────────────────


def task_file_from_dict(data: dict[str, Any]) -> TaskFile:
    projects = [_project_from_dict(p) for p in data.get("projects") or []]
    tasks = [task_from_dict(t) for t in data.get("tasks") or []]
    return TaskFile(version=int(data.get("version", 1)), projects=projects, tasks=tasks)


def task_file_to_dict(tf: TaskFile) -> dict[str, Any]:
    return {
        "version": tf.version,
        "projects": [_project_to_dict(p) for p in tf.projects],
        "tasks": [task_to_dict(t) for t in tf.tasks],
    }


def task_from_dict(raw: dict[str, Any]) -> Task:
    if not isinstance(raw, dict):
        raise ValidationError(f"Task entry must be a mapping (got {type(raw).__name__})")
    task_id = str(raw.get("id") or "").strip()
    if not task_id:
        raise ValidationError("Task entry is missing 'id'")
    try:
        status = TaskStatus.parse(raw.get("status") or TaskStatus.TODO)
        entries = [_entry_from_dict(e) for e in raw.get("timeEntries") or []]
        percent = int(raw.get("completionPercent") or 0)
        return Task(
            id=task_id,
            title=str(raw.get("title") or ""),
            description=str(raw.get("description") or ""),
            status=status,
            priority=str(raw.get("priority") or "Medium"),
            team=str(raw.get("team") or ""),
            project_id=str(raw.get("projectId") or ""),
            assignee=str(raw.get("assignee") or ""),
            estimated_effort_hours=float(raw.get("estimatedEffortHours") or 0),
            # Derived: the stored loggedEffortHours value is ignored.
            logged_effort_hours=logged_hours(entries),
            completion_percent=100 if status == TaskStatus.COMPLETED else percent,
            start_date=parse_datetime(raw.get("startDate")),
            end_date=parse_datetime(raw.get("endDate")),
            due_date=parse_datetime(raw.get("dueDate")),
            completed_at=parse_datetime(raw.get("completedAt")),
            dependencies=[edge_from_dict(e) for e in raw.get("dependencies") or []],
            dependents=[str(d) for d in raw.get("dependents") or []],
            time_entries=entries,
            created_at=parse_datetime(raw.get("createdAt")),
            updated_at=parse_datetime(raw.get("updatedAt")),
        )
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Task {task_id}: {exc}") from exc


def task_to_dict(task: Task) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "status": task.status.value,
    }
    for key, value in (
        ("description", task.description),
        ("priority", task.priority),
        ("team", task.team),
        ("projectId", task.project_id),
        ("assignee", task.assignee),
    ):
        if value:
            out[key] = value
    out["estimatedEffortHours"] = task.estimated_effort_hours
    out["loggedEffortHours"] = task.logged_effort_hours
    out["completionPercent"] = task.completion_percent
    for key, value in (
        ("startDate", task.start_date),
        ("endDate", task.end_date),
        ("dueDate", task.due_date),
        ("completedAt", task.completed_at),
        ("createdAt", task.created_at),
        ("updatedAt", task.updated_at),
    ):
        if value is not None:
            out[key] = format_datetime(value)
    out["dependencies"] = [edge_to_dict(e) for e in task.dependencies]
    out["dependents"] = list(task.dependents)
    out["timeEntries"] = [_entry_to_dict(e) for e in task.time_entries]
    return out


def edge_from_dict(raw: dict[str, Any] | str) -> DependencyEdge:
    """Accept ``{task, type, lagDays}`` mappings or a bare target id."""
    if isinstance(raw, str):
        return DependencyEdge(target_id=raw.strip())
    if not isinstance(raw, dict):
        raise ValidationError(f"Dependency must be a mapping or task id (got {raw!r})")
    target = raw.get("task", raw.get("targetTaskId", ""))
    lag = raw.get("lagDays", 0)
    if isinstance(lag, bool) or not isinstance(lag, int):
        raise ValidationError(f"Dependency on {target}: lagDays must be an integer (got {lag!r})")
    return DependencyEdge(
        target_id=str(target or "").strip(),
        type=DependencyType.parse(raw.get("type")),
        lag_days=lag,
    )


def edge_to_dict(edge: DependencyEdge) -> dict[str, Any]:
    return {"task": edge.target_id, "type": edge.type.value, "lagDays": edge.lag_days}


def _entry_from_dict(raw: dict[str, Any]) -> TimeEntry:
    start = parse_datetime(raw.get("startTime"))
    end = parse_datetime(raw.get("endTime"))
    if start is None or end is None:
        raise ValidationError("Time entry needs both startTime and endTime")
    return make_time_entry(
        str(raw.get("user") or ""),
        start,
        end,
        description=str(raw.get("description") or ""),
    )


def _entry_to_dict(entry: TimeEntry) -> dict[str, Any]:
    out: dict[str, Any] = {
        "user": entry.user,
        "startTime": format_datetime(entry.start_time),
        "endTime": format_datetime(entry.end_time),
        "durationMinutes": entry.duration_minutes,
    }
    if entry.description:
        out["description"] = entry.description
    return out


def _project_from_dict(raw: dict[str, Any]) -> Project:
    project_id = str(raw.get("id") or "").strip()
    if not project_id:
        raise ValidationError("Project entry is missing 'id'")
    return Project(
        id=project_id,
        name=str(raw.get("name") or ""),
        start_date=parse_datetime(raw.get("startDate")),
        end_date=parse_datetime(raw.get("endDate")),
    )


def _project_to_dict(project: Project) -> dict[str, Any]:
    out: dict[str, Any] = {"id": project.id, "name": project.name}
    if project.start_date is not None:
        out["startDate"] = format_datetime(project.start_date)
    if project.end_date is not None:
        out["endDate"] = format_datetime(project.end_date)
    return out
