"""Task, Project and TaskFile data models used across the store, engine and reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from taskgraph.errors import ValidationError


class TaskStatus(str, Enum):
    TODO = "Todo"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    NEEDS_WORK = "Needs Work"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, raw: str | TaskStatus) -> TaskStatus:
        if isinstance(raw, TaskStatus):
            return raw
        key = _normalize(raw)
        for member in cls:
            if key in (_normalize(member.value), _normalize(member.name)):
                return member
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(f"Unknown status {raw!r}. Valid statuses: {allowed}.")


class DependencyType(str, Enum):
    FINISH_TO_START = "FinishToStart"
    START_TO_START = "StartToStart"
    FINISH_TO_FINISH = "FinishToFinish"
    START_TO_FINISH = "StartToFinish"

    @property
    def short(self) -> str:
        return _SHORT_NAMES[self]

    @property
    def anchors_on_finish(self) -> bool:
        """``True`` when the prerequisite's finish is the reference point."""
        return self in (DependencyType.FINISH_TO_START, DependencyType.FINISH_TO_FINISH)

    @classmethod
    def parse(cls, raw: str | DependencyType | None) -> DependencyType:
        if raw is None or raw == "":
            return cls.FINISH_TO_START
        if isinstance(raw, DependencyType):
            return raw
        key = _normalize(raw)
        for member in cls:
            if key in (_normalize(member.value), _normalize(member.short), _normalize(member.name)):
                return member
        allowed = ", ".join(f"{m.value} ({m.short})" for m in cls)
        raise ValidationError(f"Unknown dependency type {raw!r}. Valid types: {allowed}.")


_SHORT_NAMES = {
    DependencyType.FINISH_TO_START: "FS",
    DependencyType.START_TO_START: "SS",
    DependencyType.FINISH_TO_FINISH: "FF",
    DependencyType.START_TO_FINISH: "SF",
}


def _normalize(raw: str) -> str:
    return "".join(ch for ch in str(raw).lower() if ch.isalnum())


@dataclass
class DependencyEdge:
    target_id: str
    type: DependencyType = DependencyType.FINISH_TO_START
    lag_days: int = 0


@dataclass
class TimeEntry:
    user: str
    start_time: datetime
    end_time: datetime
    duration_minutes: float
    description: str = ""


@dataclass
class Task:
    id: str
    title: str = ""
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: str = "Medium"
    team: str = ""
    project_id: str = ""
    assignee: str = ""

    estimated_effort_hours: float = 0.0
    # Derived from time_entries on every persist; never set by callers.
    logged_effort_hours: float = 0.0
    completion_percent: int = 0

    start_date: datetime | None = None
    end_date: datetime | None = None
    due_date: datetime | None = None
    completed_at: datetime | None = None

    dependencies: list[DependencyEdge] = field(default_factory=list)
    # Reverse edges: ids of tasks that list this task in their dependencies.
    dependents: list[str] = field(default_factory=list)
    time_entries: list[TimeEntry] = field(default_factory=list)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def dependency_ids(self) -> list[str]:
        return [e.target_id for e in self.dependencies]

    def get_edge(self, target_id: str) -> DependencyEdge | None:
        for edge in self.dependencies:
            if edge.target_id == target_id:
                return edge
        return None

    def default_end_date(self) -> datetime | None:
        """``start_date + estimated_effort_hours``, or ``None`` without a start."""
        if self.start_date is None:
            return None
        return self.start_date + timedelta(hours=self.estimated_effort_hours)

    def check_fields(self) -> None:
        """Raise ``ValidationError`` for out-of-range scalar fields."""
        if not self.id:
            raise ValidationError("Task id is required")
        if self.estimated_effort_hours < 0:
            raise ValidationError(
                f"Task {self.id}: estimated effort must be >= 0 (got {self.estimated_effort_hours})"
            )
        if not 0 <= self.completion_percent <= 100:
            raise ValidationError(
                f"Task {self.id}: completion percent must be within 0..100 (got {self.completion_percent})"
            )
        if self.id in self.dependency_ids():
            raise ValidationError(f"Task {self.id} cannot depend on itself")


@dataclass
class Project:
    id: str
    name: str = ""
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass
class TaskFile:
    version: int = 1
    projects: list[Project] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    def get_task(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def get_project(self, project_id: str) -> Project | None:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None
