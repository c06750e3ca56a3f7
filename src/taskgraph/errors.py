"""Error taxonomy shared by the graph, time-tracking and CLI layers.

Mutation paths raise these; propagation and aggregation catch them, log,
and carry on with the next item.
"""

from __future__ import annotations


class TaskGraphError(Exception):
    """Base class for every error raised by taskgraph."""


class NotFoundError(TaskGraphError):
    """A referenced task id does not resolve in the store."""

    def __init__(self, task_id: str, role: str = "task") -> None:
        self.task_id = task_id
        self.role = role
        super().__init__(f"{role.capitalize()} not found: {task_id}")


class ValidationError(TaskGraphError):
    """Malformed input: bad edge, self dependency, out-of-range field."""


class InvalidIntervalError(ValidationError):
    """Time entry whose end is not strictly after its start."""

    def __init__(self, start: object, end: object) -> None:
        self.start = start
        self.end = end
        super().__init__(f"Time entry must end after it starts (start={start}, end={end})")


class InconsistencyError(TaskGraphError):
    """``dependencies`` / ``dependents`` are not mutual inverses."""

    def __init__(self, issues: list[str]) -> None:
        self.issues = issues
        preview = "; ".join(issues[:3])
        more = f" (+{len(issues) - 3} more)" if len(issues) > 3 else ""
        super().__init__(f"Dependency graph is inconsistent: {preview}{more}")
