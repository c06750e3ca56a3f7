"""In-memory task store: an arena of task records keyed by id.

Records are handed out as copies. A caller that wants to change a record
holds its lock (``locked``), reads it, mutates the copy and writes it back
with ``put``. Two-sided edge updates lock both records (in id order, so two
writers never wait on each other) and commit both copies with a single
``put`` call.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager

from taskgraph.errors import NotFoundError
from taskgraph.tasks.model import Project, Task, TaskFile


class TaskStore:
    def __init__(
        self,
        tasks: list[Task] | None = None,
        projects: list[Project] | None = None,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self._projects: dict[str, Project] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._registry = threading.Lock()
        for task in tasks or []:
            self._tasks[task.id] = copy.deepcopy(task)
        for project in projects or []:
            self._projects[project.id] = copy.deepcopy(project)

    @classmethod
    def from_task_file(cls, tf: TaskFile) -> TaskStore:
        return cls(tasks=tf.tasks, projects=tf.projects)

    def to_task_file(self, version: int = 1) -> TaskFile:
        with self._registry:
            tasks = [copy.deepcopy(t) for t in self._tasks.values()]
            projects = [copy.deepcopy(p) for p in self._projects.values()]
        return TaskFile(version=version, projects=projects, tasks=tasks)

    # ── lookups ──────────────────────────────────────────────────

    def __contains__(self, task_id: object) -> bool:
        with self._registry:
            return task_id in self._tasks

    def __len__(self) -> int:
        with self._registry:
            return len(self._tasks)

    def ids(self) -> list[str]:
        with self._registry:
            return list(self._tasks)

    def find(self, task_id: str) -> Task | None:
        """Return a copy of the task, or ``None`` if it does not exist."""
        with self._registry:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task is not None else None

    def get(self, task_id: str) -> Task:
        """Return a copy of the task; raises ``NotFoundError``."""
        task = self.find(task_id)
        if task is None:
            raise NotFoundError(task_id)
        return task

    def all(self) -> list[Task]:
        return self.select(lambda _t: True)

    def select(self, predicate: Callable[[Task], bool]) -> list[Task]:
        with self._registry:
            return [copy.deepcopy(t) for t in self._tasks.values() if predicate(t)]

    def by_project(self, project_id: str) -> list[Task]:
        return self.select(lambda t: t.project_id == project_id)

    def by_assignee(self, assignee: str) -> list[Task]:
        return self.select(lambda t: t.assignee == assignee)

    def by_team(self, team: str) -> list[Task]:
        return self.select(lambda t: t.team == team)

    # ── projects ─────────────────────────────────────────────────

    def get_project(self, project_id: str) -> Project:
        with self._registry:
            project = self._projects.get(project_id)
            if project is None:
                raise NotFoundError(project_id, role="project")
            return copy.deepcopy(project)

    def projects(self) -> list[Project]:
        with self._registry:
            return [copy.deepcopy(p) for p in self._projects.values()]

    # ── writes ───────────────────────────────────────────────────

    def put(self, *tasks: Task) -> None:
        """Store copies of *tasks*; all of them become visible together."""
        staged = {t.id: copy.deepcopy(t) for t in tasks}
        with self._registry:
            self._tasks.update(staged)

    def commit(self, updated: list[Task], removed: list[str] | tuple[str, ...] = ()) -> None:
        """Apply puts and removals as one visible change."""
        staged = {t.id: copy.deepcopy(t) for t in updated}
        with self._registry:
            for tid in removed:
                self._tasks.pop(tid, None)
            self._tasks.update(staged)

    # ── locking ──────────────────────────────────────────────────

    def _lock_for(self, task_id: str) -> threading.RLock:
        with self._registry:
            lock = self._locks.get(task_id)
            if lock is None:
                lock = self._locks[task_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, *task_ids: str) -> Iterator[None]:
        """Hold the record locks for *task_ids* (sorted, de-duplicated)."""
        with ExitStack() as stack:
            for tid in sorted(set(task_ids)):
                stack.enter_context(self._lock_for(tid))
            yield
