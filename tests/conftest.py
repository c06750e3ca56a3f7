"""Shared fixtures for taskgraph tests.

File handling in tests:
- Use tmp_path for any task file so tests are isolated and cleaned up.
- Datetimes are aware UTC values; ``NOW`` is the fixed reference clock.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from taskgraph import log
from taskgraph.config import Config
from taskgraph.service import TaskService
from taskgraph.store import TaskStore
from taskgraph.tasks.model import DependencyEdge, DependencyType, Task, TaskStatus

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _make_task(
    id: str,
    title: str = "",
    status: TaskStatus = TaskStatus.TODO,
    depends_on: list[str] | None = None,
    dependents: list[str] | None = None,
    **fields: object,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        status=status,
        dependencies=[DependencyEdge(d) for d in depends_on or []],
        dependents=list(dependents or []),
        **fields,  # type: ignore[arg-type]
    )


@pytest.fixture(autouse=True)
def _quiet_logs():
    """Reset global log verbosity between tests."""
    log.configure(verbose=False, quiet=False)
    yield
    log.configure(verbose=False, quiet=False)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "TASKGRAPH_FILE",
        "TASKGRAPH_ANCHOR_MODE",
        "TASKGRAPH_REJECT_CYCLES",
        "TASKGRAPH_MAX_WORKERS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def make_service():
    """Factory: ``make_service(tasks, **config)`` -> TaskService on a fresh store."""

    def _build(tasks: list[Task] | None = None, **cfg: object) -> TaskService:
        store = TaskStore(tasks=tasks or [])
        return TaskService(store, Config(**cfg), clock=lambda: NOW)  # type: ignore[arg-type]

    return _build


@pytest.fixture
def fs_edge():
    """Factory for FinishToStart edges with a lag."""

    def _edge(target: str, lag: int = 0, type: DependencyType = DependencyType.FINISH_TO_START) -> DependencyEdge:
        return DependencyEdge(target_id=target, type=type, lag_days=lag)

    return _edge
