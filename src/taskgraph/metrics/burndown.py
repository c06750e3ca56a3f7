"""Burndown series: remaining work per day against a linear ideal line."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from taskgraph import log
from taskgraph.errors import ValidationError
from taskgraph.io_utils import as_utc
from taskgraph.tasks.model import Task, TaskStatus
from taskgraph.timetrack import round_half_up


@dataclass
class BurndownSeries:
    unit: str
    total: float
    dates: list[date] = field(default_factory=list)
    actual_remaining: list[float] = field(default_factory=list)
    ideal_remaining: list[float] = field(default_factory=list)

    def rows(self) -> list[tuple[date, float, float]]:
        return list(zip(self.dates, self.actual_remaining, self.ideal_remaining))


def to_day(value: date | datetime) -> date:
    """Calendar day (UTC) of *value*."""
    if isinstance(value, datetime):
        return as_utc(value).date()
    return value


def window_days(start: date, end: date) -> list[date]:
    """Every calendar day from *start* to *end*, both included."""
    span = (end - start).days
    return [start + timedelta(days=i) for i in range(span + 1)]


def completion_day(task: Task) -> date | None:
    """Day *task* reached Completed, or ``None`` if it has not (or is undated)."""
    if task.status != TaskStatus.COMPLETED:
        return None
    stamp = task.completed_at or task.updated_at
    if stamp is None:
        log.debug(f"Task {task.id}: Completed without a timestamp; left out of burndown")
        return None
    return to_day(stamp)


def compute_burndown(
    tasks: Iterable[Task],
    start: date | datetime,
    end: date | datetime,
    *,
    today: date | datetime | None = None,
    unit: str = "tasks",
) -> BurndownSeries:
    """Day-by-day remaining work over ``[start, end]``.

    *unit* ``"tasks"`` counts tasks; ``"hours"`` sums ``estimated_effort_hours``.
    Days after *today* are not emitted. The ideal line still spans the whole
    window, so a truncated series stops part-way down it.
    """
    if unit not in ("tasks", "hours"):
        raise ValidationError(f"Unknown burndown unit {unit!r} (expected 'tasks' or 'hours')")
    first, last = to_day(start), to_day(end)
    if last < first:
        raise ValidationError(f"Burndown window ends ({last}) before it starts ({first})")
    current = to_day(today) if today is not None else datetime.now(timezone.utc).date()

    task_list = list(tasks)
    weights = [1.0 if unit == "tasks" else max(0.0, t.estimated_effort_hours) for t in task_list]
    total = float(sum(weights))
    finished = [(completion_day(t), w) for t, w in zip(task_list, weights)]

    days = window_days(first, last)
    series = BurndownSeries(unit=unit, total=_tidy(total, unit))
    span = len(days) - 1

    for index, day in enumerate(days):
        if day > current:
            break
        done = sum(w for d, w in finished if d is not None and d <= day)
        progress = index / span if span else 0.0
        series.dates.append(day)
        series.actual_remaining.append(_tidy(max(0.0, total - done), unit))
        series.ideal_remaining.append(_tidy(round_half_up(total * (1 - progress)), unit))

    return series


def _tidy(value: float, unit: str) -> float:
    if unit == "tasks":
        return int(round(value))
    return round_half_up(value, 2)
