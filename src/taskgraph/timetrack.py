"""Time tracking: entry validation, effort aggregation and the time report."""

from __future__ import annotations

import csv
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path

from taskgraph.errors import InvalidIntervalError
from taskgraph.io_utils import PathLike, as_utc, format_datetime
from taskgraph.tasks.model import Task, TimeEntry

DEFAULT_PRECISION = 2


def round_half_up(value: float, places: int = 0) -> float:
    """Round like a spreadsheet: halves go away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def make_time_entry(
    user: str,
    start_time: datetime,
    end_time: datetime,
    description: str = "",
) -> TimeEntry:
    """Build a ``TimeEntry``; raises ``InvalidIntervalError`` unless end > start."""
    start = as_utc(start_time)
    end = as_utc(end_time)
    minutes = (end - start).total_seconds() / 60
    if minutes <= 0:
        raise InvalidIntervalError(start, end)
    return TimeEntry(
        user=user,
        start_time=start,
        end_time=end,
        duration_minutes=minutes,
        description=description,
    )


def logged_hours(entries: Iterable[TimeEntry], precision: int = DEFAULT_PRECISION) -> float:
    """Total logged effort in hours, rounded to *precision* decimals."""
    total_minutes = sum(e.duration_minutes for e in entries)
    return round_half_up(total_minutes / 60, precision)


def refresh_logged_effort(task: Task, precision: int = DEFAULT_PRECISION) -> float:
    """Recompute ``task.logged_effort_hours`` in place and return it."""
    task.logged_effort_hours = logged_hours(task.time_entries, precision)
    return task.logged_effort_hours


# ── Time tracking report ─────────────────────────────────────────────

REPORT_FIELDS = (
    "task_id",
    "task_title",
    "project_id",
    "user",
    "start_time",
    "end_time",
    "duration_hours",
    "description",
)


@dataclass
class TimeReportRow:
    task_id: str
    task_title: str
    project_id: str
    user: str
    start_time: datetime
    end_time: datetime
    duration_minutes: float
    description: str = ""

    @property
    def duration_hours(self) -> float:
        return round_half_up(self.duration_minutes / 60, DEFAULT_PRECISION)


def time_report(
    tasks: Iterable[Task],
    start: datetime,
    end: datetime,
    project_id: str | None = None,
) -> list[TimeReportRow]:
    """Entries whose start falls within ``[start, end]``, newest first."""
    lo, hi = as_utc(start), as_utc(end)
    rows: list[TimeReportRow] = []
    for task in tasks:
        if project_id and task.project_id != project_id:
            continue
        for entry in task.time_entries:
            if not lo <= entry.start_time <= hi:
                continue
            rows.append(
                TimeReportRow(
                    task_id=task.id,
                    task_title=task.title,
                    project_id=task.project_id,
                    user=entry.user,
                    start_time=entry.start_time,
                    end_time=entry.end_time,
                    duration_minutes=entry.duration_minutes,
                    description=entry.description,
                )
            )
    rows.sort(key=lambda r: r.start_time, reverse=True)
    return rows


def export_csv(rows: Iterable[TimeReportRow], path: PathLike) -> Path:
    """Write *rows* as CSV with a header line. Returns the written path."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(REPORT_FIELDS)
        for r in rows:
            writer.writerow([
                r.task_id,
                r.task_title,
                r.project_id,
                r.user,
                format_datetime(r.start_time),
                format_datetime(r.end_time),
                f"{r.duration_hours:.2f}",
                r.description,
            ])
    return out
