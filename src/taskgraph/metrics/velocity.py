"""Velocity: completed effort per period and estimate accuracy.

Weeks start on Monday. A biweekly sprint starts on the Monday of an odd ISO
week and also covers the following (even) week.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from taskgraph import log
from taskgraph.config import GRANULARITIES
from taskgraph.errors import ValidationError
from taskgraph.metrics.burndown import completion_day
from taskgraph.tasks.model import Task
from taskgraph.timetrack import round_half_up


@dataclass
class VelocityBucket:
    period_start: date
    label: str
    committed: float = 0.0
    actual: float = 0.0
    task_count: int = 0
    accuracy: float = 0.0
    accuracy_percent: int = 0


@dataclass
class VelocitySeries:
    granularity: str
    buckets: list[VelocityBucket] = field(default_factory=list)
    average_velocity: float = 0.0


def period_start(day: date, granularity: str) -> date:
    """First day of the period containing *day*."""
    match granularity:
        case "weekly":
            return day - timedelta(days=day.weekday())
        case "biweekly":
            week_start = day - timedelta(days=day.weekday())
            if week_start.isocalendar()[1] % 2 == 1:
                return week_start
            return week_start - timedelta(weeks=1)
        case "monthly":
            return day.replace(day=1)
        case _:
            raise ValidationError(
                f"Unknown granularity {granularity!r}. Valid: {', '.join(GRANULARITIES)}."
            )


def period_label(start: date, granularity: str) -> str:
    pretty = f"{start:%b} {start.day}, {start.year}"
    match granularity:
        case "weekly":
            return f"Week of {pretty}"
        case "biweekly":
            return f"Sprint {pretty}"
        case _:
            return f"Month of {start:%b %Y}"


def compute_velocity(
    tasks: Iterable[Task],
    granularity: str = "weekly",
    max_periods: int = 10,
) -> VelocitySeries:
    """Bucket Completed tasks by completion period; keep the latest *max_periods*.

    Buckets come back oldest first. Tasks that are not Completed, or carry no
    completion timestamp, are left out.
    """
    if granularity not in GRANULARITIES:
        raise ValidationError(
            f"Unknown granularity {granularity!r}. Valid: {', '.join(GRANULARITIES)}."
        )
    if max_periods < 1:
        raise ValidationError("max_periods must be >= 1")

    buckets: dict[date, VelocityBucket] = {}
    for task in tasks:
        day = completion_day(task)
        if day is None:
            continue
        start = period_start(day, granularity)
        bucket = buckets.get(start)
        if bucket is None:
            bucket = buckets[start] = VelocityBucket(
                period_start=start, label=period_label(start, granularity)
            )
        bucket.committed += max(0.0, task.estimated_effort_hours)
        bucket.actual += max(0.0, task.logged_effort_hours)
        bucket.task_count += 1

    recent = sorted(buckets.values(), key=lambda b: b.period_start, reverse=True)[:max_periods]
    recent.reverse()

    for bucket in recent:
        bucket.committed = round_half_up(bucket.committed, 2)
        bucket.actual = round_half_up(bucket.actual, 2)
        if bucket.committed > 0:
            ratio = bucket.actual / bucket.committed
            bucket.accuracy = round_half_up(ratio, 2)
            bucket.accuracy_percent = int(round_half_up(ratio * 100))
        else:
            bucket.accuracy = 0.0
            bucket.accuracy_percent = 0

    series = VelocitySeries(granularity=granularity, buckets=recent)
    if recent:
        series.average_velocity = round_half_up(sum(b.actual for b in recent) / len(recent), 2)
    log.debug(f"Velocity ({granularity}): {len(recent)} period(s) of {len(buckets)}")
    return series
