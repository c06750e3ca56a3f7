"""taskgraph CLI: edit the dependency graph in tasks.yaml and print reports.

Installed as the ``taskgraph`` console_script.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import click
from rich.markup import escape

from taskgraph import __version__
from taskgraph import log as glog
from taskgraph.config import ANCHOR_MODES, GRANULARITIES, Config
from taskgraph.errors import TaskGraphError
from taskgraph.io_utils import format_datetime, parse_datetime
from taskgraph.service import TaskService
from taskgraph.store import TaskStore
from taskgraph.tasks.io import load_task_file, save_task_file
from taskgraph.tasks.model import DependencyEdge, DependencyType, Task

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

_EDGE_TYPES = [t.value for t in DependencyType] + [t.short for t in DependencyType]


# ── helpers ──────────────────────────────────────────────────────────


def _parse_when(value: str | None, param_hint: str) -> datetime | None:
    if not value:
        return None
    try:
        return parse_datetime(value)
    except ValueError:
        raise click.BadParameter(
            f"{value!r} is not an ISO date or datetime (e.g. 2025-03-04 or 2025-03-04T09:30Z).",
            param_hint=param_hint,
        ) from None


def _parse_depends_on(raw: str) -> DependencyEdge:
    """``ID``, ``ID:TYPE`` or ``ID:TYPE:LAG`` (e.g. ``API-1:FS:2``)."""
    parts = [p.strip() for p in raw.split(":")]
    if not parts[0] or len(parts) > 3:
        raise click.BadParameter(
            f"{raw!r} must look like ID, ID:TYPE or ID:TYPE:LAG.", param_hint="--depends-on"
        )
    lag = 0
    if len(parts) == 3:
        try:
            lag = int(parts[2])
        except ValueError:
            raise click.BadParameter(f"Lag in {raw!r} must be an integer.", param_hint="--depends-on") from None
    try:
        edge_type = DependencyType.parse(parts[1] if len(parts) > 1 else None)
    except TaskGraphError as exc:
        raise click.BadParameter(str(exc), param_hint="--depends-on") from None
    return DependencyEdge(target_id=parts[0], type=edge_type, lag_days=lag)


def _load_service(cfg: Config) -> TaskService:
    tf = load_task_file(cfg.tasks_file)
    return TaskService(TaskStore.from_task_file(tf), cfg)


def _save(service: TaskService, cfg: Config) -> None:
    save_task_file(service.store.to_task_file(), cfg.tasks_file)
    glog.debug(f"Saved {cfg.tasks_file}")


@contextmanager
def _fail_on_error() -> Iterator[None]:
    """Turn domain errors into a logged message and exit status 1."""
    try:
        yield
    except TaskGraphError as exc:
        glog.error(str(exc))
        sys.exit(1)


def _fmt(value: datetime | None) -> str:
    return format_datetime(value) or "-"


def _fmt_day(value: datetime | None) -> str:
    return value.date().isoformat() if value is not None else "-"


def _task_window(
    service: TaskService,
    project_id: str | None,
    assignee: str | None = None,
    team: str | None = None,
) -> list[Task]:
    """Tasks matching every given scope; all tasks when none is given."""
    store = service.store
    selections: list[list[Task]] = []
    if project_id:
        store.get_project(project_id)
        selections.append(store.by_project(project_id))
    if assignee:
        selections.append(store.by_assignee(assignee))
    if team:
        selections.append(store.by_team(team))
    if not selections:
        return store.all()
    keep = set.intersection(*({t.id for t in s} for s in selections))
    return [t for t in selections[0] if t.id in keep]


# ── root group ───────────────────────────────────────────────────────


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("-f", "--file", "tasks_file", default="", help="Task file (default: tasks.yaml or $TASKGRAPH_FILE)")
@click.option("--anchor-mode", type=click.Choice(ANCHOR_MODES), default=None, help="How completed prerequisites anchor dependents")
@click.option("--reject-cycles", is_flag=True, default=None, help="Refuse dependency edges that would close a cycle")
@click.option("--allow-duplicate-edges", is_flag=True, help="Keep repeated edges to the same task instead of merging them")
@click.option("--workers", type=int, default=0, help="Threads used to reschedule dependents")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.option("-q", "--quiet", is_flag=True, help="Only print results, warnings and errors")
@click.version_option(__version__, prog_name="taskgraph")
@click.pass_context
def main(
    ctx: click.Context,
    tasks_file: str,
    anchor_mode: str | None,
    reject_cycles: bool | None,
    allow_duplicate_edges: bool,
    workers: int,
    verbose: bool,
    quiet: bool,
) -> None:
    """taskgraph: task dependencies, schedule propagation and delivery metrics.

    \b
    EXAMPLES:
      taskgraph deps add UI-1 API-1 --type FS --lag 2
      taskgraph complete API-1             # reschedules UI-1
      taskgraph burndown --project web
      taskgraph velocity --granularity biweekly --limit 6
    """
    glog.configure(verbose=verbose, quiet=quiet)
    try:
        ctx.obj = Config(
            tasks_file=tasks_file,
            anchor_mode=anchor_mode or "",
            reject_cycles=reject_cycles or None,
            dedupe_edges=not allow_duplicate_edges,
            max_workers=workers,
            verbose=verbose,
        )
    except ValueError as exc:
        raise click.UsageError(str(exc)) from None


# ── graph maintenance ────────────────────────────────────────────────


@main.command()
@click.option("--repair", "do_repair", is_flag=True, help="Fix dependents lists and prune dangling edges")
@click.pass_obj
def check(cfg: Config, do_repair: bool) -> None:
    """Validate the task file and the dependency graph."""
    from taskgraph.tasks.validate import check_consistency, repair, validate_and_report

    with _fail_on_error():
        tf = load_task_file(cfg.tasks_file)
        ok = validate_and_report(tf)
        store = TaskStore.from_task_file(tf)
        issues = check_consistency(store)
        if issues and do_repair:
            fixes = repair(store)
            check_consistency(store, strict=True)
            save_task_file(store.to_task_file(tf.version), cfg.tasks_file)
            glog.success(f"Repaired {fixes} graph issue(s)")
            issues = []
        for issue in issues:
            glog.warn(issue)
        if issues:
            glog.info("Run 'taskgraph check --repair' to fix the dependents lists.")
    if not ok or issues:
        sys.exit(1)


@main.command()
@click.argument("task_id")
@click.option("--title", default="", help="Task title")
@click.option("--project", "project_id", default="", help="Project id")
@click.option("--assignee", default="", help="Assignee")
@click.option("--estimate", type=float, default=0.0, help="Estimated effort in hours")
@click.option("--start", "start", default=None, help="Planned start (ISO date/datetime)")
@click.option("--due", "due", default=None, help="Due date (ISO date/datetime)")
@click.option("--depends-on", multiple=True, help="Prerequisite as ID[:TYPE[:LAG]] (repeatable)")
@click.pass_obj
def add(
    cfg: Config,
    task_id: str,
    title: str,
    project_id: str,
    assignee: str,
    estimate: float,
    start: str | None,
    due: str | None,
    depends_on: tuple[str, ...],
) -> None:
    """Create a task."""
    edges = [_parse_depends_on(raw) for raw in depends_on]
    task = Task(
        id=task_id,
        title=title,
        project_id=project_id,
        assignee=assignee,
        estimated_effort_hours=estimate,
        start_date=_parse_when(start, "--start"),
        due_date=_parse_when(due, "--due"),
        dependencies=edges,
    )
    with _fail_on_error():
        service = _load_service(cfg)
        service.create_task(task)
        _save(service, cfg)
    glog.success(f"Created {task_id}")


@main.command()
@click.argument("task_id")
@click.pass_obj
def show(cfg: Config, task_id: str) -> None:
    """Print one task with its edges and blockers."""
    from taskgraph.graph import is_satisfiable, unmet_dependencies

    with _fail_on_error():
        service = _load_service(cfg)
        task = service.store.get(task_id)
        ready = is_satisfiable(task, service.store)
        blockers = [] if ready else unmet_dependencies(task, service.store)

    glog.console.print(f"[bold]{escape(task.id)}[/bold] {escape(task.title)}")
    glog.console.print(f"Status:    {task.status.value} ({task.completion_percent}%)")
    glog.console.print(f"Effort:    {task.logged_effort_hours}h logged / {task.estimated_effort_hours}h estimated")
    glog.console.print(f"Start:     {_fmt(task.start_date)}")
    glog.console.print(f"End:       {_fmt(task.end_date)}")
    glog.console.print(f"Completed: {_fmt(task.completed_at)}")
    for edge in task.dependencies:
        glog.console.print(f"  needs {edge.target_id} ({edge.type.short}, lag {edge.lag_days}d)")
    if task.dependents:
        glog.console.print(f"  blocks {' '.join(task.dependents)}")
    if blockers:
        glog.console.print(f"[yellow]Waiting on:[/yellow] {' '.join(blockers)}")
    elif task.dependencies and not task.completed:
        glog.console.print("[green]Ready:[/green] every prerequisite is Completed")


@main.command()
@click.argument("task_id")
@click.argument("status")
@click.option("--at", "at", default=None, help="When the change happened (default: now)")
@click.pass_obj
def status(cfg: Config, task_id: str, status: str, at: str | None) -> None:
    """Change a task's status (Todo, "In Progress", Review, "Needs Work", Completed)."""
    when = _parse_when(at, "--at")
    with _fail_on_error():
        service = _load_service(cfg)
        task, propagation = service.set_status(task_id, status, when)
        _save(service, cfg)
    glog.success(f"{task_id}: {task.status.value}")
    if propagation is not None:
        _report_propagation(propagation)


@main.command()
@click.argument("task_id")
@click.option("--at", "at", default=None, help="Completion time (default: now)")
@click.pass_obj
def complete(cfg: Config, task_id: str, at: str | None) -> None:
    """Mark a task Completed and reschedule its dependents."""
    when = _parse_when(at, "--at")
    with _fail_on_error():
        service = _load_service(cfg)
        _task, propagation = service.complete_task(task_id, when)
        _save(service, cfg)
    glog.success(f"{task_id}: Completed")
    if propagation is not None:
        _report_propagation(propagation)


def _report_propagation(result: object) -> None:
    from taskgraph.scheduler import PropagationResult

    assert isinstance(result, PropagationResult)
    for tid, start in sorted(result.updated.items()):
        glog.info(f"{tid}: start moved to {_fmt(start)}")
    if result.blocked:
        glog.info(f"Still waiting on other prerequisites: {' '.join(result.blocked)}")
    for tid in result.failed:
        glog.warn(f"{tid}: could not be rescheduled")


@main.command()
@click.argument("task_id")
@click.pass_obj
def delete(cfg: Config, task_id: str) -> None:
    """Delete a task and prune every edge pointing at it."""
    with _fail_on_error():
        service = _load_service(cfg)
        service.delete_task(task_id)
        _save(service, cfg)
    glog.success(f"Deleted {task_id}")


@main.command("log-time")
@click.argument("task_id")
@click.option("--user", required=True, help="Who did the work")
@click.option("--start", "start", required=True, help="Start time (ISO datetime)")
@click.option("--end", "end", required=True, help="End time (ISO datetime)")
@click.option("--description", default="", help="What was done")
@click.pass_obj
def log_time(cfg: Config, task_id: str, user: str, start: str, end: str, description: str) -> None:
    """Record a time entry on a task."""
    started = _parse_when(start, "--start")
    ended = _parse_when(end, "--end")
    assert started is not None and ended is not None
    with _fail_on_error():
        service = _load_service(cfg)
        task = service.log_time(task_id, user, started, ended, description)
        _save(service, cfg)
    glog.success(f"{task_id}: {task.logged_effort_hours}h logged")


# ── dependencies ─────────────────────────────────────────────────────


@main.group()
def deps() -> None:
    """Add or remove dependency edges."""


@deps.command("add")
@click.argument("task_id")
@click.argument("targets", nargs=-1, required=True)
@click.option("--type", "edge_type", type=click.Choice(_EDGE_TYPES, case_sensitive=False), default="FinishToStart", help="Edge type")
@click.option("--lag", type=int, default=0, help="Lag in days")
@click.pass_obj
def deps_add(cfg: Config, task_id: str, targets: tuple[str, ...], edge_type: str, lag: int) -> None:
    """TASK_ID depends on each of TARGETS."""
    edges = [DependencyEdge(t, DependencyType.parse(edge_type), lag) for t in targets]
    with _fail_on_error():
        service = _load_service(cfg)
        task = service.add_dependencies(task_id, edges)
        _save(service, cfg)
    glog.success(f"{task_id} depends on: {', '.join(task.dependency_ids())}")


@deps.command("rm")
@click.argument("task_id")
@click.argument("target_id")
@click.pass_obj
def deps_rm(cfg: Config, task_id: str, target_id: str) -> None:
    """Remove the edge TASK_ID -> TARGET_ID."""
    with _fail_on_error():
        service = _load_service(cfg)
        task = service.remove_dependency(task_id, target_id)
        _save(service, cfg)
    remaining = ", ".join(task.dependency_ids()) or "nothing"
    glog.success(f"{task_id} depends on: {remaining}")


# ── reports ──────────────────────────────────────────────────────────


@main.command()
@click.option("--project", "project_id", default=None, help="Project id (its window is the default range)")
@click.option("--start", "start", default=None, help="Window start (ISO date)")
@click.option("--end", "end", default=None, help="Window end (ISO date)")
@click.option("--hours", is_flag=True, help="Burn estimated hours instead of task count")
@click.option("--today", "today", default=None, help="Reference day (default: today, UTC)")
@click.pass_obj
def burndown(
    cfg: Config,
    project_id: str | None,
    start: str | None,
    end: str | None,
    hours: bool,
    today: str | None,
) -> None:
    """Remaining work per day against the ideal line."""
    from taskgraph.metrics.burndown import compute_burndown

    window_start = _parse_when(start, "--start")
    window_end = _parse_when(end, "--end")
    ref = _parse_when(today, "--today") or datetime.now(timezone.utc)
    with _fail_on_error():
        service = _load_service(cfg)
        tasks = _task_window(service, project_id)
        if project_id and (window_start is None or window_end is None):
            project = service.store.get_project(project_id)
            window_start = window_start or project.start_date
            window_end = window_end or project.end_date
        if window_start is None or window_end is None:
            raise click.UsageError("Burndown needs --start and --end (or a project with a date window).")
        series = compute_burndown(
            tasks,
            window_start,
            window_end,
            today=ref,
            unit="hours" if hours else cfg.burndown_unit,
        )

    glog.print_table(
        f"Burndown ({series.unit}, total {series.total})",
        ["Date", "Actual", "Ideal"],
        [(d.isoformat(), a, i) for d, a, i in series.rows()],
    )


@main.command()
@click.option("--project", "project_id", default=None, help="Only tasks of this project")
@click.option("--assignee", default=None, help="Only tasks of this assignee")
@click.option("--team", default=None, help="Only tasks of this team")
@click.option("--granularity", type=click.Choice(GRANULARITIES), default=None, help="Period size")
@click.option("--limit", type=int, default=None, help="Most recent periods to show")
@click.pass_obj
def velocity(
    cfg: Config,
    project_id: str | None,
    assignee: str | None,
    team: str | None,
    granularity: str | None,
    limit: int | None,
) -> None:
    """Completed effort per period and estimate accuracy."""
    from taskgraph.metrics.velocity import compute_velocity

    with _fail_on_error():
        service = _load_service(cfg)
        series = compute_velocity(
            _task_window(service, project_id, assignee, team),
            granularity or cfg.velocity_granularity,
            limit or cfg.velocity_max_periods,
        )

    glog.print_table(
        f"Velocity ({series.granularity})",
        ["Period", "Tasks", "Committed h", "Actual h", "Accuracy"],
        [
            (b.label, b.task_count, b.committed, b.actual, f"{b.accuracy_percent}%")
            for b in series.buckets
        ],
    )
    glog.console.print(f"Average velocity: {series.average_velocity}h per period")


@main.command()
@click.option("--project", "project_id", default=None, help="Only tasks of this project")
@click.option("--assignee", default=None, help="Only tasks of this assignee")
@click.option("--team", default=None, help="Only tasks of this team")
@click.pass_obj
def summary(cfg: Config, project_id: str | None, assignee: str | None, team: str | None) -> None:
    """Status mix, completion rate and per-assignee numbers."""
    from taskgraph.metrics.analytics import project_summary, team_performance

    with _fail_on_error():
        service = _load_service(cfg)
        tasks = _task_window(service, project_id, assignee, team)
    stats = project_summary(tasks)

    glog.print_table(
        f"Tasks ({stats.total_tasks}, {stats.completion_rate}% completed)",
        ["Status", "Count"],
        sorted(stats.status_distribution.items()),
    )
    glog.print_table(
        "Assignees",
        ["Assignee", "Tasks", "Completed", "Rate %", "Logged h"],
        [
            (p.assignee, p.total_tasks, p.completed_tasks, p.completion_rate, p.logged_hours)
            for p in team_performance(tasks)
        ],
    )


@main.command()
@click.option("--project", "project_id", default=None, help="Only tasks of this project")
@click.pass_obj
def timeline(cfg: Config, project_id: str | None) -> None:
    """Tasks ordered by due date; undated tasks last."""
    from taskgraph.metrics.analytics import project_timeline

    with _fail_on_error():
        service = _load_service(cfg)
        ordered = project_timeline(_task_window(service, project_id))
    glog.print_table(
        "Timeline",
        ["Task", "Status", "Start", "Due"],
        [(t.id, t.status.value, _fmt_day(t.start_date), _fmt_day(t.due_date)) for t in ordered],
    )


@main.command()
@click.pass_obj
def projects(cfg: Config) -> None:
    """List projects with their date window and task count."""
    with _fail_on_error():
        service = _load_service(cfg)
        rows = [
            (p.id, p.name, _fmt_day(p.start_date), _fmt_day(p.end_date), len(service.store.by_project(p.id)))
            for p in service.store.projects()
        ]
    glog.print_table("Projects", ["Project", "Name", "Start", "End", "Tasks"], rows)


@main.command("due-soon")
@click.option("--days", type=int, default=None, help="Look-ahead in days")
@click.pass_obj
def due_soon(cfg: Config, days: int | None) -> None:
    """Open tasks due within the next few days."""
    from taskgraph.metrics.analytics import tasks_due_soon

    with _fail_on_error():
        service = _load_service(cfg)
        due = tasks_due_soon(service.store.all(), service.now(), days if days is not None else cfg.due_soon_days)
    if not due:
        glog.success("Nothing due soon.")
        return
    glog.print_table(
        "Due soon",
        ["Task", "Title", "Assignee", "Due"],
        [(t.id, t.title, t.assignee, _fmt(t.due_date)) for t in due],
    )


@main.group()
def report() -> None:
    """Exportable reports."""


@report.command("time")
@click.option("--start", "start", required=True, help="Window start (ISO date/datetime)")
@click.option("--end", "end", required=True, help="Window end (ISO date/datetime)")
@click.option("--project", "project_id", default=None, help="Only tasks of this project")
@click.option("-o", "--output", default="", help="Write CSV to this path instead of printing")
@click.pass_obj
def report_time(cfg: Config, start: str, end: str, project_id: str | None, output: str) -> None:
    """Time entries in a window, newest first."""
    from taskgraph.timetrack import export_csv, time_report

    lo = _parse_when(start, "--start")
    hi = _parse_when(end, "--end")
    assert lo is not None and hi is not None
    if len(end.strip()) == 10:
        # A bare date means "through the end of that day".
        hi = hi + timedelta(days=1) - timedelta(microseconds=1)
    with _fail_on_error():
        service = _load_service(cfg)
        rows = time_report(service.store.all(), lo, hi, project_id)

    if output:
        path = export_csv(rows, output)
        glog.success(f"Wrote {len(rows)} entr{'y' if len(rows) == 1 else 'ies'} to {path}")
        return
    glog.print_table(
        "Time entries",
        ["Task", "User", "Start", "End", "Hours"],
        [(r.task_id, r.user, _fmt(r.start_time), _fmt(r.end_time), f"{r.duration_hours:.2f}") for r in rows],
    )
