"""Tests for the taskgraph CLI, driven through click's CliRunner."""

from __future__ import annotations

import csv
from datetime import datetime, timezone

import pytest
from click.testing import CliRunner

from taskgraph.cli import main
from taskgraph.tasks.io import load_task_file


@pytest.fixture
def tasks_file(tmp_path):
    return tmp_path / "tasks.yaml"


@pytest.fixture
def run(tasks_file):
    runner = CliRunner()

    def _run(*args: str):
        return runner.invoke(main, ["-f", str(tasks_file), *args])

    return _run


def _seed_chain(run) -> None:
    """A, then B depending on A with a two-day lag."""
    assert run("add", "A", "--title", "Schema", "--estimate", "4").exit_code == 0
    assert run("add", "B", "--title", "API", "--depends-on", "A:FS:2").exit_code == 0


# ═══════════════════════════════════════════════════════════════════
#  Root group
# ═══════════════════════════════════════════════════════════════════


class TestRoot:
    def test_help(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "burndown" in result.output
        assert "deps" in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "taskgraph, version 1.0.0" in result.output

    def test_bad_env_is_usage_error(self, run, monkeypatch):
        monkeypatch.setenv("TASKGRAPH_ANCHOR_MODE", "whenever")
        result = run("check")
        assert result.exit_code == 2
        assert "anchor_mode" in result.output


# ═══════════════════════════════════════════════════════════════════
#  Graph editing
# ═══════════════════════════════════════════════════════════════════


class TestEditing:
    def test_add_links_both_sides(self, run, tasks_file):
        _seed_chain(run)
        tf = load_task_file(tasks_file)
        b = tf.get_task("B")
        assert b.dependencies[0].target_id == "A"
        assert b.dependencies[0].lag_days == 2
        assert tf.get_task("A").dependents == ["B"]

    def test_add_missing_dependency_fails(self, run, tasks_file):
        result = run("add", "B", "--depends-on", "GONE")
        assert result.exit_code == 1
        assert "not found: GONE" in result.output
        assert load_task_file(tasks_file).tasks == []

    def test_bad_depends_on_syntax(self, run):
        result = run("add", "B", "--depends-on", "A:FS:soon")
        assert result.exit_code == 2

    def test_deps_add_and_rm(self, run, tasks_file):
        run("add", "A")
        run("add", "B")
        result = run("deps", "add", "B", "A", "--type", "SS", "--lag", "1")
        assert result.exit_code == 0
        assert load_task_file(tasks_file).get_task("A").dependents == ["B"]

        result = run("deps", "rm", "B", "A")
        assert result.exit_code == 0
        tf = load_task_file(tasks_file)
        assert tf.get_task("B").dependencies == []
        assert tf.get_task("A").dependents == []

    def test_self_dependency_rejected(self, run):
        run("add", "A")
        result = run("deps", "add", "A", "A")
        assert result.exit_code == 1
        assert "itself" in result.output

    def test_delete_prunes_edges(self, run, tasks_file):
        _seed_chain(run)
        assert run("delete", "A").exit_code == 0
        tf = load_task_file(tasks_file)
        assert tf.get_task("A") is None
        assert tf.get_task("B").dependencies == []

    def test_show(self, run):
        _seed_chain(run)
        result = run("show", "B")
        assert result.exit_code == 0
        assert "needs A (FS, lag 2d)" in result.output
        assert "Waiting on:" in result.output

    def test_show_ready_and_logged_effort(self, run, tasks_file):
        tasks_file.write_text(
            "tasks:\n"
            "  - id: A\n"
            "    status: Completed\n"
            "    estimatedEffortHours: 4\n"
            "    dependents: [B]\n"
            "    timeEntries:\n"
            "      - {user: ana, startTime: 2025-03-04T09:00:00Z, endTime: 2025-03-04T11:30:00Z}\n"
            "  - id: B\n"
            "    dependencies: [A]\n",
            encoding="utf-8",
        )
        shown = run("show", "A")
        assert "2.5h logged / 4.0h estimated" in shown.output
        assert "Completed (100%)" in shown.output
        assert "Ready:" in run("show", "B").output


# ═══════════════════════════════════════════════════════════════════
#  Status and propagation
# ═══════════════════════════════════════════════════════════════════


class TestStatus:
    def test_complete_reschedules_dependent(self, run, tasks_file):
        _seed_chain(run)
        result = run("complete", "A", "--at", "2025-03-05T16:00Z")
        assert result.exit_code == 0
        assert "B: start moved to 2025-03-07T16:00:00Z" in result.output

        b = load_task_file(tasks_file).get_task("B")
        assert b.start_date == datetime(2025, 3, 7, 16, tzinfo=timezone.utc)
        assert b.status.value == "Todo"

    def test_status_command(self, run, tasks_file):
        run("add", "A")
        result = run("status", "A", "In Progress")
        assert result.exit_code == 0
        assert load_task_file(tasks_file).get_task("A").status.value == "In Progress"

    def test_unknown_status(self, run):
        run("add", "A")
        result = run("status", "A", "Finished")
        assert result.exit_code == 1
        assert "Unknown status" in result.output

    def test_bad_timestamp(self, run):
        run("add", "A")
        result = run("complete", "A", "--at", "yesterday")
        assert result.exit_code == 2


class TestLogTime:
    def test_log_time(self, run, tasks_file):
        run("add", "A")
        result = run(
            "log-time", "A", "--user", "ana",
            "--start", "2025-03-04T09:00Z", "--end", "2025-03-04T10:30Z",
        )
        assert result.exit_code == 0
        assert load_task_file(tasks_file).get_task("A").logged_effort_hours == 1.5

    def test_zero_length_rejected(self, run, tasks_file):
        run("add", "A")
        result = run(
            "log-time", "A", "--user", "ana",
            "--start", "2025-03-04T09:00Z", "--end", "2025-03-04T09:00Z",
        )
        assert result.exit_code == 1
        assert load_task_file(tasks_file).get_task("A").time_entries == []


# ═══════════════════════════════════════════════════════════════════
#  check
# ═══════════════════════════════════════════════════════════════════


class TestCheck:
    def test_clean_file(self, run):
        _seed_chain(run)
        assert run("check").exit_code == 0

    def test_inconsistent_then_repaired(self, run, tasks_file):
        tasks_file.write_text(
            "tasks:\n"
            "  - id: A\n"
            "  - id: B\n"
            "    dependencies: [A]\n",
            encoding="utf-8",
        )
        result = run("check")
        assert result.exit_code == 1
        assert "missing dependent B" in result.output

        assert run("check", "--repair").exit_code == 0
        assert load_task_file(tasks_file).get_task("A").dependents == ["B"]
        assert run("check").exit_code == 0

    def test_cycle_reported(self, run, tasks_file):
        tasks_file.write_text(
            "tasks:\n"
            "  - {id: A, dependencies: [B], dependents: [B]}\n"
            "  - {id: B, dependencies: [A], dependents: [A]}\n",
            encoding="utf-8",
        )
        result = run("check")
        assert result.exit_code == 1
        assert "cycle" in result.output


# ═══════════════════════════════════════════════════════════════════
#  Reports
# ═══════════════════════════════════════════════════════════════════


class TestReports:
    def test_burndown(self, run):
        _seed_chain(run)
        result = run(
            "burndown", "--start", "2025-03-01", "--end", "2025-03-05", "--today", "2025-03-31"
        )
        assert result.exit_code == 0
        assert "Burndown (tasks, total 2)" in result.output
        assert "2025-03-05" in result.output

    def test_burndown_needs_window(self, run):
        _seed_chain(run)
        result = run("burndown")
        assert result.exit_code == 2

    def test_burndown_unknown_project(self, run):
        result = run("burndown", "--project", "nope")
        assert result.exit_code == 1
        assert "Project not found" in result.output

    def test_velocity(self, run):
        _seed_chain(run)
        run("complete", "A", "--at", "2025-03-05T16:00Z")
        result = run("velocity", "--granularity", "monthly")
        assert result.exit_code == 0
        assert "Month of Mar 2025" in result.output
        assert "Average velocity" in result.output

    def test_summary(self, run):
        _seed_chain(run)
        result = run("summary")
        assert result.exit_code == 0
        assert "Todo" in result.output

    def test_due_soon_empty(self, run):
        run("add", "A")
        result = run("due-soon")
        assert result.exit_code == 0
        assert "Nothing due soon" in result.output

    def test_time_report_csv(self, run, tmp_path):
        run("add", "A", "--title", "Schema")
        run(
            "log-time", "A", "--user", "ana",
            "--start", "2025-03-04T09:00Z", "--end", "2025-03-04T10:30Z",
        )
        out = tmp_path / "report.csv"
        result = run("report", "time", "--start", "2025-03-01", "--end", "2025-03-04", "-o", str(out))
        assert result.exit_code == 0

        with open(out, encoding="utf-8", newline="") as fh:
            rows = list(csv.reader(fh))
        assert rows[0][:2] == ["task_id", "task_title"]
        assert rows[1][0] == "A"
        assert rows[1][6] == "1.50"

    def test_summary_scoped_to_assignee(self, run):
        run("add", "A", "--assignee", "ana")
        run("add", "B", "--assignee", "ben")
        result = run("summary", "--assignee", "ana")
        assert result.exit_code == 0
        assert "Tasks (1, 0.0% completed)" in result.output
        assert "ben" not in result.output

    def test_timeline(self, run):
        run("add", "LATE", "--due", "2025-03-20")
        run("add", "SOON", "--due", "2025-03-12")
        result = run("timeline")
        assert result.exit_code == 0
        assert result.output.index("SOON") < result.output.index("LATE")

    def test_projects(self, run, tasks_file):
        tasks_file.write_text(
            "projects:\n"
            "  - {id: web, name: Relaunch, startDate: 2025-03-03, endDate: 2025-03-28}\n"
            "tasks:\n"
            "  - {id: A, projectId: web}\n",
            encoding="utf-8",
        )
        result = run("projects")
        assert result.exit_code == 0
        assert "Relaunch" in result.output
