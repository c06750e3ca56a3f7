"""Configuration defaults, env vars, and runtime options for taskgraph."""

from __future__ import annotations

import os
from dataclasses import dataclass


VERSION = "1.0.0"

ANCHOR_MODES = ("edge-type", "latest-completion")
BURNDOWN_UNITS = ("tasks", "hours")
GRANULARITIES = ("weekly", "biweekly", "monthly")

DEFAULT_TASKS_FILE = "tasks.yaml"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_str(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_bool(name: str) -> bool | None:
    value = _env_str(name)
    if value is None:
        return None
    lower = value.lower()
    if lower in _TRUE:
        return True
    if lower in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (got {value!r})")


def _env_int(name: str) -> int | None:
    value = _env_str(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {value!r})") from None


@dataclass
class Config:
    """Runtime configuration. CLI flags win over ``TASKGRAPH_*`` env vars."""

    # Storage
    tasks_file: str = ""

    # Propagation
    anchor_mode: str = ""
    max_workers: int = 0

    # Dependency mutations
    dedupe_edges: bool = True
    reject_cycles: bool | None = None

    # Derived fields
    effort_precision: int = 2

    # Reporting
    burndown_unit: str = "tasks"
    velocity_granularity: str = "weekly"
    velocity_max_periods: int = 10
    due_soon_days: int = 2

    # Misc
    verbose: bool = False

    def __post_init__(self) -> None:
        if not self.tasks_file:
            self.tasks_file = _env_str("TASKGRAPH_FILE") or DEFAULT_TASKS_FILE

        if not self.anchor_mode:
            self.anchor_mode = _env_str("TASKGRAPH_ANCHOR_MODE") or "edge-type"

        if self.reject_cycles is None:
            self.reject_cycles = bool(_env_bool("TASKGRAPH_REJECT_CYCLES"))

        if not self.max_workers:
            self.max_workers = _env_int("TASKGRAPH_MAX_WORKERS") or 1

        self.validate()

    def validate(self) -> None:
        """Raise ``ValueError`` for settings outside their allowed values."""
        if self.anchor_mode not in ANCHOR_MODES:
            raise ValueError(
                f"anchor_mode must be one of {', '.join(ANCHOR_MODES)} (got {self.anchor_mode!r})"
            )
        if self.burndown_unit not in BURNDOWN_UNITS:
            raise ValueError(
                f"burndown_unit must be one of {', '.join(BURNDOWN_UNITS)} (got {self.burndown_unit!r})"
            )
        if self.velocity_granularity not in GRANULARITIES:
            raise ValueError(
                f"velocity_granularity must be one of {', '.join(GRANULARITIES)} "
                f"(got {self.velocity_granularity!r})"
            )
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.velocity_max_periods < 1:
            raise ValueError("velocity_max_periods must be >= 1")
        if self.effort_precision < 0:
            raise ValueError("effort_precision must be >= 0")
        if self.due_soon_days < 0:
            raise ValueError("due_soon_days must be >= 0")
