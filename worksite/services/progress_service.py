"""
Progress aggregation — read-only roll-ups for every level of the worksite tree.

Everything here is a pure function of child state: nothing is written, and
the numbers are recomputed on every read. Persisted `progression` columns are
refreshed by transition_service using the derive_* helpers below.

Rounding follows the UI convention of rounding halves up (49.5 → 50), not
Python's round-half-to-even.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from worksite.core.exceptions import ValidationError
from worksite.models.worksite import FINISHED_STATUSES, WORK_STATUSES, TASK_STATUSES
from worksite.services import entity_store

logger = logging.getLogger(__name__)

# Children whose progression counts toward "actual so far"
_PARTIAL_STATUSES = frozenset({"in_progress", "blocked"})


def _field(item: Any, name: str, default=None):
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ── Primitive calculations ───────────────────────────────────────────────────


def percent_complete(items: Iterable[Any]) -> int:
    """Share of items in a finished state (completed/done), 0–100.

    An empty collection is 0% complete.
    """
    items = list(items)
    if not items:
        return 0
    finished = sum(1 for i in items if _field(i, "status") in FINISHED_STATUSES)
    return round_half_up(100 * finished / len(items))


def ratio_percent(actual: float | None, estimated: float | None) -> int:
    """actual / estimated as a whole percentage; 0 when nothing was estimated."""
    if not estimated:
        return 0
    return round_half_up(100 * (actual or 0) / estimated)


def actual_so_far(children: Iterable[Any], estimated_field: str, actual_field: str) -> float:
    """Blend children's actual/estimated figures into a running actual.

    - finished children contribute their actual value (estimated if no actual)
    - in-progress (or blocked) children contribute estimated × progression/100
    - everything else contributes 0
    """
    total = 0.0
    for child in children:
        status = _field(child, "status")
        estimated = _field(child, estimated_field) or 0
        if status in FINISHED_STATUSES:
            actual = _field(child, actual_field)
            total += actual if actual is not None else estimated
        elif status in _PARTIAL_STATUSES:
            total += estimated * (_field(child, "progression", 0) or 0) / 100
    return total


def status_counts(items: Iterable[Any], statuses: Iterable[str]) -> dict[str, int]:
    counts = {s: 0 for s in sorted(statuses)}
    for item in items:
        status = _field(item, "status")
        counts[status] = counts.get(status, 0) + 1
    return counts


# ── Derived progression (persisted by the transition engine) ────────────────


def derive_step_progression(step) -> int | None:
    """Task completion ratio, or None when the step owns no tasks."""
    tasks = entity_store.list_by_parent("task", step.id)
    if not tasks:
        return None
    return percent_complete(tasks)


def derive_work_package_progression(work_package) -> int:
    return percent_complete(entity_store.list_by_parent("step", work_package.id))


def derive_project_progression(project) -> int:
    """Mean progression of the project's work packages."""
    work_packages = entity_store.list_by_parent("work_package", project.id)
    if not work_packages:
        return 0
    return round_half_up(sum(wp.progression or 0 for wp in work_packages) / len(work_packages))


# ── Level summaries ──────────────────────────────────────────────────────────


def step_summary(step) -> dict:
    tasks = entity_store.list_by_parent("task", step.id)
    if tasks:
        completion = percent_complete(tasks)
        estimated_min = sum(t.estimated_duration_min or 0 for t in tasks)
        actual_min = actual_so_far(tasks, "estimated_duration_min", "actual_duration_min")
    else:
        completion = step.progression or 0
        estimated_min = step.estimated_duration_min or 0
        actual_min = actual_so_far([step], "estimated_duration_min", "actual_duration_min")

    tools = set(step.required_tools or [])
    for t in tasks:
        tools.update(t.required_tools or [])

    return {
        "entity_type": "step",
        "id": step.id,
        "status": step.status,
        "progression": step.progression,
        "percent_complete": completion,
        "task_count": len(tasks),
        "status_counts": status_counts(tasks, TASK_STATUSES),
        "critical_tasks": sum(1 for t in tasks if t.is_critical),
        "critical_tasks_done": sum(1 for t in tasks if t.is_critical and t.status == "done"),
        "estimated_duration_min": estimated_min,
        "actual_duration_min": round_half_up(actual_min),
        "time_ratio_pct": ratio_percent(actual_min, estimated_min),
        "required_tools": sorted(tools),
    }


def work_package_summary(work_package) -> dict:
    steps = entity_store.list_by_parent("step", work_package.id)
    estimated_min = sum(s.estimated_duration_min or 0 for s in steps)
    actual_min = actual_so_far(steps, "estimated_duration_min", "actual_duration_min")

    estimated_hours = work_package.estimated_hours
    if estimated_hours is None:
        estimated_hours = round(estimated_min / 60, 1)
    actual_hours = work_package.actual_hours
    if actual_hours is None:
        actual_hours = round(actual_min / 60, 1)

    return {
        "entity_type": "work_package",
        "id": work_package.id,
        "status": work_package.status,
        "progression": work_package.progression,
        "percent_complete": percent_complete(steps),
        "step_count": len(steps),
        "status_counts": status_counts(steps, WORK_STATUSES),
        "estimated_hours": estimated_hours,
        "actual_hours": actual_hours,
        "time_ratio_pct": ratio_percent(actual_hours, estimated_hours),
        "estimated_cost": work_package.estimated_cost or 0,
        "actual_cost": work_package.actual_cost or 0,
        "budget_ratio_pct": ratio_percent(work_package.actual_cost, work_package.estimated_cost),
    }


def project_summary(project) -> dict:
    work_packages = entity_store.list_by_parent("work_package", project.id)

    estimated_hours = project.estimated_hours
    if estimated_hours is None:
        estimated_hours = sum(wp.estimated_hours or 0 for wp in work_packages)
    estimated_budget = project.estimated_budget
    if estimated_budget is None:
        estimated_budget = sum(wp.estimated_cost or 0 for wp in work_packages)

    actual_hours = actual_so_far(work_packages, "estimated_hours", "actual_hours")
    actual_cost = actual_so_far(work_packages, "estimated_cost", "actual_cost")

    return {
        "entity_type": "project",
        "id": project.id,
        "status": project.status,
        "progression": derive_project_progression(project),
        "percent_complete": percent_complete(work_packages),
        "work_package_count": len(work_packages),
        "status_counts": status_counts(work_packages, WORK_STATUSES),
        "estimated_hours": estimated_hours,
        "actual_hours": round(actual_hours, 1),
        "time_ratio_pct": ratio_percent(actual_hours, estimated_hours),
        "estimated_budget": estimated_budget,
        "actual_cost": round(actual_cost, 2),
        "budget_ratio_pct": ratio_percent(actual_cost, estimated_budget),
    }


_SUMMARIES = {
    "project": project_summary,
    "work_package": work_package_summary,
    "step": step_summary,
}


def get_aggregate_progress(entity_type: str, entity_id: int) -> dict:
    """Roll-up statistics for a project, work package or step."""
    summarize = _SUMMARIES.get(entity_type)
    if summarize is None:
        raise ValidationError(
            f"entity_type must be one of: {', '.join(sorted(_SUMMARIES))}",
            details={"entity_type": entity_type},
        )
    entity = entity_store.get_entity(entity_type, entity_id)
    return summarize(entity)
