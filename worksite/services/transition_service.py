"""
Status transition engine — the single authority for worksite status changes.

Business logic for:
    - Verb transitions:   start / block / unblock / complete / cancel / reactivate
                          for WorkPackage and Step (shared state graph)
    - Task checklist:     todo ⇄ done, optional actual duration on completion
    - Cascades:           complete-all (work package → steps → tasks),
                          reactivate (restarts every unfinished step)
    - Child creation:     new work packages / steps / tasks refresh their ancestors
    - Propagation rules:  implicit promotion of upcoming parents, progression
                          roll-up, auto-completion at 100%, project status

Every public function runs as one logical transaction: all rows touched by a
call (including cascaded descendants and rolled-up ancestors) are committed
together, or rolled back together and reported as CascadeFailureError.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from worksite.core.exceptions import (
    CascadeFailureError,
    InvalidTransitionError,
    ValidationError,
)
from worksite.models import db
from worksite.models.worksite import (
    COMPLETE_ALL_SOURCES,
    WORK_ACTIONS,
    validate_task_transition,
    validate_work_transition,
)
from worksite.services import entity_store, progress_service

logger = logging.getLogger(__name__)

# Parent statuses under which children may still be worked on
_CLOSED_PARENT_STATUSES = frozenset({"cancelled", "completed"})
_TASK_EDITABLE_STEP_STATUSES = frozenset({"upcoming", "in_progress", "blocked"})
_PROGRESSION_STEP_STATUSES = frozenset({"upcoming", "in_progress"})
# Child statuses that do not count as work having begun
_NOT_STARTED_STATUSES = frozenset({"upcoming", "cancelled"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _commit(resource: str, resource_id: int) -> None:
    """Commit the current unit of work or roll it back entirely."""
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Transition on %s id=%s rolled back: %s", resource, resource_id, exc,
            extra={"event_type": "cascade_failure"},
        )
        raise CascadeFailureError(resource, resource_id, cause=str(exc)) from exc


# ── Field side effects ───────────────────────────────────────────────────────


def _set_status(entity, label: str, new_status: str) -> None:
    """Write a WorkPackage/Step status together with its dependent fields."""
    old = entity.status
    now = _utcnow()
    entity.status = new_status

    if new_status != "blocked":
        entity.blockage_reason = None
    if new_status == "in_progress" and not entity.started_at:
        entity.started_at = now
    if new_status == "completed":
        entity.progression = 100
        entity.completed_at = now
        if not entity.started_at:
            entity.started_at = now
    if new_status == "upcoming":
        entity.progression = 0
        entity.started_at = None
        entity.completed_at = None

    logger.info("%s %s transitioned: %s → %s", label, entity.id, old, new_status)


def _set_task_status(task, new_status: str, actual_duration_min=None) -> None:
    old = task.status
    task.status = new_status
    if new_status == "done":
        task.completed_at = _utcnow()
        if actual_duration_min is not None:
            task.actual_duration_min = actual_duration_min
    else:
        task.completed_at = None
    logger.debug("Task %s transitioned: %s → %s", task.id, old, new_status)


# ── Propagation rules (evaluated after every child mutation) ────────────────


def _promote_if_upcoming(entity, label: str) -> None:
    """A parent cannot stay 'upcoming' once one of its children has moved."""
    if entity.status == "upcoming":
        _set_status(entity, label, "in_progress")


def _apply_step_rules(step) -> None:
    progression = progress_service.derive_step_progression(step)
    if progression is not None:
        step.progression = progression
        if progression == 100 and step.status == "in_progress":
            _set_status(step, "Step", "completed")
    _apply_work_package_rules(step.work_package)


def _apply_work_package_rules(work_package) -> None:
    steps = entity_store.list_by_parent("step", work_package.id)
    if any(s.status not in _NOT_STARTED_STATUSES for s in steps):
        _promote_if_upcoming(work_package, "WorkPackage")

    work_package.progression = progress_service.derive_work_package_progression(work_package)
    if work_package.progression == 100 and work_package.status == "in_progress":
        _set_status(work_package, "WorkPackage", "completed")
    _apply_project_rules(work_package.project)


def _apply_project_rules(project) -> None:
    project.progression = progress_service.derive_project_progression(project)
    work_packages = entity_store.list_by_parent("work_package", project.id)

    old = project.status
    if work_packages and all(wp.status == "completed" for wp in work_packages):
        project.status = "completed"
    elif project.status == "completed":
        project.status = "active"
    elif project.status == "draft" and any(wp.status not in _NOT_STARTED_STATUSES for wp in work_packages):
        project.status = "active"

    if project.status != old:
        logger.info("Project %s transitioned: %s → %s", project.id, old, project.status)


# ── Guards ───────────────────────────────────────────────────────────────────


def _check_action(entity, label: str, action: str) -> str:
    """Validate a verb against the entity's current status; return the target."""
    if action not in WORK_ACTIONS:
        raise ValidationError(
            f"action must be one of: {', '.join(sorted(WORK_ACTIONS))}",
            details={"action": action},
        )
    sources, target = WORK_ACTIONS[action]
    if entity.status not in sources or not validate_work_transition(entity.status, target):
        raise InvalidTransitionError(label, entity.id, entity.status, target)
    return target


def _check_parent_open(step, target: str) -> None:
    work_package = step.work_package
    if work_package.status in _CLOSED_PARENT_STATUSES:
        raise InvalidTransitionError(
            "Step", step.id, step.status, target,
            reason=f"work package {work_package.id} is {work_package.status}",
        )


def _check_task_editable(task, target: str) -> None:
    step = task.step
    if step.status not in _TASK_EDITABLE_STEP_STATUSES:
        raise InvalidTransitionError(
            "Task", task.id, task.status, target,
            reason=f"step {step.id} is {step.status}",
        )
    if step.work_package.status in _CLOSED_PARENT_STATUSES:
        raise InvalidTransitionError(
            "Task", task.id, task.status, target,
            reason=f"work package {step.work_package.id} is {step.work_package.status}",
        )


def _check_accepts_children(entity, label: str, child_kind: str) -> None:
    if entity.status in _CLOSED_PARENT_STATUSES:
        raise InvalidTransitionError(
            label, entity.id, entity.status, entity.status,
            reason=f"cannot add a {child_kind} under a {entity.status} {label}",
        )


def _require_reason(reason) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A blockage reason is required", details={"reason": "required"})
    return reason


def _check_children_finished(entity, label: str, child_kind: str, finished_status: str) -> None:
    open_children = [
        c for c in entity_store.list_by_parent(child_kind, entity.id)
        if c.status != finished_status
    ]
    if open_children:
        raise InvalidTransitionError(
            label, entity.id, entity.status, "completed",
            reason=f"{len(open_children)} {child_kind}(s) not finished; use complete-all",
        )


# ── Subtree operations (no commit) ───────────────────────────────────────────


def _force_complete_step(step) -> int:
    """Drive a step and its unfinished tasks to completed/done. Returns tasks touched."""
    touched = 0
    for task in entity_store.list_by_parent("task", step.id):
        if task.status != "done":
            _set_task_status(task, "done")
            touched += 1
    if step.status != "completed":
        _set_status(step, "Step", "completed")
    return touched


def _restart_step(step) -> None:
    """Reset a step and its tasks to their initial lifecycle state."""
    for task in entity_store.list_by_parent("task", step.id):
        if task.status != "todo":
            _set_task_status(task, "todo")
    if step.status != "upcoming":
        _set_status(step, "Step", "upcoming")
    step.progression = 0


# ═════════════════════════════════════════════════════════════════════════════
# WorkPackage
# ═════════════════════════════════════════════════════════════════════════════


def transition_work_package(work_package_id: int, action: str, reason: str | None = None):
    """Apply a verb (start, block, unblock, complete, cancel, reactivate) to a work package."""
    wp = entity_store.get_entity("work_package", work_package_id, for_update=True)
    target = _check_action(wp, "WorkPackage", action)

    if action == "block":
        reason = _require_reason(reason)
    if action == "complete":
        _check_children_finished(wp, "WorkPackage", "step", "completed")
    if action == "reactivate":
        # finished steps keep their work; everything else starts over
        for step in entity_store.list_by_parent("step", wp.id):
            if step.status != "completed":
                _restart_step(step)

    _set_status(wp, "WorkPackage", target)
    if action == "block":
        wp.blockage_reason = reason

    if action == "reactivate":
        _apply_work_package_rules(wp)
    else:
        _apply_project_rules(wp.project)
    _commit("WorkPackage", wp.id)
    return wp


def start_work_package(work_package_id: int):
    return transition_work_package(work_package_id, "start")


def block_work_package(work_package_id: int, reason: str):
    return transition_work_package(work_package_id, "block", reason=reason)


def unblock_work_package(work_package_id: int):
    return transition_work_package(work_package_id, "unblock")


def cancel_work_package(work_package_id: int):
    return transition_work_package(work_package_id, "cancel")


def reactivate_work_package(work_package_id: int):
    return transition_work_package(work_package_id, "reactivate")


def complete_work_package(work_package_id: int):
    return transition_work_package(work_package_id, "complete")


def complete_all_children_and_self(work_package_id: int):
    """Complete every step and task of a work package, then the work package.

    All rows change in one transaction; a persistence failure leaves the
    whole subtree exactly as it was.
    """
    wp = entity_store.get_entity("work_package", work_package_id, for_update=True)
    if wp.status not in COMPLETE_ALL_SOURCES:
        raise InvalidTransitionError("WorkPackage", wp.id, wp.status, "completed")

    steps_touched = tasks_touched = 0
    for step in entity_store.list_by_parent("step", wp.id):
        if step.status != "completed":
            steps_touched += 1
        tasks_touched += _force_complete_step(step)

    _set_status(wp, "WorkPackage", "completed")
    _apply_project_rules(wp.project)
    _commit("WorkPackage", wp.id)

    logger.info(
        "WorkPackage %s completed with cascade: %d step(s), %d task(s)",
        wp.id, steps_touched, tasks_touched,
        extra={"work_package_id": wp.id, "event_type": "cascade_complete"},
    )
    return wp


# ═════════════════════════════════════════════════════════════════════════════
# Step
# ═════════════════════════════════════════════════════════════════════════════


def transition_step(step_id: int, action: str, reason: str | None = None):
    """Apply a verb (start, block, unblock, complete, cancel, reactivate) to a step."""
    step = entity_store.get_entity("step", step_id, for_update=True)
    target = _check_action(step, "Step", action)
    if action != "cancel" and action != "block":
        _check_parent_open(step, target)

    if action == "block":
        reason = _require_reason(reason)
    if action == "complete":
        _check_children_finished(step, "Step", "task", "done")

    if action == "reactivate":
        _restart_step(step)
    else:
        _set_status(step, "Step", target)
    if action == "block":
        step.blockage_reason = reason

    _apply_work_package_rules(step.work_package)
    _commit("Step", step.id)
    return step


def start_step(step_id: int):
    return transition_step(step_id, "start")


def block_step(step_id: int, reason: str):
    return transition_step(step_id, "block", reason=reason)


def unblock_step(step_id: int):
    return transition_step(step_id, "unblock")


def cancel_step(step_id: int):
    return transition_step(step_id, "cancel")


def reactivate_step(step_id: int):
    return transition_step(step_id, "reactivate")


def complete_step(step_id: int):
    return transition_step(step_id, "complete")


def complete_all_tasks_and_step(step_id: int):
    """Mark every task of a step done, then complete the step."""
    step = entity_store.get_entity("step", step_id, for_update=True)
    if step.status not in COMPLETE_ALL_SOURCES:
        raise InvalidTransitionError("Step", step.id, step.status, "completed")
    _check_parent_open(step, "completed")

    tasks_touched = _force_complete_step(step)
    _apply_work_package_rules(step.work_package)
    _commit("Step", step.id)

    logger.info(
        "Step %s completed with cascade: %d task(s)", step.id, tasks_touched,
        extra={"step_id": step.id, "event_type": "cascade_complete"},
    )
    return step


def set_step_progression(step_id: int, progression):
    """Set progression on a step that owns no tasks (tasks drive it otherwise)."""
    try:
        progression = int(progression)
    except (TypeError, ValueError):
        raise ValidationError("progression must be an integer", details={"progression": progression})
    if not 0 <= progression <= 100:
        raise ValidationError("progression must be between 0 and 100", details={"progression": progression})

    step = entity_store.get_entity("step", step_id, for_update=True)
    if entity_store.list_by_parent("task", step.id):
        raise ValidationError(
            "progression is derived from tasks for this step",
            details={"step_id": step.id},
        )
    if step.status not in _PROGRESSION_STEP_STATUSES:
        raise InvalidTransitionError(
            "Step", step.id, step.status, "in_progress",
            reason="progression can only change while upcoming or in progress",
        )
    _check_parent_open(step, "in_progress")

    if progression > 0:
        _promote_if_upcoming(step, "Step")
    step.progression = progression
    if progression == 100:
        _set_status(step, "Step", "completed")

    _apply_work_package_rules(step.work_package)
    _commit("Step", step.id)
    return step


# ═════════════════════════════════════════════════════════════════════════════
# Task
# ═════════════════════════════════════════════════════════════════════════════


def _validate_duration(value) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError(
            "actual_duration_min must be an integer",
            details={"actual_duration_min": value},
        )
    if minutes < 0:
        raise ValidationError(
            "actual_duration_min cannot be negative",
            details={"actual_duration_min": value},
        )
    return minutes


def complete_task(task_id: int, actual_duration_min=None):
    """Tick a task; the first tick under an upcoming step starts that step."""
    if actual_duration_min is not None:
        actual_duration_min = _validate_duration(actual_duration_min)

    task = entity_store.get_entity("task", task_id, for_update=True)
    if not validate_task_transition(task.status, "done"):
        raise InvalidTransitionError("Task", task.id, task.status, "done")
    _check_task_editable(task, "done")

    _set_task_status(task, "done", actual_duration_min)
    _promote_if_upcoming(task.step, "Step")
    _apply_step_rules(task.step)
    _commit("Task", task.id)
    return task


def reopen_task(task_id: int):
    """Untick a task. Not allowed once its step is completed."""
    task = entity_store.get_entity("task", task_id, for_update=True)
    if not validate_task_transition(task.status, "todo"):
        raise InvalidTransitionError("Task", task.id, task.status, "todo")
    _check_task_editable(task, "todo")

    _set_task_status(task, "todo")
    _promote_if_upcoming(task.step, "Step")
    _apply_step_rules(task.step)
    _commit("Task", task.id)
    return task


def record_task_duration(task_id: int, actual_duration_min):
    """Correct the actual duration of a task without changing its status."""
    minutes = _validate_duration(actual_duration_min)
    task = entity_store.update_entity("task", task_id, {"actual_duration_min": minutes})
    logger.info("Task %s actual duration set to %d min", task.id, minutes)
    return task


# ═════════════════════════════════════════════════════════════════════════════
# Child creation
# ═════════════════════════════════════════════════════════════════════════════


def add_child(kind: str, fields: dict):
    """Create a work package, step or task and refresh its ancestors.

    The new row starts in its initial status, so parent progression drops
    accordingly and a completed project goes back to active. Children cannot
    be added under a cancelled or completed work package or step.
    """
    if kind not in entity_store.PARENT_FIELDS:
        raise ValidationError(
            f"entity type must be one of: {', '.join(sorted(entity_store.PARENT_FIELDS))}",
            details={"entity_type": kind},
        )
    parent_kind, parent_field = entity_store.PARENT_FIELDS[kind]
    parent_id = fields.get(parent_field)
    if parent_id is None:
        raise ValidationError(f"{parent_field} is required", details={parent_field: "required"})
    parent = entity_store.get_entity(parent_kind, parent_id, for_update=True)

    if kind == "step":
        _check_accepts_children(parent, "WorkPackage", kind)
    elif kind == "task":
        _check_accepts_children(parent, "Step", kind)
        _check_accepts_children(parent.work_package, "WorkPackage", kind)

    child = entity_store.insert_entity(kind, fields, commit=False)

    if kind == "task":
        _apply_step_rules(parent)
    elif kind == "step":
        _apply_work_package_rules(parent)
    else:
        _apply_project_rules(parent)
    _commit(parent_kind, parent.id)
    return child
