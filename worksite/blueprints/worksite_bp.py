"""
Worksite Blueprint — renovation project breakdown and lifecycle.

Endpoints:
  Project:      POST /projects, GET /projects/<id>
  WorkPackage:  POST /projects/<id>/work-packages, GET/PUT /work-packages/<id>
                POST /work-packages/<id>/<action>
  Step:         GET/POST /work-packages/<id>/steps, GET/PUT /steps/<id>
                POST /steps/<id>/<action>
                POST /steps/<id>/progression
  Task:         GET/POST /steps/<id>/tasks, GET /tasks/<id>
                POST /tasks/<id>/complete, POST /tasks/<id>/reopen
                PUT  /tasks/<id>/notes, PUT /tasks/<id>/duration
  Progress:     GET  /progress/<entity_type>/<id>

<action> is one of: start, block, unblock, cancel, reactivate, complete, complete-all.
"""

from flask import Blueprint, jsonify, request

from worksite.services import entity_store, progress_service, transition_service
from worksite.utils.errors import E, api_error, register_error_handlers

worksite_bp = Blueprint("worksite", __name__, url_prefix="/api/v1")
register_error_handlers(worksite_bp)

_ACTIONS = {"start", "block", "unblock", "cancel", "reactivate", "complete", "complete-all"}


def _json_body():
    return request.get_json(silent=True) or {}


def _include_children():
    return request.args.get("include") == "children"


def _list_children(kind, parent_kind, parent_id):
    entity_store.get_entity(parent_kind, parent_id)
    status = request.args.get("status")
    if status:
        items = entity_store.list_by_status(kind, parent_id, status)
    else:
        items = entity_store.list_by_parent(kind, parent_id)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Project
# ═════════════════════════════════════════════════════════════════════════════

@worksite_bp.route("/projects", methods=["POST"])
def create_project():
    project = entity_store.insert_entity("project", _json_body())
    return jsonify(project.to_dict()), 201


@worksite_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    """Get a project with optional deep include (?include=children)."""
    project = entity_store.get_entity("project", project_id)
    return jsonify(project.to_dict(include_children=_include_children()))


@worksite_bp.route("/projects/<int:project_id>/work-packages", methods=["GET"])
def list_work_packages(project_id):
    return _list_children("work_package", "project", project_id)


# ═════════════════════════════════════════════════════════════════════════════
# WorkPackage
# ═════════════════════════════════════════════════════════════════════════════

@worksite_bp.route("/projects/<int:project_id>/work-packages", methods=["POST"])
def create_work_package(project_id):
    data = _json_body()
    data["project_id"] = project_id
    wp = transition_service.add_child("work_package", data)
    return jsonify(wp.to_dict()), 201


@worksite_bp.route("/work-packages/<int:wp_id>", methods=["GET"])
def get_work_package(wp_id):
    wp = entity_store.get_entity("work_package", wp_id)
    return jsonify(wp.to_dict(include_children=_include_children()))


@worksite_bp.route("/work-packages/<int:wp_id>", methods=["PUT"])
def update_work_package(wp_id):
    wp = entity_store.update_entity("work_package", wp_id, _json_body())
    return jsonify(wp.to_dict())


@worksite_bp.route("/work-packages/<int:wp_id>/<action>", methods=["POST"])
def work_package_action(wp_id, action):
    """Lifecycle verb on a work package (complete-all cascades to steps and tasks)."""
    if action not in _ACTIONS:
        return api_error(E.NOT_FOUND, f"Unknown action '{action}'")
    if action == "complete-all":
        wp = transition_service.complete_all_children_and_self(wp_id)
    else:
        wp = transition_service.transition_work_package(
            wp_id, action, reason=_json_body().get("reason"),
        )
    return jsonify(wp.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Step
# ═════════════════════════════════════════════════════════════════════════════

@worksite_bp.route("/work-packages/<int:wp_id>/steps", methods=["GET"])
def list_steps(wp_id):
    """List steps of a work package, optionally filtered by ?status=."""
    return _list_children("step", "work_package", wp_id)


@worksite_bp.route("/work-packages/<int:wp_id>/steps", methods=["POST"])
def create_step(wp_id):
    data = _json_body()
    data["work_package_id"] = wp_id
    step = transition_service.add_child("step", data)
    return jsonify(step.to_dict()), 201


@worksite_bp.route("/steps/<int:step_id>", methods=["GET"])
def get_step(step_id):
    step = entity_store.get_entity("step", step_id)
    return jsonify(step.to_dict(include_children=_include_children()))


@worksite_bp.route("/steps/<int:step_id>", methods=["PUT"])
def update_step(step_id):
    step = entity_store.update_entity("step", step_id, _json_body())
    return jsonify(step.to_dict())


@worksite_bp.route("/steps/<int:step_id>/progression", methods=["POST"])
def set_step_progression(step_id):
    """Manual progression for a step without tasks."""
    data = _json_body()
    if "progression" not in data:
        return api_error(E.VALIDATION_REQUIRED, "progression is required")
    step = transition_service.set_step_progression(step_id, data["progression"])
    return jsonify(step.to_dict())


@worksite_bp.route("/steps/<int:step_id>/<action>", methods=["POST"])
def step_action(step_id, action):
    if action not in _ACTIONS:
        return api_error(E.NOT_FOUND, f"Unknown action '{action}'")
    if action == "complete-all":
        step = transition_service.complete_all_tasks_and_step(step_id)
    else:
        step = transition_service.transition_step(
            step_id, action, reason=_json_body().get("reason"),
        )
    return jsonify(step.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Task
# ═════════════════════════════════════════════════════════════════════════════

@worksite_bp.route("/steps/<int:step_id>/tasks", methods=["GET"])
def list_tasks(step_id):
    return _list_children("task", "step", step_id)


@worksite_bp.route("/steps/<int:step_id>/tasks", methods=["POST"])
def create_task(step_id):
    data = _json_body()
    data["step_id"] = step_id
    task = transition_service.add_child("task", data)
    return jsonify(task.to_dict()), 201


@worksite_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    task = entity_store.get_entity("task", task_id)
    return jsonify(task.to_dict())


@worksite_bp.route("/tasks/<int:task_id>/complete", methods=["POST"])
def complete_task(task_id):
    """Tick a task, optionally recording actual_duration_min."""
    data = _json_body()
    task = transition_service.complete_task(task_id, data.get("actual_duration_min"))
    return jsonify(task.to_dict())


@worksite_bp.route("/tasks/<int:task_id>/reopen", methods=["POST"])
def reopen_task(task_id):
    task = transition_service.reopen_task(task_id)
    return jsonify(task.to_dict())


@worksite_bp.route("/tasks/<int:task_id>/notes", methods=["PUT"])
def update_task_notes(task_id):
    data = _json_body()
    task = entity_store.update_entity("task", task_id, {"notes": data.get("notes") or ""})
    return jsonify(task.to_dict())


@worksite_bp.route("/tasks/<int:task_id>/duration", methods=["PUT"])
def update_task_duration(task_id):
    """Correct actual_duration_min on a task, ticked or not."""
    data = _json_body()
    if "actual_duration_min" not in data:
        return api_error(E.VALIDATION_REQUIRED, "actual_duration_min is required")
    task = transition_service.record_task_duration(task_id, data["actual_duration_min"])
    return jsonify(task.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Progress
# ═════════════════════════════════════════════════════════════════════════════

@worksite_bp.route("/progress/<entity_type>/<int:entity_id>", methods=["GET"])
def get_progress(entity_type, entity_id):
    """Aggregate statistics, recomputed on every read."""
    return jsonify(progress_service.get_aggregate_progress(entity_type.replace("-", "_"), entity_id))
