"""
Resource Blueprint — resource slot catalog and work package compilation.

Endpoints:
  Slots:        GET/POST /resources/slots
                POST     /resources/slots/<id>/release
                GET      /resources/availability
  Compilation:  POST     /resources/work-packages/<id>/compile
                GET      /resources/work-packages/<id>/slots
                POST     /resources/work-packages/<id>/release
"""

from flask import Blueprint, current_app, jsonify, request

from worksite.services import entity_store
from worksite.services import resource_pool_service as pool
from worksite.services.resource_compiler import compile_resources, required_categories
from worksite.utils.errors import register_error_handlers

resource_bp = Blueprint("resources", __name__, url_prefix="/api/v1/resources")
register_error_handlers(resource_bp)

# ── Rate limiting ─────────────────────────────────────────────────────────
from worksite import limiter  # noqa: E402

_compile_limit = limiter.shared_limit(
    lambda: current_app.config.get("COMPILE_RATE_LIMIT", "10/minute"),
    scope="resource_compile",
)


# ═════════════════════════════════════════════════════════════════════════════
# Slot catalog
# ═════════════════════════════════════════════════════════════════════════════

@resource_bp.route("/slots", methods=["GET"])
def list_slots():
    """List slots, optionally filtered by ?category= and ?status=."""
    items = pool.list_slots(
        category=request.args.get("category"),
        status=request.args.get("status"),
    )
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})


@resource_bp.route("/slots", methods=["POST"])
def register_slot():
    slot = pool.register_slot(request.get_json(silent=True) or {})
    return jsonify(slot.to_dict()), 201


@resource_bp.route("/slots/<int:slot_id>/release", methods=["POST"])
def release_slot(slot_id):
    """Return a slot to the pool. Releasing an available slot is a no-op."""
    slot = pool.release(slot_id)
    return jsonify(slot.to_dict())


@resource_bp.route("/availability", methods=["GET"])
def availability():
    """Available slot count per category (capacity diagnostics)."""
    return jsonify({"available": pool.availability_counts(required_categories())})


# ═════════════════════════════════════════════════════════════════════════════
# Work package compilation
# ═════════════════════════════════════════════════════════════════════════════

@resource_bp.route("/work-packages/<int:wp_id>/compile", methods=["POST"])
@_compile_limit
def compile_work_package(wp_id):
    """Assign one slot per category and push content; all or nothing."""
    return jsonify(compile_resources(wp_id))


@resource_bp.route("/work-packages/<int:wp_id>/slots", methods=["GET"])
def list_work_package_slots(wp_id):
    entity_store.get_entity("work_package", wp_id)
    items = pool.list_for_work_package(wp_id)
    return jsonify({"items": [s.to_dict() for s in items], "total": len(items)})


@resource_bp.route("/work-packages/<int:wp_id>/release", methods=["POST"])
def release_work_package_slots(wp_id):
    entity_store.get_entity("work_package", wp_id)
    released = pool.release_all_for_work_package(wp_id)
    return jsonify({"work_package_id": wp_id, "released": released})
