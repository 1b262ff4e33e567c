"""
Resource compiler — assign one resource slot per category to a work package
and push category-specific content to each, all or nothing.

Flow (per call):
    1. load work package + project                 → NotFoundError
    2. per category: reuse held slot, or find + assign
                                                   → PoolExhaustedError / AssignmentConflictError
    3. render content per category (never fails)
    4. push each block through the KnowledgeGateway → SyncFailureError
    5. persist external refs on the work package   → CascadeFailureError

Any failure after step 1 releases every slot assigned during this call
before the original error is re-raised. Slots the work package already held
before the call are left alone. Nothing is retried here; callers re-invoke.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from worksite.core.exceptions import CascadeFailureError, PoolExhaustedError, SyncFailureError
from worksite.integrations.knowledge_gateway import get_gateway
from worksite.models import db
from worksite.models.resource_pool import DEFAULT_RESOURCE_CATEGORIES, DEFAULT_SPECIALTY
from worksite.services import entity_store
from worksite.services import resource_pool_service as pool
from worksite.services.content_templates import DEFAULT_PLACEHOLDER, build_context, render_content
from worksite.services.settings_service import DEFAULT_SPECIALTY_KEY, REQUIRED_CATEGORIES_KEY

logger = logging.getLogger(__name__)

# Categories with a dedicated *_ref column on WorkPackage
_REF_COLUMNS = {
    "discovery": "discovery_ref",
    "preselection": "preselection_ref",
    "selection": "selection_ref",
}


def _settings_service():
    return current_app.extensions.get("settings_service")


def required_categories(settings=None) -> list[str]:
    """Ordered category list: app setting, then RESOURCE_CATEGORIES config."""
    settings = settings or _settings_service()
    categories = settings.get(REQUIRED_CATEGORIES_KEY) if settings else None
    if not categories:
        categories = current_app.config.get("RESOURCE_CATEGORIES") or DEFAULT_RESOURCE_CATEGORIES
    if isinstance(categories, str):
        categories = [c.strip() for c in categories.split(",")]
    return [c for c in categories if c]


def default_specialty(settings=None) -> str:
    settings = settings or _settings_service()
    value = settings.get(DEFAULT_SPECIALTY_KEY) if settings else None
    return value or DEFAULT_SPECIALTY


def _pick_slot(category, specialty, fallback_specialty):
    slot = pool.find_available(category, specialty)
    if slot is None and fallback_specialty and fallback_specialty != specialty:
        slot = pool.find_available(category, fallback_specialty)
    return slot


def _release_assigned(slots, work_package_id) -> None:
    """Best-effort release; failures are logged, never raised."""
    for slot_id, category in reversed(slots):
        try:
            pool.release(slot_id)
        except Exception:
            logger.exception(
                "Rollback could not release slot %s (%s) for work package %s",
                slot_id, category, work_package_id,
                extra={"slot_id": slot_id, "category": category, "work_package_id": work_package_id},
            )


def compile_resources(work_package_id: int, gateway=None, settings=None) -> dict:
    """Assign and sync one resource per required category for a work package.

    Returns:
        {"work_package_id", "refs": {category: external_ref_id},
         "reused": [category, ...], "compiled_at"}
    """
    wp = entity_store.get_entity("work_package", work_package_id)
    project = entity_store.get_entity("project", wp.project_id)

    gateway = gateway or get_gateway()
    categories = required_categories(settings)
    fallback = default_specialty(settings)
    specialty = wp.specialty or fallback
    placeholder = current_app.config.get("CONTENT_PLACEHOLDER", DEFAULT_PLACEHOLDER)

    held = {slot.category: slot for slot in pool.list_for_work_package(wp.id)}
    assigned = []           # (slot_id, category) assigned during this call
    picked = {}             # category → (slot_id, external_ref_id)

    logger.info(
        "Compiling resources for work package %s: %s (specialty=%s)",
        wp.id, ", ".join(categories), specialty,
        extra={"work_package_id": wp.id, "event_type": "compile_start"},
    )

    try:
        for category in categories:
            if category in held:
                slot = held[category]
                picked[category] = (slot.id, slot.external_ref_id)
                continue

            slot = _pick_slot(category, specialty, fallback)
            if slot is None:
                raise PoolExhaustedError(category, specialty)
            slot_id, external_ref_id = slot.id, slot.external_ref_id
            pool.assign(slot_id, wp.id)
            assigned.append((slot_id, category))
            picked[category] = (slot_id, external_ref_id)

        context = build_context(wp, project, entity_store.list_by_parent("step", wp.id))

        for category in categories:
            slot_id, external_ref_id = picked[category]
            content = render_content(category, context, placeholder)
            result = gateway.push_content(external_ref_id, content)
            if not result.ok:
                raise SyncFailureError(
                    category, external_ref_id,
                    error=result.error, status_code=result.status_code,
                )
            pool.mark_synced(slot_id)

        compiled_at = datetime.now(timezone.utc)
        for category, column in _REF_COLUMNS.items():
            if category in picked:
                setattr(wp, column, picked[category][1])
        wp.compiled_at = compiled_at
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise CascadeFailureError("WorkPackage", wp.id, cause=str(exc)) from exc

    except Exception as exc:
        logger.warning(
            "Compilation failed for work package %s: %s; releasing %d slot(s)",
            work_package_id, exc, len(assigned),
            extra={"work_package_id": work_package_id, "event_type": "compile_rollback"},
        )
        _release_assigned(assigned, work_package_id)
        raise

    refs = {category: ref for category, (_, ref) in picked.items()}
    logger.info(
        "Compiled work package %s: %s", wp.id, refs,
        extra={"work_package_id": wp.id, "event_type": "compile_success"},
    )
    return {
        "work_package_id": wp.id,
        "refs": refs,
        "reused": [c for c in categories if c in held],
        "compiled_at": compiled_at.isoformat(),
    }
