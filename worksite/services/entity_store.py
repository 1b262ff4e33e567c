"""
Entity store — uniform access to the four worksite entity kinds.

Every service resolves entities through these helpers instead of calling
db.session.get(Model, pk) directly, so a missing id always surfaces as
NotFoundError and parent/status queries share one ordering rule.

Entity kinds:
    project ▸ work_package ▸ step ▸ task

Lifecycle fields (status, progression, blockage reason, timestamps, external
refs) are NOT writable through update_entity/insert_entity: they belong to the
transition engine and the resource compiler.
"""

import logging

from sqlalchemy import select, update

from worksite.core.exceptions import NotFoundError, ValidationError
from worksite.models import db
from worksite.models.worksite import STEP_DIFFICULTIES, Project, Step, Task, WorkPackage

logger = logging.getLogger(__name__)

MODELS = {
    "project": Project,
    "work_package": WorkPackage,
    "step": Step,
    "task": Task,
}

PARENT_FIELDS = {
    "work_package": ("project", "project_id"),
    "step": ("work_package", "work_package_id"),
    "task": ("step", "step_id"),
}

PROTECTED_FIELDS = frozenset({
    "id", "status", "progression", "blockage_reason",
    "started_at", "completed_at", "created_at", "updated_at",
    "discovery_ref", "preselection_ref", "selection_ref", "compiled_at",
    "project_id", "work_package_id", "step_id",
})


def _model(kind):
    model = MODELS.get(kind)
    if model is None:
        raise ValidationError(
            f"entity type must be one of: {', '.join(sorted(MODELS))}",
            details={"entity_type": kind},
        )
    return model


def _writable_fields(model, fields):
    columns = {c.name for c in model.__table__.columns}
    return {k: v for k, v in fields.items() if k in columns and k not in PROTECTED_FIELDS}


def _validate_fields(kind, fields):
    if "difficulty" in fields and fields["difficulty"] not in STEP_DIFFICULTIES:
        raise ValidationError(
            f"difficulty must be one of: {', '.join(sorted(STEP_DIFFICULTIES))}",
            details={"difficulty": fields["difficulty"]},
        )
    if "required_tools" in fields:
        tools = fields["required_tools"] or []
        if not isinstance(tools, (list, tuple, set)):
            raise ValidationError("required_tools must be a list", details={"required_tools": tools})
        fields["required_tools"] = sorted({str(t).strip() for t in tools if str(t).strip()})


def get_entity(kind, pk, *, for_update=False):
    """Fetch one entity by PK or raise NotFoundError.

    for_update=True issues SELECT ... FOR UPDATE on backends that support it.
    """
    model = _model(kind)
    stmt = select(model).where(model.id == pk)
    if for_update:
        stmt = stmt.with_for_update()
    obj = db.session.execute(stmt).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return obj


def list_by_parent(kind, parent_id):
    """Children of a parent, in display order (order, then id)."""
    model = _model(kind)
    if kind not in PARENT_FIELDS:
        raise ValidationError(f"{model.__name__} has no parent")
    _, parent_field = PARENT_FIELDS[kind]
    stmt = (
        select(model)
        .where(getattr(model, parent_field) == parent_id)
        .order_by(model.order, model.id)
    )
    return db.session.execute(stmt).scalars().all()


def list_by_status(kind, parent_id, status):
    """Children of a parent filtered by status."""
    model = _model(kind)
    if kind not in PARENT_FIELDS:
        raise ValidationError(f"{model.__name__} has no parent")
    _, parent_field = PARENT_FIELDS[kind]
    stmt = (
        select(model)
        .where(getattr(model, parent_field) == parent_id, model.status == status)
        .order_by(model.order, model.id)
    )
    return db.session.execute(stmt).scalars().all()


def insert_entity(kind, fields, *, commit=True):
    """Create an entity in its initial lifecycle state under an existing parent.

    Ancestor progression/status is not refreshed here; callers adding
    children go through transition_service.add_child.
    """
    model = _model(kind)
    data = _writable_fields(model, fields)
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    _validate_fields(kind, data)

    if kind in PARENT_FIELDS:
        parent_kind, parent_field = PARENT_FIELDS[kind]
        parent_id = fields.get(parent_field)
        if parent_id is None:
            raise ValidationError(f"{parent_field} is required", details={parent_field: "required"})
        get_entity(parent_kind, parent_id)
        data[parent_field] = parent_id
        if "order" not in data:
            data["order"] = len(list_by_parent(kind, parent_id)) + 1

    obj = model(**data)
    db.session.add(obj)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    logger.info("%s created id=%s", model.__name__, obj.id)
    return obj


def update_entity(kind, pk, fields, *, commit=True):
    """Atomic single-row patch of non-lifecycle fields.

    Lifecycle fields in *fields* are rejected rather than silently dropped.
    """
    model = _model(kind)
    forbidden = sorted(set(fields) & PROTECTED_FIELDS)
    if forbidden:
        raise ValidationError(
            f"{', '.join(forbidden)} cannot be updated directly",
            details={f: "read-only" for f in forbidden},
        )
    data = _writable_fields(model, fields)
    _validate_fields(kind, data)
    if not data:
        return get_entity(kind, pk)

    result = db.session.execute(
        update(model).where(model.id == pk).values(**data)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    if commit:
        db.session.commit()
    obj = get_entity(kind, pk)
    db.session.refresh(obj)
    return obj
