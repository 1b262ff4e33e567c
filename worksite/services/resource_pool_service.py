"""
Resource pool service — exclusive, category-scoped slot assignment.

The only module allowed to write ResourceSlot.status / assigned_work_package_id.

assign() is a compare-and-swap: a single conditional UPDATE guarded by
`status = 'available'`, so two concurrent callers racing for the same slot
cannot both win. Assignments and releases commit immediately; they are
deliberately not part of the caller's unit of work.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from worksite.core.exceptions import AssignmentConflictError, NotFoundError, ValidationError
from worksite.models import db
from worksite.models.resource_pool import DEFAULT_SPECIALTY, ResourceSlot

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


def get_slot(slot_id: int) -> ResourceSlot:
    slot = db.session.get(ResourceSlot, slot_id)
    if slot is None:
        raise NotFoundError(resource="ResourceSlot", resource_id=slot_id)
    return slot


def find_available(category: str, specialty: str | None = None) -> ResourceSlot | None:
    """Oldest available slot for *category* (and *specialty* when given).

    Returns None when the category is exhausted; that is not an error here.
    """
    stmt = select(ResourceSlot).where(
        ResourceSlot.category == category,
        ResourceSlot.status == "available",
    )
    if specialty:
        stmt = stmt.where(ResourceSlot.specialty == specialty)
    stmt = stmt.order_by(ResourceSlot.created_at, ResourceSlot.id).limit(1)
    return db.session.execute(stmt).scalar_one_or_none()


def assign(slot_id: int, work_package_id: int) -> ResourceSlot:
    """available → assigned, or AssignmentConflictError if someone got there first."""
    slot = get_slot(slot_id)
    category = slot.category

    try:
        result = db.session.execute(
            update(ResourceSlot)
            .where(ResourceSlot.id == slot_id, ResourceSlot.status == "available")
            .values(
                status="assigned",
                assigned_work_package_id=work_package_id,
                assigned_at=_utcnow(),
                updated_at=_utcnow(),
            )
        )
        if result.rowcount != 1:
            db.session.rollback()
            raise AssignmentConflictError(category, slot_id=slot_id, reason="slot no longer available")
        db.session.commit()
    except IntegrityError as exc:
        # A work package may hold one slot per category.
        db.session.rollback()
        raise AssignmentConflictError(
            category, slot_id=slot_id,
            reason=f"work package {work_package_id} already holds a {category} slot",
        ) from exc

    db.session.refresh(slot)
    logger.info(
        "Slot %s (%s) assigned to work package %s", slot_id, category, work_package_id,
        extra={"slot_id": slot_id, "category": category, "work_package_id": work_package_id},
    )
    return slot


def release(slot_id: int) -> ResourceSlot:
    """assigned → available. Releasing an available slot is a no-op."""
    slot = get_slot(slot_id)
    if slot.status == "available":
        return slot

    previous = slot.assigned_work_package_id
    db.session.execute(
        update(ResourceSlot)
        .where(ResourceSlot.id == slot_id)
        .values(
            status="available",
            assigned_work_package_id=None,
            assigned_at=None,
            updated_at=_utcnow(),
        )
    )
    db.session.commit()
    db.session.refresh(slot)
    logger.info(
        "Slot %s (%s) released from work package %s", slot_id, slot.category, previous,
        extra={"slot_id": slot_id, "category": slot.category, "work_package_id": previous},
    )
    return slot


def availability_counts(categories=None) -> dict[str, int]:
    """Per-category count of available slots (zero for known but empty categories)."""
    rows = db.session.execute(
        select(ResourceSlot.category, func.count(ResourceSlot.id))
        .where(ResourceSlot.status == "available")
        .group_by(ResourceSlot.category)
    ).all()
    counts = {category: 0 for category in (categories or [])}
    counts.update({category: count for category, count in rows})
    return counts


def list_for_work_package(work_package_id: int) -> list[ResourceSlot]:
    stmt = (
        select(ResourceSlot)
        .where(ResourceSlot.assigned_work_package_id == work_package_id)
        .order_by(ResourceSlot.category, ResourceSlot.id)
    )
    return db.session.execute(stmt).scalars().all()


def release_all_for_work_package(work_package_id: int) -> list[int]:
    """Release every slot held by a work package; returns released slot ids."""
    released = []
    for slot in list_for_work_package(work_package_id):
        release(slot.id)
        released.append(slot.id)
    return released


def list_slots(category: str | None = None, status: str | None = None) -> list[ResourceSlot]:
    stmt = select(ResourceSlot)
    if category:
        stmt = stmt.where(ResourceSlot.category == category)
    if status:
        stmt = stmt.where(ResourceSlot.status == status)
    stmt = stmt.order_by(ResourceSlot.category, ResourceSlot.created_at, ResourceSlot.id)
    return db.session.execute(stmt).scalars().all()


def register_slot(data: dict) -> ResourceSlot:
    """Add a pre-provisioned resource to the catalog (always starts available)."""
    category = (data.get("category") or "").strip()
    external_ref_id = (data.get("external_ref_id") or "").strip()
    errors = {}
    if not category:
        errors["category"] = "required"
    if not external_ref_id:
        errors["external_ref_id"] = "required"
    if errors:
        raise ValidationError("category and external_ref_id are required", details=errors)

    slot = ResourceSlot(
        category=category,
        specialty=(data.get("specialty") or DEFAULT_SPECIALTY).strip(),
        external_ref_id=external_ref_id,
        name=data.get("name") or "",
        status="available",
    )
    db.session.add(slot)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ValidationError(
            f"external_ref_id '{external_ref_id}' is already registered",
            details={"external_ref_id": "duplicate"},
        ) from exc

    logger.info("Slot %s registered (%s/%s)", slot.id, slot.category, slot.specialty)
    return slot


def mark_synced(slot_id: int) -> None:
    db.session.execute(
        update(ResourceSlot)
        .where(ResourceSlot.id == slot_id)
        .values(last_synced_at=_utcnow())
    )
    db.session.commit()
