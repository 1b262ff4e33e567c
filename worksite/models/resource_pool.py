"""
Resource pool models — pre-provisioned external knowledge contexts.

Models:
    - ResourceSlot: one pre-provisioned external resource (e.g. a conversational
                    knowledge base), tagged by category and specialty, exclusively
                    assignable to a single WorkPackage at a time.

Lifecycle:
    available ⇄ assigned

Invariants enforced at the database level:
    - assigned_work_package_id IS NOT NULL  ⇔  status = 'assigned'
    - a work package holds at most one slot per category
    - external_ref_id is unique across the catalog

Slot status/assignment are only written by worksite.services.resource_pool_service.
"""

from datetime import datetime, timezone

from worksite.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SLOT_STATUSES = {"available", "assigned"}

# Default ordered category list; extensible through configuration/settings.
DEFAULT_RESOURCE_CATEGORIES = ("discovery", "preselection", "selection")

DEFAULT_SPECIALTY = "generic"


def _utcnow():
    return datetime.now(timezone.utc)


class ResourceSlot(db.Model):
    """A pre-provisioned external resource unit."""

    __tablename__ = "resource_slots"

    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(
        db.String(50), nullable=False, index=True,
        comment="discovery | preselection | selection (extensible)",
    )
    specialty = db.Column(db.String(50), nullable=False, default=DEFAULT_SPECIALTY)
    external_ref_id = db.Column(
        db.String(120), nullable=False, unique=True,
        comment="Identifier of the resource on the external sync service",
    )
    name = db.Column(db.String(200), default="")
    status = db.Column(
        db.String(20), nullable=False, default="available",
        comment="available | assigned",
    )
    assigned_work_package_id = db.Column(
        db.Integer, db.ForeignKey("work_packages.id"),
        nullable=True, index=True,
    )
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_synced_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('available','assigned')",
            name="ck_resource_slot_status",
        ),
        db.CheckConstraint(
            "(status = 'available' AND assigned_work_package_id IS NULL) OR "
            "(status = 'assigned' AND assigned_work_package_id IS NOT NULL)",
            name="ck_resource_slot_assignment",
        ),
        db.UniqueConstraint(
            "assigned_work_package_id", "category",
            name="uq_resource_slot_work_package_category",
        ),
        db.Index("ix_resource_slot_pick", "category", "status", "specialty", "created_at"),
    )

    assigned_work_package = db.relationship("WorkPackage", foreign_keys=[assigned_work_package_id])

    def to_dict(self):
        return {
            "id": self.id,
            "category": self.category,
            "specialty": self.specialty,
            "external_ref_id": self.external_ref_id,
            "name": self.name,
            "status": self.status,
            "assigned_work_package_id": self.assigned_work_package_id,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ResourceSlot {self.id}: {self.category}/{self.specialty} [{self.status}]>"
