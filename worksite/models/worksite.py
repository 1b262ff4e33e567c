"""
Worksite domain models — renovation work breakdown.

Models:
    - Project:      top-level renovation request ("chantier")
    - WorkPackage:  distinct scope of work within a project ("travail" / lot);
                    the unit resource slots are assigned to
    - Step:         ordered phase within a work package ("étape")
    - Task:         smallest trackable unit within a step ("tâche")

Architecture:
    Project ──1:N──▶ WorkPackage ──1:N──▶ Step ──1:N──▶ Task

Lifecycle states:
    Project:            draft → active → completed            (rule-driven)
    WorkPackage / Step: upcoming → in_progress ⇄ blocked → completed
                        {upcoming, in_progress, blocked} → cancelled → upcoming
    Task:               todo ⇄ done

Status fields are only written by worksite.services.transition_service.
"""

from datetime import datetime, timezone

from worksite.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"draft", "active", "completed"}

WORK_STATUSES = {"upcoming", "in_progress", "blocked", "cancelled", "completed"}

TASK_STATUSES = {"todo", "done"}

STEP_DIFFICULTIES = {"easy", "medium", "hard"}

# Statuses that count as "finished" when computing completion ratios
FINISHED_STATUSES = frozenset({"completed", "done"})


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

# Shared by WorkPackage and Step. "completed" has no outgoing edge: reopening
# a finished item is not part of the contract.
WORK_TRANSITIONS = {
    "upcoming":    ["in_progress", "cancelled"],
    "in_progress": ["blocked", "completed", "cancelled"],
    "blocked":     ["in_progress", "cancelled"],
    "cancelled":   ["upcoming"],
    "completed":   [],
}

TASK_TRANSITIONS = {
    "todo": ["done"],
    "done": ["todo"],
}

# Caller-facing verbs: action → (allowed source statuses, target status)
WORK_ACTIONS = {
    "start":      ({"upcoming"}, "in_progress"),
    "block":      ({"in_progress"}, "blocked"),
    "unblock":    ({"blocked"}, "in_progress"),
    "complete":   ({"in_progress"}, "completed"),
    "cancel":     ({"upcoming", "in_progress", "blocked"}, "cancelled"),
    "reactivate": ({"cancelled"}, "upcoming"),
}

# Roots a "complete all" cascade may start from
COMPLETE_ALL_SOURCES = frozenset({"upcoming", "in_progress", "blocked"})


def validate_work_transition(old_status, new_status):
    """Return True if WorkPackage/Step status transition is valid."""
    return new_status in WORK_TRANSITIONS.get(old_status, [])


def validate_task_transition(old_status, new_status):
    """Return True if Task status transition is valid."""
    return new_status in TASK_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """Top-level renovation project requested by a user."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    owner_name = db.Column(db.String(200), default="", comment="Homeowner / client name")
    location = db.Column(db.String(200), default="")
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | active | completed",
    )
    progression = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Mean of work package progressions (0-100, derived)",
    )
    estimated_hours = db.Column(db.Float, nullable=True)
    estimated_budget = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','active','completed')",
            name="ck_project_status",
        ),
    )

    work_packages = db.relationship(
        "WorkPackage", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="WorkPackage.order",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "owner_name": self.owner_name,
            "location": self.location,
            "status": self.status,
            "progression": self.progression,
            "estimated_hours": self.estimated_hours,
            "estimated_budget": self.estimated_budget,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "work_package_count": self.work_packages.count(),
        }
        if include_children:
            result["work_packages"] = [wp.to_dict(include_children=True) for wp in self.work_packages]
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkPackage
# ═════════════════════════════════════════════════════════════════════════════


class WorkPackage(db.Model):
    """
    A distinct scope of work within a project (e.g. "Tile the bathroom floor").
    Holds at most one resource slot per category once compiled.
    """

    __tablename__ = "work_packages"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default="upcoming",
        comment="upcoming | in_progress | blocked | cancelled | completed",
    )
    progression = db.Column(db.Integer, nullable=False, default=0)
    order = db.Column(db.Integer, default=0, comment="Display order within the project")

    estimated_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, nullable=True)
    estimated_cost = db.Column(db.Float, nullable=True)
    actual_cost = db.Column(db.Float, nullable=True)

    blockage_reason = db.Column(db.Text, nullable=True, comment="Set iff status = blocked")

    specialty = db.Column(
        db.String(50), nullable=True,
        comment="Trade specialty used to pick resource slots (plumbing, electrical, ...)",
    )
    brief = db.Column(
        db.JSON, default=dict,
        comment="Free-form inputs for resource content (contract, criteria, competencies)",
    )

    # External references persisted by the resource compiler
    discovery_ref = db.Column(db.String(120), nullable=True)
    preselection_ref = db.Column(db.String(120), nullable=True)
    selection_ref = db.Column(db.String(120), nullable=True)
    compiled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('upcoming','in_progress','blocked','cancelled','completed')",
            name="ck_work_package_status",
        ),
        db.CheckConstraint(
            "progression >= 0 AND progression <= 100",
            name="ck_work_package_progression",
        ),
    )

    steps = db.relationship(
        "Step", backref="work_package", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Step.order",
    )

    def external_refs(self):
        return {
            "discovery": self.discovery_ref,
            "preselection": self.preselection_ref,
            "selection": self.selection_ref,
        }

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "progression": self.progression,
            "order": self.order,
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "estimated_cost": self.estimated_cost,
            "actual_cost": self.actual_cost,
            "blockage_reason": self.blockage_reason,
            "specialty": self.specialty,
            "brief": self.brief or {},
            "external_refs": self.external_refs(),
            "compiled_at": _iso(self.compiled_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "step_count": self.steps.count(),
        }
        if include_children:
            result["steps"] = [s.to_dict(include_children=True) for s in self.steps]
        return result

    def __repr__(self):
        return f"<WorkPackage {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Step
# ═════════════════════════════════════════════════════════════════════════════


class Step(db.Model):
    """Ordered phase within a work package."""

    __tablename__ = "steps"

    id = db.Column(db.Integer, primary_key=True)
    work_package_id = db.Column(
        db.Integer, db.ForeignKey("work_packages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order = db.Column(db.Integer, default=0)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="upcoming")
    progression = db.Column(
        db.Integer, nullable=False, default=0,
        comment="Derived from tasks when the step owns tasks, else set manually",
    )
    difficulty = db.Column(db.String(10), default="medium", comment="easy | medium | hard")
    required_tools = db.Column(db.JSON, default=list)
    estimated_duration_min = db.Column(db.Integer, nullable=True)
    actual_duration_min = db.Column(db.Integer, nullable=True)
    blockage_reason = db.Column(db.Text, nullable=True)
    pro_tip = db.Column(db.Text, default="")

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('upcoming','in_progress','blocked','cancelled','completed')",
            name="ck_step_status",
        ),
        db.CheckConstraint(
            "difficulty IN ('easy','medium','hard')",
            name="ck_step_difficulty",
        ),
        db.CheckConstraint(
            "progression >= 0 AND progression <= 100",
            name="ck_step_progression",
        ),
    )

    tasks = db.relationship(
        "Task", backref="step", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Task.order",
    )

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "work_package_id": self.work_package_id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "progression": self.progression,
            "difficulty": self.difficulty,
            "required_tools": sorted(self.required_tools or []),
            "estimated_duration_min": self.estimated_duration_min,
            "actual_duration_min": self.actual_duration_min,
            "blockage_reason": self.blockage_reason,
            "pro_tip": self.pro_tip,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "task_count": self.tasks.count(),
        }
        if include_children:
            result["tasks"] = [t.to_dict() for t in self.tasks]
        return result

    def __repr__(self):
        return f"<Step {self.id}: {self.title} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    """Checklist item within a step."""

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    order = db.Column(db.Integer, default=0)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(10), nullable=False, default="todo", comment="todo | done")
    is_critical = db.Column(db.Boolean, nullable=False, default=False)
    estimated_duration_min = db.Column(db.Integer, nullable=True)
    actual_duration_min = db.Column(db.Integer, nullable=True)
    required_tools = db.Column(db.JSON, default=list)
    notes = db.Column(db.Text, default="")

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint("status IN ('todo','done')", name="ck_task_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "step_id": self.step_id,
            "order": self.order,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "is_critical": self.is_critical,
            "estimated_duration_min": self.estimated_duration_min,
            "actual_duration_min": self.actual_duration_min,
            "required_tools": sorted(self.required_tools or []),
            "notes": self.notes,
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title} [{self.status}]>"
