"""
Shared pytest fixtures for the worksite test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make: ORM helper factories (bypass services to set arbitrary states)
    - fake_gateway: KnowledgeGateway stand-in recording pushed content
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from worksite import create_app
from worksite.integrations.knowledge_gateway import GatewayResult
from worksite.models import db as _db
from worksite.models.resource_pool import ResourceSlot
from worksite.models.worksite import Project, Step, Task, WorkPackage


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Tables are recreated per test; cached settings would outlive them.
        app.extensions["settings_service"].invalidate()
        app.extensions.pop("knowledge_gateway", None)
        yield
        app.extensions["settings_service"].invalidate()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM helper factories ─────────────────────────────────────────────────


def _commit(obj):
    _db.session.add(obj)
    _db.session.commit()
    return obj


def _project(status="draft", **kw):
    kw.setdefault("title", "Kitchen renovation")
    kw.setdefault("owner_name", "Martin family")
    kw.setdefault("location", "Lyon")
    return _commit(Project(status=status, **kw))


def _work_package(project, status="upcoming", **kw):
    kw.setdefault("title", "Tiling")
    kw.setdefault("order", project.work_packages.count() + 1)
    if status == "blocked":
        kw.setdefault("blockage_reason", "missing materials")
    if status == "completed":
        kw.setdefault("progression", 100)
    return _commit(WorkPackage(project_id=project.id, status=status, **kw))


def _step(work_package, status="upcoming", **kw):
    kw.setdefault("title", "Prepare surface")
    kw.setdefault("order", work_package.steps.count() + 1)
    if status == "blocked":
        kw.setdefault("blockage_reason", "waiting for delivery")
    if status == "completed":
        kw.setdefault("progression", 100)
    return _commit(Step(work_package_id=work_package.id, status=status, **kw))


def _task(step, status="todo", **kw):
    kw.setdefault("title", "Sand the wall")
    kw.setdefault("order", step.tasks.count() + 1)
    if status == "done":
        kw.setdefault("completed_at", datetime.now(timezone.utc))
    return _commit(Task(step_id=step.id, status=status, **kw))


def _slot(category, specialty="generic", external_ref_id=None, age_minutes=0, **kw):
    count = _db.session.query(ResourceSlot).count()
    kw.setdefault(
        "created_at",
        datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    )
    return _commit(ResourceSlot(
        category=category,
        specialty=specialty,
        external_ref_id=external_ref_id or f"kb_{category}_{count + 1}",
        status="available",
        **kw,
    ))


def _tree(steps=2, tasks_per_step=2, wp_status="upcoming", step_status="upcoming"):
    """Project ▸ WorkPackage ▸ N steps ▸ M tasks each."""
    project = _project()
    wp = _work_package(project, status=wp_status)
    created = []
    for i in range(steps):
        step = _step(wp, status=step_status, title=f"Step {i + 1}")
        created.append((step, [_task(step, title=f"Task {i + 1}.{j + 1}") for j in range(tasks_per_step)]))
    return SimpleNamespace(project=project, wp=wp, steps=created)


@pytest.fixture()
def make():
    """Factories for entities at arbitrary statuses."""
    return SimpleNamespace(
        project=_project,
        work_package=_work_package,
        step=_step,
        task=_task,
        slot=_slot,
        tree=_tree,
    )


# ── External sync stand-in ───────────────────────────────────────────────


class FakeGateway:
    """Records pushes; fails for the external ref ids listed in fail_refs."""

    def __init__(self, fail_refs=()):
        self.fail_refs = set(fail_refs)
        self.pushed = []

    def push_content(self, external_ref_id, content):
        self.pushed.append((external_ref_id, content))
        if external_ref_id in self.fail_refs:
            return GatewayResult(
                ok=False, status_code=500, data=None,
                error="HTTP 500: upstream error", duration_ms=3,
            )
        return GatewayResult(ok=True, status_code=200, data={}, error=None, duration_ms=3)


@pytest.fixture()
def fake_gateway():
    return FakeGateway()


@pytest.fixture()
def failing_gateway():
    """Factory: a gateway whose pushes fail for the given external ref ids."""
    return lambda *refs: FakeGateway(fail_refs=refs)
