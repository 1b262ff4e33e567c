"""
Resource compiler tests — all-or-nothing assignment + sync with
compensating release on every failure path.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from worksite.core.exceptions import (
    AssignmentConflictError,
    CascadeFailureError,
    NotFoundError,
    PoolExhaustedError,
    SyncFailureError,
)
from worksite.models import db
from worksite.services import resource_pool_service as pool
from worksite.services.resource_compiler import compile_resources, required_categories
from worksite.services.settings_service import DEFAULT_SPECIALTY_KEY, REQUIRED_CATEGORIES_KEY

CATEGORIES = ["discovery", "preselection", "selection"]


@pytest.fixture()
def full_pool(make):
    return {c: make.slot(c, external_ref_id=f"kb_{c}") for c in CATEGORIES}


@pytest.fixture()
def work_package(make):
    project = make.project(owner_name="Durand SARL", location="Nantes")
    return make.work_package(
        project, title="Bathroom plumbing", estimated_cost=4200.0,
        brief={"contract": "Fixed price"},
    )


class TestHappyPath:

    def test_assigns_and_pushes_every_category(self, work_package, full_pool, fake_gateway):
        result = compile_resources(work_package.id, gateway=fake_gateway)

        assert result["refs"] == {c: f"kb_{c}" for c in CATEGORIES}
        assert result["reused"] == []
        assert [ref for ref, _ in fake_gateway.pushed] == [f"kb_{c}" for c in CATEGORIES]

        assert work_package.external_refs() == {c: f"kb_{c}" for c in CATEGORIES}
        assert work_package.compiled_at is not None
        for slot in full_pool.values():
            assert slot.status == "assigned"
            assert slot.assigned_work_package_id == work_package.id
            assert slot.last_synced_at is not None

    def test_content_uses_work_package_and_project(self, work_package, full_pool, fake_gateway):
        compile_resources(work_package.id, gateway=fake_gateway)
        discovery = dict(fake_gateway.pushed)["kb_discovery"]
        assert "Durand SARL" in discovery
        assert "Bathroom plumbing" in discovery
        assert "Fixed price" in discovery
        assert "4,200.00" in discovery

    def test_recompile_reuses_held_slots(self, work_package, full_pool, fake_gateway, make):
        compile_resources(work_package.id, gateway=fake_gateway)
        make.slot("discovery", external_ref_id="kb_spare")

        result = compile_resources(work_package.id, gateway=fake_gateway)

        assert result["reused"] == CATEGORIES
        assert result["refs"]["discovery"] == "kb_discovery"
        assert pool.availability_counts(CATEGORIES)["discovery"] == 1

    def test_specialty_falls_back_to_default(self, make, fake_gateway):
        wp = make.work_package(make.project(), specialty="roofing")
        for c in CATEGORIES:
            make.slot(c, specialty="generic")

        result = compile_resources(wp.id, gateway=fake_gateway)
        assert set(result["refs"]) == set(CATEGORIES)

    def test_categories_come_from_settings(self, app, work_package, full_pool, fake_gateway):
        settings = app.extensions["settings_service"]
        settings.set(REQUIRED_CATEGORIES_KEY, ["selection"])

        result = compile_resources(work_package.id, gateway=fake_gateway)

        assert list(result["refs"]) == ["selection"]
        assert full_pool["discovery"].status == "available"

    def test_default_specialty_setting(self, app, make, fake_gateway):
        app.extensions["settings_service"].set(DEFAULT_SPECIALTY_KEY, "masonry")
        wp = make.work_package(make.project())
        for c in CATEGORIES:
            make.slot(c, specialty="masonry")
            make.slot(c, specialty="generic", age_minutes=60)

        compile_resources(wp.id, gateway=fake_gateway)

        assert {s.specialty for s in pool.list_for_work_package(wp.id)} == {"masonry"}

    def test_required_categories_default_to_config(self):
        assert required_categories() == CATEGORIES


class TestRollback:

    def test_exhausted_category_releases_earlier_assignments(self, make, work_package, fake_gateway):
        make.slot("discovery")
        make.slot("preselection")

        with pytest.raises(PoolExhaustedError) as exc_info:
            compile_resources(work_package.id, gateway=fake_gateway)

        assert exc_info.value.category == "selection"
        assert pool.availability_counts(CATEGORIES) == {"discovery": 1, "preselection": 1, "selection": 0}
        assert work_package.external_refs() == {c: None for c in CATEGORIES}
        assert fake_gateway.pushed == []

    def test_sync_failure_releases_everything(self, work_package, full_pool, failing_gateway):
        gateway = failing_gateway("kb_preselection")

        with pytest.raises(SyncFailureError) as exc_info:
            compile_resources(work_package.id, gateway=gateway)

        assert exc_info.value.category == "preselection"
        assert exc_info.value.status_code == 500
        assert pool.availability_counts(CATEGORIES) == {c: 1 for c in CATEGORIES}
        assert work_package.compiled_at is None

    def test_assignment_conflict_releases_prior_successes(self, work_package, full_pool, fake_gateway):
        real_assign = pool.assign

        def racing_assign(slot_id, wp_id):
            if slot_id == full_pool["selection"].id:
                raise AssignmentConflictError("selection", slot_id=slot_id, reason="slot no longer available")
            return real_assign(slot_id, wp_id)

        with patch.object(pool, "assign", side_effect=racing_assign):
            with pytest.raises(AssignmentConflictError):
                compile_resources(work_package.id, gateway=fake_gateway)

        assert pool.availability_counts(CATEGORIES) == {c: 1 for c in CATEGORIES}

    def test_release_failure_does_not_mask_original_error(self, work_package, full_pool, failing_gateway, caplog):
        gateway = failing_gateway("kb_selection")

        with patch.object(pool, "release", side_effect=OperationalError("UPDATE", {}, Exception("gone"))):
            with pytest.raises(SyncFailureError):
                compile_resources(work_package.id, gateway=gateway)

        assert "Rollback could not release slot" in caplog.text

    def test_reused_slots_survive_rollback(self, work_package, full_pool, fake_gateway, failing_gateway):
        compile_resources(work_package.id, gateway=fake_gateway)
        failing = failing_gateway("kb_selection")

        with pytest.raises(SyncFailureError):
            compile_resources(work_package.id, gateway=failing)

        assert all(s.status == "assigned" for s in full_pool.values())

    def test_persistence_failure_releases_slots(self, work_package, full_pool, fake_gateway):
        real_commit = db.session.commit
        calls = {"n": 0}

        def flaky_commit():
            # assign ×3 + mark_synced ×3 succeed; the ref save fails
            calls["n"] += 1
            if calls["n"] == 7:
                raise OperationalError("COMMIT", {}, Exception("disk full"))
            return real_commit()

        with patch.object(db.session, "commit", side_effect=flaky_commit):
            with pytest.raises(CascadeFailureError):
                compile_resources(work_package.id, gateway=fake_gateway)

        db.session.expire_all()
        assert pool.availability_counts(CATEGORIES) == {c: 1 for c in CATEGORIES}
        assert work_package.discovery_ref is None

    def test_race_on_last_slot_has_one_winner(self, app, make, fake_gateway):
        app.extensions["settings_service"].set(REQUIRED_CATEGORIES_KEY, ["discovery"])
        last = make.slot("discovery", external_ref_id="kb_last")
        first = make.work_package(make.project(), title="First")
        second = make.work_package(make.project(), title="Second")

        compile_resources(first.id, gateway=fake_gateway)

        # second caller read the slot as available before the first one assigned it
        with patch.object(pool, "find_available", return_value=last):
            with pytest.raises(AssignmentConflictError):
                compile_resources(second.id, gateway=fake_gateway)

        with pytest.raises(PoolExhaustedError):
            compile_resources(second.id, gateway=fake_gateway)

        assert [s.id for s in pool.list_for_work_package(first.id)] == [last.id]
        assert pool.list_for_work_package(second.id) == []

    def test_unknown_work_package(self, fake_gateway):
        with pytest.raises(NotFoundError):
            compile_resources(999, gateway=fake_gateway)
