"""
Progress aggregation tests — pure calculations and per-level summaries.
"""

import pytest

from worksite.core.exceptions import NotFoundError, ValidationError
from worksite.services import progress_service as ps


class TestPrimitives:

    def test_percent_complete_empty_is_zero(self):
        assert ps.percent_complete([]) == 0

    @pytest.mark.parametrize("statuses,expected", [
        (["done", "todo"], 50),
        (["completed", "completed", "upcoming"], 67),
        (["done", "todo", "todo"], 33),
        (["completed", "cancelled"], 50),
        (["done"] * 3, 100),
    ])
    def test_percent_complete(self, statuses, expected):
        assert ps.percent_complete([{"status": s} for s in statuses]) == expected

    def test_rounding_is_half_up(self):
        # 1/8 = 12.5% → 13, not banker's 12
        items = [{"status": "done"}] + [{"status": "todo"}] * 7
        assert ps.percent_complete(items) == 13

    @pytest.mark.parametrize("actual,estimated,expected", [
        (30, 0, 0),
        (30, None, 0),
        (None, 60, 0),
        (45, 60, 75),
        (90, 60, 150),
    ])
    def test_ratio_percent(self, actual, estimated, expected):
        assert ps.ratio_percent(actual, estimated) == expected

    def test_actual_so_far_blends_children(self):
        children = [
            {"status": "completed", "estimated": 100, "actual": 120},
            {"status": "completed", "estimated": 50, "actual": None},
            {"status": "in_progress", "estimated": 200, "actual": None, "progression": 25},
            {"status": "blocked", "estimated": 40, "actual": None, "progression": 50},
            {"status": "upcoming", "estimated": 80, "actual": None},
            {"status": "cancelled", "estimated": 80, "actual": 10},
        ]
        assert ps.actual_so_far(children, "estimated", "actual") == 120 + 50 + 50 + 20

    def test_status_counts_include_zero_buckets(self):
        counts = ps.status_counts([{"status": "done"}], {"todo", "done"})
        assert counts == {"done": 1, "todo": 0}


class TestSummaries:

    def test_step_summary_from_tasks(self, make):
        wp = make.work_package(make.project(), status="in_progress")
        step = make.step(wp, status="in_progress", required_tools=["trowel"])
        make.task(step, status="done", estimated_duration_min=30, actual_duration_min=40,
                  is_critical=True, required_tools=["level"])
        make.task(step, status="todo", estimated_duration_min=30, is_critical=True)

        summary = ps.get_aggregate_progress("step", step.id)

        assert summary["percent_complete"] == 50
        assert summary["task_count"] == 2
        assert summary["status_counts"] == {"done": 1, "todo": 1}
        assert summary["critical_tasks"] == 2
        assert summary["critical_tasks_done"] == 1
        assert summary["estimated_duration_min"] == 60
        assert summary["actual_duration_min"] == 40
        assert summary["required_tools"] == ["level", "trowel"]

    def test_step_without_tasks_uses_own_progression(self, make):
        wp = make.work_package(make.project(), status="in_progress")
        step = make.step(wp, status="in_progress", progression=60, estimated_duration_min=100)

        summary = ps.get_aggregate_progress("step", step.id)

        assert summary["percent_complete"] == 60
        assert summary["actual_duration_min"] == 60

    def test_work_package_summary(self, make):
        wp = make.work_package(make.project(), status="in_progress",
                               estimated_cost=1000.0, actual_cost=250.0)
        make.step(wp, status="completed", estimated_duration_min=60, actual_duration_min=90)
        make.step(wp, status="in_progress", progression=50, estimated_duration_min=120)
        make.step(wp, status="upcoming", estimated_duration_min=60)

        summary = ps.get_aggregate_progress("work_package", wp.id)

        assert summary["percent_complete"] == 33
        assert summary["step_count"] == 3
        assert summary["status_counts"]["completed"] == 1
        assert summary["estimated_hours"] == 4.0
        assert summary["actual_hours"] == 2.5
        assert summary["budget_ratio_pct"] == 25

    def test_empty_work_package_has_no_division_errors(self, make):
        wp = make.work_package(make.project())
        summary = ps.get_aggregate_progress("work_package", wp.id)
        assert summary["percent_complete"] == 0
        assert summary["time_ratio_pct"] == 0
        assert summary["budget_ratio_pct"] == 0

    def test_project_summary_averages_work_packages(self, make):
        project = make.project(estimated_budget=2000.0)
        make.work_package(project, status="completed", estimated_cost=1000.0, actual_cost=1100.0)
        make.work_package(project, status="in_progress", progression=50, estimated_cost=1000.0)

        summary = ps.get_aggregate_progress("project", project.id)

        assert summary["progression"] == 75
        assert summary["percent_complete"] == 50
        assert summary["work_package_count"] == 2
        assert summary["actual_cost"] == 1600.0
        assert summary["budget_ratio_pct"] == 80

    def test_unknown_entity_type(self):
        with pytest.raises(ValidationError):
            ps.get_aggregate_progress("task", 1)

    def test_missing_entity(self):
        with pytest.raises(NotFoundError):
            ps.get_aggregate_progress("project", 404)
