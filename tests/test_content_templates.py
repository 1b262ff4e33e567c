"""
Content template tests — per-category sections and the placeholder rule.
"""

import pytest

from worksite.services.content_templates import (
    DEFAULT_PLACEHOLDER,
    DiscoveryTemplate,
    GenericTemplate,
    PreselectionTemplate,
    SelectionTemplate,
    build_context,
    render_content,
    template_for,
)


@pytest.fixture()
def context(make):
    project = make.project(owner_name="Durand SARL", location="Nantes")
    wp = make.work_package(
        project, title="Electrical rewiring", specialty="electrical",
        estimated_cost=1500.0,
        brief={
            "contract": "Time and materials",
            "disqualifying_criteria": ["No certification", "No insurance"],
            "competencies": ["NF C 15-100"],
        },
    )
    steps = [
        make.step(wp, title="Strip old wiring", difficulty="medium", required_tools=["pliers"]),
        make.step(wp, title="Install panel", difficulty="hard", required_tools=["multimeter", "pliers"]),
    ]
    return build_context(wp, project, steps)


class TestBuildContext:

    def test_merges_work_package_and_project(self, context):
        assert context["company"] == "Durand SARL"
        assert context["role"] == "Electrical rewiring"
        assert context["location"] == "Nantes"
        assert context["compensation"] == "1,500.00 EUR"

    def test_competencies_aggregate_step_tools_and_brief(self, context):
        assert context["competencies"] == "- NF C 15-100\n- multimeter\n- pliers"

    def test_steps_listed_in_order(self, context):
        assert context["steps"] == "1. Strip old wiring (medium)\n2. Install panel (hard)"
        assert context["difficulty"] == "hard, medium"


class TestRender:

    def test_discovery_overview(self, context):
        text = render_content("discovery", context)
        assert text.startswith("# Overview")
        assert "Company: Durand SARL" in text
        assert "Contract: Time and materials" in text
        assert "Compensation: 1,500.00 EUR" in text

    def test_preselection_lists_criteria(self, context):
        text = render_content("preselection", context)
        assert "Disqualifying criteria:\n- No certification\n- No insurance" in text
        assert "Required competencies:" in text

    def test_selection_includes_steps_and_compensation(self, context):
        text = render_content("selection", context)
        assert "2. Install panel (hard)" in text
        assert "Compensation: 1,500.00 EUR" in text

    def test_missing_fields_use_placeholder(self, make):
        project = make.project(owner_name="", location=None)
        wp = make.work_package(project, title="Painting")

        text = render_content("discovery", build_context(wp, project))

        assert f"Company: {DEFAULT_PLACEHOLDER}" in text
        assert f"Location: {DEFAULT_PLACEHOLDER}" in text
        assert f"Contract: {DEFAULT_PLACEHOLDER}" in text
        assert f"Compensation: {DEFAULT_PLACEHOLDER}" in text
        assert "Role: Painting" in text

    def test_custom_placeholder(self):
        text = render_content("selection", {}, placeholder="n/a")
        assert "Role: n/a" in text
        assert DEFAULT_PLACEHOLDER not in text

    def test_empty_context_never_raises(self):
        for category in ("discovery", "preselection", "selection", "warranty"):
            assert render_content(category, {})

    @pytest.mark.parametrize("template,missing", [
        (DiscoveryTemplate, {"company", "role", "location", "contract", "compensation"}),
        (PreselectionTemplate, {"role", "disqualifying_criteria", "competencies", "difficulty"}),
    ])
    def test_missing_fields_report(self, template, missing):
        assert set(template(context={}).missing_fields()) == missing

    def test_unknown_category_uses_generic_template(self):
        assert template_for("warranty") is GenericTemplate
        assert template_for("selection") is SelectionTemplate
