"""
Category content templates for resource compilation.

Each category has one template class that declares the fields it needs.
`build_context()` gathers every field from the work package / project /
steps; `render()` substitutes the placeholder for whatever is missing.
Formatting never raises on missing data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

DEFAULT_PLACEHOLDER = "Not provided"


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple, set, dict)) and not value:
        return True
    return False


def _fmt_money(value) -> str | None:
    if value is None:
        return None
    return f"{value:,.2f} EUR"


def _fmt_list(values) -> str | None:
    if not values:
        return None
    return "\n".join(f"- {v}" for v in values)


def build_context(work_package, project, steps=()) -> dict[str, Any]:
    """Flatten the inputs every template may draw on."""
    brief = work_package.brief or {}
    competencies = set()
    for step in steps:
        competencies.update(step.required_tools or [])
    competencies.update(brief.get("competencies") or [])

    step_lines = [
        f"{s.order}. {s.title} ({s.difficulty})" for s in steps
    ]
    difficulties = sorted({s.difficulty for s in steps if s.difficulty})

    return {
        "company": project.owner_name,
        "project_title": project.title,
        "role": work_package.title,
        "description": work_package.description,
        "specialty": work_package.specialty,
        "location": project.location,
        "contract": brief.get("contract"),
        "compensation": _fmt_money(work_package.estimated_cost),
        "disqualifying_criteria": _fmt_list(brief.get("disqualifying_criteria")),
        "competencies": _fmt_list(sorted(competencies)),
        "difficulty": ", ".join(difficulties) if difficulties else None,
        "steps": "\n".join(step_lines) if step_lines else None,
    }


@dataclass
class ContentTemplate:
    """Base template: a title plus (label, field) lines."""

    context: dict[str, Any]
    placeholder: str = DEFAULT_PLACEHOLDER

    category: ClassVar[str] = ""
    heading: ClassVar[str] = ""
    sections: ClassVar[tuple[tuple[str, str], ...]] = ()

    @classmethod
    def required_fields(cls) -> tuple[str, ...]:
        return tuple(name for _, name in cls.sections)

    def value(self, name: str) -> str:
        value = self.context.get(name)
        if _is_missing(value):
            return self.placeholder
        return str(value)

    def missing_fields(self) -> list[str]:
        return [name for name in self.required_fields() if _is_missing(self.context.get(name))]

    def render(self) -> str:
        lines = [f"# {self.heading}", ""]
        for label, name in self.sections:
            value = self.value(name)
            if "\n" in value:
                lines.append(f"{label}:")
                lines.append(value)
            else:
                lines.append(f"{label}: {value}")
        return "\n".join(lines).rstrip() + "\n"


@dataclass
class DiscoveryTemplate(ContentTemplate):
    category: ClassVar[str] = "discovery"
    heading: ClassVar[str] = "Overview"
    sections: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Company", "company"),
        ("Role", "role"),
        ("Location", "location"),
        ("Contract", "contract"),
        ("Compensation", "compensation"),
    )


@dataclass
class PreselectionTemplate(ContentTemplate):
    category: ClassVar[str] = "preselection"
    heading: ClassVar[str] = "Preselection"
    sections: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Role", "role"),
        ("Disqualifying criteria", "disqualifying_criteria"),
        ("Required competencies", "competencies"),
        ("Difficulty", "difficulty"),
    )


@dataclass
class SelectionTemplate(ContentTemplate):
    category: ClassVar[str] = "selection"
    heading: ClassVar[str] = "Role detail"
    sections: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Company", "company"),
        ("Role", "role"),
        ("Specialty", "specialty"),
        ("Description", "description"),
        ("Location", "location"),
        ("Contract", "contract"),
        ("Steps", "steps"),
        ("Required competencies", "competencies"),
        ("Compensation", "compensation"),
    )


@dataclass
class GenericTemplate(ContentTemplate):
    """Fallback for categories added through configuration."""

    heading: ClassVar[str] = "Summary"
    sections: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Company", "company"),
        ("Role", "role"),
        ("Location", "location"),
        ("Required competencies", "competencies"),
    )


TEMPLATES: dict[str, type[ContentTemplate]] = {
    t.category: t for t in (DiscoveryTemplate, PreselectionTemplate, SelectionTemplate)
}


def template_for(category: str) -> type[ContentTemplate]:
    return TEMPLATES.get(category, GenericTemplate)


def render_content(category: str, context: dict[str, Any], placeholder: str = DEFAULT_PLACEHOLDER) -> str:
    """Render the content block pushed to a resource of *category*."""
    return template_for(category)(context=context, placeholder=placeholder).render()
