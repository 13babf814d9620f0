"""Jinja2 prompt templates for each pipeline stage.

Templates live in ``codeforge/generation/templates/`` and are addressed by
id: ``plan``, ``section`` and ``review``.  The section template receives only
the section name, the overall requirements and the planned task list;
section-specific guidance is looked up from the section name.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"

PLAN_TEMPLATE = "plan"
SECTION_TEMPLATE = "section"
REVIEW_TEMPLATE = "review"

SECTION_GUIDELINES: dict[str, list[str]] = {
    "frontend": [
        "Use Vite + React",
        "Use React Router for routing",
        "Use modern hooks and patterns",
        "Use proper folder structure (components, pages, hooks, utils, etc.)",
    ],
    "backend": [
        "Use Express with proper middleware setup",
        "Include proper error handling",
        "Read configuration from environment variables",
        "Include input validation",
        "Use proper security headers",
        "Include rate limiting",
        "Use proper logging",
        "Use proper folder structure (routes, controllers, models, middleware, etc.)",
    ],
    "admin": [
        "Use Vite + React",
        "Use React Router for routing",
        "Use modern hooks and patterns",
        "Use proper folder structure (components, pages, hooks, utils, etc.)",
        "Include proper dashboard layout",
        "Include data tables and charts",
    ],
}


class PromptLibrary:
    """Renders stage prompts from the ``.j2`` templates by id."""

    def __init__(self, template_dir: str | Path | None = None) -> None:
        self.template_dir = Path(template_dir or _DEFAULT_TEMPLATE_DIR)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_id: str, variables: dict[str, Any]) -> str:
        """Render the template *template_id* with *variables*.

        Raises:
            jinja2.TemplateNotFound: For an unknown template id.
            jinja2.UndefinedError: When a variable the template uses is missing.
        """
        context = dict(variables)
        if template_id == SECTION_TEMPLATE:
            context.setdefault("guidelines", SECTION_GUIDELINES.get(context.get("section", ""), []))
        template = self.env.get_template(f"{template_id}.j2")
        return template.render(**context)

    def list_templates(self) -> list[str]:
        """Return the ids of every available template."""
        return sorted(p.stem for p in self.template_dir.glob("*.j2"))
