"""Shape validation for parsed completion payloads.

Each pipeline stage expects a specific JSON shape.  :func:`validate` checks a
decoded payload against that shape and either returns a typed view of it or
raises :class:`~codeforge.errors.ValidationFailure` naming the first field
that is missing or has the wrong type.  Fields are visited in declaration
order, so the same payload always yields the same verdict.

Field names use a dotted/indexed notation, e.g. ``tasks.backend``,
``files[2].content`` or ``sections.admin.files[0].path``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from codeforge.errors import ValidationFailure

from .models import GeneratedFile, PayloadKind, SectionPlan


class FileListPayload(BaseModel):
    """A validated ``{"files": [...]}`` payload."""
    model_config = ConfigDict(frozen=True)

    files: tuple[GeneratedFile, ...]


class ReviewPayload(BaseModel):
    """A validated ``{"sections": {name: {"files": [...]}}}`` payload."""
    model_config = ConfigDict(frozen=True)

    sections: dict[str, FileListPayload]


ValidatedPayload = Union[SectionPlan, FileListPayload, ReviewPayload]


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


def _require_object(value: Any, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationFailure(field, f"expected an object, got {_type_name(value)}")
    return value


def _require_array(value: Any, field: str) -> list[Any]:
    if not isinstance(value, list):
        raise ValidationFailure(field, f"expected an array, got {_type_name(value)}")
    return value


def _require_key(obj: dict[str, Any], key: str, field: str) -> Any:
    if key not in obj:
        raise ValidationFailure(field, "missing required field")
    return obj[key]


# ---------------------------------------------------------------------------
# Per-stage validators
# ---------------------------------------------------------------------------

def validate_plan(parsed: Any, sections: Sequence[str]) -> SectionPlan:
    """Validate a planning payload for exactly the configured *sections*.

    Keys the model adds beyond the configured sections are ignored.
    """
    root = _require_object(parsed, "$")
    tasks = _require_object(_require_key(root, "tasks", "tasks"), "tasks")

    plan: dict[str, tuple[str, ...]] = {}
    for section in sections:
        field = f"tasks.{section}"
        items = _require_array(_require_key(tasks, section, field), field)
        for index, item in enumerate(items):
            if not isinstance(item, str):
                raise ValidationFailure(
                    f"{field}[{index}]", f"expected a string, got {_type_name(item)}"
                )
        plan[section] = tuple(items)
    return SectionPlan(tasks=plan)


def validate_file_list(parsed: Any, prefix: str = "") -> FileListPayload:
    """Validate a ``{"files": [{"path", "content"}, ...]}`` payload.

    A single malformed element rejects the whole list.
    """
    root = _require_object(parsed, prefix.rstrip(".") or "$")
    files_field = f"{prefix}files"
    entries = _require_array(_require_key(root, "files", files_field), files_field)

    files: list[GeneratedFile] = []
    for index, entry in enumerate(entries):
        entry_field = f"{files_field}[{index}]"
        obj = _require_object(entry, entry_field)
        values: dict[str, str] = {}
        for key in ("path", "content"):
            field = f"{entry_field}.{key}"
            value = _require_key(obj, key, field)
            if not isinstance(value, str):
                raise ValidationFailure(field, f"expected a string, got {_type_name(value)}")
            if not (value.strip() if key == "path" else value):
                raise ValidationFailure(field, "must be a non-empty string")
            values[key] = value
        files.append(GeneratedFile(**values))
    return FileListPayload(files=tuple(files))


def validate_review(parsed: Any, sections: Sequence[str]) -> ReviewPayload:
    """Validate a review payload that carries a file list per section."""
    root = _require_object(parsed, "$")
    by_section = _require_object(_require_key(root, "sections", "sections"), "sections")

    validated: dict[str, FileListPayload] = {}
    for section in sections:
        field = f"sections.{section}"
        validated[section] = validate_file_list(
            _require_key(by_section, section, field), prefix=f"{field}."
        )
    return ReviewPayload(sections=validated)


def validate(
    parsed: Any,
    kind: PayloadKind,
    sections: Sequence[str] = (),
) -> ValidatedPayload:
    """Validate *parsed* against the shape expected for *kind*.

    Args:
        parsed: The decoded JSON value.
        kind: Which stage produced the payload.
        sections: Configured section names; required for plan and review
            payloads, ignored for file lists.

    Raises:
        ValidationFailure: On the first violated field.
    """
    if kind is PayloadKind.PLAN:
        return validate_plan(parsed, sections)
    if kind is PayloadKind.FILE_LIST:
        return validate_file_list(parsed)
    if kind is PayloadKind.REVIEW:
        return validate_review(parsed, sections)
    raise ValueError(f"Unknown payload kind: {kind!r}")
