"""Generate the files of one project section.

A :class:`SectionGenerator` performs exactly one completion call for a
section and turns the answer into a :class:`SectionResult`::

    completion -> extract -> parse -> validate(file list)
               -> sanitize_path(path) / scrub_content(content) per file

It never retries; retry policy belongs to the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from codeforge.errors import PipelineError, ValidationFailure, excerpt

from .extractor import parse
from .models import GeneratedFile, PayloadKind, SectionResult
from .prompts import SECTION_TEMPLATE
from .sanitizer import sanitize_path, scrub_content
from .validator import FileListPayload, validate

logger = logging.getLogger(__name__)


class CompletionModel(Protocol):
    """Anything that can turn a prompt template into completion text."""

    async def complete(self, template_id: str, variables: dict[str, Any]) -> str: ...


def build_section_result(
    name: str, payload: FileListPayload, field_prefix: str = ""
) -> SectionResult:
    """Sanitize paths and scrub contents of a validated file list.

    Raises:
        ValidationFailure: A path is empty once traversal segments are gone.
    """
    files: list[GeneratedFile] = []
    for i, generated in enumerate(payload.files):
        path = sanitize_path(generated.path)
        if not path.strip("/").strip():
            raise ValidationFailure(
                f"{field_prefix}files[{i}].path",
                f"path {generated.path!r} is empty after sanitizing",
            )
        if path != generated.path:
            logger.warning("%s: rewrote unsafe path %r -> %r", name, generated.path, path)
        files.append(GeneratedFile(path=path, content=scrub_content(generated.content)))
    return SectionResult(name=name, files=tuple(files))


class SectionGenerator:
    """Wraps one completion request for one section."""

    def __init__(self, model: CompletionModel) -> None:
        self.model = model

    async def generate(
        self,
        section_name: str,
        prompt: str,
        tasks: Sequence[str],
    ) -> SectionResult:
        """Generate, validate and sanitize the files of *section_name*.

        Raises:
            UpstreamFailure: The completion call failed or timed out.
            ExtractionFailure: No JSON payload could be isolated.
            ValidationFailure: The payload is not a well-formed file list.
        """
        raw = await self.model.complete(
            SECTION_TEMPLATE,
            {"section": section_name, "prompt": prompt, "tasks": list(tasks)},
        )
        try:
            payload = validate(parse(raw), PayloadKind.FILE_LIST)
            result = build_section_result(section_name, payload)
        except PipelineError as exc:
            exc.stage = exc.stage or f"section:{section_name}"
            if exc.excerpt is None:
                exc.excerpt = excerpt(raw)
            raise

        logger.info("%s: %d file(s) generated", section_name, len(result))
        return result
