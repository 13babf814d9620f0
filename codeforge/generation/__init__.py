"""codeforge generation stages.

Turns free-form completions into validated, sanitized project files.

Usage::

    from codeforge.generation import SectionGenerator, extract, validate

    generator = SectionGenerator(model)
    result = await generator.generate("frontend", "A todo app with tags", ["setup_vite_react"])
    print([f.path for f in result.files])
"""

from codeforge.generation.extractor import extract, parse
from codeforge.generation.models import (
    GeneratedArtifact,
    GeneratedFile,
    GenerationRequest,
    MaterializedFile,
    PayloadKind,
    PipelineStage,
    SectionPlan,
    SectionResult,
    Stack,
)
from codeforge.generation.sanitizer import sanitize_path, scrub_content
from codeforge.generation.section import SectionGenerator, build_section_result
from codeforge.generation.validator import validate

__all__ = [
    "extract",
    "parse",
    "validate",
    "sanitize_path",
    "scrub_content",
    "SectionGenerator",
    "build_section_result",
    "GeneratedArtifact",
    "GeneratedFile",
    "GenerationRequest",
    "MaterializedFile",
    "PayloadKind",
    "PipelineStage",
    "SectionPlan",
    "SectionResult",
    "Stack",
]
