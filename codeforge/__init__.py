"""codeforge: turn a short project description into a generated multi-section codebase."""

from codeforge.config import Config
from codeforge.errors import (
    ExtractionFailure,
    MaterializationFailure,
    PipelineError,
    UpstreamFailure,
    ValidationFailure,
)
from codeforge.generation.models import GeneratedArtifact, GenerationRequest, Stack
from codeforge.pipeline import Orchestrator, PipelineResult

__version__ = "0.1.0"

__all__ = [
    "Config",
    "GeneratedArtifact",
    "GenerationRequest",
    "Orchestrator",
    "PipelineResult",
    "Stack",
    "PipelineError",
    "UpstreamFailure",
    "ExtractionFailure",
    "ValidationFailure",
    "MaterializationFailure",
]
