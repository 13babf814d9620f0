"""Error taxonomy for the generation pipeline.

Every stage failure is raised as a subclass of :class:`PipelineError`.  The
``category`` attribute lets callers tell "the model produced garbage" apart
from "the generation service is down" and "we could not write the files"
without inspecting messages.
"""

from __future__ import annotations

EXCERPT_LIMIT = 1000


def excerpt(text: str | None, limit: int = EXCERPT_LIMIT) -> str:
    """Return the first *limit* characters of *text* for diagnostics."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [{len(text) - limit} more chars]"


class PipelineError(Exception):
    """Base class for every failure that aborts a pipeline run."""

    category = "pipeline"
    retryable = False

    def __init__(
        self,
        cause: str,
        *,
        raw: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.cause = cause
        self.excerpt = excerpt(raw) if raw else None
        self.stage = stage
        super().__init__(cause)

    def to_dict(self) -> dict[str, str | None]:
        """Serialisable view; never contains more than the bounded excerpt."""
        return {
            "category": self.category,
            "message": self.cause,
            "stage": self.stage,
            "excerpt": self.excerpt,
        }


class UpstreamFailure(PipelineError):
    """The completion service was unreachable, errored, or timed out."""

    category = "upstream"
    retryable = True


class ExtractionFailure(PipelineError):
    """No parseable JSON payload could be isolated from a completion."""

    category = "extraction"


class ValidationFailure(PipelineError):
    """A parsed payload does not match the shape expected by its stage."""

    category = "validation"

    def __init__(self, field: str, cause: str, **kwargs) -> None:
        self.field = field
        super().__init__(f"{field}: {cause}", **kwargs)

    def to_dict(self) -> dict[str, str | None]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class MaterializationFailure(PipelineError):
    """Writing the artifact to the file system failed."""

    category = "materialization"
