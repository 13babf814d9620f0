"""Pydantic v2 models for the generation pipeline.

Defines the request accepted at the API boundary, the intermediate plan
produced by the planning stage, and the immutable artifact that the
orchestrator hands over to materialization and persistence.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Stack(str, Enum):
    """Technology stack the generated project targets."""
    MERN = "MERN"


class PipelineStage(str, Enum):
    """States of a single pipeline run."""
    PLANNING = "planning"
    GENERATING = "generating"
    REVIEWING = "reviewing"
    MATERIALIZING = "materializing"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.DONE, PipelineStage.FAILED)


class PayloadKind(str, Enum):
    """Shape a completion payload is validated against."""
    PLAN = "plan"
    FILE_LIST = "file_list"
    REVIEW = "review"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """A natural-language project description submitted for generation."""
    model_config = ConfigDict(frozen=True)

    prompt: str = Field(..., min_length=10, max_length=1000, description="Project description")
    stack: Stack = Field(default=Stack.MERN, description="Target technology stack")
    requester_id: Optional[str] = Field(default=None, description="Owner of the resulting artifact")


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

class SectionPlan(BaseModel):
    """Ordered task lists per section, produced by the planning stage."""
    model_config = ConfigDict(frozen=True)

    tasks: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    def tasks_for(self, section: str) -> tuple[str, ...]:
        return self.tasks.get(section, ())

    @property
    def sections(self) -> list[str]:
        return list(self.tasks)


# ---------------------------------------------------------------------------
# Generated output
# ---------------------------------------------------------------------------

class GeneratedFile(BaseModel):
    """One generated file: a POSIX-style relative path and raw text content."""
    model_config = ConfigDict(frozen=True)

    path: str
    content: str


class SectionResult(BaseModel):
    """Ordered files generated for one section."""
    model_config = ConfigDict(frozen=True)

    name: str
    files: tuple[GeneratedFile, ...] = ()

    def __len__(self) -> int:
        return len(self.files)


class GeneratedArtifact(BaseModel):
    """Validated, sanitized output of one pipeline run, organized by section."""
    model_config = ConfigDict(frozen=True)

    sections: dict[str, SectionResult]
    plan: Optional[SectionPlan] = None
    reviewed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def file_count(self) -> int:
        return sum(len(section) for section in self.sections.values())

    def iter_files(self) -> Iterator[tuple[str, GeneratedFile]]:
        """Yield ``(section_name, file)`` pairs in section then file order."""
        for name, section in self.sections.items():
            for generated in section.files:
                yield name, generated

    def to_document(self) -> dict[str, Any]:
        """JSON-ready representation used by the artifact store."""
        return {
            "created_at": self.created_at.isoformat(),
            "reviewed": self.reviewed,
            "plan": {k: list(v) for k, v in self.plan.tasks.items()} if self.plan else None,
            "sections": {
                name: [f.model_dump() for f in section.files]
                for name, section in self.sections.items()
            },
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "GeneratedArtifact":
        plan = data.get("plan")
        return cls(
            sections={
                name: SectionResult(name=name, files=tuple(GeneratedFile(**f) for f in files))
                for name, files in data.get("sections", {}).items()
            },
            plan=SectionPlan(tasks={k: tuple(v) for k, v in plan.items()}) if plan else None,
            reviewed=data.get("reviewed", False),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class MaterializedFile(BaseModel):
    """Where a generated file ended up on disk."""
    model_config = ConfigDict(frozen=True)

    section: str
    relative_path: str
    absolute_path: str
