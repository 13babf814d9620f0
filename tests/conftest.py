"""Shared pytest fixtures for the codeforge test suite.

Provides reusable fixtures for:
- A test configuration with zero retry backoff
- Scripted completion models standing in for the planner, section and
  reviewer handles
- Canned plan, file-list and review completions
- An in-memory artifact store
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import pytest

from codeforge.config import Config, GenerationConfig
from codeforge.generation.models import GeneratedArtifact, GenerationRequest

SECTIONS = ["frontend", "backend", "admin"]


# ---------------------------------------------------------------------------
# Canned completions
# ---------------------------------------------------------------------------

def plan_completion(sections: list[str] | None = None) -> str:
    """A well-formed planning answer for *sections*."""
    sections = sections or SECTIONS
    return json.dumps({"tasks": {name: [f"setup_{name}", f"build_{name}_pages"] for name in sections}})


def files_completion(section: str, count: int = 2, fenced: bool = False) -> str:
    """A well-formed file-list answer for *section*."""
    files = [{"path": f"{section}/package.json", "content": json.dumps({"name": section})}]
    files += [
        {"path": f"{section}/src/file{i}.js", "content": f"export const value{i} = {i};\n"}
        for i in range(1, count)
    ]
    body = json.dumps({"files": files}, indent=2)
    if fenced:
        return f"Here are the files for {section}:\n```json\n{body}\n```\nLet me know if you need more."
    return body


def review_completion(sections: list[str] | None = None) -> str:
    """A well-formed review answer with one consolidated file per section."""
    sections = sections or SECTIONS
    return json.dumps({
        "sections": {
            name: {"files": [{"path": f"{name}/index.js", "content": f"// reviewed {name}\n"}]}
            for name in sections
        }
    })


# ---------------------------------------------------------------------------
# Doubles
# ---------------------------------------------------------------------------

class ScriptedModel:
    """Completion model double that replays scripted answers.

    Answers are consumed in order; the last one repeats.  An answer that is
    an exception instance (or an exception class) is raised instead of
    returned.  ``by_section`` scripts section calls per section name and
    ``delays`` holds per-section sleeps used to reorder completions.
    """

    def __init__(
        self,
        answers: list[Any] | None = None,
        by_section: dict[str, list[Any]] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.answers = list(answers or [])
        self.by_section = {name: list(items) for name, items in (by_section or {}).items()}
        self.delays = delays or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def calls_for(self, section: str) -> int:
        return sum(1 for _, variables in self.calls if variables.get("section") == section)

    async def complete(self, template_id: str, variables: dict[str, Any]) -> str:
        self.calls.append((template_id, dict(variables)))
        section = variables.get("section")
        if section in self.delays:
            await asyncio.sleep(self.delays[section])

        queue = self.by_section.get(section, self.answers) if section else self.answers
        if not queue:
            raise AssertionError(f"No scripted answer for {template_id!r} ({section!r})")
        answer = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(answer, type) and issubclass(answer, BaseException):
            raise answer(f"scripted failure for {section or template_id}")
        if isinstance(answer, BaseException):
            raise answer
        return answer


class MemoryStore:
    """In-memory :class:`~codeforge.storage.ArtifactStore`."""

    def __init__(self, fail_with: Optional[BaseException] = None) -> None:
        self.saved: list[tuple[GeneratedArtifact, Optional[str]]] = []
        self.fail_with = fail_with

    async def save(self, artifact: GeneratedArtifact, owner_id: Optional[str]) -> str:
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append((artifact, owner_id))
        return f"artifact-{len(self.saved)}"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config rooted at tmp_path with three sections and no retry delay."""
    return Config(
        output_dir=tmp_path / "output",
        generation=GenerationConfig(sections=list(SECTIONS), retry_backoff=0.0),
    )


@pytest.fixture
def request_model() -> GenerationRequest:
    return GenerationRequest(
        prompt="A recipe sharing app with user accounts and ratings",
        requester_id="user-42",
    )


@pytest.fixture
def planner() -> ScriptedModel:
    return ScriptedModel([plan_completion()])


@pytest.fixture
def section_model() -> ScriptedModel:
    return ScriptedModel(by_section={name: [files_completion(name)] for name in SECTIONS})


@pytest.fixture
def reviewer() -> ScriptedModel:
    return ScriptedModel([review_completion()])


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Target directory for materialized artifacts (not created up front)."""
    return tmp_path / "generated"
