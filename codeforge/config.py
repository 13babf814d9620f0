"""codeforge configuration.

Centralised, typed configuration for the generation pipeline. All settings
use Pydantic v2 models so they can be validated at construction time and
serialised to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_SECTIONS: list[str] = ["frontend", "backend", "admin"]


class LLMConfig(BaseModel):
    """Connection and model settings for the text-completion service.

    ``provider`` selects the wire protocol: ``"ollama"`` talks to
    ``/api/generate`` and ``"openai"`` to an OpenAI-compatible
    ``/chat/completions`` endpoint (Groq, OpenRouter, vLLM, ...).
    """

    provider: Literal["ollama", "openai"] = Field(default="ollama")
    url: str = Field(default="http://localhost:11434")
    api_key: str = Field(default="", repr=False)
    planner_model: str = Field(default="llama3.3:70b")
    section_model: str = Field(default="llama3.3:70b")
    reviewer_model: str = Field(default="llama3.3:70b")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4000, ge=1)
    timeout: int = Field(default=120, ge=5, description="Per-request timeout in seconds")
    max_connections: int = Field(
        default=10, ge=1, description="Size of the shared HTTP connection pool"
    )


class GenerationConfig(BaseModel):
    """Tuning knobs for the generation pipeline."""

    sections: list[str] = Field(default_factory=lambda: list(DEFAULT_SECTIONS))
    review: bool = Field(
        default=False, description="Run the consolidation/review stage after generation"
    )
    max_upstream_attempts: int = Field(
        default=3, ge=1, description="Attempts per completion call on upstream failure"
    )
    retry_backoff: float = Field(
        default=1.0, ge=0.0, description="Seconds added to the wait after each failed attempt"
    )

    @field_validator("sections")
    @classmethod
    def _check_sections(cls, value: list[str]) -> list[str]:
        cleaned = [s.strip() for s in value if s.strip()]
        if not cleaned:
            raise ValueError("at least one section must be configured")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError(f"duplicate section names: {cleaned}")
        return cleaned


class Config(BaseModel):
    """Global codeforge configuration.

    Instances are typically created once by the CLI entry point (or the
    hosting service) and passed to :func:`build_model_handles` and the
    :class:`~codeforge.pipeline.Orchestrator`.
    """

    output_dir: Path = Field(default=Path("./output"))
    artifacts_dir: str = Field(default=".codeforge/artifacts")
    llm: LLMConfig = Field(default_factory=LLMConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    @property
    def artifacts_path(self) -> Path:
        """Directory used by the JSON artifact store."""
        return self.output_dir / self.artifacts_dir

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration to a JSON file.

        The API key is never written to disk.
        """
        target = path or (self.output_dir / ".codeforge" / "config.json")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(
            self.model_dump_json(indent=2, exclude={"llm": {"api_key"}}),
            encoding="utf-8",
        )
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            CODEFORGE_OUTPUT_DIR, CODEFORGE_PROVIDER, CODEFORGE_LLM_URL,
            CODEFORGE_API_KEY, CODEFORGE_MODEL, CODEFORGE_PLANNER_MODEL,
            CODEFORGE_SECTION_MODEL, CODEFORGE_REVIEWER_MODEL,
            CODEFORGE_TIMEOUT, CODEFORGE_MAX_CONNECTIONS, CODEFORGE_SECTIONS,
            CODEFORGE_REVIEW, CODEFORGE_MAX_ATTEMPTS, CODEFORGE_RETRY_BACKOFF.

        ``CODEFORGE_MODEL`` sets all three role models at once; the
        role-specific variables override it.
        """
        llm_kwargs: dict[str, Any] = {}
        if os.environ.get("CODEFORGE_PROVIDER"):
            llm_kwargs["provider"] = os.environ["CODEFORGE_PROVIDER"]
        if os.environ.get("CODEFORGE_LLM_URL"):
            llm_kwargs["url"] = os.environ["CODEFORGE_LLM_URL"]
        if os.environ.get("CODEFORGE_API_KEY"):
            llm_kwargs["api_key"] = os.environ["CODEFORGE_API_KEY"]
        if os.environ.get("CODEFORGE_MODEL"):
            for role in ("planner_model", "section_model", "reviewer_model"):
                llm_kwargs[role] = os.environ["CODEFORGE_MODEL"]
        for role in ("planner", "section", "reviewer"):
            value = os.environ.get(f"CODEFORGE_{role.upper()}_MODEL")
            if value:
                llm_kwargs[f"{role}_model"] = value
        if os.environ.get("CODEFORGE_TIMEOUT"):
            llm_kwargs["timeout"] = int(os.environ["CODEFORGE_TIMEOUT"])
        if os.environ.get("CODEFORGE_MAX_CONNECTIONS"):
            llm_kwargs["max_connections"] = int(os.environ["CODEFORGE_MAX_CONNECTIONS"])

        gen_kwargs: dict[str, Any] = {}
        if os.environ.get("CODEFORGE_SECTIONS"):
            gen_kwargs["sections"] = os.environ["CODEFORGE_SECTIONS"].split(",")
        if os.environ.get("CODEFORGE_REVIEW"):
            gen_kwargs["review"] = os.environ["CODEFORGE_REVIEW"].strip().lower() in (
                "1", "true", "yes",
            )
        if os.environ.get("CODEFORGE_MAX_ATTEMPTS"):
            gen_kwargs["max_upstream_attempts"] = int(os.environ["CODEFORGE_MAX_ATTEMPTS"])
        if os.environ.get("CODEFORGE_RETRY_BACKOFF"):
            gen_kwargs["retry_backoff"] = float(os.environ["CODEFORGE_RETRY_BACKOFF"])

        return cls(
            output_dir=Path(os.environ.get("CODEFORGE_OUTPUT_DIR", "./output")),
            llm=LLMConfig(**llm_kwargs),
            generation=GenerationConfig(**gen_kwargs),
        )
