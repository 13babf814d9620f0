"""codeforge pipeline orchestrator.

Drives one generation request through its stages:

PLANNING      -- one completion call producing the per-section task plan.
GENERATING    -- one section generator per configured section, concurrently.
REVIEWING     -- optional consolidation call over all generated sections.
MATERIALIZING -- write the artifact to disk and/or hand it to the store.

Any stage failure moves the run to FAILED; there is no partial artifact.

Usage::

    python -m codeforge.pipeline "A recipe sharing app with user accounts" -o ./out
    python -m codeforge.pipeline "An inventory tracker for a bike shop" --review
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError

from codeforge.config import Config
from codeforge.errors import (
    ExtractionFailure,
    MaterializationFailure,
    PipelineError,
    UpstreamFailure,
    ValidationFailure,
    excerpt,
)
from codeforge.generation.extractor import parse
from codeforge.generation.models import (
    GeneratedArtifact,
    GenerationRequest,
    MaterializedFile,
    PayloadKind,
    PipelineStage,
    SectionPlan,
    SectionResult,
    Stack,
)
from codeforge.generation.prompts import PLAN_TEMPLATE, REVIEW_TEMPLATE
from codeforge.generation.section import CompletionModel, SectionGenerator, build_section_result
from codeforge.generation.validator import ReviewPayload, validate
from codeforge.materializer import FileMaterializer
from codeforge.storage import ArtifactStore, JsonArtifactStore
from codeforge.utils import (
    configure_logging,
    console,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Caller-facing error kinds per failure category.
ERROR_KINDS: dict[str, str] = {
    UpstreamFailure.category: "service_error",
    ExtractionFailure.category: "generation_error",
    ValidationFailure.category: "generation_error",
    MaterializationFailure.category: "internal_error",
}


# ---------------------------------------------------------------------------
# Run state and result
# ---------------------------------------------------------------------------


class PipelineRun:
    """Stage tracker for a single request."""

    _TRANSITIONS: dict[PipelineStage, tuple[PipelineStage, ...]] = {
        PipelineStage.PLANNING: (PipelineStage.GENERATING,),
        PipelineStage.GENERATING: (PipelineStage.REVIEWING, PipelineStage.MATERIALIZING),
        PipelineStage.REVIEWING: (PipelineStage.MATERIALIZING,),
        PipelineStage.MATERIALIZING: (PipelineStage.DONE,),
    }

    def __init__(
        self,
        request: GenerationRequest,
        on_stage: Callable[[PipelineStage], None] | None = None,
    ) -> None:
        self.request = request
        self.stage = PipelineStage.PLANNING
        self.history: list[PipelineStage] = [PipelineStage.PLANNING]
        self._on_stage = on_stage
        self._notify()

    def _notify(self) -> None:
        logger.info("Stage: %s", self.stage.value)
        if self._on_stage is not None:
            self._on_stage(self.stage)

    def advance(self, stage: PipelineStage) -> None:
        if stage is PipelineStage.FAILED:
            if self.stage.is_terminal:
                raise RuntimeError(f"Run already finished in stage {self.stage.value}")
        elif stage not in self._TRANSITIONS.get(self.stage, ()):
            raise RuntimeError(f"Illegal transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.history.append(stage)
        self._notify()


class PipelineResult(BaseModel):
    """Pass/fail outcome of one request, as handed back to the caller."""

    success: bool
    stage: PipelineStage
    stage_history: list[PipelineStage] = Field(default_factory=list)
    artifact: Optional[GeneratedArtifact] = None
    artifact_id: Optional[str] = None
    materialized: list[MaterializedFile] = Field(default_factory=list)
    error: Optional[dict[str, Any]] = None
    duration_seconds: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        """Caller-facing summary; never includes full model output."""
        if not self.success:
            return {"success": False, "error": self.error}

        sections: dict[str, Any] = {}
        for name, section in (self.artifact.sections.items() if self.artifact else ()):
            written = [m for m in self.materialized if m.section == name]
            if written:
                files = [{"path": m.relative_path, "absolute_path": m.absolute_path} for m in written]
            else:
                files = [{"path": f.path, "absolute_path": None} for f in section.files]
            sections[name] = {"file_count": len(section), "files": files}
        return {"success": True, "artifact_id": self.artifact_id, "sections": sections}


def error_payload(exc: PipelineError) -> dict[str, Any]:
    data = exc.to_dict()
    data["kind"] = ERROR_KINDS.get(exc.category, "internal_error")
    data["retryable"] = exc.retryable
    return data


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """Sequences planning, parallel section generation, review and output.

    Attributes:
        config: Global configuration; ``config.generation`` controls the
            section list, the review stage and the retry policy.
        planner: Model handle used for the planning call.
        section_model: Model handle shared by all section generators.
        reviewer: Model handle for the optional review call.
        store: Optional persistence collaborator.
    """

    def __init__(
        self,
        config: Config,
        planner: CompletionModel,
        section_model: CompletionModel,
        reviewer: CompletionModel | None = None,
        store: ArtifactStore | None = None,
        materializer: FileMaterializer | None = None,
        on_stage: Callable[[PipelineStage], None] | None = None,
    ) -> None:
        self.config = config
        self.planner = planner
        self.section_model = section_model
        self.reviewer = reviewer
        self.store = store
        self.materializer = materializer or FileMaterializer()
        self.on_stage = on_stage

    @property
    def sections(self) -> list[str]:
        return self.config.generation.sections

    @property
    def review_enabled(self) -> bool:
        return self.config.generation.review and self.reviewer is not None

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        """Await ``call()``, retrying upstream failures with linear backoff.

        Extraction and validation failures are raised immediately.
        """
        attempts = self.config.generation.max_upstream_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except UpstreamFailure as exc:
                if attempt >= attempts:
                    exc.stage = exc.stage or label
                    raise
                delay = self.config.generation.retry_backoff * attempt
                logger.warning(
                    "%s: attempt %d/%d failed (%s); retrying in %.1fs",
                    label, attempt, attempts, exc.cause, delay,
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def plan(self, request: GenerationRequest) -> SectionPlan:
        """PLANNING: ask for the task list of every configured section."""
        raw = await self._with_retry(
            "planning",
            lambda: self.planner.complete(
                PLAN_TEMPLATE,
                {"prompt": request.prompt, "stack": request.stack.value, "sections": self.sections},
            ),
        )
        try:
            plan = validate(parse(raw), PayloadKind.PLAN, self.sections)
        except PipelineError as exc:
            exc.stage = "planning"
            if exc.excerpt is None:
                exc.excerpt = excerpt(raw)
            raise
        logger.info(
            "Plan: %s",
            ", ".join(f"{name}={len(plan.tasks_for(name))}" for name in self.sections),
        )
        return plan

    async def generate_sections(
        self, request: GenerationRequest, plan: SectionPlan
    ) -> dict[str, SectionResult]:
        """GENERATING: fan out one section generator per section and join.

        Every call runs to completion even if a sibling fails.  The failure
        reported is the first one in configured section order, and results
        keep that order regardless of completion timing.
        """
        generator = SectionGenerator(self.section_model)

        def _call(name: str) -> Awaitable[SectionResult]:
            return self._with_retry(
                f"section:{name}",
                lambda: generator.generate(name, request.prompt, plan.tasks_for(name)),
            )

        outcomes = await asyncio.gather(
            *(_call(name) for name in self.sections), return_exceptions=True
        )

        results: dict[str, SectionResult] = {}
        failures: list[tuple[str, BaseException]] = []
        for name, outcome in zip(self.sections, outcomes):
            if isinstance(outcome, BaseException):
                failures.append((name, outcome))
            else:
                results[name] = outcome

        if failures:
            for name, exc in failures[1:]:
                logger.error("section %s also failed: %s", name, exc)
            raise failures[0][1]
        return results

    async def review(
        self, request: GenerationRequest, sections: dict[str, SectionResult]
    ) -> dict[str, SectionResult]:
        """REVIEWING: one consolidation call over every generated section."""
        reviewer = self.reviewer
        if reviewer is None:
            raise RuntimeError("review() called on an orchestrator without a reviewer model")
        sections_json = json.dumps(
            {name: {"files": [f.model_dump() for f in result.files]} for name, result in sections.items()},
            indent=2,
            ensure_ascii=False,
        )
        raw = await self._with_retry(
            "reviewing",
            lambda: reviewer.complete(
                REVIEW_TEMPLATE,
                {"prompt": request.prompt, "sections": self.sections, "sections_json": sections_json},
            ),
        )
        try:
            payload = validate(parse(raw), PayloadKind.REVIEW, self.sections)
            if not isinstance(payload, ReviewPayload):
                raise TypeError(f"review validation returned {type(payload).__name__}")
            return {
                name: build_section_result(
                    name, payload.sections[name], field_prefix=f"sections.{name}."
                )
                for name in self.sections
            }
        except PipelineError as exc:
            exc.stage = "reviewing"
            if exc.excerpt is None:
                exc.excerpt = excerpt(raw)
            raise

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(
        self,
        request: GenerationRequest,
        tracker: PipelineRun | None = None,
    ) -> GeneratedArtifact:
        """Plan, generate and (optionally) review; return the artifact.

        Raises:
            PipelineError: On the first stage failure.
        """
        tracker = tracker or PipelineRun(request, self.on_stage)

        plan = await self.plan(request)

        tracker.advance(PipelineStage.GENERATING)
        sections = await self.generate_sections(request, plan)

        reviewed = False
        if self.review_enabled:
            tracker.advance(PipelineStage.REVIEWING)
            sections = await self.review(request, sections)
            reviewed = True

        return GeneratedArtifact(sections=sections, plan=plan, reviewed=reviewed)

    async def run_pipeline(
        self,
        request: GenerationRequest,
        output_dir: str | Path | None = None,
        owner_id: str | None = None,
    ) -> PipelineResult:
        """Run the whole pipeline and report a single pass/fail result.

        Pipeline failures are returned in the result; cancellation and
        programming errors propagate.  Nothing is written to disk unless
        every section generated successfully.
        """
        started = time.monotonic()
        tracker = PipelineRun(request, self.on_stage)
        owner = owner_id if owner_id is not None else request.requester_id

        try:
            artifact = await self.run(request, tracker)

            tracker.advance(PipelineStage.MATERIALIZING)
            materialized: list[MaterializedFile] = []
            if output_dir is not None:
                materialized = await self.materializer.materialize(output_dir, artifact)

            artifact_id: str | None = None
            if self.store is not None:
                try:
                    artifact_id = await self.store.save(artifact, owner)
                except OSError as exc:
                    raise MaterializationFailure(f"Failed to store artifact: {exc}") from exc

            tracker.advance(PipelineStage.DONE)
        except PipelineError as exc:
            exc.stage = exc.stage or tracker.stage.value
            tracker.advance(PipelineStage.FAILED)
            logger.error("Pipeline failed during %s: [%s] %s", exc.stage, exc.category, exc.cause)
            if exc.excerpt:
                logger.debug("Offending output (truncated): %s", exc.excerpt)
            return PipelineResult(
                success=False,
                stage=tracker.stage,
                stage_history=list(tracker.history),
                error=error_payload(exc),
                duration_seconds=time.monotonic() - started,
            )
        except BaseException:
            if not tracker.stage.is_terminal:
                tracker.advance(PipelineStage.FAILED)
            raise

        return PipelineResult(
            success=True,
            stage=tracker.stage,
            stage_history=list(tracker.history),
            artifact=artifact,
            artifact_id=artifact_id,
            materialized=materialized,
            duration_seconds=time.monotonic() - started,
        )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _print_result(result: PipelineResult) -> None:
    if not result.success:
        error = result.error or {}
        print_error(
            f"Generation FAILED during {error.get('stage')} "
            f"[{error.get('kind')}/{error.get('category')}]: {error.get('message')}"
        )
        return

    rows: list[tuple[str, ...]] = [
        (m.section, m.relative_path, m.absolute_path) for m in result.materialized
    ]
    if rows:
        print_summary_table(rows, columns=("Section", "Path", "Written to"), title="Generated files")

    if result.artifact is None:
        raise RuntimeError("successful result carries no artifact")
    counts = ", ".join(f"{name}: {len(s)}" for name, s in result.artifact.sections.items())
    print_success(
        f"Generated {result.artifact.file_count()} file(s) ({counts}) "
        f"in {format_duration(result.duration_seconds)}"
    )
    if result.artifact_id:
        console.print(f"  Artifact id: [bold]{result.artifact_id}[/bold]")


async def _run_cli(
    config: Config,
    request: GenerationRequest,
    output_dir: Path,
    owner: str | None,
    use_store: bool,
) -> PipelineResult:
    from codeforge.completion_client import build_model_handles

    handles = build_model_handles(config)
    async with handles.client:
        if not await handles.client.is_available():
            print_warning(
                f"Completion service at {config.llm.url} is not responding -- "
                "calls will likely fail."
            )
        orchestrator = Orchestrator(
            config,
            planner=handles.planner,
            section_model=handles.section,
            reviewer=handles.reviewer,
            store=JsonArtifactStore(config.artifacts_path) if use_store else None,
            on_stage=lambda stage: print_stage_header(stage.value),
        )
        return await orchestrator.run_pipeline(request, output_dir=output_dir, owner_id=owner)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for ``python -m codeforge.pipeline``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="codeforge -- generate a multi-section project from a description",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  python -m codeforge.pipeline "A todo app with tags and due dates"\n'
            '  python -m codeforge.pipeline "A blog with comments" -o ./blog --review\n'
            '  python -m codeforge.pipeline "A CRM" --sections frontend,backend\n'
        ),
    )
    parser.add_argument("prompt", help="Natural-language project description (10-1000 chars)")
    parser.add_argument("--output", "-o", default=None, help="Output directory (default: from config)")
    parser.add_argument("--sections", default=None, help="Comma-separated section names")
    parser.add_argument("--review", action="store_true", help="Run the review stage")
    parser.add_argument("--owner", default=None, help="Owner id recorded with the stored artifact")
    parser.add_argument("--stack", default=Stack.MERN.value, choices=[s.value for s in Stack])
    parser.add_argument("--no-store", action="store_true", help="Do not persist the artifact")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = Config.from_env()
        if args.output:
            config.output_dir = Path(args.output)
        if args.sections:
            config.generation = config.generation.model_validate(
                {**config.generation.model_dump(), "sections": args.sections.split(",")}
            )
        if args.review:
            config.generation.review = True
        request = GenerationRequest(prompt=args.prompt, stack=Stack(args.stack), requester_id=args.owner)
    except (ValidationError, ValueError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(2)

    result = asyncio.run(
        _run_cli(config, request, config.output_dir, args.owner, use_store=not args.no_store)
    )
    _print_result(result)
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
