"""Pipeline smoke tests for codeforge.

These tests run the orchestrator with the real completion client, prompt
templates, extractor, validator, materializer and JSON store.  Only the HTTP
boundary is replaced, by an ``httpx.MockTransport`` that plays the role of
an Ollama server answering with Markdown-wrapped JSON.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import httpx
import pytest

from codeforge.completion_client import build_model_handles
from codeforge.config import Config, GenerationConfig, LLMConfig
from codeforge.generation.models import GenerationRequest, PipelineStage
from codeforge.pipeline import Orchestrator
from codeforge.storage import JsonArtifactStore

_SECTION_RE = re.compile(r"listing the files of the (\w+) section")


def _fake_ollama(sections_seen: list[str], fail_section: str | None = None):
    """Build a MockTransport handler answering plan, section and review prompts."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        prompt = body["prompt"]

        if prompt.startswith("Return ONLY a JSON object with tasks"):
            text = json.dumps({"tasks": {"frontend": ["setup_vite"], "backend": ["setup_express"]}})
            return httpx.Response(200, json={"model": body["model"], "response": text})

        if prompt.startswith("You are reviewing"):
            text = json.dumps({
                "sections": {
                    "frontend": {"files": [{"path": "frontend/App.jsx", "content": "reviewed"}]},
                    "backend": {"files": [{"path": "backend/app.js", "content": "reviewed"}]},
                }
            })
            return httpx.Response(200, json={"response": text})

        section = _SECTION_RE.search(prompt).group(1)
        sections_seen.append(section)
        if section == fail_section:
            return httpx.Response(500, text="model crashed")

        files = {
            "files": [
                {"path": f"{section}/package.json", "content": json.dumps({"name": section})},
                {"path": f"{section}/src/index.js", "content": "console.log(process.env.PORT);\n"},
            ]
        }
        text = f"Here you go!\n```json\n{json.dumps(files, indent=2)}\n```"
        return httpx.Response(200, json={"response": text, "total_duration": 2_000_000})

    return handler


def _config(tmp_path: Path, review: bool = False) -> Config:
    return Config(
        output_dir=tmp_path,
        llm=LLMConfig(timeout=10),
        generation=GenerationConfig(
            sections=["frontend", "backend"], review=review, retry_backoff=0.0
        ),
    )


@pytest.mark.integration
class TestPipelineSmoke:
    """End-to-end runs against a simulated completion service."""

    async def test_generate_materialize_and_store(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        seen: list[str] = []
        handles = build_model_handles(config, transport=httpx.MockTransport(_fake_ollama(seen)))
        store = JsonArtifactStore(config.artifacts_path)
        output_dir = tmp_path / "project"

        async with handles.client:
            orchestrator = Orchestrator(
                config, handles.planner, handles.section, handles.reviewer, store=store
            )
            result = await orchestrator.run_pipeline(
                GenerationRequest(prompt="A tiny blog with posts and comments", requester_id="u-1"),
                output_dir=output_dir,
            )

        assert result.success is True, result.error
        assert result.stage is PipelineStage.DONE
        assert sorted(seen) == ["backend", "frontend"]

        index = output_dir / "backend" / "src" / "index.js"
        assert index.read_text(encoding="utf-8") == "console.log();\n"
        assert json.loads((output_dir / "frontend" / "package.json").read_text(encoding="utf-8")) == {
            "name": "frontend"
        }

        loaded, owner = await store.load(result.artifact_id)
        assert owner == "u-1"
        assert loaded.file_count() == 4
        assert loaded.plan.tasks_for("backend") == ("setup_express",)

    async def test_review_stage(self, tmp_path: Path) -> None:
        config = _config(tmp_path, review=True)
        handles = build_model_handles(config, transport=httpx.MockTransport(_fake_ollama([])))
        output_dir = tmp_path / "project"

        async with handles.client:
            result = await Orchestrator(
                config, handles.planner, handles.section, handles.reviewer
            ).run_pipeline(
                GenerationRequest(prompt="A tiny blog with posts and comments"),
                output_dir=output_dir,
            )

        assert result.success is True, result.error
        assert result.artifact.reviewed is True
        assert sorted(p.name for p in output_dir.rglob("*") if p.is_file()) == ["App.jsx", "app.js"]

    async def test_upstream_error_fails_without_writing(self, tmp_path: Path) -> None:
        config = _config(tmp_path)
        seen: list[str] = []
        handles = build_model_handles(
            config, transport=httpx.MockTransport(_fake_ollama(seen, fail_section="backend"))
        )
        output_dir = tmp_path / "project"

        async with handles.client:
            result = await Orchestrator(config, handles.planner, handles.section).run_pipeline(
                GenerationRequest(prompt="A tiny blog with posts and comments"),
                output_dir=output_dir,
            )

        payload = result.to_payload()
        assert payload["success"] is False
        assert payload["error"]["kind"] == "service_error"
        assert "HTTP 500" in payload["error"]["message"]
        assert seen.count("backend") == config.generation.max_upstream_attempts
        assert not output_dir.exists()
