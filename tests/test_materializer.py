"""Unit tests for FileMaterializer (codeforge.materializer)."""

from __future__ import annotations

from pathlib import Path

import pytest

from codeforge.errors import MaterializationFailure
from codeforge.generation.models import GeneratedArtifact, GeneratedFile, SectionResult
from codeforge.materializer import FileMaterializer, resolve_target


def _artifact(**sections: list[tuple[str, str]]) -> GeneratedArtifact:
    return GeneratedArtifact(
        sections={
            name: SectionResult(
                name=name,
                files=tuple(GeneratedFile(path=p, content=c) for p, c in files),
            )
            for name, files in sections.items()
        }
    )


class TestResolveTarget:
    @pytest.mark.unit
    def test_relative_path(self, tmp_path: Path):
        root = tmp_path.resolve()
        assert resolve_target(root, "a/b.txt") == root / "a" / "b.txt"

    @pytest.mark.unit
    def test_leading_slash_stays_inside(self, tmp_path: Path):
        root = tmp_path.resolve()
        assert resolve_target(root, "/etc/passwd") == root / "etc" / "passwd"

    @pytest.mark.unit
    @pytest.mark.parametrize("path", ["../outside.txt", "a/../../outside.txt", ".", "a/.."])
    def test_escape_rejected(self, tmp_path: Path, path: str):
        with pytest.raises(MaterializationFailure, match="outside the output root"):
            resolve_target(tmp_path.resolve(), path)


class TestFileMaterializer:
    @pytest.mark.unit
    async def test_writes_all_files(self, tmp_path: Path):
        root = tmp_path / "out"
        artifact = _artifact(
            frontend=[("frontend/package.json", '{"name": "web"}'), ("frontend/src/App.jsx", "app")],
            backend=[("backend/server.js", "server")],
        )
        written = await FileMaterializer().materialize(root, artifact)

        assert [(m.section, m.relative_path) for m in written] == [
            ("frontend", "frontend/package.json"),
            ("frontend", "frontend/src/App.jsx"),
            ("backend", "backend/server.js"),
        ]
        assert (root / "frontend" / "src" / "App.jsx").read_text(encoding="utf-8") == "app"
        assert Path(written[2].absolute_path).read_text(encoding="utf-8") == "server"

    @pytest.mark.unit
    async def test_idempotent(self, tmp_path: Path):
        artifact = _artifact(api=[("api/a.txt", "one"), ("api/b.txt", "two")])
        first = await FileMaterializer().materialize(tmp_path, artifact)
        second = await FileMaterializer().materialize(tmp_path, artifact)

        assert first == second
        assert (tmp_path / "api" / "a.txt").read_text(encoding="utf-8") == "one"

    @pytest.mark.unit
    async def test_overwrites_existing(self, tmp_path: Path):
        (tmp_path / "api").mkdir()
        (tmp_path / "api" / "a.txt").write_text("stale", encoding="utf-8")
        await FileMaterializer().materialize(tmp_path, _artifact(api=[("api/a.txt", "fresh")]))
        assert (tmp_path / "api" / "a.txt").read_text(encoding="utf-8") == "fresh"

    @pytest.mark.unit
    async def test_duplicate_path_later_wins(self, tmp_path: Path):
        artifact = _artifact(
            frontend=[("shared/config.js", "from frontend")],
            backend=[("shared/config.js", "from backend")],
        )
        written = await FileMaterializer().materialize(tmp_path, artifact)

        assert len(written) == 1
        assert written[0].section == "backend"
        assert (tmp_path / "shared" / "config.js").read_text(encoding="utf-8") == "from backend"

    @pytest.mark.unit
    async def test_unsafe_path_writes_nothing(self, tmp_path: Path):
        root = tmp_path / "out"
        artifact = _artifact(api=[("api/ok.txt", "fine"), ("../escape.txt", "bad")])

        with pytest.raises(MaterializationFailure):
            await FileMaterializer().materialize(root, artifact)

        assert not (root / "api" / "ok.txt").exists()
        assert not (tmp_path / "escape.txt").exists()

    @pytest.mark.unit
    async def test_root_is_a_file(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(MaterializationFailure, match="Cannot create output root"):
            await FileMaterializer().materialize(blocker, _artifact(api=[("a.txt", "x")]))

    @pytest.mark.unit
    async def test_empty_artifact(self, tmp_path: Path):
        root = tmp_path / "empty"
        assert await FileMaterializer().materialize(root, _artifact(api=[])) == []
        assert root.is_dir()
