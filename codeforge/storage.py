"""Persistence for generated artifacts.

The pipeline only depends on the :class:`ArtifactStore` protocol:
``save(artifact, owner_id) -> artifact_id``.  :class:`JsonArtifactStore` is a
file-backed implementation that writes one JSON document per artifact.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol

from codeforge.generation.models import GeneratedArtifact
from codeforge.utils import load_json, save_json

logger = logging.getLogger(__name__)

_ARTIFACT_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class ArtifactStore(Protocol):
    """Opaque persistence collaborator."""

    async def save(self, artifact: GeneratedArtifact, owner_id: Optional[str]) -> str: ...


class JsonArtifactStore:
    """Stores each artifact as ``<root>/<artifact_id>.json``."""

    def __init__(self, root: str | Path, project_name: str = "New Project") -> None:
        self.root = Path(root)
        self.project_name = project_name

    def _path_for(self, artifact_id: str) -> Path:
        if not _ARTIFACT_ID_PATTERN.match(artifact_id):
            raise ValueError(f"Invalid artifact id: {artifact_id!r}")
        return self.root / f"{artifact_id}.json"

    async def save(self, artifact: GeneratedArtifact, owner_id: Optional[str]) -> str:
        artifact_id = uuid.uuid4().hex
        document: dict[str, Any] = {
            "id": artifact_id,
            "name": self.project_name,
            "owner": owner_id,
            **artifact.to_document(),
        }
        await save_json(document, self._path_for(artifact_id))
        logger.info("Stored artifact %s (%d file(s))", artifact_id, artifact.file_count())
        return artifact_id

    async def load(self, artifact_id: str) -> tuple[GeneratedArtifact, Optional[str]]:
        """Return the stored artifact and its owner.

        Raises:
            FileNotFoundError: If no artifact with that id exists.
        """
        document = await asyncio.to_thread(load_json, self._path_for(artifact_id))
        return GeneratedArtifact.from_document(document), document.get("owner")

    def list_ids(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.stem for p in self.root.glob("*.json") if _ARTIFACT_ID_PATTERN.match(p.stem))
