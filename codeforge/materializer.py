"""Write a generated artifact to a directory tree.

Every target path is resolved and checked before anything is written, so an
artifact containing a path that escapes the root writes nothing at all.
Files are then written one worker-thread call at a time: a cancelled run
stops before the next file.  Writes overwrite, which makes materializing the
same artifact twice idempotent.  The tree as a whole is not written
atomically; a crash mid-way can leave some files behind.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from codeforge.errors import MaterializationFailure
from codeforge.generation.models import GeneratedArtifact, MaterializedFile
from codeforge.utils import write_text

logger = logging.getLogger(__name__)


def resolve_target(root: Path, relative_path: str) -> Path:
    """Return the absolute write target for *relative_path* under *root*.

    Leading separators are dropped so absolute model paths land inside the
    root.

    Raises:
        MaterializationFailure: If the resolved target is not strictly
            inside *root*.
    """
    relative = relative_path.replace("\\", "/").lstrip("/")
    target = (root / relative).resolve()
    if target == root or not target.is_relative_to(root):
        raise MaterializationFailure(
            f"Refusing to write outside the output root: {relative_path!r}"
        )
    return target


class FileMaterializer:
    """Creates the directory tree for an artifact and writes its files."""

    async def materialize(
        self, root: str | Path, artifact: GeneratedArtifact
    ) -> list[MaterializedFile]:
        """Write every file of *artifact* under *root*.

        When two files map to the same target the later one wins and the
        target is written once.

        Returns:
            One entry per written file, in artifact order.

        Raises:
            MaterializationFailure: On an unsafe path or any OS error.
        """
        try:
            root_path = Path(root).resolve()
            await asyncio.to_thread(root_path.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise MaterializationFailure(f"Cannot create output root {root}: {exc}") from exc

        plan: dict[Path, tuple[str, str, str]] = {}
        for section, generated in artifact.iter_files():
            target = resolve_target(root_path, generated.path)
            if target in plan:
                logger.warning("Duplicate output path %s; keeping the later file", target)
                del plan[target]
            plan[target] = (section, generated.path, generated.content)

        written: list[MaterializedFile] = []
        for target, (section, relative, content) in plan.items():
            try:
                await asyncio.to_thread(write_text, target, content)
            except OSError as exc:
                raise MaterializationFailure(f"Failed to write {relative}: {exc}") from exc
            written.append(
                MaterializedFile(
                    section=section,
                    relative_path=target.relative_to(root_path).as_posix(),
                    absolute_path=str(target),
                )
            )

        logger.info("Materialized %d file(s) under %s", len(written), root_path)
        return written
