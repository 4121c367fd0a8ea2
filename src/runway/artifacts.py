# artifacts.py
from __future__ import annotations

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol

from .environments import EnvironmentHandle
from .errors import ArtifactWarning
from .model import StoreArtifacts
from .results import StoredArtifact

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    def put(self, handle: EnvironmentHandle, path: str, destination: str) -> Optional[List[StoredArtifact]]:
        """Store `path` under `destination`. None means the path does not exist."""
        ...


def _safe_label(destination: str) -> PurePosixPath:
    # keep the label inside the job's namespace
    parts = [p for p in PurePosixPath(destination).parts if p not in ("/", "..", ".")]
    return PurePosixPath(*parts)


class LocalArtifactStore:
    """
    Artifacts on the local filesystem:

        <root>/<job id>/<destination>/...

    A file is stored at the destination itself (or inside it when the label
    ends with '/'); a directory's contents are copied under the destination.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def put(self, handle: EnvironmentHandle, path: str, destination: str) -> Optional[List[StoredArtifact]]:
        src = handle.resolve(path)
        if src is None or not src.exists():
            return None

        label = _safe_label(destination)
        target = self.root / handle.job_id / label

        if src.is_file():
            if destination.endswith("/") or not label.parts:
                target = target / src.name
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target)
            return [self._stored(handle, target, path)]

        shutil.copytree(src, target, dirs_exist_ok=True)
        # report what this copy wrote, not what an earlier run left under the label
        copied = sorted(f.relative_to(src) for f in src.rglob("*") if f.is_file())
        return [self._stored(handle, target / rel, path) for rel in copied]

    def _stored(self, handle: EnvironmentHandle, location: Path, source: str) -> StoredArtifact:
        return StoredArtifact(
            job_id=handle.job_id,
            destination=location.relative_to(self.root / handle.job_id).as_posix(),
            source=source,
            location=location,
        )


class ArtifactCollector:
    """Run a store_artifacts step against a store. Problems surface as ArtifactWarning."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def collect(self, step: StoreArtifacts, handle: EnvironmentHandle) -> List[StoredArtifact]:
        try:
            stored = self.store.put(handle, step.path, step.destination)
        except OSError as e:
            raise ArtifactWarning(
                f"could not copy {step.path}: {e}", job=handle.job_id, step=step.display_name
            ) from e

        if stored is None:
            raise ArtifactWarning(
                f"no such file or directory: {step.path}", job=handle.job_id, step=step.display_name
            )

        logger.info("[%s] stored %d artifact(s) from %s under %s",
                    handle.job_id, len(stored), step.path, step.destination)
        return stored
