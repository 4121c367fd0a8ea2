# checkout.py
from __future__ import annotations

import logging
import subprocess
from typing import Optional, Protocol

from .environments import EnvironmentHandle
from .errors import JobEnvironmentError
from .git_facts.git import clone, head_sha

logger = logging.getLogger(__name__)


class CheckoutProvider(Protocol):
    def materialize(self, handle: EnvironmentHandle, ref: Optional[str]) -> None:
        """Put the source tree for `ref` into the job workspace. Raises JobEnvironmentError."""
        ...


class GitCheckout:
    """Clone a repository (local path or URL) into the job workspace."""

    def __init__(self, source: str):
        self.source = source

    def materialize(self, handle: EnvironmentHandle, ref: Optional[str]) -> None:
        if any(handle.workspace.iterdir()):
            raise JobEnvironmentError(
                f"workspace is not empty: {handle.workspace}",
                job=handle.job_id,
                step="checkout",
            )
        try:
            clone(self.source, handle.workspace, ref)
            sha = head_sha(cwd=handle.workspace)
        except subprocess.CalledProcessError as e:
            raise JobEnvironmentError(
                f"git checkout of {ref or 'default branch'} failed",
                job=handle.job_id,
                step="checkout",
                source=self.source,
                stderr=(e.stderr or "").strip(),
            ) from e
        except FileNotFoundError as e:
            raise JobEnvironmentError(
                "git command not found. Please install Git.",
                job=handle.job_id,
                step="checkout",
            ) from e

        logger.info("checked out %s@%s into %s", self.source, sha[:12], handle.workspace)
