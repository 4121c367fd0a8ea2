# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from .errors import DefinitionError

DEFAULT_WORKING_DIRECTORY = "~/project"


# ---------------------------------------------------------------------
# Environments
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ContainerEnv:
    """Run the job inside a container started from `image`."""
    image: str


@dataclass(frozen=True)
class HostEnv:
    """Run the job directly on the host machine, no isolation image."""


EnvSpec = Union[ContainerEnv, HostEnv]


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Checkout:
    """Materialize the triggering source tree into the working directory."""

    @property
    def display_name(self) -> str:
        return "Checkout code"


@dataclass(frozen=True)
class Run:
    """A shell command. `idle_timeout` is in seconds, reset by any output."""
    command: str
    name: Optional[str] = None
    idle_timeout: Optional[float] = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        first = self.command.strip().splitlines()
        return first[0] if first else self.command


@dataclass(frozen=True)
class StoreArtifacts:
    """Copy `path` out of the job environment under the `destination` label."""
    path: str
    destination: str

    @property
    def display_name(self) -> str:
        return f"Uploading artifacts: {self.path}"


StepDefinition = Union[Checkout, Run, StoreArtifacts]


def step_kind(step: StepDefinition) -> str:
    if isinstance(step, Checkout):
        return "checkout"
    if isinstance(step, Run):
        return "run"
    return "store_artifacts"


# ---------------------------------------------------------------------
# Jobs and workflows
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class JobDefinition:
    id: str
    environment: EnvSpec
    steps: Tuple[StepDefinition, ...]
    working_directory: str = DEFAULT_WORKING_DIRECTORY


@dataclass(frozen=True)
class BranchPattern:
    """
    A literal branch name, or a regex when written as `/pattern/`.

    Regex patterns match anywhere in the branch name (re.search), literals
    only by exact equality.
    """
    raw: str
    regex: Optional[re.Pattern] = field(default=None, compare=False)

    @classmethod
    def parse(cls, raw: str) -> BranchPattern:
        if not raw.startswith("/"):
            return cls(raw=raw)
        if len(raw) < 2 or not raw.endswith("/"):
            raise DefinitionError(f"Unterminated regex branch pattern: {raw!r}")
        try:
            compiled = re.compile(raw[1:-1])
        except re.error as e:
            raise DefinitionError(f"Invalid regex branch pattern {raw!r}: {e}") from e
        return cls(raw=raw, regex=compiled)

    @property
    def is_regex(self) -> bool:
        return self.regex is not None

    def matches(self, branch: str) -> bool:
        if self.regex is not None:
            return self.regex.search(branch) is not None
        return branch == self.raw


@dataclass(frozen=True)
class BranchFilter:
    only: Tuple[BranchPattern, ...]


@dataclass(frozen=True)
class WorkflowJobRef:
    job_id: str
    filter: Optional[BranchFilter] = None


@dataclass(frozen=True)
class WorkflowDefinition:
    id: str
    jobs: Tuple[WorkflowJobRef, ...]


@dataclass(frozen=True)
class PipelineDefinition:
    """
    Immutable set of jobs and workflows loaded for one invocation.

    Construction validates cross references, so an instance is always
    well formed.
    """
    jobs: Mapping[str, JobDefinition]
    workflows: Mapping[str, WorkflowDefinition]

    def __post_init__(self) -> None:
        object.__setattr__(self, "jobs", MappingProxyType(dict(self.jobs)))
        object.__setattr__(self, "workflows", MappingProxyType(dict(self.workflows)))
        self.validate()

    def validate(self) -> None:
        for job_id, job in self.jobs.items():
            if job.id != job_id:
                raise DefinitionError(f"Job registered as '{job_id}' is named '{job.id}'", job=job_id)
            if not job.steps:
                raise DefinitionError(f"Job '{job_id}' has no steps", job=job_id)

        for wf in self.workflows.values():
            seen: set[str] = set()
            for ref in wf.jobs:
                if ref.job_id not in self.jobs:
                    raise DefinitionError(
                        f"Workflow '{wf.id}' references missing job '{ref.job_id}'. "
                        f"Known jobs: {sorted(self.jobs)}",
                        job=ref.job_id,
                        workflow=wf.id,
                    )
                if ref.job_id in seen:
                    raise DefinitionError(
                        f"Workflow '{wf.id}' lists job '{ref.job_id}' more than once",
                        job=ref.job_id,
                        workflow=wf.id,
                    )
                seen.add(ref.job_id)

    def workflow(self, workflow_id: str) -> WorkflowDefinition:
        try:
            return self.workflows[workflow_id]
        except KeyError:
            raise DefinitionError(
                f"Unknown workflow '{workflow_id}'. Known workflows: {sorted(self.workflows)}"
            ) from None
