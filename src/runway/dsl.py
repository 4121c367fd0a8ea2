# src/runway/dsl.py
from __future__ import annotations

from typing import Iterable, List, Optional

from .errors import DefinitionError
from .loader import parse_duration
from .model import (
    DEFAULT_WORKING_DIRECTORY,
    BranchFilter,
    BranchPattern,
    Checkout,
    ContainerEnv,
    HostEnv,
    JobDefinition,
    PipelineDefinition,
    Run,
    StepDefinition,
    StoreArtifacts,
    WorkflowDefinition,
    WorkflowJobRef,
)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def checkout() -> Checkout:
    return Checkout()


def sh(command: str, *, name: str | None = None, no_output_timeout: str | float | None = None) -> Run:
    """Create a run step. `no_output_timeout` accepts "20m"-style strings or seconds."""
    return Run(
        command=command,
        name=name,
        idle_timeout=parse_duration(no_output_timeout) if no_output_timeout is not None else None,
    )


def store_artifacts(path: str, destination: str | None = None) -> StoreArtifacts:
    return StoreArtifacts(path=path, destination=destination or path.lstrip("/"))


# ---------------------------------------------------------------------
# Jobs and workflows
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepDefinition,
    image: Optional[str] = None,
    machine: bool = False,
    working_directory: str = DEFAULT_WORKING_DIRECTORY,
) -> JobDefinition:
    """
    Functional job helper:

        job("unit_tests", checkout(), sh("make test"), machine=True)
    """
    if not steps:
        raise DefinitionError(f"Job '{name}' must declare at least one step", job=name)
    if (image is None) == (not machine):
        raise DefinitionError(f"Job '{name}' needs exactly one of image=... or machine=True", job=name)

    return JobDefinition(
        id=name,
        environment=ContainerEnv(image=image) if image else HostEnv(),
        steps=tuple(steps),
        working_directory=working_directory,
    )


def only(job_id: str, *patterns: str) -> WorkflowJobRef:
    """A workflow entry gated on branch patterns (literals or /regex/)."""
    if not patterns:
        raise DefinitionError(f"only({job_id!r}) needs at least one branch pattern", job=job_id)
    try:
        parsed = tuple(BranchPattern.parse(p) for p in patterns)
    except DefinitionError as e:
        raise DefinitionError(e.message, job=job_id) from e
    return WorkflowJobRef(job_id=job_id, filter=BranchFilter(only=parsed))


def workflow(name: str, *entries: str | WorkflowJobRef) -> WorkflowDefinition:
    refs = [WorkflowJobRef(job_id=e) if isinstance(e, str) else e for e in entries]
    return WorkflowDefinition(id=name, jobs=tuple(refs))


def _duplicates(names: List[str]) -> List[str]:
    return sorted({n for n in names if names.count(n) > 1})


def pipeline(jobs: Iterable[JobDefinition], workflows: Iterable[WorkflowDefinition]) -> PipelineDefinition:
    """Bundle jobs and workflows; raises DefinitionError like the file loader."""
    job_list: List[JobDefinition] = list(jobs)
    wf_list: List[WorkflowDefinition] = list(workflows)

    dupes = _duplicates([j.id for j in job_list])
    if dupes:
        raise DefinitionError(f"Duplicate job names found: {dupes}")
    dupes = _duplicates([wf.id for wf in wf_list])
    if dupes:
        raise DefinitionError(f"Duplicate workflow names found: {dupes}")

    return PipelineDefinition(
        jobs={j.id: j for j in job_list},
        workflows={wf.id: wf for wf in wf_list},
    )
