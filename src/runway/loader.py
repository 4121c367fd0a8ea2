"""
Definition loading: turn a hierarchical config document into a PipelineDefinition.

Supports the CircleCI-style layout:

    jobs:
      unit_tests:
        machine: true
        working_directory: ~/project
        steps:
          - checkout
          - run:
              name: Tests
              command: make test
              no_output_timeout: 20m
    workflows:
      version: 2
      build:
        jobs:
          - unit_tests
          - all_tests:
              filters:
                branches:
                  only: [master, /.*net.*/]
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import DefinitionError
from .model import (
    DEFAULT_WORKING_DIRECTORY,
    BranchFilter,
    BranchPattern,
    Checkout,
    ContainerEnv,
    EnvSpec,
    HostEnv,
    JobDefinition,
    PipelineDefinition,
    Run,
    StepDefinition,
    StoreArtifacts,
    WorkflowDefinition,
    WorkflowJobRef,
)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Any) -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) and strings like "20m", "1h30m", "45s", "500ms".
    """
    if isinstance(value, bool):
        raise DefinitionError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            seconds = float(text)
        except ValueError:
            pos = 0
            seconds = 0.0
            for m in _DURATION_PART.finditer(text):
                if m.start() != pos:
                    break
                seconds += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
                pos = m.end()
            if pos == 0 or pos != len(text):
                raise DefinitionError(f"Invalid duration: {value!r}") from None
    else:
        raise DefinitionError(f"Invalid duration: {value!r}")

    if seconds <= 0:
        raise DefinitionError(f"Duration must be positive: {value!r}")
    return seconds


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def load(raw: Any) -> PipelineDefinition:
    """Parse and validate an already-decoded document. No side effects."""
    if not isinstance(raw, dict):
        raise DefinitionError("Definition must be a mapping with 'jobs' and 'workflows'")

    raw_jobs = raw.get("jobs")
    if not isinstance(raw_jobs, dict) or not raw_jobs:
        raise DefinitionError("Definition must declare at least one job under 'jobs'")

    jobs = {str(job_id): _parse_job(str(job_id), body) for job_id, body in raw_jobs.items()}

    raw_workflows = raw.get("workflows") or {}
    if not isinstance(raw_workflows, dict):
        raise DefinitionError("'workflows' must be a mapping")

    workflows: Dict[str, WorkflowDefinition] = {}
    for wf_id, body in raw_workflows.items():
        # `version` sits next to the workflows in the document
        if wf_id == "version":
            continue
        workflows[str(wf_id)] = _parse_workflow(str(wf_id), body)

    return PipelineDefinition(jobs=jobs, workflows=workflows)


def load_file(path: str | Path) -> PipelineDefinition:
    """Read a YAML definition file and load it."""
    def_path = Path(path).expanduser()
    if not def_path.exists():
        raise DefinitionError(f"Definition file not found: {def_path}")

    try:
        data = yaml.safe_load(def_path.read_text())
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {def_path}: {e}") from e

    return load(data)


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

def _parse_job(job_id: str, body: Any) -> JobDefinition:
    if not isinstance(body, dict):
        raise DefinitionError(f"Job '{job_id}' must be a mapping", job=job_id)

    raw_steps = body.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise DefinitionError(f"Job '{job_id}' must declare a non-empty 'steps' list", job=job_id)

    working_directory = body.get("working_directory") or DEFAULT_WORKING_DIRECTORY

    return JobDefinition(
        id=job_id,
        environment=_parse_environment(job_id, body),
        steps=tuple(_parse_step(job_id, i, s) for i, s in enumerate(raw_steps, start=1)),
        working_directory=str(working_directory),
    )


def _parse_environment(job_id: str, body: Dict[str, Any]) -> EnvSpec:
    declared = [k for k in ("environment", "docker", "machine") if body.get(k) not in (None, False)]
    if len(declared) > 1:
        raise DefinitionError(
            f"Job '{job_id}' declares more than one environment: {', '.join(declared)}", job=job_id
        )

    env = body.get("environment")
    if isinstance(env, dict):
        if env.get("image"):
            return ContainerEnv(image=str(env["image"]))
        if env.get("machine") is True:
            return HostEnv()
        raise DefinitionError(f"Job '{job_id}' environment needs 'image' or 'machine: true'", job=job_id)

    docker = body.get("docker")
    if docker is not None:
        if not isinstance(docker, list) or not docker or not isinstance(docker[0], dict) or not docker[0].get("image"):
            raise DefinitionError(f"Job '{job_id}' 'docker' must be a list of {{image: ...}}", job=job_id)
        # first image is the primary container the steps run in
        return ContainerEnv(image=str(docker[0]["image"]))

    if body.get("machine") is True:
        return HostEnv()

    raise DefinitionError(
        f"Job '{job_id}' declares no environment (use 'docker', 'machine: true' or 'environment')",
        job=job_id,
    )


def _parse_step(job_id: str, index: int, raw: Any) -> StepDefinition:
    step_ref = f"#{index}"

    if raw == "checkout":
        return Checkout()

    if not isinstance(raw, dict) or len(raw) != 1:
        raise DefinitionError(f"Job '{job_id}' step {step_ref} must be a single-key mapping", job=job_id, step=step_ref)

    kind, params = next(iter(raw.items()))

    if kind == "checkout":
        return Checkout()

    if kind == "run":
        if isinstance(params, str):
            return Run(command=params)
        if not isinstance(params, dict) or not params.get("command"):
            raise DefinitionError(f"Job '{job_id}' run step {step_ref} is missing 'command'", job=job_id, step=step_ref)
        timeout = params.get("no_output_timeout")
        return Run(
            command=str(params["command"]),
            name=params.get("name"),
            idle_timeout=parse_duration(timeout) if timeout is not None else None,
        )

    if kind == "store_artifacts":
        if not isinstance(params, dict) or not params.get("path"):
            raise DefinitionError(
                f"Job '{job_id}' store_artifacts step {step_ref} is missing 'path'", job=job_id, step=step_ref
            )
        path = str(params["path"])
        destination = params.get("destination") or path.lstrip("/")
        return StoreArtifacts(path=path, destination=str(destination))

    raise DefinitionError(f"Job '{job_id}' step {step_ref} has unknown kind '{kind}'", job=job_id, step=step_ref)


# ----------------------------------------------------------------------
# Workflows
# ----------------------------------------------------------------------

def _parse_workflow(wf_id: str, body: Any) -> WorkflowDefinition:
    if not isinstance(body, dict) or not isinstance(body.get("jobs"), list):
        raise DefinitionError(f"Workflow '{wf_id}' must declare a 'jobs' list", workflow=wf_id)

    refs: List[WorkflowJobRef] = []
    for entry in body["jobs"]:
        if isinstance(entry, str):
            refs.append(WorkflowJobRef(job_id=entry))
        elif isinstance(entry, dict) and len(entry) == 1:
            job_id, params = next(iter(entry.items()))
            refs.append(WorkflowJobRef(job_id=str(job_id), filter=_parse_filter(wf_id, str(job_id), params)))
        else:
            raise DefinitionError(f"Workflow '{wf_id}' has an invalid job entry: {entry!r}", workflow=wf_id)

    return WorkflowDefinition(id=wf_id, jobs=tuple(refs))


def _parse_filter(wf_id: str, job_id: str, params: Any) -> Optional[BranchFilter]:
    if params is None:
        return None
    if not isinstance(params, dict):
        raise DefinitionError(f"Workflow '{wf_id}' entry '{job_id}' must be a mapping", job=job_id, workflow=wf_id)

    filters = params.get("filters")
    if filters is None:
        return None

    branches = filters.get("branches") if isinstance(filters, dict) else None
    only = branches.get("only") if isinstance(branches, dict) else None
    if only is None:
        raise DefinitionError(
            f"Workflow '{wf_id}' entry '{job_id}' filter needs 'branches.only'", job=job_id, workflow=wf_id
        )
    if isinstance(only, str):
        only = [only]
    if not isinstance(only, list) or not only:
        raise DefinitionError(
            f"Workflow '{wf_id}' entry '{job_id}' 'branches.only' must be a non-empty list", job=job_id, workflow=wf_id
        )

    try:
        patterns = tuple(BranchPattern.parse(str(p)) for p in only)
    except DefinitionError as e:
        raise DefinitionError(e.message, job=job_id, workflow=wf_id) from e
    return BranchFilter(only=patterns)
