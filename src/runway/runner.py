# runner.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from . import settings
from .artifacts import ArtifactCollector, LocalArtifactStore
from .checkout import GitCheckout
from .environments import DispatchingProvisioner, DockerProvisioner, HostProvisioner, ShellRunner
from .executor import StepExecutor
from .model import PipelineDefinition
from .results import PipelineResult
from .scheduler import JobScheduler, plan
from .ui.console import get_console


def build_executor(
    *,
    source: str,
    artifacts_root: str | Path = settings.ARTIFACTS_DIR,
    workspace_root: str | Path = settings.WORKSPACE_DIR,
    docker: str = settings.DOCKER,
    shell: str = settings.SHELL,
    keep_workspaces: bool = False,
) -> StepExecutor:
    """Wire the default collaborators: host/docker environments, git checkout, local artifacts."""
    workspace_root = Path(workspace_root).resolve()
    provisioner = DispatchingProvisioner(
        host=HostProvisioner(workspace_root, keep=keep_workspaces),
        container=DockerProvisioner(workspace_root, docker=docker, keep=keep_workspaces),
    )
    return StepExecutor(
        provisioner=provisioner,
        checkout=GitCheckout(source),
        runner=ShellRunner(shell=shell, docker=docker),
        collector=ArtifactCollector(LocalArtifactStore(Path(artifacts_root).resolve())),
    )


def run_workflow(
    definition: PipelineDefinition,
    workflow_id: str,
    branch: str,
    *,
    executor: StepExecutor,
    max_workers: Optional[int] = settings.MAX_WORKERS,
    ref: Optional[str] = None,
    print_plan: bool = True,
) -> PipelineResult:
    """
    Run one workflow for a trigger branch and return the aggregate result.

    Raises DefinitionError for an unknown workflow, before anything runs.
    """
    console = get_console()
    workflow = definition.workflow(workflow_id)
    scheduler = JobScheduler(definition, executor, max_workers=max_workers)

    planned = plan(workflow, branch)
    console.print_run_started(workflow.id, branch, sum(p.eligible for p in planned))
    if print_plan:
        for p in planned:
            if p.eligible:
                console.print_plan_job(p.job_id, p.reason)
            else:
                console.print_plan_job_skipped(p.job_id, p.reason)

    result = scheduler.run(workflow, branch, ref=ref)
    console.print_results(result)
    return result
