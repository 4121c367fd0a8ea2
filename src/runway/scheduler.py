# scheduler.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional

from .executor import JobContext, StepExecutor
from .filters import describe, is_eligible, partition
from .model import PipelineDefinition, WorkflowDefinition
from .results import ExecutionResult, PipelineResult, Status
from .ui.console import get_console

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedJob:
    job_id: str
    eligible: bool
    reason: str


def plan(workflow: WorkflowDefinition, branch: str) -> List[PlannedJob]:
    """Which jobs would run for `branch`, without running anything."""
    return [
        PlannedJob(job_id=ref.job_id, eligible=is_eligible(ref.filter, branch), reason=describe(ref.filter))
        for ref in workflow.jobs
    ]


class JobScheduler:
    """
    Fan out the eligible jobs of a workflow, fan in their results.

    Jobs are independent: there are no edges between them, and one job
    failing never cancels or blocks a sibling. Every job writes only its own
    result slot, and only the dispatching thread writes the results dict.
    """

    def __init__(
        self,
        definition: PipelineDefinition,
        executor: StepExecutor,
        *,
        max_workers: Optional[int] = None,
    ):
        self.definition = definition
        self.executor = executor
        self.max_workers = max_workers

    def run(self, workflow: WorkflowDefinition, branch: str, *, ref: Optional[str] = None) -> PipelineResult:
        eligible, skipped = partition(workflow, branch)
        results: Dict[str, ExecutionResult] = {}

        for job_ref in skipped:
            logger.info("skipping %s for branch %r (%s)", job_ref.job_id, branch, describe(job_ref.filter))
            results[job_ref.job_id] = ExecutionResult.skipped(
                job_ref.job_id, f"branch {branch!r} does not match {describe(job_ref.filter)}"
            )

        if eligible:
            context = JobContext(branch=branch, ref=ref)
            workers = self.max_workers or len(eligible)
            logger.debug("dispatching %d job(s) on %d worker(s)", len(eligible), workers)

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="runway-job") as pool:
                futures: Dict[Future, str] = {
                    pool.submit(self.executor.run_job, self.definition.jobs[job_ref.job_id], context): job_ref.job_id
                    for job_ref in eligible
                }

                for future in as_completed(futures):
                    job_id = futures[future]
                    try:
                        results[job_id] = future.result()
                    except Exception as e:
                        logger.exception("job %s crashed", job_id)
                        get_console().print_failure(job_id, f"{type(e).__name__}: {e}", is_job=True)
                        results[job_id] = ExecutionResult(
                            job_id=job_id, status=Status.FAILED, error=f"{type(e).__name__}: {e}"
                        )

        ordered = {job_ref.job_id: results[job_ref.job_id] for job_ref in workflow.jobs}
        return PipelineResult(workflow_id=workflow.id, branch=branch, jobs=ordered)
