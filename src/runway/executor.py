# executor.py
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from .artifacts import ArtifactCollector
from .checkout import CheckoutProvider
from .environments import CommandRunner, EnvironmentHandle, Provisioner
from .errors import ArtifactWarning, ExecutionError, JobEnvironmentError, StepTimeout
from .model import Checkout, JobDefinition, Run, StoreArtifacts, step_kind
from .results import OUTPUT_TAIL_CHARS, ExecutionResult, Status, StepOutcome
from .ui.console import get_console
from .watchdog import IdleWatchdog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobContext:
    """Per-invocation trigger information shared by every job of a run."""
    branch: str
    ref: Optional[str] = None

    @property
    def checkout_ref(self) -> Optional[str]:
        return self.ref or self.branch or None


@contextmanager
def acquired(provisioner: Provisioner, job: JobDefinition, context: JobContext) -> Iterator[EnvironmentHandle]:
    """Acquire the job's environment; release it on every exit path."""
    handle = provisioner.acquire(job, context.branch)
    try:
        yield handle
    finally:
        logger.debug("[%s] releasing environment", job.id)
        provisioner.release(handle)


class StepExecutor:
    """
    Run one job's steps, in order, inside one acquired environment.

    Failure policy within a job:
      - a failing/timed-out run step or a failing checkout aborts the
        remaining checkout/run steps (they are recorded as skipped)
      - store_artifacts steps always run, so partial output stays retrievable
      - a missing artifact path is a warning, never a job failure
    """

    def __init__(
        self,
        provisioner: Provisioner,
        checkout: CheckoutProvider,
        runner: CommandRunner,
        collector: ArtifactCollector,
    ):
        self.provisioner = provisioner
        self.checkout = checkout
        self.runner = runner
        self.collector = collector

    def run_job(self, job: JobDefinition, context: JobContext) -> ExecutionResult:
        console = get_console()
        console.print_job_start(job.id)
        started = time.monotonic()
        result = ExecutionResult(job_id=job.id, status=Status.SUCCESS)

        try:
            with acquired(self.provisioner, job, context) as handle:
                self._run_steps(job, handle, context, result)
        except JobEnvironmentError as e:
            logger.error("[%s] environment unavailable: %s", job.id, e.message)
            result.status = Status.ENVIRONMENT_ERROR
            result.error = e.message
            console.print_failure(job.id, str(e), hint=e.details.get("hint"), is_job=True)
        finally:
            result.duration = time.monotonic() - started

        console.print_job_finished(job.id, result.status.value, result.duration)
        return result

    # ------------------------------------------------------------------

    def _run_steps(
        self,
        job: JobDefinition,
        handle: EnvironmentHandle,
        context: JobContext,
        result: ExecutionResult,
    ) -> None:
        console = get_console()

        for step in job.steps:
            name = step.display_name
            kind = step_kind(step)

            if isinstance(step, StoreArtifacts):
                result.steps.append(self._store(step, handle, result))
                continue

            if result.status is not Status.SUCCESS:
                result.steps.append(
                    StepOutcome(name=name, kind=kind, status=Status.SKIPPED, message="skipped after earlier failure")
                )
                continue

            console.print_step(job.id, name)
            step_started = time.monotonic()

            try:
                if isinstance(step, Checkout):
                    self.checkout.materialize(handle, context.checkout_ref)
                    outcome = StepOutcome(name=name, kind=kind, status=Status.SUCCESS)
                else:
                    output = self._run_command(job, step, handle)
                    outcome = StepOutcome(name=name, kind=kind, status=Status.SUCCESS, exit_code=0, output=output)
            except JobEnvironmentError as e:
                outcome = StepOutcome(name=name, kind=kind, status=Status.ENVIRONMENT_ERROR, message=str(e))
            except StepTimeout as e:
                outcome = StepOutcome(
                    name=name, kind=kind, status=Status.TIMED_OUT, output=e.output, message=e.message
                )
            except ExecutionError as e:
                outcome = StepOutcome(
                    name=name, kind=kind, status=Status.FAILED,
                    exit_code=e.exit_code, output=e.output, message=e.message,
                )
            except Exception as e:
                logger.exception("[%s] step '%s' crashed", job.id, name)
                outcome = StepOutcome(name=name, kind=kind, status=Status.FAILED, message=f"{type(e).__name__}: {e}")

            outcome.duration = time.monotonic() - step_started
            result.steps.append(outcome)

            if outcome.status is not Status.SUCCESS:
                logger.info("[%s] step '%s' ended with %s", job.id, name, outcome.status.value)
                result.status = outcome.status
                result.error = outcome.message
                console.print_failure(name, outcome.message or "", exit_code=outcome.exit_code)

    def _run_command(self, job: JobDefinition, step: Run, handle: EnvironmentHandle) -> str:
        """Run a command under the idle watchdog. Returns the output tail."""
        console = get_console()
        tail = ""

        proc = self.runner.exec(handle, step.command)
        with IdleWatchdog(step.idle_timeout, proc.kill) as dog:
            for chunk in proc.output():
                dog.reset()
                tail = (tail + chunk)[-OUTPUT_TAIL_CHARS:]
                console.print_output(job.id, chunk)
            exit_code = proc.wait()

        if dog.fired:
            raise StepTimeout(job=job.id, step=step.display_name, idle_timeout=step.idle_timeout, output=tail)
        if exit_code != 0:
            raise ExecutionError(
                job=job.id, step=step.display_name, command=step.command, exit_code=exit_code, output=tail
            )
        return tail

    def _store(self, step: StoreArtifacts, handle: EnvironmentHandle, result: ExecutionResult) -> StepOutcome:
        console = get_console()
        name = step.display_name
        console.print_step(handle.job_id, name)

        try:
            stored = self.collector.collect(step, handle)
        except ArtifactWarning as w:
            logger.warning("[%s] %s", handle.job_id, w.message)
            console.print_warning(handle.job_id, w.message)
            return StepOutcome(name=name, kind="store_artifacts", status=Status.SKIPPED, message=w.message)

        result.artifacts.extend(stored)
        return StepOutcome(
            name=name, kind="store_artifacts", status=Status.SUCCESS, message=f"{len(stored)} file(s) stored"
        )
