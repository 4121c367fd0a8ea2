"""Console output formatting utilities for runway."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from runway.results import PipelineResult


class Console:
    """Centralized console output formatting. Safe to call from job threads."""

    def __init__(self, debug: bool = False, stream_output: bool = True):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream_output: If True, echo step output prefixed with the job id
        """
        self.debug = debug
        self.stream_output = stream_output
        self._lock = threading.Lock()

    def _print(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_run_started(self, workflow: str, branch: str, job_count: int) -> None:
        """Print run start information."""
        self._print("\nRUN STARTED", f"Workflow: {workflow}", f"Branch: {branch}", f"Jobs: {job_count}", "")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        self._print(f"  ✓ {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        self._print(f"  ⏭ {name} (skipped: {reason})")

    def print_job_start(self, name: str) -> None:
        self._print(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        self._print(f"[{job}] ▶ {name}")

    def print_output(self, job: str, chunk: str) -> None:
        """Echo a chunk of step output, one prefixed line per output line."""
        if not self.stream_output:
            return
        self._print(*(f"[{job}] {line}" for line in chunk.splitlines()))

    def print_warning(self, job: str, message: str) -> None:
        self._print(f"[{job}] WARNING: {message}", err=True)

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line of error only outside debug mode
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._print(*lines)

    def print_job_finished(self, name: str, status: str, duration: float) -> None:
        self._print(f"JOB FINISHED: {name} ({status}, {duration:.1f}s)")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job_id, job_result in result.jobs.items():
            lines.append(f"  {job_id}: {job_result.status.value.upper()}")
            failed = job_result.failed_step
            if failed is not None:
                lines.append(f"    first failing step: {failed.name}")
                if failed.output:
                    lines.extend(f"      | {line}" for line in failed.output.splitlines()[-20:])
        lines.append(f"\nPIPELINE: {result.status.value.upper()}")
        self._print(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._print(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._print(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._print(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
