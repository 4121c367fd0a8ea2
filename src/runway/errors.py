# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - recording in a job's ExecutionResult
      - debugging without full tracebacks
    """
    kind: str
    message: str
    job: str | None = None
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class DefinitionError(CIError):
    """Malformed definition or dangling reference. Pipeline-fatal."""

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, **details):
        super().__init__(kind="definition_error", message=message, job=job, step=step, details=details)


class JobEnvironmentError(CIError):
    """Provisioner or checkout failure. Fatal to one job only."""

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, **details):
        super().__init__(kind="environment_error", message=message, job=job, step=step, details=details)


class ExecutionError(CIError):
    """A run step exited non-zero."""

    def __init__(self, *, job: str, step: str, command: str, exit_code: int, output: str = ""):
        super().__init__(
            kind="execution_error",
            message=f"step '{step}' failed (exit={exit_code})",
            job=job,
            step=step,
            details={"command": command},
        )
        self.exit_code = exit_code
        self.output = output


class StepTimeout(CIError):
    """The idle watchdog fired: the command produced no output for too long."""

    def __init__(self, *, job: str, step: str, idle_timeout: float, output: str = ""):
        super().__init__(
            kind="timed_out",
            message=f"step '{step}' produced no output for {idle_timeout:g}s",
            job=job,
            step=step,
        )
        self.idle_timeout = idle_timeout
        self.output = output


class ArtifactWarning(CIError):
    """Declared artifact path could not be collected. Never fails a job."""

    def __init__(self, message: str, *, job: str | None = None, step: str | None = None, **details):
        super().__init__(kind="artifact_warning", message=message, job=job, step=step, details=details)
