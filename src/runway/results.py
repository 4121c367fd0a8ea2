# results.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

OUTPUT_TAIL_CHARS = 4000

EXIT_SUCCESS = 0
EXIT_JOB_FAILED = 1
EXIT_DEFINITION_ERROR = 3


class Status(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    ENVIRONMENT_ERROR = "environment_error"

    @property
    def is_failure(self) -> bool:
        return self not in (Status.SUCCESS, Status.SKIPPED)


@dataclass(frozen=True)
class StoredArtifact:
    job_id: str
    destination: str
    source: str
    location: Path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination,
            "source": self.source,
            "location": str(self.location),
        }


@dataclass
class StepOutcome:
    name: str
    kind: str
    status: Status
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "duration": round(self.duration, 3),
            "message": self.message,
        }


@dataclass
class ExecutionResult:
    """Outcome of one job within a pipeline run."""
    job_id: str
    status: Status
    steps: List[StepOutcome] = field(default_factory=list)
    artifacts: List[StoredArtifact] = field(default_factory=list)
    duration: float = 0.0
    error: Optional[str] = None

    @classmethod
    def skipped(cls, job_id: str, reason: str | None = None) -> ExecutionResult:
        return cls(job_id=job_id, status=Status.SKIPPED, error=reason)

    @property
    def failed_step(self) -> Optional[StepOutcome]:
        """The first step that caused the job to fail, kept for diagnosis."""
        for outcome in self.steps:
            if outcome.status.is_failure:
                return outcome
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "duration": round(self.duration, 3),
            "error": self.error,
            "steps": [s.to_dict() for s in self.steps],
            "artifacts": [a.to_dict() for a in self.artifacts],
        }


def aggregate_status(results: Mapping[str, ExecutionResult]) -> Status:
    """Failed if any job that was not skipped did not succeed, else Success."""
    if any(r.status.is_failure for r in results.values()):
        return Status.FAILED
    return Status.SUCCESS


@dataclass
class PipelineResult:
    workflow_id: str
    branch: str
    jobs: Dict[str, ExecutionResult]

    @property
    def status(self) -> Status:
        return aggregate_status(self.jobs)

    @property
    def exit_code(self) -> int:
        return EXIT_SUCCESS if self.status is Status.SUCCESS else EXIT_JOB_FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.workflow_id,
            "branch": self.branch,
            "status": self.status.value,
            "jobs": {job_id: r.to_dict() for job_id, r in self.jobs.items()},
        }
