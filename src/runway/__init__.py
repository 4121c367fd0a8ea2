from .dsl import checkout, sh, store_artifacts, job, only, workflow, pipeline
from .errors import DefinitionError
from .filters import is_eligible
from .loader import load, load_file
from .results import ExecutionResult, PipelineResult, Status
from .runner import build_executor, run_workflow

__all__ = [
    "checkout", "sh", "store_artifacts", "job", "only", "workflow", "pipeline",
    "DefinitionError", "is_eligible", "load", "load_file",
    "ExecutionResult", "PipelineResult", "Status", "build_executor", "run_workflow",
]
