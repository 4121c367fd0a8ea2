# filters.py
from __future__ import annotations

from typing import List, Optional, Tuple

from .model import BranchFilter, WorkflowDefinition, WorkflowJobRef


def is_eligible(branch_filter: Optional[BranchFilter], branch: str) -> bool:
    """
    True if a workflow job should run for `branch`.

    No filter means always eligible. Otherwise any matching pattern is enough:
    `/regex/` patterns match anywhere in the name, literals match exactly.
    Case-sensitive, no normalization.
    """
    if branch_filter is None:
        return True
    return any(p.matches(branch) for p in branch_filter.only)


def describe(branch_filter: Optional[BranchFilter]) -> str:
    if branch_filter is None:
        return "no filter"
    return "only: " + ", ".join(p.raw for p in branch_filter.only)


def partition(
    workflow: WorkflowDefinition,
    branch: str,
) -> Tuple[List[WorkflowJobRef], List[WorkflowJobRef]]:
    """Split a workflow's job refs into (eligible, skipped), keeping order."""
    eligible: List[WorkflowJobRef] = []
    skipped: List[WorkflowJobRef] = []
    for ref in workflow.jobs:
        (eligible if is_eligible(ref.filter, branch) else skipped).append(ref)
    return eligible, skipped
