"""Document lifecycle state machines."""

from .engine import TransitionOutcome, WorkflowEngine, merge_changes
from .guards import GuardContext
from .tables import WORKFLOW_TABLES, TransitionRule, WorkflowTable

__all__ = [
    "WorkflowEngine",
    "TransitionOutcome",
    "merge_changes",
    "GuardContext",
    "TransitionRule",
    "WorkflowTable",
    "WORKFLOW_TABLES",
]
