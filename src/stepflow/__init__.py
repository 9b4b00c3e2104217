"""stepflow: checkpointed, resumable state-machine workflows.

- workflow graphs as pure data, walked step by step by pluggable handlers
- an execution engine with dry-run, single-step and cancellation support
- atomic per-run JSON checkpoints so interrupted runs can be resumed
"""

__version__ = "0.1.0"

from stepflow.state.store import RunSummary, StateStore, checkpointing
from stepflow.workflow.definition import STEP_DONE, STEP_FAILED, StepDefinition, WorkflowDefinition
from stepflow.workflow.engine import Engine
from stepflow.workflow.registry import Registry, StepHandler
from stepflow.workflow.state import StepRecord, WorkflowState

__all__ = [
    "__version__",
    "Engine",
    "Registry",
    "RunSummary",
    "STEP_DONE",
    "STEP_FAILED",
    "StateStore",
    "StepDefinition",
    "StepHandler",
    "StepRecord",
    "WorkflowDefinition",
    "WorkflowState",
    "checkpointing",
]
