"""Checkpoint persistence for workflow runs."""

from stepflow.state.store import (
    RunStatus,
    RunSummary,
    StateStore,
    checkpointing,
    sanitize_id,
    status_from_state,
)

__all__ = [
    "RunStatus",
    "RunSummary",
    "StateStore",
    "checkpointing",
    "sanitize_id",
    "status_from_state",
]
