"""Mutable record of a single workflow run.

The engine owns a :class:`WorkflowState` exclusively while a run is in
progress. Handlers receive it for the duration of one call only and must not
keep a reference, since the engine checkpoints it right after they return.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from stepflow.workflow.definition import is_terminal


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_run_id() -> str:
    return f"wf-{uuid.uuid4().hex}"


class StepRecord(BaseModel):
    """Immutable log entry for one executed step."""

    model_config = ConfigDict(frozen=True)

    step: str
    event: str = ""
    started_at: AwareDatetime = Field(default_factory=utc_now)
    duration: timedelta = timedelta(0)
    error: str | None = None


class WorkflowState(BaseModel):
    """State of one run: position in the graph, history and shared metadata."""

    id: str = Field(default_factory=new_run_id)
    workflow_name: str
    current_step: str
    step_history: list[StepRecord] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: AwareDatetime = Field(default_factory=utc_now)
    updated_at: AwareDatetime = Field(default_factory=utc_now)

    @classmethod
    def new(
        cls, workflow_name: str, initial_step: str, run_id: str | None = None
    ) -> WorkflowState:
        now = utc_now()
        return cls(
            id=run_id or new_run_id(),
            workflow_name=workflow_name,
            current_step=initial_step,
            created_at=now,
            updated_at=now,
        )

    def add_step_record(self, record: StepRecord) -> None:
        self.step_history.append(record)
        self.updated_at = utc_now()

    def last_step(self) -> StepRecord | None:
        if not self.step_history:
            return None
        return self.step_history[-1]

    def is_terminal(self) -> bool:
        return is_terminal(self.current_step)
