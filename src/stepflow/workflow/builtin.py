"""Workflow graphs shipped with stepflow.

Only the graphs live here. The step handlers (implementation, review, PR
creation, ...) are supplied by the application and registered by name.
"""

from __future__ import annotations

from stepflow.workflow.definition import (
    EVENT_FAILURE,
    EVENT_NEEDS_HUMAN,
    EVENT_PARTIAL,
    EVENT_SUCCESS,
    STEP_DONE,
    STEP_FAILED,
    StepDefinition,
    WorkflowDefinition,
)

WORKFLOW_IMPLEMENT = "implement"
WORKFLOW_IMPLEMENT_REVIEW = "implement-review-pr"
WORKFLOW_PIPELINE = "pipeline"
WORKFLOW_PRD_DECOMPOSE = "prd-decompose"


def _step(name: str, on_success: str, **extra: str) -> StepDefinition:
    """A step whose failures end the run."""

    return StepDefinition(
        name=name,
        transitions={EVENT_SUCCESS: on_success, EVENT_FAILURE: STEP_FAILED, **extra},
    )


_BUILTINS: dict[str, WorkflowDefinition] = {
    WORKFLOW_IMPLEMENT: WorkflowDefinition(
        name=WORKFLOW_IMPLEMENT,
        description="Run the implementation loop for a single task or phase.",
        initial_step="run_implement",
        steps=[_step("run_implement", STEP_DONE)],
    ),
    WORKFLOW_IMPLEMENT_REVIEW: WorkflowDefinition(
        name=WORKFLOW_IMPLEMENT_REVIEW,
        description=(
            "Run implementation, multi-agent review, optional fix, and pull request creation."
        ),
        initial_step="run_implement",
        steps=[
            _step("run_implement", "run_review"),
            _step("run_review", "check_review"),
            _step("check_review", "create_pr", **{EVENT_NEEDS_HUMAN: "run_fix"}),
            _step("run_fix", "run_review"),
            _step("create_pr", STEP_DONE),
        ],
    ),
    WORKFLOW_PIPELINE: WorkflowDefinition(
        name=WORKFLOW_PIPELINE,
        description=(
            "Orchestrate a multi-phase project pipeline, advancing phases until all work "
            "is complete."
        ),
        initial_step="init_phase",
        steps=[
            _step("init_phase", "run_phase_workflow"),
            _step("run_phase_workflow", "advance_phase"),
            _step("advance_phase", STEP_DONE, **{EVENT_PARTIAL: "init_phase"}),
        ],
    ),
    WORKFLOW_PRD_DECOMPOSE: WorkflowDefinition(
        name=WORKFLOW_PRD_DECOMPOSE,
        description=(
            "Decompose a PRD document into actionable task files via shred, scatter, "
            "and gather phases."
        ),
        initial_step="shred",
        steps=[
            _step("shred", "scatter"),
            _step("scatter", "gather"),
            _step("gather", STEP_DONE),
        ],
    ),
}


def builtin_definitions() -> dict[str, WorkflowDefinition]:
    """All built-in definitions keyed by name (a copy of the internal table)."""

    return dict(_BUILTINS)


def get_definition(name: str) -> WorkflowDefinition | None:
    return _BUILTINS.get(name)
