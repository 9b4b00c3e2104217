"""Static workflow graph: steps, handler bindings and transitions.

Definitions are pure data. Structural problems are reported by
:func:`stepflow.workflow.validate.validate_definition`, not on construction.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Transition events a handler may return. Plain strings so they round-trip
# through checkpoint files unchanged.
EVENT_SUCCESS = "success"
EVENT_FAILURE = "failure"
EVENT_BLOCKED = "blocked"
EVENT_RATE_LIMITED = "rate_limited"
EVENT_NEEDS_HUMAN = "needs_human"
EVENT_PARTIAL = "partial"

# Terminal pseudo-steps. The "__" prefix keeps them out of the user step namespace.
STEP_DONE = "__done__"
STEP_FAILED = "__failed__"

TERMINAL_STEPS = frozenset({STEP_DONE, STEP_FAILED})


def is_terminal(step: str) -> bool:
    return step in TERMINAL_STEPS


class StepDefinition(BaseModel):
    """One node of the graph and its outgoing transitions."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    transitions: dict[str, str] = Field(default_factory=dict)
    handler: str | None = Field(
        default=None,
        description="Registry key of the handler; defaults to the step name",
    )

    @property
    def handler_name(self) -> str:
        return self.handler or self.name


class WorkflowDefinition(BaseModel):
    """A workflow's state machine graph."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    description: str = ""
    initial_step: str
    steps: list[StepDefinition] = Field(default_factory=list)

    def step(self, name: str) -> StepDefinition | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def next_step(self, step: str, event: str) -> str | None:
        """Transition target for ``(step, event)``, or ``None`` if undefined."""

        found = self.step(step)
        if found is None:
            return None
        return found.transitions.get(event)
