"""Plain-text rendering of a workflow graph for dry-run and inspection output."""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping

from stepflow.workflow.definition import STEP_DONE, STEP_FAILED, WorkflowDefinition
from stepflow.workflow.state import WorkflowState

_TERMINAL_LABELS = {STEP_DONE: "(done)", STEP_FAILED: "(failed)"}


def plan_order(definition: WorkflowDefinition) -> list[str]:
    """Declared steps in breadth-first order from the initial step.

    Steps that cannot be reached are appended afterwards in declaration order.
    """

    declared = set(definition.step_names())
    ordered: list[str] = []
    if definition.initial_step in declared:
        seen = {definition.initial_step}
        queue = deque([definition.initial_step])
        while queue:
            name = queue.popleft()
            ordered.append(name)
            step = definition.step(name)
            assert step is not None
            for target in step.transitions.values():
                if target in declared and target not in seen:
                    seen.add(target)
                    queue.append(target)
    ordered.extend(name for name in definition.step_names() if name not in ordered)
    return ordered


def format_workflow_plan(
    definition: WorkflowDefinition,
    state: WorkflowState | None = None,
    step_outputs: Mapping[str, str] | None = None,
) -> str:
    """Describe the steps and transitions of ``definition``.

    ``step_outputs`` maps step names to handler dry-run descriptions. When
    ``state`` is given, the step the run would resume at is marked.
    """

    if not definition.steps:
        return "No steps defined.\n"

    outputs = step_outputs or {}
    order = plan_order(definition)
    numbers = {name: index for index, name in enumerate(order, start=1)}

    lines = [f"Workflow: {definition.name}"]
    if definition.description:
        lines.append(f"  {definition.description}")
    if state is not None:
        lines.append(f"Run: {state.id} ({len(state.step_history)} steps recorded)")
    lines.append("")

    for name in order:
        step = definition.step(name)
        assert step is not None
        marker = " <- resume here" if state is not None and state.current_step == name else ""
        lines.append(f"{numbers[name]}. {name}{marker}")
        lines.append(f"   {outputs.get(name, f'step {numbers[name]}')}")
        for event, target in sorted(step.transitions.items()):
            if target in _TERMINAL_LABELS:
                label = _TERMINAL_LABELS[target]
            elif target in numbers and numbers[target] <= numbers[name]:
                label = f"{target} (cycles back to step {numbers[target]})"
            else:
                label = target
            lines.append(f"   {event} -> {label}")
    return "\n".join(lines) + "\n"
