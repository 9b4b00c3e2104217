"""Static checks over a workflow definition.

Errors make a definition unrunnable. Warnings (unreachable steps, cycles,
steps without transitions) flag likely design mistakes but are not fatal:
review → fix → review loops are intentional cycles.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from stepflow.workflow.definition import TERMINAL_STEPS, WorkflowDefinition
from stepflow.workflow.registry import Registry


class IssueCode(str, Enum):
    NO_STEPS = "NO_STEPS"
    EMPTY_STEP_NAME = "EMPTY_STEP_NAME"
    DUPLICATE_STEP = "DUPLICATE_STEP_NAME"
    MISSING_INITIAL = "MISSING_INITIAL_STEP"
    INVALID_TARGET = "INVALID_TRANSITION_TARGET"
    MISSING_HANDLER = "MISSING_HANDLER"
    UNREACHABLE_STEP = "UNREACHABLE_STEP"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    NO_TRANSITIONS = "NO_TRANSITIONS"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    code: IssueCode
    message: str
    step: str = ""

    def __str__(self) -> str:
        if self.step:
            return f"[{self.code.value}] step {self.step!r}: {self.message}"
        return f"[{self.code.value}] {self.message}"


@dataclass(slots=True)
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self) -> set[IssueCode]:
        return {issue.code for issue in (*self.errors, *self.warnings)}

    def __str__(self) -> str:
        lines = [f"Errors ({len(self.errors)}):"]
        lines.extend(f"  {issue}" for issue in self.errors)
        lines.append(f"Warnings ({len(self.warnings)}):")
        lines.extend(f"  {issue}" for issue in self.warnings)
        return "\n".join(lines) + "\n"


def validate_definition(
    definition: WorkflowDefinition, registry: Registry | None = None
) -> ValidationResult:
    """Check ``definition``; handler bindings are checked only when ``registry`` is given."""

    result = ValidationResult()

    if not definition.steps:
        result.errors.append(
            ValidationIssue(IssueCode.NO_STEPS, "workflow definition has no steps")
        )
        return result

    declared: dict[str, int] = {}
    for index, step in enumerate(definition.steps):
        if not step.name:
            result.errors.append(
                ValidationIssue(
                    IssueCode.EMPTY_STEP_NAME, f"step at index {index} has an empty name"
                )
            )
            continue
        if step.name in TERMINAL_STEPS:
            result.errors.append(
                ValidationIssue(
                    IssueCode.DUPLICATE_STEP,
                    f"step name {step.name!r} collides with a terminal pseudo-step",
                    step.name,
                )
            )
            continue
        if step.name in declared:
            result.errors.append(
                ValidationIssue(
                    IssueCode.DUPLICATE_STEP,
                    f"step name {step.name!r} appears more than once",
                    step.name,
                )
            )
            continue
        declared[step.name] = index

    if not definition.initial_step:
        result.errors.append(
            ValidationIssue(
                IssueCode.MISSING_INITIAL, "initial_step is empty; must reference a defined step"
            )
        )
    elif definition.initial_step not in declared:
        result.errors.append(
            ValidationIssue(
                IssueCode.MISSING_INITIAL,
                f"initial_step {definition.initial_step!r} is not defined in the steps list",
                definition.initial_step,
            )
        )

    valid_targets = set(declared) | TERMINAL_STEPS
    for step in definition.steps:
        if not step.name:
            continue
        for event, target in step.transitions.items():
            if target not in valid_targets:
                result.errors.append(
                    ValidationIssue(
                        IssueCode.INVALID_TARGET,
                        f"transition {event!r} targets unknown step {target!r}",
                        step.name,
                    )
                )

    if registry is not None:
        for step in definition.steps:
            if step.name and not registry.has(step.handler_name):
                result.errors.append(
                    ValidationIssue(
                        IssueCode.MISSING_HANDLER,
                        f"step {step.name!r} has no registered handler {step.handler_name!r}",
                        step.name,
                    )
                )

    for step in definition.steps:
        if step.name and not step.transitions:
            result.warnings.append(
                ValidationIssue(
                    IssueCode.NO_TRANSITIONS,
                    f"step {step.name!r} has no transitions; the engine will stall here",
                    step.name,
                )
            )

    if definition.initial_step not in declared:
        return result

    adjacency: dict[str, list[str]] = {name: [] for name in declared}
    for step in definition.steps:
        if step.name not in adjacency:
            continue
        for target in step.transitions.values():
            if target in declared:
                adjacency[step.name].append(target)

    reachable = _reachable_from(definition.initial_step, adjacency)
    for name in declared:
        if name not in reachable:
            result.warnings.append(
                ValidationIssue(
                    IssueCode.UNREACHABLE_STEP,
                    f"step {name!r} cannot be reached from initial step "
                    f"{definition.initial_step!r}",
                    name,
                )
            )

    for cycle in _find_cycles(adjacency):
        result.warnings.append(
            ValidationIssue(
                IssueCode.CYCLE_DETECTED,
                "cycle detected involving steps: " + " -> ".join(cycle),
                cycle[0],
            )
        )

    return result


def _reachable_from(start: str, adjacency: dict[str, list[str]]) -> set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for neighbour in adjacency.get(current, []):
            if neighbour not in seen:
                seen.add(neighbour)
                queue.append(neighbour)
    return seen


def _find_cycles(adjacency: dict[str, list[str]]) -> list[list[str]]:
    """One closed path per back-edge target, found by three-colour DFS.

    Iterative, so chain length is not bounded by the recursion limit.
    """

    white, grey, black = 0, 1, 2
    colour = {name: white for name in adjacency}
    reported: set[str] = set()
    cycles: list[list[str]] = []

    for root in adjacency:
        if colour[root] != white:
            continue
        colour[root] = grey
        path = [root]
        pending = [iter(adjacency[root])]
        while pending:
            for neighbour in pending[-1]:
                if colour[neighbour] == grey and neighbour not in reported:
                    reported.add(neighbour)
                    start = path.index(neighbour)
                    cycles.append([*path[start:], neighbour])
                elif colour[neighbour] == white:
                    colour[neighbour] = grey
                    path.append(neighbour)
                    pending.append(iter(adjacency[neighbour]))
                    break
            else:
                pending.pop()
                colour[path.pop()] = black
    return cycles
