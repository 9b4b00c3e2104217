"""Exception hierarchy for workflow definition, execution and persistence.

Engine errors carry the partially accumulated :class:`WorkflowState` so callers
can inspect or checkpoint how far a run got before it stopped.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stepflow.workflow.state import WorkflowState


class WorkflowError(Exception):
    """Base class for every error raised by stepflow."""

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        step: str | None = None,
        state: WorkflowState | None = None,
    ) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.step = step
        self.state = state


# Configuration faults: never retried.


class ConfigurationError(WorkflowError):
    """The workflow definition or registry cannot drive the run."""


class UnknownStepError(ConfigurationError):
    pass


class MissingHandlerError(ConfigurationError):
    pass


class MissingTransitionError(ConfigurationError):
    def __init__(
        self,
        message: str,
        *,
        event: str,
        run_id: str | None = None,
        step: str | None = None,
        state: WorkflowState | None = None,
    ) -> None:
        super().__init__(message, run_id=run_id, step=step, state=state)
        self.event = event


class MaxIterationsExceededError(ConfigurationError):
    """The run exceeded the iteration ceiling (possible infinite loop)."""

    def __init__(
        self,
        message: str,
        *,
        max_iterations: int,
        run_id: str | None = None,
        step: str | None = None,
        state: WorkflowState | None = None,
    ) -> None:
        super().__init__(message, run_id=run_id, step=step, state=state)
        self.max_iterations = max_iterations


# Step execution and run outcome.


class StepExecutionError(WorkflowError):
    """A handler failed and the graph has no failure route for its step."""


class WorkflowFailedError(WorkflowError):
    """The run reached the terminal failure pseudo-step."""


class WorkflowCancelledError(WorkflowError):
    """The caller's cancel token was set between steps."""


# Persistence.


class PersistenceError(WorkflowError):
    pass


class RunNotFoundError(PersistenceError):
    pass


class CorruptCheckpointError(PersistenceError):
    pass


class HandlerNotFoundError(KeyError):
    """No handler is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"step handler not found: {self.name!r}"


class DefinitionError(ValueError):
    """A workflow definition file could not be read or parsed."""
