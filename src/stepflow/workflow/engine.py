"""Workflow execution loop.

The engine walks a :class:`WorkflowDefinition` one step at a time:
resolve handler → execute → record → transition → repeat, until a terminal
pseudo-step is reached. Steps run strictly sequentially on the caller's thread.
Cancellation is checked between steps only; a running handler is never
interrupted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from typing import TYPE_CHECKING

from stepflow.workflow.definition import (
    EVENT_FAILURE,
    STEP_DONE,
    STEP_FAILED,
    StepDefinition,
    WorkflowDefinition,
)
from stepflow.workflow.errors import (
    HandlerNotFoundError,
    MaxIterationsExceededError,
    MissingHandlerError,
    MissingTransitionError,
    StepExecutionError,
    UnknownStepError,
    WorkflowCancelledError,
    WorkflowError,
    WorkflowFailedError,
)
from stepflow.workflow.events import EventEmitter, EventKind, EventSink, WorkflowEvent
from stepflow.workflow.registry import CancelToken, Registry, StepHandler
from stepflow.workflow.state import StepRecord, WorkflowState, utc_now
from stepflow.workflow.validate import ValidationResult, validate_definition

if TYPE_CHECKING:
    from stepflow.core.config import EngineConfig

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 1000

PostStepHook = Callable[[WorkflowState], None]


class Engine:
    """Drives workflow runs using handlers from a shared, read-only registry.

    Args:
        registry: Handler lookup, shared safely between engines.
        dry_run: Call ``handler.dry_run`` instead of ``handler.execute``.
        single_step: Run only this step, then stop whatever its transition.
        events: Optional observer-owned queue receiving :class:`WorkflowEvent`.
        post_step: Called with the state after every transition (checkpointing).
            Its failures are logged and reported as ``checkpoint_failed`` events.
        max_iterations: Ceiling on steps per ``run`` call.
    """

    def __init__(
        self,
        registry: Registry,
        *,
        dry_run: bool = False,
        single_step: str | None = None,
        events: EventSink | None = None,
        post_step: PostStepHook | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.registry = registry
        self.dry_run = dry_run
        self.single_step = single_step
        self.post_step = post_step
        self.max_iterations = max_iterations
        self._emitter = EventEmitter(events)

    @classmethod
    def from_config(
        cls,
        registry: Registry,
        config: EngineConfig,
        *,
        events: EventSink | None = None,
        post_step: PostStepHook | None = None,
    ) -> Engine:
        return cls(
            registry,
            dry_run=config.dry_run,
            events=events,
            post_step=post_step,
            max_iterations=config.max_iterations,
        )

    @property
    def dropped_events(self) -> int:
        return self._emitter.dropped

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        return validate_definition(definition, self.registry)

    def run(
        self,
        definition: WorkflowDefinition,
        state: WorkflowState | None = None,
        cancel: CancelToken | None = None,
    ) -> WorkflowState:
        """Run ``definition`` to a terminal step, starting fresh or from ``state``.

        Returns the final state. Raises a :class:`WorkflowError` subclass on any
        failure; the exception's ``state`` attribute holds the run so far.
        """

        if cancel is None:
            cancel = threading.Event()
        if state is None:
            state = WorkflowState.new(definition.name, definition.initial_step)

        resumed = bool(state.step_history)
        if self.single_step is not None:
            state.current_step = self.single_step

        self._emit(
            EventKind.WORKFLOW_STARTED,
            state,
            message=(
                f"workflow {definition.name!r} resumed at step {state.current_step!r}"
                if resumed
                else f"workflow {definition.name!r} started"
            ),
            resumed=resumed,
        )
        logger.info(
            "Workflow resumed" if resumed else "Workflow started",
            extra={
                "run_id": state.id,
                "workflow": definition.name,
                "step": state.current_step,
                "dry_run": self.dry_run,
            },
        )

        try:
            return self._loop(definition, state, cancel)
        except WorkflowError as exc:
            self._emit(EventKind.WORKFLOW_FAILED, state, message=str(exc), error=str(exc))
            logger.error(
                "Workflow stopped",
                extra={
                    "run_id": state.id,
                    "workflow": definition.name,
                    "step": state.current_step,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise

    def run_step(
        self,
        definition: WorkflowDefinition,
        step_name: str,
        state: WorkflowState | None = None,
        cancel: CancelToken | None = None,
    ) -> WorkflowState:
        """Execute exactly one named step in isolation."""

        sub = Engine(
            self.registry,
            dry_run=self.dry_run,
            single_step=step_name,
            post_step=self.post_step,
            max_iterations=self.max_iterations,
        )
        sub._emitter = self._emitter
        return sub.run(definition, state, cancel)

    def _loop(
        self, definition: WorkflowDefinition, state: WorkflowState, cancel: CancelToken
    ) -> WorkflowState:
        iteration = 0
        while True:
            current = state.current_step
            if cancel.is_set():
                raise WorkflowCancelledError(
                    f"run {state.id}: cancelled before step {current!r}",
                    run_id=state.id,
                    step=current,
                    state=state,
                )

            iteration += 1
            if iteration > self.max_iterations:
                raise MaxIterationsExceededError(
                    f"run {state.id}: workflow {definition.name!r} exceeded "
                    f"{self.max_iterations} iterations at step {current!r} "
                    "(possible infinite loop)",
                    max_iterations=self.max_iterations,
                    run_id=state.id,
                    step=current,
                    state=state,
                )

            step_def = definition.step(current)
            if step_def is None:
                raise UnknownStepError(
                    f"run {state.id}: step {current!r} is not defined in workflow "
                    f"{definition.name!r}",
                    run_id=state.id,
                    step=current,
                    state=state,
                )
            handler = self._resolve(step_def, state)

            target = self._execute_step(step_def, handler, state, cancel)
            state.current_step = target
            self._checkpoint(state)

            if target == STEP_DONE:
                self._emit(
                    EventKind.WORKFLOW_COMPLETED,
                    state,
                    message=f"workflow {definition.name!r} completed",
                )
                logger.info(
                    "Workflow completed",
                    extra={"run_id": state.id, "workflow": definition.name},
                )
                return state
            if target == STEP_FAILED:
                raise WorkflowFailedError(
                    f"run {state.id}: workflow {definition.name!r} reached the failure "
                    f"step from step {current!r}",
                    run_id=state.id,
                    step=current,
                    state=state,
                )
            if self.single_step is not None:
                return state

    def _resolve(self, step_def: StepDefinition, state: WorkflowState) -> StepHandler:
        try:
            return self.registry.get(step_def.handler_name)
        except HandlerNotFoundError:
            raise MissingHandlerError(
                f"run {state.id}: no handler for step {step_def.name!r} "
                f"(handler {step_def.handler_name!r} is not registered)",
                run_id=state.id,
                step=step_def.name,
                state=state,
            ) from None

    def _execute_step(
        self,
        step_def: StepDefinition,
        handler: StepHandler,
        state: WorkflowState,
        cancel: CancelToken,
    ) -> str:
        """Invoke the handler, record the step and return the transition target."""

        name = step_def.name
        self._emit(EventKind.STEP_STARTED, state, message=f"step {name!r} started")
        logger.debug("Step started", extra={"run_id": state.id, "step": name})

        started_at = utc_now()
        started = time.monotonic()
        event, failure = self._invoke(handler, cancel, state)
        duration = timedelta(seconds=time.monotonic() - started)

        if failure is not None:
            error = str(failure) or type(failure).__name__
            state.add_step_record(
                StepRecord(
                    step=name,
                    event=EVENT_FAILURE,
                    started_at=started_at,
                    duration=duration,
                    error=error,
                )
            )
            self._emit(
                EventKind.STEP_FAILED,
                state,
                step=name,
                event=EVENT_FAILURE,
                message=f"step {name!r} failed: {error}",
                error=error,
                duration=duration,
            )
            logger.warning(
                "Step failed",
                extra={"run_id": state.id, "step": name, "error": error},
                exc_info=failure,
            )
            target = step_def.transitions.get(EVENT_FAILURE)
            if target is None:
                state.current_step = STEP_FAILED
                self._checkpoint(state)
                raise StepExecutionError(
                    f"run {state.id}: step {name!r} failed: {error}",
                    run_id=state.id,
                    step=name,
                    state=state,
                ) from failure
            return target

        state.add_step_record(
            StepRecord(step=name, event=event, started_at=started_at, duration=duration)
        )
        self._emit(
            EventKind.STEP_COMPLETED,
            state,
            step=name,
            event=event,
            message=f"step {name!r} completed with event {event!r}",
            duration=duration,
        )
        logger.info(
            "Step completed",
            extra={"run_id": state.id, "step": name, "event": event},
        )
        target = step_def.transitions.get(event)
        if target is None:
            raise MissingTransitionError(
                f"run {state.id}: no transition for event {event!r} from step {name!r}",
                event=event,
                run_id=state.id,
                step=name,
                state=state,
            )
        return target

    def _invoke(
        self, handler: StepHandler, cancel: CancelToken, state: WorkflowState
    ) -> tuple[str, Exception | None]:
        # Any handler exception, expected or not, becomes a step error that the
        # graph may route through its "failure" transition.
        try:
            if self.dry_run:
                event = handler.dry_run(cancel, state)
            else:
                event = handler.execute(cancel, state)
        except Exception as exc:
            return "", exc
        if not isinstance(event, str) or not event:
            return "", TypeError(f"handler returned {event!r}; expected a non-empty event name")
        return event, None

    def _checkpoint(self, state: WorkflowState) -> None:
        if self.post_step is None:
            return
        try:
            self.post_step(state)
        except Exception as exc:
            logger.warning(
                "Checkpoint failed",
                extra={"run_id": state.id, "step": state.current_step, "error": str(exc)},
            )
            self._emit(
                EventKind.CHECKPOINT_FAILED,
                state,
                message=f"checkpoint failed: {exc}",
                error=str(exc),
            )
            return
        self._emit(EventKind.CHECKPOINT_SAVED, state, message="checkpoint saved")

    def _emit(
        self,
        kind: EventKind,
        state: WorkflowState,
        *,
        step: str | None = None,
        event: str = "",
        message: str = "",
        error: str | None = None,
        duration: timedelta | None = None,
        resumed: bool = False,
    ) -> None:
        self._emitter.emit(
            WorkflowEvent(
                kind=kind,
                run_id=state.id,
                step=state.current_step if step is None else step,
                event=event,
                message=message,
                error=error,
                duration=duration,
                resumed=resumed,
            )
        )
