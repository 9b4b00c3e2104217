"""Test configuration and fixtures."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from stepflow.core.config import EngineConfig, StateConfig, StepflowConfig
from stepflow.state.store import StateStore
from stepflow.workflow.definition import (
    EVENT_FAILURE,
    EVENT_SUCCESS,
    STEP_DONE,
    STEP_FAILED,
    StepDefinition,
    WorkflowDefinition,
)
from stepflow.workflow.registry import Registry
from stepflow.workflow.state import WorkflowState


@dataclass
class ScriptedHandler:
    """Test handler returning scripted events and recording every call.

    ``events`` is consumed in order; the last event repeats once exhausted.
    """

    events: list[str] = field(default_factory=lambda: [EVENT_SUCCESS])
    error: Exception | None = None
    on_call: Callable[[WorkflowState], None] | None = None
    calls: list[str] = field(default_factory=list)

    def _respond(self, mode: str, state: WorkflowState) -> str:
        self.calls.append(mode)
        if self.on_call is not None:
            self.on_call(state)
        if self.error is not None:
            raise self.error
        if len(self.events) > 1:
            return self.events.pop(0)
        return self.events[0]

    def execute(self, cancel: threading.Event, state: WorkflowState) -> str:
        return self._respond("execute", state)

    def dry_run(self, cancel: threading.Event, state: WorkflowState) -> str:
        return self._respond("dry_run", state)


def make_linear_definition(*names: str, name: str = "linear") -> WorkflowDefinition:
    steps = []
    for index, step in enumerate(names):
        target = names[index + 1] if index + 1 < len(names) else STEP_DONE
        steps.append(
            StepDefinition(
                name=step, transitions={EVENT_SUCCESS: target, EVENT_FAILURE: STEP_FAILED}
            )
        )
    return WorkflowDefinition(name=name, initial_step=names[0], steps=steps)


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    """Undo handler and level changes made by ``configure_logging``."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    stepflow_level = logging.getLogger("stepflow").level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("stepflow").setLevel(stepflow_level)


@pytest.fixture
def scripted() -> type[ScriptedHandler]:
    """The scripted handler class."""
    return ScriptedHandler


@pytest.fixture
def linear_definition() -> Callable[..., WorkflowDefinition]:
    """Factory for A -> B -> ... -> done definitions."""
    return make_linear_definition


@pytest.fixture
def registry_for() -> Callable[..., Registry]:
    """Factory building a registry with one ScriptedHandler per given step name."""

    def _build(*names: str, **handlers: ScriptedHandler) -> Registry:
        registry = Registry()
        for name in names:
            registry.register(name, handlers.get(name) or ScriptedHandler())
        for name, handler in handlers.items():
            if name not in names:
                registry.register(name, handler)
        return registry

    return _build


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".stepflow" / "state"
    state_dir.mkdir(parents=True)
    return state_dir


@pytest.fixture
def store(temp_state_dir: Path) -> StateStore:
    """Provide a state store rooted in a temporary directory."""
    return StateStore(temp_state_dir)


@pytest.fixture
def state_config(temp_state_dir: Path) -> StateConfig:
    """Provide a test state configuration."""
    return StateConfig(storage_path=temp_state_dir, stale_after_seconds=60)


@pytest.fixture
def engine_config() -> EngineConfig:
    """Provide a test engine configuration."""
    return EngineConfig(max_iterations=50)


@pytest.fixture
def stepflow_config(engine_config: EngineConfig, state_config: StateConfig) -> StepflowConfig:
    """Provide a test top-level configuration."""
    return StepflowConfig(
        log_level="DEBUG",
        debug=True,
        engine=engine_config,
        state=state_config,
    )
