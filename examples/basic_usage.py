#!/usr/bin/env python3
"""Programmatic workflow run example.

This demonstrates using the stepflow components directly:

* load settings from `.env` / ``STEPFLOW_*`` environment variables
* register step handlers for the built-in ``implement-review-pr`` workflow
* run it with a checkpoint saved after every transition
* print the lifecycle events the engine emitted

Run it twice with ``--resume`` to continue the most recent run.
"""

from __future__ import annotations

import argparse
import queue
import threading
from collections.abc import Sequence

from stepflow.core.config import StepflowConfig
from stepflow.state.store import StateStore, checkpointing
from stepflow.workflow.builtin import WORKFLOW_IMPLEMENT_REVIEW, get_definition
from stepflow.workflow.definition import EVENT_NEEDS_HUMAN, EVENT_SUCCESS
from stepflow.workflow.engine import Engine
from stepflow.workflow.errors import WorkflowError
from stepflow.workflow.events import WorkflowEvent
from stepflow.workflow.registry import Registry
from stepflow.workflow.state import WorkflowState


class EchoHandler:
    """Prints what it would do and always succeeds."""

    def __init__(self, action: str) -> None:
        self.action = action

    def execute(self, cancel: threading.Event, state: WorkflowState) -> str:
        print(f"[{state.current_step}] {self.action}")
        return EVENT_SUCCESS

    def dry_run(self, cancel: threading.Event, state: WorkflowState) -> str:
        print(f"[{state.current_step}] would {self.action}")
        return EVENT_SUCCESS


class CheckReview:
    """Asks for one round of fixes, then approves."""

    def execute(self, cancel: threading.Event, state: WorkflowState) -> str:
        rounds = int(state.metadata.get("review_rounds", 0)) + 1
        state.metadata["review_rounds"] = rounds
        return EVENT_SUCCESS if rounds > 1 else EVENT_NEEDS_HUMAN

    def dry_run(self, cancel: threading.Event, state: WorkflowState) -> str:
        return EVENT_SUCCESS


def build_registry() -> Registry:
    return Registry(
        {
            "run_implement": EchoHandler("implement the task"),
            "run_review": EchoHandler("review the change"),
            "check_review": CheckReview(),
            "run_fix": EchoHandler("address review comments"),
            "create_pr": EchoHandler("open a pull request"),
        }
    ).freeze()


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the implement-review-pr workflow.")
    parser.add_argument("--dry-run", action="store_true", help="Simulate without side effects")
    parser.add_argument("--resume", action="store_true", help="Continue the most recent run")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = StepflowConfig()
    config.setup_logging()

    definition = get_definition(WORKFLOW_IMPLEMENT_REVIEW)
    assert definition is not None
    store = StateStore.from_config(config.state)
    events: queue.Queue[WorkflowEvent] = queue.Queue(maxsize=config.engine.event_buffer_size)

    engine = Engine(
        build_registry(),
        dry_run=args.dry_run or config.engine.dry_run,
        events=events,
        post_step=checkpointing(store),
        max_iterations=config.engine.max_iterations,
    )

    state = store.latest_run() if args.resume else None
    try:
        final = engine.run(definition, state)
    except WorkflowError as e:
        print(f"Run stopped: {e}")
        return 1
    finally:
        while not events.empty():
            event = events.get_nowait()
            print(f"  {event.kind.value:<20} {event.step:<14} {event.message}")

    print(f"Run {final.id} finished with {len(final.step_history)} steps.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
