"""CLI entrypoint: inspect, validate, resume and clean workflow runs."""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import queue
import re
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

from pydantic import ValidationError

from stepflow import __version__
from stepflow.core.config import StepflowConfig
from stepflow.state.store import StateStore, checkpointing
from stepflow.workflow.builtin import builtin_definitions
from stepflow.workflow.dryrun import format_workflow_plan
from stepflow.workflow.engine import Engine
from stepflow.workflow.errors import (
    ConfigurationError,
    DefinitionError,
    PersistenceError,
    RunNotFoundError,
    WorkflowCancelledError,
    WorkflowError,
)
from stepflow.workflow.events import EventKind, WorkflowEvent
from stepflow.workflow.loader import resolve_definition
from stepflow.workflow.registry import Registry
from stepflow.workflow.validate import validate_definition

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG = 2
EXIT_NOT_FOUND = 3
EXIT_CANCELLED = 130

# Run ids given on the command line must be plain ids, never paths.
RUN_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

_PROGRESS_KINDS = frozenset({EventKind.STEP_COMPLETED, EventKind.STEP_FAILED})


def _run_id(value: str) -> str:
    if not RUN_ID_PATTERN.match(value):
        raise argparse.ArgumentTypeError(
            f"invalid run id {value!r}: only letters, digits, '-' and '_' are allowed"
        )
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stepflow",
        description="Run, inspect and resume checkpointed workflows",
    )
    parser.add_argument("--version", action="version", version=f"stepflow {__version__}")
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help="Checkpoint directory (defaults to STEPFLOW_STATE_STORAGE_PATH or .stepflow/state)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("workflows", help="List the built-in workflow definitions")

    validate = subparsers.add_parser("validate", help="Validate a workflow definition")
    validate.add_argument("workflow", nargs="?", default="", help="Built-in workflow name")
    validate.add_argument("--file", type=Path, default=None, help="Definition file (.toml/.json)")
    validate.add_argument(
        "--registry",
        default=None,
        help="Also check handler bindings against 'module:attribute'",
    )

    plan = subparsers.add_parser("plan", help="Show the steps and transitions of a workflow")
    plan.add_argument("workflow", nargs="?", default="", help="Built-in workflow name")
    plan.add_argument("--file", type=Path, default=None, help="Definition file (.toml/.json)")

    subparsers.add_parser("list", help="List stored runs, most recent first")

    show = subparsers.add_parser("show", help="Print the checkpoint of a run as JSON")
    show.add_argument("run_id", type=_run_id)

    resume = subparsers.add_parser(
        "resume", help="Resume a run from its checkpoint (the most recent one by default)"
    )
    resume.add_argument("--run", dest="run_id", type=_run_id, default=None, help="Run id")
    resume.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be resumed without executing anything",
    )
    resume.add_argument("--file", type=Path, default=None, help="Definition file (.toml/.json)")
    resume.add_argument(
        "--registry",
        default=None,
        help="Handler registry as 'module:attribute' (a Registry or a factory returning one)",
    )

    clean = subparsers.add_parser("clean", help="Delete the checkpoint of one run")
    clean.add_argument("run_id", type=_run_id)

    clean_all = subparsers.add_parser("clean-all", help="Delete every checkpoint")
    clean_all.add_argument("--force", action="store_true", help="Do not ask for confirmation")

    return parser


def load_registry(target: str) -> Registry:
    """Import ``module:attribute`` and return the registry it names or builds."""

    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise DefinitionError(f"registry must be given as 'module:attribute', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise DefinitionError(f"cannot import registry module {module_name!r}: {e}") from e
    try:
        obj = getattr(module, attribute)
    except AttributeError:
        raise DefinitionError(f"module {module_name!r} has no attribute {attribute!r}") from None

    if isinstance(obj, Registry):
        return obj
    registry = obj() if callable(obj) else None
    if not isinstance(registry, Registry):
        raise DefinitionError(f"{target!r} did not produce a Registry")
    return registry


@contextmanager
def _cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn the first Ctrl-C into a between-steps cancel; a second one aborts."""

    cancel = threading.Event()
    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: object) -> None:
        cancel.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)
        print("Cancelling after the current step (Ctrl-C again to abort)", file=sys.stderr)

    signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


@contextmanager
def _progress_printer(buffer_size: int, out: TextIO) -> Iterator[queue.Queue[WorkflowEvent]]:
    """Print step progress from the engine's event queue on a background thread."""

    events: queue.Queue[WorkflowEvent] = queue.Queue(maxsize=buffer_size)
    stop = threading.Event()

    def _drain() -> None:
        while not (stop.is_set() and events.empty()):
            try:
                event = events.get(timeout=0.1)
            except queue.Empty:
                continue
            if event.kind in _PROGRESS_KINDS:
                print(f"  {event.kind.value:<16} {event.step}", file=out)

    printer = threading.Thread(target=_drain, name="stepflow-progress", daemon=True)
    printer.start()
    try:
        yield events
    finally:
        stop.set()
        printer.join()


def _print_runs(store: StateStore, out: TextIO) -> None:
    summaries = store.list()
    if not summaries:
        print("No workflow runs found.", file=out)
        return
    header = f"{'RUN ID':<40} {'WORKFLOW':<22} {'STEP':<22} {'STATUS':<12} {'STEPS':>5}  UPDATED"
    print(header, file=out)
    for s in summaries:
        print(
            f"{s.id:<40} {s.workflow_name:<22} {s.current_step:<22} {s.status:<12} "
            f"{s.step_count:>5}  {s.updated_at.isoformat(timespec='seconds')}",
            file=out,
        )


def _confirm(prompt: str) -> bool:
    if not sys.stdin.isatty():
        return False
    answer = input(f"{prompt} [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


def _resume(args: argparse.Namespace, config: StepflowConfig, store: StateStore) -> int:
    if args.run_id:
        state = store.load(args.run_id)
    else:
        state = store.latest_run()
        if state is None:
            print("No workflow runs to resume.", file=sys.stderr)
            return EXIT_NOT_FOUND

    if state.is_terminal():
        print(
            f"Run {state.id} already finished ({store.status(state)}); nothing to resume.",
            file=sys.stderr,
        )
        return EXIT_OK

    definition = resolve_definition(state.workflow_name, args.file)

    if args.dry_run:
        print(format_workflow_plan(definition, state), end="")
        return EXIT_OK

    if not args.registry:
        print("--registry is required to resume a run", file=sys.stderr)
        return EXIT_CONFIG
    registry = load_registry(args.registry)

    result = validate_definition(definition, registry)
    if not result.is_valid:
        print(str(result), file=sys.stderr, end="")
        return EXIT_CONFIG

    logger.info(
        "Resuming run",
        extra={"run_id": state.id, "workflow": definition.name, "step": state.current_step},
    )
    with (
        _progress_printer(config.engine.event_buffer_size, sys.stdout) as events,
        _cancel_on_interrupt() as cancel,
    ):
        engine = Engine.from_config(
            registry, config.engine, events=events, post_step=checkpointing(store)
        )
        final = engine.run(definition, state, cancel)
    print(f"Run {final.id} completed ({len(final.step_history)} steps recorded)")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = StepflowConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your environment / .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG

    config.setup_logging()

    if args.state_dir is not None:
        config.state.storage_path = args.state_dir

    try:
        if args.command == "workflows":
            for name, definition in sorted(builtin_definitions().items()):
                print(f"{name:<22} {definition.description}")
            return EXIT_OK

        if args.command in {"validate", "plan"}:
            if not args.workflow and args.file is None:
                print("give a workflow name or --file", file=sys.stderr)
                return EXIT_CONFIG
            definition = resolve_definition(args.workflow, args.file)
            if args.command == "plan":
                print(format_workflow_plan(definition), end="")
                return EXIT_OK
            registry = load_registry(args.registry) if args.registry else None
            result = validate_definition(definition, registry)
            print(str(result), end="")
            return EXIT_OK if result.is_valid else EXIT_CONFIG

        store = StateStore.from_config(config.state)

        if args.command == "list":
            _print_runs(store, sys.stdout)
            return EXIT_OK

        if args.command == "show":
            state = store.load(args.run_id)
            print(json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False))
            return EXIT_OK

        if args.command == "clean":
            store.delete(args.run_id)
            print(f"Deleted checkpoint for run {args.run_id}")
            return EXIT_OK

        if args.command == "clean-all":
            if not args.force and not _confirm("Delete all workflow checkpoints?"):
                print("Aborted; pass --force to delete without confirmation.", file=sys.stderr)
                return EXIT_CONFIG
            removed = store.delete_all()
            print(f"Deleted {removed} checkpoint(s)")
            return EXIT_OK

        if args.command == "resume":
            return _resume(args, config, store)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_CONFIG

    except RunNotFoundError as e:
        print(str(e), file=sys.stderr)
        return EXIT_NOT_FOUND

    except WorkflowCancelledError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CANCELLED

    except (ConfigurationError, DefinitionError, PersistenceError) as e:
        logger.error(str(e), extra={"error_type": type(e).__name__})
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG

    except WorkflowError as e:
        print(str(e), file=sys.stderr)
        return EXIT_RUN_FAILED

    except Exception:
        logger.exception("Command failed")
        return EXIT_RUN_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
